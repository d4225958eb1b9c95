from taskflow.db.session import async_session_maker, get_db, init_db
from taskflow.db.base import Base

__all__ = ["Base", "async_session_maker", "get_db", "init_db"]
