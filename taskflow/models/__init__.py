from taskflow.models.user import User
from taskflow.models.task import Task
from taskflow.models.audit_log import AuditLog

__all__ = [
    "User",
    "Task",
    "AuditLog",
]
