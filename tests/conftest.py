"""Pytest configuration and shared fixtures for API tests."""

import os
import tempfile

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text

# Set test config before app imports so settings/engine use it
_TEST_DB_PATH = os.path.join(tempfile.gettempdir(), f"taskflow-test-{os.getpid()}.db")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_DB_PATH}")
os.environ.setdefault("JWT_SECRET", "test-secret-key-0123456789abcdef0123456789")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from taskflow.config import settings
from taskflow.core.auth import create_access_token, hash_password
from taskflow.core.revocation import set_revocation_store
from taskflow.db.base import Base
from taskflow.db.session import async_session_maker, engine, init_db
from taskflow.main import app
from taskflow.models.user import User

TEST_PASSWORD = "Password123!"


@pytest.fixture(scope="session", autouse=True)
def _remove_test_db():
    yield
    if os.path.exists(_TEST_DB_PATH):
        os.remove(_TEST_DB_PATH)


@pytest.fixture(autouse=True)
def fresh_revocation_store():
    """Each test starts with an empty blacklist."""
    set_revocation_store(None)
    yield
    set_revocation_store(None)


@pytest_asyncio.fixture
async def ensure_db():
    """Create tables (no scheduler, no lifespan)."""
    await init_db()
    yield


async def _delete_all():
    """Delete all rows in reverse dependency order so tests start clean."""
    async with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(text(f"DELETE FROM {table.name}"))


@pytest_asyncio.fixture
async def clean_db(ensure_db):
    await _delete_all()
    yield


@pytest_asyncio.fixture
async def client(clean_db):
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def csrf_client(client):
    """Client holding a CSRF cookie and echoing it in the CSRF header on every request."""
    resp = await client.get("/api/v1/auth/csrf")
    assert resp.status_code == 200
    client.headers[settings.csrf_header_name] = resp.json()["csrf_token"]
    return client


@pytest_asyncio.fixture
async def test_user(clean_db):
    """Create a user via DB (committed) and return (user_id, email, access_token)."""
    async with async_session_maker() as session:
        user = User(
            name="Test User",
            email="test@test.com",
            password_hash=hash_password(TEST_PASSWORD),
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)
        token = create_access_token(user.id, user.email)
        return user.id, user.email, token


@pytest.fixture
def auth_headers(test_user):
    """Return dict of Authorization header for test_user."""
    _, __, token = test_user
    return {"Authorization": f"Bearer {token}"}
