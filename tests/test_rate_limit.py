"""Auth endpoints are throttled per client IP once rate limiting is on."""

from unittest.mock import patch

import pytest
from httpx import AsyncClient

from taskflow.config import settings
from taskflow.core.rate_limit import auth_rate_limit, limiter


@pytest.fixture
def rate_limited():
    limiter.reset()
    with patch.object(limiter, "enabled", True):
        yield limiter
    limiter.reset()


def test_auth_limit_follows_settings():
    assert auth_rate_limit() == settings.auth_rate_limit
    with patch.object(settings, "auth_rate_limit", "2/minute"):
        assert auth_rate_limit() == "2/minute"


@pytest.mark.asyncio
async def test_login_throttled_after_limit(csrf_client: AsyncClient, rate_limited):
    body = {"email": "nobody@test.com", "password": "Wrong123!"}
    with patch.object(settings, "auth_rate_limit", "3/minute"):
        statuses = [
            (await csrf_client.post("/api/v1/auth/login", json=body)).status_code for _ in range(6)
        ]
    assert statuses[0] == 401
    assert 429 in statuses


@pytest.mark.asyncio
async def test_health_is_exempt(client: AsyncClient, rate_limited):
    statuses = [(await client.get("/health")).status_code for _ in range(8)]
    assert set(statuses) == {200}
