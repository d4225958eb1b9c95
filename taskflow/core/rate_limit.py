"""
Request rate limiting (slowapi, in-memory per-process counters keyed by client IP).
Auth endpoints get a stricter limit than the rest of the API.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from taskflow.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    enabled=settings.rate_limit_enabled,
)


def auth_rate_limit() -> str:
    return settings.auth_rate_limit
