"""CSRF protection: double-submit cookie for state-changing API requests.

Safe requests receive a readable ``csrf_token`` cookie when they lack one. Unsafe
requests must echo that value in the ``X-CSRF-Token`` header.
"""

import logging
import secrets

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from taskflow.config import settings
from taskflow.core.errors import AuthError, CsrfMismatchError, CsrfMissingError, error_response
from taskflow.core.metrics import AUTH_REJECTIONS

logger = logging.getLogger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def generate_csrf_token() -> str:
    """32 random bytes, hex-encoded."""
    return secrets.token_hex(32)


def tokens_match(cookie_token: str, header_token: str) -> bool:
    """Fixed-time comparison; only a length difference can end it early."""
    return secrets.compare_digest(cookie_token.encode("utf-8"), header_token.encode("utf-8"))


def set_csrf_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        settings.csrf_cookie_name,
        token,
        max_age=settings.csrf_cookie_max_age_seconds,
        path="/",
        secure=settings.cookie_secure,
        httponly=False,  # must be readable by the frontend to echo it back
        samesite="strict",
    )


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


class CSRFMiddleware(BaseHTTPMiddleware):
    """Issue and verify CSRF tokens on requests under ``prefix``."""

    def __init__(self, app: ASGIApp, prefix: str = "/api/") -> None:
        super().__init__(app)
        self.prefix = prefix

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not request.url.path.startswith(self.prefix):
            return await call_next(request)

        cookie_token = request.cookies.get(settings.csrf_cookie_name)

        if request.method in SAFE_METHODS:
            new_token = None if cookie_token else generate_csrf_token()
            request.state.csrf_token = cookie_token or new_token
            response = await call_next(request)
            if new_token:
                set_csrf_cookie(response, new_token)
            return response

        header_token = request.headers.get(settings.csrf_header_name)
        if not cookie_token or not header_token:
            return self._reject(request, CsrfMissingError(), "CSRF token missing")
        if not tokens_match(cookie_token, header_token):
            return self._reject(request, CsrfMismatchError(), "CSRF token mismatch")
        return await call_next(request)

    def _reject(self, request: Request, exc: AuthError, message: str) -> Response:
        logger.warning(
            "%s ip=%s path=%s method=%s",
            message,
            client_ip(request),
            request.url.path,
            request.method,
        )
        AUTH_REJECTIONS.labels(reason=exc.reason).inc()
        return error_response(exc)
