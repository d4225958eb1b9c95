"""FastAPI dependencies: current user from JWT (cookie first, Bearer fallback), optional auth, role gate."""

import logging
from dataclasses import dataclass, field
from typing import Annotated, Any

from fastapi import Depends, Request

from taskflow.config import settings
from taskflow.core.auth import decode_access_token
from taskflow.core.csrf import client_ip
from taskflow.core.errors import (
    AuthError,
    AuthenticationFailedError,
    AuthenticationRequiredError,
    InsufficientRoleError,
    NoTokenError,
    TokenRevokedError,
    TokenTooOldError,
    TokenVerificationError,
)
from taskflow.core.metrics import AUTH_REJECTIONS
from taskflow.core.revocation import get_revocation_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    """Identity decoded from a verified access token, plus the raw token for later revocation."""

    id: int
    email: str
    role: str | None = None
    claims: dict[str, Any] = field(default_factory=dict, repr=False)
    token: str = field(default="", repr=False)

    @classmethod
    def from_claims(cls, claims: dict[str, Any], token: str) -> "CurrentUser":
        return cls(
            id=int(claims["id"]),
            email=str(claims["email"]),
            role=claims.get("role"),
            claims=claims,
            token=token,
        )


def extract_token(request: Request) -> str | None:
    """httpOnly cookie first; Authorization: Bearer as fallback."""
    token = request.cookies.get(settings.auth_cookie_name)
    if token:
        return token
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header[7:].strip() or None


def _reject(exc: AuthError) -> AuthError:
    AUTH_REJECTIONS.labels(reason=exc.reason).inc()
    return exc


def _authenticate(request: Request, token: str) -> CurrentUser:
    ip = client_ip(request)
    path = request.url.path
    method = request.method
    if get_revocation_store().is_revoked(token):
        logger.warning("Blacklisted token used ip=%s path=%s method=%s", ip, path, method)
        raise _reject(TokenRevokedError())
    try:
        claims = decode_access_token(token)
        user = CurrentUser.from_claims(claims, token)
    except TokenTooOldError as e:
        logger.warning(
            "Token too old user_id=%s token_age=%.0f ip=%s path=%s method=%s",
            e.user_id,
            e.token_age or 0,
            ip,
            path,
            method,
        )
        raise _reject(e)
    except Exception as e:
        logger.warning(
            "Authentication failed error=%s ip=%s path=%s method=%s user_agent=%s",
            type(e).__name__,
            ip,
            path,
            method,
            request.headers.get("user-agent"),
        )
        if isinstance(e, TokenVerificationError):
            raise _reject(e)
        raise _reject(AuthenticationFailedError()) from e
    request.state.user = user
    request.state.token = token
    return user


async def get_current_user(request: Request) -> CurrentUser:
    token = extract_token(request)
    if not token:
        logger.warning(
            "No token provided ip=%s path=%s method=%s", client_ip(request), request.url.path, request.method
        )
        raise _reject(NoTokenError())
    return _authenticate(request, token)


async def get_optional_user(request: Request) -> CurrentUser | None:
    """Like get_current_user, but a missing, revoked or invalid token just means anonymous."""
    token = extract_token(request)
    if not token:
        return None
    try:
        return _authenticate(request, token)
    except AuthError:
        return None


def check_role(user: CurrentUser | None, roles: tuple[str, ...]) -> CurrentUser:
    if user is None:
        raise AuthenticationRequiredError()
    if not user.role or user.role not in roles:
        logger.warning(
            "Unauthorized role access attempt user_id=%s user_role=%s required_roles=%s",
            user.id,
            user.role,
            ",".join(roles),
        )
        raise _reject(InsufficientRoleError())
    return user


def require_role(*roles: str):
    """Dependency factory: authenticated user whose role is one of ``roles``, else 403."""

    async def _require_role(user: Annotated[CurrentUser, Depends(get_current_user)]) -> CurrentUser:
        return check_role(user, roles)

    return _require_role
