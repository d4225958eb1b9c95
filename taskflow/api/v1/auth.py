"""Auth: register, login, logout, refresh, me, csrf."""

import logging
import time
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.api.deps import CurrentUser, get_current_user, get_optional_user
from taskflow.config import settings
from taskflow.core.auth import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    hash_password,
    verify_password,
    verify_password_against_nothing,
)
from taskflow.core.csrf import client_ip, generate_csrf_token
from taskflow.core.errors import (
    AuthenticationFailedError,
    EmailConflictError,
    InvalidCredentialsError,
    NoTokenError,
    TokenRevokedError,
    TokenVerificationError,
)
from taskflow.core.metrics import AUTH_ATTEMPTS
from taskflow.core.rate_limit import auth_rate_limit, limiter
from taskflow.core.revocation import get_revocation_store
from taskflow.db.session import get_db
from taskflow.models.user import User
from taskflow.schemas.auth import (
    AuthResponse,
    CsrfTokenResponse,
    LoginBody,
    MessageResponse,
    RefreshBody,
    RegisterBody,
    UserOut,
)
from taskflow.services.audit import log_action

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])

REFRESH_COOKIE_PATH = "/api/v1/auth"


def _set_auth_cookies(response: Response, access_token: str, refresh_token: str) -> None:
    response.set_cookie(
        settings.auth_cookie_name,
        access_token,
        max_age=settings.access_token_expire_seconds,
        path="/",
        secure=settings.cookie_secure,
        httponly=True,
        samesite="strict",
    )
    response.set_cookie(
        settings.refresh_cookie_name,
        refresh_token,
        max_age=settings.refresh_token_expire_seconds,
        path=REFRESH_COOKIE_PATH,
        secure=settings.cookie_secure,
        httponly=True,
        samesite="strict",
    )


def _clear_auth_cookies(response: Response) -> None:
    response.delete_cookie(
        settings.auth_cookie_name,
        path="/",
        secure=settings.cookie_secure,
        httponly=True,
        samesite="strict",
    )
    response.delete_cookie(
        settings.refresh_cookie_name,
        path=REFRESH_COOKIE_PATH,
        secure=settings.cookie_secure,
        httponly=True,
        samesite="strict",
    )


def _issue_session(response: Response, user: User, message: str) -> AuthResponse:
    """Mint access + refresh tokens and deliver them per the configured transport."""
    access_token = create_access_token(user.id, user.email)
    refresh_token = create_refresh_token(user.id, user.email)
    out = AuthResponse(
        message=message,
        user=UserOut(id=user.id, name=user.name, email=user.email),
        expires_in=settings.access_token_expire_seconds,
    )
    if settings.auth_token_transport == "header":
        out.access_token = access_token
        out.refresh_token = refresh_token
        out.token_type = "bearer"
    else:
        _set_auth_cookies(response, access_token, refresh_token)
    return out


@router.post(
    "/register",
    response_model=AuthResponse,
    response_model_exclude_none=True,
    status_code=201,
    summary="Register a new user",
    responses={
        403: {"description": "CSRF token missing or invalid"},
        409: {"description": "Email already registered"},
    },
)
@limiter.limit(auth_rate_limit)
async def register(
    request: Request,
    response: Response,
    session: Annotated[AsyncSession, Depends(get_db)],
    body: RegisterBody,
) -> AuthResponse:
    r = await session.execute(select(User).where(User.email == body.email))
    if r.scalar_one_or_none() is not None:
        AUTH_ATTEMPTS.labels(type="register", status="failure").inc()
        raise EmailConflictError()
    user = User(name=body.name, email=body.email, password_hash=hash_password(body.password))
    session.add(user)
    try:
        await session.flush()
    except IntegrityError as e:
        logger.warning("Register IntegrityError: %s", type(e).__name__)
        AUTH_ATTEMPTS.labels(type="register", status="failure").inc()
        raise EmailConflictError() from e
    await log_action(session, user_id=user.id, action="register", resource="user", resource_id=user.id, request=request)
    await session.commit()
    AUTH_ATTEMPTS.labels(type="register", status="success").inc()
    logger.info("User registered user_id=%s", user.id)
    return _issue_session(response, user, "User created successfully")


@router.post(
    "/login",
    response_model=AuthResponse,
    response_model_exclude_none=True,
    summary="Login with email and password",
    responses={
        401: {"description": "Invalid credentials"},
        403: {"description": "CSRF token missing or invalid"},
    },
)
@limiter.limit(auth_rate_limit)
async def login(
    request: Request,
    response: Response,
    session: Annotated[AsyncSession, Depends(get_db)],
    body: LoginBody,
) -> AuthResponse:
    r = await session.execute(select(User).where(User.email == body.email))
    user = r.scalar_one_or_none()
    if user is None:
        valid = verify_password_against_nothing(body.password)
    else:
        valid = verify_password(body.password, user.password_hash)
    if not valid:
        AUTH_ATTEMPTS.labels(type="login", status="failure").inc()
        logger.warning("Login failed ip=%s", client_ip(request))
        raise InvalidCredentialsError()
    await log_action(session, user_id=user.id, action="login", resource="user", resource_id=user.id, request=request)
    await session.commit()
    AUTH_ATTEMPTS.labels(type="login", status="success").inc()
    logger.info("User logged in user_id=%s", user.id)
    return _issue_session(response, user, "Login successful")


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Revoke the current session and clear auth cookies",
    responses={403: {"description": "CSRF token missing or invalid"}},
)
async def logout(
    request: Request,
    response: Response,
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[CurrentUser | None, Depends(get_optional_user)],
) -> MessageResponse:
    """Always succeeds. Blacklists the presented access token and refresh cookie when present."""
    store = get_revocation_store()
    if user is not None:
        store.blacklist(user.token)
    refresh_token = request.cookies.get(settings.refresh_cookie_name)
    if refresh_token:
        store.blacklist(refresh_token, ttl_seconds=settings.refresh_token_expire_seconds)
    _clear_auth_cookies(response)
    if user is not None:
        await log_action(session, user_id=user.id, action="logout", resource="user", resource_id=user.id, request=request)
        await session.commit()
    logger.info("User logged out user_id=%s", user.id if user else None)
    return MessageResponse(message="Logout successful")


@router.post(
    "/refresh",
    response_model=AuthResponse,
    response_model_exclude_none=True,
    summary="Exchange refresh token for new access and refresh tokens",
    responses={
        401: {"description": "Refresh token missing, revoked, invalid or expired"},
        403: {"description": "CSRF token missing or invalid"},
    },
)
@limiter.limit(auth_rate_limit)
async def refresh_tokens(
    request: Request,
    response: Response,
    session: Annotated[AsyncSession, Depends(get_db)],
    body: RefreshBody | None = None,
) -> AuthResponse:
    """Rotation: the presented refresh token is blacklisted once exchanged."""
    token = request.cookies.get(settings.refresh_cookie_name)
    if not token and body is not None and body.refresh_token:
        token = body.refresh_token.strip()
    if not token:
        AUTH_ATTEMPTS.labels(type="refresh", status="failure").inc()
        raise NoTokenError()
    try:
        claims = decode_refresh_token(token)
    except TokenVerificationError as e:
        AUTH_ATTEMPTS.labels(type="refresh", status="failure").inc()
        logger.warning("Refresh failed error=%s ip=%s", type(e).__name__, client_ip(request))
        raise
    # Check and revoke in one step, before any await, so concurrent replays lose
    remaining = int(float(claims["exp"]) - time.time())
    if not get_revocation_store().consume(token, ttl_seconds=max(remaining, 0)):
        AUTH_ATTEMPTS.labels(type="refresh", status="failure").inc()
        logger.warning("Revoked refresh token used ip=%s user_id=%s", client_ip(request), claims.get("id"))
        raise TokenRevokedError()
    user = await session.get(User, int(claims["id"]))
    if user is None:
        AUTH_ATTEMPTS.labels(type="refresh", status="failure").inc()
        raise AuthenticationFailedError()
    await log_action(session, user_id=user.id, action="refresh", resource="user", resource_id=user.id, request=request)
    await session.commit()
    AUTH_ATTEMPTS.labels(type="refresh", status="success").inc()
    return _issue_session(response, user, "Token refreshed")


@router.get(
    "/me",
    response_model=UserOut,
    summary="Get current authenticated user",
    responses={
        401: {"description": "Not authenticated or invalid token"},
        404: {"description": "User no longer exists"},
    },
)
async def me(
    session: Annotated[AsyncSession, Depends(get_db)],
    current: Annotated[CurrentUser, Depends(get_current_user)],
) -> UserOut:
    user = await session.get(User, current.id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return UserOut(id=user.id, name=user.name, email=user.email)


@router.get(
    "/csrf",
    response_model=CsrfTokenResponse,
    summary="Get the CSRF token to echo in the X-CSRF-Token header",
)
async def csrf_token(request: Request) -> CsrfTokenResponse:
    """The CSRF middleware sets the cookie; this exposes the same value to non-browser clients."""
    token = getattr(request.state, "csrf_token", None) or request.cookies.get(settings.csrf_cookie_name)
    return CsrfTokenResponse(csrf_token=token or generate_csrf_token())
