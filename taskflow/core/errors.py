"""Authentication and request-gate failures.

Every kind maps to exactly one HTTP status and a user-safe message. Handlers and
dependencies raise them; ``auth_error_handler`` renders them as JSON.
"""

from fastapi import Request
from fastapi.responses import JSONResponse


class AuthError(Exception):
    """Base for failures that terminate the current request."""

    status_code: int = 401
    detail: str = "Authentication failed"
    reason: str = "authentication_failed"

    def __init__(self, detail: str | None = None) -> None:
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class NoTokenError(AuthError):
    detail = "No token provided"
    reason = "no_token"


class TokenRevokedError(AuthError):
    detail = "Token has been revoked"
    reason = "token_revoked"


class TokenVerificationError(AuthError):
    """Raised by the token codec; subclasses distinguish the failure kind."""

    detail = "Authentication failed"
    reason = "verification_failed"


class TokenExpiredError(TokenVerificationError):
    detail = "Token expired"
    reason = "token_expired"


class TokenMalformedError(TokenVerificationError):
    detail = "Invalid token"
    reason = "token_invalid"


class TokenNotYetValidError(TokenVerificationError):
    detail = "Token not yet valid"
    reason = "token_not_yet_valid"


class MissingClaimsError(TokenVerificationError):
    detail = "Invalid token payload"
    reason = "missing_claims"


class TokenTooOldError(TokenVerificationError):
    """Token issued longer ago than the freshness ceiling, regardless of exp."""

    detail = "Token expired, please login again"
    reason = "token_too_old"

    def __init__(self, user_id: int | None = None, token_age: float | None = None) -> None:
        self.user_id = user_id
        self.token_age = token_age
        super().__init__()


class AuthenticationFailedError(AuthError):
    pass


class InvalidCredentialsError(AuthError):
    detail = "Invalid credentials"
    reason = "invalid_credentials"


class AuthenticationRequiredError(AuthError):
    detail = "Authentication required"
    reason = "authentication_required"


class InsufficientRoleError(AuthError):
    status_code = 403
    detail = "Insufficient permissions"
    reason = "insufficient_role"


class CsrfMissingError(AuthError):
    status_code = 403
    detail = "CSRF token missing"
    reason = "csrf_missing"


class CsrfMismatchError(AuthError):
    status_code = 403
    detail = "CSRF token invalid"
    reason = "csrf_invalid"


class EmailConflictError(AuthError):
    status_code = 409
    detail = "User already exists"
    reason = "email_exists"


def error_response(exc: AuthError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    return error_response(exc)
