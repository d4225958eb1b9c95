"""Password hashing and JWT creation/verification."""

import hashlib
import time
import uuid
from typing import Any

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from taskflow.config import settings
from taskflow.core.errors import (
    MissingClaimsError,
    TokenExpiredError,
    TokenMalformedError,
    TokenNotYetValidError,
    TokenTooOldError,
    TokenVerificationError,
)

JWT_ALGORITHM = "HS256"
JWT_ISSUER = "taskflow-api"
JWT_AUDIENCE = "taskflow-client"
REFRESH_TOKEN_TYPE = "refresh"

# Registered claims jose must find before it validates them
_REQUIRED_OPTIONS = {
    "require_exp": True,
    "require_iat": True,
    "require_iss": True,
    "require_aud": True,
    "verify_nbf": False,  # checked below so it maps to its own error kind
}


def hash_password(password: str) -> str:
    """Hash password with bcrypt. Bytes truncated to 72 (bcrypt limit)."""
    pwd_bytes = password.encode("utf-8")[:72]
    hashed = bcrypt.hashpw(pwd_bytes, bcrypt.gensalt(rounds=settings.bcrypt_rounds))
    return hashed.decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify password with bcrypt. Plain password truncated to 72 bytes."""
    plain_bytes = plain_password.encode("utf-8")[:72]
    return bcrypt.checkpw(plain_bytes, password_hash.encode("utf-8"))


# Built once at import so every unknown-email login costs exactly one bcrypt check
_DUMMY_HASH = hash_password(uuid.uuid4().hex)


def verify_password_against_nothing(plain_password: str) -> bool:
    """Spend one bcrypt check when no user matched, so login timing does not reveal unknown emails."""
    verify_password(plain_password, _DUMMY_HASH)
    return False


def token_fingerprint(token: str) -> str:
    """SHA256 hex digest of a raw token; used wherever a token must be stored or logged."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _encode(claims: dict[str, Any], key: str) -> str:
    result = jwt.encode(claims, key, algorithm=JWT_ALGORITHM)
    return result if isinstance(result, str) else result.decode("utf-8")


def create_access_token(user_id: int, email: str, role: str | None = None) -> str:
    now = int(time.time())
    claims: dict[str, Any] = {
        "id": user_id,
        "email": email,
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
        "iat": now,
        "jti": str(uuid.uuid4()),
        "exp": now + settings.access_token_expire_seconds,
    }
    if role:
        claims["role"] = role
    return _encode(claims, settings.jwt_secret)


def create_refresh_token(user_id: int, email: str) -> str:
    now = int(time.time())
    claims = {
        "id": user_id,
        "email": email,
        "type": REFRESH_TOKEN_TYPE,
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
        "iat": now,
        "jti": str(uuid.uuid4()),
        "exp": now + settings.refresh_token_expire_seconds,
    }
    return _encode(claims, settings.effective_refresh_secret)


def _decode(token: str, key: str) -> dict[str, Any]:
    """Signature, algorithm, issuer, audience and expiry in one jose call."""
    try:
        claims = jwt.decode(
            token,
            key,
            algorithms=[JWT_ALGORITHM],
            audience=JWT_AUDIENCE,
            issuer=JWT_ISSUER,
            options=_REQUIRED_OPTIONS,
        )
    except ExpiredSignatureError as e:
        raise TokenExpiredError() from e
    except JWTError as e:
        raise TokenMalformedError() from e
    except (TypeError, ValueError, AttributeError) as e:
        # jose lets some garbage inputs (non-object payloads, odd padding) escape as plain errors
        raise TokenMalformedError() from e

    nbf = claims.get("nbf")
    if nbf is not None:
        try:
            not_before = float(nbf)
        except (TypeError, ValueError) as e:
            raise TokenMalformedError() from e
        if not_before > time.time():
            raise TokenNotYetValidError()

    if not claims.get("id") or not claims.get("email"):
        raise MissingClaimsError()
    return claims


def decode_access_token(token: str) -> dict[str, Any]:
    """Verify an access token; raises a TokenVerificationError subclass per failure kind."""
    claims = _decode(token, settings.jwt_secret)
    if claims.get("type") == REFRESH_TOKEN_TYPE:
        raise TokenMalformedError()
    token_age = time.time() - float(claims["iat"])
    if token_age > settings.token_max_age_seconds:
        raise TokenTooOldError(user_id=claims.get("id"), token_age=token_age)
    return claims


def decode_access_token_optional(token: str | None) -> dict[str, Any] | None:
    """Same checks as decode_access_token, but returns None instead of raising."""
    if not token:
        return None
    try:
        return decode_access_token(token)
    except TokenVerificationError:
        return None


def decode_refresh_token(token: str) -> dict[str, Any]:
    claims = _decode(token, settings.effective_refresh_secret)
    if claims.get("type") != REFRESH_TOKEN_TYPE:
        raise TokenMalformedError()
    return claims
