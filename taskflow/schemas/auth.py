"""Pydantic schemas for register/login/refresh and the sanitized user view."""

import re

from pydantic import BaseModel, Field, field_validator

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_NAME_RE = re.compile(r"^[A-Za-z\s]+$")
_PASSWORD_SPECIALS = "@$!%*?&"


def _normalize_email(value: str) -> str:
    email = (value or "").strip().lower()
    if not _EMAIL_RE.match(email):
        raise ValueError("Valid email is required")
    return email


class RegisterBody(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    email: str = Field(max_length=255)
    password: str = Field(min_length=8, max_length=128)

    @field_validator("name")
    @classmethod
    def _check_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2 or not _NAME_RE.match(v):
            raise ValueError("Name can only contain letters and spaces")
        return v

    @field_validator("email")
    @classmethod
    def _check_email(cls, v: str) -> str:
        return _normalize_email(v)

    @field_validator("password")
    @classmethod
    def _check_password(cls, v: str) -> str:
        if not (
            any(c.islower() for c in v)
            and any(c.isupper() for c in v)
            and any(c.isdigit() for c in v)
            and any(c in _PASSWORD_SPECIALS for c in v)
        ):
            raise ValueError("Password must contain uppercase, lowercase, number and special character")
        return v


class LoginBody(BaseModel):
    email: str = Field(max_length=255)
    password: str = Field(min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def _check_email(cls, v: str) -> str:
        return (v or "").strip().lower()


class RefreshBody(BaseModel):
    refresh_token: str | None = None


class UserOut(BaseModel):
    id: int
    name: str
    email: str


class AuthResponse(BaseModel):
    """Tokens are only present when the API runs with header transport."""

    message: str
    user: UserOut
    access_token: str | None = None
    refresh_token: str | None = None
    token_type: str | None = None
    expires_in: int  # seconds until access token expires


class MessageResponse(BaseModel):
    message: str


class CsrfTokenResponse(BaseModel):
    csrf_token: str
