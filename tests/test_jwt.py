"""Unit tests for the token codec: round trip, algorithm pinning, and each failure kind."""

import base64
import json
import time
from unittest.mock import patch

import pytest
from jose import jwt

from taskflow.config import settings
from taskflow.core import auth as auth_module
from taskflow.core.auth import (
    JWT_AUDIENCE,
    JWT_ISSUER,
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_access_token_optional,
    decode_refresh_token,
    hash_password,
    token_fingerprint,
    verify_password,
    verify_password_against_nothing,
)
from taskflow.core.errors import (
    MissingClaimsError,
    TokenExpiredError,
    TokenMalformedError,
    TokenNotYetValidError,
    TokenTooOldError,
)

DAY = 24 * 60 * 60


def _claims(**overrides):
    now = int(time.time())
    claims = {
        "id": 7,
        "email": "u@example.com",
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
        "iat": now,
        "jti": "test-jti",
        "exp": now + 3600,
    }
    claims.update(overrides)
    return {k: v for k, v in claims.items() if v is not None}


def _sign(claims, key=None, algorithm="HS256"):
    return jwt.encode(claims, key or settings.jwt_secret, algorithm=algorithm)


def _b64(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()


def test_create_and_decode_token_roundtrip():
    token = create_access_token(user_id=42, email="u@example.com")
    assert isinstance(token, str)
    claims = decode_access_token(token)
    assert claims["id"] == 42
    assert claims["email"] == "u@example.com"
    assert claims["iss"] == "taskflow-api"
    assert claims["aud"] == "taskflow-client"
    assert claims["exp"] - claims["iat"] == settings.access_token_expire_seconds
    assert claims["jti"]


def test_tokens_get_unique_ids():
    a = decode_access_token(create_access_token(1, "a@b.com"))
    b = decode_access_token(create_access_token(1, "a@b.com"))
    assert a["jti"] != b["jti"]


def test_role_claim_only_when_given():
    assert "role" not in decode_access_token(create_access_token(1, "a@b.com"))
    assert decode_access_token(create_access_token(1, "a@b.com", role="admin"))["role"] == "admin"


def test_header_pins_hs256():
    token = create_access_token(1, "a@b.com")
    assert jwt.get_unverified_header(token)["alg"] == "HS256"


def test_decode_invalid_signature_raises():
    token = create_access_token(user_id=1, email="a@b.com")
    head, payload, sig = token.split(".")
    bad_token = f"{head}.{payload}.{'A' * len(sig)}"
    with pytest.raises(TokenMalformedError):
        decode_access_token(bad_token)


def test_decode_wrong_key_raises():
    token = create_access_token(user_id=1, email="a@b.com")
    with patch.object(settings, "jwt_secret", "some-other-secret-0123456789abcdef"):
        with pytest.raises(TokenMalformedError):
            decode_access_token(token)


def test_other_hmac_algorithm_rejected():
    token = _sign(_claims(), algorithm="HS512")
    with pytest.raises(TokenMalformedError):
        decode_access_token(token)


def test_alg_none_rejected():
    token = f"{_b64({'alg': 'none', 'typ': 'JWT'})}.{_b64(_claims())}."
    with pytest.raises(TokenMalformedError):
        decode_access_token(token)


def test_garbage_rejected():
    for garbage in ("not-a-jwt", "a.b.c", ""):
        with pytest.raises(TokenMalformedError):
            decode_access_token(garbage)


def test_decode_expired_token_raises():
    now = int(time.time())
    token = _sign(_claims(iat=now - 7200, exp=now - 60))
    with pytest.raises(TokenExpiredError):
        decode_access_token(token)


def test_not_yet_valid_token_raises():
    token = _sign(_claims(nbf=int(time.time()) + 600))
    with pytest.raises(TokenNotYetValidError):
        decode_access_token(token)


@pytest.mark.parametrize("missing", ["id", "email"])
def test_missing_subject_claims_raise(missing):
    token = _sign(_claims(**{missing: None}))
    with pytest.raises(MissingClaimsError):
        decode_access_token(token)


@pytest.mark.parametrize(
    "overrides",
    [{"iss": "someone-else"}, {"aud": "other-client"}, {"aud": None}, {"iss": None}, {"iat": None}],
)
def test_issuer_audience_and_iat_required(overrides):
    token = _sign(_claims(**overrides))
    with pytest.raises(TokenMalformedError):
        decode_access_token(token)


def test_token_older_than_freshness_ceiling_rejected():
    """iat 8 days back with exp still in the future: too old, not expired."""
    now = int(time.time())
    token = _sign(_claims(iat=now - 8 * DAY, exp=now + DAY))
    with pytest.raises(TokenTooOldError) as exc_info:
        decode_access_token(token)
    assert exc_info.value.user_id == 7
    assert exc_info.value.token_age > 7 * DAY


def test_failure_kinds_are_distinct():
    kinds = {
        TokenExpiredError,
        TokenMalformedError,
        TokenNotYetValidError,
        MissingClaimsError,
        TokenTooOldError,
    }
    assert len({k.detail for k in kinds}) == len(kinds)
    assert all(k.status_code == 401 for k in kinds)


def test_decode_optional_never_raises():
    assert decode_access_token_optional(None) is None
    assert decode_access_token_optional("") is None
    assert decode_access_token_optional("garbage") is None
    now = int(time.time())
    assert decode_access_token_optional(_sign(_claims(iat=now - 7200, exp=now - 1))) is None
    token = create_access_token(3, "c@d.com")
    assert decode_access_token_optional(token)["id"] == 3


def test_refresh_token_roundtrip():
    token = create_refresh_token(5, "r@example.com")
    claims = decode_refresh_token(token)
    assert claims["type"] == "refresh"
    assert claims["id"] == 5
    assert claims["exp"] - claims["iat"] == 30 * DAY


def test_refresh_token_cannot_be_used_as_access_token():
    token = create_refresh_token(5, "r@example.com")
    with pytest.raises(TokenMalformedError):
        decode_access_token(token)


def test_access_token_rejected_by_refresh_flow():
    token = create_access_token(5, "r@example.com")
    with pytest.raises(TokenMalformedError):
        decode_refresh_token(token)


def test_refresh_secret_used_when_set():
    with patch.object(settings, "jwt_refresh_secret", "refresh-only-secret-0123456789abcdef"):
        token = create_refresh_token(5, "r@example.com")
        assert decode_refresh_token(token)["id"] == 5
    with pytest.raises(TokenMalformedError):
        decode_refresh_token(token)


def test_password_hash_and_verify():
    hashed = hash_password("Secret123!")
    assert hashed != "Secret123!"
    assert hashed.startswith("$2")
    assert verify_password("Secret123!", hashed)
    assert not verify_password("secret123!", hashed)


def test_fingerprint_is_deterministic_one_way():
    token = create_access_token(1, "a@b.com")
    fp = token_fingerprint(token)
    assert fp == token_fingerprint(token)
    assert len(fp) == 64
    assert token not in fp
    assert fp != token_fingerprint(create_access_token(1, "a@b.com"))


def test_unknown_user_check_never_hashes():
    """The dummy hash exists up front; the unknown-email path only verifies."""
    assert auth_module._DUMMY_HASH.startswith("$2")
    with patch.object(auth_module.bcrypt, "hashpw") as hashpw:
        assert verify_password_against_nothing("Secret123!") is False
        assert verify_password_against_nothing("Secret123!") is False
    hashpw.assert_not_called()
