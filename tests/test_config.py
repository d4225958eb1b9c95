"""Settings: production secret checks and derived values."""

import pytest

from taskflow.config import DEFAULT_JWT_SECRET, Settings

STRONG = "x" * 32


def _settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


def test_non_production_accepts_default_secret():
    _settings(app_env="development", jwt_secret=DEFAULT_JWT_SECRET).validate_jwt_config()


@pytest.mark.parametrize("secret", [DEFAULT_JWT_SECRET, "short-secret"])
def test_production_rejects_weak_secret(secret):
    with pytest.raises(RuntimeError):
        _settings(app_env="production", jwt_secret=secret).validate_jwt_config()


def test_production_rejects_short_refresh_secret():
    with pytest.raises(RuntimeError):
        _settings(app_env="production", jwt_secret=STRONG, jwt_refresh_secret="short").validate_jwt_config()


def test_production_with_strong_secret():
    s = _settings(app_env="production", jwt_secret=STRONG)
    s.validate_jwt_config()
    assert s.cookie_secure
    assert s.effective_refresh_secret == STRONG


def test_derived_values():
    s = _settings(
        app_env="development",
        database_url="postgresql+asyncpg://u:p@db/taskflow",
        access_token_expire_minutes=15,
        refresh_token_expire_days=2,
    )
    assert not s.cookie_secure
    assert s.access_token_expire_seconds == 900
    assert s.refresh_token_expire_seconds == 2 * 86400
    assert s.sync_database_url == "postgresql://u:p@db/taskflow"
