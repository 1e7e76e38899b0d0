"""Unit tests for core/config.py -- SECRET_KEY policy and derived values."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings
from conftest import TEST_SECRET


def test_missing_secret_is_generated_outside_production() -> None:
    settings = Settings(secret_key="", environment="development")
    assert len(settings.secret_key) == 64


def test_missing_secret_refused_in_production() -> None:
    with pytest.raises(ValidationError, match="SECRET_KEY is required in production"):
        Settings(secret_key="", environment="production")


def test_short_secret_refused() -> None:
    with pytest.raises(ValidationError, match="at least 32 characters"):
        Settings(secret_key="too-short", environment="development")


def test_secure_cookies_only_in_production() -> None:
    assert Settings(secret_key=TEST_SECRET, environment="production").secure_cookies is True
    assert Settings(secret_key=TEST_SECRET, environment="development").secure_cookies is False


@pytest.mark.parametrize("raw, expected", [("14", 14), (3, 3), ("0", 7), ("-2", 7), ("soon", 7)])
def test_invite_expiration_days_fallback(raw, expected) -> None:
    assert Settings(secret_key=TEST_SECRET, invite_expiration_days=raw).invite_expiration_days == expected


def test_origin_list() -> None:
    settings = Settings(secret_key=TEST_SECRET, allowed_origins="https://a.test, *.b.test,, ")
    assert settings.origin_list() == ["https://a.test", "*.b.test"]


def test_rate_limit_defaults() -> None:
    settings = Settings(secret_key=TEST_SECRET)
    assert settings.login_rate_limit == "5 per 15 minutes"
    assert settings.api_rate_limit == "100 per minute"
    assert settings.upload_rate_limit == "10 per minute"
    assert settings.rate_limit_storage_uri == "memory://"
