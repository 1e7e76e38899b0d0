"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the backoffice happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Outside production a missing SECRET_KEY is generated with a
      warning; in production the process refuses to start without one.

Security notes:
  SECRET_KEY keys the HMAC used for session token hashes, invitation token
  hashes and CSRF comparison. Shorter than 32 chars is rejected outright.

  secure_cookies is derived from the environment: every cookie this service
  writes carries the Secure flag in production.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/ or audit/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("backoffice.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'backoffice.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    environment: Literal["development", "test", "production"] = "development"
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Sessions, CSRF, invitations
    # ------------------------------------------------------------------

    session_ttl_seconds: int = 60 * 60 * 24
    csrf_ttl_seconds: int = 60 * 60 * 24
    invite_expiration_days: int = 7
    # Shared secret for the scheduled cleanup job. Empty disables the endpoint.
    cleanup_secret: str = ""
    session_cleanup_interval_seconds: int = 60 * 60

    # ------------------------------------------------------------------
    # CORS -- comma-separated origins; "*.example.com" matches subdomains
    # ------------------------------------------------------------------

    allowed_origins: str = ""

    # ------------------------------------------------------------------
    # Rate limiting (limits string notation)
    # ------------------------------------------------------------------

    login_rate_limit: str = "5 per 15 minutes"
    api_rate_limit: str = "100 per minute"
    upload_rate_limit: str = "10 per minute"
    rate_limit_storage_uri: str = "memory://"

    # ------------------------------------------------------------------
    # Invitation e-mail (optional -- empty key logs the link instead)
    # ------------------------------------------------------------------

    resend_api_key: str = ""
    resend_from: str = "no-reply@backoffice.local"
    public_base_url: str = "http://localhost:4321"

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def secure_cookies(self) -> bool:
        return self.is_production

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("invite_expiration_days", mode="before")
    @classmethod
    def coerce_invite_days(cls, value: object) -> int:
        """Fall back to 7 days for unparsable or non-positive values."""
        try:
            days = int(value)
        except (TypeError, ValueError):
            return 7
        return days if days > 0 else 7

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Outside production: auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production: refuse to start if SECRET_KEY is missing. Every stored
            session and invitation hash is keyed by it, so a random key would
            silently log everybody out on each restart.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug or not self.is_production:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production. "
                    "Set SECRET_KEY in your environment or .env file."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    def origin_list(self) -> list[str]:
        """Split ALLOWED_ORIGINS into a clean list (blank entries dropped)."""
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
