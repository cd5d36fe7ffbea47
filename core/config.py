"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for EventDesk happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_secret -> ACCESS_SECRET).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Development mode generates missing signing secrets with a
      warning; production mode refuses to start without them.

Security notes:
  Access and refresh tokens are signed with two independent secrets. A leaked
  access secret must not be able to mint refresh tokens, so the validator
  rejects identical values.

  Secrets shorter than 32 chars are rejected outright -- HS256 relies on key
  entropy.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or replica/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("eventdesk.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'eventdesk_auth.db'}"


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

    app_env: Literal["development", "production"] = "development"
    database_url: str = _DEFAULT_DB_URL
    client_url: str = "http://localhost:3000"
    disable_logging: bool = False

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the "not configured" sentinel; see validate_secrets().
    access_secret: str = ""
    refresh_secret: str = ""
    access_token_expire_seconds: int = 15 * 60
    refresh_token_expire_days: int = 30
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    # None means "follow app_env": secure in production, plain in development.
    cookie_secure: Optional[bool] = None
    cookie_domain: Optional[str] = None
    cookie_samesite: Literal["strict", "lax"] = "strict"

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_purge_interval_seconds: int = 6 * 60 * 60

    # ------------------------------------------------------------------
    # Secondary store (Convex). Empty URL disables profile sync.
    # ------------------------------------------------------------------

    convex_url: str = ""
    convex_admin_key: str = ""
    replica_timeout_seconds: float = 10.0

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def secure_cookies(self) -> bool:
        if self.cookie_secure is None:
            return self.is_production
        return self.cookie_secure

    @property
    def refresh_token_expire_seconds(self) -> int:
        return self.refresh_token_expire_days * 24 * 60 * 60

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing-secret policy.

        Development: auto-generate a random secret with a warning. Tokens
            will not survive a restart -- acceptable for local work.
        Production: refuse to start if either secret is missing.
        Both: reject secrets shorter than 32 characters and identical
            access/refresh secrets.
        """
        for name in ("access_secret", "refresh_secret"):
            value = getattr(self, name)
            if not value:
                if self.is_production:
                    raise ValueError(
                        f"{name.upper()} is required in production mode. "
                        "Set it in your environment or .env file."
                    )
                setattr(self, name, secrets.token_hex(32))
                logger.warning("Using auto-generated %s. Tokens will not persist across restarts.", name.upper())
            elif len(value) < 32:
                raise ValueError(f"{name.upper()} must be at least 32 characters.")
        if self.access_secret == self.refresh_secret:
            raise ValueError("ACCESS_SECRET and REFRESH_SECRET must differ.")
        return self

    @model_validator(mode="after")
    def validate_lifetimes(self) -> "Settings":
        if not 60 <= self.access_token_expire_seconds <= 24 * 60 * 60:
            raise ValueError("ACCESS_TOKEN_EXPIRE_SECONDS must be between 60 and 86400.")
        if not 1 <= self.refresh_token_expire_days <= 365:
            raise ValueError("REFRESH_TOKEN_EXPIRE_DAYS must be between 1 and 365.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if self.session_purge_interval_seconds < 60:
            raise ValueError("SESSION_PURGE_INTERVAL_SECONDS must be at least 60.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
