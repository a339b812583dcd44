"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for credcore happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates signing secrets with a warning, production
      mode refuses to start without them.

Signing secrets are never read by the token code directly. api/main.py builds
a TokenIssuer from these values at startup and hands it to AuthService.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("credcore.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'credcore.db'}"

_MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (DEBUG=true is still required so the
    signing secrets can be generated).
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
    database_url: str = _DEFAULT_DB_URL
    # Applied as the SQLite busy timeout and the connection pool timeout.
    store_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured".
    access_token_secret: str = ""
    # Empty means "reuse access_token_secret".
    refresh_token_secret: str = ""
    jwt_algorithm: str = "HS256"
    access_token_ttl_seconds: int = 15 * 60
    refresh_token_ttl_seconds: int = 7 * 24 * 60 * 60

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # OTP
    # ------------------------------------------------------------------

    otp_ttl_seconds: int = 5 * 60
    otp_length: int = 6
    otp_purge_interval_seconds: int = 60 * 60

    # ------------------------------------------------------------------
    # Wallet linking
    # ------------------------------------------------------------------

    wallet_nonce_bytes: int = 32

    # ------------------------------------------------------------------
    # Email delivery (empty smtp_host = log-only delivery, dev mode only)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_timeout_seconds: float = 10.0
    email_from: str = "no-reply@localhost"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    otp_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing-secret policy.

        Dev mode (DEBUG=true): auto-generate a random access secret with a
            warning. Tokens will not survive a restart.

        Production mode: refuse to start without ACCESS_TOKEN_SECRET.

        Both modes: reject secrets shorter than 32 characters. An empty
            REFRESH_TOKEN_SECRET falls back to the access secret.
        """
        if not self.access_token_secret:
            if self.debug:
                self.access_token_secret = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated ACCESS_TOKEN_SECRET. " "Tokens will not persist across restarts."
                )
            else:
                raise ValueError(
                    "ACCESS_TOKEN_SECRET is required in production mode. "
                    "Set ACCESS_TOKEN_SECRET in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if not self.refresh_token_secret:
            self.refresh_token_secret = self.access_token_secret
        for name in ("access_token_secret", "refresh_token_secret"):
            if len(getattr(self, name)) < _MIN_SECRET_LENGTH:
                raise ValueError(f"{name.upper()} must be at least {_MIN_SECRET_LENGTH} characters.")
        return self

    @model_validator(mode="after")
    def validate_otp(self) -> "Settings":
        if not 4 <= self.otp_length <= 10:
            raise ValueError("OTP_LENGTH must be between 4 and 10 digits.")
        if self.otp_ttl_seconds <= 0:
            raise ValueError("OTP_TTL_SECONDS must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
