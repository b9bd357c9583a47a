"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the identity service happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. Only the
      app wiring (api/main.py, main.py) calls it.

  Explicit config struct: the credential components (TokenSigner,
      ConfirmationCodeEngine, RefreshTokenManager) never read Settings. They
      receive a frozen SessionConfig at construction, built by
      Settings.session_config(). Tests build SessionConfig directly.

  @model_validator(mode="after"): DEBUG-conditional SECRET_KEY logic. Dev mode
      generates a key with a warning, production mode refuses to start without
      one.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. Access tokens are
  HMAC-SHA256 signed with it -- a short key weakens every issued token.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("identity.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'identity.db'}"


@dataclass(frozen=True)
class SessionConfig:
    """Secrets and lifetimes shared by the credential components."""

    secret_key: str
    access_token_lifetime: int = 900  # seconds
    code_ttl: int = 300  # seconds
    hash_rounds: int = 12  # bcrypt cost factor


class Settings(BaseSettings):
    """Identity service settings, read from the environment and an optional .env file.

    Every field has a default, so Settings() builds without a .env file as
    long as DEBUG=true or SECRET_KEY is provided. Field names map to upper-case
    variables: smtp_host <- SMTP_HOST, code_ttl_seconds <- CODE_TTL_SECONDS.
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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    log_level: str = "INFO"
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    access_token_lifetime_seconds: int = Field(default=900, gt=0)
    code_ttl_seconds: int = Field(default=300, gt=0)
    hash_rounds: int = Field(default=12, ge=4, le=31)
    code_purge_interval_seconds: int = Field(default=600, gt=0)

    # ------------------------------------------------------------------
    # Outbound email (SMTP). Empty host means delivery is not configured;
    # every send then fails with EmailDispatchError.
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_timeout_seconds: float = Field(default=10.0, gt=0)
    email_from: str = "no-reply@localhost"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Apply the signing-key policy.

        With DEBUG=true a missing key is replaced by a random one, so access
        tokens stop verifying after a restart. Without DEBUG a missing key is
        fatal. A key under 32 characters is refused in every mode.
        """
        if not self.secret_key and self.debug:
            self.secret_key = secrets.token_hex(32)
            logger.warning("SECRET_KEY not set; generated a throwaway signing key for this process")
        elif not self.secret_key:
            raise ValueError("SECRET_KEY is required unless DEBUG=true (access tokens are signed with it).")
        if len(self.secret_key) < 32:
            raise ValueError(f"SECRET_KEY must be at least 32 characters, got {len(self.secret_key)}.")
        return self

    def session_config(self) -> SessionConfig:
        """Build the explicit config struct handed to the credential components."""
        return SessionConfig(
            secret_key=self.secret_key,
            access_token_lifetime=self.access_token_lifetime_seconds,
            code_ttl=self.code_ttl_seconds,
            hash_rounds=self.hash_rounds,
        )


@lru_cache
def get_settings() -> Settings:
    """Build Settings on first call and return the cached instance afterwards.

    Code that changes environment variables after startup must call
    get_settings.cache_clear() to see them.
    """
    return Settings()
