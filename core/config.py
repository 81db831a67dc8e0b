"""
core/config.py -- TokenGate settings, read from the environment by pydantic-settings.

Nothing else in the tree reads os.environ; every component receives its
values from get_settings() at wiring time (api/main.py, main.py).

  Settings fields map 1:1 to env vars (secret_key -> SECRET_KEY) and may
      also come from a .env file. List fields such as PUBLIC_PATHS take JSON.

  get_settings() is cached with lru_cache, so the environment is parsed once
      per process.

  Cross-field rules run in @model_validator(mode="after") hooks: the
      SECRET_KEY policy and positive token/OTP lifetimes.

Security notes:
  SECRET_KEY is the HS256 key for every token. Keys under 32 characters are
  rejected, since a short key can be brute-forced offline from any token.

  The secret is handed to TokenCodec's constructor once. The codec never
  reads settings itself, so tests can build codecs with arbitrary keys.

Layer rule: core/ imports from neither api/ nor auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tokengate.config")

DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'tokengate.db'}"


class Settings(BaseSettings):
    """Runtime configuration for the API, the CLI and the auth components.

    Every field has a default; with DEBUG=true, Settings() needs no
    environment at all.
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
    # Empty string is the sentinel for "not configured".
    secret_key: str = ""
    database_url: str = DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    token_issuer: str = "tokengate"
    token_expire_seconds: int = 3600
    # Clock-skew grace window applied to exp. Zero unless explicitly set.
    token_leeway_seconds: int = 0

    # ------------------------------------------------------------------
    # OTP + mail
    # ------------------------------------------------------------------

    otp_expire_minutes: int = 10
    # Empty smtp_host means "log mail instead of sending" (dev only).
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    mail_from: str = "no-reply@localhost"

    # ------------------------------------------------------------------
    # Access policy
    # ------------------------------------------------------------------

    public_paths: list[str] = ["/api/v1/auth", "/api/v1/health"]
    admin_paths: list[str] = ["/api/v1/admin"]
    allow_admin_registration: bool = False

    # ------------------------------------------------------------------
    # HTTP hardening + rate limiting
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    login_rate_limit: str = "10/minute"
    otp_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Issued tokens will not survive a restart.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_lifetimes(self) -> "Settings":
        if self.token_expire_seconds <= 0:
            raise ValueError("TOKEN_EXPIRE_SECONDS must be positive.")
        if self.otp_expire_minutes <= 0:
            raise ValueError("OTP_EXPIRE_MINUTES must be positive.")
        if self.token_leeway_seconds < 0:
            raise ValueError("TOKEN_LEEWAY_SECONDS must not be negative.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, parsed on first call.

    Tests that change the environment must call get_settings.cache_clear().
    """
    return Settings()
