"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for VerifyHub happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  Explicit injection: get_settings() is only called at the process edges
      (api/main.py, main.py CLI). The resulting Settings value is handed to
      TokenIssuer, AccountService, AccountStore and the mailer. Nothing under
      auth/ looks configuration up on its own.

      api/main.py reads it twice: at import time for the CORS origins (the
      middleware stack is frozen before the lifespan runs) and in the
      lifespan for everything else. Importing api/main.py therefore fails
      fast without SECRET_KEY outside DEBUG, the same as a failed startup.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Missing mandatory secrets are a hard
      startup failure outside DEBUG mode.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy -- a short key weakens every issued token.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. Same for the SMTP host and sender address: a
       service that cannot deliver OTPs cannot onboard anyone.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("verifyhub.config")

ONE_DAY_SECONDS = 24 * 60 * 60
MIN_TOKEN_EXPIRE_SECONDS = ONE_DAY_SECONDS
MAX_TOKEN_EXPIRE_SECONDS = 7 * ONE_DAY_SECONDS


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file, provided DEBUG=true. The
    model_validator enforces production-safety rules at startup.

    Environment variable name mapping: field names are uppercased automatically.
    E.g. `secret_key` reads from SECRET_KEY, `smtp_host` reads from SMTP_HOST.
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
    database_url: str = "sqlite:///./verifyhub.db"

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    # Bearer token lifetime. Server-side only; clients cannot ask for longer.
    token_expire_seconds: int = MAX_TOKEN_EXPIRE_SECONDS
    otp_expire_seconds: int = 10 * 60
    bcrypt_rounds: int = 10

    # ------------------------------------------------------------------
    # Outbound email (SMTP)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from_email: str = ""
    smtp_use_tls: bool = True
    mail_from_name: str = "VerifyHub"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_allow_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("token_expire_seconds")
    @classmethod
    def validate_token_lifetime(cls, v: int) -> int:
        if not MIN_TOKEN_EXPIRE_SECONDS <= v <= MAX_TOKEN_EXPIRE_SECONDS:
            raise ValueError(
                f"TOKEN_EXPIRE_SECONDS must be between {MIN_TOKEN_EXPIRE_SECONDS} (1 day) "
                f"and {MAX_TOKEN_EXPIRE_SECONDS} (7 days)."
            )
        return v

    @field_validator("otp_expire_seconds")
    @classmethod
    def validate_otp_lifetime(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("OTP_EXPIRE_SECONDS must be positive.")
        return v

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, v: int) -> int:
        if not 4 <= v <= 16:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 16.")
        return v

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce SECRET_KEY and SMTP policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.
            Missing SMTP settings fall back to the console mailer.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY, SMTP_HOST or SMTP_FROM_EMAIL is missing.

        Both modes: reject keys shorter than 32 characters [M6].
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

        if not self.smtp_configured and not self.debug:
            raise ValueError(
                "SMTP_HOST and SMTP_FROM_EMAIL are required in production mode. "
                "To log outgoing mail to the console instead, set DEBUG=true."
            )
        return self

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_from_email)

    @property
    def otp_expire_minutes(self) -> int:
        return max(1, self.otp_expire_seconds // 60)


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    Only the process edges (api/main.py, CLI) should call this; everything else
    receives the Settings value it needs as a constructor argument.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
