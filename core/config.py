"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AuthCore happen here. No module should
call os.getenv() or os.environ.get() directly. The API lifespan and the CLI
call get_settings() once and hand the Settings instance to the services they
build; services never reach for the singleton themselves.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Implements the DEBUG-conditional secret policy: dev mode
      generates signing keys with a warning, production refuses to start.

Security notes:
  [M6] Signing secrets shorter than 32 chars are rejected outright.

  [M7] In production mode a missing JWT_SECRET or JWT_REFRESH_SECRET is a hard
       startup failure.

  [M8] Access and refresh tokens must be signed with different secrets, so a
       leaked access-signing key cannot mint refresh tokens (and vice versa).

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authcore.config")

_MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings(debug=True) can be instantiated in
    test environments without a real .env file.
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
    database_url: str = "sqlite:///authcore.db"
    # Base URL of the front end; verification and reset links point here.
    client_url: str = "http://localhost:5173"
    cors_origins: list[str] = ["http://localhost:5173"]

    # ------------------------------------------------------------------
    # Session tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The validator below
    # either generates a dev key or raises, so callers never see "".
    jwt_secret: str = ""
    jwt_refresh_secret: str = ""
    jwt_issuer: str = "authcore"
    jwt_audience: str = "authcore-users"
    # Reference lifetimes: 7 days / 30 days. Hardened deployments shorten the
    # access lifetime to minutes via ACCESS_TOKEN_EXPIRE_SECONDS.
    access_token_expire_seconds: int = 7 * 24 * 3600
    refresh_token_expire_seconds: int = 30 * 24 * 3600

    # ------------------------------------------------------------------
    # Passwords and lockout
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    max_login_attempts: int = 5
    lock_duration_seconds: int = 2 * 3600

    # ------------------------------------------------------------------
    # Ephemeral tokens
    # ------------------------------------------------------------------

    email_verification_ttl_seconds: int = 24 * 3600
    password_reset_ttl_seconds: int = 3600
    token_retention_seconds: int = 24 * 3600

    # ------------------------------------------------------------------
    # Google identity federation (empty client id disables the provider)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_tokeninfo_url: str = "https://oauth2.googleapis.com/tokeninfo"
    provider_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Outbound email
    # ------------------------------------------------------------------

    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_from: str = "no-reply@authcore.local"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_signing_secrets(self) -> "Settings":
        """Enforce the signing-secret policy [M6] [M7] [M8].

        Dev mode (DEBUG=true): auto-generate missing secrets with a warning.
            Issued sessions will not survive a restart.

        Production mode: refuse to start if either secret is missing.
        """
        for field in ("jwt_secret", "jwt_refresh_secret"):
            if getattr(self, field):
                continue
            if self.debug:
                setattr(self, field, secrets.token_hex(32))
                logger.warning("Using auto-generated %s. Sessions will not persist across restarts.", field.upper())
            else:
                raise ValueError(
                    f"{field.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.jwt_secret) < _MIN_SECRET_LENGTH or len(self.jwt_refresh_secret) < _MIN_SECRET_LENGTH:
            raise ValueError(f"JWT secrets must be at least {_MIN_SECRET_LENGTH} characters.")
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must differ.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if self.max_login_attempts < 1:
            raise ValueError("MAX_LOGIN_ATTEMPTS must be at least 1.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables, or build Settings(...) directly
    and pass it to the objects under test.
    """
    return Settings()
