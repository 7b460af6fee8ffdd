"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Canvas Auth happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET).

  TokenConfig: the signing secrets and TTLs leave this module as one frozen
      dataclass. auth/tokens.py is constructed from it and never touches the
      environment itself.

Security notes:
  [M6] Secrets shorter than 32 chars are rejected outright.
  [M7] Outside DEBUG, a missing JWT_SECRET or JWT_REFRESH_SECRET is a hard
       startup failure. The two secrets must differ, otherwise a refresh token
       would verify as an access token and vice versa.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("canvasauth.config")

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}

_MIN_SECRET_LENGTH = 32


def parse_duration(value) -> timedelta:
    """Parse a TTL given as "15m", "7d", "3600" or a number of seconds.

    Raises ValueError for anything else, including zero or negative values.
    """
    if isinstance(value, timedelta):
        duration = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        duration = timedelta(seconds=value)
    else:
        match = _DURATION_RE.match(str(value))
        if match is None:
            raise ValueError(f"Invalid duration {value!r}. Use e.g. '900', '15m', '12h' or '7d'.")
        amount, unit = match.groups()
        duration = timedelta(seconds=int(amount) * _DURATION_UNITS[unit])
    if duration <= timedelta(0):
        raise ValueError("Token TTL must be positive.")
    return duration


@dataclass(frozen=True)
class TokenConfig:
    """Immutable signing configuration handed to auth.tokens.TokenService."""

    access_secret: str
    refresh_secret: str
    access_ttl: timedelta = timedelta(minutes=15)
    refresh_ttl: timedelta = timedelta(days=7)
    algorithm: str = "HS256"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments (DEBUG=true) without a real .env file. The model_validator
    enforces production-safety rules at startup.
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
    app_version: str = "1.0.0"
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000"]

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev secret or raises.
    jwt_secret: str = ""
    jwt_refresh_secret: str = ""
    jwt_expires_in: timedelta = timedelta(minutes=15)
    jwt_refresh_expires_in: timedelta = timedelta(days=7)

    # ------------------------------------------------------------------
    # Credential store
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///canvas_auth.db"
    db_pool_size: int = 10
    db_pool_timeout: float = 5.0
    db_statement_timeout: float = 5.0

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    hash_workers: int = 4

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    signup_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("jwt_expires_in", "jwt_refresh_expires_in", mode="before")
    @classmethod
    def _parse_ttl(cls, value):
        return parse_duration(value)

    @field_validator("bcrypt_rounds")
    @classmethod
    def _check_rounds(cls, value: int) -> int:
        # bcrypt.gensalt() accepts 4..31
        if not 4 <= value <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return value

    @field_validator("db_pool_size", "hash_workers")
    @classmethod
    def _check_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Pool sizes must be at least 1.")
        return value

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing-secret policy [M6, M7].

        Dev mode (DEBUG=true): auto-generate missing secrets with a warning.
            Issued tokens will not survive a restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.

        Both modes: reject short secrets and identical access/refresh secrets.
        """
        for name in ("jwt_secret", "jwt_refresh_secret"):
            if not getattr(self, name):
                if self.debug:
                    setattr(self, name, secrets.token_hex(32))
                    logger.warning(
                        "Using auto-generated %s. Tokens will not persist across restarts.", name.upper()
                    )
                else:
                    raise ValueError(
                        f"{name.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
            if len(getattr(self, name)) < _MIN_SECRET_LENGTH:
                raise ValueError(f"{name.upper()} must be at least {_MIN_SECRET_LENGTH} characters.")
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must be different.")
        return self

    def token_config(self) -> TokenConfig:
        """Snapshot the signing secrets and TTLs as an immutable TokenConfig."""
        return TokenConfig(
            access_secret=self.jwt_secret,
            refresh_secret=self.jwt_refresh_secret,
            access_ttl=self.jwt_expires_in,
            refresh_ttl=self.jwt_refresh_expires_in,
        )


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
