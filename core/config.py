"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for TenantAuth happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Used for the DEBUG-conditional signing secret policy and to
      resolve duration strings ("15m", "7d") into seconds exactly once.

Security notes:
  [M6] Signing secrets shorter than 32 chars are rejected outright.

  [M7] In production mode (DEBUG not set or false), a missing JWT_SECRET or
       JWT_REFRESH_SECRET is a hard startup failure.

  [T1] Access and refresh tokens are signed with different secrets. Identical
       values are rejected so a captured access token can never verify as a
       refresh token.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import re
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tenantauth.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'tenantauth.db'}"

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: str | int) -> int:
    """Resolve a duration option into seconds.

    Accepts bare integers (seconds) and the short forms used by the token
    settings: "900s", "15m", "12h", "7d". Raises ValueError on anything else
    so a typo in the environment fails at startup instead of at first login.
    """
    if isinstance(value, int):
        if value <= 0:
            raise ValueError(f"Duration must be positive, got {value!r}")
        return value
    match = _DURATION_RE.match(value)
    if match is None:
        raise ValueError(f"Invalid duration {value!r}; expected e.g. '15m', '7d', '3600'")
    amount, unit = match.groups()
    seconds = int(amount) * _UNIT_SECONDS[unit]
    if seconds <= 0:
        raise ValueError(f"Duration must be positive, got {value!r}")
    return seconds


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
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
    frontend_url: str = "http://localhost:5173"
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev secret or raises, so callers never see "".
    jwt_secret: str = ""
    jwt_refresh_secret: str = ""
    jwt_expiration: str = "15m"
    jwt_refresh_expiration: str = "7d"

    # Resolved by the validator from the two duration strings above.
    access_ttl_seconds: int = 0
    refresh_ttl_seconds: int = 0

    # ------------------------------------------------------------------
    # Passwords and one-time tokens
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    verification_token_ttl_hours: int = 24
    invitation_ttl_days: int = 7

    # ------------------------------------------------------------------
    # Sessions and registration
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    # "approval": register returns a pending message, no tokens.
    # "auto_login": register returns a full auth response.
    registration_mode: str = "approval"
    # New OAuth accounts are created ACTIVE and logged in when true.
    oauth_auto_approve: bool = False

    # ------------------------------------------------------------------
    # OAuth providers (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    github_client_id: str = ""
    github_client_secret: str = ""

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "5/15minutes"
    register_rate_limit: str = "3/hour"
    refresh_rate_limit: str = "10/15minutes"
    resend_rate_limit: str = "3/15minutes"
    accept_invitation_rate_limit: str = "5/hour"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing secret policy [M6][M7][T1].

        Dev mode (DEBUG=true): auto-generate random secrets with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.
        """
        for field in ("jwt_secret", "jwt_refresh_secret"):
            if not getattr(self, field):
                if self.debug:
                    setattr(self, field, secrets.token_hex(32))
                    logger.warning(
                        "Using auto-generated %s. Sessions will not persist across restarts.", field.upper()
                    )
                else:
                    raise ValueError(
                        f"{field.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
            if len(getattr(self, field)) < 32:
                raise ValueError(f"{field.upper()} must be at least 32 characters.")
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must be different.")
        return self

    @model_validator(mode="after")
    def resolve_durations(self) -> "Settings":
        """Resolve the token duration strings into seconds once, at startup."""
        self.access_ttl_seconds = parse_duration(self.jwt_expiration)
        self.refresh_ttl_seconds = parse_duration(self.jwt_refresh_expiration)
        if self.registration_mode not in ("approval", "auto_login"):
            raise ValueError("REGISTRATION_MODE must be 'approval' or 'auto_login'.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
