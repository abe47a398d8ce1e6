"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Trades Auth happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): Cross-field validation of the two signing
      secrets. Dev mode generates each secret independently with a warning,
      production mode refuses to start without both.

Security notes:
  [M6] Secrets shorter than 32 chars are rejected outright.

  [M8] The refresh secret must be supplied on its own. Deriving it from the
       access secret (e.g. by appending a suffix) means one leaked value
       compromises both token families, so identical secrets are rejected.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import re
import secrets
from datetime import timedelta
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tradesauth.config")

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: str | int) -> timedelta:
    """Parse "15m", "7d", "3600s", "3600" or a bare int (seconds) into a timedelta.

    Raises ValueError on anything else so a typo in the environment fails at
    startup instead of silently issuing tokens with a surprising lifetime.
    """
    if isinstance(value, int):
        return timedelta(seconds=value)
    match = _DURATION_RE.match(str(value).lower())
    if not match:
        raise ValueError(f"Invalid duration {value!r}. Expected e.g. '15m', '7d', '3600'.")
    amount, unit = match.groups()
    return timedelta(seconds=int(amount) * _DURATION_UNITS[unit])


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
    database_url: str = "sqlite:///tradesauth.db"
    # Upper bound on how long a single store call may block. Exceeding it
    # surfaces StoreUnavailableError (retryable) instead of hanging.
    store_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured".
    access_token_secret: str = ""
    refresh_token_secret: str = ""
    access_token_expiry: str = "15m"
    refresh_token_expiry: str = "7d"
    jwt_issuer: str = "trades-platform"
    jwt_audience: str = "trades-users"

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    # A session lives exactly as long as its refresh token (REFRESH_TOKEN_EXPIRY).
    session_cleanup_interval_seconds: int = 3600
    # Signs the Starlette session cookie that carries OAuth state.
    session_middleware_secret: str = ""

    # ------------------------------------------------------------------
    # Password policy
    # ------------------------------------------------------------------

    password_min_length: int = 8
    password_require_uppercase: bool = True
    password_require_lowercase: bool = True
    password_require_numbers: bool = True
    password_require_special: bool = True

    # ------------------------------------------------------------------
    # OAuth providers (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""

    apple_client_id: str = ""
    apple_team_id: str = ""
    apple_key_id: str = ""
    apple_private_key: str = ""

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("access_token_expiry", "refresh_token_expiry")
    @classmethod
    def validate_duration(cls, value: str) -> str:
        parse_duration(value)
        return value

    @field_validator("password_min_length")
    @classmethod
    def validate_min_length(cls, value: int) -> int:
        if value < 1:
            raise ValueError("PASSWORD_MIN_LENGTH must be at least 1.")
        return value

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing-secret policy [M6][M8].

        Dev mode (DEBUG=true): auto-generate each missing secret with its own
            call to secrets.token_hex so the two are never related.

        Production mode: refuse to start if either secret is missing.

        Both modes: reject short secrets and identical access/refresh secrets.
        """
        for name in ("access_token_secret", "refresh_token_secret", "session_middleware_secret"):
            if getattr(self, name):
                continue
            if self.debug:
                setattr(self, name, secrets.token_hex(32))
                logger.warning(
                    "WARNING: Using auto-generated %s. Tokens will not survive restarts.",
                    name.upper(),
                )
            elif name == "session_middleware_secret":
                # Only guards the short-lived OAuth state cookie.
                setattr(self, name, secrets.token_hex(32))
            else:
                raise ValueError(
                    f"{name.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.access_token_secret) < 32 or len(self.refresh_token_secret) < 32:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must be at least 32 characters.")
        if secrets.compare_digest(self.access_token_secret, self.refresh_token_secret):
            raise ValueError("REFRESH_TOKEN_SECRET must be independent of ACCESS_TOKEN_SECRET.")
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def access_token_ttl(self) -> timedelta:
        return parse_duration(self.access_token_expiry)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return parse_duration(self.refresh_token_expiry)


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
