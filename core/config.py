"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for ProjectGate happen here. No module should
call os.getenv() or os.environ.get() directly. The Settings object is built
once at startup and handed to the constructors that need it (AuthStore,
PasswordHasher, SessionStore, create_app).

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. Only the
      process entry points (asgi.py, main.py) call it; everything below them
      receives the instance as a constructor argument.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. session_secret -> SESSION_SECRET). Type coercion and validation are
      built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Used to implement the ENV-conditional
      SESSION_SECRET policy.

Security notes:
  [S1] In production (ENV=production) a missing SESSION_SECRET, or one equal
       to the development fallback, is a hard startup failure. The fallback
       exists only so a fresh checkout runs locally without a .env file.

  [S2] SESSION_SECRET protects the cookie transport (it signs the cookie
       value). It is not the session capability itself -- that is the opaque
       token stored in the sessions table.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from datetime import timedelta
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("projectgate.config")

# Development-only fallback. Never valid when ENV=production [S1].
DEV_SESSION_SECRET = "dev-session-secret-change-in-production"

SESSION_TTL = timedelta(days=7)

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'projectgate.db'}"


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

    env: str = "development"
    # Empty string is the sentinel for "not configured". The model_validator
    # below either substitutes the dev fallback or raises.
    session_secret: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # bcrypt work factor. 4 is bcrypt's floor, 31 its ceiling.
    bcrypt_cost: int = Field(default=14, ge=4, le=31)
    session_ttl_seconds: int = Field(default=int(SESSION_TTL.total_seconds()), gt=0)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    purge_interval_seconds: int = Field(default=6 * 60 * 60, gt=0)

    @property
    def is_production(self) -> bool:
        return self.env.strip().lower() == "production"

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(seconds=self.session_ttl_seconds)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_session_secret(self) -> "Settings":
        """Enforce the SESSION_SECRET policy [S1].

        Development: fall back to DEV_SESSION_SECRET with a warning.
        Production: refuse to start without an explicit secret.
        """
        if self.is_production:
            if not self.session_secret or self.session_secret == DEV_SESSION_SECRET:
                raise ValueError(
                    "SESSION_SECRET is required when ENV=production. "
                    "Set SESSION_SECRET in your environment or .env file."
                )
        elif not self.session_secret:
            self.session_secret = DEV_SESSION_SECRET
            logger.warning("SESSION_SECRET not set -- using the development fallback secret.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: construct Settings(...) directly and pass it to create_app(),
    or call get_settings.cache_clear() after changing the environment.
    """
    return Settings()
