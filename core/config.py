"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for appy happen here. No module should call
os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. The app
      lifespan stores that instance on app.state.settings and every auth
      component receives it explicitly -- no component reaches back into the
      environment at request time.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. auth_strategy -> AUTH_STRATEGY). Type coercion and validation are
      built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates a SECRET_KEY with a
      warning, production mode refuses to start without one.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy -- a short key weakens every token we mint.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
mailer/, or client/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.constants import AuthStrategy

logger = logging.getLogger("appy.config")


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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    project_name: str = "appy API"
    website_name: str = "appy Admin"
    client_url: str = "http://localhost:8080"
    database_url: str = "sqlite:///appy.db"

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    auth_strategy: AuthStrategy = AuthStrategy.REFRESH

    # Duration strings: <int><unit>, unit in s/m/h/d.
    expiration_short: str = "10m"
    expiration_medium: str = "4h"
    expiration_long: str = "730h"

    auth_attempts_for_ip: int = 50
    auth_attempts_for_ip_and_user: int = 5
    lockout_period: int = 30  # minutes

    # ------------------------------------------------------------------
    # Mail (empty smtp_host means dev mode -- messages are logged, not sent)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 465
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_ssl: bool = True
    from_name: str = "appy"
    from_address: str = "appyhapi@gmail.com"
    # When set, every outgoing message is delivered here instead of to the
    # real recipient. Useful for local and staging environments.
    default_email: str = ""

    # ------------------------------------------------------------------
    # Rate limiting (transport-level, in front of the abuse throttle)
    # ------------------------------------------------------------------

    login_rate_limit: str = "30/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @property
    def expiration_period(self) -> dict[str, str]:
        return {
            "short": self.expiration_short,
            "medium": self.expiration_medium,
            "long": self.expiration_long,
        }


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables, or build a Settings(...)
    directly and hand it to the component under test.
    """
    return Settings()
