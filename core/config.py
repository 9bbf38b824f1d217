"""
core/config.py -- Every tunable of the tenant auth service, read once via pydantic-settings.

All environment variable reads for the auth service happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

get_settings() is lru_cached: the first call reads the environment (and .env),
later calls return the same object. Fields map to upper-case variables, so
reset_token_expire_seconds is RESET_TOKEN_EXPIRE_SECONDS.

SECRET_KEY signs every bearer token. DEBUG=true generates a throwaway key;
otherwise a missing key stops startup. Keys under 32 characters are refused
in both modes.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or notify/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tenantauth.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'tenantauth.db'}"


class Settings(BaseSettings):
    """Service settings, one field per environment variable (case-insensitive).

    Everything except SECRET_KEY outside dev mode has a usable default, so the
    test suite needs no .env file. List-valued fields (CORS_ORIGINS,
    ALLOWED_HOSTS) are read from the environment as JSON arrays.
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

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    token_expire_seconds: int = 3600
    # Verification links stay valid for 15 hours, reset links for 15 minutes.
    verification_token_expire_seconds: int = 15 * 60 * 60
    reset_token_expire_seconds: int = 15 * 60
    require_verified_login: bool = False

    # ------------------------------------------------------------------
    # Email (Resend)
    # ------------------------------------------------------------------

    app_base_url: str = "http://localhost:3000"
    resend_api_key: str = ""
    resend_api_url: str = "https://api.resend.com/emails"
    mail_from_address: str = ""
    email_timeout_seconds: int = 10

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive a restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    All modules should call get_settings() rather than constructing Settings()
    directly. In tests: call get_settings.cache_clear() between test cases if
    you need to inject different environment variables.
    """
    return Settings()
