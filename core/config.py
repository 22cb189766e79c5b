"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  Explicit config struct: verification components never call get_settings().
      They receive a frozen VerificationConfig at construction, built once by
      Settings.verification_config(). Tests construct VerificationConfig
      directly with whatever values they need.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. HMAC-SHA256 (contact
  hashing for limiter keys) and JWT signing both rely on key entropy.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a hard
  startup failure.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or verification/.
"""

import logging
import secrets
from dataclasses import dataclass
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("userauth.config")

# Provider selector values. "default" is the self-managed code store.
DEFAULT_PROVIDER = "default"
SMARTPINGS_PROVIDER = "smartpings"


@dataclass(frozen=True)
class VerificationConfig:
    """Everything the verification core needs, passed in at construction."""

    code_length: int = 6
    code_expiry_minutes: int = 5
    rate_limit_attempts: int = 3
    rate_limit_minutes: int = 5
    provider: str = DEFAULT_PROVIDER
    self_managed: bool = True
    require_email_verification: bool = False
    require_phone_verification: bool = False
    consume_registration_verification: bool = True
    password_reset_code_expiry_minutes: int = 15
    # Key for HMAC(contact) in limiter keys. Empty means plain SHA-256.
    contact_hash_key: str = ""
    # Delegated provider
    smartpings_client_id: str = ""
    smartpings_secret_id: str = ""
    smartpings_base_url: str = "https://api.smartpings.com"
    provider_timeout_seconds: float = 10.0
    strict_credentials: bool = True
    strict_provider_errors: bool = True

    @property
    def rate_limit_seconds(self) -> int:
        return self.rate_limit_minutes * 60


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
    database_url: str = "sqlite:///./userauth.db"
    route_prefix: str = "/api"
    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    token_expire_seconds: int = 3600

    # ------------------------------------------------------------------
    # OAuth providers (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    register_oauth_routes: bool = True
    oauth_redirect_base_url: str = "http://localhost:8000"
    github_client_id: str = ""
    github_client_secret: str = ""
    google_client_id: str = ""
    google_client_secret: str = ""

    # Generic OIDC (Okta, Azure AD, Keycloak, Authentik, etc.)
    oidc_client_id: str = ""
    oidc_client_secret: str = ""
    oidc_discovery_url: str = ""
    oidc_display_name: str = "SSO"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    verify_code_rate_limit: str = "10/minute"
    password_reset_rate_limit: str = "10/minute"
    # limits storage URI for the send-code attempt counters. memory:// is
    # per-process; use redis://host:6379 (the "redis" extra) when running
    # several workers.
    rate_limit_storage_uri: str = "memory://"

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    verification_code_length: int = 6
    verification_code_expiry_minutes: int = 5
    verification_rate_limit_attempts: int = 3
    verification_rate_limit_minutes: int = 5
    verification_provider: str = DEFAULT_PROVIDER
    verification_self_managed: bool = True
    require_email_verification: bool = False
    require_phone_verification: bool = False
    consume_registration_verification: bool = True
    password_reset_code_expiry_minutes: int = 15

    # SmartPings (delegated provider)
    smartpings_client_id: str = ""
    smartpings_secret_id: str = ""
    smartpings_base_url: str = "https://api.smartpings.com"
    provider_timeout_seconds: float = 10.0
    # Missing credentials: True = refuse to start, False = warn and disable.
    strict_credentials: bool = True
    # Provider outage: True = 503 on every call, False = degrade send/status.
    strict_provider_errors: bool = True

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("verification_code_length")
    @classmethod
    def validate_code_length(cls, v: int) -> int:
        if not 4 <= v <= 12:
            raise ValueError("VERIFICATION_CODE_LENGTH must be between 4 and 12.")
        return v

    @field_validator(
        "verification_code_expiry_minutes",
        "verification_rate_limit_attempts",
        "verification_rate_limit_minutes",
        "password_reset_code_expiry_minutes",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    def verification_config(self) -> VerificationConfig:
        """Build the explicit config struct for the verification core."""
        return VerificationConfig(
            code_length=self.verification_code_length,
            code_expiry_minutes=self.verification_code_expiry_minutes,
            rate_limit_attempts=self.verification_rate_limit_attempts,
            rate_limit_minutes=self.verification_rate_limit_minutes,
            provider=self.verification_provider.lower(),
            self_managed=self.verification_self_managed,
            require_email_verification=self.require_email_verification,
            require_phone_verification=self.require_phone_verification,
            consume_registration_verification=self.consume_registration_verification,
            password_reset_code_expiry_minutes=self.password_reset_code_expiry_minutes,
            contact_hash_key=self.secret_key,
            smartpings_client_id=self.smartpings_client_id,
            smartpings_secret_id=self.smartpings_secret_id,
            smartpings_base_url=self.smartpings_base_url,
            provider_timeout_seconds=self.provider_timeout_seconds,
            strict_credentials=self.strict_credentials,
            strict_provider_errors=self.strict_provider_errors,
        )


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
