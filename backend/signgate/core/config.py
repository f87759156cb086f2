"""Application configuration loaded from environment variables.

Settings for signing tokens, rate limiting, request validation, and
authentication. Uses pydantic-settings for validation and .env file support.

Components never read ``settings`` implicitly: constructors take the values
they need (see ``TokenAuthority.from_settings`` and
``RateLimiter.from_settings``) so tests can inject secrets and clocks.
"""

from typing import Literal

import structlog
from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()

# Known placeholder secrets that must never be treated as secure.
# Security: Runtime check in check_production_security() prevents use in production
INSECURE_DEFAULT_TOKEN_SECRET = "change-me-in-production-very-secure-secret-key"  # nosec B105
_KNOWN_PLACEHOLDER_SECRETS = frozenset(
    {
        INSECURE_DEFAULT_TOKEN_SECRET,
        "your-secret-key-change-in-production",
    }
)

# Minimum secret length in production (256 bits = 32 bytes)
MIN_SECRET_LENGTH = 32

_ONE_MIB = 1024 * 1024


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "test", "staging", "production"] = (
        "development"
    )
    log_level: str = "INFO"
    json_logs: bool = False

    # Signing tokens
    # Rotating this secret invalidates every signing link ever issued.
    signing_token_secret: SecretStr = SecretStr(INSECURE_DEFAULT_TOKEN_SECRET)
    signing_token_expiry_days: int = 7

    # Public URL used to build signing links (/sign/{token})
    public_base_url: str = "http://localhost:3000"

    # Rate limiting (fixed window, in-memory, per process)
    rate_limit_enabled: bool = True
    rate_limit_window_minutes: int = 15
    rate_limit_max_attempts: int = 5
    rate_limit_shards: int = 16

    # CSRF / origin validation
    # app_origin is the origin every state-changing request must come from.
    # allowed_origins lists additional trusted origins (e.g. a marketing site).
    app_origin: str = "http://localhost:3000"
    allowed_origins: list[str] = []

    # Request body handling
    max_body_size_bytes: int = _ONE_MIB
    allowed_content_types: list[str] = ["application/json"]

    # Authentication (identity resolution for require_auth endpoints)
    auth_secret: SecretStr = SecretStr("")
    auth_issuer: str = "signgate"
    auth_audience: str = "signgate"
    auth_cookie_name: str = "signgate.session-token"

    @property
    def is_production(self) -> bool:
        """True when running with production security requirements."""
        return self.environment == "production"

    @property
    def token_secret_is_secure(self) -> bool:
        """Whether the signing token secret is neither a placeholder nor short."""
        secret = self.signing_token_secret.get_secret_value()
        return (
            secret not in _KNOWN_PLACEHOLDER_SECRETS
            and len(secret) >= MIN_SECRET_LENGTH
        )

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate security requirements.

        Checks:
        - Numeric limits must be positive (all environments)
        - Origins must not contain a wildcard (all environments)
        - Signing token secret must not be a placeholder or shorter than
          32 chars in production
        - AUTH_SECRET must be at least 32 chars in production when set
        """
        if self.rate_limit_window_minutes <= 0 or self.rate_limit_max_attempts <= 0:
            msg = (
                "RATE_LIMIT_WINDOW_MINUTES and RATE_LIMIT_MAX_ATTEMPTS must be "
                f"positive. Got: {self.rate_limit_window_minutes}, "
                f"{self.rate_limit_max_attempts}"
            )
            raise ValueError(msg)
        if self.rate_limit_shards <= 0:
            msg = f"RATE_LIMIT_SHARDS must be positive. Got: {self.rate_limit_shards}"
            raise ValueError(msg)
        if self.max_body_size_bytes <= 0:
            msg = (
                "MAX_BODY_SIZE_BYTES must be positive. "
                f"Got: {self.max_body_size_bytes}"
            )
            raise ValueError(msg)
        if self.signing_token_expiry_days <= 0:
            msg = (
                "SIGNING_TOKEN_EXPIRY_DAYS must be positive. "
                f"Got: {self.signing_token_expiry_days}"
            )
            raise ValueError(msg)

        if "*" in self.allowed_origins or self.app_origin == "*":
            msg = (
                "APP_ORIGIN and ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "Origin validation needs an exact origin to compare against."
            )
            raise ValueError(msg)

        if self.is_production:
            if not self.token_secret_is_secure:
                msg = (
                    "SIGNING_TOKEN_SECRET must be set to a secure random string "
                    f"({MIN_SECRET_LENGTH}+ characters) in production. "
                    "Generate with: openssl rand -hex 32"
                )
                raise ValueError(msg)

            auth_secret = self.auth_secret.get_secret_value()
            if auth_secret and len(auth_secret) < MIN_SECRET_LENGTH:
                msg = (
                    f"AUTH_SECRET must be at least {MIN_SECRET_LENGTH} "
                    "characters for adequate security."
                )
                raise ValueError(msg)

        return self

    def warn_insecure_defaults(self) -> bool:
        """Log a loud warning when running outside production with a weak secret.

        Returns:
            True if a warning was emitted.
        """
        if self.token_secret_is_secure:
            return False
        logger.warning(
            "SECURITY WARNING: SIGNING_TOKEN_SECRET is not set to a secure value",
            environment=self.environment,
            hint="Generate a secure secret with: openssl rand -hex 32",
        )
        return True


settings = Settings()
