"""Application settings and configuration."""

import logging
from decimal import Decimal

from pydantic import ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

MIN_JWT_SECRET_LENGTH = 32
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application (hardcoded constants)
    app_name: str = "Seatpass API"
    app_version: str = "0.1.0"

    # Environment-specific settings
    debug: bool = False
    environment: str = "development"  # development, staging, production

    # PostgreSQL
    postgres_url: str | None = None
    postgres_pool_size: int = 10
    postgres_max_overflow: int = 20
    postgres_pool_timeout: int = 10
    postgres_pool_recycle: int = 3600
    postgres_command_timeout: float = 10.0
    postgres_echo: bool = False

    # Upper bound for any single credential store call
    store_timeout_seconds: float = 10.0

    # API
    api_prefix: str = "/api"
    app_base_url: str = "http://localhost:3000"

    # Token signing
    jwt_secret: str | None = None
    jwt_algorithm: str = "HS256"
    jwt_issuer: str = "seatpass"
    jwt_audience: str = "editor-extension"
    access_token_expire_minutes: int = 60
    refresh_token_expire_days: int = 30
    extension_token_expire_days: int = 120
    token_leeway_seconds: int = 5

    # PKCE handshake
    oauth_exchange_ttl_minutes: int = 10

    # Identity provider
    identity_jwks_url: str | None = None
    identity_issuer: str | None = None
    identity_audience: str | None = None
    identity_provider_timeout_seconds: int = 5

    # Scheduled jobs
    cron_secret: str | None = None

    # Billing (currency units per credit)
    credit_unit_price: Decimal = Decimal("0.014")

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_default: str = "60/minute"

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        valid_envs = {"development", "staging", "production"}
        env = str(v).lower()
        if env not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}, got {env}")
        return env

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: str | None, info: ValidationInfo) -> str | None:
        """Production secrets must be long enough for HS256."""
        if v is not None and info.data.get("environment") == "production" and len(v) < MIN_JWT_SECRET_LENGTH:
            raise ValueError(f"jwt_secret must be at least {MIN_JWT_SECRET_LENGTH} characters in production")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = str(v).upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Log level must be one of {LOG_LEVELS}, got {v}")
        return level

    @field_validator("credit_unit_price")
    @classmethod
    def validate_credit_unit_price(cls, v: Decimal) -> Decimal:
        """Credits must have a positive price."""
        if v <= 0:
            raise ValueError("credit_unit_price must be positive")
        return v


settings = Settings()
