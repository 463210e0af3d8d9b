"""
Configuration management for the billing service.

All configuration comes from environment variables or .env file.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from typing import Optional
from functools import lru_cache

from config.constants import DATA_DIR, DEFAULT_DATABASE_FILE


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="BILLING_",
        case_sensitive=False
    )

    # Security (required)
    jwt_secret: str = Field(..., min_length=32)

    # Stripe (required)
    stripe_secret_key: str
    stripe_webhook_secret: str = ""
    stripe_api_version: Optional[str] = None
    stripe_meter_event_name: str = "api_tokens"

    # Public URL used to build checkout/portal redirects
    app_base_url: str = "http://localhost:8000"

    # Storage
    data_dir: str = DATA_DIR
    database_url: Optional[str] = None

    # CORS
    cors_origins: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # Sentry
    sentry_dsn: str = ""
    sentry_environment: str = "development"
    sentry_traces_sample_rate: float = 0.1

    # SendGrid
    sendgrid_api_key: str = ""
    sendgrid_sender: str = "billing@example.com"
    sendgrid_sandbox_mode: bool = True

    # Rate limiting
    checkout_rate_limit: str = "10/minute"

    # Validators
    @field_validator('jwt_secret')
    @classmethod
    def reject_default_values(cls, v: str) -> str:
        """Reject default/weak JWT secrets."""
        forbidden = ['your-secret-key-change-in-production', 'secret', 'test', 'password', 'change-me', 'default-secret']
        if v.lower() in forbidden:
            raise ValueError("JWT_SECRET cannot be a default value. Generate with: openssl rand -base64 32")
        return v

    @field_validator('stripe_secret_key')
    @classmethod
    def validate_stripe_key(cls, v: str) -> str:
        """Only secret or restricted keys can call the API server-side."""
        if not v.startswith(("sk_", "rk_")):
            raise ValueError("stripe_secret_key must be a secret (sk_) or restricted (rk_) key")
        return v

    @field_validator('app_base_url')
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def resolved_database_url(self) -> str:
        """Database URL, defaulting to a SQLite file inside data_dir."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.data_dir}/{DEFAULT_DATABASE_FILE}"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def reload_settings() -> Settings:
    """Reload settings from environment."""
    get_settings.cache_clear()
    return get_settings()
