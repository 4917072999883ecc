"""
Configuration management for Flux.

Uses pydantic-settings for environment variable management.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./flux.db"
    DEBUG: bool = True

    # App
    APP_NAME: str = "Flux"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"

    # Security (unset = dev mode, all requests allowed)
    FLUX_API_KEY: Optional[str] = None

    # Observability
    SENTRY_DSN: Optional[str] = None

    # Webhook delivery
    WEBHOOK_TIMEOUT_SECONDS: float = 10.0
    WEBHOOK_MAX_RETRIES: int = 3
    WEBHOOK_RETRY_DELAYS: list[float] = [1.0, 5.0, 30.0]
    WEBHOOK_RESPONSE_BODY_LIMIT: int = 1000

    # Seconds to wait for in-flight deliveries on shutdown
    SHUTDOWN_GRACE_SECONDS: float = 5.0


# Global settings instance
settings = Settings()
