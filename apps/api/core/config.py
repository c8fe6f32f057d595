"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the application.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    # DATABASE_URL wins when set (e.g. "sqlite://" for local runs and tests).
    DATABASE_URL: Optional[str] = Field(default=None)
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="care_circle")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Redis Configuration
    REDIS_URL: str = Field(default="redis://redis:6379/0")

    # JWT Authentication - REQUIRED for token verification
    # Must be set via environment variable, never use default in production
    SECRET_KEY: str = Field(
        default=...,  # Required - no default
        description="JWT signing key. Must be cryptographically secure (32+ chars). "
                    "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )

    # API Configuration
    API_HOST: str = Field(default="0.0.0.0")
    API_PORT: int = Field(default=8000)
    API_RELOAD: bool = Field(default=False)
    EXPOSE_API_DOCS: bool = Field(default=False)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = Field(default=True)
    RATE_LIMIT_PER_MINUTE: int = Field(default=60)
    # Public invite-token routes (preview/decline) get a tighter limit.
    RATE_LIMIT_PUBLIC_TOKEN_PER_MINUTE: int = Field(default=10)

    # Celery Configuration
    CELERY_BROKER_URL: str = Field(default="redis://redis:6379/0")
    CELERY_RESULT_BACKEND: str = Field(default="redis://redis:6379/0")

    # Email Configuration
    EMAIL_ENABLED: bool = Field(default=False)
    SMTP_SERVER: str = Field(default="localhost")
    SMTP_PORT: int = Field(default=587)
    SMTP_USERNAME: Optional[str] = Field(default=None)
    SMTP_PASSWORD: Optional[str] = Field(default=None)
    FROM_EMAIL: str = Field(default="noreply@carecircle.app")
    FROM_NAME: str = Field(default="Care Circle")

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    CORS_ORIGINS: Optional[str] = Field(default=None)

    # Web app base URL (invite links point here).
    # e.g., "http://localhost:3000" or "https://app.carecircle.app"
    WEB_APP_BASE_URL: str = Field(default="http://localhost:3000")

    # Care Circle
    CARE_CIRCLE_INVITE_TTL_DAYS: int = Field(default=7, ge=1, le=30)
    # Declined/revoked connections stay visible in listings for this many days.
    CARE_CIRCLE_HISTORY_DAYS: int = Field(default=30, ge=1)
    # Upper bound on how long a queued notification may wait or run.
    NOTIFICATION_DISPATCH_TIMEOUT_S: int = Field(default=30, ge=1, le=600)

    # Sentry Error Tracking
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.1)  # 10% of transactions
    SENTRY_PROFILES_SAMPLE_RATE: float = Field(default=0.1)


# Global settings instance
settings = Settings()
