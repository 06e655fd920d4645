"""
Application Configuration
=========================

Centralized configuration using Pydantic Settings.
Loads from environment variables with validation.
"""

from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    ENVIRONMENT: str = Field(default="development")

    # Server
    PORT: int = Field(default=8000)

    # Development Settings
    DEV_AUTH_DISABLED: bool = Field(
        default=False,
        description="Disable authentication for local development/testing"
    )
    DEV_USER_ID: str = Field(default="123")

    # Database
    DATABASE_URL: str = Field(default="")

    # JWT Authentication
    JWT_SECRET: str = Field(default="change-this-secret-in-production")
    JWT_ALGORITHM: str = Field(default="HS256")

    # Apple App Store
    APPLE_SHARED_SECRET: str = Field(default="")
    APPLE_EXCLUDE_OLD_TRANSACTIONS: bool = Field(default=True)

    # Force sandbox validation for both stores
    IAP_TEST_MODE: bool = Field(default=False)

    # Google Play
    GOOGLE_SERVICE_ACCOUNT_EMAIL: str = Field(default="")
    GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY: str = Field(default="")
    ANDROID_PACKAGE_NAME: str = Field(default="")

    VALIDATOR_HTTP_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)

    # Reconciliation sweep
    RECONCILIATION_ENABLED: bool = Field(default=True)
    RECONCILIATION_INTERVAL_HOURS: float = Field(default=24, gt=0)
    RECONCILIATION_ITEM_TIMEOUT_SECONDS: float = Field(default=60.0, gt=0)
    # First sweep waits one interval unless enabled
    RECONCILIATION_RUN_ON_STARTUP: bool = Field(default=False)

    # App Configuration
    ALLOWED_ORIGINS: str = Field(default="http://localhost:3000,http://localhost:8000")

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse ALLOWED_ORIGINS into a list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    @property
    def database_url_async(self) -> str:
        """Convert database URL to async format for asyncpg."""
        if self.DATABASE_URL.startswith("postgresql://"):
            return self.DATABASE_URL.replace(
                "postgresql://", "postgresql+asyncpg://", 1
            )
        return self.DATABASE_URL

    @property
    def google_private_key(self) -> str:
        """Private key with escaped newlines restored (as stored in .env files)."""
        return self.GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY.replace("\\n", "\n")

    @property
    def reconciliation_interval_seconds(self) -> float:
        return self.RECONCILIATION_INTERVAL_HOURS * 3600

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.ENVIRONMENT.lower() == "development"

    @property
    def auth_disabled(self) -> bool:
        """Check if auth is disabled (only allowed in development)."""
        return self.is_development and self.DEV_AUTH_DISABLED

    @field_validator("JWT_SECRET")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        """Ensure JWT secret is sufficiently long."""
        if len(v) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters long")
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    """
    return Settings()


# Export a default settings instance
settings = get_settings()
