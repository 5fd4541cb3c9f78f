"""Configuration management for Costpulse."""

from functools import lru_cache

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="COSTPULSE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # PostgreSQL
    database_dsn: SecretStr = Field(description="PostgreSQL DSN for the cost ledger")

    # AWS Cost Explorer
    aws_profile: str | None = Field(default="default", description="AWS named profile")
    aws_region: str = Field(default="us-east-1", description="Cost Explorer region")

    # Sync
    full_sync_days: int = Field(
        default=90, ge=1, description="Days fetched by a full sync or on an empty ledger"
    )
    refresh_interval_minutes: int = Field(
        default=60, ge=0, description="Scheduled refresh cadence; 0 disables the scheduler"
    )
    refresh_on_startup: bool = Field(
        default=True, description="Run an incremental sync before the scheduler starts"
    )

    # Aggregation
    show_credits_by_default: bool = Field(
        default=False, description="Include credits (net cost) unless overridden"
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]
