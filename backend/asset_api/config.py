"""
Configuration settings for the asset browser service.

Reads settings from the project .env file and provides typed settings.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Resolve paths
BACKEND_DIR = Path(__file__).parent.parent
PROJECT_ROOT = BACKEND_DIR.parent
ENV_FILE = PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Database - PostgreSQL in production, SQLite for local runs and tests
    database_url: str = Field(
        default="",
        alias="DATABASE_URL",
        description="SQLAlchemy connection URL"
    )
    db_schema: Optional[str] = Field(
        default=None,
        alias="DB_SCHEMA",
        description="PostgreSQL search path (ignored for other databases)"
    )

    # Application settings
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Hierarchy listing pagination
    hierarchy_default_limit: int = Field(
        default=50,
        alias="HIERARCHY_DEFAULT_LIMIT",
        description="Page size when a hierarchy request gives no limit"
    )
    hierarchy_max_limit: int = Field(
        default=500,
        alias="HIERARCHY_MAX_LIMIT",
        description="Largest page size a hierarchy request may ask for"
    )
    explorer_page_size: int = Field(
        default=100,
        alias="EXPLORER_PAGE_SIZE",
        description="Page size used by the explorer when walking a listing"
    )

    # Portal API client
    api_base_url: str = Field(default="http://localhost:8000", alias="API_BASE_URL")
    api_timeout_seconds: float = Field(default=30.0, alias="API_TIMEOUT_SECONDS")

    # API retry settings (for transient errors like 503, 429, timeouts)
    api_retry_max_attempts: int = Field(
        default=3,
        alias="API_RETRY_MAX_ATTEMPTS",
        description="Max attempts for transient API errors"
    )
    api_retry_base_delay: float = Field(
        default=1.0,
        alias="API_RETRY_BASE_DELAY",
        description="Base delay in seconds for exponential backoff"
    )
    api_retry_max_delay: float = Field(
        default=10.0,
        alias="API_RETRY_MAX_DELAY",
        description="Maximum delay in seconds between retries"
    )

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience accessors
settings = get_settings()
