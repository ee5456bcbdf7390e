"""
Configuration Management

Uses Pydantic Settings for environment-based configuration.
Loads from .env file automatically.
"""

from typing import List, Optional
from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Relational store (PostgreSQL)
    DATABASE_URL: Optional[str] = None

    # Cache
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_ENABLED: bool = True

    # Application Settings
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Query defaults
    DEFAULT_YEAR: int = 2023
    DEFAULT_TOP: int = 10

    # Timeouts
    READ_TIMEOUT_SECONDS: int = 10
    INGEST_TIMEOUT_SECONDS: int = 300
    AGGREGATE_REFRESH_TIMEOUT_SECONDS: int = 120

    # Warming
    WARMING_BATCH_SIZE: int = 10
    WARMING_TOP_VALUES: List[int] = [10, 20]
    WARMING_RECENT_YEARS: int = 5

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields in .env file
        case_sensitive = False  # Allow both UPPERCASE and lowercase


@lru_cache
def get_settings() -> Settings:
    """Get or create cached settings instance."""
    return Settings()
