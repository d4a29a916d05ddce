"""
Connection settings for the document store.

Read from FACTURATION_* environment variables, or a .env file in the
working directory. Fails fast when the database URL is missing.
"""

import logging

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Singleton instance
_settings_instance: "DatabaseSettings | None" = None


class DatabaseSettings(BaseSettings):
    """PostgreSQL connection and pool settings."""

    model_config = SettingsConfigDict(
        env_prefix="FACTURATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = Field(description="PostgreSQL DSN, e.g. postgresql://user@host/facturation")
    pool_min_connections: int = Field(default=2, ge=1)
    pool_max_connections: int = Field(default=20, ge=1)
    connect_timeout: int = Field(default=30, ge=1, description="Seconds")


def get_settings() -> DatabaseSettings:
    """
    Load settings once per process.

    Raises:
        ValueError: FACTURATION_DATABASE_URL is not set or a value is invalid
    """
    global _settings_instance
    if _settings_instance is None:
        try:
            _settings_instance = DatabaseSettings()
        except ValidationError as e:
            logger.error(f"Invalid database settings: {e}")
            raise ValueError(
                f"FACTURATION_DATABASE_URL environment variable is required: {e}"
            ) from e
    return _settings_instance


def get_database_url() -> str:
    """PostgreSQL connection URL for the document store."""
    return get_settings().database_url
