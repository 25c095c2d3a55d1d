"""
Configuration Management for the Ledger Balance Engine

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The database URL, cache lifetime and listing limits are validated once at
startup instead of being read ad hoc by each component.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Relational ledger store configuration."""
    
    model_config = SettingsConfigDict(
        env_prefix="LEDGER_DB_",
        extra="ignore"
    )
    
    url: str = Field(
        default="sqlite://",
        description="SQLAlchemy database URL (in-memory SQLite by default)"
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL statements to the log"
    )
    
    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Reject an empty URL early rather than at first query."""
        if not v.strip():
            raise ValueError("Database URL cannot be empty")
        return v.strip()
    
    @property
    def is_in_memory_sqlite(self) -> bool:
        return self.url in ("sqlite://", "sqlite:///:memory:")


class CacheSettings(BaseSettings):
    """Balance cache configuration."""
    
    model_config = SettingsConfigDict(
        env_prefix="BALANCE_CACHE_",
        extra="ignore"
    )
    
    ttl_seconds: int = Field(
        default=300,
        ge=1,
        le=86400,
        description="Lifetime of a cached balance in seconds"
    )
    key_prefix: str = Field(
        default="balance",
        min_length=1,
        description="Prefix for every cache key written by the engine"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.
    
    Loads configuration from environment variables and .env file.
    """
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    
    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    
    # Listing limits
    default_list_limit: int = Field(
        default=50,
        ge=1,
        description="Page size used when a caller does not pass a limit"
    )
    max_list_limit: int = Field(
        default=200,
        ge=1,
        description="Largest page size a caller may request"
    )


class Settings(BaseSettings):
    """
    Root settings container.
    
    Aggregates all sub-settings for easy access.
    """
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    
    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()
    
    @property
    def cache(self) -> CacheSettings:
        return CacheSettings()
    
    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).
    
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()
