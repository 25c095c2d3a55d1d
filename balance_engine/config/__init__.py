"""Configuration package."""

from balance_engine.config.settings import (
    AppSettings,
    CacheSettings,
    DatabaseSettings,
    Settings,
    get_settings,
)

__all__ = [
    "AppSettings",
    "CacheSettings",
    "DatabaseSettings",
    "Settings",
    "get_settings",
]
