"""
Cache Services Package

The balance cache and the key-value stores that can back it.
"""

from balance_engine.services.cache.interface import CacheError, CacheStoreInterface
from balance_engine.services.cache.memory import InMemoryCacheStore
from balance_engine.services.cache.balance_cache import (
    BalanceCache,
    CacheResult,
    CacheStatus,
)

__all__ = [
    "BalanceCache",
    "CacheError",
    "CacheResult",
    "CacheStatus",
    "CacheStoreInterface",
    "InMemoryCacheStore",
]
