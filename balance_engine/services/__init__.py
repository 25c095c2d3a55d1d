"""Services package."""

from balance_engine.services.cache import (
    BalanceCache,
    CacheError,
    CacheResult,
    CacheStatus,
    CacheStoreInterface,
    InMemoryCacheStore,
)
from balance_engine.services.storage import (
    Database,
    LedgerStorageInterface,
    MembershipDirectory,
    MembershipOracle,
    NotFoundError,
    SqlLedgerStorage,
    SqlMembershipDirectory,
    StorageError,
)

__all__ = [
    # Cache services
    "BalanceCache",
    "CacheError",
    "CacheResult",
    "CacheStatus",
    "CacheStoreInterface",
    "InMemoryCacheStore",
    # Storage services
    "Database",
    "LedgerStorageInterface",
    "MembershipDirectory",
    "MembershipOracle",
    "NotFoundError",
    "SqlLedgerStorage",
    "SqlMembershipDirectory",
    "StorageError",
]
