"""
Storage Services Package

Provides abstract interfaces and the SQLAlchemy implementation of the
ledger store and the membership directory.
"""

from balance_engine.services.storage.interface import (
    LedgerStorageInterface,
    MembershipDirectory,
    MembershipOracle,
    NotFoundError,
    StorageError,
)
from balance_engine.services.storage.sql import (
    Database,
    SqlLedgerStorage,
    SqlMembershipDirectory,
)

__all__ = [
    # Interfaces
    "LedgerStorageInterface",
    "MembershipDirectory",
    "MembershipOracle",
    # Exceptions
    "NotFoundError",
    "StorageError",
    # SQL implementation
    "Database",
    "SqlLedgerStorage",
    "SqlMembershipDirectory",
]
