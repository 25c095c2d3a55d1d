"""Ledger mutation package: the validating store and cache invalidation."""

from balance_engine.ledger.invalidation import (
    AffectedUsers,
    InvalidationCoordinator,
    InvalidationReport,
)
from balance_engine.ledger.store import LedgerStore

__all__ = [
    "AffectedUsers",
    "InvalidationCoordinator",
    "InvalidationReport",
    "LedgerStore",
]
