"""
Invalidation Coordinator

After a ledger mutation commits, exactly the balances it could have
changed are evicted from the cache:
- expense mutations: the payer and every split participant
- settlement mutations: the payer and the payee
plus the group-wide key.

The affected set is an explicit value built from the mutation's known
parties, so what gets evicted never depends on incidental control flow.
"""

import asyncio
from typing import Iterable, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict

from balance_engine.models.ledger import Expense, Settlement
from balance_engine.services.cache import BalanceCache, CacheResult


logger = structlog.get_logger(__name__)


class AffectedUsers(BaseModel):
    """
    Users of one group whose balance a mutation changed.
    """
    model_config = ConfigDict(frozen=True)
    
    group_id: UUID
    user_ids: frozenset[UUID]
    
    @classmethod
    def of(cls, group_id: UUID, user_ids: Iterable[UUID]) -> "AffectedUsers":
        return cls(group_id=group_id, user_ids=frozenset(user_ids))
    
    @classmethod
    def for_expense(cls, expense: Expense) -> "AffectedUsers":
        return cls.of(expense.group_id, [expense.paid_by, *expense.participant_ids])
    
    @classmethod
    def for_settlement(cls, settlement: Settlement) -> "AffectedUsers":
        return cls.of(settlement.group_id, settlement.party_ids)
    
    def union(self, other: "AffectedUsers") -> "AffectedUsers":
        if other.group_id != self.group_id:
            raise ValueError("Cannot merge affected users of different groups")
        return AffectedUsers.of(self.group_id, self.user_ids | other.user_ids)
    
    def ordered(self) -> list[UUID]:
        return sorted(self.user_ids)


class InvalidationReport(BaseModel):
    """What a coordinator run evicted, and what it could not."""
    group_id: UUID
    evicted_keys: list[str]
    failed_keys: list[str]
    error: Optional[str] = None
    
    @property
    def complete(self) -> bool:
        return not self.failed_keys


class InvalidationCoordinator:
    """
    Evicts the cache entries of a committed mutation.
    
    Call only after the transaction has committed; a failed write must
    leave the cache untouched.
    """
    
    def __init__(self, cache: BalanceCache):
        self._cache = cache
    
    async def invalidate(self, affected: AffectedUsers) -> InvalidationReport:
        """
        Evict every affected (user, group) entry plus the group key.
        
        Evictions are independent: one failing does not stop the others.
        Never raises; failures are reported in the returned report.
        """
        evictions = [
            self._cache.evict_user(user_id, affected.group_id)
            for user_id in affected.ordered()
        ]
        evictions.append(self._cache.evict_group(affected.group_id))
        
        results: list[CacheResult] = await asyncio.gather(*evictions)
        
        report = InvalidationReport(
            group_id=affected.group_id,
            evicted_keys=[r.key for r in results if not r.failed],
            failed_keys=[r.key for r in results if r.failed],
            error=next((r.error for r in results if r.failed), None),
        )
        
        logger.debug(
            "balance_cache_invalidated",
            group_id=str(affected.group_id),
            evicted=len(report.evicted_keys),
            failed=len(report.failed_keys),
        )
        return report
