"""
Balance Cache

Memoizes net balances keyed by (user, group).

Policy:
- A balance is cached only after a read miss recomputed it
- Committed mutations evict the affected keys (never write-back)
- Entries expire after a bounded lifetime
- Fail-open: a broken cache store behaves like an empty cache

DESIGN DECISION: Cache operations never raise. Each one returns a
CacheResult, and callers decide at the call site what to do with the
FAILED branch (usually: nothing, the ledger is the source of truth).
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar
from uuid import UUID

import structlog

from balance_engine.config import CacheSettings, get_settings
from balance_engine.models.ledger import to_cents
from balance_engine.services.cache.interface import CacheStoreInterface


logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CacheStatus(str, Enum):
    """Outcome of a single cache operation."""
    HIT = "hit"
    MISS = "miss"
    STORED = "stored"
    EVICTED = "evicted"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class CacheResult:
    """
    Result of one cache call.
    
    value is only set on HIT; error is only set on FAILED.
    """
    status: CacheStatus
    key: str
    value: Optional[Decimal] = None
    error: Optional[str] = None
    
    @property
    def hit(self) -> bool:
        return self.status == CacheStatus.HIT
    
    @property
    def failed(self) -> bool:
        return self.status == CacheStatus.FAILED


class BalanceCache:
    """
    Per-(user, group) balance cache over an explicit cache-store handle.
    """
    
    def __init__(
        self,
        store: CacheStoreInterface,
        settings: Optional[CacheSettings] = None,
    ):
        settings = settings or get_settings().cache
        self._store = store
        self._ttl_seconds = settings.ttl_seconds
        self._prefix = settings.key_prefix
        # Bumped on every group eviction; a balance computed under an older
        # generation is not stored
        self._generations: dict[UUID, int] = {}
    
    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds
    
    def generation(self, group_id: UUID) -> int:
        """Token to take before computing a balance that will be cached."""
        return self._generations.get(group_id, 0)
    
    def user_key(self, user_id: UUID, group_id: UUID) -> str:
        return f"{self._prefix}:user:{user_id}:group:{group_id}"
    
    def group_key(self, group_id: UUID) -> str:
        return f"{self._prefix}:group:{group_id}"
    
    async def _attempt(
        self,
        operation: str,
        key: str,
        call: Callable[[], Awaitable[T]],
        on_success: Callable[[T], CacheResult],
    ) -> CacheResult:
        try:
            outcome = await call()
            return on_success(outcome)
        except Exception as e:
            logger.warning(
                "balance_cache_unavailable",
                operation=operation,
                key=key,
                error=str(e),
            )
            return CacheResult(CacheStatus.FAILED, key, error=str(e))
    
    async def get_balance(self, user_id: UUID, group_id: UUID) -> CacheResult:
        """Look up a cached balance."""
        key = self.user_key(user_id, group_id)
        
        def decode(raw: Optional[str]) -> CacheResult:
            if raw is None:
                return CacheResult(CacheStatus.MISS, key)
            return CacheResult(CacheStatus.HIT, key, value=to_cents(raw))
        
        return await self._attempt("get", key, lambda: self._store.get(key), decode)
    
    async def set_balance(
        self,
        user_id: UUID,
        group_id: UUID,
        balance: Decimal,
        generation: Optional[int] = None,
    ) -> CacheResult:
        """
        Cache a freshly computed balance for the configured lifetime.
        
        If generation is given and the group has been invalidated since it
        was taken, the value is stale and is not stored.
        """
        key = self.user_key(user_id, group_id)
        if generation is not None and generation != self.generation(group_id):
            return CacheResult(CacheStatus.SKIPPED, key)
        return await self._attempt(
            "set",
            key,
            lambda: self._store.set(key, str(to_cents(balance)), self._ttl_seconds),
            lambda _: CacheResult(CacheStatus.STORED, key),
        )
    
    async def evict(self, key: str) -> CacheResult:
        """Drop one key. A missing key still counts as evicted."""
        return await self._attempt(
            "delete",
            key,
            lambda: self._store.delete(key),
            lambda _: CacheResult(CacheStatus.EVICTED, key),
        )
    
    async def evict_user(self, user_id: UUID, group_id: UUID) -> CacheResult:
        return await self.evict(self.user_key(user_id, group_id))
    
    async def evict_group(self, group_id: UUID) -> CacheResult:
        self._generations[group_id] = self.generation(group_id) + 1
        return await self.evict(self.group_key(group_id))
