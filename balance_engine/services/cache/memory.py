"""
In-Process Cache Store

A dictionary of expiring entries guarded by a lock. Suitable for a
single-process deployment and for tests; a networked store implements
the same interface for multi-process deployments.
"""

import time
from dataclasses import dataclass
from threading import RLock
from typing import Callable, Optional

from balance_engine.services.cache.interface import CacheStoreInterface


@dataclass
class CacheEntry:
    """A stored value with its absolute expiry time."""
    value: str
    expires_at: float
    
    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class InMemoryCacheStore(CacheStoreInterface):
    """
    Thread-safe expiring key-value store.
    
    Expired entries are dropped lazily on access.
    """
    
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: dict[str, CacheEntry] = {}
        self._lock = RLock()
        self._clock = clock
    
    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            return entry.value
    
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(
                value=value,
                expires_at=self._clock() + ttl_seconds,
            )
    
    async def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None
    
    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
    
    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())
