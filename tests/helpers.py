"""Test doubles and constants shared across test modules."""

import asyncio
from uuid import UUID

from balance_engine.config import CacheSettings, DatabaseSettings, Settings
from balance_engine.services.cache import CacheStoreInterface


USER_A = UUID(int=1)
USER_B = UUID(int=2)
USER_C = UUID(int=3)
OUTSIDER = UUID(int=99)


def run(coro):
    """Run a coroutine to completion."""
    return asyncio.run(coro)


class FakeClock:
    """Manually advanced clock for expiry tests."""
    
    def __init__(self, start: float = 1000.0):
        self.now = start
    
    def __call__(self) -> float:
        return self.now
    
    def advance(self, seconds: float) -> None:
        self.now += seconds


class BrokenCacheStore(CacheStoreInterface):
    """A cache store whose every call fails."""
    
    def __init__(self):
        self.calls = 0
    
    async def get(self, key):
        self.calls += 1
        raise ConnectionError("cache down")
    
    async def set(self, key, value, ttl_seconds):
        self.calls += 1
        raise ConnectionError("cache down")
    
    async def delete(self, key):
        self.calls += 1
        raise ConnectionError("cache down")


class InMemorySettings(Settings):
    """Settings pinned to an in-memory database, ignoring the environment."""
    
    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings(url="sqlite://")
    
    @property
    def cache(self) -> CacheSettings:
        return CacheSettings(ttl_seconds=300, key_prefix="balance")
