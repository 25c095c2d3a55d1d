"""
Abstract Cache Store Interface

The balance cache needs only three primitives from a key-value store:
get, set-with-expiry and delete. Any client offering those (an in-process
store, a network cache) can back the Cache Layer.
"""

from abc import ABC, abstractmethod
from typing import Optional


class CacheError(Exception):
    """The cache store could not complete an operation."""
    pass


class CacheStoreInterface(ABC):
    """
    Abstract key-value store with per-key expiry.
    
    Implementations raise CacheError (or any exception) on failure;
    the balance cache turns those into CacheResult values.
    """
    
    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if absent or expired."""
        pass
    
    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store a value that expires after ttl_seconds."""
        pass
    
    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Remove a key.
        
        Returns:
            True if the key existed
        """
        pass
