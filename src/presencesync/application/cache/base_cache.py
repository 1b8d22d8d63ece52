"""Cache contract shared by the in-memory and on-disk artwork caches."""

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

Clock = Callable[[], float]


@dataclass
class CacheEntry[V]:
    """One stored value plus the bookkeeping needed for expiry."""

    key: str
    value: V
    stored_at: float
    ttl_seconds: int

    # Hey future me, expired means NOW is strictly past stored_at + ttl. An entry read at
    # exactly the boundary second is still valid. Wall-clock Unix timestamps so entries
    # written to disk survive restarts; a clock jumping backwards just makes entries live longer.
    def is_expired(self, now: float) -> bool:
        return now > (self.stored_at + self.ttl_seconds)

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl_seconds


class BaseCache[K, V](ABC):
    """Async key-value store with per-entry TTL."""

    @abstractmethod
    async def get(self, key: K) -> V | None:
        """Value for key, None when missing or expired."""
        pass

    @abstractmethod
    async def set(self, key: K, value: V, ttl_seconds: int = 86400) -> None:
        """Store value (overwrites, refreshing stored_at)."""
        pass

    @abstractmethod
    async def delete(self, key: K) -> bool:
        """Drop key; True if it was there."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Clear all entries from cache."""
        pass

    @abstractmethod
    async def sweep(self) -> int:
        """Remove expired entries and return how many were dropped."""
        pass


class InMemoryCache[V](BaseCache[str, V]):
    """Dict-backed cache, used when persist_cache is off and throughout the tests."""

    # Listen up future me, the _lock matters even in single-threaded asyncio: sweep() and
    # set() from two player lanes must never interleave on the dict. Always
    # "async with self._lock" before touching self._cache!
    def __init__(self, clock: Clock = time.time) -> None:
        self._cache: dict[str, CacheEntry[V]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    # Yo, get() deletes an entry it finds expired (eviction on read). Returns None for both
    # "not found" and "found but expired", the caller can't tell the difference.
    async def get(self, key: str) -> V | None:
        async with self._lock:
            entry = self._cache.get(key)
            if not entry:
                return None

            if entry.is_expired(self._clock()):
                del self._cache[key]
                return None

            return entry.value

    async def set(self, key: str, value: V, ttl_seconds: int = 86400) -> None:
        async with self._lock:
            self._cache[key] = CacheEntry(
                key=key,
                value=value,
                stored_at=self._clock(),
                ttl_seconds=ttl_seconds,
            )

    async def delete(self, key: str) -> bool:
        async with self._lock:
            if key in self._cache:
                del self._cache[key]
                return True
            return False

    async def clear(self) -> None:
        async with self._lock:
            self._cache.clear()

    async def sweep(self) -> int:
        async with self._lock:
            now = self._clock()
            expired_keys = [key for key, entry in self._cache.items() if entry.is_expired(now)]
            for key in expired_keys:
                del self._cache[key]
            return len(expired_keys)
