"""
kvcache — Memory Cache Backend

In-memory store with LRU eviction and TTL support. Safe for concurrent
tasks within a single process; every mutation happens under one asyncio lock,
which also makes increment and decrement atomic.

TTLs are always relative here, so values are never normalized to timestamps.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

from ...errors import OperationFailure
from ..interface import CacheBackend

logger = logging.getLogger(__name__)


class MemoryCacheBackend(CacheBackend):
    """
    In-memory cache backend with LRU eviction.

    Features:
    - LRU eviction when max_size is reached
    - Per-key TTL support
    - Atomic increment/decrement
    - O(1) get/set/delete operations
    """

    name = "local"
    interprets_large_ttl_as_timestamp = False

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: int = 0,
        namespace: str = "kv",
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize memory cache backend.

        Args:
            max_size: Maximum number of entries (LRU eviction when exceeded)
            default_ttl: Default TTL in seconds (0 = no expiry)
            namespace: Cache key namespace/prefix
            clock: Time source, replaceable in tests
        """
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.namespace = namespace
        self._clock = clock

        # Cache storage: key -> (value, expiry_time)
        self._cache: OrderedDict[str, tuple[Any, float | None]] = OrderedDict()

        # Stats
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0
        self._evictions = 0

        self._lock = asyncio.Lock()

    def _make_key(self, key: str) -> str:
        """Create namespaced cache key."""
        return f"{self.namespace}:{key}"

    def _is_expired(self, expiry: float | None) -> bool:
        """Check if entry is expired."""
        if expiry is None:
            return False
        return self._clock() > expiry

    def _live_entry(self, cache_key: str) -> tuple[Any, float | None] | None:
        """Return the entry if present and unexpired; drops expired entries. Caller holds the lock."""
        entry = self._cache.get(cache_key)
        if entry is None:
            return None
        if self._is_expired(entry[1]):
            del self._cache[cache_key]
            return None
        return entry

    async def fetch(self, key: str) -> tuple[Any, bool]:
        """Retrieve value from cache."""
        async with self._lock:
            cache_key = self._make_key(key)
            entry = self._live_entry(cache_key)

            if entry is None:
                self._misses += 1
                return None, False

            # Move to end (mark as recently used)
            self._cache.move_to_end(cache_key)
            self._hits += 1
            return entry[0], True

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        """Store value in cache."""
        async with self._lock:
            cache_key = self._make_key(key)
            expiry = self._clock() + ttl if ttl > 0 else None

            # Evict if at capacity and key is new
            if cache_key not in self._cache and len(self._cache) >= self.max_size:
                evicted_key, _ = self._cache.popitem(last=False)
                self._evictions += 1
                logger.debug(f"Evicted key from memory cache: {evicted_key}")

            self._cache[cache_key] = (value, expiry)
            self._cache.move_to_end(cache_key)
            self._sets += 1
            return True

    async def _adjust(self, key: str, delta: int, operation: str) -> int | None:
        async with self._lock:
            cache_key = self._make_key(key)
            entry = self._live_entry(cache_key)
            if entry is None:
                return None

            current, expiry = entry
            if isinstance(current, bool) or not isinstance(current, int):
                raise OperationFailure(
                    operation,
                    key,
                    reason="stored value is not an integer",
                    details={"value_type": type(current).__name__},
                )

            new_value = current + delta
            # Keep the original expiry; only the value changes
            self._cache[cache_key] = (new_value, expiry)
            self._cache.move_to_end(cache_key)
            return new_value

    async def increment(self, key: str, amount: int) -> int | None:
        """Add amount to a stored integer."""
        return await self._adjust(key, amount, "increment")

    async def decrement(self, key: str, amount: int) -> int | None:
        """Subtract amount from a stored integer."""
        return await self._adjust(key, -amount, "decrement")

    async def delete(self, key: str) -> bool:
        """Delete key from cache."""
        async with self._lock:
            cache_key = self._make_key(key)

            if self._live_entry(cache_key) is not None:
                del self._cache[cache_key]
                self._deletes += 1
                return True

            return False

    async def exists(self, key: str) -> bool:
        """Check if key exists and is not expired."""
        async with self._lock:
            return self._live_entry(self._make_key(key)) is not None

    async def clear(self) -> bool:
        """Clear all entries from cache."""
        async with self._lock:
            size = len(self._cache)
            self._cache.clear()
            logger.info(f"Cleared {size} entries from memory cache namespace '{self.namespace}'")
            return True

    async def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        async with self._lock:
            total_requests = self._hits + self._misses
            hit_rate = (self._hits / total_requests * 100) if total_requests > 0 else 0.0

            return {
                "backend": self.name,
                "size": len(self._cache),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(hit_rate, 2),
                "sets": self._sets,
                "deletes": self._deletes,
                "evictions": self._evictions,
                "namespace": self.namespace,
            }

    async def close(self) -> None:
        """Close cache and release resources."""
        # Nothing to release; entries live in-process
        logger.debug(f"Memory cache backend closed for namespace '{self.namespace}'")
