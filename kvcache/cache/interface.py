"""
kvcache — Cache Backend Interface

Defines the abstract interface that all cache backends must implement.
"""

import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

Compute = Callable[[], Any | Awaitable[Any]]


async def resolve_compute(compute: Compute) -> Any:
    """Call a value producer that may be a plain function or a coroutine function."""
    value = compute()
    if inspect.isawaitable(value):
        value = await value
    return value


class CacheBackend(ABC):
    """
    Abstract base class for cache backends.

    Backends raise OperationFailure (or let client errors propagate) when an
    operation cannot be completed; the facade turns those into failure results.
    """

    #: Name reported in stats and logs
    name: str = "abstract"

    #: True when TTLs above 30 days are read as absolute Unix timestamps
    interprets_large_ttl_as_timestamp: bool = False

    default_ttl: int = 0

    @classmethod
    def is_available(cls) -> bool:
        """Capability check, used while validating configuration."""
        return True

    @abstractmethod
    async def fetch(self, key: str) -> tuple[Any, bool]:
        """
        Retrieve a value from the cache.

        Args:
            key: Cache key

        Returns:
            (value, found); value is None when found is False
        """
        pass

    async def get(self, key: str) -> Any | None:
        """Retrieve a value, or None if it is missing."""
        value, _ = await self.fetch(key)
        return value

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int) -> bool:
        """
        Store a value in the cache.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time-to-live in seconds, already resolved by the caller (0 = no expiry)

        Returns:
            True if stored successfully
        """
        pass

    @abstractmethod
    async def increment(self, key: str, amount: int) -> int | None:
        """
        Atomically add amount to a stored integer.

        Returns:
            New value, or None if the key is missing
        """
        pass

    @abstractmethod
    async def decrement(self, key: str, amount: int) -> int | None:
        """
        Atomically subtract amount from a stored integer.

        Returns:
            New value, or None if the key is missing
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Delete a key from the cache.

        Returns:
            True if key was deleted, False if key didn't exist
        """
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check if a key exists and is not expired."""
        pass

    @abstractmethod
    async def clear(self) -> bool:
        """
        Clear all entries in this backend's namespace.

        Returns:
            True if cache was cleared successfully
        """
        pass

    @abstractmethod
    async def get_stats(self) -> dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with cache statistics (hits, misses, size, etc.)
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the cache backend and release resources."""
        pass

    async def get_or_compute(self, key: str, compute: Compute, ttl: int) -> Any:
        """
        Return the stored value, computing and storing it on a miss.

        Default implementation is a plain fetch, compute, set sequence. Two
        concurrent callers missing on the same key may both run compute; the
        last write wins. Backends with an atomic fetch-or-compute override this.

        Args:
            key: Cache key
            compute: Zero-argument value producer (sync or async)
            ttl: TTL for the computed value

        Returns:
            Cached or computed value
        """
        value, found = await self.fetch(key)
        if found:
            return value

        value = await resolve_compute(compute)
        await self.set(key, value, ttl)
        return value
