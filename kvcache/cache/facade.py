"""
kvcache — Cache Facade

The single entry point for cache operations. A facade wraps at most one
backend, chosen once at construction, and never switches to another one.

Every operation is best effort:
- invalid input (empty key, negative TTL, non-positive amount) is rejected
  before reaching the backend
- backend errors are logged and returned as the operation's failure value
- with no backend, reads return None/False and writes return False

The outcome of the last call in the current task is available from
last_result_code, so a miss can be told apart from an error.
"""

from __future__ import annotations

import contextvars
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from ..errors import ResultCode
from ..ttl import normalize_ttl
from .interface import CacheBackend, Compute

logger = logging.getLogger(__name__)

_last_result: contextvars.ContextVar[ResultCode] = contextvars.ContextVar(
    "kvcache_last_result", default=ResultCode.SUCCESS
)


class CacheFacade:
    """
    Unified cache API over a single active backend.

    Usage:
        cache = create_cache(distributed_options={"servers": "cache1:6379;cache2:6379"})
        await cache.set("user:1", {"name": "Ada"}, ttl=300)
        user = await cache.get("user:1")
        hits = await cache.increment("hits")
    """

    def __init__(
        self,
        backend: CacheBackend | None,
        backend_kind: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Args:
            backend: Active backend, or None for a disabled cache
            backend_kind: "none", "local" or "distributed" (defaults to the backend's name)
            clock: Wall clock used to turn long TTLs into timestamps
        """
        self._backend = backend
        self._backend_kind = backend_kind or (backend.name if backend else "none")
        self._clock = clock

    @property
    def backend(self) -> CacheBackend | None:
        return self._backend

    @property
    def backend_kind(self) -> str:
        return self._backend_kind

    @property
    def enabled(self) -> bool:
        return self._backend is not None

    @property
    def last_result_code(self) -> ResultCode:
        """Outcome of the most recent operation in the current task."""
        return _last_result.get()

    # ------------ Helpers ------------

    def _check_key(self, operation: str, key: str) -> bool:
        if isinstance(key, str) and key:
            return True
        logger.warning(
            f"Attempted to {operation} cache value with empty or invalid key",
            extra={"operation": operation, "key": repr(key)},
        )
        return False

    def _resolve_ttl(self, backend: CacheBackend, ttl: int | None) -> int | None:
        """Apply the backend default and the 30-day timestamp rule. None means invalid."""
        if ttl is None:
            ttl = backend.default_ttl

        if isinstance(ttl, bool) or not isinstance(ttl, int) or ttl < 0:
            logger.warning("Rejected invalid TTL", extra={"ttl": repr(ttl)})
            return None

        if backend.interprets_large_ttl_as_timestamp:
            return normalize_ttl(ttl, self._clock)
        return ttl

    async def _dispatch(
        self,
        operation: str,
        key: str | None,
        call: Callable[[CacheBackend], Awaitable[Any]],
        failure: Any,
    ) -> tuple[Any, bool]:
        """
        Run one backend call.

        Returns:
            (result, ok); result is the failure value when ok is False
        """
        if self._backend is None:
            _last_result.set(ResultCode.DISABLED)
            return failure, False

        try:
            result = await call(self._backend)
        except Exception as e:
            logger.error(
                f"Cache {operation} failed: {e}",
                extra={"operation": operation, "key": key, "backend": self._backend_kind, "error": str(e)},
                exc_info=True,
            )
            _last_result.set(ResultCode.FAILURE)
            return failure, False

        return result, True

    def _reject(self, failure: Any) -> Any:
        _last_result.set(ResultCode.DISABLED if self._backend is None else ResultCode.FAILURE)
        return failure

    # ------------ Operations ------------

    async def get(self, key: str) -> Any | None:
        """
        Retrieve a value from the cache.

        Returns:
            The value, or None when missing, on error, or with no backend
        """
        if not self._check_key("get", key):
            return self._reject(None)

        result, ok = await self._dispatch("get", key, lambda b: b.fetch(key), (None, False))
        if not ok:
            return None

        value, found = result
        _last_result.set(ResultCode.SUCCESS if found else ResultCode.NOT_FOUND)
        return value

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """
        Store a value in the cache.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time to live in seconds (None = backend default, 0 = no expiry)

        Returns:
            True if stored
        """
        if not self._check_key("set", key):
            return self._reject(False)
        if self._backend is None:
            return self._reject(False)

        resolved = self._resolve_ttl(self._backend, ttl)
        if resolved is None:
            return self._reject(False)

        stored, ok = await self._dispatch("set", key, lambda b: b.set(key, value, resolved), False)
        if ok:
            _last_result.set(ResultCode.SUCCESS if stored else ResultCode.FAILURE)
        return bool(stored)

    async def get_or_compute(self, key: str, compute: Compute, ttl: int | None = None) -> Any | None:
        """
        Retrieve a value, computing and storing it when it is missing.

        The distributed backend runs compute at most once per miss for all
        concurrent callers in the process. The local backend falls back to a
        plain get, compute, set sequence: two callers racing on the same miss
        may both compute, and the last write wins.

        Args:
            key: Cache key
            compute: Zero-argument producer of the value (sync or async);
                wrap it in a lambda to pass arguments
            ttl: TTL for a computed value (None = backend default)

        Returns:
            Cached or computed value; None on failure or with no backend
        """
        if not self._check_key("get_or_compute", key):
            return self._reject(None)
        if self._backend is None:
            return self._reject(None)

        resolved = self._resolve_ttl(self._backend, ttl)
        if resolved is None:
            return self._reject(None)

        value, ok = await self._dispatch(
            "get_or_compute", key, lambda b: b.get_or_compute(key, compute, resolved), None
        )
        if ok:
            _last_result.set(ResultCode.SUCCESS)
        return value

    async def _adjust(self, operation: str, key: str, amount: int) -> int | None:
        if not self._check_key(operation, key):
            return self._reject(None)

        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            logger.warning(
                f"Rejected non-positive {operation} amount",
                extra={"operation": operation, "key": key, "amount": repr(amount)},
            )
            return self._reject(None)

        if operation == "increment":
            result, ok = await self._dispatch(operation, key, lambda b: b.increment(key, amount), None)
        else:
            result, ok = await self._dispatch(operation, key, lambda b: b.decrement(key, amount), None)

        if ok:
            _last_result.set(ResultCode.NOT_FOUND if result is None else ResultCode.SUCCESS)
        return result

    async def increment(self, key: str, amount: int = 1) -> int | None:
        """
        Atomically increment a stored integer.

        Returns:
            New value, or None if amount <= 0, the key is missing, the value
            is not an integer, or no backend is active
        """
        return await self._adjust("increment", key, amount)

    async def decrement(self, key: str, amount: int = 1) -> int | None:
        """Atomically decrement a stored integer. Same failure rules as increment."""
        return await self._adjust("decrement", key, amount)

    async def delete(self, key: str) -> bool:
        """
        Delete a key.

        Returns:
            True if the key was removed; False if it did not exist or on error
        """
        if not self._check_key("delete", key):
            return self._reject(False)

        deleted, ok = await self._dispatch("delete", key, lambda b: b.delete(key), False)
        if ok:
            _last_result.set(ResultCode.SUCCESS if deleted else ResultCode.NOT_FOUND)
        return bool(deleted)

    async def clear(self) -> bool:
        """Remove every entry from the active backend."""
        cleared, ok = await self._dispatch("clear", None, lambda b: b.clear(), False)
        if ok:
            _last_result.set(ResultCode.SUCCESS if cleared else ResultCode.FAILURE)
        return bool(cleared)

    async def exists(self, key: str) -> bool:
        """Check whether a key is present without reading its value where possible."""
        if not self._check_key("exists", key):
            return self._reject(False)

        found, ok = await self._dispatch("exists", key, lambda b: b.exists(key), False)
        if ok:
            _last_result.set(ResultCode.SUCCESS if found else ResultCode.NOT_FOUND)
        return bool(found)

    async def get_stats(self) -> dict[str, Any]:
        """Backend statistics, tagged with the active backend kind."""
        stats, ok = await self._dispatch("get_stats", None, lambda b: b.get_stats(), {})
        return {**stats, "backend": self._backend_kind, "enabled": self.enabled, "ok": ok}

    async def close(self) -> None:
        """Release backend resources."""
        if self._backend is None:
            return
        try:
            await self._backend.close()
        except Exception as e:
            logger.error(
                f"Error closing cache backend '{self._backend_kind}': {e}",
                extra={"backend": self._backend_kind, "error": str(e)},
                exc_info=True,
            )

    async def __aenter__(self) -> CacheFacade:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def view(self) -> CacheView:
        """Subscript-style wrapper over this facade."""
        return CacheView(self)


class CacheView:
    """
    Subscript sugar over a CacheFacade.

        value = await view["key"]
        await view.store("key", value)
        await view.contains("key")
        await view.remove("key")

    Item assignment, deletion and ``in`` cannot be awaited in Python, so
    those are named coroutines. Each call delegates to the facade unchanged.
    """

    def __init__(self, facade: CacheFacade) -> None:
        self._facade = facade

    def __getitem__(self, key: str) -> Awaitable[Any | None]:
        return self._facade.get(key)

    async def store(self, key: str, value: Any) -> bool:
        return await self._facade.set(key, value)

    async def remove(self, key: str) -> bool:
        return await self._facade.delete(key)

    async def contains(self, key: str) -> bool:
        return await self._facade.exists(key)
