"""
kvcache — Distributed Cache Backend

Asynchronous client-side hashed cache over a pool of independent Redis nodes:
- Keys are routed to one node by modulo or ketama distribution
- JSON serialization for values
- Memcached TTL convention: expiries above 30 days are absolute Unix
  timestamps (sent as EXAT), smaller ones are relative (EX)
- Native INCRBY/DECRBY under WATCH so missing keys are never created
- Single-flight get-or-compute guarded by SET NX
- Each node sits behind a pybreaker circuit breaker; an open breaker takes
  the node off the ring until retry_timeout has passed

Requires: redis>=5.0 with asyncio support, pybreaker

Example:
    cache = DistributedCacheBackend(
        servers=parse_servers("cache1:6379;cache2:6379"),
        options=DistributedClientOptions(),
    )
    await cache.set("greeting", {"msg": "hello"}, ttl=60)
    value, found = await cache.fetch("greeting")
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ...config.schemas import DistributedClientOptions, DistributionStrategy
from ...config.servers import ServerEndpoint
from ...errors import OperationFailure
from ...ttl import LONG_TTL_THRESHOLD
from ..hashing import Distribution, KetamaRing, ModuloDistribution
from ..interface import CacheBackend, Compute, resolve_compute

logger = logging.getLogger(__name__)

try:
    # redis-py asyncio client (v4+)
    from redis.asyncio import Redis
    from redis.asyncio.retry import Retry
    from redis.backoff import NoBackoff
    from redis.exceptions import ConnectionError as RedisConnectionError
    from redis.exceptions import RedisError, WatchError
    from redis.exceptions import TimeoutError as RedisTimeoutError

    REDIS_AVAILABLE = True
except ImportError:  # pragma: no cover
    Redis = None  # type: ignore
    REDIS_AVAILABLE = False

try:
    import pybreaker

    PYBREAKER_AVAILABLE = True
except ImportError:  # pragma: no cover
    pybreaker = None  # type: ignore
    PYBREAKER_AVAILABLE = False

ClientFactory = Callable[[ServerEndpoint, DistributedClientOptions], Any]


def default_client_factory(endpoint: ServerEndpoint, options: DistributedClientOptions) -> Any:
    """Build one Redis client (lazy connection; connects on first command)."""
    if not REDIS_AVAILABLE or Redis is None:
        raise RuntimeError("redis is required for the distributed backend. Install with: pip install 'redis>=5.0.0'")

    return Redis(
        host=endpoint.host,
        port=endpoint.port,
        db=options.db,
        socket_connect_timeout=options.connect_timeout,
        socket_timeout=options.socket_timeout,
        max_connections=options.max_connections,
        decode_responses=True,
        # failures are counted by the node's breaker, not retried inside the client
        retry=Retry(NoBackoff(), 0),
    )


def _is_server_error(error: BaseException) -> bool:
    """Connection trouble counts against a node; a command error does not."""
    return isinstance(error, (RedisConnectionError, RedisTimeoutError, OSError))


def _not_server_error(error: BaseException) -> bool:
    return not _is_server_error(error)


class NodeBreakerListener(pybreaker.CircuitBreakerListener if PYBREAKER_AVAILABLE else object):  # type: ignore
    """Keeps the backend's distribution in step with one node's breaker."""

    def __init__(self, backend: DistributedCacheBackend, node_id: str):
        self.backend = backend
        self.node_id = node_id

    def state_change(self, cb: Any, old_state: Any, new_state: Any) -> None:
        old_name = old_state.name if old_state else None
        self.backend._on_breaker_change(self.node_id, old_name, new_state.name, cb.fail_counter)

    def failure(self, cb: Any, exc: BaseException) -> None:
        logger.debug(
            "Cache server %s failed (%d consecutive)",
            self.node_id,
            cb.fail_counter,
            extra={"server": self.node_id, "error": str(exc)},
        )


class _Node:
    """A single server with its client and circuit breaker."""

    __slots__ = ("endpoint", "client", "breaker")

    def __init__(self, endpoint: ServerEndpoint, client: Any) -> None:
        self.endpoint = endpoint
        self.client = client
        self.breaker: Any = None

    @property
    def node_id(self) -> str:
        return str(self.endpoint)

    @property
    def ejected(self) -> bool:
        return self.breaker is not None and self.breaker.current_state == pybreaker.STATE_OPEN


class DistributedCacheBackend(CacheBackend):
    """
    Distributed cache backend with JSON serialization and TTL.

    Notes:
    - Keys are prefixed with the configured namespace to avoid collisions.
    - Routing hashes the caller's key, so placement does not depend on the namespace.
    - Operations never fail over to another node; an unreachable owner is a failure.
    - With remove_failed_servers off (simple distribution) nodes have no breaker
      and are never ejected.
    """

    name = "distributed"
    interprets_large_ttl_as_timestamp = True

    def __init__(
        self,
        servers: list[ServerEndpoint],
        options: DistributedClientOptions | None = None,
        namespace: str = "kv",
        default_ttl: int = 0,
        client_factory: ClientFactory | None = None,
    ) -> None:
        """
        Initialize distributed cache backend.

        Args:
            servers: Ordered node endpoints
            options: Connection, distribution and failure-handling options
            namespace: Prefix for all keys
            default_ttl: Default TTL in seconds (0 => no expiry)
            client_factory: Builds a client per endpoint (defaults to redis.asyncio.Redis)
        """
        if not servers:
            raise ValueError("at least one server is required")
        if not PYBREAKER_AVAILABLE or pybreaker is None:
            raise RuntimeError("pybreaker is required for the distributed backend. Install with: pip install pybreaker")

        self.options = options or DistributedClientOptions()
        self.namespace = namespace.strip() or "kv"
        self.default_ttl = max(0, int(default_ttl))

        factory = client_factory or default_client_factory
        self._nodes: dict[str, _Node] = {}
        for endpoint in servers:
            node_id = str(endpoint)
            if node_id in self._nodes:
                continue
            node = _Node(endpoint, factory(endpoint, self.options))
            if self.options.remove_failed_servers:
                node.breaker = pybreaker.CircuitBreaker(
                    fail_max=self.options.server_failure_limit,
                    reset_timeout=self.options.retry_timeout,
                    exclude=[_not_server_error],
                    name=node_id,
                    listeners=[NodeBreakerListener(self, node_id)],
                )
            self._nodes[node_id] = node

        self._distribution = self._build_distribution()

        # In-flight get_or_compute locks by key
        self._inflight: dict[str, asyncio.Lock] = {}

        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0

    @classmethod
    def is_available(cls) -> bool:
        """The backend needs the redis asyncio client and pybreaker."""
        return REDIS_AVAILABLE and PYBREAKER_AVAILABLE

    # ------------ Helpers ------------

    def _build_distribution(self) -> Distribution:
        if self.options.distribution == DistributionStrategy.CONSISTENT:
            return KetamaRing(self._nodes, compatible=self.options.compatibility_mode)
        return ModuloDistribution(self._nodes)

    def _make_key(self, key: str) -> str:
        """Create namespaced key."""
        return f"{self.namespace}:{key}"

    @staticmethod
    def _to_json(value: Any) -> str:
        """Serialize value to JSON string."""
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))

    @staticmethod
    def _from_json(data: str | bytes | None) -> Any | None:
        """Deserialize JSON string to Python object. Returns None if data is None."""
        if data is None:
            return None
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        try:
            return json.loads(data)
        except ValueError as e:
            # Written by another client; hand back the raw string
            logger.warning(
                f"Failed to decode JSON from cache, returning raw data: {e}",
                extra={"data_preview": data[:100], "error": str(e)},
            )
            return data

    @staticmethod
    def _expiry(ttl: int) -> dict[str, int]:
        """
        Map a normalized TTL onto SET arguments:
        - 0 or negative -> no expiry
        - above LONG_TTL_THRESHOLD -> absolute Unix timestamp (EXAT)
        - otherwise -> seconds to live (EX)
        """
        if ttl <= 0:
            return {}
        if ttl > LONG_TTL_THRESHOLD:
            return {"exat": ttl}
        return {"ex": ttl}

    def _on_breaker_change(self, node_id: str, old_state: str | None, new_state: str, failures: int) -> None:
        """Take a node off the ring when its breaker opens and back on when it leaves open."""
        if new_state == pybreaker.STATE_OPEN:
            self._distribution.remove_node(node_id)
            logger.warning(
                "Ejected cache server %s after %d failures",
                node_id,
                failures,
                extra={
                    "server": node_id,
                    "failures": failures,
                    "retry_timeout": self.options.retry_timeout,
                },
            )
        elif old_state == pybreaker.STATE_OPEN:
            self._distribution.add_node(node_id)
            logger.info("Retrying ejected cache server %s", node_id, extra={"server": node_id})

    async def _retry_ejected(self) -> None:
        """
        Give ejected nodes a chance to rejoin.

        While retry_timeout has not passed the breaker refuses the ping without
        touching the network. Afterwards it goes half-open, the ping decides,
        and the listener puts the node back on the ring.
        """
        for node in self._nodes.values():
            if not node.ejected:
                continue
            try:
                await self._call_node(node, "ping", None, lambda client: client.ping())
            except OperationFailure:
                continue

    async def _route(self, key: str) -> _Node:
        await self._retry_ejected()
        node_id = self._distribution.get_node(key)
        if node_id is None:
            raise OperationFailure("route", key, reason="no live cache servers")
        return self._nodes[node_id]

    async def _call_node(
        self,
        node: _Node,
        operation: str,
        key: str | None,
        fn: Callable[[Any], Awaitable[Any]],
        guarded: bool = True,
    ) -> Any:
        """
        Run one client call, wrapping client errors.

        Guarded calls go through the node's breaker, which counts connection
        and timeout errors and refuses calls while the node is ejected.
        """
        try:
            if node.breaker is None or not guarded:
                return await fn(node.client)
            with node.breaker.calling():
                return await fn(node.client)
        except pybreaker.CircuitBreakerError as e:
            raise OperationFailure(
                operation, key, reason=f"cache server ejected: {e}", details={"server": node.node_id}
            ) from e
        except RedisError as e:
            if node.breaker is None and _is_server_error(e):
                logger.debug(
                    "Cache server %s failed", node.node_id, extra={"server": node.node_id, "error": str(e)}
                )
            raise OperationFailure(
                operation, key, reason=str(e), details={"server": node.node_id}
            ) from e
        except OSError as e:
            raise OperationFailure(
                operation, key, reason=str(e), details={"server": node.node_id}
            ) from e

    async def _call(self, operation: str, key: str, fn: Callable[[Any], Awaitable[Any]]) -> Any:
        return await self._call_node(await self._route(key), operation, key, fn)

    # ------------ Core Interface ------------

    async def fetch(self, key: str) -> tuple[Any, bool]:
        """Retrieve a value by key."""
        ns_key = self._make_key(key)
        data = await self._call("get", key, lambda client: client.get(ns_key))
        if data is None:
            self._misses += 1
            return None, False

        self._hits += 1
        return self._from_json(data), True

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        """Store a value; ttl may be relative seconds or an absolute timestamp."""
        ns_key = self._make_key(key)
        payload = self._to_json(value)
        expiry = self._expiry(ttl)

        res = await self._call("set", key, lambda client: client.set(ns_key, payload, **expiry))
        success = bool(res)  # True or 'OK'
        if success:
            self._sets += 1
        return success

    async def _adjust(self, key: str, delta: int, operation: str) -> int | None:
        ns_key = self._make_key(key)

        async def adjust(client: Any) -> int | None:
            async with client.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(ns_key)
                        if not await pipe.exists(ns_key):
                            return None
                        pipe.multi()
                        pipe.incrby(ns_key, delta)
                        (result,) = await pipe.execute()
                        return int(result)
                    except WatchError:
                        # Key changed between WATCH and EXEC; retry
                        continue

        return await self._call(operation, key, adjust)

    async def increment(self, key: str, amount: int) -> int | None:
        """Add amount to a stored integer with native INCRBY."""
        return await self._adjust(key, amount, "increment")

    async def decrement(self, key: str, amount: int) -> int | None:
        """Subtract amount from a stored integer with native INCRBY."""
        return await self._adjust(key, -amount, "decrement")

    async def get_or_compute(self, key: str, compute: Compute, ttl: int) -> Any:
        """
        Return the stored value or compute it once.

        Concurrent callers in this process share one computation per key. The
        result is written with SET NX; if another process stored a value
        first, that value wins and is returned instead.
        """
        lock = self._inflight.setdefault(key, asyncio.Lock())
        try:
            async with lock:
                value, found = await self.fetch(key)
                if found:
                    return value

                value = await resolve_compute(compute)

                ns_key = self._make_key(key)
                payload = self._to_json(value)
                expiry = self._expiry(ttl)
                stored = await self._call(
                    "get_or_compute",
                    key,
                    lambda client: client.set(ns_key, payload, nx=True, **expiry),
                )
                if stored:
                    self._sets += 1
                    return value

                existing, found = await self.fetch(key)
                return existing if found else value
        finally:
            if not lock.locked() and self._inflight.get(key) is lock:
                del self._inflight[key]

    async def delete(self, key: str) -> bool:
        """Delete a single key."""
        ns_key = self._make_key(key)
        deleted = await self._call("delete", key, lambda client: client.delete(ns_key))
        if deleted:
            self._deletes += 1
        return bool(deleted)

    async def exists(self, key: str) -> bool:
        """Check if a key exists."""
        ns_key = self._make_key(key)
        return bool(await self._call("exists", key, lambda client: client.exists(ns_key)))

    async def clear(self) -> bool:
        """
        Clear all entries under the namespace on every node.

        Implementation: SCAN match "<namespace>:*" and DEL in batches. Ejected
        nodes are tried directly; one that cannot be reached makes the clear fail.
        """
        pattern = f"{self.namespace}:*"
        batch_size = 1000

        async def clear_node(client: Any) -> int:
            cursor = 0
            deleted = 0
            while True:
                cursor, keys = await client.scan(cursor=cursor, match=pattern, count=batch_size)
                if keys:
                    deleted += await client.delete(*keys)
                if cursor == 0:
                    return deleted

        total_deleted = 0
        failed: list[str] = []
        for node in self._nodes.values():
            try:
                total_deleted += await self._call_node(node, "clear", None, clear_node, guarded=not node.ejected)
            except OperationFailure as e:
                logger.error(
                    f"Failed to clear namespace '{self.namespace}' on {node.node_id}: {e}",
                    extra={"server": node.node_id, "namespace": self.namespace},
                )
                failed.append(node.node_id)

        self._deletes += total_deleted
        if failed:
            raise OperationFailure("clear", reason=f"{len(failed)} server(s) failed", details={"servers": failed})

        logger.info(f"Cleared {total_deleted} keys from namespace '{self.namespace}'")
        return True

    async def get_stats(self) -> dict[str, Any]:
        """Return cache statistics and per-node connectivity."""
        total_requests = self._hits + self._misses
        stats: dict[str, Any] = {
            "backend": self.name,
            "namespace": self.namespace,
            "default_ttl": self.default_ttl,
            "distribution": self.options.distribution.value,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round((self._hits / total_requests) * 100, 2) if total_requests else 0.0,
            "sets": self._sets,
            "deletes": self._deletes,
            "live_servers": len(self._distribution),
            "servers": {},
        }

        live = set(self._distribution.nodes)
        for node in self._nodes.values():
            breaker = node.breaker
            server: dict[str, Any] = {
                "connected": False,
                "ejected": node.node_id not in live,
                "state": breaker.current_state if breaker is not None else "closed",
                "failures": breaker.fail_counter if breaker is not None else 0,
            }
            if node.node_id in live:
                try:
                    server["connected"] = bool(await node.client.ping())
                except Exception as e:
                    logger.warning(
                        f"Failed to ping cache server {node.node_id}: {e}",
                        extra={"server": node.node_id, "error": str(e)},
                    )
            stats["servers"][node.node_id] = server

        return stats

    async def close(self) -> None:
        """Close every node client and release resources."""
        for node in self._nodes.values():
            try:
                await node.client.aclose()
            except Exception as e:
                logger.error(
                    f"Error closing client for {node.node_id}: {e}",
                    extra={"server": node.node_id, "error": str(e)},
                    exc_info=True,
                )
            finally:
                try:
                    await node.client.connection_pool.disconnect()
                except Exception as e:
                    logger.warning(f"Error disconnecting connection pool: {e}", extra={"error": str(e)})

        logger.info(f"Closed distributed cache backend for namespace '{self.namespace}'")
