"""
kvcache — Unified Key-Value Cache Facade

One async API (get, set, get_or_compute, increment, decrement, delete,
clear, exists) over either a local in-process store or a distributed,
client-side hashed cluster. The backend is chosen once from validated
configuration and never changes afterwards.

Usage:
    from kvcache import create_cache

    async with create_cache(distributed_options={"servers": "cache1:6379;cache2"}) as cache:
        await cache.set("answer", 42, ttl=60)
        await cache.increment("answer")
"""

from .cache import CacheBackend, CacheFacade, CacheView, create_backend, create_cache
from .config import (
    DEFAULT_PORT,
    KVConfig,
    ServerEndpoint,
    load_config,
    parse_servers,
    select_backend,
)
from .errors import (
    BackendUnavailableError,
    ConfigError,
    KVCacheError,
    OperationFailure,
    ResultCode,
)
from .observability import configure_logging
from .ttl import LONG_TTL_THRESHOLD, normalize_ttl

__version__ = "0.3.1"

__all__ = [
    # Facade
    "create_cache",
    "create_backend",
    "CacheFacade",
    "CacheView",
    "CacheBackend",
    # Configuration
    "load_config",
    "select_backend",
    "parse_servers",
    "KVConfig",
    "ServerEndpoint",
    "DEFAULT_PORT",
    # TTL
    "normalize_ttl",
    "LONG_TTL_THRESHOLD",
    # Errors
    "KVCacheError",
    "ConfigError",
    "BackendUnavailableError",
    "OperationFailure",
    "ResultCode",
    # Logging
    "configure_logging",
]
