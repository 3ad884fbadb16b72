"""
kvcache — Cache Module

Provides the cache facade and its pluggable backends.

- factory.py: Single source of truth for facade creation
- facade.py: The unified operation set and the subscript view
- interface.py: Abstract backend interface
- backends/: Local (memory) and distributed (hashed Redis pool) backends

Usage:
    from kvcache.cache import create_cache

    cache = create_cache(local_options={"enabled": True})
    await cache.set("key", "value", ttl=3600)
    value = await cache.get("key")
"""

from .facade import CacheFacade, CacheView
from .factory import create_backend, create_cache
from .interface import CacheBackend

__all__ = [
    # Factory functions
    "create_cache",
    "create_backend",
    # Facade
    "CacheFacade",
    "CacheView",
    # Interface
    "CacheBackend",
]
