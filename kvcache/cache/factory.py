"""
kvcache — Cache Factory

Canonical factory for building a cache facade from configuration.
This is the only way to obtain a configured backend.

Key points:
- Configuration is validated once and turned into an immutable BackendSelection
- Exactly one backend is built; the facade never switches backends afterwards
- The distributed backend's redis dependency is imported lazily
- The facade is returned to the caller; there is no module-level registry

Examples:
    from kvcache import create_cache

    # Local in-process store
    cache = create_cache(local_options={"enabled": True})

    # Distributed store over two nodes with consistent hashing
    cache = create_cache(distributed_options={"servers": "cache1:6379;cache2:6379"})

    # From KV_* environment variables / .env
    cache = create_cache()
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from ..config import (
    BackendSelection,
    DistributedBackend,
    LocalBackend,
    NoBackend,
    load_config,
    select_backend,
)
from ..errors import BackendUnavailableError, ConfigError
from ..observability import configure_logging
from .backends.memory import MemoryCacheBackend
from .facade import CacheFacade
from .interface import CacheBackend

logger = logging.getLogger(__name__)


def _create_memory_cache(selection: LocalBackend) -> CacheBackend:
    """Internal helper to construct the local store."""
    options = selection.options
    return MemoryCacheBackend(
        max_size=options.max_size,
        default_ttl=options.default_ttl,
        namespace=options.namespace,
    )


def _create_distributed_cache(selection: DistributedBackend, client_factory: Any = None) -> CacheBackend:
    """Internal helper to construct the distributed store with lazy import."""
    try:
        from .backends.redis import DistributedCacheBackend
    except ImportError as e:
        logger.error(
            "Distributed backend selected but its client could not be loaded",
            extra={"package": "redis>=5.0.0", "error": str(e)},
        )
        raise BackendUnavailableError(
            "distributed",
            details={"package": "redis>=5.0.0", "error": str(e)},
        ) from e

    options = selection.options
    return DistributedCacheBackend(
        servers=list(options.servers),
        options=selection.client_options,
        namespace=options.namespace,
        default_ttl=options.default_ttl,
        client_factory=client_factory,
    )


def create_backend(
    selection: BackendSelection,
    client_factory: Any = None,
) -> CacheBackend | None:
    """
    Build the backend described by a selection.

    Args:
        selection: Validated backend selection
        client_factory: Optional per-endpoint client builder for the distributed store

    Returns:
        The backend, or None for NoBackend

    Raises:
        BackendUnavailableError: If the backend's client cannot be loaded
        ConfigError: If the selection is of an unknown kind
    """
    if isinstance(selection, NoBackend):
        return None
    if isinstance(selection, LocalBackend):
        return _create_memory_cache(selection)
    if isinstance(selection, DistributedBackend):
        return _create_distributed_cache(selection, client_factory)

    raise ConfigError(
        f"Unknown backend selection: {selection!r}",
        details={"supported": ["none", "local", "distributed"]},
    )


def create_cache(
    selection: BackendSelection | None = None,
    *,
    local_options: Mapping[str, Any] | None = None,
    distributed_options: Mapping[str, Any] | None = None,
    client_factory: Any = None,
    clock: Callable[[], float] = time.time,
) -> CacheFacade:
    """
    Create a cache facade.

    With no selection and no option groups, configuration is read from the
    environment via load_config().

    Args:
        selection: Pre-validated backend selection
        local_options: Local store option group
        distributed_options: Distributed store option group
        client_factory: Optional per-endpoint client builder for the distributed store
        clock: Wall clock used for long-TTL normalization

    Returns:
        Configured CacheFacade

    Raises:
        ConfigError: If configuration is invalid
        BackendUnavailableError: If an enabled backend cannot be used
    """
    if selection is None:
        if local_options is None and distributed_options is None:
            config = load_config()
            configure_logging(config.log_level.value, json_format=config.log_format == "json")
            selection = config.select_backend()
        else:
            selection = select_backend(local_options, distributed_options)

    backend = create_backend(selection, client_factory=client_factory)

    logger.info(
        "Cache facade created with backend: %s",
        selection.kind,
        extra={"backend": selection.kind},
    )
    return CacheFacade(backend, backend_kind=selection.kind, clock=clock)
