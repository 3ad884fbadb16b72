"""
kvcache — Backend Selection

Validates the two option groups and selects the single active backend.

Rules:
- A group that is None or empty was not supplied.
- A supplied group is shallow-merged over its defaults (caller keys win).
- The local store wins when both groups are enabled; the distributed
  capability is then never checked.
- Requesting a backend whose capability check fails is fatal.
- With no enabled group the selection is NoBackend, not an error.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from ..errors import BackendUnavailableError, ConfigError
from .schemas import (
    BackendSelection,
    DistributedBackend,
    DistributedStoreOptions,
    LocalBackend,
    LocalStoreOptions,
    NoBackend,
)

logger = logging.getLogger(__name__)

CapabilityCheck = Callable[[], bool]

LOCAL_DEFAULTS: dict[str, Any] = LocalStoreOptions().model_dump()
DISTRIBUTED_DEFAULTS: dict[str, Any] = DistributedStoreOptions().model_dump()


def local_store_available() -> bool:
    """Default capability check for the local store."""
    from ..cache.backends.memory import MemoryCacheBackend

    return MemoryCacheBackend.is_available()


def distributed_store_available() -> bool:
    """Default capability check for the distributed store."""
    try:
        from ..cache.backends.redis import DistributedCacheBackend
    except ImportError:
        return False

    return DistributedCacheBackend.is_available()


def _merge_options(
    group: str,
    raw: Mapping[str, Any] | None,
    defaults: dict[str, Any],
    model: type[BaseModel],
) -> Any:
    """Shallow-merge a supplied option group over its defaults and validate it."""
    if raw is None:
        return None

    if not isinstance(raw, Mapping):
        raise ConfigError(
            f"{group} options must be a mapping",
            details={"group": group, "type": type(raw).__name__},
        )

    if not raw:
        return None

    merged = {**defaults, **raw}
    try:
        return model.model_validate(merged)
    except ValidationError as e:
        logger.error(
            "Invalid %s options: %s",
            group,
            e,
            extra={"group": group, "validation_errors": e.errors(include_url=False)},
        )
        raise ConfigError(
            f"Invalid {group} options",
            details={"group": group, "validation_errors": e.errors(include_url=False)},
        ) from e


def select_backend(
    local_options: Mapping[str, Any] | None = None,
    distributed_options: Mapping[str, Any] | None = None,
    *,
    local_check: CapabilityCheck | None = None,
    distributed_check: CapabilityCheck | None = None,
) -> BackendSelection:
    """
    Validate option groups and select the active backend.

    Args:
        local_options: Local store options (at least "enabled")
        distributed_options: Distributed store options ("enabled", "servers", "consistent", ...)
        local_check: Capability check for the local store
        distributed_check: Capability check for the distributed store

    Returns:
        The immutable backend selection

    Raises:
        ConfigError: If an option group or the server list is malformed
        BackendUnavailableError: If an enabled backend's capability is missing
    """
    local = _merge_options("local", local_options, LOCAL_DEFAULTS, LocalStoreOptions)
    distributed = _merge_options(
        "distributed", distributed_options, DISTRIBUTED_DEFAULTS, DistributedStoreOptions
    )

    if local is not None and local.enabled:
        check = local_check or local_store_available
        if not check():
            raise BackendUnavailableError("local", details={"reason": "local store capability check failed"})

        logger.info(
            "Selected local cache backend",
            extra={"backend": "local", "namespace": local.namespace, "max_size": local.max_size},
        )
        return LocalBackend(options=local)

    if distributed is not None and distributed.enabled:
        check = distributed_check or distributed_store_available
        if not check():
            raise BackendUnavailableError(
                "distributed",
                details={"reason": "distributed client is unavailable", "package": "redis>=5.0.0"},
            )

        client_options = distributed.client_options()
        logger.info(
            "Selected distributed cache backend with %d server(s)",
            len(distributed.servers),
            extra={
                "backend": "distributed",
                "servers": [str(s) for s in distributed.servers],
                "distribution": client_options.distribution.value,
            },
        )
        return DistributedBackend(options=distributed, client_options=client_options)

    logger.info("No cache backend enabled; cache operations will be no-ops", extra={"backend": "none"})
    return NoBackend()
