"""
kvcache — Configuration Module

Provides typed configuration loading, server list parsing and backend selection.
"""

from .loader import load_config
from .schemas import (
    BackendSelection,
    DistributedBackend,
    DistributedClientOptions,
    DistributedStoreOptions,
    DistributionStrategy,
    KVConfig,
    LocalBackend,
    LocalStoreOptions,
    LogLevel,
    NoBackend,
)
from .servers import DEFAULT_PORT, ServerEndpoint, parse_servers
from .validation import select_backend

__all__ = [
    # Loader
    "load_config",
    # Selection
    "select_backend",
    "BackendSelection",
    "NoBackend",
    "LocalBackend",
    "DistributedBackend",
    # Option models
    "KVConfig",
    "LocalStoreOptions",
    "DistributedStoreOptions",
    "DistributedClientOptions",
    # Enums
    "DistributionStrategy",
    "LogLevel",
    # Servers
    "DEFAULT_PORT",
    "ServerEndpoint",
    "parse_servers",
]
