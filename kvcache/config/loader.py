"""
kvcache — Configuration Loader

Loads configuration from environment variables and .env files.

An option group is only considered supplied when at least one of its
variables is set, so an empty environment yields a disabled cache. The loaded
configuration is returned to the caller and never cached at module level.

Example:
    KV_DISTRIBUTED_SERVERS="cache1:11211;cache2" KV_DISTRIBUTED_CONSISTENT=true
"""

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationError

from ..errors import ConfigError
from .schemas import KVConfig

logger = logging.getLogger(__name__)


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


LOCAL_ENV: dict[str, tuple[str, Callable[[str], Any]]] = {
    "KV_LOCAL_ENABLED": ("enabled", _as_bool),
    "KV_LOCAL_MAX_SIZE": ("max_size", int),
    "KV_LOCAL_DEFAULT_TTL": ("default_ttl", int),
    "KV_LOCAL_NAMESPACE": ("namespace", str),
}

DISTRIBUTED_ENV: dict[str, tuple[str, Callable[[str], Any]]] = {
    "KV_DISTRIBUTED_ENABLED": ("enabled", _as_bool),
    "KV_DISTRIBUTED_SERVERS": ("servers", str),
    "KV_DISTRIBUTED_CONSISTENT": ("consistent", _as_bool),
    "KV_DISTRIBUTED_NAMESPACE": ("namespace", str),
    "KV_DISTRIBUTED_DEFAULT_TTL": ("default_ttl", int),
    "KV_DISTRIBUTED_CONNECT_TIMEOUT": ("connect_timeout", float),
    "KV_DISTRIBUTED_SOCKET_TIMEOUT": ("socket_timeout", float),
    "KV_DISTRIBUTED_SERVER_FAILURE_LIMIT": ("server_failure_limit", int),
    "KV_DISTRIBUTED_REMOVE_FAILED_SERVERS": ("remove_failed_servers", _as_bool),
    "KV_DISTRIBUTED_RETRY_TIMEOUT": ("retry_timeout", float),
    "KV_DISTRIBUTED_COMPATIBILITY_MODE": ("compatibility_mode", _as_bool),
    "KV_DISTRIBUTED_MAX_CONNECTIONS": ("max_connections", int),
    "KV_DISTRIBUTED_DB": ("db", int),
}


def _read_group(mapping: dict[str, tuple[str, Callable[[str], Any]]]) -> dict[str, Any] | None:
    """Collect the variables of one option group; None when none are set."""
    group: dict[str, Any] = {}
    for env_name, (option, convert) in mapping.items():
        raw = os.getenv(env_name)
        if raw is None:
            continue
        try:
            group[option] = convert(raw)
        except ValueError as e:
            raise ConfigError(
                f"Invalid value for {env_name}: {raw!r}",
                details={"env": env_name, "value": raw, "error": str(e)},
            ) from e
    return group or None


def load_config(env_file: str | None = None) -> KVConfig:
    """
    Load configuration from environment variables and .env file.

    Args:
        env_file: Path to .env file (default: .env in current directory)

    Returns:
        Validated KVConfig instance

    Raises:
        ConfigError: If configuration is invalid
    """
    env_path = Path(env_file) if env_file else Path.cwd() / ".env"

    if env_path.exists():
        logger.info(f"Loading environment from {env_path}")
        try:
            load_dotenv(env_path, override=True)
        except Exception as e:
            logger.error(
                f"Failed to load .env file from {env_path}: {e}",
                extra={"path": str(env_path), "error": str(e)},
                exc_info=True,
            )
            raise ConfigError(
                f"Failed to load environment file: {e}",
                details={"path": str(env_path), "error": str(e)},
            ) from e
    else:
        logger.debug("No .env file found, using environment variables only")

    config_dict = {
        "log_level": os.getenv("LOG_LEVEL", "INFO").upper(),
        "log_format": os.getenv("LOG_FORMAT", "text").lower(),
        "local_options": _read_group(LOCAL_ENV),
        "distributed_options": _read_group(DISTRIBUTED_ENV),
    }

    try:
        config = KVConfig(**config_dict)
    except ValidationError as e:
        logger.error(
            f"Configuration validation failed: {e}",
            extra={"validation_errors": e.errors(include_url=False)},
        )
        raise ConfigError(
            "Configuration validation failed. Check your environment variables.",
            details={"validation_errors": e.errors(include_url=False)},
        ) from e

    logger.info(
        "Configuration loaded",
        extra={
            "local_supplied": config.local_options is not None,
            "distributed_supplied": config.distributed_options is not None,
        },
    )
    return config
