"""
kvcache — Server List Parsing

Normalizes the distributed backend's server configuration into an ordered
list of ServerEndpoint entries. Accepted forms:

    "cache1:11211; cache2"             # semicolon-delimited string
    ["cache1:11211", ("cache2", 2000)] # mixed strings and (host, port) pairs

Order is preserved because it feeds hash distribution.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any, NamedTuple

from ..errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 11211


class ServerEndpoint(NamedTuple):
    """A single cache node address."""

    host: str
    port: int = DEFAULT_PORT

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


def _parse_port(raw: Any, entry: Any, default_port: int) -> int:
    """Coerce a port component, substituting the default when it is omitted or zero."""
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return default_port

    if isinstance(raw, bool):
        raise ConfigError(
            f"Invalid port in server entry {entry!r}",
            details={"entry": repr(entry), "port": repr(raw)},
        )

    try:
        port = int(raw.strip() if isinstance(raw, str) else raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(
            f"Invalid port in server entry {entry!r}",
            details={"entry": repr(entry), "port": repr(raw)},
        ) from e

    if port == 0:
        # a zero port counts as omitted
        return default_port

    if not 1 <= port <= 65535:
        raise ConfigError(
            f"Port out of range in server entry {entry!r}",
            details={"entry": repr(entry), "port": port},
        )
    return port


def _parse_entry(entry: Any, default_port: int) -> ServerEndpoint:
    if isinstance(entry, ServerEndpoint):
        return entry

    if isinstance(entry, str):
        host, sep, port = entry.strip().rpartition(":")
        if not sep:
            host, port = port, ""
        raw_host: Any = host
        raw_port: Any = port
    elif isinstance(entry, (list, tuple)) and 1 <= len(entry) <= 2:
        raw_host = entry[0]
        raw_port = entry[1] if len(entry) == 2 else None
    else:
        raise ConfigError(
            f"Unreadable server entry: {entry!r}",
            details={"entry": repr(entry), "type": type(entry).__name__},
        )

    if not isinstance(raw_host, str) or not raw_host.strip():
        raise ConfigError(
            f"Missing host in server entry {entry!r}",
            details={"entry": repr(entry)},
        )

    return ServerEndpoint(raw_host.strip(), _parse_port(raw_port, entry, default_port))


def parse_servers(servers: Any, default_port: int = DEFAULT_PORT) -> list[ServerEndpoint]:
    """
    Parse a server list configuration into ordered endpoints.

    Args:
        servers: Semicolon-delimited string, or an iterable of "host[:port]"
            strings, (host[, port]) sequences or ServerEndpoint values
        default_port: Port used when an entry omits it

    Returns:
        Endpoints in input order

    Raises:
        ConfigError: If the input or any entry cannot be read
    """
    entries: Iterable[Any]
    if isinstance(servers, str):
        entries = [segment.strip() for segment in servers.split(";")]
        entries = [segment for segment in entries if segment]
    elif isinstance(servers, Iterable) and not isinstance(servers, (bytes, bytearray, Mapping)):
        entries = servers
    else:
        raise ConfigError(
            "Server configuration could not be read",
            details={"type": type(servers).__name__},
        )

    endpoints = [_parse_entry(entry, default_port) for entry in entries]

    if not endpoints:
        raise ConfigError("Server configuration lists no servers", details={"servers": repr(servers)})

    logger.debug("Parsed %d server endpoint(s)", len(endpoints), extra={"servers": [str(e) for e in endpoints]})
    return endpoints
