"""
kvcache — Test Configuration and Shared Fixtures

Provides pytest configuration and shared fixtures for unit and integration tests.
Distributed nodes are simulated with fakeredis, one FakeServer per endpoint.
"""

import logging
import os
from collections.abc import AsyncGenerator, Callable, Generator
from typing import Any
from unittest.mock import AsyncMock

import fakeredis
import pytest
import redis

from kvcache.cache import CacheFacade, create_cache
from kvcache.config import DistributedClientOptions, ServerEndpoint

# Keep the loader away from any developer environment
for _name in list(os.environ):
    if _name.startswith("KV_"):
        del os.environ[_name]
os.environ["LOG_LEVEL"] = "DEBUG"

TEST_SERVERS = "node1:7001;node2:7002;node3:7003"
DOWN_COMMANDS = ("get", "set", "exists", "delete", "scan", "ping")


class FakeCluster:
    """A set of fake nodes plus the client factory the distributed backend calls."""

    def __init__(self) -> None:
        self.servers: dict[str, fakeredis.FakeServer] = {}
        self.clients: dict[str, Any] = {}

    def server(self, endpoint: str) -> fakeredis.FakeServer:
        return self.servers.setdefault(endpoint, fakeredis.FakeServer())

    def client_factory(self, endpoint: ServerEndpoint, options: DistributedClientOptions) -> Any:
        client = fakeredis.FakeAsyncRedis(server=self.server(str(endpoint)), decode_responses=True)
        self.clients[str(endpoint)] = client
        return client

    def take_down(self, endpoint: str) -> None:
        """Make every command sent to endpoint fail with a connection error."""
        client = self.clients[endpoint]
        error = redis.ConnectionError(f"{endpoint} is down")
        for command in DOWN_COMMANDS:
            setattr(client, command, AsyncMock(side_effect=error))

    def bring_up(self, endpoint: str) -> None:
        client = self.clients[endpoint]
        for command in DOWN_COMMANDS:
            client.__dict__.pop(command, None)

    async def find(self, raw_key: str) -> list[str]:
        """Endpoints currently holding raw_key."""
        return [endpoint for endpoint, client in self.clients.items() if await client.exists(raw_key)]


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_kvcache_logger() -> Generator[None, None, None]:
    """Undo configure_logging so caplog keeps seeing kvcache records."""
    yield
    logger = logging.getLogger("kvcache")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def manual_clock() -> ManualClock:
    """Manually advanced clock starting at t=1000."""
    return ManualClock()


@pytest.fixture
def fake_cluster() -> FakeCluster:
    """Fresh fake distributed cluster for each test."""
    return FakeCluster()


@pytest.fixture
def fixed_clock() -> Callable[[], float]:
    """Wall clock frozen at a known instant."""
    return lambda: 1_700_000_000.0


@pytest.fixture
async def local_cache() -> AsyncGenerator[CacheFacade, None]:
    """Facade over the local in-process store."""
    cache = create_cache(local_options={"enabled": True, "namespace": "test", "max_size": 100})
    yield cache
    await cache.close()


@pytest.fixture
async def distributed_cache(fake_cluster: FakeCluster) -> AsyncGenerator[CacheFacade, None]:
    """Facade over a three-node fake distributed store."""
    cache = create_cache(
        distributed_options={"servers": TEST_SERVERS, "namespace": "test"},
        client_factory=fake_cluster.client_factory,
    )
    yield cache
    await cache.close()


@pytest.fixture(params=["local", "distributed"])
async def cache(request: pytest.FixtureRequest, fake_cluster: FakeCluster) -> AsyncGenerator[CacheFacade, None]:
    """Facade over each supported backend in turn."""
    if request.param == "local":
        facade = create_cache(local_options={"enabled": True, "namespace": "test"})
    else:
        facade = create_cache(
            distributed_options={"servers": TEST_SERVERS, "namespace": "test"},
            client_factory=fake_cluster.client_factory,
        )
    yield facade
    await facade.close()


@pytest.fixture
def sample_cache_data() -> dict[str, Any]:
    """Sample JSON-compatible data for cache testing."""
    return {
        "simple_string": "hello",
        "simple_int": 42,
        "simple_float": 3.14,
        "simple_bool": True,
        "complex_dict": {
            "nested": {
                "key": "value",
                "number": 123,
                "list": [1, 2, 3],
            }
        },
        "complex_list": [
            {"id": 1, "name": "Alice"},
            {"id": 2, "name": "Bob"},
        ],
    }
