"""
Unit tests for CacheFacade.

Backend behaviour is covered elsewhere; these tests pin down input rejection,
result codes, TTL handling and error containment.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import pytest

from kvcache.cache import CacheBackend, CacheFacade, CacheView
from kvcache.errors import OperationFailure, ResultCode

NOW = 1_700_000_000
THIRTY_DAYS = 2_592_000


def mock_backend(name: str = "distributed", long_ttl_timestamps: bool = True, default_ttl: int = 0) -> MagicMock:
    """Backend double whose async methods are AsyncMocks."""
    backend = MagicMock(spec=CacheBackend)
    backend.name = name
    backend.interprets_large_ttl_as_timestamp = long_ttl_timestamps
    backend.default_ttl = default_ttl
    backend.fetch.return_value = (None, False)
    backend.set.return_value = True
    backend.delete.return_value = True
    backend.exists.return_value = True
    backend.clear.return_value = True
    backend.get_stats.return_value = {"hits": 0}
    return backend


@pytest.fixture
def backend() -> MagicMock:
    return mock_backend()


@pytest.fixture
def facade(backend: MagicMock, fixed_clock: Callable[[], float]) -> CacheFacade:
    return CacheFacade(backend, clock=fixed_clock)


class TestDisabledFacade:
    """With no backend every operation is a no-op reporting DISABLED."""

    @pytest.fixture
    def disabled(self) -> CacheFacade:
        return CacheFacade(None)

    def test_properties(self, disabled: CacheFacade) -> None:
        assert disabled.enabled is False
        assert disabled.backend is None
        assert disabled.backend_kind == "none"

    async def test_reads(self, disabled: CacheFacade) -> None:
        assert await disabled.get("key") is None
        assert disabled.last_result_code == ResultCode.DISABLED

        assert await disabled.exists("key") is False
        assert disabled.last_result_code == ResultCode.DISABLED

    async def test_writes(self, disabled: CacheFacade) -> None:
        assert await disabled.set("key", "value") is False
        assert disabled.last_result_code == ResultCode.DISABLED

        assert await disabled.set("key", "value", ttl=60) is False
        assert disabled.last_result_code == ResultCode.DISABLED

        assert await disabled.delete("key") is False
        assert await disabled.clear() is False
        assert disabled.last_result_code == ResultCode.DISABLED

    async def test_counters(self, disabled: CacheFacade) -> None:
        assert await disabled.increment("key") is None
        assert disabled.last_result_code == ResultCode.DISABLED

        assert await disabled.decrement("key", 0) is None
        assert disabled.last_result_code == ResultCode.DISABLED

    async def test_get_or_compute_does_not_compute(self, disabled: CacheFacade) -> None:
        compute = MagicMock(return_value="value")

        assert await disabled.get_or_compute("key", compute) is None
        assert disabled.last_result_code == ResultCode.DISABLED
        compute.assert_not_called()

    async def test_stats(self, disabled: CacheFacade) -> None:
        assert await disabled.get_stats() == {"backend": "none", "enabled": False, "ok": False}

    async def test_close(self, disabled: CacheFacade) -> None:
        await disabled.close()


class TestInputRejection:
    """Invalid arguments never reach the backend."""

    @pytest.mark.parametrize("key", ["", None, 42])
    async def test_invalid_key(self, facade: CacheFacade, backend: MagicMock, key: Any) -> None:
        assert await facade.set(key, "value") is False
        assert facade.last_result_code == ResultCode.FAILURE
        assert await facade.get(key) is None
        assert await facade.delete(key) is False
        assert await facade.exists(key) is False
        assert await facade.increment(key) is None
        assert facade.last_result_code == ResultCode.FAILURE

        backend.set.assert_not_awaited()
        backend.fetch.assert_not_awaited()
        backend.delete.assert_not_awaited()
        backend.increment.assert_not_awaited()

    @pytest.mark.parametrize("ttl", [-1, True, 1.5, "60"])
    async def test_invalid_ttl(self, facade: CacheFacade, backend: MagicMock, ttl: Any) -> None:
        assert await facade.set("key", "value", ttl=ttl) is False
        assert facade.last_result_code == ResultCode.FAILURE
        assert await facade.get_or_compute("key", lambda: "value", ttl=ttl) is None
        backend.set.assert_not_awaited()
        backend.get_or_compute.assert_not_awaited()

    @pytest.mark.parametrize("amount", [0, -1, True, 2.0])
    async def test_invalid_amount(self, facade: CacheFacade, backend: MagicMock, amount: Any) -> None:
        assert await facade.increment("counter", amount) is None
        assert facade.last_result_code == ResultCode.FAILURE
        assert await facade.decrement("counter", amount) is None
        assert facade.last_result_code == ResultCode.FAILURE

        backend.increment.assert_not_awaited()
        backend.decrement.assert_not_awaited()


class TestTTLHandling:
    async def test_default_ttl_used(self, fixed_clock: Callable[[], float]) -> None:
        backend = mock_backend(default_ttl=300)
        facade = CacheFacade(backend, clock=fixed_clock)

        await facade.set("key", "value")
        backend.set.assert_awaited_once_with("key", "value", 300)

    async def test_explicit_zero_overrides_default(self, fixed_clock: Callable[[], float]) -> None:
        backend = mock_backend(default_ttl=300)
        facade = CacheFacade(backend, clock=fixed_clock)

        await facade.set("key", "value", ttl=0)
        backend.set.assert_awaited_once_with("key", "value", 0)

    async def test_get_or_compute_default_ttl(self, fixed_clock: Callable[[], float]) -> None:
        backend = mock_backend(default_ttl=120)
        backend.get_or_compute.return_value = "value"
        facade = CacheFacade(backend, clock=fixed_clock)
        compute = MagicMock(return_value="value")

        await facade.get_or_compute("key", compute)
        backend.get_or_compute.assert_awaited_once_with("key", compute, 120)

    async def test_ttl_resolved_against_given_backend(self, fixed_clock: Callable[[], float]) -> None:
        facade = CacheFacade(None, clock=fixed_clock)

        assert facade._resolve_ttl(mock_backend(default_ttl=45), None) == 45
        assert facade._resolve_ttl(mock_backend(), THIRTY_DAYS + 1) == NOW + THIRTY_DAYS + 1
        assert facade._resolve_ttl(mock_backend(long_ttl_timestamps=False), THIRTY_DAYS + 1) == THIRTY_DAYS + 1
        assert facade._resolve_ttl(mock_backend(), -1) is None

    async def test_threshold_unchanged(self, facade: CacheFacade, backend: MagicMock) -> None:
        await facade.set("key", "value", ttl=THIRTY_DAYS)
        backend.set.assert_awaited_once_with("key", "value", THIRTY_DAYS)

    async def test_long_ttl_becomes_timestamp(self, facade: CacheFacade, backend: MagicMock) -> None:
        forty_days = 40 * 86_400

        await facade.set("key", "value", ttl=forty_days)
        backend.set.assert_awaited_once_with("key", "value", NOW + forty_days)

    async def test_long_ttl_for_get_or_compute(self, facade: CacheFacade, backend: MagicMock) -> None:
        compute = MagicMock(return_value="value")
        backend.get_or_compute.return_value = "value"

        await facade.get_or_compute("key", compute, ttl=THIRTY_DAYS + 1)
        backend.get_or_compute.assert_awaited_once_with("key", compute, NOW + THIRTY_DAYS + 1)

    async def test_local_store_keeps_relative_ttl(self, fixed_clock: Callable[[], float]) -> None:
        backend = mock_backend(name="local", long_ttl_timestamps=False)
        facade = CacheFacade(backend, clock=fixed_clock)
        sixty_days = 60 * 86_400

        await facade.set("key", "value", ttl=sixty_days)
        backend.set.assert_awaited_once_with("key", "value", sixty_days)


class TestResultCodes:
    async def test_get_miss_and_hit(self, facade: CacheFacade, backend: MagicMock) -> None:
        assert await facade.get("key") is None
        assert facade.last_result_code == ResultCode.NOT_FOUND

        backend.fetch.return_value = ("value", True)
        assert await facade.get("key") == "value"
        assert facade.last_result_code == ResultCode.SUCCESS

    async def test_stored_none_is_a_hit(self, facade: CacheFacade, backend: MagicMock) -> None:
        backend.fetch.return_value = (None, True)

        assert await facade.get("key") is None
        assert facade.last_result_code == ResultCode.SUCCESS

    async def test_set(self, facade: CacheFacade, backend: MagicMock) -> None:
        assert await facade.set("key", "value") is True
        assert facade.last_result_code == ResultCode.SUCCESS

        backend.set.return_value = False
        assert await facade.set("key", "value") is False
        assert facade.last_result_code == ResultCode.FAILURE

    async def test_increment(self, facade: CacheFacade, backend: MagicMock) -> None:
        backend.increment.return_value = 11
        assert await facade.increment("counter", 10) == 11
        backend.increment.assert_awaited_once_with("counter", 10)
        assert facade.last_result_code == ResultCode.SUCCESS

        backend.increment.return_value = None
        assert await facade.increment("counter") is None
        assert facade.last_result_code == ResultCode.NOT_FOUND

    async def test_decrement(self, facade: CacheFacade, backend: MagicMock) -> None:
        backend.decrement.return_value = 4
        assert await facade.decrement("counter") == 4
        backend.decrement.assert_awaited_once_with("counter", 1)

    async def test_delete_missing(self, facade: CacheFacade, backend: MagicMock) -> None:
        backend.delete.return_value = False

        assert await facade.delete("key") is False
        assert facade.last_result_code == ResultCode.NOT_FOUND

    async def test_exists(self, facade: CacheFacade, backend: MagicMock) -> None:
        assert await facade.exists("key") is True
        assert facade.last_result_code == ResultCode.SUCCESS

        backend.exists.return_value = False
        assert await facade.exists("key") is False
        assert facade.last_result_code == ResultCode.NOT_FOUND

    async def test_result_code_is_per_task(self, facade: CacheFacade, backend: MagicMock) -> None:
        """A failure in another task does not change this task's last result."""
        await facade.get("key")
        assert facade.last_result_code == ResultCode.NOT_FOUND

        async def failing() -> ResultCode:
            await facade.set("", "value")
            return facade.last_result_code

        assert await asyncio.create_task(failing()) == ResultCode.FAILURE
        assert facade.last_result_code == ResultCode.NOT_FOUND


class TestErrorContainment:
    """Backend exceptions become failure values, never escape."""

    @pytest.mark.parametrize(
        "error",
        [OperationFailure("get", "key", reason="node down"), ConnectionError("refused"), ValueError("bad")],
    )
    async def test_get_failure(self, facade: CacheFacade, backend: MagicMock, error: Exception) -> None:
        backend.fetch.side_effect = error

        assert await facade.get("key") is None
        assert facade.last_result_code == ResultCode.FAILURE

    async def test_every_operation(self, facade: CacheFacade, backend: MagicMock) -> None:
        error = OperationFailure("any", reason="boom")
        for method in ("fetch", "set", "increment", "decrement", "delete", "exists", "clear", "get_or_compute"):
            getattr(backend, method).side_effect = error

        assert await facade.set("key", "value") is False
        assert await facade.increment("key") is None
        assert await facade.decrement("key") is None
        assert await facade.delete("key") is False
        assert await facade.exists("key") is False
        assert await facade.clear() is False
        assert await facade.get_or_compute("key", lambda: 1) is None
        assert facade.last_result_code == ResultCode.FAILURE

    async def test_failure_is_logged(
        self, facade: CacheFacade, backend: MagicMock, caplog: pytest.LogCaptureFixture
    ) -> None:
        backend.set.side_effect = OperationFailure("set", "key", reason="node down")

        with caplog.at_level(logging.ERROR, logger="kvcache"):
            await facade.set("key", "value")

        (record,) = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert "Cache set failed" in record.getMessage()
        assert record.key == "key"
        assert record.exc_info is not None

    async def test_compute_error(self, local_cache: CacheFacade) -> None:
        def broken() -> str:
            raise RuntimeError("producer failed")

        assert await local_cache.get_or_compute("key", broken) is None
        assert local_cache.last_result_code == ResultCode.FAILURE
        assert await local_cache.exists("key") is False

    async def test_stats_failure(self, facade: CacheFacade, backend: MagicMock) -> None:
        backend.get_stats.side_effect = OperationFailure("get_stats")

        assert await facade.get_stats() == {"backend": "distributed", "enabled": True, "ok": False}

    async def test_close_failure(self, facade: CacheFacade, backend: MagicMock) -> None:
        backend.close.side_effect = OSError("already closed")
        await facade.close()
        backend.close.assert_awaited_once()


class TestFacadeLifecycle:
    async def test_stats_tagged_with_kind(self, facade: CacheFacade) -> None:
        assert await facade.get_stats() == {"hits": 0, "backend": "distributed", "enabled": True, "ok": True}

    def test_kind_defaults_to_backend_name(self, backend: MagicMock) -> None:
        assert CacheFacade(backend).backend_kind == "distributed"
        assert CacheFacade(backend, backend_kind="local").backend_kind == "local"

    async def test_async_context_manager(self, backend: MagicMock) -> None:
        async with CacheFacade(backend) as cache:
            assert cache.enabled is True

        backend.close.assert_awaited_once()


class TestCacheView:
    async def test_view_delegates(self, local_cache: CacheFacade) -> None:
        view = local_cache.view()
        assert isinstance(view, CacheView)

        assert await view["key"] is None
        assert local_cache.last_result_code == ResultCode.NOT_FOUND

        assert await view.store("key", {"a": 1}) is True
        assert await view["key"] == {"a": 1}
        assert await view.contains("key") is True

        assert await view.remove("key") is True
        assert await view.contains("key") is False

    async def test_view_uses_default_ttl(self, fixed_clock: Callable[[], float]) -> None:
        backend = mock_backend(default_ttl=120)
        view = CacheFacade(backend, clock=fixed_clock).view()

        await view.store("key", "value")
        backend.set.assert_awaited_once_with("key", "value", 120)

    async def test_disabled_view(self) -> None:
        view = CacheFacade(None).view()

        assert await view["key"] is None
        assert await view.store("key", "value") is False
