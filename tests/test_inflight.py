"""
Tests for in-flight verification guards.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from moneyunify_gateway.core.inflight import LocalInFlightGuard, RedisInFlightGuard


def redis_with_lock(lock: AsyncMock) -> MagicMock:
    client = MagicMock()
    client.lock.return_value = lock
    return client


class TestLocalInFlightGuard:
    """Per-process guard."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_second_holder_is_refused(self) -> None:
        guard = LocalInFlightGuard()

        async with guard.hold("1001") as first:
            async with guard.hold("1001") as second:
                assert first is True
                assert second is False
            async with guard.hold("2002") as other:
                assert other is True

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_released_after_error(self) -> None:
        guard = LocalInFlightGuard()

        with pytest.raises(RuntimeError):
            async with guard.hold("1001"):
                raise RuntimeError("boom")

        async with guard.hold("1001") as owned:
            assert owned is True


class TestRedisInFlightGuard:
    """Cross-process guard on a Redis lock."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_acquires_non_blocking_lock(self) -> None:
        lock = AsyncMock()
        lock.acquire.return_value = True
        client = redis_with_lock(lock)
        guard = RedisInFlightGuard(client, timeout=45)

        async with guard.hold("1001") as owned:
            assert owned is True

        client.lock.assert_called_once_with("moneyunify:verify:1001", timeout=45, blocking=False)
        lock.release.assert_awaited_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_lock_held_elsewhere(self) -> None:
        lock = AsyncMock()
        lock.acquire.return_value = False
        guard = RedisInFlightGuard(redis_with_lock(lock))

        async with guard.hold("1001") as owned:
            assert owned is False

        lock.release.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_redis_outage_proceeds(self) -> None:
        lock = AsyncMock()
        lock.acquire.side_effect = RedisConnectionError("connection refused")
        guard = RedisInFlightGuard(redis_with_lock(lock))

        async with guard.hold("1001") as owned:
            assert owned is True

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_release_failure_is_not_raised(self) -> None:
        lock = AsyncMock()
        lock.acquire.return_value = True
        lock.release.side_effect = RedisConnectionError("gone")
        guard = RedisInFlightGuard(redis_with_lock(lock))

        async with guard.hold("1001") as owned:
            assert owned is True
