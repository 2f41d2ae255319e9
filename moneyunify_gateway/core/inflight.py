"""
In-flight guards: at most one verification per order at a time.

Correctness never depends on a guard (the store's compare-and-set does
that); a guard only saves a duplicate provider call when a poll and a
sweep hit the same order together.
"""
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Protocol, Set

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

logger = structlog.get_logger(__name__)


class InFlightGuard(Protocol):
    def hold(self, order_id: str) -> AsyncContextManager[bool]: ...


class LocalInFlightGuard:
    """Per-process guard."""

    def __init__(self) -> None:
        self._active: Set[str] = set()

    @asynccontextmanager
    async def hold(self, order_id: str) -> AsyncIterator[bool]:
        """Yield True if this caller owns the order's verification slot."""
        if order_id in self._active:
            yield False
            return
        self._active.add(order_id)
        try:
            yield True
        finally:
            self._active.discard(order_id)


class RedisInFlightGuard:
    """
    Cross-process guard using a non-blocking Redis lock.

    The lock expires on its own after ``timeout`` seconds, so a crashed
    worker cannot wedge an order. If Redis is down the caller proceeds.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        timeout: int = 90,
        prefix: str = "moneyunify:verify",
    ) -> None:
        """
        Initialize guard.

        Args:
            redis_client: Redis client
            timeout: Lock TTL in seconds; keep above the provider timeout
            prefix: Lock key prefix
        """
        self.redis_client = redis_client
        self.timeout = timeout
        self.prefix = prefix

    @asynccontextmanager
    async def hold(self, order_id: str) -> AsyncIterator[bool]:
        """Yield True if this process owns the order's verification slot."""
        lock = self.redis_client.lock(
            f"{self.prefix}:{order_id}", timeout=self.timeout, blocking=False
        )
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            logger.warning("inflight_lock_unavailable", order_id=order_id, error=str(e))
            yield True
            return

        if not acquired:
            yield False
            return

        try:
            yield True
        finally:
            try:
                await lock.release()
            except RedisError as e:
                logger.warning("inflight_lock_release_failed", order_id=order_id, error=str(e))
