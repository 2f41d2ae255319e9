"""
Client-side poll loop.

Mirrors what the buyer's status page does: ask the poll endpoint every few
seconds until the payment settles, then give up quietly after a fixed
number of attempts.
"""
import asyncio
from typing import Awaitable, Callable

import httpx
import structlog

from moneyunify_gateway.core.reconciliation import PollStatus

logger = structlog.get_logger(__name__)

PollFunction = Callable[[str], Awaitable[PollStatus]]


class ClientPoller:
    """Repeats a poll function until a non-waiting answer or the attempt cap."""

    def __init__(
        self,
        poll_func: PollFunction,
        interval: float = 10.0,
        max_attempts: int = 60,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize poller.

        Args:
            poll_func: Returns the current PollStatus of an order
            interval: Seconds between attempts
            max_attempts: Attempts before giving up
            sleep: Sleep function, replaceable in tests
        """
        self.poll_func = poll_func
        self.interval = interval
        self.max_attempts = max_attempts
        self.sleep = sleep
        self.attempts = 0

    async def run(self, order_id: str) -> PollStatus:
        """
        Poll until approved or failed.

        Errors from a single attempt count as "waiting".

        Returns:
            PollStatus: Final answer, WAITING if the cap was reached
        """
        self.attempts = 0
        while self.attempts < self.max_attempts:
            self.attempts += 1
            try:
                status = await self.poll_func(order_id)
            except Exception as e:
                logger.warning(
                    "client_poll_attempt_failed",
                    order_id=order_id,
                    attempt=self.attempts,
                    error=str(e),
                )
                status = PollStatus.WAITING

            if status is not PollStatus.WAITING:
                logger.info(
                    "client_poll_settled",
                    order_id=order_id,
                    status=status.value,
                    attempts=self.attempts,
                )
                return status

            if self.attempts < self.max_attempts:
                await self.sleep(self.interval)

        logger.info("client_poll_gave_up", order_id=order_id, attempts=self.attempts)
        return PollStatus.WAITING


def http_poll_function(client: httpx.AsyncClient, url: str) -> PollFunction:
    """
    Build a poll function that calls the service's ``POST /poll`` endpoint.

    Args:
        client: HTTP client
        url: Full URL of the poll endpoint
    """

    async def poll(order_id: str) -> PollStatus:
        response = await client.post(url, json={"order_id": order_id})
        response.raise_for_status()
        return PollStatus(response.json()["status"])

    return poll
