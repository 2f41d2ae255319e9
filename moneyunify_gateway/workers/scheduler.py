"""
Periodic job runner.

Replaces a host cron hook: the owner of the event loop starts it, and it
can be stopped between cycles.
"""
import asyncio
from typing import Any, Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)


class PeriodicScheduler:
    """
    Runs an async job every ``interval`` seconds until stopped.

    A failing cycle is logged and the next one still runs. Cycles never
    overlap: the interval is measured from the end of the previous cycle.
    """

    def __init__(
        self,
        interval: float,
        job: Callable[[], Awaitable[Any]],
        name: str = "job",
    ) -> None:
        """
        Initialize scheduler.

        Args:
            interval: Seconds between the end of one cycle and the next
            job: Coroutine function to run each cycle
            name: Name used in log events
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.job = job
        self.name = name
        self.cycles = 0
        self._stopped = asyncio.Event()

    @property
    def running(self) -> bool:
        return not self._stopped.is_set()

    async def run_once(self) -> Any:
        """Run a single cycle; errors are logged, not raised."""
        self.cycles += 1
        try:
            return await self.job()
        except Exception as e:
            logger.error(
                "scheduled_job_failed",
                job=self.name,
                cycle=self.cycles,
                error_type=type(e).__name__,
                error=str(e),
            )
            return None

    async def run(self) -> None:
        """Run cycles until :meth:`stop` is called."""
        self._stopped.clear()
        logger.info("scheduler_started", job=self.name, interval=self.interval)

        try:
            while self.running:
                await self.run_once()
                try:
                    await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            logger.info("scheduler_stopped", job=self.name, cycles=self.cycles)

    def stop(self) -> None:
        """Stop after the current cycle; wakes a waiting scheduler immediately."""
        self._stopped.set()
        logger.info("scheduler_stop_requested", job=self.name)
