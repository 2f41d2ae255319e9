"""
Sweep background worker.

Periodically verifies the oldest pending MoneyUnify payments so orders
settle even when the buyer closed the status page.
"""
import argparse
import asyncio
import signal
from typing import List, Optional

import structlog

from moneyunify_gateway.bootstrap import Services, build_services
from moneyunify_gateway.config import Settings, get_settings
from moneyunify_gateway.monitoring.logging import setup_logging

from .scheduler import PeriodicScheduler

logger = structlog.get_logger(__name__)


def build_scheduler(services: Services, interval: float, batch_size: int) -> PeriodicScheduler:
    """Scheduler that runs one sweep of ``batch_size`` records per cycle."""

    async def sweep_job():
        return await services.engine.sweep(limit=batch_size)

    return PeriodicScheduler(interval, sweep_job, name="moneyunify_sweep")


async def start_sweep_worker(
    settings: Settings,
    once: bool = False,
    interval: Optional[float] = None,
    batch_size: Optional[int] = None,
    services: Optional[Services] = None,
) -> None:
    """
    Start the sweep worker.

    Runs until SIGINT/SIGTERM, or for a single cycle with ``once``.

    Args:
        settings: Gateway settings
        once: Run one sweep and exit
        interval: Seconds between sweeps (default: settings)
        batch_size: Records per sweep (default: settings)
        services: Pre-built services
    """
    interval = interval or settings.sweep_interval_seconds
    batch_size = batch_size or settings.sweep_batch_size

    logger.info(
        "sweep_worker_starting",
        interval=interval,
        batch_size=batch_size,
        once=once,
    )

    services = services or build_services(settings)
    scheduler = build_scheduler(services, interval, batch_size)

    try:
        await services.init()

        if once:
            await scheduler.run_once()
            return

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, scheduler.stop)

        await scheduler.run()

    except Exception as e:
        logger.error("sweep_worker_error", error=str(e))
        raise
    finally:
        await services.aclose()
        logger.info("sweep_worker_stopped")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="MoneyUnify pending payment sweep worker")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between sweeps")
    parser.add_argument("--batch-size", type=int, default=None, help="Pending records per sweep")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    """Console entry point."""
    args = parse_args(argv)
    settings = get_settings()
    setup_logging(settings)

    asyncio.run(
        start_sweep_worker(
            settings,
            once=args.once,
            interval=args.interval,
            batch_size=args.batch_size,
        )
    )


if __name__ == "__main__":
    main()
