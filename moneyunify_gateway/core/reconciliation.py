"""
Reconciliation engine: converges PENDING payments to a terminal state.

Two drivers feed it:
1. Server-side poll (the buyer's page asks about one order)
2. Sweep (a scheduled pass over the oldest pending records)

Both go through :meth:`ReconciliationEngine.verify_order`, which applies
a transition with a compare-and-set and runs the host side effect only
when that write won. The write also marks the side effect as owed; the
sweep retries owed side effects that an earlier cycle failed to finish.
"""
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

import structlog

from moneyunify_gateway.database.store import PaymentRecordStore
from moneyunify_gateway.exceptions import PaymentRecordNotFound, ProviderError
from moneyunify_gateway.integrations.moneyunify_client import MoneyUnifyClient
from moneyunify_gateway.integrations.order_system import OrderSystem
from moneyunify_gateway.monitoring.metrics import metrics

from .inflight import InFlightGuard
from .records import PaymentRecord, PaymentStatus, utcnow
from .state_machine import SideEffect, reconcile

logger = structlog.get_logger(__name__)

SOURCE_POLL = "poll"
SOURCE_SWEEP = "sweep"


class PollStatus(str, Enum):
    """Answer given to the buyer's status page."""

    APPROVED = "approved"
    FAILED = "failed"
    WAITING = "waiting"

    @classmethod
    def from_payment_status(cls, status: PaymentStatus) -> "PollStatus":
        if status is PaymentStatus.APPROVED:
            return cls.APPROVED
        if status is PaymentStatus.FAILED:
            return cls.FAILED
        return cls.WAITING


@dataclass
class SweepReport:
    """Counts from one sweep cycle."""

    checked: int = 0
    approved: int = 0
    failed: int = 0
    pending: int = 0
    settled: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class ReconciliationEngine:
    """
    Verifies pending payments and settles host orders.

    Safe to call concurrently for the same order: the store's
    ``transition`` lets exactly one caller apply a decision.
    """

    def __init__(
        self,
        client: MoneyUnifyClient,
        store: PaymentRecordStore,
        order_system: OrderSystem,
        guard: Optional[InFlightGuard] = None,
        settlement_retry_after: float = 60.0,
    ) -> None:
        """
        Initialize reconciliation engine.

        Args:
            client: MoneyUnify client
            store: Payment record store
            order_system: Host order callbacks
            guard: Optional in-flight guard against duplicate verification
            settlement_retry_after: Seconds an owed settlement must sit
                untouched before the sweep takes it over
        """
        self.client = client
        self.store = store
        self.order_system = order_system
        self.guard = guard
        self.settlement_retry_after = settlement_retry_after

    async def verify_order(self, order_id: str, source: str) -> PaymentStatus:
        """
        Verify one order with the provider and apply the outcome.

        Args:
            order_id: External order identifier
            source: Convergence driver name, for logs and metrics

        Returns:
            PaymentStatus: Status of the record after this call

        Raises:
            PaymentRecordNotFound: If the order has no payment record
        """
        record = await self.store.get(order_id)
        if record is None:
            raise PaymentRecordNotFound(order_id)

        if record.is_terminal:
            metrics.record_verification(source, "already_terminal")
            return record.status

        if self.guard is None:
            return await self._verify(record, source)

        async with self.guard.hold(order_id) as owned:
            if not owned:
                metrics.record_verification(source, "in_flight")
                logger.debug("verification_in_flight", order_id=order_id, source=source)
                return record.status
            return await self._verify(record, source)

    async def _verify(self, record: PaymentRecord, source: str) -> PaymentStatus:
        try:
            verification = await self.client.verify_payment(record.transaction_id)
        except ProviderError as e:
            metrics.record_verification(source, "provider_error")
            logger.warning(
                "verification_provider_error",
                order_id=record.order_id,
                transaction_id=record.transaction_id,
                source=source,
                error=e.message,
            )
            await self.store.mark_checked(record.order_id)
            return record.status

        transition = reconcile(record, verification)
        metrics.record_verification(source, verification.status.value.lower())

        if not transition.changed:
            await self.store.mark_checked(record.order_id)
            return record.status

        updated = await self.store.transition(
            record.order_id, transition.previous, transition.status, transition.reason
        )
        if updated is None:
            current = await self.store.get(record.order_id)
            metrics.record_terminal_guard_hit(source)
            logger.info(
                "terminal_state_guard",
                order_id=record.order_id,
                source=source,
                attempted=transition.status.value,
                current=current.status.value if current else None,
            )
            return current.status if current else record.status

        metrics.record_transition(source, transition.status.value)
        await self.store.add_event(
            record.order_id,
            f"payment.{transition.status.value}",
            {
                "transaction_id": record.transaction_id,
                "provider_status": verification.raw_status,
                "source": source,
            },
        )
        await self._settle(updated, source)

        logger.info(
            "payment_reconciled",
            order_id=record.order_id,
            transaction_id=record.transaction_id,
            status=transition.status.value,
            source=source,
        )
        return updated.status

    async def _settle(self, record: PaymentRecord, source: str) -> None:
        """
        Run the host callback owed by a terminal record, then clear the debt.

        If the callback raises, the record keeps ``settlement_pending`` and a
        later sweep claims it again.
        """
        side_effect = SideEffect.for_status(record.status)
        try:
            if side_effect is SideEffect.COMPLETE_ORDER:
                await self.order_system.complete_order(record.order_id, record.transaction_id)
            elif side_effect is SideEffect.FAIL_ORDER:
                await self.order_system.fail_order(record.order_id, record.settlement_note)
            if side_effect is not SideEffect.NONE and record.settlement_note:
                await self.order_system.add_order_note(record.order_id, record.settlement_note)
        except Exception as e:
            metrics.record_settlement(source, "failed")
            logger.error(
                "order_side_effect_failed",
                order_id=record.order_id,
                side_effect=side_effect.value,
                source=source,
                error=str(e),
            )
            raise

        await self.store.mark_settled(record.order_id)
        metrics.record_settlement(source, "settled")

    async def _retry_settlement(self, record: PaymentRecord, stale_before: datetime) -> bool:
        """
        Claim and run a settlement left behind by an earlier cycle.

        Returns:
            bool: False if another driver claimed or finished it first
        """
        claimed = await self.store.claim_settlement(record.order_id, stale_before)
        if claimed is None:
            return False

        logger.warning(
            "settlement_retry",
            order_id=claimed.order_id,
            status=claimed.status.value,
        )
        await self.store.add_event(
            claimed.order_id,
            "payment.settlement_retried",
            {"transaction_id": claimed.transaction_id, "status": claimed.status.value},
        )
        await self._settle(claimed, SOURCE_SWEEP)
        return True

    async def poll(self, order_id: str) -> PollStatus:
        """
        Server-side poll for the buyer's status page.

        Raises:
            PaymentRecordNotFound: If the order has no payment record
        """
        status = await self.verify_order(order_id, SOURCE_POLL)
        return PollStatus.from_payment_status(status)

    async def sweep(self, limit: int = 20) -> SweepReport:
        """
        Finish owed settlements, then verify pending records one by one.

        Records are taken least recently verified first. A failure on one
        record is logged and counted; the rest of the batch still runs.

        Args:
            limit: Maximum number of records per cycle, for each of the
                pending and the unsettled batch

        Returns:
            SweepReport: Outcome counts
        """
        start = time.perf_counter()
        report = SweepReport()

        pending = await self.store.list_pending(limit)
        logger.info("sweep_started", batch_size=len(pending), limit=limit)

        await self._sweep_settlements(limit, report)

        for record in pending:
            report.checked += 1
            try:
                status = await self.verify_order(record.order_id, SOURCE_SWEEP)
            except Exception as e:
                report.errors += 1
                logger.error(
                    "sweep_record_failed",
                    order_id=record.order_id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                continue

            if status is PaymentStatus.APPROVED:
                report.approved += 1
            elif status is PaymentStatus.FAILED:
                report.failed += 1
            else:
                report.pending += 1

        metrics.record_sweep(len(pending), time.perf_counter() - start)
        logger.info("sweep_completed", **report.to_dict())
        return report

    async def _sweep_settlements(self, limit: int, report: SweepReport) -> None:
        stale_before = utcnow() - timedelta(seconds=self.settlement_retry_after)
        for record in await self.store.list_unsettled(limit, stale_before):
            try:
                if await self._retry_settlement(record, stale_before):
                    report.settled += 1
            except Exception as e:
                report.errors += 1
                logger.error(
                    "sweep_settlement_failed",
                    order_id=record.order_id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
