"""
Order state store: durable PaymentRecord storage keyed by order id.

The only shared mutable resource of the gateway. Writes are per-record
atomic; ``transition`` is a compare-and-set so two convergence drivers
racing on one order can never both settle it.

A transition also marks the record as owing a settlement, in the same
write. The flag is cleared once the host order callback has run, so a
callback lost to a crash or an error is found again by the sweep.
"""
import asyncio
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from moneyunify_gateway.core.records import PaymentRecord, PaymentStatus, utcnow
from moneyunify_gateway.exceptions import PaymentAlreadyInitiated

from .connection import Database
from .models import PaymentEventRow, PaymentRecordRow

logger = structlog.get_logger(__name__)


class PaymentRecordStore(Protocol):
    """Storage contract used by initiation and reconciliation."""

    async def get(self, order_id: str) -> Optional[PaymentRecord]: ...

    async def put(self, record: PaymentRecord) -> None: ...

    async def transition(
        self,
        order_id: str,
        expected: PaymentStatus,
        new_status: PaymentStatus,
        note: str = "",
    ) -> Optional[PaymentRecord]: ...

    async def mark_checked(self, order_id: str) -> None: ...

    async def list_pending(self, limit: int) -> List[PaymentRecord]: ...

    async def list_unsettled(self, limit: int, stale_before: datetime) -> List[PaymentRecord]: ...

    async def claim_settlement(
        self, order_id: str, stale_before: datetime
    ) -> Optional[PaymentRecord]: ...

    async def mark_settled(self, order_id: str) -> None: ...

    async def add_event(self, order_id: str, event_type: str, data: Dict[str, Any]) -> None: ...

    async def list_events(self, order_id: str) -> List[Dict[str, Any]]: ...

    async def ping(self) -> None: ...


class InMemoryPaymentStore:
    """Process-local store for embedding and tests."""

    def __init__(self) -> None:
        self._records: Dict[str, PaymentRecord] = {}
        self._events: List[Dict[str, Any]] = []
        self._lock = asyncio.Lock()

    async def get(self, order_id: str) -> Optional[PaymentRecord]:
        return self._records.get(order_id)

    async def put(self, record: PaymentRecord) -> None:
        async with self._lock:
            existing = self._records.get(record.order_id)
            if existing is not None:
                raise PaymentAlreadyInitiated(record.order_id, existing.status.value)
            self._records[record.order_id] = record

    async def transition(
        self,
        order_id: str,
        expected: PaymentStatus,
        new_status: PaymentStatus,
        note: str = "",
    ) -> Optional[PaymentRecord]:
        async with self._lock:
            current = self._records.get(order_id)
            if current is None or current.status is not expected:
                return None
            updated = current.with_status(new_status, note)
            self._records[order_id] = updated
            return updated

    async def mark_checked(self, order_id: str) -> None:
        async with self._lock:
            current = self._records.get(order_id)
            if current is not None and current.status is PaymentStatus.PENDING:
                self._records[order_id] = current.model_copy(update={"checked_at": utcnow()})

    async def list_pending(self, limit: int) -> List[PaymentRecord]:
        pending = [r for r in self._records.values() if r.status is PaymentStatus.PENDING]
        pending.sort(key=lambda r: r.sort_key)
        return pending[:limit]

    async def list_unsettled(self, limit: int, stale_before: datetime) -> List[PaymentRecord]:
        unsettled = [
            r
            for r in self._records.values()
            if r.settlement_pending and r.updated_at <= stale_before
        ]
        unsettled.sort(key=lambda r: (r.updated_at, r.order_id))
        return unsettled[:limit]

    async def claim_settlement(
        self, order_id: str, stale_before: datetime
    ) -> Optional[PaymentRecord]:
        async with self._lock:
            current = self._records.get(order_id)
            if (
                current is None
                or not current.settlement_pending
                or current.updated_at > stale_before
            ):
                return None
            claimed = current.model_copy(update={"updated_at": utcnow()})
            self._records[order_id] = claimed
            return claimed

    async def mark_settled(self, order_id: str) -> None:
        async with self._lock:
            current = self._records.get(order_id)
            if current is not None and current.settlement_pending:
                self._records[order_id] = current.model_copy(
                    update={"settlement_pending": False}
                )

    async def add_event(self, order_id: str, event_type: str, data: Dict[str, Any]) -> None:
        self._events.append(
            {
                "order_id": order_id,
                "event_type": event_type,
                "event_data": dict(data),
                "created_at": utcnow(),
            }
        )

    async def list_events(self, order_id: str) -> List[Dict[str, Any]]:
        return [e for e in self._events if e["order_id"] == order_id]

    async def ping(self) -> None:
        return None


def _to_record(row: PaymentRecordRow) -> PaymentRecord:
    return PaymentRecord(
        order_id=row.order_id,
        transaction_id=row.transaction_id,
        payer_phone=row.payer_phone,
        status=PaymentStatus(row.status),
        currency=row.currency,
        amount=Decimal(str(row.amount)),
        reference=row.reference,
        created_at=row.created_at,
        updated_at=row.updated_at,
        checked_at=row.checked_at,
        settlement_pending=row.settlement_pending,
        settlement_note=row.settlement_note,
    )


class SqlAlchemyPaymentStore:
    """
    PaymentRecord store on an async SQLAlchemy engine.

    Each method uses its own short session; no session or row lock is held
    while the caller talks to the provider.
    """

    def __init__(self, database: Database) -> None:
        """
        Initialize store.

        Args:
            database: Database owning the engine and session factory
        """
        self.database = database

    async def get(self, order_id: str) -> Optional[PaymentRecord]:
        """
        Fetch the record of an order.

        Args:
            order_id: External order identifier

        Returns:
            Optional[PaymentRecord]: Record or None if the order has none
        """
        async with self.database.session_factory() as db:
            row = await db.get(PaymentRecordRow, order_id)
            return _to_record(row) if row is not None else None

    async def put(self, record: PaymentRecord) -> None:
        """
        Insert a new record.

        Raises:
            PaymentAlreadyInitiated: If the order already has a record
        """
        async with self.database.session_factory() as db:
            db.add(
                PaymentRecordRow(
                    order_id=record.order_id,
                    transaction_id=record.transaction_id,
                    payer_phone=record.payer_phone,
                    status=record.status.value,
                    currency=record.currency,
                    amount=record.amount,
                    reference=record.reference,
                    created_at=record.created_at,
                    updated_at=record.updated_at,
                    checked_at=record.checked_at,
                    settlement_pending=record.settlement_pending,
                    settlement_note=record.settlement_note,
                )
            )
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.warning("payment_record_conflict", order_id=record.order_id)
                raise PaymentAlreadyInitiated(record.order_id)

    async def transition(
        self,
        order_id: str,
        expected: PaymentStatus,
        new_status: PaymentStatus,
        note: str = "",
    ) -> Optional[PaymentRecord]:
        """
        Move a record from ``expected`` to ``new_status`` atomically.

        The status check and the write are one conditional UPDATE, so the
        status is re-checked at write time rather than at read time. The
        same UPDATE records the owed settlement and its order note.

        Returns:
            Optional[PaymentRecord]: Updated record, or None if the stored
            status was no longer ``expected``
        """
        now: datetime = utcnow()
        async with self.database.session_factory() as db:
            result = await db.execute(
                update(PaymentRecordRow)
                .where(
                    PaymentRecordRow.order_id == order_id,
                    PaymentRecordRow.status == expected.value,
                )
                .values(
                    status=new_status.value,
                    updated_at=now,
                    settlement_pending=True,
                    settlement_note=note,
                )
            )
            await db.commit()
            if result.rowcount != 1:
                return None

        return await self.get(order_id)

    async def mark_checked(self, order_id: str) -> None:
        """Stamp a verification attempt on a pending record."""
        async with self.database.session_factory() as db:
            await db.execute(
                update(PaymentRecordRow)
                .where(
                    PaymentRecordRow.order_id == order_id,
                    PaymentRecordRow.status == PaymentStatus.PENDING.value,
                )
                .values(checked_at=utcnow())
            )
            await db.commit()

    async def list_pending(self, limit: int) -> List[PaymentRecord]:
        """
        Pending records, least recently verified first.

        Records never verified sort by creation time, so a backlog drains
        oldest first. A record the provider keeps answering PENDING moves
        behind the others after each attempt.

        Args:
            limit: Maximum number of records

        Returns:
            List[PaymentRecord]: Pending records in sweep order
        """
        async with self.database.session_factory() as db:
            stmt = (
                select(PaymentRecordRow)
                .where(PaymentRecordRow.status == PaymentStatus.PENDING.value)
                .order_by(
                    func.coalesce(PaymentRecordRow.checked_at, PaymentRecordRow.created_at),
                    PaymentRecordRow.created_at,
                    PaymentRecordRow.order_id,
                )
                .limit(limit)
            )
            result = await db.execute(stmt)
            return [_to_record(row) for row in result.scalars().all()]

    async def list_unsettled(self, limit: int, stale_before: datetime) -> List[PaymentRecord]:
        """
        Terminal records whose host callback is still owed.

        Only records untouched since ``stale_before`` are returned, so a
        callback still running in another driver is left alone.
        """
        async with self.database.session_factory() as db:
            stmt = (
                select(PaymentRecordRow)
                .where(
                    PaymentRecordRow.settlement_pending.is_(True),
                    PaymentRecordRow.updated_at <= stale_before,
                )
                .order_by(PaymentRecordRow.updated_at, PaymentRecordRow.order_id)
                .limit(limit)
            )
            result = await db.execute(stmt)
            return [_to_record(row) for row in result.scalars().all()]

    async def claim_settlement(
        self, order_id: str, stale_before: datetime
    ) -> Optional[PaymentRecord]:
        """
        Take over an owed settlement.

        A conditional UPDATE bumps ``updated_at``; of two drivers claiming
        the same record only one sees a row change.

        Returns:
            Optional[PaymentRecord]: Claimed record, or None if the
            settlement was done or claimed meanwhile
        """
        async with self.database.session_factory() as db:
            result = await db.execute(
                update(PaymentRecordRow)
                .where(
                    PaymentRecordRow.order_id == order_id,
                    PaymentRecordRow.settlement_pending.is_(True),
                    PaymentRecordRow.updated_at <= stale_before,
                )
                .values(updated_at=utcnow())
            )
            await db.commit()
            if result.rowcount != 1:
                return None

        return await self.get(order_id)

    async def mark_settled(self, order_id: str) -> None:
        """Clear the owed settlement after the host callback succeeded."""
        async with self.database.session_factory() as db:
            await db.execute(
                update(PaymentRecordRow)
                .where(PaymentRecordRow.order_id == order_id)
                .values(settlement_pending=False)
            )
            await db.commit()

    async def add_event(self, order_id: str, event_type: str, data: Dict[str, Any]) -> None:
        """Append to the audit trail."""
        async with self.database.session_factory() as db:
            db.add(
                PaymentEventRow(
                    order_id=order_id,
                    event_type=event_type,
                    event_data=data,
                    created_at=utcnow(),
                )
            )
            await db.commit()

    async def list_events(self, order_id: str) -> List[Dict[str, Any]]:
        """Audit trail of an order, oldest first."""
        async with self.database.session_factory() as db:
            stmt = (
                select(PaymentEventRow)
                .where(PaymentEventRow.order_id == order_id)
                .order_by(PaymentEventRow.id)
            )
            result = await db.execute(stmt)
            return [
                {
                    "order_id": row.order_id,
                    "event_type": row.event_type,
                    "event_data": row.event_data,
                    "created_at": row.created_at,
                }
                for row in result.scalars().all()
            ]

    async def ping(self) -> None:
        await self.database.ping()
