"""SQLAlchemy database models for MoneyUnify payment records."""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class PaymentRecordRow(Base):
    """
    Payment records table.

    One row per order. Rows are never deleted; the status column only ever
    moves from 'pending' to 'approved' or 'failed'.
    """

    __tablename__ = "payment_records"

    order_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    transaction_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    payer_phone: Mapped[str] = mapped_column(String(12), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    reference: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        onupdate=func.now(),
    )
    checked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    settlement_pending: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    settlement_note: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    __table_args__ = (
        CheckConstraint("amount > 0", name="positive_amount"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'failed')",
            name="valid_status",
        ),
        CheckConstraint("length(currency) = 3", name="valid_currency"),
        CheckConstraint(
            "settlement_pending = false OR status IN ('approved', 'failed')",
            name="settlement_only_terminal",
        ),
        Index("idx_payment_records_status_created", "status", "created_at"),
        Index("idx_payment_records_settlement", "settlement_pending", "updated_at"),
    )

    def __repr__(self) -> str:
        """String representation of PaymentRecordRow."""
        return (
            f"<PaymentRecordRow(order_id={self.order_id}, "
            f"transaction_id={self.transaction_id}, status={self.status})>"
        )


class PaymentEventRow(Base):
    """
    Payment events audit trail table.

    Append-only history of every request and settlement of a payment.
    """

    __tablename__ = "payment_events"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    order_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    event_data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), index=True
    )

    def __repr__(self) -> str:
        """String representation of PaymentEventRow."""
        return (
            f"<PaymentEventRow(id={self.id}, order_id={self.order_id}, "
            f"type={self.event_type})>"
        )
