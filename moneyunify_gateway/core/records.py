"""
Payment record and verification value types.

A PaymentRecord is the durable link between an external order and the
MoneyUnify transaction that pays for it. Records are immutable values; a
status change produces a new record.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

PHONE_PATTERN = re.compile(r"^[0-9]{9,12}$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_valid_phone(phone: Optional[str]) -> bool:
    """True when the number is 9 to 12 ASCII digits."""
    return bool(phone) and PHONE_PATTERN.fullmatch(phone) is not None


class PaymentStatus(str, Enum):
    """Lifecycle of a payment record."""

    NONE = "none"
    PENDING = "pending"
    APPROVED = "approved"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PaymentStatus.APPROVED, PaymentStatus.FAILED)


class VerificationStatus(str, Enum):
    """Closed set of outcomes reported by the verify endpoint."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    PENDING = "PENDING"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "VerificationStatus":
        """
        Map a provider status string onto the enum.

        Missing, empty or unknown values are PENDING: the payment is retried
        rather than guessed at.
        """
        if not raw:
            return cls.PENDING
        try:
            return cls(str(raw).strip().upper())
        except ValueError:
            return cls.PENDING

    @property
    def is_failure(self) -> bool:
        return self in (
            VerificationStatus.FAILED,
            VerificationStatus.REJECTED,
            VerificationStatus.CANCELLED,
        )


class VerificationResult(BaseModel):
    """Outcome of one verify call."""

    transaction_id: str
    status: VerificationStatus
    raw_status: Optional[str] = None
    message: Optional[str] = None

    model_config = {"frozen": True}


class PaymentRecord(BaseModel):
    """One payment attempt per order."""

    order_id: str = Field(..., min_length=1, description="External order identifier")
    transaction_id: str = Field(default="", description="Provider transaction id")
    payer_phone: str = Field(..., description="Mobile money number that approves")
    status: PaymentStatus = Field(default=PaymentStatus.NONE)
    currency: str = Field(..., min_length=3, max_length=3)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    reference: str = Field(default="", description="Merchant reference sent to the provider")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    checked_at: Optional[datetime] = Field(
        default=None, description="Last verification attempt while pending"
    )
    settlement_pending: bool = Field(
        default=False, description="Host order callback still owed for the terminal status"
    )
    settlement_note: str = Field(default="", description="Order note for the terminal status")

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def check_transaction_id(self) -> "PaymentRecord":
        """transaction_id is set if and only if a payment was requested."""
        if self.status is PaymentStatus.NONE and self.transaction_id:
            raise ValueError("transaction_id must be empty before initiation")
        if self.status is not PaymentStatus.NONE and not self.transaction_id:
            raise ValueError(f"transaction_id is required for status {self.status.value}")
        if self.settlement_pending and not self.status.is_terminal:
            raise ValueError("only terminal records can owe a settlement")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def sort_key(self) -> tuple:
        """Sweep order: least recently verified first, then oldest."""
        return (self.checked_at or self.created_at, self.created_at, self.order_id)

    def with_status(self, status: PaymentStatus, note: str = "") -> "PaymentRecord":
        """
        Copy of this record moved to ``status``.

        The copy owes a settlement: the host order callback for the new
        status has not run yet.
        """
        if self.status is not PaymentStatus.PENDING or not status.is_terminal:
            raise ValueError(
                f"Illegal transition {self.status.value} -> {status.value}"
            )
        return self.model_copy(
            update={
                "status": status,
                "updated_at": utcnow(),
                "settlement_pending": True,
                "settlement_note": note,
            }
        )
