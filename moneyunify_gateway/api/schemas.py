"""
Pydantic schemas for API request/response models.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from moneyunify_gateway.core.records import PaymentRecord


class CheckoutRequest(BaseModel):
    """Request schema for starting a MoneyUnify payment."""

    order_id: str = Field(..., min_length=1, max_length=64, description="External order identifier")
    phone: str = Field(..., description="Mobile money number (9-12 digits)")

    model_config = {
        "json_schema_extra": {
            "examples": [{"order_id": "1001", "phone": "0971234567"}]
        }
    }


class PaymentRecordResponse(BaseModel):
    """Payment record as shown to the buyer and the merchant."""

    order_id: str = Field(..., description="External order identifier")
    transaction_id: str = Field(..., description="MoneyUnify transaction id")
    payer_phone: str = Field(..., description="Mobile money number")
    status: str = Field(..., description="pending, approved or failed")
    amount: str = Field(..., description="Amount as a decimal string")
    currency: str = Field(..., description="Currency code")
    reference: str = Field(..., description="Merchant reference")
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: PaymentRecord) -> "PaymentRecordResponse":
        return cls(
            order_id=record.order_id,
            transaction_id=record.transaction_id,
            payer_phone=record.payer_phone,
            status=record.status.value,
            amount=str(record.amount),
            currency=record.currency,
            reference=record.reference,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class PollRequest(BaseModel):
    """Request schema for the buyer's status poll."""

    order_id: str = Field(..., min_length=1, description="External order identifier")


class PollResponse(BaseModel):
    """Response schema for the buyer's status poll."""

    order_id: str
    status: str = Field(..., description="approved, failed or waiting")


class SweepResponse(BaseModel):
    """Response schema for a manual sweep."""

    checked: int
    approved: int
    failed: int
    pending: int
    settled: int
    errors: int


class HealthCheckResponse(BaseModel):
    """Response schema for health check."""

    status: str = Field(..., description="Overall health status")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual check results")
    message: Optional[str] = Field(default=None, description="Status message")
