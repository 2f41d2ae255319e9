"""FastAPI application and routes."""
from .main import create_app
from .schemas import (
    CheckoutRequest,
    PaymentRecordResponse,
    PollRequest,
    PollResponse,
)

__all__ = [
    "create_app",
    "CheckoutRequest",
    "PaymentRecordResponse",
    "PollRequest",
    "PollResponse",
]
