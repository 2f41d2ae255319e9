"""Core payment reconciliation logic."""
from .records import (
    PaymentRecord,
    PaymentStatus,
    VerificationResult,
    VerificationStatus,
)
from .state_machine import SideEffect, Transition, reconcile

__all__ = [
    "PaymentRecord",
    "PaymentStatus",
    "SideEffect",
    "Transition",
    "VerificationResult",
    "VerificationStatus",
    "reconcile",
]
