"""
Reconciliation state machine.

The single decision table used by every convergence driver:

    PENDING  + SUCCESS                       -> APPROVED, complete order
    PENDING  + FAILED / REJECTED / CANCELLED -> FAILED,   fail order
    PENDING  + PENDING / unrecognized        -> PENDING,  nothing
    APPROVED or FAILED + anything            -> unchanged, nothing

No I/O happens here. Callers persist the decision with a compare-and-set and
run the side effect only when their write won.
"""
from dataclasses import dataclass
from enum import Enum

from .records import PaymentRecord, PaymentStatus, VerificationResult, VerificationStatus


class SideEffect(str, Enum):
    """What the host order system must do after a transition."""

    NONE = "none"
    COMPLETE_ORDER = "complete_order"
    FAIL_ORDER = "fail_order"

    @classmethod
    def for_status(cls, status: PaymentStatus) -> "SideEffect":
        """Side effect owed by a record that reached ``status``."""
        if status is PaymentStatus.APPROVED:
            return cls.COMPLETE_ORDER
        if status is PaymentStatus.FAILED:
            return cls.FAIL_ORDER
        return cls.NONE


@dataclass(frozen=True)
class Transition:
    """Decision produced by :func:`reconcile`."""

    previous: PaymentStatus
    status: PaymentStatus
    side_effect: SideEffect = SideEffect.NONE
    reason: str = ""

    @property
    def changed(self) -> bool:
        return self.previous is not self.status


def reconcile(record: PaymentRecord, verification: VerificationResult) -> Transition:
    """
    Decide the next status for a record given a verification result.

    Args:
        record: Current payment record
        verification: Result of verifying the record's transaction

    Returns:
        Transition: New status and the side effect it requires
    """
    current = record.status

    if current is not PaymentStatus.PENDING:
        return Transition(previous=current, status=current)

    if verification.status is VerificationStatus.SUCCESS:
        return Transition(
            previous=current,
            status=PaymentStatus.APPROVED,
            side_effect=SideEffect.COMPLETE_ORDER,
            reason="Payment approved by customer (MoneyUnify).",
        )

    if verification.status.is_failure:
        return Transition(
            previous=current,
            status=PaymentStatus.FAILED,
            side_effect=SideEffect.FAIL_ORDER,
            reason=(
                "Customer did not approve or payment failed "
                f"(MoneyUnify status {verification.status.value})."
            ),
        )

    return Transition(previous=current, status=current)
