"""
Error taxonomy for the gateway.

Validation and rejection errors are reported to the buyer at checkout.
Provider availability errors are transient: during verification they mean
"still pending, try again later" and never fail an order.
"""
from enum import Enum
from typing import Optional


class PaymentError(Exception):
    """Base exception for payment processing errors."""

    pass


class PaymentValidationError(PaymentError):
    """Raised when checkout input or order state fails validation."""

    pass


class GatewayDisabledError(PaymentError):
    """Raised when the gateway is switched off or has no auth id."""

    pass


class PaymentAlreadyInitiated(PaymentError):
    """Raised when an order already carries a payment record."""

    def __init__(self, order_id: str, status: Optional[str] = None):
        message = f"Order {order_id} already has a MoneyUnify payment"
        if status:
            message += f" ({status})"
        super().__init__(message)
        self.order_id = order_id
        self.status = status


class PaymentRecordNotFound(PaymentError):
    """Raised when no payment record exists for an order."""

    def __init__(self, order_id: str):
        super().__init__(f"No MoneyUnify payment for order {order_id}")
        self.order_id = order_id


class ProviderErrorType(Enum):
    """Classification of provider errors for retry logic."""

    TRANSIENT = "transient"  # Retry later
    PERMANENT = "permanent"  # Provider said no


class ProviderError(PaymentError):
    """Base exception for MoneyUnify API errors."""

    def __init__(
        self,
        message: str,
        error_type: ProviderErrorType,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize provider error.

        Args:
            message: Error message, safe to show to the buyer
            error_type: Classification of error
            original_error: Underlying transport exception, if any
        """
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.original_error = original_error


class ProviderUnavailable(ProviderError):
    """Transport failure, timeout or non-2xx response."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message, ProviderErrorType.TRANSIENT, original_error)


class CircuitOpenError(ProviderUnavailable):
    """Raised without a network call while the circuit breaker is open."""

    def __init__(self) -> None:
        super().__init__("MoneyUnify is temporarily unavailable. Try again shortly.")


class ProviderRejected(ProviderError):
    """The provider answered but declined the request."""

    def __init__(self, message: str):
        super().__init__(message, ProviderErrorType.PERMANENT)
