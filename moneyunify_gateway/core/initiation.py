"""
Checkout initiation workflow.

Orchestrates the payment request:
1. Check the gateway is available
2. Check the order currency matches the settlement currency
3. Validate the payer's phone number
4. Refuse orders that already carry a payment record
   and round the order total to cents
5. Ask MoneyUnify to prompt the payer
6. Persist the PENDING record
7. Reduce stock, empty the cart and put the order on hold
"""
import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable

import structlog

from moneyunify_gateway.config import Settings
from moneyunify_gateway.database.store import PaymentRecordStore
from moneyunify_gateway.exceptions import (
    GatewayDisabledError,
    PaymentAlreadyInitiated,
    PaymentValidationError,
    ProviderError,
    ProviderErrorType,
)
from moneyunify_gateway.integrations.moneyunify_client import MoneyUnifyClient
from moneyunify_gateway.integrations.order_system import OrderSystem
from moneyunify_gateway.monitoring.metrics import metrics

from .records import PaymentRecord, PaymentStatus, is_valid_phone, utcnow

logger = structlog.get_logger(__name__)

ON_HOLD_REASON = "Awaiting customer approval on phone (MoneyUnify)"
CENT = Decimal("0.01")


class PaymentInitiator:
    """
    Starts a MoneyUnify payment for a checkout.

    Any failure before the provider accepts the request leaves the order
    and the store untouched.
    """

    def __init__(
        self,
        settings: Settings,
        client: MoneyUnifyClient,
        store: PaymentRecordStore,
        order_system: OrderSystem,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize initiator.

        Args:
            settings: Gateway settings (auth id, currency, reference prefix)
            client: MoneyUnify client
            store: Payment record store
            order_system: Host order callbacks
            clock: Wall clock used for merchant references
        """
        self.settings = settings
        self.client = client
        self.store = store
        self.order_system = order_system
        self.clock = clock

    def _reference(self, order_id: str) -> str:
        return f"{self.settings.reference_prefix}-{order_id}-{int(self.clock())}"

    async def _validate(self, order_id: str, payer_phone: str) -> None:
        """
        Run every precondition of a payment request.

        Raises:
            GatewayDisabledError: If the gateway cannot take payments
            PaymentValidationError: On currency mismatch or a bad phone number
            PaymentAlreadyInitiated: If the order already has a record
        """
        if not self.settings.is_available:
            raise GatewayDisabledError("MoneyUnify payments are not available")

        currency = (await self.order_system.get_order_currency(order_id)).upper()
        if currency != self.settings.currency:
            raise PaymentValidationError(
                f"MoneyUnify only supports {self.settings.currency}. "
                "Please change your store currency."
            )

        if not is_valid_phone(payer_phone):
            raise PaymentValidationError(
                "Please enter a valid mobile money number (9-12 digits)"
            )

        existing = await self.store.get(order_id)
        if existing is not None:
            raise PaymentAlreadyInitiated(order_id, existing.status.value)

    async def _order_amount(self, order_id: str) -> Decimal:
        """
        Order total rounded to cents, the amount requested and stored.

        Raises:
            PaymentValidationError: If nothing is left to charge
        """
        total = Decimal(str(await self.order_system.get_order_total(order_id)))
        amount = total.quantize(CENT, rounding=ROUND_HALF_UP)
        if amount <= 0:
            raise PaymentValidationError("Order total must be greater than zero")
        return amount

    async def initiate(self, order_id: str, payer_phone: str) -> PaymentRecord:
        """
        Request a payment for an order.

        Args:
            order_id: External order identifier
            payer_phone: Mobile money number entered at checkout

        Returns:
            PaymentRecord: The new PENDING record

        Raises:
            GatewayDisabledError: If the gateway cannot take payments
            PaymentValidationError: If validation fails
            PaymentAlreadyInitiated: If the order was already initiated
            ProviderError: If MoneyUnify was unreachable or declined
        """
        payer_phone = (payer_phone or "").strip()

        logger.info("payment_initiation_started", order_id=order_id)

        try:
            await self._validate(order_id, payer_phone)
            amount = await self._order_amount(order_id)
        except GatewayDisabledError:
            metrics.record_initiation("disabled")
            raise
        except PaymentValidationError as e:
            metrics.record_initiation("validation_error")
            logger.warning("payment_initiation_invalid", order_id=order_id, error=str(e))
            raise
        except PaymentAlreadyInitiated as e:
            metrics.record_initiation("duplicate")
            logger.warning(
                "payment_initiation_duplicate", order_id=order_id, status=e.status
            )
            raise

        currency = self.settings.currency
        reference = self._reference(order_id)

        try:
            transaction_id = await self.client.request_payment(
                auth_id=self.settings.auth_id,
                payer_phone=payer_phone,
                amount=amount,
                currency=currency,
                reference=reference,
            )
        except PaymentValidationError:
            metrics.record_initiation("validation_error")
            raise
        except ProviderError as e:
            metrics.record_initiation(
                "rejected" if e.error_type is ProviderErrorType.PERMANENT else "unavailable"
            )
            logger.warning(
                "payment_initiation_provider_error",
                order_id=order_id,
                error_type=e.error_type.value,
                error=e.message,
            )
            raise

        now = utcnow()
        record = PaymentRecord(
            order_id=order_id,
            transaction_id=transaction_id,
            payer_phone=payer_phone,
            status=PaymentStatus.PENDING,
            currency=currency,
            amount=amount,
            reference=reference,
            created_at=now,
            updated_at=now,
        )
        await self.store.put(record)
        await self.store.add_event(
            order_id,
            "payment.requested",
            {
                "transaction_id": transaction_id,
                "amount": str(amount),
                "currency": currency,
                "reference": reference,
            },
        )

        await self.order_system.reduce_stock_levels(order_id)
        await self.order_system.empty_cart(order_id)
        await self.order_system.set_on_hold(order_id, ON_HOLD_REASON)

        metrics.record_initiation("pending")
        logger.info(
            "payment_initiated",
            order_id=order_id,
            transaction_id=transaction_id,
            amount=str(amount),
            currency=currency,
        )
        return record
