"""
MoneyUnify API client with retry logic and error classification.

Implements:
- Payment request (push prompt to the payer's phone)
- Idempotent payment verification with exponential backoff
- Circuit breaker for an unreachable provider
- Transport failures kept apart from business rejections
"""
import time
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from moneyunify_gateway.config import SUPPORTED_CURRENCIES, Settings
from moneyunify_gateway.core.records import (
    VerificationResult,
    VerificationStatus,
    is_valid_phone,
)
from moneyunify_gateway.exceptions import (
    CircuitOpenError,
    PaymentValidationError,
    ProviderRejected,
    ProviderUnavailable,
)
from moneyunify_gateway.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

REQUEST_PATH = "/payments/request"
VERIFY_PATH = "/payments/verify"
DEFAULT_REJECTION_MESSAGE = "Payment request failed. Try again."


class CircuitBreaker:
    """
    Circuit breaker for MoneyUnify API calls.

    Stops calling the provider after repeated transport failures so that a
    dead endpoint does not hold every poll and sweep for the full timeout.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: float = 60.0,
        success_threshold: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Consecutive failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
            clock: Monotonic time source
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.clock = clock
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    def _set_state(self, state: str) -> None:
        self.state = state
        metrics.set_circuit_breaker_state(state)

    async def call(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """
        Execute coroutine function with circuit breaker protection.

        Only ProviderUnavailable counts as a failure; a rejection proves
        the provider is up.

        Raises:
            CircuitOpenError: If circuit is open
        """
        if self.state == "open":
            if (
                self.last_failure_time is not None
                and self.clock() - self.last_failure_time >= self.timeout
            ):
                self._set_state("half_open")
                self.success_count = 0
                logger.info("circuit_breaker_half_open")
            else:
                raise CircuitOpenError()

        try:
            result = await func(*args, **kwargs)
        except ProviderUnavailable:
            self.on_failure()
            raise
        self.on_success()
        return result

    def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")
                logger.info("circuit_breaker_closed")

    def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = self.clock()
        if self.state == "half_open" or self.failure_count >= self.failure_threshold:
            if self.state != "open":
                logger.warning("circuit_breaker_opened", failure_count=self.failure_count)
            self._set_state("open")


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, ProviderUnavailable) and not isinstance(error, CircuitOpenError)


class MoneyUnifyClient:
    """
    The only component that talks to MoneyUnify.

    The sandbox switch is read once at construction; a client instance
    always targets the same host.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        """
        Initialize MoneyUnify client.

        Args:
            settings: Gateway settings
            http_client: Optional shared HTTP client (tests inject a mock transport)
            circuit_breaker: Optional circuit breaker
        """
        self._base_url = settings.base_url.rstrip("/")
        self._sandbox = settings.sandbox
        self.timeout = settings.request_timeout_seconds
        self.verify_max_attempts = settings.verify_max_attempts
        self.verify_retry_base_delay = settings.verify_retry_base_delay
        self._http = http_client or httpx.AsyncClient(timeout=self.timeout)
        self._owns_http = http_client is None
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=settings.circuit_breaker_failure_threshold,
            timeout=settings.circuit_breaker_timeout_seconds,
        )

        logger.info(
            "moneyunify_client_initialized",
            base_url=self._base_url,
            sandbox=self._sandbox,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def sandbox(self) -> bool:
        return self._sandbox

    async def _post(self, operation: str, path: str, form: Dict[str, str]) -> Dict[str, Any]:
        """
        POST a form-encoded body and decode the JSON answer.

        Raises:
            ProviderUnavailable: On transport error, timeout, non-2xx or non-JSON body
        """
        url = f"{self._base_url}{path}"
        start = time.perf_counter()
        outcome = "ok"
        try:
            response = await self._http.post(
                url,
                data=form,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            if response.status_code < 200 or response.status_code >= 300:
                outcome = f"http_{response.status_code}"
                logger.error(
                    "moneyunify_http_error",
                    operation=operation,
                    status_code=response.status_code,
                )
                raise ProviderUnavailable(
                    f"MoneyUnify returned HTTP {response.status_code}. Try again."
                )
            try:
                body = response.json()
            except ValueError as e:
                outcome = "invalid_json"
                raise ProviderUnavailable("MoneyUnify returned an unreadable response.", e)
            if not isinstance(body, dict):
                outcome = "invalid_json"
                raise ProviderUnavailable("MoneyUnify returned an unreadable response.")
            return body

        except httpx.HTTPError as e:
            outcome = "transport_error"
            logger.error(
                "moneyunify_transport_error",
                operation=operation,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise ProviderUnavailable("Could not reach MoneyUnify. Try again.", e)

        finally:
            metrics.record_provider_call(operation, outcome, time.perf_counter() - start)

    @staticmethod
    def _validate_request(payer_phone: str, amount: Decimal, currency: str) -> None:
        """
        Validate payment request parameters.

        Raises:
            PaymentValidationError: If validation fails
        """
        if not is_valid_phone(payer_phone):
            raise PaymentValidationError(
                "Please enter a valid mobile money number (9-12 digits)"
            )
        if amount <= 0:
            raise PaymentValidationError("Amount must be positive")
        if currency not in SUPPORTED_CURRENCIES:
            raise PaymentValidationError(f"Currency {currency} is not supported by MoneyUnify")

    async def request_payment(
        self,
        auth_id: str,
        payer_phone: str,
        amount: Decimal,
        currency: str,
        reference: str,
    ) -> str:
        """
        Push a payment prompt to the payer's phone.

        Not retried: a repeated request would prompt the payer twice.

        Args:
            auth_id: Merchant auth id
            payer_phone: Mobile money number that approves the payment
            amount: Amount to collect
            currency: Three-letter currency code
            reference: Merchant reference

        Returns:
            str: Provider transaction id

        Raises:
            PaymentValidationError: If the parameters are invalid
            ProviderUnavailable: If the provider could not be reached
            ProviderRejected: If the provider declined the request
        """
        amount = Decimal(str(amount))
        self._validate_request(payer_phone, amount, currency)

        logger.info(
            "requesting_payment",
            amount=str(amount),
            currency=currency,
            reference=reference,
        )

        body = await self.circuit_breaker.call(
            self._post,
            "request",
            REQUEST_PATH,
            {
                "auth_id": auth_id,
                "from_payer": payer_phone,
                "amount": str(amount),
                "currency": currency,
                "reference": reference,
            },
        )

        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        transaction_id = data.get("transaction_id")
        if not transaction_id:
            message = body.get("message") or DEFAULT_REJECTION_MESSAGE
            logger.warning("payment_request_rejected", reference=reference, message=message)
            raise ProviderRejected(str(message))

        logger.info(
            "payment_requested",
            reference=reference,
            transaction_id=transaction_id,
        )
        return str(transaction_id)

    async def _verify_once(self, transaction_id: str) -> VerificationResult:
        body = await self.circuit_breaker.call(
            self._post,
            "verify",
            VERIFY_PATH,
            {"transaction_id": transaction_id},
        )
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        raw_status = data.get("status")
        return VerificationResult(
            transaction_id=transaction_id,
            status=VerificationStatus.parse(raw_status),
            raw_status=str(raw_status) if raw_status is not None else None,
            message=body.get("message"),
        )

    async def verify_payment(self, transaction_id: str) -> VerificationResult:
        """
        Ask the provider for the state of a transaction.

        Safe to repeat, so transport failures are retried with backoff.

        Args:
            transaction_id: Provider transaction id

        Returns:
            VerificationResult: Normalised provider status

        Raises:
            ProviderUnavailable: If every attempt failed to reach the provider
        """
        logger.debug("verifying_payment", transaction_id=transaction_id)

        async for attempt in AsyncRetrying(
            retry=retry_if_exception(_is_retryable),
            stop=stop_after_attempt(self.verify_max_attempts),
            wait=wait_exponential(multiplier=self.verify_retry_base_delay, max=8),
            reraise=True,
        ):
            with attempt:
                result = await self._verify_once(transaction_id)

        logger.info(
            "payment_verified",
            transaction_id=transaction_id,
            status=result.status.value,
            raw_status=result.raw_status,
        )
        return result

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_http:
            await self._http.aclose()
