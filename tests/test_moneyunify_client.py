"""
Tests for the MoneyUnify client and circuit breaker.
"""
from decimal import Decimal

import httpx
import pytest

from conftest import ProviderStub
from moneyunify_gateway.config import Settings
from moneyunify_gateway.core.records import VerificationStatus
from moneyunify_gateway.exceptions import (
    CircuitOpenError,
    PaymentValidationError,
    ProviderErrorType,
    ProviderRejected,
    ProviderUnavailable,
)
from moneyunify_gateway.integrations.moneyunify_client import (
    DEFAULT_REJECTION_MESSAGE,
    CircuitBreaker,
    MoneyUnifyClient,
)


async def request_payment(client: MoneyUnifyClient, **overrides):
    kwargs = {
        "auth_id": "test-auth-id",
        "payer_phone": "0971234567",
        "amount": Decimal("100"),
        "currency": "ZMW",
        "reference": "MU-1001-1700000000",
    }
    kwargs.update(overrides)
    return await client.request_payment(**kwargs)


class TestRequestPayment:
    """Payment request endpoint."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_returns_transaction_id(
        self, moneyunify_client: MoneyUnifyClient, provider: ProviderStub
    ) -> None:
        transaction_id = await request_payment(moneyunify_client)

        assert transaction_id == "TXN123"
        assert provider.requests == [
            {
                "auth_id": "test-auth-id",
                "from_payer": "0971234567",
                "amount": "100",
                "currency": "ZMW",
                "reference": "MU-1001-1700000000",
            }
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_transaction_id_is_rejection_with_provider_message(
        self, moneyunify_client: MoneyUnifyClient, provider: ProviderStub
    ) -> None:
        provider.request_body = {"message": "Insufficient balance", "data": {}}

        with pytest.raises(ProviderRejected) as exc_info:
            await request_payment(moneyunify_client)

        assert exc_info.value.message == "Insufficient balance"
        assert exc_info.value.error_type is ProviderErrorType.PERMANENT

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rejection_without_message_uses_default(
        self, moneyunify_client: MoneyUnifyClient, provider: ProviderStub
    ) -> None:
        provider.request_body = {"data": None}

        with pytest.raises(ProviderRejected) as exc_info:
            await request_payment(moneyunify_client)

        assert exc_info.value.message == DEFAULT_REJECTION_MESSAGE

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_non_2xx_is_unavailable(
        self, moneyunify_client: MoneyUnifyClient, provider: ProviderStub
    ) -> None:
        provider.request_status = 502

        with pytest.raises(ProviderUnavailable) as exc_info:
            await request_payment(moneyunify_client)

        assert "502" in exc_info.value.message

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout_is_unavailable_and_not_retried(
        self, moneyunify_client: MoneyUnifyClient, provider: ProviderStub
    ) -> None:
        provider.request_error = httpx.ReadTimeout("timed out")

        with pytest.raises(ProviderUnavailable) as exc_info:
            await request_payment(moneyunify_client)

        assert exc_info.value.error_type is ProviderErrorType.TRANSIENT
        assert len(provider.requests) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unreadable_body_is_unavailable(
        self, moneyunify_client: MoneyUnifyClient, provider: ProviderStub
    ) -> None:
        provider.request_body = ["not", "an", "object"]

        with pytest.raises(ProviderUnavailable):
            await request_payment(moneyunify_client)

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"payer_phone": "12345"},
            {"amount": Decimal("0")},
            {"amount": Decimal("-5")},
            {"currency": "JPY"},
        ],
    )
    async def test_invalid_parameters_make_no_call(
        self, moneyunify_client: MoneyUnifyClient, provider: ProviderStub, overrides: dict
    ) -> None:
        with pytest.raises(PaymentValidationError):
            await request_payment(moneyunify_client, **overrides)

        assert provider.requests == []


class TestVerifyPayment:
    """Verification endpoint."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_parses_status(
        self, moneyunify_client: MoneyUnifyClient, provider: ProviderStub
    ) -> None:
        provider.statuses["TXN123"] = "successful"

        result = await moneyunify_client.verify_payment("TXN123")

        # Unrecognized spellings stay pending
        assert result.status is VerificationStatus.PENDING
        assert result.raw_status == "successful"

        provider.statuses["TXN123"] = "success"
        result = await moneyunify_client.verify_payment("TXN123")
        assert result.status is VerificationStatus.SUCCESS

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_status_is_pending(
        self, moneyunify_client: MoneyUnifyClient, provider: ProviderStub
    ) -> None:
        provider.statuses["TXN123"] = httpx.Response(200, json={"message": "ok"})

        result = await moneyunify_client.verify_payment("TXN123")

        assert result.status is VerificationStatus.PENDING

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(
        self, moneyunify_client: MoneyUnifyClient, provider: ProviderStub
    ) -> None:
        provider.statuses["TXN123"] = [
            httpx.ConnectError("connection refused"),
            httpx.Response(503),
            "SUCCESS",
        ]

        result = await moneyunify_client.verify_payment("TXN123")

        assert result.status is VerificationStatus.SUCCESS
        assert len(provider.verify_calls) == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(
        self, moneyunify_client: MoneyUnifyClient, provider: ProviderStub
    ) -> None:
        provider.statuses["TXN123"] = httpx.ReadTimeout("timed out")

        with pytest.raises(ProviderUnavailable):
            await moneyunify_client.verify_payment("TXN123")

        assert len(provider.verify_calls) == 3


class TestEndpointSelection:
    """Sandbox switch."""

    @pytest.mark.unit
    def test_sandbox_and_production_hosts(self, test_settings: Settings) -> None:
        sandbox = MoneyUnifyClient(test_settings, http_client=httpx.AsyncClient())
        production = MoneyUnifyClient(
            test_settings.model_copy(update={"sandbox": False}),
            http_client=httpx.AsyncClient(),
        )

        assert sandbox.sandbox is True
        assert sandbox.base_url == test_settings.sandbox_base_url
        assert production.sandbox is False
        assert production.base_url == test_settings.production_base_url


class TestCircuitBreaker:
    """Circuit breaker around provider calls."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_opens_after_threshold_and_recovers(self) -> None:
        now = [0.0]
        breaker = CircuitBreaker(failure_threshold=2, timeout=30.0, clock=lambda: now[0])

        async def failing() -> None:
            raise ProviderUnavailable("down")

        async def working() -> str:
            return "ok"

        for _ in range(2):
            with pytest.raises(ProviderUnavailable):
                await breaker.call(failing)
        assert breaker.state == "open"

        with pytest.raises(CircuitOpenError):
            await breaker.call(working)

        now[0] = 31.0
        assert await breaker.call(working) == "ok"
        assert breaker.state == "closed"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rejections_do_not_count(self) -> None:
        breaker = CircuitBreaker(failure_threshold=1)

        async def rejected() -> None:
            raise ProviderRejected("declined")

        with pytest.raises(ProviderRejected):
            await breaker.call(rejected)

        assert breaker.state == "closed"
        assert breaker.failure_count == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self) -> None:
        now = [0.0]
        breaker = CircuitBreaker(failure_threshold=1, timeout=10.0, clock=lambda: now[0])

        async def failing() -> None:
            raise ProviderUnavailable("down")

        with pytest.raises(ProviderUnavailable):
            await breaker.call(failing)
        now[0] = 11.0
        with pytest.raises(ProviderUnavailable):
            await breaker.call(failing)

        assert breaker.state == "open"
