"""
Pytest configuration and fixtures.
"""
import asyncio
from decimal import Decimal
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Union
from urllib.parse import parse_qsl

import httpx
import pytest
import pytest_asyncio

from moneyunify_gateway.config import Settings
from moneyunify_gateway.core.initiation import PaymentInitiator
from moneyunify_gateway.core.reconciliation import ReconciliationEngine
from moneyunify_gateway.core.records import PaymentRecord, PaymentStatus
from moneyunify_gateway.database.connection import Database
from moneyunify_gateway.database.store import InMemoryPaymentStore, SqlAlchemyPaymentStore
from moneyunify_gateway.integrations.moneyunify_client import MoneyUnifyClient
from moneyunify_gateway.integrations.order_system import InMemoryOrderSystem

VerifyOutcome = Union[str, Exception, httpx.Response, Callable[[], Any]]


class ProviderStub:
    """
    Fake MoneyUnify API behind ``httpx.MockTransport``.

    ``request_body`` overrides the answer to payment requests;
    ``statuses`` maps a transaction id to a verify outcome: a status
    string, an exception to raise, a ready response, or a list of those
    consumed one per call.
    """

    def __init__(self) -> None:
        self.requests: List[Dict[str, str]] = []
        self.verify_calls: List[str] = []
        self.request_body: Optional[Dict[str, Any]] = None
        self.request_status = 200
        self.request_error: Optional[Exception] = None
        self.statuses: Dict[str, Any] = {}
        self.verify_delay = 0.0
        self.next_transaction_id = "TXN123"

    async def handler(self, request: httpx.Request) -> httpx.Response:
        form = dict(parse_qsl(request.read().decode()))

        if request.url.path == "/payments/request":
            self.requests.append(form)
            if self.request_error is not None:
                raise self.request_error
            body = self.request_body
            if body is None:
                body = {
                    "message": "Payment request sent",
                    "data": {"transaction_id": self.next_transaction_id},
                }
            return httpx.Response(self.request_status, json=body)

        if request.url.path == "/payments/verify":
            transaction_id = form["transaction_id"]
            self.verify_calls.append(transaction_id)
            if self.verify_delay:
                await asyncio.sleep(self.verify_delay)
            outcome = self.statuses.get(transaction_id, "PENDING")
            if isinstance(outcome, list):
                outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
            if isinstance(outcome, Exception):
                raise outcome
            if isinstance(outcome, httpx.Response):
                return outcome
            return httpx.Response(
                200,
                json={"message": "ok", "data": {"transaction_id": transaction_id, "status": outcome}},
            )

        return httpx.Response(404, json={"message": "not found"})


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        enabled=True,
        auth_id="test-auth-id",
        currency="ZMW",
        sandbox=True,
        verify_max_attempts=3,
        verify_retry_base_delay=0,
        circuit_breaker_failure_threshold=100,
        database_url="sqlite+aiosqlite:///:memory:",
        redis_url=None,
        sweep_enabled=False,
        app_name="moneyunify-gateway-test",
        app_env="test",
        log_level="DEBUG",
        log_json=False,
    )


@pytest.fixture
def provider() -> ProviderStub:
    return ProviderStub()


@pytest_asyncio.fixture
async def http_client(provider: ProviderStub) -> AsyncGenerator[httpx.AsyncClient, Any]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(provider.handler)) as client:
        yield client


@pytest.fixture
def moneyunify_client(test_settings: Settings, http_client: httpx.AsyncClient) -> MoneyUnifyClient:
    return MoneyUnifyClient(test_settings, http_client=http_client)


@pytest.fixture
def order_system() -> InMemoryOrderSystem:
    """Host order system with one ZMW 100 order."""
    orders = InMemoryOrderSystem()
    orders.add_order("1001", "100", "ZMW")
    return orders


@pytest.fixture
def store() -> InMemoryPaymentStore:
    return InMemoryPaymentStore()


@pytest_asyncio.fixture
async def sql_store(tmp_path: Any) -> AsyncGenerator[SqlAlchemyPaymentStore, Any]:
    """SQLAlchemy store on a throwaway SQLite file."""
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}")
    await database.init_db()
    yield SqlAlchemyPaymentStore(database)
    await database.close()


@pytest.fixture
def initiator(
    test_settings: Settings,
    moneyunify_client: MoneyUnifyClient,
    store: InMemoryPaymentStore,
    order_system: InMemoryOrderSystem,
) -> PaymentInitiator:
    return PaymentInitiator(
        test_settings, moneyunify_client, store, order_system, clock=lambda: 1700000000
    )


@pytest.fixture
def engine(
    moneyunify_client: MoneyUnifyClient,
    store: InMemoryPaymentStore,
    order_system: InMemoryOrderSystem,
) -> ReconciliationEngine:
    return ReconciliationEngine(moneyunify_client, store, order_system)


def make_record(
    order_id: str = "1001",
    transaction_id: str = "TXN123",
    status: PaymentStatus = PaymentStatus.PENDING,
    **overrides: Any,
) -> PaymentRecord:
    """Build a PaymentRecord with sensible defaults."""
    fields: Dict[str, Any] = {
        "order_id": order_id,
        "transaction_id": transaction_id,
        "payer_phone": "0971234567",
        "status": status,
        "currency": "ZMW",
        "amount": Decimal("100"),
        "reference": f"MU-{order_id}-1700000000",
    }
    fields.update(overrides)
    return PaymentRecord(**fields)


@pytest.fixture
def pending_record() -> PaymentRecord:
    return make_record()
