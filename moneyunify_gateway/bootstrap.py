"""
Service wiring.

Entry points (API, sweep worker) build every component here and pass it
down explicitly. Tests hand in their own store, client or order system.
"""
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as aioredis
import structlog

from moneyunify_gateway.config import Settings
from moneyunify_gateway.core.inflight import (
    InFlightGuard,
    LocalInFlightGuard,
    RedisInFlightGuard,
)
from moneyunify_gateway.core.initiation import PaymentInitiator
from moneyunify_gateway.core.reconciliation import ReconciliationEngine
from moneyunify_gateway.database.connection import Database
from moneyunify_gateway.database.store import PaymentRecordStore, SqlAlchemyPaymentStore
from moneyunify_gateway.integrations.moneyunify_client import MoneyUnifyClient
from moneyunify_gateway.integrations.order_system import OrderSystem, load_order_system
from moneyunify_gateway.monitoring.health import HealthCheck

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    """Everything a request handler or worker needs."""

    settings: Settings
    store: PaymentRecordStore
    client: MoneyUnifyClient
    order_system: OrderSystem
    initiator: PaymentInitiator
    engine: ReconciliationEngine
    health: HealthCheck
    database: Optional[Database] = None
    redis_client: Optional[aioredis.Redis] = None

    async def init(self) -> None:
        """Create tables when backed by a database."""
        if self.database is not None:
            await self.database.init_db()

    async def aclose(self) -> None:
        """Release HTTP, Redis and database connections."""
        await self.client.aclose()
        if self.redis_client is not None:
            await self.redis_client.aclose()
        if self.database is not None:
            await self.database.close()
        logger.info("services_closed")


def build_services(
    settings: Settings,
    store: Optional[PaymentRecordStore] = None,
    client: Optional[MoneyUnifyClient] = None,
    order_system: Optional[OrderSystem] = None,
    redis_client: Optional[aioredis.Redis] = None,
) -> Services:
    """
    Assemble the gateway's components.

    Args:
        settings: Gateway settings
        store: Store to use instead of one on ``settings.database_url``
        client: MoneyUnify client to use instead of a new one
        order_system: Host order system instead of ``settings.order_system_factory``
        redis_client: Redis client instead of one on ``settings.redis_url``

    Returns:
        Services: Wired components
    """
    database: Optional[Database] = None
    if store is None:
        database = Database.from_settings(settings)
        store = SqlAlchemyPaymentStore(database)

    if client is None:
        client = MoneyUnifyClient(settings)

    if order_system is None:
        order_system = load_order_system(settings.order_system_factory)

    if redis_client is None and settings.redis_url:
        redis_client = aioredis.from_url(settings.redis_url)

    guard: InFlightGuard
    if redis_client is not None:
        guard = RedisInFlightGuard(
            redis_client, timeout=settings.inflight_lock_timeout_seconds
        )
    else:
        guard = LocalInFlightGuard()

    services = Services(
        settings=settings,
        store=store,
        client=client,
        order_system=order_system,
        initiator=PaymentInitiator(settings, client, store, order_system),
        engine=ReconciliationEngine(
            client,
            store,
            order_system,
            guard=guard,
            settlement_retry_after=settings.settlement_retry_seconds,
        ),
        health=HealthCheck(store, settings, redis_client=redis_client),
        database=database,
        redis_client=redis_client,
    )

    logger.info(
        "services_built",
        store=type(store).__name__,
        order_system=type(order_system).__name__,
        guard=type(guard).__name__,
    )
    return services
