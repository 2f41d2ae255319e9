"""
Race condition tests for concurrent convergence drivers.

A poll and a sweep may verify the same order at the same moment; exactly
one of them may settle it.
"""
import asyncio
from datetime import datetime, timezone

import pytest

from conftest import ProviderStub, make_record
from moneyunify_gateway.core.inflight import LocalInFlightGuard
from moneyunify_gateway.core.reconciliation import ReconciliationEngine
from moneyunify_gateway.core.records import PaymentStatus
from moneyunify_gateway.database.store import InMemoryPaymentStore, SqlAlchemyPaymentStore
from moneyunify_gateway.integrations.moneyunify_client import MoneyUnifyClient
from moneyunify_gateway.integrations.order_system import InMemoryOrderSystem


class TestRaceConditions:
    """Test suite for race condition scenarios."""

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_poll_and_sweep_complete_once(
        self,
        moneyunify_client: MoneyUnifyClient,
        store: InMemoryPaymentStore,
        order_system: InMemoryOrderSystem,
        provider: ProviderStub,
    ) -> None:
        """
        Both drivers read PENDING and both see SUCCESS.

        Should complete the host order exactly once.
        """
        engine = ReconciliationEngine(moneyunify_client, store, order_system)
        await store.put(make_record())
        provider.statuses["TXN123"] = "SUCCESS"
        provider.verify_delay = 0.01

        results = await asyncio.gather(
            engine.poll("1001"),
            engine.sweep(limit=20),
            engine.verify_order("1001", "poll"),
        )

        assert len(provider.verify_calls) == 3
        assert len(order_system.completions) == 1
        assert results[1].approved == 1
        assert (await store.get("1001")).status is PaymentStatus.APPROVED

        events = await store.list_events("1001")
        assert [e["event_type"] for e in events] == ["payment.approved"]

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_conflicting_results_settle_once(
        self,
        moneyunify_client: MoneyUnifyClient,
        store: InMemoryPaymentStore,
        order_system: InMemoryOrderSystem,
        provider: ProviderStub,
    ) -> None:
        """
        One driver sees SUCCESS and the other CANCELLED.

        Whichever wins, the other performs nothing.
        """
        engine = ReconciliationEngine(moneyunify_client, store, order_system)
        await store.put(make_record())
        provider.statuses["TXN123"] = ["SUCCESS", "CANCELLED"]
        provider.verify_delay = 0.01

        await asyncio.gather(
            engine.verify_order("1001", "poll"),
            engine.verify_order("1001", "sweep"),
        )

        side_effects = len(order_system.completions) + len(order_system.failures)
        assert side_effects == 1
        final = (await store.get("1001")).status
        assert final.is_terminal

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_guard_avoids_duplicate_verification(
        self,
        moneyunify_client: MoneyUnifyClient,
        store: InMemoryPaymentStore,
        order_system: InMemoryOrderSystem,
        provider: ProviderStub,
    ) -> None:
        engine = ReconciliationEngine(
            moneyunify_client, store, order_system, guard=LocalInFlightGuard()
        )
        await store.put(make_record())
        provider.statuses["TXN123"] = "SUCCESS"
        provider.verify_delay = 0.01

        await asyncio.gather(*(engine.verify_order("1001", "poll") for _ in range(5)))

        assert provider.verify_calls == ["TXN123"]
        assert len(order_system.completions) == 1

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_sql_store_compare_and_set_has_one_winner(
        self, sql_store: SqlAlchemyPaymentStore
    ) -> None:
        await sql_store.put(make_record())

        results = await asyncio.gather(
            sql_store.transition("1001", PaymentStatus.PENDING, PaymentStatus.APPROVED),
            sql_store.transition("1001", PaymentStatus.PENDING, PaymentStatus.FAILED),
        )

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert (await sql_store.get("1001")).status is winners[0].status

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_sweeps_retry_settlement_once(
        self,
        moneyunify_client: MoneyUnifyClient,
        sql_store: SqlAlchemyPaymentStore,
        order_system: InMemoryOrderSystem,
    ) -> None:
        await sql_store.put(
            make_record(
                status=PaymentStatus.APPROVED,
                settlement_pending=True,
                settlement_note="Payment approved by customer (MoneyUnify).",
                updated_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
            )
        )
        engines = [
            ReconciliationEngine(
                moneyunify_client, sql_store, order_system, settlement_retry_after=30
            )
            for _ in range(2)
        ]

        reports = await asyncio.gather(*(engine.sweep(limit=20) for engine in engines))

        assert sum(report.settled for report in reports) == 1
        assert len(order_system.completions) == 1
        assert not (await sql_store.get("1001")).settlement_pending
