"""End-to-end detection scenarios through the wired services."""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from src.config.models import AppConfig
from src.models.activity import TransactionStatus
from src.models.events import EventSeverity
from src.models.health import CircuitBreakerState, SystemHealthStatus
from src.models.queries import EventFilters
from src.services.container import build_services
from tests.conftest import NOW, InMemoryDatastore, InMemoryFeed, make_transaction

REPEAT_CARD = "CARD9999"


def _failing_traffic(now: datetime):
    """100 transactions over ten minutes, every tenth one failed."""
    transactions = []
    for i in range(100):
        failed = i % 10 == 0
        card_id = REPEAT_CARD if failed and i <= 20 else f"CARD{i:04d}"
        kwargs = {}
        if i == 10:
            kwargs = {"previous_balance": "20.00", "new_balance": "15.00"}
        transactions.append(
            make_transaction(
                f"T{i:03d}",
                card_id=card_id,
                timestamp=now - timedelta(seconds=6 * i),
                status=TransactionStatus.FAILED if failed else TransactionStatus.COMPLETED,
                **kwargs,
            )
        )
    return transactions


class TestFailingTraffic:
    """A ten percent failure rate across 100 transactions."""

    def setup_method(self):
        self.datastore = InMemoryDatastore()
        self.feed = InMemoryFeed()
        self.services = build_services(AppConfig(), self.datastore, self.feed)
        self.datastore.transactions = _failing_traffic(NOW)

    @pytest.mark.asyncio
    async def test_cycle_raises_one_event_per_pattern(self):
        result = await self.services.aggregator.run_detection_cycle(now=NOW)

        failures = result.detection_results.transaction_failures
        assert result.success
        assert result.errors == []
        assert failures.balance_deduction_failures == 1
        assert failures.consecutive_failures == 1
        assert failures.system_failure_spikes == 1
        assert result.total_events_created == 3

        by_algorithm = {e.detection_algorithm: e for e in self.datastore.events}
        deduction = by_algorithm["balance_deduction_on_failure"]
        assert deduction.severity == EventSeverity.CRITICAL
        assert deduction.transaction_id == "T010"
        assert deduction.affected_amount == Decimal("5.00")

        consecutive = by_algorithm["consecutive_failures"]
        assert consecutive.card_id == REPEAT_CARD
        assert consecutive.event_data.failed_transactions == ["T020", "T010", "T000"]

        spike = by_algorithm["system_failure_spike"]
        assert spike.event_data.failure_rate_percent == Decimal("10.00")
        assert spike.context_data.requires_system_investigation is False

    @pytest.mark.asyncio
    async def test_snapshot_reflects_the_cycle(self):
        await self.services.aggregator.run_detection_cycle(now=NOW)

        snapshot = self.datastore.snapshots[-1]
        assert snapshot.total_transactions_last_hour == 100
        assert snapshot.failed_transactions_last_hour == 10
        assert snapshot.success_rate_percent == Decimal("90.00")
        assert snapshot.critical_events_last_hour == 1
        assert snapshot.overall_health_status == SystemHealthStatus.CRITICAL

    @pytest.mark.asyncio
    async def test_repeat_cycle_does_not_duplicate_events(self):
        await self.services.aggregator.run_detection_cycle(now=NOW)

        second = await self.services.aggregator.run_detection_cycle(now=NOW + timedelta(seconds=30))

        assert second.total_events_created == 0
        assert len(self.datastore.events) == 3

    @pytest.mark.asyncio
    async def test_subscriber_receives_critical_events(self):
        received = []
        await self.services.client.subscribe_to_events(
            received.append,
            EventFilters(severity=EventSeverity.CRITICAL),
        )

        await self.services.aggregator.run_detection_cycle(now=NOW)
        await asyncio.sleep(0.05)

        assert [e.detection_algorithm for e in received] == ["balance_deduction_on_failure"]
        await self.services.shutdown()
        assert self.feed.subscriber_count == 0


class TestCleanTraffic:
    """Repeated cycles over healthy traffic."""

    def setup_method(self):
        self.datastore = InMemoryDatastore()
        self.services = build_services(AppConfig(), self.datastore)
        now = datetime.now(timezone.utc)
        self.datastore.transactions = [
            make_transaction(
                f"T{i:03d}",
                card_id=f"CARD{i:04d}",
                timestamp=now - timedelta(seconds=20 * (i + 1)),
            )
            for i in range(100)
        ]

    @pytest.mark.asyncio
    async def test_hundred_cycles_stay_healthy(self):
        for _ in range(100):
            await self.services.scheduler.run_detection_cycle()

        status = self.services.scheduler.get_status()
        assert status.cycles_completed == 100
        assert status.cycles_failed == 0
        assert status.cycle_success_rate_percent >= Decimal("99")
        assert status.circuit_breaker.state == CircuitBreakerState.CLOSED
        assert self.datastore.events == []

        snapshot = self.datastore.snapshots[-1]
        assert snapshot.success_rate_percent == Decimal("100.00")
        assert snapshot.overall_health_status == SystemHealthStatus.HEALTHY

        health = await self.services.client.get_health_check()
        assert health.status == SystemHealthStatus.HEALTHY
