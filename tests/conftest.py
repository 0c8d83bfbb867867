"""Shared fixtures for the monitoring tests.

Provides in-memory implementations of MonitoringDatastore and EventFeed,
row factories and pre-wired components.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncIterator, Dict, List, Optional, Sequence

import pytest

from src.config.models import AppConfig
from src.interfaces.datastore import EventFeed, MonitoringDatastore
from src.models.activity import (
    CardBalance,
    HourlyTransactionStats,
    NFCScanRecord,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
)
from src.models.alerts import AlertHistory
from src.models.events import (
    EventContext,
    EventSeverity,
    EventStatus,
    EventType,
    MonitoringEvent,
    TransactionFailureData,
)
from src.models.health import SystemHealthSnapshot
from src.models.queries import EventFilters, SortOrder
from src.services.container import build_services

NOW = datetime(2025, 6, 14, 12, 0, 0, tzinfo=timezone.utc)


def _hour(ts: datetime) -> datetime:
    return ts.replace(minute=0, second=0, microsecond=0)


class InMemoryDatastore(MonitoringDatastore):
    """MonitoringDatastore backed by lists, with the same bounds as PostgreSQL."""

    def __init__(self) -> None:
        self.transactions: List[TransactionRecord] = []
        self.scans: List[NFCScanRecord] = []
        self.cards: Dict[str, CardBalance] = {}
        self.events: List[MonitoringEvent] = []
        self.snapshots: List[SystemHealthSnapshot] = []
        self.alerts: List[AlertHistory] = []
        self.available = True
        self.query_count = 0
        self.fail_snapshot_insert = False
        self._next_event_id = 1
        self._last_created: Optional[datetime] = None

    def _check(self) -> None:
        self.query_count += 1
        if not self.available:
            raise ConnectionError("datastore unavailable")

    # Activity

    async def fetch_transactions(
        self,
        since: Optional[datetime],
        until: Optional[datetime] = None,
        card_ids: Optional[Sequence[str]] = None,
        status: Optional[TransactionStatus] = None,
    ) -> List[TransactionRecord]:
        self._check()
        rows = [
            tx
            for tx in self.transactions
            if (since is None or tx.timestamp > since)
            and (until is None or tx.timestamp <= until)
            and (card_ids is None or tx.card_id in card_ids)
            and (status is None or tx.status == status)
        ]
        return sorted(rows, key=lambda tx: (tx.timestamp, tx.transaction_id))

    async def fetch_nfc_scans(
        self,
        since: datetime,
        until: Optional[datetime] = None,
    ) -> List[NFCScanRecord]:
        self._check()
        rows = [
            scan
            for scan in self.scans
            if scan.scan_timestamp > since and (until is None or scan.scan_timestamp <= until)
        ]
        return sorted(rows, key=lambda scan: (scan.scan_timestamp, scan.scan_log_id))

    async def fetch_cards(self, offset: int = 0, limit: Optional[int] = None) -> List[CardBalance]:
        self._check()
        cards = [self.cards[card_id] for card_id in sorted(self.cards)]
        end = None if limit is None else offset + limit
        return cards[offset:end]

    async def fetch_hourly_transaction_stats(
        self,
        start: datetime,
        end: datetime,
    ) -> List[HourlyTransactionStats]:
        self._check()
        buckets: Dict[datetime, List[TransactionRecord]] = {}
        for tx in self.transactions:
            if start <= tx.timestamp <= end:
                buckets.setdefault(_hour(tx.timestamp), []).append(tx)
        return [
            HourlyTransactionStats(
                bucket=bucket,
                total=len(rows),
                failed=sum(1 for tx in rows if tx.status == TransactionStatus.FAILED),
                volume=sum(
                    (tx.amount_involved for tx in rows if tx.status == TransactionStatus.COMPLETED),
                    Decimal("0"),
                ),
            )
            for bucket, rows in sorted(buckets.items())
        ]

    # Events

    def _matching(self, filters: EventFilters) -> List[MonitoringEvent]:
        return [event for event in self.events if filters.matches(event)]

    async def event_exists(
        self,
        detection_algorithm: str,
        since: Optional[datetime] = None,
        card_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> bool:
        self._check()
        return any(
            event.detection_algorithm == detection_algorithm
            and (since is None or event.detection_timestamp > since)
            and (card_id is None or event.card_id == card_id)
            and (transaction_id is None or event.transaction_id == transaction_id)
            for event in self.events
        )

    async def insert_event(self, event: MonitoringEvent) -> MonitoringEvent:
        self._check()
        created = datetime.now(timezone.utc)
        if self._last_created is not None and created <= self._last_created:
            created = self._last_created + timedelta(microseconds=1)
        self._last_created = created
        stored = event.model_copy(
            update={"event_id": self._next_event_id, "created_at": created, "updated_at": created}
        )
        self._next_event_id += 1
        self.events.append(stored)
        return stored

    async def query_events(
        self,
        filters: EventFilters,
        limit: int,
        offset: int = 0,
        sort_by: str = "detection_timestamp",
        sort_order: SortOrder = SortOrder.DESC,
    ) -> List[MonitoringEvent]:
        self._check()

        def _key(event: MonitoringEvent):
            if sort_by == "severity":
                return (event.severity.weight, event.event_id)
            return (getattr(event, sort_by), event.event_id)

        rows = sorted(self._matching(filters), key=_key, reverse=sort_order == SortOrder.DESC)
        return rows[offset : offset + limit]

    async def count_events(self, filters: EventFilters) -> int:
        self._check()
        return len(self._matching(filters))

    async def sum_affected_amount(self, filters: EventFilters) -> Decimal:
        self._check()
        return sum(
            (event.affected_amount or Decimal("0") for event in self._matching(filters)),
            Decimal("0"),
        )

    async def fetch_events_since(
        self,
        since: datetime,
        filters: EventFilters,
        limit: int,
    ) -> List[MonitoringEvent]:
        self._check()
        rows = [event for event in self._matching(filters) if event.created_at >= since]
        return sorted(rows, key=lambda event: (event.created_at, event.event_id))[:limit]

    async def fetch_hourly_event_counts(
        self,
        start: datetime,
        end: datetime,
        event_type: Optional[EventType] = None,
    ) -> Dict[datetime, int]:
        self._check()
        counts: Dict[datetime, int] = {}
        for event in self.events:
            if not start <= event.detection_timestamp <= end:
                continue
            if event_type is not None and event.event_type != event_type:
                continue
            bucket = _hour(event.detection_timestamp)
            counts[bucket] = counts.get(bucket, 0) + 1
        return counts

    async def update_event_status(
        self,
        event_id: int,
        status: EventStatus,
        resolution_notes: Optional[str],
        resolved_at: Optional[datetime],
    ) -> Optional[MonitoringEvent]:
        self._check()
        for index, event in enumerate(self.events):
            if event.event_id == event_id:
                updated = event.model_copy(
                    update={
                        "status": status,
                        "resolution_notes": resolution_notes or event.resolution_notes,
                        "resolved_at": resolved_at,
                        "updated_at": datetime.now(timezone.utc),
                    }
                )
                self.events[index] = updated
                return updated
        return None

    # Snapshots and alerts

    async def insert_health_snapshot(self, snapshot: SystemHealthSnapshot) -> int:
        self._check()
        if self.fail_snapshot_insert:
            raise RuntimeError("snapshot insert failed")
        snapshot_id = len(self.snapshots) + 1
        self.snapshots.append(snapshot.model_copy(update={"snapshot_id": snapshot_id}))
        return snapshot_id

    async def get_latest_health_snapshot(self) -> Optional[SystemHealthSnapshot]:
        self._check()
        if not self.snapshots:
            return None
        return max(self.snapshots, key=lambda s: (s.snapshot_timestamp, s.snapshot_id))

    async def fetch_health_snapshots(
        self,
        start: datetime,
        end: datetime,
    ) -> List[SystemHealthSnapshot]:
        self._check()
        return sorted(
            (s for s in self.snapshots if start <= s.snapshot_timestamp <= end),
            key=lambda s: s.snapshot_timestamp,
        )

    async def insert_alert(self, alert: AlertHistory) -> int:
        self._check()
        alert_id = len(self.alerts) + 1
        self.alerts.append(alert.model_copy(update={"alert_id": alert_id}))
        return alert_id

    # Maintenance

    async def delete_expired(
        self,
        events_before: datetime,
        snapshots_before: datetime,
        alerts_before: datetime,
    ) -> Dict[str, int]:
        self._check()
        expired_ids = {e.event_id for e in self.events if e.detection_timestamp < events_before}
        alerts = [
            a
            for a in self.alerts
            if a.alert_timestamp >= alerts_before and a.monitoring_event_id not in expired_ids
        ]
        events = [e for e in self.events if e.event_id not in expired_ids]
        snapshots = [s for s in self.snapshots if s.snapshot_timestamp >= snapshots_before]

        deleted = {
            "alert_history": len(self.alerts) - len(alerts),
            "monitoring_events": len(self.events) - len(events),
            "system_health_snapshots": len(self.snapshots) - len(snapshots),
        }
        self.alerts, self.events, self.snapshots = alerts, events, snapshots
        return deleted

    async def ping(self) -> bool:
        return self.available


class InMemoryFeed(EventFeed):
    """EventFeed delivering published events to in-process subscribers."""

    _CLOSE = object()

    def __init__(self, fail_subscribe: bool = False) -> None:
        self.fail_subscribe = fail_subscribe
        self.published: List[MonitoringEvent] = []
        self._queues: List[asyncio.Queue] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    async def publish_event(self, event: MonitoringEvent) -> int:
        self.published.append(event)
        for queue in self._queues:
            queue.put_nowait(event)
        return len(self._queues)

    def break_connection(self) -> None:
        """Make every open subscription fail."""
        for queue in self._queues:
            queue.put_nowait(self._CLOSE)

    @asynccontextmanager
    async def subscribe_events(self) -> AsyncIterator[AsyncIterator[MonitoringEvent]]:
        if self.fail_subscribe:
            raise ConnectionError("feed unavailable")

        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)

        async def _iterate() -> AsyncIterator[MonitoringEvent]:
            while True:
                item = await queue.get()
                if item is self._CLOSE:
                    raise ConnectionError("feed connection lost")
                yield item

        try:
            yield _iterate()
        finally:
            self._queues.remove(queue)


# =============================================================================
# ROW FACTORIES
# =============================================================================


def make_transaction(
    transaction_id: str,
    card_id: str = "CARD0001",
    timestamp: datetime = NOW,
    status: TransactionStatus = TransactionStatus.COMPLETED,
    transaction_type: TransactionType = TransactionType.BAR_ORDER,
    amount: str = "5.00",
    previous_balance: Optional[str] = None,
    new_balance: Optional[str] = None,
) -> TransactionRecord:
    return TransactionRecord(
        transaction_id=transaction_id,
        card_id=card_id,
        transaction_type=transaction_type,
        status=status,
        amount_involved=Decimal(amount),
        previous_balance=Decimal(previous_balance) if previous_balance is not None else None,
        new_balance=Decimal(new_balance) if new_balance is not None else None,
        timestamp=timestamp,
    )


def make_scan(
    scan_log_id: int,
    card_id: Optional[str] = "CARD0001",
    timestamp: datetime = NOW,
    processing_time_ms: Optional[int] = 100,
) -> NFCScanRecord:
    return NFCScanRecord(
        scan_log_id=scan_log_id,
        card_id_scanned=card_id,
        scan_timestamp=timestamp,
        scan_result="success",
        processing_time_ms=processing_time_ms,
    )


def make_event(
    severity: EventSeverity = EventSeverity.MEDIUM,
    card_id: Optional[str] = "CARD0001",
    detection_timestamp: datetime = NOW,
    detection_algorithm: str = "consecutive_failures",
    affected_amount: Optional[str] = None,
    status: EventStatus = EventStatus.OPEN,
) -> MonitoringEvent:
    return MonitoringEvent(
        event_type=EventType.TRANSACTION_FAILURE,
        severity=severity,
        card_id=card_id,
        affected_amount=Decimal(affected_amount) if affected_amount is not None else None,
        detection_timestamp=detection_timestamp,
        detection_algorithm=detection_algorithm,
        confidence_score=Decimal("0.9"),
        event_data=TransactionFailureData(failure_count=3),
        context_data=EventContext(detection_time=detection_timestamp),
        status=status,
    )


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def now() -> datetime:
    """Fixed reference time for detector runs."""
    return NOW


@pytest.fixture
def datastore() -> InMemoryDatastore:
    """Empty in-memory datastore."""
    return InMemoryDatastore()


@pytest.fixture
def feed() -> InMemoryFeed:
    """Working in-memory event feed."""
    return InMemoryFeed()


@pytest.fixture
def app_config() -> AppConfig:
    """Default application configuration."""
    return AppConfig()


@pytest.fixture
def services(app_config, datastore, feed):
    """Components wired around the in-memory stores."""
    return build_services(app_config, datastore, feed)


@pytest.fixture
def past_minutes():
    """Build timestamps relative to NOW."""

    def _past(minutes: float = 0, seconds: float = 0) -> datetime:
        return NOW - timedelta(minutes=minutes, seconds=seconds)

    return _past
