"""
Abstract base classes for the monitoring datastore and event feed.

The monitoring core never talks to a database driver directly. Detectors,
the aggregator and the monitoring client depend on MonitoringDatastore,
and live event delivery depends on EventFeed. PostgresClient and
RedisClient are the production implementations; tests use in-memory fakes.

The datastore is the system of record and is shared with the payment
flow, so implementations must not assume exclusive access.

Example:
    >>> class PostgresClient(MonitoringDatastore):
    ...     async def fetch_transactions(self, since, until=None, card_ids=None, status=None):
    ...         rows = await self._fetch("SELECT ... WHERE timestamp > $1", since)
    ...         return [TransactionRecord(**row) for row in rows]
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from decimal import Decimal
from typing import AsyncIterator, Dict, List, Optional, Sequence

from src.models.activity import (
    CardBalance,
    HourlyTransactionStats,
    NFCScanRecord,
    TransactionRecord,
    TransactionStatus,
)
from src.models.alerts import AlertHistory
from src.models.events import EventStatus, EventType, MonitoringEvent
from src.models.health import SystemHealthSnapshot
from src.models.queries import EventFilters, SortOrder


class MonitoringDatastore(ABC):
    """
    Read, insert and maintenance operations the monitoring core needs.

    Query methods raise the implementation's own error types on failure;
    callers decide whether to absorb or surface them.
    """

    # =========================================================================
    # ACTIVITY READS
    # =========================================================================

    @abstractmethod
    async def fetch_transactions(
        self,
        since: Optional[datetime],
        until: Optional[datetime] = None,
        card_ids: Optional[Sequence[str]] = None,
        status: Optional[TransactionStatus] = None,
    ) -> List[TransactionRecord]:
        """
        Fetch transaction log rows ordered by timestamp.

        Args:
            since: Exclusive lower time bound, None for the full history.
            until: Inclusive upper time bound.
            card_ids: Restrict to these cards.
            status: Restrict to one status.

        Returns:
            List[TransactionRecord]: Matching rows, oldest first.
        """

    @abstractmethod
    async def fetch_nfc_scans(
        self,
        since: datetime,
        until: Optional[datetime] = None,
    ) -> List[NFCScanRecord]:
        """Fetch NFC scan log rows after ``since``, oldest first."""

    @abstractmethod
    async def fetch_cards(
        self,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[CardBalance]:
        """Fetch stored card balances ordered by card id."""

    @abstractmethod
    async def fetch_hourly_transaction_stats(
        self,
        start: datetime,
        end: datetime,
    ) -> List[HourlyTransactionStats]:
        """Fetch per-hour transaction totals between start and end."""

    # =========================================================================
    # MONITORING EVENTS
    # =========================================================================

    @abstractmethod
    async def event_exists(
        self,
        detection_algorithm: str,
        since: Optional[datetime] = None,
        card_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> bool:
        """
        Check for an earlier event from the same algorithm.

        Args:
            detection_algorithm: Algorithm name.
            since: Only consider events detected after this time.
            card_id: Only consider events for this card.
            transaction_id: Only consider events for this transaction.

        Returns:
            bool: True if a matching event exists.
        """

    @abstractmethod
    async def insert_event(self, event: MonitoringEvent) -> MonitoringEvent:
        """Persist an event and return it with its id and timestamps set."""

    @abstractmethod
    async def query_events(
        self,
        filters: EventFilters,
        limit: int,
        offset: int = 0,
        sort_by: str = "detection_timestamp",
        sort_order: SortOrder = SortOrder.DESC,
    ) -> List[MonitoringEvent]:
        """Fetch one page of events matching the filters."""

    @abstractmethod
    async def count_events(self, filters: EventFilters) -> int:
        """Count events matching the filters."""

    @abstractmethod
    async def sum_affected_amount(self, filters: EventFilters) -> Decimal:
        """Sum ``affected_amount`` over events matching the filters."""

    @abstractmethod
    async def fetch_events_since(
        self,
        since: datetime,
        filters: EventFilters,
        limit: int,
    ) -> List[MonitoringEvent]:
        """
        Fetch events created at or after ``since``, oldest first.

        Used by the polling fallback; the inclusive bound means callers see
        boundary rows again and must skip ids they already delivered.
        """

    @abstractmethod
    async def fetch_hourly_event_counts(
        self,
        start: datetime,
        end: datetime,
        event_type: Optional[EventType] = None,
    ) -> Dict[datetime, int]:
        """Count events per hour bucket, keyed by bucket start."""

    @abstractmethod
    async def update_event_status(
        self,
        event_id: int,
        status: EventStatus,
        resolution_notes: Optional[str],
        resolved_at: Optional[datetime],
    ) -> Optional[MonitoringEvent]:
        """Update an event's lifecycle fields; None if it does not exist."""

    # =========================================================================
    # SNAPSHOTS AND ALERTS
    # =========================================================================

    @abstractmethod
    async def insert_health_snapshot(self, snapshot: SystemHealthSnapshot) -> int:
        """Persist a health snapshot and return its id."""

    @abstractmethod
    async def get_latest_health_snapshot(self) -> Optional[SystemHealthSnapshot]:
        """Return the most recent health snapshot."""

    @abstractmethod
    async def fetch_health_snapshots(
        self,
        start: datetime,
        end: datetime,
    ) -> List[SystemHealthSnapshot]:
        """Fetch snapshots taken between start and end, oldest first."""

    @abstractmethod
    async def insert_alert(self, alert: AlertHistory) -> int:
        """Persist an alert history row and return its id."""

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    @abstractmethod
    async def delete_expired(
        self,
        events_before: datetime,
        snapshots_before: datetime,
        alerts_before: datetime,
    ) -> Dict[str, int]:
        """
        Delete monitoring data older than the given cut-offs.

        Returns:
            Dict[str, int]: Rows deleted per table.
        """

    @abstractmethod
    async def ping(self) -> bool:
        """Check datastore connectivity without raising."""


class EventFeed(ABC):
    """
    Push channel for newly created monitoring events.

    Delivery is at-least-once and the channel may be unavailable; consumers
    must be prepared to fall back to polling the datastore.
    """

    @abstractmethod
    async def publish_event(self, event: MonitoringEvent) -> int:
        """
        Publish a persisted event.

        Returns:
            int: Number of subscribers reached.
        """

    @abstractmethod
    def subscribe_events(
        self,
    ) -> AbstractAsyncContextManager[AsyncIterator[MonitoringEvent]]:
        """
        Subscribe to new events.

        Returns:
            An async context manager yielding an async iterator of events.
            Entering the context raises if the channel is unavailable.
        """
