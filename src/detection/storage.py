"""
Monitoring event storage.

This module provides the EventStorage class which persists detected events
to the datastore, records alert history for critical events and publishes
new events to the live event feed.

Key Features:
    - Datastore insert is the only step that can fail a save
    - Alert history for every CRITICAL event
    - Best-effort publication to subscribers
    - Dedup lookups shared by all detectors

Example:
    >>> storage = EventStorage(postgres_client, redis_client)
    >>> stored = await storage.save_event(event)
    >>> stored.event_id
    42
"""

from datetime import datetime
from typing import Optional

import structlog

from src.interfaces.datastore import EventFeed, MonitoringDatastore
from src.models.alerts import AlertHistory, AlertLevel
from src.models.events import MonitoringEvent

logger = structlog.get_logger(__name__)


def critical_alert_message(event: MonitoringEvent) -> str:
    """Alert text recorded for a critical event."""
    return f"Critical {event.event_type.value} detected for card {event.card_id}"


class EventStorage:
    """
    Persists monitoring events and their side effects.

    Attributes:
        datastore: System of record for events and alerts.
        feed: Optional live event feed.

    Example:
        >>> storage = EventStorage(datastore, feed)
        >>> if not await storage.is_duplicate("consecutive_failures", since, card_id="C1"):
        ...     await storage.save_event(event)
    """

    def __init__(
        self,
        datastore: MonitoringDatastore,
        feed: Optional[EventFeed] = None,
    ) -> None:
        """
        Initialize the event storage.

        Args:
            datastore: Monitoring datastore.
            feed: Event feed for live delivery, None to disable publishing.
        """
        self.datastore = datastore
        self.feed = feed

        logger.debug("event_storage_initialized", publishing=feed is not None)

    async def is_duplicate(
        self,
        detection_algorithm: str,
        since: Optional[datetime] = None,
        card_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> bool:
        """
        Check whether an equivalent event was already recorded.

        Args:
            detection_algorithm: Algorithm name.
            since: Start of the dedup window, None for all history.
            card_id: Card the event is about.
            transaction_id: Transaction the event is about.

        Returns:
            bool: True if an event already exists.
        """
        return await self.datastore.event_exists(
            detection_algorithm,
            since=since,
            card_id=card_id,
            transaction_id=transaction_id,
        )

    async def save_event(self, event: MonitoringEvent) -> MonitoringEvent:
        """
        Persist an event, record its alert and publish it.

        Only the insert can fail the save. Alert and publication failures
        are logged because the event itself is already durable.

        Args:
            event: The event to persist.

        Returns:
            MonitoringEvent: The stored event with its id.

        Raises:
            Exception: If the datastore insert fails.
        """
        try:
            stored = await self.datastore.insert_event(event)
        except Exception as e:
            logger.error(
                "monitoring_event_save_failed",
                event_type=event.event_type.value,
                detection_algorithm=event.detection_algorithm,
                card_id=event.card_id,
                error=str(e),
            )
            raise

        logger.info(
            "monitoring_event_saved",
            event_id=stored.event_id,
            event_type=stored.event_type.value,
            severity=stored.severity.value,
            detection_algorithm=stored.detection_algorithm,
            card_id=stored.card_id,
        )

        if stored.severity.is_critical:
            await self._record_alert(stored)

        if self.feed is not None:
            await self._publish(stored)

        return stored

    async def _record_alert(self, event: MonitoringEvent) -> None:
        """Write the alert history row of a critical event."""
        alert = AlertHistory(
            monitoring_event_id=event.event_id,
            alert_level=AlertLevel.CRITICAL,
            alert_message=critical_alert_message(event),
            alert_timestamp=event.created_at or event.detection_timestamp,
            escalation_level=1,
        )
        try:
            alert_id = await self.datastore.insert_alert(alert)
            logger.info(
                "critical_alert_recorded",
                alert_id=alert_id,
                event_id=event.event_id,
            )
        except Exception as e:
            logger.error(
                "critical_alert_record_failed",
                event_id=event.event_id,
                error=str(e),
            )

    async def _publish(self, event: MonitoringEvent) -> None:
        """Publish an event to live subscribers."""
        try:
            await self.feed.publish_event(event)
        except Exception as e:
            logger.warning(
                "monitoring_event_publish_failed",
                event_id=event.event_id,
                error=str(e),
            )
