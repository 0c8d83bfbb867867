"""
Explicit wiring of the monitoring components.

Every component is constructed here from the configuration and the two
stores, and handed to its consumers. Nothing in the monitoring core looks
up a global instance, so tests build a container around in-memory stores.

Example:
    >>> services = build_services(config, postgres_client, redis_client)
    >>> await services.scheduler.start()
    >>> health = await services.client.get_health_check()
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from src.client.monitoring_client import MonitoringClient
from src.config.models import AppConfig
from src.detection.aggregator import DetectionCycleAggregator, create_aggregator
from src.detection.retention import RetentionCleaner
from src.interfaces.datastore import EventFeed, MonitoringDatastore
from src.scheduler.circuit_breaker import DEFAULT_BREAKER_NAME, CircuitBreaker
from src.scheduler.scheduler import BackgroundScheduler

logger = structlog.get_logger(__name__)


@dataclass
class MonitoringServices:
    """
    The wired monitoring components of one process.

    Attributes:
        config: Application configuration.
        datastore: Monitoring datastore.
        feed: Event feed, None when push delivery is unavailable.
        aggregator: Runs detection cycles.
        breaker: The process-wide circuit breaker for detection cycles.
        cleaner: Retention cleaner.
        scheduler: Background scheduler.
        client: Read-side monitoring client.
    """

    config: AppConfig
    datastore: MonitoringDatastore
    feed: Optional[EventFeed]
    aggregator: DetectionCycleAggregator
    breaker: CircuitBreaker
    cleaner: RetentionCleaner
    scheduler: BackgroundScheduler
    client: MonitoringClient

    async def shutdown(self) -> None:
        """Stop the scheduler and release client subscriptions."""
        await self.scheduler.stop()
        await self.client.cleanup()


def build_services(
    config: AppConfig,
    datastore: MonitoringDatastore,
    feed: Optional[EventFeed] = None,
) -> MonitoringServices:
    """
    Construct and wire every monitoring component.

    Manual and scheduled detection cycles share the one breaker built here.

    Args:
        config: Application configuration.
        datastore: Monitoring datastore.
        feed: Event feed for publishing and subscriptions.

    Returns:
        MonitoringServices: The wired components.
    """
    aggregator = create_aggregator(datastore, feed, config.monitoring)
    breaker = CircuitBreaker(DEFAULT_BREAKER_NAME, config.monitoring.circuit_breaker)
    cleaner = RetentionCleaner(datastore, config.monitoring.retention)
    scheduler = BackgroundScheduler(aggregator, breaker, config.monitoring, cleaner)
    client = MonitoringClient(
        datastore,
        feed=feed,
        config=config.features,
        status_provider=scheduler.get_status,
        query_timeout_seconds=config.monitoring.performance.query_timeout_ms / 1000,
    )

    logger.debug(
        "monitoring_services_built",
        breaker=breaker.name,
        push_enabled=feed is not None and config.features.subscriptions.push_enabled,
    )

    return MonitoringServices(
        config=config,
        datastore=datastore,
        feed=feed,
        aggregator=aggregator,
        breaker=breaker,
        cleaner=cleaner,
        scheduler=scheduler,
        client=client,
    )
