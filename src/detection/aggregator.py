"""
Detection cycle aggregation.

This module provides the DetectionCycleAggregator which runs the four
detectors concurrently, persists one health snapshot and combines
everything into a single DetectionCycleResult.

Key Features:
    - Detectors run concurrently and fail independently
    - The snapshot is built only after every detector has finished
    - A failed snapshot write is reported, not raised
    - Event totals always equal the sum of the detector results

Example:
    >>> aggregator = create_aggregator(datastore, feed, config.monitoring)
    >>> result = await aggregator.run_detection_cycle()
    >>> result.total_events_created, result.health_snapshot_id
    (3, 1284)
"""

import asyncio
import time
from datetime import datetime
from typing import List, Optional

import structlog

from src.config.models import MonitoringConfig
from src.detection.balance_discrepancies import BalanceDiscrepancyDetector
from src.detection.base import Detector, utc_now
from src.detection.duplicate_nfc import DuplicateNFCDetector
from src.detection.health import HealthSnapshotBuilder
from src.detection.race_conditions import RaceConditionDetector
from src.detection.storage import EventStorage
from src.detection.transaction_failures import TransactionFailureDetector
from src.interfaces.datastore import EventFeed, MonitoringDatastore
from src.models.detection import DetectionCycleResult, DetectionResult, DetectionResults

logger = structlog.get_logger(__name__)


class DetectionCycleAggregator:
    """
    Runs one full detection cycle.

    Attributes:
        datastore: Datastore receiving the health snapshot.
        transaction_failures: Transaction failure detector.
        balance_discrepancies: Balance discrepancy detector.
        duplicate_nfc: Duplicate NFC detector.
        race_conditions: Race condition detector.
        snapshot_builder: Health snapshot builder.
        max_concurrent_detectors: Upper bound on detectors running at once.
    """

    def __init__(
        self,
        datastore: MonitoringDatastore,
        transaction_failures: TransactionFailureDetector,
        balance_discrepancies: BalanceDiscrepancyDetector,
        duplicate_nfc: DuplicateNFCDetector,
        race_conditions: RaceConditionDetector,
        snapshot_builder: HealthSnapshotBuilder,
        max_concurrent_detectors: int = 4,
    ) -> None:
        self.datastore = datastore
        self.transaction_failures = transaction_failures
        self.balance_discrepancies = balance_discrepancies
        self.duplicate_nfc = duplicate_nfc
        self.race_conditions = race_conditions
        self.snapshot_builder = snapshot_builder
        self.max_concurrent_detectors = max_concurrent_detectors

    @property
    def detectors(self) -> List[Detector]:
        """The four detectors in result order."""
        return [
            self.transaction_failures,
            self.balance_discrepancies,
            self.duplicate_nfc,
            self.race_conditions,
        ]

    async def run_detection_cycle(
        self,
        now: Optional[datetime] = None,
    ) -> DetectionCycleResult:
        """
        Run all detectors, then persist a health snapshot.

        Detector failures are recorded on their results and in ``errors``.
        A failed snapshot write leaves ``health_snapshot_id`` as None and
        adds an error, but the cycle still succeeds.

        Args:
            now: Reference time shared by every detector and the snapshot.

        Returns:
            DetectionCycleResult: Combined cycle result.

        Raises:
            Exception: Only for errors outside the detectors and snapshot,
                which the scheduler counts as a failed cycle.
        """
        now = now or utc_now()
        start_time = time.monotonic()
        semaphore = asyncio.Semaphore(self.max_concurrent_detectors)

        async def _run(detector: Detector) -> DetectionResult:
            async with semaphore:
                return await detector.run(now)

        transaction_failures, balance_discrepancies, duplicate_nfc, race_conditions = (
            await asyncio.gather(*(_run(detector) for detector in self.detectors))
        )
        results = DetectionResults(
            transaction_failures=transaction_failures,
            balance_discrepancies=balance_discrepancies,
            duplicate_nfc_scans=duplicate_nfc,
            race_conditions=race_conditions,
        )

        errors = [f"{r.detection_type}: {r.error}" for r in results.failed]

        snapshot_id: Optional[int] = None
        try:
            snapshot_id = await self.create_health_snapshot(now)
        except Exception as e:
            logger.error("health_snapshot_failed", error=str(e))
            errors.append(f"health_snapshot: {e}")

        total_events = sum(r.events_created for r in results.all())
        duration = time.monotonic() - start_time

        cycle = DetectionCycleResult(
            cycle_timestamp=now,
            cycle_duration_seconds=round(duration, 3),
            total_events_created=total_events,
            health_snapshot_id=snapshot_id,
            detection_results=results,
            success=True,
            errors=errors,
        )

        log = logger.warning if errors else logger.info
        log(
            "detection_cycle_completed",
            events_created=total_events,
            duration_ms=round(duration * 1000, 2),
            health_snapshot_id=snapshot_id,
            failed_detectors=[r.detection_type for r in results.failed],
        )

        return cycle

    async def create_health_snapshot(self, now: Optional[datetime] = None) -> int:
        """
        Build and persist a health snapshot.

        Args:
            now: End of the measured hour.

        Returns:
            int: Snapshot id.
        """
        snapshot = await self.snapshot_builder.build(now)
        snapshot_id = await self.datastore.insert_health_snapshot(snapshot)

        logger.info(
            "health_snapshot_created",
            snapshot_id=snapshot_id,
            status=snapshot.overall_health_status.value,
        )
        return snapshot_id


def create_aggregator(
    datastore: MonitoringDatastore,
    feed: Optional[EventFeed] = None,
    config: Optional[MonitoringConfig] = None,
) -> DetectionCycleAggregator:
    """
    Factory function to wire the detectors and the aggregator.

    Args:
        datastore: Monitoring datastore.
        feed: Event feed for publishing new events.
        config: Monitoring configuration, defaults to MonitoringConfig().

    Returns:
        DetectionCycleAggregator: Ready to run.

    Example:
        >>> aggregator = create_aggregator(postgres_client, redis_client, config.monitoring)
    """
    config = config or MonitoringConfig()
    storage = EventStorage(datastore, feed)
    args = (datastore, storage, config.thresholds, config.performance)

    return DetectionCycleAggregator(
        datastore=datastore,
        transaction_failures=TransactionFailureDetector(*args),
        balance_discrepancies=BalanceDiscrepancyDetector(*args),
        duplicate_nfc=DuplicateNFCDetector(*args),
        race_conditions=RaceConditionDetector(*args),
        snapshot_builder=HealthSnapshotBuilder(datastore, config.performance),
        max_concurrent_detectors=config.performance.max_concurrent_detectors,
    )
