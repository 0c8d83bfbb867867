"""
Base class and helpers shared by the detection algorithms.

Every detector is stateless between runs: it reads recent activity from the
datastore, decides which anomalies are new, persists them through
EventStorage and returns a typed result record. Detector failures never
propagate; they are reported on the result so one broken algorithm cannot
abort a detection cycle.

Example:
    >>> detector = DuplicateNFCDetector(datastore, storage, thresholds, performance)
    >>> result = await detector.run()
    >>> result.success, result.events_created
    (True, 1)
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, List, Optional, Sequence, Type, TypeVar

import structlog

from src.config.models import PerformanceConfig, ThresholdsConfig
from src.detection.storage import EventStorage
from src.interfaces.datastore import MonitoringDatastore
from src.models.detection import DetectionResult

logger = structlog.get_logger(__name__)

T = TypeVar("T")

TWO_PLACES = Decimal("0.01")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def round_percent(value: Decimal) -> Decimal:
    """Round a percentage to two decimal places, half up."""
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def seconds_between(start: datetime, end: datetime) -> Decimal:
    """Elapsed seconds between two datetimes as a Decimal."""
    return Decimal(str((end - start).total_seconds()))


def cluster_by_gap(
    items: Sequence[T],
    key: Callable[[T], datetime],
    window: timedelta,
) -> List[List[T]]:
    """
    Split time-ordered items into clusters of close neighbours.

    Consecutive items whose gap is at most ``window`` belong to the same
    cluster. Items are sorted by ``key`` first.

    Args:
        items: Items to cluster.
        key: Timestamp accessor.
        window: Maximum gap between neighbours of one cluster.

    Returns:
        List[List[T]]: Clusters in time order, singletons included.

    Example:
        >>> cluster_by_gap(scans, key=lambda s: s.scan_timestamp, window=timedelta(seconds=5))
    """
    ordered = sorted(items, key=key)
    clusters: List[List[T]] = []

    for item in ordered:
        if clusters and key(item) - key(clusters[-1][-1]) <= window:
            clusters[-1].append(item)
        else:
            clusters.append([item])

    return clusters


def cluster_by_span(
    items: Sequence[T],
    key: Callable[[T], datetime],
    window: timedelta,
) -> List[List[T]]:
    """
    Split time-ordered items into clusters no wider than ``window``.

    Each cluster is anchored on its earliest item; an item more than
    ``window`` after the anchor starts a new cluster. Items are sorted by
    ``key`` first.

    Args:
        items: Items to cluster.
        key: Timestamp accessor.
        window: Maximum span from the first to the last item of a cluster.

    Returns:
        List[List[T]]: Clusters in time order, singletons included.
    """
    ordered = sorted(items, key=key)
    clusters: List[List[T]] = []

    for item in ordered:
        if clusters and key(item) - key(clusters[-1][0]) <= window:
            clusters[-1].append(item)
        else:
            clusters.append([item])

    return clusters


class Detector(ABC):
    """
    Abstract detection algorithm.

    Subclasses set ``detection_type`` and ``result_class`` and implement
    ``detect``. Callers use ``run``, which applies the per-detector timeout
    and converts any error into a failed result.

    Attributes:
        datastore: Source of activity rows and dedup lookups.
        storage: Event persistence.
        thresholds: Detection thresholds.
        performance: Batch size and timeout settings.
    """

    detection_type: str = ""
    result_class: Type[DetectionResult] = DetectionResult

    def __init__(
        self,
        datastore: MonitoringDatastore,
        storage: EventStorage,
        thresholds: Optional[ThresholdsConfig] = None,
        performance: Optional[PerformanceConfig] = None,
    ) -> None:
        self.datastore = datastore
        self.storage = storage
        self.thresholds = thresholds or ThresholdsConfig()
        self.performance = performance or PerformanceConfig()

    async def run(self, now: Optional[datetime] = None) -> DetectionResult:
        """
        Run the detector once, never raising.

        Args:
            now: Reference time of the run, defaults to the current UTC time.

        Returns:
            DetectionResult: The detector's result, with ``success=False``
                and ``events_created=0`` if the run failed or timed out.
        """
        now = now or utc_now()
        timeout_ms = self.performance.detection_timeout_ms

        try:
            result = await asyncio.wait_for(self.detect(now), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            error = f"{self.detection_type} detection timed out after {timeout_ms} ms"
            logger.error(
                "detection_timeout",
                detection_type=self.detection_type,
                timeout_ms=timeout_ms,
            )
            return self.result_class(
                detection_type=self.detection_type,
                detection_timestamp=now,
                success=False,
                error=error,
            )
        except Exception as e:
            logger.error(
                "detection_failed",
                detection_type=self.detection_type,
                error=str(e),
                exc_info=True,
            )
            return self.result_class(
                detection_type=self.detection_type,
                detection_timestamp=now,
                success=False,
                error=str(e),
            )

        if result.events_created:
            logger.info(
                "detection_completed",
                detection_type=self.detection_type,
                events_created=result.events_created,
            )
        else:
            logger.debug(
                "detection_completed",
                detection_type=self.detection_type,
                events_created=0,
            )

        return result

    @abstractmethod
    async def detect(self, now: datetime) -> DetectionResult:
        """
        Find and persist new anomalies.

        Args:
            now: Reference time of the run.

        Returns:
            DetectionResult: Result subclass with algorithm counters.
        """
