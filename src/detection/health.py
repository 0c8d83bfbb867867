"""
System health snapshot construction.

The snapshot summarises the last hour of platform activity once per
detection cycle:

    - transaction totals and success rate (completed / total)
    - NFC scan totals, duplicates (extra scans per card and minute) and the
      resulting NFC success rate
    - processing time statistics from NFC scan processing times
    - active cards (positive balance) and total balance held on them
    - monitoring events and critical events raised in the hour

Overall status:
    CRITICAL if any critical event was raised in the hour, WARNING if either
    rate is below 95%, HEALTHY if both are at least 99%, WARNING otherwise.
"""

import asyncio
import math
from collections import Counter
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple

import structlog

from src.config.models import PerformanceConfig
from src.detection.base import round_percent, utc_now
from src.interfaces.datastore import MonitoringDatastore
from src.models.activity import CardBalance, NFCScanRecord, TransactionStatus
from src.models.events import EventSeverity
from src.models.health import SystemHealthSnapshot, SystemHealthStatus
from src.models.queries import EventFilters

logger = structlog.get_logger(__name__)

WARNING_RATE = Decimal("95")
HEALTHY_RATE = Decimal("99")


def classify_health(
    critical_events: int,
    success_rate: Decimal,
    nfc_success_rate: Decimal,
) -> SystemHealthStatus:
    """
    Derive the overall status of a snapshot.

    Args:
        critical_events: Critical events raised in the last hour.
        success_rate: Transaction success rate in percent.
        nfc_success_rate: NFC success rate in percent.

    Returns:
        SystemHealthStatus: CRITICAL, WARNING or HEALTHY.
    """
    if critical_events > 0:
        return SystemHealthStatus.CRITICAL
    if success_rate < WARNING_RATE or nfc_success_rate < WARNING_RATE:
        return SystemHealthStatus.WARNING
    if success_rate >= HEALTHY_RATE and nfc_success_rate >= HEALTHY_RATE:
        return SystemHealthStatus.HEALTHY
    return SystemHealthStatus.WARNING


def count_duplicate_scans(scans: List[NFCScanRecord]) -> int:
    """Count scans beyond the first per card and minute."""
    buckets = Counter(
        (scan.card_id_scanned, scan.scan_timestamp.replace(second=0, microsecond=0))
        for scan in scans
        if scan.card_id_scanned
    )
    return sum(count - 1 for count in buckets.values() if count > 1)


def processing_time_stats(
    scans: List[NFCScanRecord],
) -> Tuple[Optional[int], Optional[int], Optional[int]]:
    """
    Average, 95th percentile (nearest rank) and maximum processing time.

    Returns:
        Tuple of avg, p95 and max in milliseconds, all None without samples.
    """
    samples = sorted(
        scan.processing_time_ms for scan in scans if scan.processing_time_ms is not None
    )
    if not samples:
        return None, None, None

    avg = int(round(sum(samples) / len(samples)))
    p95 = samples[max(0, math.ceil(0.95 * len(samples)) - 1)]
    return avg, p95, samples[-1]


class HealthSnapshotBuilder:
    """
    Builds SystemHealthSnapshot records from the datastore.

    Example:
        >>> builder = HealthSnapshotBuilder(datastore)
        >>> snapshot = await builder.build()
        >>> snapshot_id = await datastore.insert_health_snapshot(snapshot)
    """

    def __init__(
        self,
        datastore: MonitoringDatastore,
        performance: Optional[PerformanceConfig] = None,
    ) -> None:
        self.datastore = datastore
        self.performance = performance or PerformanceConfig()

    async def build(self, now: Optional[datetime] = None) -> SystemHealthSnapshot:
        """
        Build a snapshot of the hour ending at ``now``.

        Args:
            now: End of the measured hour, defaults to the current UTC time.

        Returns:
            SystemHealthSnapshot: Unsaved snapshot.
        """
        now = now or utc_now()
        hour_ago = now - timedelta(hours=1)

        transactions, scans, cards, events_last_hour, critical_last_hour = await asyncio.gather(
            self.datastore.fetch_transactions(since=hour_ago, until=now),
            self.datastore.fetch_nfc_scans(since=hour_ago, until=now),
            self._fetch_all_cards(),
            self.datastore.count_events(
                EventFilters(start_date=hour_ago, end_date=now)
            ),
            self.datastore.count_events(
                EventFilters(
                    start_date=hour_ago,
                    end_date=now,
                    severity=[EventSeverity.CRITICAL],
                )
            ),
        )

        total = len(transactions)
        successful = sum(1 for tx in transactions if tx.status == TransactionStatus.COMPLETED)
        failed = sum(1 for tx in transactions if tx.status == TransactionStatus.FAILED)
        success_rate = (
            round_percent(Decimal(successful) / Decimal(total) * 100)
            if total
            else Decimal("0")
        )

        total_scans = len(scans)
        duplicates = count_duplicate_scans(scans)
        nfc_success_rate = (
            round_percent(Decimal(total_scans - duplicates) / Decimal(total_scans) * 100)
            if total_scans
            else Decimal("100")
        )

        avg_ms, p95_ms, max_ms = processing_time_stats(scans)
        active_cards = [card for card in cards if card.amount > 0]

        status = classify_health(critical_last_hour, success_rate, nfc_success_rate)

        snapshot = SystemHealthSnapshot(
            snapshot_timestamp=now,
            total_transactions_last_hour=total,
            successful_transactions_last_hour=successful,
            failed_transactions_last_hour=failed,
            success_rate_percent=success_rate,
            avg_processing_time_ms=avg_ms,
            p95_processing_time_ms=p95_ms,
            max_processing_time_ms=max_ms,
            total_nfc_scans_last_hour=total_scans,
            duplicate_nfc_scans_last_hour=duplicates,
            nfc_success_rate_percent=nfc_success_rate,
            active_cards_count=len(active_cards),
            total_system_balance=sum((card.amount for card in active_cards), Decimal("0")),
            monitoring_events_last_hour=events_last_hour,
            critical_events_last_hour=critical_last_hour,
            overall_health_status=status,
            metrics_data={
                "snapshot_generation_time_ms": int(now.timestamp() * 1000),
                "cards_scanned": len(cards),
            },
        )

        logger.debug(
            "health_snapshot_built",
            status=status.value,
            success_rate_percent=str(success_rate),
            nfc_success_rate_percent=str(nfc_success_rate),
        )

        return snapshot

    async def _fetch_all_cards(self) -> List[CardBalance]:
        """Page through every card."""
        batch_size = self.performance.batch_size
        cards: List[CardBalance] = []
        offset = 0

        while True:
            page = await self.datastore.fetch_cards(offset=offset, limit=batch_size)
            cards.extend(page)
            if len(page) < batch_size:
                return cards
            offset += batch_size
