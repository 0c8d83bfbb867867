"""
Duplicate NFC scan detection.

Scans from the recent lookback window are grouped per card and split into
clusters of scans whose consecutive gaps stay within
``duplicate_nfc_window_seconds``. Any cluster of two or more scans is a
temporal duplicate, typically a customer tapping twice.
"""

from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List

import structlog

from src.detection.base import Detector, cluster_by_gap, seconds_between
from src.models.activity import NFCScanRecord
from src.models.detection import DuplicateNFCResult
from src.models.events import (
    DuplicateNFCData,
    EventContext,
    EventSeverity,
    EventType,
    MonitoringEvent,
)

logger = structlog.get_logger(__name__)

ALGORITHM_TEMPORAL_DUPLICATE = "temporal_duplicate_detection"


class DuplicateNFCDetector(Detector):
    """Detects the same card being scanned several times within seconds."""

    detection_type = "duplicate_nfc_scans"
    result_class = DuplicateNFCResult

    async def detect(self, now: datetime) -> DuplicateNFCResult:
        t = self.thresholds
        since = now - timedelta(minutes=t.duplicate_lookback_minutes)
        window = timedelta(seconds=float(t.duplicate_nfc_window_seconds))

        scans = await self.datastore.fetch_nfc_scans(since=since, until=now)

        by_card: Dict[str, List[NFCScanRecord]] = defaultdict(list)
        for scan in scans:
            if scan.card_id_scanned:
                by_card[scan.card_id_scanned].append(scan)

        created = 0
        for card_id, card_scans in by_card.items():
            for cluster in cluster_by_gap(card_scans, key=lambda s: s.scan_timestamp, window=window):
                if len(cluster) < 2:
                    continue
                if await self.storage.is_duplicate(
                    ALGORITHM_TEMPORAL_DUPLICATE,
                    since=since,
                    card_id=card_id,
                ):
                    break

                event = MonitoringEvent(
                    event_type=EventType.DUPLICATE_NFC,
                    severity=EventSeverity.MEDIUM,
                    card_id=card_id,
                    detection_timestamp=now,
                    detection_algorithm=ALGORITHM_TEMPORAL_DUPLICATE,
                    confidence_score=Decimal("0.8"),
                    event_data=DuplicateNFCData(
                        scan_count=len(cluster),
                        scan_ids=[s.scan_log_id for s in cluster],
                        scan_timestamps=[s.scan_timestamp for s in cluster],
                        time_span_seconds=seconds_between(
                            cluster[0].scan_timestamp,
                            cluster[-1].scan_timestamp,
                        ),
                        threshold_seconds=t.duplicate_nfc_window_seconds,
                    ),
                    context_data=EventContext(
                        detection_time=now,
                        pattern_type="temporal_duplicates",
                        potential_user_error=True,
                    ),
                )
                await self.storage.save_event(event)
                created += 1

        return DuplicateNFCResult(
            detection_type=self.detection_type,
            detection_timestamp=now,
            events_created=created,
            temporal_duplicates=created,
            scans_checked=len(scans),
        )
