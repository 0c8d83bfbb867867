"""
Race condition detection.

Transactions from the recent lookback window are grouped per card and split
into clusters spanning at most ``race_condition_window_seconds`` from their
first transaction. A cluster of at least ``race_min_concurrent`` transactions
suggests concurrent writes to one card.
"""

from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List

import structlog

from src.detection.base import Detector, cluster_by_span, seconds_between
from src.models.activity import TransactionRecord
from src.models.detection import RaceConditionResult
from src.models.events import (
    EventContext,
    EventSeverity,
    EventType,
    MonitoringEvent,
    RaceConditionData,
)

logger = structlog.get_logger(__name__)

ALGORITHM_CONCURRENT_TRANSACTIONS = "concurrent_transaction_detection"


class RaceConditionDetector(Detector):
    """Detects near-simultaneous transactions on the same card."""

    detection_type = "race_conditions"
    result_class = RaceConditionResult

    async def detect(self, now: datetime) -> RaceConditionResult:
        t = self.thresholds
        since = now - timedelta(minutes=t.race_lookback_minutes)
        window = timedelta(seconds=float(t.race_condition_window_seconds))

        transactions = await self.datastore.fetch_transactions(since=since, until=now)

        by_card: Dict[str, List[TransactionRecord]] = defaultdict(list)
        for tx in transactions:
            by_card[tx.card_id].append(tx)

        created = 0
        for card_id, card_transactions in by_card.items():
            for cluster in cluster_by_span(card_transactions, key=lambda tx: tx.timestamp, window=window):
                if len(cluster) < t.race_min_concurrent:
                    continue
                if await self.storage.is_duplicate(
                    ALGORITHM_CONCURRENT_TRANSACTIONS,
                    since=since,
                    card_id=card_id,
                ):
                    break

                event = MonitoringEvent(
                    event_type=EventType.RACE_CONDITION,
                    severity=EventSeverity.MEDIUM,
                    card_id=card_id,
                    detection_timestamp=now,
                    detection_algorithm=ALGORITHM_CONCURRENT_TRANSACTIONS,
                    confidence_score=Decimal("0.7"),
                    event_data=RaceConditionData(
                        concurrent_count=len(cluster),
                        transaction_ids=[tx.transaction_id for tx in cluster],
                        timestamps=[tx.timestamp for tx in cluster],
                        transaction_types=[tx.transaction_type.value for tx in cluster],
                        time_span_seconds=seconds_between(
                            cluster[0].timestamp,
                            cluster[-1].timestamp,
                        ),
                        threshold_seconds=t.race_condition_window_seconds,
                    ),
                    context_data=EventContext(
                        detection_time=now,
                        pattern_type="concurrent_transactions",
                        potential_race_condition=True,
                        requires_investigation=len(cluster) > 2,
                    ),
                )
                await self.storage.save_event(event)
                created += 1

        if created:
            logger.warning("race_conditions_detected", count=created)

        return RaceConditionResult(
            detection_type=self.detection_type,
            detection_timestamp=now,
            events_created=created,
            concurrent_transactions=created,
            transactions_checked=len(transactions),
        )
