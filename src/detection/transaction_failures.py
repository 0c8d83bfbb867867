"""
Transaction failure detection.

Three patterns are checked against recent transaction log rows:

    1. Balance deduction on failure (CRITICAL): a transaction marked failed
       whose previous and new balances differ, i.e. money moved anyway.
    2. Consecutive failures (HIGH): several failures for one card inside a
       rolling window.
    3. System failure spike (MEDIUM): the platform-wide failure rate over a
       rolling window exceeds the warning threshold. Only evaluated once
       the window holds enough transactions to be meaningful.

Example:
    >>> detector = TransactionFailureDetector(datastore, storage, thresholds)
    >>> result = await detector.run()
    >>> result.balance_deduction_failures
    1
"""

from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List

import structlog

from src.detection.base import Detector, round_percent
from src.models.activity import TransactionRecord, TransactionStatus
from src.models.detection import TransactionFailureResult
from src.models.events import (
    EventContext,
    EventSeverity,
    EventType,
    FinancialImpact,
    MonitoringEvent,
    TransactionFailureData,
)

logger = structlog.get_logger(__name__)

ALGORITHM_BALANCE_DEDUCTION = "balance_deduction_on_failure"
ALGORITHM_CONSECUTIVE_FAILURES = "consecutive_failures"
ALGORITHM_FAILURE_SPIKE = "system_failure_spike"


class TransactionFailureDetector(Detector):
    """Detects failed transactions that indicate payment integrity problems."""

    detection_type = "transaction_failures"
    result_class = TransactionFailureResult

    async def detect(self, now: datetime) -> TransactionFailureResult:
        t = self.thresholds
        lookback = max(
            t.balance_deduction_window_minutes,
            t.consecutive_failure_window_minutes,
            t.spike_window_minutes,
        )
        transactions = await self.datastore.fetch_transactions(
            since=now - timedelta(minutes=lookback),
            until=now,
        )

        deductions = await self._detect_balance_deductions(transactions, now)
        consecutive = await self._detect_consecutive_failures(transactions, now)
        spikes = await self._detect_failure_spike(transactions, now)

        return TransactionFailureResult(
            detection_type=self.detection_type,
            detection_timestamp=now,
            events_created=deductions + consecutive + spikes,
            balance_deduction_failures=deductions,
            consecutive_failures=consecutive,
            system_failure_spikes=spikes,
        )

    async def _detect_balance_deductions(
        self,
        transactions: List[TransactionRecord],
        now: datetime,
    ) -> int:
        """Flag failed transactions that changed the card balance."""
        since = now - timedelta(minutes=self.thresholds.balance_deduction_window_minutes)
        created = 0

        for tx in transactions:
            if tx.timestamp <= since or tx.status != TransactionStatus.FAILED:
                continue
            if not tx.balance_changed:
                continue
            # One event per transaction, ever
            if await self.storage.is_duplicate(
                ALGORITHM_BALANCE_DEDUCTION,
                transaction_id=tx.transaction_id,
            ):
                continue

            discrepancy = tx.previous_balance - tx.new_balance
            event = MonitoringEvent(
                event_type=EventType.TRANSACTION_FAILURE,
                severity=EventSeverity.CRITICAL,
                card_id=tx.card_id,
                transaction_id=tx.transaction_id,
                affected_amount=abs(discrepancy),
                detection_timestamp=now,
                detection_algorithm=ALGORITHM_BALANCE_DEDUCTION,
                confidence_score=Decimal("1.0"),
                event_data=TransactionFailureData(
                    previous_balance=tx.previous_balance,
                    new_balance=tx.new_balance,
                    discrepancy=discrepancy,
                    transaction_type=tx.transaction_type.value,
                ),
                context_data=EventContext(
                    detection_time=now,
                    requires_immediate_investigation=True,
                    financial_impact=FinancialImpact.HIGH,
                ),
            )
            await self.storage.save_event(event)
            created += 1

        return created

    async def _detect_consecutive_failures(
        self,
        transactions: List[TransactionRecord],
        now: datetime,
    ) -> int:
        """Flag cards with repeated failures inside the window."""
        t = self.thresholds
        since = now - timedelta(minutes=t.consecutive_failure_window_minutes)

        failures: Dict[str, List[TransactionRecord]] = defaultdict(list)
        for tx in transactions:
            if tx.timestamp > since and tx.status == TransactionStatus.FAILED:
                failures[tx.card_id].append(tx)

        created = 0
        for card_id, card_failures in failures.items():
            if len(card_failures) < t.consecutive_failure_threshold:
                continue
            if await self.storage.is_duplicate(
                ALGORITHM_CONSECUTIVE_FAILURES,
                since=since,
                card_id=card_id,
            ):
                continue

            card_failures.sort(key=lambda tx: tx.timestamp)
            first, last = card_failures[0].timestamp, card_failures[-1].timestamp
            span_minutes = Decimal(str((last - first).total_seconds())) / Decimal("60")

            event = MonitoringEvent(
                event_type=EventType.TRANSACTION_FAILURE,
                severity=EventSeverity.HIGH,
                card_id=card_id,
                detection_timestamp=now,
                detection_algorithm=ALGORITHM_CONSECUTIVE_FAILURES,
                confidence_score=Decimal("0.9"),
                event_data=TransactionFailureData(
                    failure_count=len(card_failures),
                    failed_transactions=[tx.transaction_id for tx in card_failures],
                    time_span_minutes=round_percent(span_minutes),
                    first_failure=first,
                    last_failure=last,
                ),
                context_data=EventContext(
                    detection_time=now,
                    pattern_type=ALGORITHM_CONSECUTIVE_FAILURES,
                    requires_investigation=True,
                ),
            )
            await self.storage.save_event(event)
            created += 1

        return created

    async def _detect_failure_spike(
        self,
        transactions: List[TransactionRecord],
        now: datetime,
    ) -> int:
        """Flag a platform-wide failure rate above the warning threshold."""
        t = self.thresholds
        since = now - timedelta(minutes=t.spike_window_minutes)

        window = [tx for tx in transactions if tx.timestamp > since]
        total = len(window)
        if total <= t.min_transactions_for_spike:
            return 0

        failed = sum(1 for tx in window if tx.status == TransactionStatus.FAILED)
        failure_rate = round_percent(Decimal(failed) / Decimal(total) * 100)
        warning_percent = t.failure_rate_warning * 100
        critical_percent = t.failure_rate_critical * 100

        if failure_rate <= warning_percent:
            return 0
        if await self.storage.is_duplicate(ALGORITHM_FAILURE_SPIKE, since=since):
            return 0

        logger.warning(
            "failure_rate_spike_detected",
            failure_rate_percent=str(failure_rate),
            total_transactions=total,
            failed_transactions=failed,
        )

        event = MonitoringEvent(
            event_type=EventType.TRANSACTION_FAILURE,
            severity=EventSeverity.MEDIUM,
            detection_timestamp=now,
            detection_algorithm=ALGORITHM_FAILURE_SPIKE,
            confidence_score=Decimal("0.8"),
            event_data=TransactionFailureData(
                total_transactions=total,
                failed_transactions_count=failed,
                failure_rate_percent=failure_rate,
                threshold_percent=warning_percent,
                time_window_minutes=t.spike_window_minutes,
            ),
            context_data=EventContext(
                detection_time=now,
                system_wide_issue=True,
                requires_system_investigation=failure_rate > critical_percent,
            ),
        )
        await self.storage.save_event(event)
        return 1
