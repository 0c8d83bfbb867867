"""
Balance discrepancy detection.

Recomputes every card's expected balance from its completed transactions
(recharges credit, bar orders debit) and compares it with the stored
balance. Cards are processed in pages of ``batch_size`` so memory stays
bounded on large card tables.

Rules:
    - Mismatch (CRITICAL): |stored - expected| in cents is strictly above
      ``discrepancy_threshold_cents``.
    - Negative balance (HIGH): a stored balance below zero, regardless of
      any threshold.

Both rules are deduplicated per card for ``balance_dedup_minutes``.
"""

from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import structlog

from src.detection.base import Detector
from src.models.activity import CardBalance, TransactionRecord, TransactionStatus
from src.models.detection import BalanceDiscrepancyResult
from src.models.events import (
    BalanceDiscrepancyData,
    EventContext,
    EventSeverity,
    EventType,
    FinancialImpact,
    MonitoringEvent,
)

logger = structlog.get_logger(__name__)

ALGORITHM_BALANCE_MISMATCH = "balance_mismatch_detection"
ALGORITHM_NEGATIVE_BALANCE = "negative_balance_detection"

CENTS = Decimal("100")


def expected_balance(
    transactions: List[TransactionRecord],
) -> Tuple[Decimal, int, Optional[datetime]]:
    """
    Recompute a card balance from its transaction history.

    Args:
        transactions: All transactions of one card.

    Returns:
        Tuple of expected balance, transaction count and time of the latest
        transaction.
    """
    balance = Decimal("0")
    last: Optional[datetime] = None

    for tx in transactions:
        if last is None or tx.timestamp > last:
            last = tx.timestamp
        if tx.status != TransactionStatus.COMPLETED:
            continue
        if tx.transaction_type.is_credit:
            balance += tx.amount_involved
        else:
            balance -= tx.amount_involved

    return balance, len(transactions), last


class BalanceDiscrepancyDetector(Detector):
    """Detects cards whose stored balance disagrees with the ledger."""

    detection_type = "balance_discrepancies"
    result_class = BalanceDiscrepancyResult

    async def detect(self, now: datetime) -> BalanceDiscrepancyResult:
        batch_size = self.performance.batch_size
        dedup_since = now - timedelta(minutes=self.thresholds.balance_dedup_minutes)

        mismatches = 0
        negatives = 0
        cards_checked = 0
        offset = 0

        while True:
            cards = await self.datastore.fetch_cards(offset=offset, limit=batch_size)
            if not cards:
                break

            transactions = await self.datastore.fetch_transactions(
                since=None,
                card_ids=[card.card_id for card in cards],
            )
            by_card: Dict[str, List[TransactionRecord]] = defaultdict(list)
            for tx in transactions:
                by_card[tx.card_id].append(tx)

            for card in cards:
                if await self._check_mismatch(card, by_card[card.card_id], now, dedup_since):
                    mismatches += 1
                if await self._check_negative(card, now, dedup_since):
                    negatives += 1

            cards_checked += len(cards)
            if len(cards) < batch_size:
                break
            offset += batch_size

        logger.debug(
            "balance_check_completed",
            cards_checked=cards_checked,
            mismatches=mismatches,
            negative_balances=negatives,
        )

        return BalanceDiscrepancyResult(
            detection_type=self.detection_type,
            detection_timestamp=now,
            events_created=mismatches + negatives,
            balance_mismatches=mismatches,
            negative_balances=negatives,
            cards_checked=cards_checked,
        )

    async def _check_mismatch(
        self,
        card: CardBalance,
        transactions: List[TransactionRecord],
        now: datetime,
        dedup_since: datetime,
    ) -> bool:
        """Create a mismatch event for the card if needed."""
        t = self.thresholds
        expected, count, last = expected_balance(transactions)
        discrepancy = card.amount - expected

        if abs(discrepancy) * CENTS <= t.discrepancy_threshold_cents:
            return False
        if await self.storage.is_duplicate(
            ALGORITHM_BALANCE_MISMATCH,
            since=dedup_since,
            card_id=card.card_id,
        ):
            return False

        event = MonitoringEvent(
            event_type=EventType.BALANCE_DISCREPANCY,
            severity=EventSeverity.CRITICAL,
            card_id=card.card_id,
            affected_amount=abs(discrepancy),
            detection_timestamp=now,
            detection_algorithm=ALGORITHM_BALANCE_MISMATCH,
            confidence_score=Decimal("1.0"),
            event_data=BalanceDiscrepancyData(
                actual_balance=card.amount,
                expected_balance=expected,
                discrepancy=discrepancy,
                transaction_count=count,
                last_transaction=last,
            ),
            context_data=EventContext(
                detection_time=now,
                requires_immediate_investigation=(
                    abs(discrepancy) > t.immediate_investigation_amount
                ),
                financial_impact=FinancialImpact.HIGH,
            ),
        )
        await self.storage.save_event(event)
        return True

    async def _check_negative(
        self,
        card: CardBalance,
        now: datetime,
        dedup_since: datetime,
    ) -> bool:
        """Create a negative balance event for the card if needed."""
        if card.amount >= 0:
            return False
        if await self.storage.is_duplicate(
            ALGORITHM_NEGATIVE_BALANCE,
            since=dedup_since,
            card_id=card.card_id,
        ):
            return False

        event = MonitoringEvent(
            event_type=EventType.BALANCE_DISCREPANCY,
            severity=EventSeverity.HIGH,
            card_id=card.card_id,
            affected_amount=abs(card.amount),
            detection_timestamp=now,
            detection_algorithm=ALGORITHM_NEGATIVE_BALANCE,
            confidence_score=Decimal("1.0"),
            event_data=BalanceDiscrepancyData(
                actual_balance=card.amount,
                negative_balance=True,
                impossible_scenario=True,
            ),
            context_data=EventContext(
                detection_time=now,
                requires_immediate_investigation=True,
                system_integrity_issue=True,
            ),
        )
        await self.storage.save_event(event)
        return True
