"""
Payment activity rows read from the datastore.

These are the inputs of the detectors: the transaction log, the NFC scan
log and the per-card stored balances. The monitoring layer never writes
them.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class TransactionType(str, Enum):
    """
    Kind of card transaction.

    Attributes:
        STRIPE_RECHARGE: Online top-up, credits the card.
        CHECKPOINT_RECHARGE: Cash top-up at a checkpoint, credits the card.
        BAR_ORDER: Point-of-sale purchase, debits the card.
    """

    STRIPE_RECHARGE = "stripe_recharge"
    CHECKPOINT_RECHARGE = "checkpoint_recharge"
    BAR_ORDER = "bar_order"

    @property
    def is_credit(self) -> bool:
        """Check if the transaction adds money to the card."""
        return self in (TransactionType.STRIPE_RECHARGE, TransactionType.CHECKPOINT_RECHARGE)


class TransactionStatus(str, Enum):
    """Settlement status of a transaction."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TransactionRecord(BaseModel):
    """
    One row of the transaction log.

    Attributes:
        transaction_id: Unique transaction identifier.
        card_id: Card the transaction applies to.
        transaction_type: Credit or debit kind.
        status: Settlement status.
        amount_involved: Transaction amount.
        previous_balance: Card balance before the transaction.
        new_balance: Card balance after the transaction.
        timestamp: When the transaction was logged (UTC).
        details: Free-form details recorded by the payment flow.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    transaction_id: str = Field(..., min_length=1)
    card_id: str = Field(..., min_length=1)
    transaction_type: TransactionType
    status: TransactionStatus
    amount_involved: Decimal = Field(default=Decimal("0"))
    previous_balance: Optional[Decimal] = None
    new_balance: Optional[Decimal] = None
    timestamp: datetime
    details: Dict[str, Any] = Field(default_factory=dict)

    @property
    def balance_changed(self) -> bool:
        """Check if the logged balance moved."""
        if self.previous_balance is None or self.new_balance is None:
            return False
        return self.previous_balance != self.new_balance


class NFCScanRecord(BaseModel):
    """One row of the NFC scan log."""

    model_config = {"frozen": True, "extra": "forbid"}

    scan_log_id: int = Field(..., ge=0)
    card_id_scanned: Optional[str] = None
    scan_timestamp: datetime
    scan_result: Optional[str] = None
    processing_time_ms: Optional[int] = Field(default=None, ge=0)


class CardBalance(BaseModel):
    """Stored balance of one card."""

    model_config = {"frozen": True, "extra": "forbid"}

    card_id: str = Field(..., min_length=1)
    amount: Decimal


class HourlyTransactionStats(BaseModel):
    """Transaction totals for one hour bucket."""

    model_config = {"frozen": True, "extra": "forbid"}

    bucket: datetime
    total: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    volume: Decimal = Field(default=Decimal("0"))

    @property
    def failure_rate_percent(self) -> Decimal:
        """Failure rate of the bucket, 0 when empty."""
        if self.total == 0:
            return Decimal("0")
        return (Decimal(self.failed) / Decimal(self.total) * 100).quantize(Decimal("0.01"))
