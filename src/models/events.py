"""
Monitoring event models.

A monitoring event is the durable record of one detected anomaly. The
anomaly-specific payload is a closed set of tagged variants, one per event
type, discriminated on the ``kind`` field so that every consumer knows the
exact shape of the data it receives.

Models:
    EventType: Anomaly class enumeration
    EventSeverity: Severity levels with ordering weights
    EventStatus: Lifecycle status of an event
    EventContext: Investigation flags attached to an event
    TransactionFailureData / BalanceDiscrepancyData / DuplicateNFCData /
    RaceConditionData / SystemHealthData: Event payload variants
    MonitoringEvent: One detected anomaly
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


class EventType(str, Enum):
    """
    Classes of anomaly produced by the detectors.

    Attributes:
        TRANSACTION_FAILURE: Failed transactions or failure-rate spikes.
        BALANCE_DISCREPANCY: Stored balance disagrees with the ledger.
        DUPLICATE_NFC: Same card scanned several times in a short window.
        RACE_CONDITION: Concurrent transactions against one card.
        SYSTEM_HEALTH: System-wide health notices.
    """

    TRANSACTION_FAILURE = "transaction_failure"
    BALANCE_DISCREPANCY = "balance_discrepancy"
    DUPLICATE_NFC = "duplicate_nfc"
    RACE_CONDITION = "race_condition"
    SYSTEM_HEALTH = "system_health"


class EventSeverity(str, Enum):
    """
    Event severity levels.

    Attributes:
        CRITICAL: Money is at risk, immediate action.
        HIGH: Likely integrity problem, investigate soon.
        MEDIUM: Suspicious pattern.
        LOW: Minor irregularity.
        INFO: Informational only.
    """

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"

    @property
    def weight(self) -> int:
        """Ordering weight, 5 for CRITICAL down to 1 for INFO."""
        return _SEVERITY_WEIGHTS[self]

    @property
    def is_critical(self) -> bool:
        """Check if this is the CRITICAL level."""
        return self == EventSeverity.CRITICAL


_SEVERITY_WEIGHTS = {
    EventSeverity.CRITICAL: 5,
    EventSeverity.HIGH: 4,
    EventSeverity.MEDIUM: 3,
    EventSeverity.LOW: 2,
    EventSeverity.INFO: 1,
}


class EventStatus(str, Enum):
    """
    Lifecycle status of a monitoring event.

    Attributes:
        OPEN: Newly detected, not yet looked at.
        INVESTIGATING: An operator is working on it.
        RESOLVED: Root cause handled.
        FALSE_POSITIVE: Not a real anomaly.
    """

    OPEN = "OPEN"
    INVESTIGATING = "INVESTIGATING"
    RESOLVED = "RESOLVED"
    FALSE_POSITIVE = "FALSE_POSITIVE"

    @property
    def is_closed(self) -> bool:
        """Check if the status ends the event lifecycle."""
        return self in (EventStatus.RESOLVED, EventStatus.FALSE_POSITIVE)


class FinancialImpact(str, Enum):
    """Financial impact level recorded in event context."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# =============================================================================
# EVENT CONTEXT
# =============================================================================


class EventContext(BaseModel):
    """
    Investigation flags attached to an event.

    All flags are optional; detectors only set the ones that apply to the
    pattern they found.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    detection_time: Optional[datetime] = Field(
        default=None,
        description="When the detector produced the event (UTC)",
    )
    requires_immediate_investigation: Optional[bool] = None
    requires_investigation: Optional[bool] = None
    requires_system_investigation: Optional[bool] = None
    financial_impact: Optional[FinancialImpact] = None
    system_wide_issue: Optional[bool] = None
    system_integrity_issue: Optional[bool] = None
    pattern_type: Optional[str] = None
    potential_user_error: Optional[bool] = None
    potential_race_condition: Optional[bool] = None


# =============================================================================
# EVENT DATA VARIANTS
# =============================================================================


class TransactionFailureData(BaseModel):
    """
    Payload for transaction failure events.

    Covers three patterns: a failed transaction that still moved the
    balance, consecutive failures on one card, and a system-wide failure
    spike. Fields that do not apply to a pattern stay None.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    kind: Literal["transaction_failure"] = "transaction_failure"

    # Balance deduction on failure
    previous_balance: Optional[Decimal] = None
    new_balance: Optional[Decimal] = None
    discrepancy: Optional[Decimal] = None
    transaction_type: Optional[str] = None

    # Consecutive failures
    failure_count: Optional[int] = Field(default=None, ge=0)
    failed_transactions: List[str] = Field(default_factory=list)
    time_span_minutes: Optional[Decimal] = None
    first_failure: Optional[datetime] = None
    last_failure: Optional[datetime] = None

    # System failure spike
    total_transactions: Optional[int] = Field(default=None, ge=0)
    failed_transactions_count: Optional[int] = Field(default=None, ge=0)
    failure_rate_percent: Optional[Decimal] = None
    threshold_percent: Optional[Decimal] = None
    time_window_minutes: Optional[int] = None


class BalanceDiscrepancyData(BaseModel):
    """Payload for balance mismatch and negative balance events."""

    model_config = {"frozen": True, "extra": "forbid"}

    kind: Literal["balance_discrepancy"] = "balance_discrepancy"

    actual_balance: Decimal = Field(..., description="Balance stored on the card")
    expected_balance: Optional[Decimal] = Field(
        default=None,
        description="Balance recomputed from completed transactions",
    )
    discrepancy: Optional[Decimal] = Field(
        default=None,
        description="actual_balance - expected_balance",
    )
    transaction_count: Optional[int] = Field(default=None, ge=0)
    last_transaction: Optional[datetime] = None
    negative_balance: bool = False
    impossible_scenario: bool = False


class DuplicateNFCData(BaseModel):
    """Payload for duplicate NFC scan events."""

    model_config = {"frozen": True, "extra": "forbid"}

    kind: Literal["duplicate_nfc"] = "duplicate_nfc"

    scan_count: int = Field(..., ge=2)
    scan_ids: List[int] = Field(default_factory=list)
    scan_timestamps: List[datetime] = Field(default_factory=list)
    time_span_seconds: Decimal = Field(..., ge=Decimal("0"))
    threshold_seconds: Decimal = Field(..., gt=Decimal("0"))


class RaceConditionData(BaseModel):
    """Payload for concurrent transaction events."""

    model_config = {"frozen": True, "extra": "forbid"}

    kind: Literal["race_condition"] = "race_condition"

    concurrent_count: int = Field(..., ge=2)
    transaction_ids: List[str] = Field(default_factory=list)
    timestamps: List[datetime] = Field(default_factory=list)
    transaction_types: List[str] = Field(default_factory=list)
    time_span_seconds: Decimal = Field(..., ge=Decimal("0"))
    threshold_seconds: Decimal = Field(..., gt=Decimal("0"))


class SystemHealthData(BaseModel):
    """Payload for system health notices."""

    model_config = {"frozen": True, "extra": "forbid"}

    kind: Literal["system_health"] = "system_health"

    system_metrics: Dict[str, Any] = Field(default_factory=dict)


EventData = Annotated[
    Union[
        TransactionFailureData,
        BalanceDiscrepancyData,
        DuplicateNFCData,
        RaceConditionData,
        SystemHealthData,
    ],
    Field(discriminator="kind"),
]


# =============================================================================
# MONITORING EVENT
# =============================================================================


class MonitoringEvent(BaseModel):
    """
    One detected anomaly.

    Created by a detector (or the aggregator for system health notices),
    mutated only through an explicit resolution, and removed only by
    retention cleanup. Severity never changes after creation.

    Attributes:
        event_id: Datastore id, None until persisted.
        event_type: Anomaly class.
        severity: Severity at detection time.
        card_id: Card involved, if any.
        transaction_id: Transaction involved, if any.
        affected_amount: Amount of money involved, if known.
        detection_timestamp: When the anomaly was detected.
        detection_algorithm: Name of the algorithm that found it.
        confidence_score: Detector confidence between 0 and 1.
        event_data: Typed anomaly payload matching event_type.
        context_data: Investigation flags.
        status: Lifecycle status.
        resolved_at: When the event was closed.
        resolution_notes: Operator notes on resolution.

    Example:
        >>> event = MonitoringEvent(
        ...     event_type=EventType.DUPLICATE_NFC,
        ...     severity=EventSeverity.MEDIUM,
        ...     card_id="A1B2C3D4",
        ...     detection_timestamp=datetime.now(timezone.utc),
        ...     detection_algorithm="temporal_duplicate_detection",
        ...     confidence_score=Decimal("0.8"),
        ...     event_data=DuplicateNFCData(
        ...         scan_count=2,
        ...         time_span_seconds=Decimal("3"),
        ...         threshold_seconds=Decimal("5"),
        ...     ),
        ... )
    """

    model_config = {"frozen": True, "extra": "forbid"}

    event_id: Optional[int] = Field(
        default=None,
        description="Datastore identifier",
        ge=1,
    )
    event_type: EventType = Field(..., description="Anomaly class")
    severity: EventSeverity = Field(..., description="Severity at detection")
    card_id: Optional[str] = Field(
        default=None,
        description="Card identifier",
        max_length=64,
    )
    transaction_id: Optional[str] = Field(
        default=None,
        description="Transaction identifier",
    )
    affected_amount: Optional[Decimal] = Field(
        default=None,
        description="Monetary amount involved",
    )
    detection_timestamp: datetime = Field(
        ...,
        description="When the anomaly was detected (UTC)",
    )
    detection_algorithm: str = Field(
        ...,
        description="Algorithm that produced the event",
        min_length=1,
    )
    confidence_score: Decimal = Field(
        default=Decimal("1.0"),
        description="Detector confidence",
        ge=Decimal("0"),
        le=Decimal("1"),
    )
    event_data: EventData = Field(..., description="Anomaly payload")
    context_data: EventContext = Field(
        default_factory=EventContext,
        description="Investigation flags",
    )
    status: EventStatus = Field(
        default=EventStatus.OPEN,
        description="Lifecycle status",
    )
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_payload_kind(self) -> "MonitoringEvent":
        """Ensure the payload variant matches the event type."""
        if self.event_data.kind != self.event_type.value:
            raise ValueError(
                f"event_data kind '{self.event_data.kind}' does not match "
                f"event_type '{self.event_type.value}'"
            )
        return self

    @property
    def requires_immediate_attention(self) -> bool:
        """CRITICAL events and events flagged for immediate investigation."""
        return bool(
            self.severity.is_critical
            or self.context_data.requires_immediate_investigation
        )

    @property
    def is_open(self) -> bool:
        """Check if the event is still open."""
        return self.status == EventStatus.OPEN

    def resolve(
        self,
        status: EventStatus = EventStatus.RESOLVED,
        notes: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> "MonitoringEvent":
        """
        Move the event to a new lifecycle status.

        Severity is left untouched. ``resolved_at`` is only set for
        statuses that close the event.

        Args:
            status: New status.
            notes: Resolution notes.
            timestamp: Resolution time, defaults to now.

        Returns:
            MonitoringEvent: Updated copy of the event.
        """
        now = timestamp or datetime.now(timezone.utc)
        return self.model_copy(
            update={
                "status": status,
                "resolution_notes": notes if notes is not None else self.resolution_notes,
                "resolved_at": now if status.is_closed else None,
                "updated_at": now,
            }
        )
