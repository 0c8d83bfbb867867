"""
Detection result models.

Each detector returns a typed result record carrying its own success flag,
the number of events it created and algorithm-specific counters. The
aggregator combines the four into one DetectionCycleResult per cycle.

Models:
    DetectionResult: Fields shared by all detector results
    TransactionFailureResult / BalanceDiscrepancyResult /
    DuplicateNFCResult / RaceConditionResult: Per-algorithm results
    DetectionResults: The four results of one cycle
    DetectionCycleResult: Combined output of one cycle
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class DetectionResult(BaseModel):
    """
    Result of one detector run.

    Attributes:
        detection_type: Detector name.
        events_created: Events persisted by this run.
        detection_timestamp: Reference time of the run (UTC).
        success: False when the run raised.
        error: Error message of a failed run.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    detection_type: str = Field(..., min_length=1)
    events_created: int = Field(default=0, ge=0)
    detection_timestamp: datetime
    success: bool = True
    error: Optional[str] = None

    @model_validator(mode="after")
    def validate_failure(self) -> "DetectionResult":
        """A failed run reports an error and no events."""
        if not self.success and self.events_created != 0:
            raise ValueError("failed detection runs cannot report created events")
        return self


class TransactionFailureResult(DetectionResult):
    """Counters of the transaction failure detector."""

    balance_deduction_failures: int = Field(default=0, ge=0)
    consecutive_failures: int = Field(default=0, ge=0)
    system_failure_spikes: int = Field(default=0, ge=0)


class BalanceDiscrepancyResult(DetectionResult):
    """Counters of the balance discrepancy detector."""

    balance_mismatches: int = Field(default=0, ge=0)
    negative_balances: int = Field(default=0, ge=0)
    cards_checked: int = Field(default=0, ge=0)


class DuplicateNFCResult(DetectionResult):
    """Counters of the duplicate NFC detector."""

    temporal_duplicates: int = Field(default=0, ge=0)
    scans_checked: int = Field(default=0, ge=0)


class RaceConditionResult(DetectionResult):
    """Counters of the race condition detector."""

    concurrent_transactions: int = Field(default=0, ge=0)
    transactions_checked: int = Field(default=0, ge=0)


class DetectionResults(BaseModel):
    """The four detector results of one cycle."""

    model_config = {"frozen": True, "extra": "forbid"}

    transaction_failures: TransactionFailureResult
    balance_discrepancies: BalanceDiscrepancyResult
    duplicate_nfc_scans: DuplicateNFCResult
    race_conditions: RaceConditionResult

    def all(self) -> List[DetectionResult]:
        """Return the results in a fixed order."""
        return [
            self.transaction_failures,
            self.balance_discrepancies,
            self.duplicate_nfc_scans,
            self.race_conditions,
        ]

    @property
    def failed(self) -> List[DetectionResult]:
        """Results of detectors that raised."""
        return [result for result in self.all() if not result.success]


class DetectionCycleResult(BaseModel):
    """
    Combined output of one detection cycle.

    ``success`` only reflects whether the cycle itself completed; detector
    failures are reported on the individual results.

    Attributes:
        cycle_timestamp: When the cycle started (UTC).
        cycle_duration_seconds: Wall time of the cycle.
        total_events_created: Sum of events created by the four detectors.
        health_snapshot_id: Id of the persisted snapshot, None if that failed.
        detection_results: Per-detector results.
        success: Whether the cycle completed.
        errors: Errors collected during the cycle.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    cycle_timestamp: datetime
    cycle_duration_seconds: float = Field(..., ge=0)
    total_events_created: int = Field(default=0, ge=0)
    health_snapshot_id: Optional[int] = None
    detection_results: DetectionResults
    success: bool = True
    errors: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_event_total(self) -> "DetectionCycleResult":
        """Ensure the total matches the per-detector counts."""
        expected = sum(r.events_created for r in self.detection_results.all())
        if self.total_events_created != expected:
            raise ValueError(
                f"total_events_created ({self.total_events_created}) must equal "
                f"the sum of detector results ({expected})"
            )
        return self

    @property
    def partial_failure(self) -> bool:
        """Check if any detector failed in an otherwise completed cycle."""
        return bool(self.detection_results.failed)
