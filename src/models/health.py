"""
Health and status models for the monitoring system.

This module defines the per-cycle system health snapshot, component health
entries reported by health checks, and circuit breaker state.

Models:
    SystemHealthStatus: Overall system health enumeration
    ComponentStatus: Per-component status enumeration
    CircuitBreakerState: Breaker state enumeration
    SystemHealthSnapshot: Point-in-time rollup written once per cycle
    ComponentHealth: Health of one component at check time
    CircuitBreakerInfo: Breaker state and configuration
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from src.config.models import CircuitBreakerConfig


class SystemHealthStatus(str, Enum):
    """
    Overall system health.

    Attributes:
        HEALTHY: Success rates at or above 99 percent, no critical events.
        WARNING: Degraded success rates.
        CRITICAL: Critical events in the last hour or datastore unreachable.
        UNKNOWN: No data to judge from.
    """

    HEALTHY = "HEALTHY"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    UNKNOWN = "UNKNOWN"

    @property
    def is_healthy(self) -> bool:
        """Check if the system is fully healthy."""
        return self == SystemHealthStatus.HEALTHY


class ComponentStatus(str, Enum):
    """Status of a single monitored component."""

    UP = "UP"
    DOWN = "DOWN"
    DEGRADED = "DEGRADED"
    UNKNOWN = "UNKNOWN"


class CircuitBreakerState(str, Enum):
    """
    Circuit breaker state.

    Attributes:
        CLOSED: Calls pass through.
        OPEN: Calls are rejected until the recovery timeout elapses.
        HALF_OPEN: A limited number of trial calls are allowed.
    """

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"

    @property
    def component_status(self) -> ComponentStatus:
        """Map breaker state onto a component status."""
        if self == CircuitBreakerState.CLOSED:
            return ComponentStatus.UP
        if self == CircuitBreakerState.HALF_OPEN:
            return ComponentStatus.DEGRADED
        return ComponentStatus.DOWN


class SystemHealthSnapshot(BaseModel):
    """
    Point-in-time rollup of transactional and detection metrics.

    One snapshot is written per detection cycle. Snapshots are immutable:
    the next cycle writes a new one instead of updating the last.

    Attributes:
        snapshot_id: Datastore id, None until persisted.
        snapshot_timestamp: When the snapshot was computed (UTC).
        total_transactions_last_hour: Transactions logged in the last hour.
        successful_transactions_last_hour: Completed transactions.
        failed_transactions_last_hour: Failed transactions.
        success_rate_percent: Completed over total, 0 with no transactions.
        avg_processing_time_ms: Mean NFC processing time.
        p95_processing_time_ms: 95th percentile NFC processing time.
        max_processing_time_ms: Slowest NFC processing time.
        total_nfc_scans_last_hour: NFC scans in the last hour.
        duplicate_nfc_scans_last_hour: Repeat scans of a card within a minute.
        nfc_success_rate_percent: Non-duplicate share of scans, 100 with no scans.
        active_cards_count: Cards holding a positive balance.
        total_system_balance: Sum of positive card balances.
        monitoring_events_last_hour: Events detected in the last hour.
        critical_events_last_hour: CRITICAL events detected in the last hour.
        overall_health_status: Derived overall status.
        metrics_data: Additional metrics.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    snapshot_id: Optional[int] = Field(default=None, ge=1)
    snapshot_timestamp: datetime
    total_transactions_last_hour: int = Field(default=0, ge=0)
    successful_transactions_last_hour: int = Field(default=0, ge=0)
    failed_transactions_last_hour: int = Field(default=0, ge=0)
    success_rate_percent: Decimal = Field(
        default=Decimal("0"),
        ge=Decimal("0"),
        le=Decimal("100"),
    )
    avg_processing_time_ms: Optional[int] = Field(default=None, ge=0)
    p95_processing_time_ms: Optional[int] = Field(default=None, ge=0)
    max_processing_time_ms: Optional[int] = Field(default=None, ge=0)
    total_nfc_scans_last_hour: int = Field(default=0, ge=0)
    duplicate_nfc_scans_last_hour: int = Field(default=0, ge=0)
    nfc_success_rate_percent: Decimal = Field(
        default=Decimal("100"),
        ge=Decimal("0"),
        le=Decimal("100"),
    )
    active_cards_count: int = Field(default=0, ge=0)
    total_system_balance: Decimal = Field(default=Decimal("0"))
    monitoring_events_last_hour: int = Field(default=0, ge=0)
    critical_events_last_hour: int = Field(default=0, ge=0)
    overall_health_status: SystemHealthStatus = SystemHealthStatus.UNKNOWN
    metrics_data: Dict[str, Any] = Field(default_factory=dict)


class ComponentHealth(BaseModel):
    """Health of one component, timestamped at check time."""

    model_config = {"frozen": True, "extra": "forbid"}

    status: ComponentStatus
    last_check: datetime
    response_time_ms: Optional[int] = Field(default=None, ge=0)
    error_message: Optional[str] = None
    circuit_breaker_state: Optional[CircuitBreakerState] = None


class CircuitBreakerInfo(BaseModel):
    """
    Snapshot of circuit breaker state.

    Attributes:
        name: Breaker name.
        state: Current state.
        failure_count: Consecutive failures recorded.
        last_failure_time: Wall-clock time of the last failure.
        half_open_calls: Trial calls made in the current HALF_OPEN period.
        config: Breaker configuration.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    name: str
    state: CircuitBreakerState
    failure_count: int = Field(default=0, ge=0)
    last_failure_time: Optional[datetime] = None
    half_open_calls: int = Field(default=0, ge=0)
    config: CircuitBreakerConfig
