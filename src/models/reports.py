"""
Read-side response models.

These are the payloads returned by the monitoring client and served by the
dashboard API: paginated events, health checks, metrics with trend series,
the dashboard composition and scheduler status.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from src.models.alerts import AlertSummary
from src.models.detection import DetectionCycleResult
from src.models.events import MonitoringEvent
from src.models.health import (
    CircuitBreakerInfo,
    CircuitBreakerState,
    ComponentHealth,
    ComponentStatus,
    SystemHealthStatus,
)
from src.models.queries import EventFilters, PaginationMeta, TimeRange


# =============================================================================
# EVENTS
# =============================================================================


class MonitoringEventsResponse(BaseModel):
    """One page of monitoring events with summary counts."""

    model_config = {"frozen": True, "extra": "forbid"}

    events: List[MonitoringEvent]
    pagination: PaginationMeta
    filters_applied: EventFilters
    total_critical: int = Field(..., ge=0)
    total_open: int = Field(..., ge=0)


# =============================================================================
# HEALTH CHECK
# =============================================================================


class HealthSystemMetrics(BaseModel):
    """Headline numbers reported by the health check."""

    model_config = {"frozen": True, "extra": "forbid"}

    transactions_last_hour: int = Field(default=0, ge=0)
    success_rate_percent: Optional[Decimal] = None
    avg_processing_time_ms: Optional[int] = None
    active_monitoring_events: int = Field(default=0, ge=0)
    critical_events_count: int = Field(default=0, ge=0)


class HealthComponents(BaseModel):
    """Health of each monitored component."""

    model_config = {"frozen": True, "extra": "forbid"}

    transaction_detector: ComponentHealth
    balance_detector: ComponentHealth
    nfc_detector: ComponentHealth
    race_detector: ComponentHealth
    database: ComponentHealth
    circuit_breaker: ComponentHealth


class HealthCheckResponse(BaseModel):
    """Operator-facing health check."""

    model_config = {"frozen": True, "extra": "forbid"}

    status: SystemHealthStatus
    timestamp: datetime
    uptime_seconds: int = Field(..., ge=0)
    system_metrics: HealthSystemMetrics
    components: HealthComponents
    recent_alerts: List[AlertSummary] = Field(default_factory=list)


# =============================================================================
# METRICS
# =============================================================================


class TimeSeriesDataPoint(BaseModel):
    """One point of a trend series."""

    model_config = {"frozen": True, "extra": "forbid"}

    timestamp: datetime
    value: Decimal
    label: Optional[str] = None


class FinancialMetrics(BaseModel):
    """Money-related metrics over a time range."""

    model_config = {"frozen": True, "extra": "forbid"}

    total_transaction_volume: Decimal
    failed_transaction_count: int = Field(..., ge=0)
    balance_discrepancies_detected: int = Field(..., ge=0)
    total_discrepancy_amount: Decimal
    financial_integrity_score: Decimal


class PerformanceMetrics(BaseModel):
    """Monitoring performance metrics."""

    model_config = {"frozen": True, "extra": "forbid"}

    avg_detection_time_ms: Optional[float] = None
    monitoring_cycles_completed: int = Field(default=0, ge=0)
    monitoring_errors: int = Field(default=0, ge=0)
    system_uptime_percent: Optional[Decimal] = None


class MetricsTrends(BaseModel):
    """Hourly trend series."""

    model_config = {"frozen": True, "extra": "forbid"}

    hourly_transaction_counts: List[TimeSeriesDataPoint]
    failure_rates: List[TimeSeriesDataPoint]
    processing_times: List[TimeSeriesDataPoint]
    balance_discrepancies: List[TimeSeriesDataPoint]


class MetricsResponse(BaseModel):
    """Metrics and trends over a time range."""

    model_config = {"frozen": True, "extra": "forbid"}

    time_range: TimeRange
    financial_metrics: FinancialMetrics
    performance_metrics: PerformanceMetrics
    trends: MetricsTrends


# =============================================================================
# DASHBOARD
# =============================================================================


class ChartDataset(BaseModel):
    """One dataset of a chart."""

    model_config = {"frozen": True, "extra": "forbid"}

    label: str
    data: List[Decimal]


class ChartData(BaseModel):
    """Chart labels and datasets."""

    model_config = {"frozen": True, "extra": "forbid"}

    labels: List[str]
    datasets: List[ChartDataset]


class DashboardKPIs(BaseModel):
    """Key performance indicators."""

    model_config = {"frozen": True, "extra": "forbid"}

    system_health: SystemHealthStatus
    transaction_success_rate: Optional[Decimal] = None
    balance_integrity_score: Decimal
    monitoring_system_uptime: Optional[Decimal] = None


class RealTimeCounters(BaseModel):
    """Live counters."""

    model_config = {"frozen": True, "extra": "forbid"}

    active_transactions: int = Field(default=0, ge=0)
    recent_failures: int = Field(default=0, ge=0)
    open_monitoring_events: int = Field(default=0, ge=0)
    system_load_percent: Optional[Decimal] = None


class DashboardCharts(BaseModel):
    """Dashboard charts over the last 24 hours."""

    model_config = {"frozen": True, "extra": "forbid"}

    transaction_volume_24h: ChartData
    failure_rate_trend: ChartData
    balance_discrepancy_trend: ChartData
    nfc_duplicate_rate: ChartData


class ProcessStatus(BaseModel):
    """Status of a monitoring process."""

    model_config = {"frozen": True, "extra": "forbid"}

    name: str
    status: ComponentStatus
    uptime_seconds: int = Field(default=0, ge=0)
    last_activity: Optional[datetime] = None


class DashboardSystemStatus(BaseModel):
    """Infrastructure status shown on the dashboard."""

    model_config = {"frozen": True, "extra": "forbid"}

    database_connection: bool
    monitoring_processes: List[ProcessStatus]
    last_successful_check: Optional[datetime] = None
    circuit_breakers: Dict[str, CircuitBreakerState] = Field(default_factory=dict)


class DashboardResponse(BaseModel):
    """Full dashboard composition."""

    model_config = {"frozen": True, "extra": "forbid"}

    kpis: DashboardKPIs
    real_time: RealTimeCounters
    charts: DashboardCharts
    recent_events: List[MonitoringEvent]
    system_status: DashboardSystemStatus


# =============================================================================
# SCHEDULER
# =============================================================================


class SchedulerStatus(BaseModel):
    """
    Synchronous snapshot of the background scheduler.

    Attributes:
        is_running: Whether scheduled jobs are active.
        uptime_seconds: Seconds since start, 0 when stopped.
        active_jobs: Names of the scheduled jobs.
        circuit_breaker: Breaker state.
        cycle_in_progress: Whether a cycle is executing now.
        cycles_completed: Cycles that completed.
        cycles_failed: Cycles that raised or timed out.
        cycles_rejected: Cycles refused by the open breaker.
        last_cycle: Result of the last completed cycle.
        last_successful_cycle_at: Start time of the last completed cycle.
        avg_cycle_duration_ms: Mean duration of completed cycles.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    is_running: bool
    uptime_seconds: float = Field(default=0.0, ge=0)
    active_jobs: List[str] = Field(default_factory=list)
    circuit_breaker: CircuitBreakerInfo
    cycle_in_progress: bool = False
    cycles_completed: int = Field(default=0, ge=0)
    cycles_failed: int = Field(default=0, ge=0)
    cycles_rejected: int = Field(default=0, ge=0)
    last_cycle: Optional[DetectionCycleResult] = None
    last_successful_cycle_at: Optional[datetime] = None
    avg_cycle_duration_ms: Optional[float] = None

    @property
    def cycle_success_rate_percent(self) -> Optional[Decimal]:
        """Share of attempted cycles that completed, None before the first."""
        attempted = self.cycles_completed + self.cycles_failed
        if attempted == 0:
            return None
        return (Decimal(self.cycles_completed) / Decimal(attempted) * 100).quantize(
            Decimal("0.01")
        )
