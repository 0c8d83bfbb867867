"""
Shared Pydantic data models for the monitoring system.

This module exports all data models used throughout the system.
All monetary values use Decimal for precision.

Modules:
    events: Monitoring events and their typed payloads
    activity: Transaction log, NFC scan log and card balance rows
    health: Health snapshots, component health and breaker state
    alerts: Alert history
    detection: Detector and cycle results
    queries: Event filters, pagination and time ranges
    reports: Health check, metrics, dashboard and scheduler responses

Example:
    >>> from src.models import MonitoringEvent, EventSeverity, EventType
    >>> from src.models import DetectionCycleResult, SystemHealthSnapshot
"""

# Event models
from src.models.events import (
    BalanceDiscrepancyData,
    DuplicateNFCData,
    EventContext,
    EventData,
    EventSeverity,
    EventStatus,
    EventType,
    FinancialImpact,
    MonitoringEvent,
    RaceConditionData,
    SystemHealthData,
    TransactionFailureData,
)

# Activity models
from src.models.activity import (
    CardBalance,
    HourlyTransactionStats,
    NFCScanRecord,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
)

# Health models
from src.models.health import (
    CircuitBreakerInfo,
    CircuitBreakerState,
    ComponentHealth,
    ComponentStatus,
    SystemHealthSnapshot,
    SystemHealthStatus,
)

# Alert models
from src.models.alerts import (
    AlertHistory,
    AlertLevel,
    AlertSummary,
)

# Detection models
from src.models.detection import (
    BalanceDiscrepancyResult,
    DetectionCycleResult,
    DetectionResult,
    DetectionResults,
    DuplicateNFCResult,
    RaceConditionResult,
    TransactionFailureResult,
)

# Query models
from src.models.queries import (
    EventFilters,
    Pagination,
    PaginationMeta,
    SortOrder,
    TimeRange,
)

# Response models
from src.models.reports import (
    DashboardResponse,
    HealthCheckResponse,
    MetricsResponse,
    MonitoringEventsResponse,
    SchedulerStatus,
)

__all__ = [
    # Events
    "EventType",
    "EventSeverity",
    "EventStatus",
    "FinancialImpact",
    "EventContext",
    "EventData",
    "TransactionFailureData",
    "BalanceDiscrepancyData",
    "DuplicateNFCData",
    "RaceConditionData",
    "SystemHealthData",
    "MonitoringEvent",
    # Activity
    "TransactionType",
    "TransactionStatus",
    "TransactionRecord",
    "NFCScanRecord",
    "CardBalance",
    "HourlyTransactionStats",
    # Health
    "SystemHealthStatus",
    "ComponentStatus",
    "CircuitBreakerState",
    "SystemHealthSnapshot",
    "ComponentHealth",
    "CircuitBreakerInfo",
    # Alerts
    "AlertLevel",
    "AlertHistory",
    "AlertSummary",
    # Detection
    "DetectionResult",
    "TransactionFailureResult",
    "BalanceDiscrepancyResult",
    "DuplicateNFCResult",
    "RaceConditionResult",
    "DetectionResults",
    "DetectionCycleResult",
    # Queries
    "EventFilters",
    "Pagination",
    "PaginationMeta",
    "SortOrder",
    "TimeRange",
    # Responses
    "MonitoringEventsResponse",
    "HealthCheckResponse",
    "MetricsResponse",
    "DashboardResponse",
    "SchedulerStatus",
]
