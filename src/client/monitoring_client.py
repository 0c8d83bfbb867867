"""
Read-side monitoring client.

This module provides the MonitoringClient used by the dashboard API and
by operators to read monitoring data:

    - get_monitoring_events: filtered, paginated events with counts
    - get_health_check: system status, components and recent alerts
    - get_metrics: financial and performance metrics with hourly trends
    - get_dashboard: KPIs, live counters, charts and process status
    - subscribe_to_events: live events by push, falling back to polling
    - resolve_event: lifecycle updates on one event

Reads are cached in a TTL cache with LRU eviction. Datastore failures are
logged and surfaced as MonitoringClientError; nothing is retried here.

Example:
    >>> client = MonitoringClient(datastore, feed, config.features, scheduler.get_status)
    >>> health = await client.get_health_check()
    >>> page = await client.get_monitoring_events(EventFilters(severity="CRITICAL"))
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from src.client.cache import TTLCache
from src.client.subscriptions import EventCallback, Subscription
from src.config.models import FeaturesConfig
from src.interfaces.datastore import EventFeed, MonitoringDatastore
from src.models.activity import HourlyTransactionStats, TransactionStatus
from src.models.alerts import AlertLevel, AlertSummary
from src.models.detection import DetectionResult
from src.models.events import EventSeverity, EventStatus, EventType, MonitoringEvent
from src.models.health import (
    ComponentHealth,
    ComponentStatus,
    SystemHealthSnapshot,
    SystemHealthStatus,
)
from src.models.queries import EventFilters, Pagination, PaginationMeta, SortOrder, TimeRange
from src.models.reports import (
    ChartData,
    ChartDataset,
    DashboardCharts,
    DashboardKPIs,
    DashboardResponse,
    DashboardSystemStatus,
    FinancialMetrics,
    HealthCheckResponse,
    HealthComponents,
    HealthSystemMetrics,
    MetricsResponse,
    MetricsTrends,
    MonitoringEventsResponse,
    PerformanceMetrics,
    ProcessStatus,
    RealTimeCounters,
    SchedulerStatus,
    TimeSeriesDataPoint,
)

logger = structlog.get_logger(__name__)

RECENT_ALERTS_LIMIT = 5
RECENT_EVENTS_LIMIT = 10
DETECTION_PROCESS_NAME = "detection_service"


class MonitoringClientError(Exception):
    """Base exception for monitoring client errors."""

    pass


class MonitoringReadError(MonitoringClientError):
    """
    Raised when a monitoring read or update fails.

    Attributes:
        operation: Name of the failed operation.
        cause: Underlying exception, if any.
    """

    def __init__(self, operation: str, cause: Optional[BaseException] = None) -> None:
        self.operation = operation
        self.cause = cause
        message = f"Failed to retrieve {operation}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class EventNotFoundError(MonitoringClientError):
    """Raised when an event to update does not exist."""

    def __init__(self, event_id: int) -> None:
        self.event_id = event_id
        super().__init__(f"Monitoring event {event_id} not found")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _hour_floor(ts: datetime) -> datetime:
    return ts.replace(minute=0, second=0, microsecond=0)


def _hour_buckets(start: datetime, end: datetime) -> List[datetime]:
    """Hour bucket starts covering [start, end]."""
    buckets = []
    bucket = _hour_floor(start)
    while bucket <= end:
        buckets.append(bucket)
        bucket += timedelta(hours=1)
    return buckets


def _series(
    buckets: List[datetime],
    values: Dict[datetime, Decimal],
    label: Optional[str] = None,
) -> List[TimeSeriesDataPoint]:
    """Hourly series with zero for buckets without data."""
    return [
        TimeSeriesDataPoint(timestamp=b, value=values.get(b, Decimal("0")), label=label)
        for b in buckets
    ]


def _chart(label: str, points: List[TimeSeriesDataPoint]) -> ChartData:
    return ChartData(
        labels=[p.timestamp.strftime("%H:00") for p in points],
        datasets=[ChartDataset(label=label, data=[p.value for p in points])],
    )


def _alert_message(event: MonitoringEvent) -> str:
    return f"{event.event_type.value} detected for card {event.card_id or 'SYSTEM'}"


def financial_integrity_score(critical_events: int, total_events: int) -> Decimal:
    """
    Share of events that are not critical, as a percentage.

    Args:
        critical_events: CRITICAL events in the range.
        total_events: All events in the range.

    Returns:
        Decimal: Score in [0, 100], 100 when there are no events.
    """
    if total_events <= 0:
        return Decimal("100")
    score = Decimal(100) - Decimal(critical_events) / Decimal(total_events) * 100
    return max(Decimal("0"), score).quantize(Decimal("0.01"))


class MonitoringClient:
    """
    Cached read access to monitoring data.

    Attributes:
        datastore: Monitoring datastore.
        feed: Push feed for subscriptions, None to always poll.
        config: Cache and subscription settings.
    """

    def __init__(
        self,
        datastore: MonitoringDatastore,
        feed: Optional[EventFeed] = None,
        config: Optional[FeaturesConfig] = None,
        status_provider: Optional[Callable[[], SchedulerStatus]] = None,
        query_timeout_seconds: Optional[float] = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the client.

        Args:
            datastore: Monitoring datastore.
            feed: Push feed for subscriptions.
            config: Features configuration.
            status_provider: Returns the scheduler status, if one runs in-process.
            query_timeout_seconds: Bound on one read, None for no bound.
            clock: Monotonic clock in seconds.
        """
        self.datastore = datastore
        self.feed = feed
        self.config = config or FeaturesConfig()
        self.status_provider = status_provider
        self.query_timeout_seconds = query_timeout_seconds
        self._clock = clock
        self._started_at = clock()

        cache_config = self.config.cache
        self.cache = TTLCache(
            max_entries=cache_config.max_entries,
            default_ttl=cache_config.default_ttl_seconds,
            clock=clock,
        )
        self._subscriptions: Dict[str, Subscription] = {}

    @property
    def subscriptions(self) -> List[Subscription]:
        """Active subscriptions."""
        return list(self._subscriptions.values())

    async def _read(
        self,
        operation: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: float,
        *key_args: Any,
    ) -> Any:
        """Run a bounded read through the cache and wrap failures."""
        start_time = time.perf_counter()

        async def _bounded() -> Any:
            return await asyncio.wait_for(loader(), timeout=self.query_timeout_seconds)

        try:
            if not self.config.cache.enabled:
                result = await _bounded()
            else:
                key = TTLCache.make_key(operation, *key_args)
                result = await self.cache.get_or_load(key, _bounded, ttl)
        except asyncio.TimeoutError as e:
            logger.error(
                "monitoring_read_timed_out",
                operation=operation,
                timeout_seconds=self.query_timeout_seconds,
            )
            raise MonitoringReadError(
                operation,
                TimeoutError(f"timed out after {self.query_timeout_seconds}s"),
            ) from e
        except Exception as e:
            logger.error("monitoring_read_failed", operation=operation, error=str(e))
            raise MonitoringReadError(operation, e) from e

        logger.debug(
            "monitoring_read_completed",
            operation=operation,
            elapsed_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return result

    def _scheduler_status(self) -> Optional[SchedulerStatus]:
        if self.status_provider is None:
            return None
        return self.status_provider()

    # =========================================================================
    # EVENTS
    # =========================================================================

    async def get_monitoring_events(
        self,
        filters: Optional[EventFilters] = None,
        pagination: Optional[Pagination] = None,
    ) -> MonitoringEventsResponse:
        """
        Fetch one page of events with total, critical and open counts.

        Args:
            filters: Event filters, defaults to no filtering.
            pagination: Page request, defaults to the first page of 50.

        Returns:
            MonitoringEventsResponse: Events and summary counts.

        Raises:
            MonitoringClientError: If the datastore query fails.
        """
        filters = filters or EventFilters()
        pagination = pagination or Pagination()

        async def _load() -> MonitoringEventsResponse:
            events, total, total_critical, total_open = await asyncio.gather(
                self.datastore.query_events(
                    filters,
                    limit=pagination.per_page,
                    offset=pagination.offset,
                    sort_by=pagination.sort_by,
                    sort_order=pagination.sort_order,
                ),
                self.datastore.count_events(filters),
                self._count_narrowed(filters, severity=EventSeverity.CRITICAL),
                self._count_narrowed(filters, status=EventStatus.OPEN),
            )
            return MonitoringEventsResponse(
                events=events,
                pagination=PaginationMeta.build(total, pagination),
                filters_applied=filters,
                total_critical=total_critical,
                total_open=total_open,
            )

        return await self._read(
            "monitoring_events",
            _load,
            self.config.cache.default_ttl_seconds,
            filters,
            pagination,
        )

    async def _count_narrowed(
        self,
        filters: EventFilters,
        severity: Optional[EventSeverity] = None,
        status: Optional[EventStatus] = None,
    ) -> int:
        """Count events matching the filters and one extra severity or status."""
        update: Dict[str, Any] = {}
        if severity is not None:
            if filters.severity and severity not in filters.severity:
                return 0
            update["severity"] = [severity]
        if status is not None:
            if filters.status and status not in filters.status:
                return 0
            update["status"] = [status]
        return await self.datastore.count_events(filters.model_copy(update=update))

    # =========================================================================
    # HEALTH
    # =========================================================================

    async def get_health_check(self) -> HealthCheckResponse:
        """
        Report overall system health.

        The status comes from the latest health snapshot; it is UNKNOWN when
        no snapshot exists and CRITICAL when the datastore is unreachable.

        Returns:
            HealthCheckResponse: Status, headline metrics, components and
                the most recent critical alerts.

        Raises:
            MonitoringClientError: If a datastore query fails.
        """
        return await self._read(
            "health_check",
            self._load_health_check,
            self.config.cache.health_ttl_seconds,
        )

    async def _load_health_check(self) -> HealthCheckResponse:
        now = _utc_now()
        status = self._scheduler_status()

        ping_start = time.perf_counter()
        database_up = await self.datastore.ping()
        ping_ms = int((time.perf_counter() - ping_start) * 1000)

        database = ComponentHealth(
            status=ComponentStatus.UP if database_up else ComponentStatus.DOWN,
            last_check=now,
            response_time_ms=ping_ms,
            error_message=None if database_up else "Datastore unreachable",
        )

        snapshot: Optional[SystemHealthSnapshot] = None
        critical_events: List[MonitoringEvent] = []
        open_count = 0
        critical_count = 0

        if database_up:
            snapshot, critical_events, open_count, critical_count = await asyncio.gather(
                self.datastore.get_latest_health_snapshot(),
                self.datastore.query_events(
                    EventFilters(severity=EventSeverity.CRITICAL),
                    limit=RECENT_ALERTS_LIMIT,
                    sort_by="detection_timestamp",
                    sort_order=SortOrder.DESC,
                ),
                self.datastore.count_events(EventFilters(status=EventStatus.OPEN)),
                self.datastore.count_events(
                    EventFilters(
                        severity=EventSeverity.CRITICAL,
                        start_date=now - timedelta(hours=1),
                    )
                ),
            )

        if not database_up:
            overall = SystemHealthStatus.CRITICAL
        elif snapshot is None:
            overall = SystemHealthStatus.UNKNOWN
        else:
            overall = snapshot.overall_health_status

        system_metrics = HealthSystemMetrics(
            transactions_last_hour=snapshot.total_transactions_last_hour if snapshot else 0,
            success_rate_percent=snapshot.success_rate_percent if snapshot else None,
            avg_processing_time_ms=snapshot.avg_processing_time_ms if snapshot else None,
            active_monitoring_events=open_count,
            critical_events_count=critical_count,
        )

        return HealthCheckResponse(
            status=overall,
            timestamp=now,
            uptime_seconds=int(self._uptime_seconds(status)),
            system_metrics=system_metrics,
            components=self._components(now, database, status),
            recent_alerts=[
                AlertSummary(
                    event_id=event.event_id,
                    alert_level=AlertLevel.CRITICAL,
                    alert_message=_alert_message(event),
                    alert_timestamp=event.detection_timestamp,
                    event_type=event.event_type,
                    resolved=event.status.is_closed,
                )
                for event in critical_events
            ],
        )

    def _uptime_seconds(self, status: Optional[SchedulerStatus]) -> float:
        if status is not None and status.is_running:
            return status.uptime_seconds
        return max(0.0, self._clock() - self._started_at)

    def _components(
        self,
        now: datetime,
        database: ComponentHealth,
        status: Optional[SchedulerStatus],
    ) -> HealthComponents:
        """Component health from the datastore ping and the last cycle."""
        last_cycle = status.last_cycle if status is not None else None

        def _detector(result: Optional[DetectionResult]) -> ComponentHealth:
            if result is None:
                return ComponentHealth(status=ComponentStatus.UNKNOWN, last_check=now)
            return ComponentHealth(
                status=ComponentStatus.UP if result.success else ComponentStatus.DOWN,
                last_check=result.detection_timestamp,
                error_message=result.error,
            )

        results = last_cycle.detection_results if last_cycle is not None else None

        if status is None:
            breaker = ComponentHealth(status=ComponentStatus.UNKNOWN, last_check=now)
        else:
            breaker_state = status.circuit_breaker.state
            breaker = ComponentHealth(
                status=breaker_state.component_status,
                last_check=now,
                circuit_breaker_state=breaker_state,
            )

        return HealthComponents(
            transaction_detector=_detector(results.transaction_failures if results else None),
            balance_detector=_detector(results.balance_discrepancies if results else None),
            nfc_detector=_detector(results.duplicate_nfc_scans if results else None),
            race_detector=_detector(results.race_conditions if results else None),
            database=database,
            circuit_breaker=breaker,
        )

    # =========================================================================
    # METRICS
    # =========================================================================

    async def get_metrics(self, time_range: Optional[TimeRange] = None) -> MetricsResponse:
        """
        Compute financial and performance metrics with hourly trends.

        Args:
            time_range: Range to report on, defaults to the last 24 hours.

        Returns:
            MetricsResponse: Metrics and trend series.

        Raises:
            MonitoringClientError: If a datastore query fails.
        """
        if time_range is None:
            now = _utc_now()
            time_range = TimeRange(start=now - timedelta(hours=24), end=now)

        async def _load() -> MetricsResponse:
            return await self._load_metrics(time_range)

        return await self._read(
            "metrics",
            _load,
            self.config.cache.default_ttl_seconds,
            time_range,
        )

    async def _load_metrics(self, time_range: TimeRange) -> MetricsResponse:
        start, end = time_range.start, time_range.end
        in_range = EventFilters(start_date=start, end_date=end)
        discrepancies = EventFilters(
            event_type=EventType.BALANCE_DISCREPANCY,
            start_date=start,
            end_date=end,
        )

        (
            hourly_stats,
            discrepancy_count,
            discrepancy_amount,
            total_events,
            critical_events,
            snapshots,
            discrepancy_hourly,
        ) = await asyncio.gather(
            self.datastore.fetch_hourly_transaction_stats(start, end),
            self.datastore.count_events(discrepancies),
            self.datastore.sum_affected_amount(discrepancies),
            self.datastore.count_events(in_range),
            self.datastore.count_events(
                in_range.model_copy(update={"severity": [EventSeverity.CRITICAL]})
            ),
            self.datastore.fetch_health_snapshots(start, end),
            self.datastore.fetch_hourly_event_counts(start, end, EventType.BALANCE_DISCREPANCY),
        )

        financial = FinancialMetrics(
            total_transaction_volume=sum((s.volume for s in hourly_stats), Decimal("0")),
            failed_transaction_count=sum(s.failed for s in hourly_stats),
            balance_discrepancies_detected=discrepancy_count,
            total_discrepancy_amount=discrepancy_amount,
            financial_integrity_score=financial_integrity_score(critical_events, total_events),
        )

        status = self._scheduler_status()
        if status is None:
            performance = PerformanceMetrics()
        else:
            performance = PerformanceMetrics(
                avg_detection_time_ms=status.avg_cycle_duration_ms,
                monitoring_cycles_completed=status.cycles_completed,
                monitoring_errors=status.cycles_failed,
                system_uptime_percent=status.cycle_success_rate_percent,
            )

        return MetricsResponse(
            time_range=time_range,
            financial_metrics=financial,
            performance_metrics=performance,
            trends=self._trends(time_range, hourly_stats, snapshots, discrepancy_hourly),
        )

    def _trends(
        self,
        time_range: TimeRange,
        hourly_stats: List[HourlyTransactionStats],
        snapshots: List[SystemHealthSnapshot],
        discrepancy_hourly: Dict[datetime, int],
    ) -> MetricsTrends:
        """Hourly trend series over the range."""
        buckets = _hour_buckets(time_range.start, time_range.end)
        stats = {_hour_floor(s.bucket): s for s in hourly_stats}

        processing: Dict[datetime, List[int]] = {}
        for snapshot in snapshots:
            if snapshot.avg_processing_time_ms is not None:
                processing.setdefault(_hour_floor(snapshot.snapshot_timestamp), []).append(
                    snapshot.avg_processing_time_ms
                )

        return MetricsTrends(
            hourly_transaction_counts=_series(
                buckets,
                {b: Decimal(s.total) for b, s in stats.items()},
                "transactions",
            ),
            failure_rates=_series(
                buckets,
                {b: s.failure_rate_percent for b, s in stats.items()},
                "failure_rate_percent",
            ),
            processing_times=[
                TimeSeriesDataPoint(
                    timestamp=bucket,
                    value=(Decimal(sum(values)) / len(values)).quantize(Decimal("0.01")),
                    label="avg_processing_time_ms",
                )
                for bucket, values in sorted(processing.items())
            ],
            balance_discrepancies=_series(
                buckets,
                {_hour_floor(b): Decimal(c) for b, c in discrepancy_hourly.items()},
                "balance_discrepancies",
            ),
        )

    # =========================================================================
    # DASHBOARD
    # =========================================================================

    async def get_dashboard(self) -> DashboardResponse:
        """
        Compose the operator dashboard.

        Health, 24 hour metrics, recent events and live counters are read
        concurrently.

        Returns:
            DashboardResponse: KPIs, counters, charts, events and status.

        Raises:
            MonitoringClientError: If any of the composed reads fails.
        """
        return await self._read(
            "dashboard",
            self._load_dashboard,
            self.config.cache.dashboard_ttl_seconds,
        )

    async def _load_dashboard(self) -> DashboardResponse:
        now = _utc_now().replace(second=0, microsecond=0)
        day_range = TimeRange(start=_hour_floor(now) - timedelta(hours=23), end=now)
        last_minute = now - timedelta(minutes=1)

        health, metrics, recent_events, pending, recent_failures, snapshots = await asyncio.gather(
            self.get_health_check(),
            self.get_metrics(day_range),
            self.datastore.query_events(
                EventFilters(),
                limit=RECENT_EVENTS_LIMIT,
                sort_by="detection_timestamp",
                sort_order=SortOrder.DESC,
            ),
            self.datastore.fetch_transactions(since=last_minute, status=TransactionStatus.PENDING),
            self.datastore.count_events(
                EventFilters(event_type=EventType.TRANSACTION_FAILURE, start_date=last_minute)
            ),
            self.datastore.fetch_health_snapshots(day_range.start, day_range.end),
        )

        trends = metrics.trends
        status = self._scheduler_status()

        return DashboardResponse(
            kpis=DashboardKPIs(
                system_health=health.status,
                transaction_success_rate=health.system_metrics.success_rate_percent,
                balance_integrity_score=metrics.financial_metrics.financial_integrity_score,
                monitoring_system_uptime=metrics.performance_metrics.system_uptime_percent,
            ),
            real_time=RealTimeCounters(
                active_transactions=len(pending),
                recent_failures=recent_failures,
                open_monitoring_events=health.system_metrics.active_monitoring_events,
            ),
            charts=DashboardCharts(
                transaction_volume_24h=_chart("Transactions", trends.hourly_transaction_counts),
                failure_rate_trend=_chart("Failure Rate %", trends.failure_rates),
                balance_discrepancy_trend=_chart(
                    "Balance Discrepancies", trends.balance_discrepancies
                ),
                nfc_duplicate_rate=_chart(
                    "NFC Duplicate Rate %",
                    self._nfc_duplicate_series(day_range, snapshots),
                ),
            ),
            recent_events=recent_events,
            system_status=DashboardSystemStatus(
                database_connection=health.components.database.status == ComponentStatus.UP,
                monitoring_processes=[self._process_status(status)],
                last_successful_check=status.last_successful_cycle_at if status else None,
                circuit_breakers=(
                    {status.circuit_breaker.name: status.circuit_breaker.state} if status else {}
                ),
            ),
        )

    def _nfc_duplicate_series(
        self,
        time_range: TimeRange,
        snapshots: List[SystemHealthSnapshot],
    ) -> List[TimeSeriesDataPoint]:
        """Hourly share of duplicate NFC scans from the snapshots."""
        scans: Dict[datetime, List[int]] = {}
        for snapshot in snapshots:
            bucket = scans.setdefault(_hour_floor(snapshot.snapshot_timestamp), [0, 0])
            bucket[0] += snapshot.duplicate_nfc_scans_last_hour
            bucket[1] += snapshot.total_nfc_scans_last_hour

        rates = {
            bucket: (Decimal(dup) / Decimal(total) * 100).quantize(Decimal("0.01"))
            for bucket, (dup, total) in scans.items()
            if total
        }
        return _series(_hour_buckets(time_range.start, time_range.end), rates)

    def _process_status(self, status: Optional[SchedulerStatus]) -> ProcessStatus:
        if status is None:
            return ProcessStatus(name=DETECTION_PROCESS_NAME, status=ComponentStatus.UNKNOWN)
        return ProcessStatus(
            name=DETECTION_PROCESS_NAME,
            status=ComponentStatus.UP if status.is_running else ComponentStatus.DOWN,
            uptime_seconds=int(status.uptime_seconds),
            last_activity=status.last_successful_cycle_at,
        )

    # =========================================================================
    # SUBSCRIPTIONS AND UPDATES
    # =========================================================================

    async def subscribe_to_events(
        self,
        callback: EventCallback,
        filters: Optional[EventFilters] = None,
    ) -> Subscription:
        """
        Deliver new events matching the filters to a callback.

        Args:
            callback: Sync or async callable receiving each event.
            filters: Event filters, defaults to all events.

        Returns:
            Subscription: Handle whose ``unsubscribe()`` stops delivery.
        """
        subscription = Subscription(
            callback,
            filters,
            self.datastore,
            feed=self.feed,
            config=self.config.subscriptions,
            on_close=self._forget_subscription,
        )
        self._subscriptions[subscription.subscription_id] = subscription
        await subscription.start()
        return subscription

    def _forget_subscription(self, subscription: Subscription) -> None:
        self._subscriptions.pop(subscription.subscription_id, None)

    async def resolve_event(
        self,
        event_id: int,
        status: EventStatus = EventStatus.RESOLVED,
        resolution_notes: Optional[str] = None,
    ) -> MonitoringEvent:
        """
        Update an event's lifecycle status and clear cached reads.

        Args:
            event_id: Event to update.
            status: New status.
            resolution_notes: Free-text notes.

        Returns:
            MonitoringEvent: Updated event.

        Raises:
            EventNotFoundError: If the event does not exist.
            MonitoringReadError: If the update fails.
        """
        resolved_at = _utc_now() if status.is_closed else None
        try:
            event = await self.datastore.update_event_status(
                event_id, status, resolution_notes, resolved_at
            )
        except Exception as e:
            logger.error("event_update_failed", event_id=event_id, error=str(e))
            raise MonitoringReadError("event update", e) from e

        if event is None:
            raise EventNotFoundError(event_id)

        self.clear_cache()
        logger.info("event_status_updated", event_id=event_id, status=status.value)
        return event

    def clear_cache(self) -> None:
        """Drop every cached read."""
        self.cache.clear()

    async def cleanup(self) -> None:
        """Cancel all subscriptions and clear the cache."""
        subscriptions = list(self._subscriptions.values())
        for subscription in subscriptions:
            subscription.unsubscribe()
        await asyncio.gather(
            *(s.wait_closed() for s in subscriptions),
            return_exceptions=True,
        )
        self.clear_cache()
        logger.info("monitoring_client_cleaned_up", subscriptions=len(subscriptions))
