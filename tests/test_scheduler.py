"""Tests for the background scheduler."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.config.models import (
    CircuitBreakerConfig,
    JobConfig,
    JobsConfig,
    MonitoringConfig,
)
from src.detection import RetentionCleaner, create_aggregator
from src.models.detection import DetectionCycleResult
from src.scheduler import (
    BackgroundScheduler,
    CircuitBreaker,
    CircuitOpenError,
    ScheduledJob,
)
from tests.conftest import InMemoryDatastore


class SlowAggregator:
    """Aggregator stand-in that records how many cycles overlap."""

    def __init__(self, inner, delay: float = 0.02) -> None:
        self.inner = inner
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self.calls = 0

    async def run_detection_cycle(self) -> DetectionCycleResult:
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            return await self.inner.run_detection_cycle()
        finally:
            self.active -= 1

    async def create_health_snapshot(self) -> int:
        return await self.inner.create_health_snapshot()


class TestBackgroundScheduler:
    """Tests for BackgroundScheduler."""

    def setup_method(self):
        self.datastore = InMemoryDatastore()
        self.config = MonitoringConfig()
        self.aggregator = create_aggregator(self.datastore, None, self.config)
        self.breaker = CircuitBreaker("test-detection", CircuitBreakerConfig(failure_threshold=2))
        self.scheduler = BackgroundScheduler(
            self.aggregator,
            self.breaker,
            self.config,
            RetentionCleaner(self.datastore),
        )

    @pytest.mark.asyncio
    async def test_manual_cycle_without_start(self):
        result = await self.scheduler.run_detection_cycle()

        status = self.scheduler.get_status()
        assert result.health_snapshot_id == 1
        assert not status.is_running
        assert status.uptime_seconds == 0
        assert status.cycles_completed == 1
        assert status.last_cycle == result
        assert status.last_successful_cycle_at == result.cycle_timestamp
        assert status.avg_cycle_duration_ms is not None

    @pytest.mark.asyncio
    async def test_failures_open_the_shared_breaker(self):
        aggregator = MagicMock()
        aggregator.run_detection_cycle = AsyncMock(side_effect=RuntimeError("database gone"))
        scheduler = BackgroundScheduler(aggregator, self.breaker, self.config)

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await scheduler.run_detection_cycle()
        with pytest.raises(CircuitOpenError):
            await scheduler.run_detection_cycle()

        status = scheduler.get_status()
        assert status.cycles_failed == 2
        assert status.cycles_rejected == 1
        assert status.circuit_breaker.state.value == "OPEN"
        assert aggregator.run_detection_cycle.await_count == 2

    @pytest.mark.asyncio
    async def test_cycles_never_overlap(self):
        slow = SlowAggregator(self.aggregator)
        scheduler = BackgroundScheduler(slow, self.breaker, self.config)

        results = await asyncio.gather(*(scheduler.run_detection_cycle() for _ in range(3)))

        assert len(results) == 3
        assert slow.max_active == 1
        assert scheduler.get_status().cycles_completed == 3

    @pytest.mark.asyncio
    async def test_start_runs_detection_and_stop_halts_jobs(self):
        await self.scheduler.start()
        await asyncio.sleep(0.05)

        status = self.scheduler.get_status()
        assert status.is_running
        assert sorted(status.active_jobs) == ["cleanup", "detection", "health_snapshot"]
        assert status.cycles_completed == 1

        await self.scheduler.stop()

        status = self.scheduler.get_status()
        assert not status.is_running
        assert status.active_jobs == []

    @pytest.mark.asyncio
    async def test_start_and_stop_are_idempotent(self):
        await self.scheduler.start()
        await self.scheduler.start()
        assert len(self.scheduler.get_status().active_jobs) == 3

        await self.scheduler.stop()
        await self.scheduler.stop()
        assert not self.scheduler.is_running

    @pytest.mark.asyncio
    async def test_disabled_jobs_are_not_scheduled(self):
        config = MonitoringConfig(
            jobs=JobsConfig(
                detection=JobConfig(enabled=False),
                cleanup=JobConfig(enabled=False),
                health_snapshot=JobConfig(startup_delay_ms=10_000),
            )
        )
        scheduler = BackgroundScheduler(self.aggregator, self.breaker, config)

        await scheduler.start()
        try:
            assert scheduler.get_status().active_jobs == ["health_snapshot"]
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_lets_in_flight_cycle_finish(self):
        slow = SlowAggregator(self.aggregator, delay=0.05)
        config = MonitoringConfig(jobs=JobsConfig(detection=JobConfig(enabled=False)))
        scheduler = BackgroundScheduler(slow, self.breaker, config)
        await scheduler.start()

        manual = asyncio.create_task(scheduler.run_detection_cycle())
        await asyncio.sleep(0.01)
        await scheduler.stop()

        assert scheduler.get_status().cycles_completed == 1
        assert (await manual).success

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_abort_cycle(self):
        slow = SlowAggregator(self.aggregator, delay=0.05)
        scheduler = BackgroundScheduler(slow, self.breaker, self.config)

        caller = asyncio.create_task(scheduler.run_detection_cycle())
        await asyncio.sleep(0.01)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller
        await asyncio.sleep(0.1)

        assert scheduler.get_status().cycles_completed == 1


class TestRunJob:
    """Tests for job retries."""

    def setup_method(self):
        datastore = InMemoryDatastore()
        self.scheduler = BackgroundScheduler(
            create_aggregator(datastore),
            CircuitBreaker(),
        )

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        func = AsyncMock(side_effect=[RuntimeError("1"), RuntimeError("2"), None])
        job = ScheduledJob("cleanup", JobConfig(retry_attempts=2, retry_delay_ms=0), 60_000, func)

        assert await self.scheduler._run_job(job)
        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self):
        func = AsyncMock(side_effect=RuntimeError("still broken"))
        job = ScheduledJob("cleanup", JobConfig(retry_attempts=1, retry_delay_ms=0), 60_000, func)

        assert not await self.scheduler._run_job(job)
        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_rejected_cycle_is_not_retried(self):
        func = AsyncMock(side_effect=CircuitOpenError("open", name="b", state=None))
        job = ScheduledJob("detection", JobConfig(retry_attempts=3, retry_delay_ms=0), 30_000, func)

        assert not await self.scheduler._run_job(job)
        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_job_timeout_counts_as_failure(self):
        async def _hang():
            await asyncio.sleep(5)

        job = ScheduledJob("cleanup", JobConfig(timeout_ms=100), 60_000, _hang)

        assert not await self.scheduler._run_job(job)
