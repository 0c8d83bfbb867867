"""
Background scheduler for detection cycles and maintenance jobs.

This module provides the BackgroundScheduler which runs the monitoring jobs
on fixed intervals inside the event loop:

    - detection: a full detection cycle through the circuit breaker
    - health_snapshot: a standalone health snapshot
    - cleanup: retention cleanup of old monitoring data

Key Features:
    - One asyncio task per job, with startup delay, interval and retries
    - Detection cycles are serialized by one lock shared with manual runs
    - In-flight cycles are shielded; stop() cancels timers and drains them
    - Scheduled failures are logged and never stop the job loop

Example:
    >>> scheduler = BackgroundScheduler(aggregator, breaker, config.monitoring, cleaner)
    >>> await scheduler.start()
    >>> status = scheduler.get_status()
    >>> result = await scheduler.run_detection_cycle()
    >>> await scheduler.stop()
"""

import asyncio
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import structlog

from src.config.models import JobConfig, MonitoringConfig
from src.detection.aggregator import DetectionCycleAggregator
from src.detection.retention import RetentionCleaner
from src.models.detection import DetectionCycleResult
from src.models.reports import SchedulerStatus
from src.scheduler.circuit_breaker import CircuitBreaker, CircuitOpenError

logger = structlog.get_logger(__name__)


class ScheduledJob:
    """
    A named periodic job.

    Attributes:
        name: Job name.
        config: Timeout, retry and startup policy.
        interval_seconds: Delay between runs.
        func: Async callable run on each tick.
    """

    def __init__(
        self,
        name: str,
        config: JobConfig,
        interval_ms: int,
        func: Callable[[], Awaitable[Any]],
    ) -> None:
        self.name = name
        self.config = config
        self.interval_seconds = interval_ms / 1000
        self.func = func

    def __repr__(self) -> str:
        return f"ScheduledJob(name={self.name!r}, interval_seconds={self.interval_seconds})"


class BackgroundScheduler:
    """
    Timer-driven runner of monitoring jobs.

    Manual and scheduled detection cycles go through the same breaker and
    the same lock, so at most one cycle runs at a time in the process.

    Attributes:
        aggregator: Runs detection cycles and health snapshots.
        breaker: Circuit breaker guarding detection cycles.
        config: Monitoring configuration.
        cleaner: Retention cleaner, None to disable the cleanup job.
    """

    def __init__(
        self,
        aggregator: DetectionCycleAggregator,
        breaker: CircuitBreaker,
        config: Optional[MonitoringConfig] = None,
        cleaner: Optional[RetentionCleaner] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.aggregator = aggregator
        self.breaker = breaker
        self.config = config or MonitoringConfig()
        self.cleaner = cleaner
        self._clock = clock

        self._cycle_lock = asyncio.Lock()
        self._tasks: Dict[str, asyncio.Task] = {}
        self._in_flight: Set[asyncio.Task] = set()
        self._running = False
        self._started_at: Optional[float] = None

        self._cycle_in_progress = False
        self._cycles_completed = 0
        self._cycles_failed = 0
        self._cycles_rejected = 0
        self._total_cycle_ms = 0.0
        self._last_cycle: Optional[DetectionCycleResult] = None
        self._last_successful_cycle_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        """Whether scheduled jobs are active."""
        return self._running

    def _build_jobs(self) -> List[ScheduledJob]:
        """Jobs enabled by the configuration."""
        jobs = self.config.jobs
        intervals = self.config.intervals

        candidates = [
            ScheduledJob("detection", jobs.detection, intervals.critical_checks_ms, self.run_detection_cycle),
            ScheduledJob(
                "health_snapshot",
                jobs.health_snapshot,
                intervals.health_checks_ms,
                self.aggregator.create_health_snapshot,
            ),
        ]
        if self.cleaner is not None:
            candidates.append(
                ScheduledJob("cleanup", jobs.cleanup, intervals.cleanup_ms, self.cleaner.run)
            )

        return [job for job in candidates if job.config.enabled]

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """
        Start the job loops. Calling start on a running scheduler is a no-op.
        """
        if self._running:
            logger.warning("scheduler_already_running")
            return

        self._running = True
        self._started_at = self._clock()

        for job in self._build_jobs():
            self._tasks[job.name] = asyncio.create_task(
                self._job_loop(job),
                name=f"monitoring-job-{job.name}",
            )

        logger.info("scheduler_started", jobs=list(self._tasks))

    async def stop(self) -> None:
        """
        Stop the job loops.

        Timers are cancelled; a detection cycle already running is allowed
        to finish. Calling stop on a stopped scheduler is a no-op.
        """
        if not self._running:
            return

        self._running = False
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        if self._in_flight:
            logger.info("scheduler_draining_cycles", in_flight=len(self._in_flight))
            await asyncio.gather(*self._in_flight, return_exceptions=True)

        uptime = self._clock() - self._started_at if self._started_at is not None else 0.0
        self._started_at = None

        logger.info(
            "scheduler_stopped",
            uptime_seconds=round(uptime, 1),
            cycles_completed=self._cycles_completed,
            cycles_failed=self._cycles_failed,
        )

    async def _job_loop(self, job: ScheduledJob) -> None:
        """Run one job forever on its interval until cancelled."""
        try:
            if job.config.startup_delay_ms:
                await asyncio.sleep(job.config.startup_delay_ms / 1000)

            while self._running:
                await self._run_job(job)
                await asyncio.sleep(job.interval_seconds)

        except asyncio.CancelledError:
            logger.debug("job_loop_cancelled", job=job.name)
            raise

    async def _run_job(self, job: ScheduledJob) -> bool:
        """
        Run a job once with its timeout and retry policy.

        Returns:
            bool: True if an attempt succeeded.
        """
        attempts = job.config.retry_attempts + 1

        for attempt in range(1, attempts + 1):
            try:
                await asyncio.wait_for(job.func(), timeout=job.config.timeout_ms / 1000)
                return True
            except CircuitOpenError:
                # Rejections are not retried; the breaker decides when to try again
                return False
            except Exception as e:
                if attempt < attempts:
                    logger.warning(
                        "job_retry",
                        job=job.name,
                        attempt=attempt,
                        max_attempts=attempts,
                        error=str(e),
                    )
                    await asyncio.sleep(job.config.retry_delay_ms / 1000)
                else:
                    logger.error(
                        "job_failed",
                        job=job.name,
                        attempts=attempts,
                        error=str(e),
                    )

        return False

    # =========================================================================
    # DETECTION CYCLES
    # =========================================================================

    async def run_detection_cycle(self) -> DetectionCycleResult:
        """
        Run one detection cycle now.

        Works whether or not the scheduler is running. The cycle is shielded
        from cancellation of the caller and waits for any cycle in progress.

        Returns:
            DetectionCycleResult: Result of the cycle.

        Raises:
            CircuitOpenError: If the breaker rejected the cycle.
            CircuitTimeoutError: If the cycle exceeded the breaker timeout.
            Exception: If the cycle itself failed.
        """
        task = asyncio.ensure_future(self._locked_cycle())
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return await asyncio.shield(task)

    async def _locked_cycle(self) -> DetectionCycleResult:
        async with self._cycle_lock:
            self._cycle_in_progress = True
            start_time = self._clock()
            try:
                result = await self.breaker.call(self.aggregator.run_detection_cycle)
            except CircuitOpenError as e:
                self._cycles_rejected += 1
                logger.warning(
                    "detection_cycle_rejected",
                    breaker=self.breaker.name,
                    state=e.state.value,
                )
                raise
            except Exception as e:
                self._cycles_failed += 1
                logger.error(
                    "detection_cycle_failed",
                    error=str(e),
                    breaker_state=self.breaker.state.value,
                    failure_count=self.breaker.failure_count,
                )
                raise
            finally:
                self._cycle_in_progress = False

            duration_ms = (self._clock() - start_time) * 1000
            self._cycles_completed += 1
            self._total_cycle_ms += duration_ms
            self._last_cycle = result
            self._last_successful_cycle_at = result.cycle_timestamp

            return result

    # =========================================================================
    # STATUS
    # =========================================================================

    def get_status(self) -> SchedulerStatus:
        """
        Snapshot the scheduler state without awaiting anything.

        Returns:
            SchedulerStatus: Current status and counters.
        """
        uptime = 0.0
        if self._running and self._started_at is not None:
            uptime = max(0.0, self._clock() - self._started_at)

        avg_ms = None
        if self._cycles_completed:
            avg_ms = round(self._total_cycle_ms / self._cycles_completed, 2)

        return SchedulerStatus(
            is_running=self._running,
            uptime_seconds=round(uptime, 3),
            active_jobs=[name for name, task in self._tasks.items() if not task.done()],
            circuit_breaker=self.breaker.get_info(),
            cycle_in_progress=self._cycle_in_progress,
            cycles_completed=self._cycles_completed,
            cycles_failed=self._cycles_failed,
            cycles_rejected=self._cycles_rejected,
            last_cycle=self._last_cycle,
            last_successful_cycle_at=self._last_successful_cycle_at,
            avg_cycle_duration_ms=avg_ms,
        )
