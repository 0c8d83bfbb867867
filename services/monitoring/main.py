"""
Monitoring Service entry point.

This service is responsible for:
- Running detection cycles on the critical-checks interval
- Taking standalone health snapshots
- Cleaning up expired monitoring data
- Logging scheduler status periodically

Usage:
    python -m services.monitoring.main

Environment Variables:
    REDIS_URL: Redis connection URL (default: redis://localhost:6379)
    DATABASE_URL: PostgreSQL connection URL
    LOG_LEVEL: Logging level (default: INFO)
    CONFIG_PATH: Path to config directory (default: config)
    STATUS_LOG_INTERVAL: Seconds between status log lines (default: 60)
"""

import asyncio
import os
import sys
from pathlib import Path

import structlog

# Add project root to path for imports
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from src.services import ServiceRunner, setup_logging

logger = structlog.get_logger(__name__)


class MonitoringService(ServiceRunner):
    """
    Background monitoring service.

    Runs the scheduler until a shutdown is requested and logs its status on
    a fixed interval.
    """

    def __init__(self, config_path: str = "config", status_interval: float = 60.0) -> None:
        """Initialize the monitoring service."""
        super().__init__(config_path)
        self.status_interval = status_interval

    @property
    def service_name(self) -> str:
        """Return service name."""
        return "monitoring"

    async def _initialize(self) -> None:
        """Start the background scheduler."""
        if self.services is None:
            raise RuntimeError("Service not properly initialized")

        await self.services.scheduler.start()

    async def _run(self) -> None:
        """Log scheduler status until shutdown."""
        if self.services is None:
            raise RuntimeError("Service not properly initialized")

        while not self.shutdown_event.is_set():
            try:
                await asyncio.wait_for(self.shutdown_event.wait(), timeout=self.status_interval)
            except asyncio.TimeoutError:
                status = self.services.scheduler.get_status()
                self.logger.info(
                    "scheduler_status",
                    is_running=status.is_running,
                    active_jobs=status.active_jobs,
                    cycles_completed=status.cycles_completed,
                    cycles_failed=status.cycles_failed,
                    cycles_rejected=status.cycles_rejected,
                    breaker_state=status.circuit_breaker.state.value,
                    avg_cycle_duration_ms=status.avg_cycle_duration_ms,
                )

    async def _cleanup(self) -> None:
        """Log final counters."""
        if self.services is not None:
            status = self.services.scheduler.get_status()
            self.logger.info(
                "cleanup_state",
                cycles_completed=status.cycles_completed,
                cycles_failed=status.cycles_failed,
            )


async def main() -> None:
    """Main entry point."""
    # Set up initial logging
    setup_logging()

    config_path = os.getenv("CONFIG_PATH", "config")
    status_interval = float(os.getenv("STATUS_LOG_INTERVAL", "60"))

    logger.info(
        "monitoring_service_starting",
        version="1.0.0",
        config_path=config_path,
    )

    service = MonitoringService(config_path=config_path, status_interval=status_interval)

    try:
        await service.run()
    except Exception as e:
        logger.error("service_failed", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
