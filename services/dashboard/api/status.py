"""
Scheduler API endpoints.

Provides:
    GET /api/status - Background scheduler and circuit breaker status
    POST /api/detection/run - Run one detection cycle now
"""

from fastapi import APIRouter, Depends

import structlog

from services.dashboard.api import get_services
from src.models.detection import DetectionCycleResult
from src.models.reports import SchedulerStatus
from src.services.container import MonitoringServices

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "/status",
    response_model=SchedulerStatus,
    summary="Get scheduler status",
    description="Reports scheduled jobs, cycle counters and circuit breaker state.",
)
async def get_status(
    services: MonitoringServices = Depends(get_services),
) -> SchedulerStatus:
    """Get the scheduler status."""
    return services.scheduler.get_status()


@router.post(
    "/detection/run",
    response_model=DetectionCycleResult,
    summary="Run a detection cycle",
    description="Runs one detection cycle through the shared circuit breaker.",
)
async def run_detection(
    services: MonitoringServices = Depends(get_services),
) -> DetectionCycleResult:
    """
    Run one detection cycle now.

    Returns:
        DetectionCycleResult: Result of the cycle.
    """
    result = await services.scheduler.run_detection_cycle()
    services.client.clear_cache()
    logger.info(
        "manual_detection_cycle_completed",
        events_created=result.total_events_created,
        duration_seconds=result.cycle_duration_seconds,
    )
    return result
