"""
Metrics API endpoint.

Provides:
    GET /api/metrics - Financial and performance metrics with hourly trends
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError

import structlog

from services.dashboard.api import get_services
from src.models.queries import TimeRange
from src.models.reports import MetricsResponse
from src.services.container import MonitoringServices

logger = structlog.get_logger(__name__)

router = APIRouter()

# Maximum range to prevent excessive data
MAX_RANGE = timedelta(days=7)


@router.get(
    "/metrics",
    response_model=MetricsResponse,
    summary="Get monitoring metrics",
    description="Retrieves financial and performance metrics with hourly trends.",
)
async def get_metrics(
    start: Optional[datetime] = Query(
        None,
        description="Range start, defaults to 24 hours before end",
    ),
    end: Optional[datetime] = Query(
        None,
        description="Range end, defaults to now",
    ),
    services: MonitoringServices = Depends(get_services),
) -> MetricsResponse:
    """
    Get metrics over a time range.

    Returns:
        MetricsResponse: Metrics and trends.
    """
    end = end or datetime.now(timezone.utc)
    start = start or end - timedelta(hours=24)

    try:
        time_range = TimeRange(start=start, end=end)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    if time_range.end - time_range.start > MAX_RANGE:
        raise HTTPException(
            status_code=422,
            detail=f"Time range exceeds maximum of {MAX_RANGE.days} days",
        )

    return await services.client.get_metrics(time_range)
