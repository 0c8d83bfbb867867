"""
Health API endpoints for system status.

Provides:
    GET /api/health - System health check with components and recent alerts
    GET /api/health/detailed - Datastore and event feed latency
"""

import time
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

import structlog

from services.dashboard.api import get_services
from src.models.reports import HealthCheckResponse
from src.services.container import MonitoringServices

logger = structlog.get_logger(__name__)

router = APIRouter()


class DetailedHealthResponse(BaseModel):
    """Response model for detailed health check."""

    healthy: bool
    datastore_connected: bool
    event_feed_connected: bool
    datastore_ping_ms: Optional[float] = None
    event_feed_ping_ms: Optional[float] = None


@router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Get system health status",
    description="Retrieves overall health, component status and recent critical alerts.",
)
async def get_health(
    services: MonitoringServices = Depends(get_services),
) -> HealthCheckResponse:
    """
    Get system health status.

    Returns:
        HealthCheckResponse: Complete system health status.
    """
    return await services.client.get_health_check()


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    summary="Get detailed health check",
    description="Pings the datastore and the event feed and reports latency.",
)
async def get_detailed_health(
    services: MonitoringServices = Depends(get_services),
) -> DetailedHealthResponse:
    """
    Get detailed health check with latency measurements.

    Returns:
        DetailedHealthResponse: Connectivity and latency of both stores.
    """
    start = time.monotonic()
    datastore_connected = await services.datastore.ping()
    datastore_ping_ms = (time.monotonic() - start) * 1000

    feed_connected = False
    feed_ping_ms = None
    ping = getattr(services.feed, "ping", None)
    if ping is not None:
        start = time.monotonic()
        feed_connected = await ping()
        feed_ping_ms = (time.monotonic() - start) * 1000

    # The feed is optional; subscriptions poll without it
    return DetailedHealthResponse(
        healthy=datastore_connected,
        datastore_connected=datastore_connected,
        event_feed_connected=feed_connected,
        datastore_ping_ms=round(datastore_ping_ms, 2) if datastore_connected else None,
        event_feed_ping_ms=round(feed_ping_ms, 2) if feed_connected and feed_ping_ms else None,
    )
