"""
Dashboard API endpoint.

Provides:
    GET /api/dashboard - KPIs, live counters, charts, recent events and status
"""

from fastapi import APIRouter, Depends

from services.dashboard.api import get_services
from src.models.reports import DashboardResponse
from src.services.container import MonitoringServices

router = APIRouter()


@router.get(
    "/dashboard",
    response_model=DashboardResponse,
    summary="Get dashboard data",
    description="Composes health, metrics, recent events and process status.",
)
async def get_dashboard(
    services: MonitoringServices = Depends(get_services),
) -> DashboardResponse:
    """Get the full dashboard composition."""
    return await services.client.get_dashboard()
