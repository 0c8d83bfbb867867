"""
REST API endpoints for the monitoring dashboard.

This package provides FastAPI routers for:
- Events: Filtered, paginated monitoring events and status updates
- Health: System health check and datastore latency
- Metrics: Financial and performance metrics with trends
- Dashboard: The full dashboard composition
- Status: Scheduler status and manual detection cycles

Every router reads the wired components from ``app.state.services``.
"""

from typing import List, Optional, Type, TypeVar

from fastapi import HTTPException, Request

from src.services.container import MonitoringServices

E = TypeVar("E")


def get_services(request: Request) -> MonitoringServices:
    """
    FastAPI dependency returning the application's monitoring services.

    Raises:
        HTTPException: 503 if the services are not initialized.
    """
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Monitoring services not initialized")
    return services


def split_csv(value: Optional[str], enum_type: Type[E]) -> Optional[List[E]]:
    """
    Parse a comma-separated query parameter into enum values.

    Raises:
        HTTPException: 422 if a value is not a member of the enum.
    """
    if not value:
        return None

    items = []
    for raw in value.split(","):
        raw = raw.strip()
        if not raw:
            continue
        try:
            items.append(enum_type(raw))
        except ValueError:
            try:
                items.append(enum_type(raw.upper()))
            except ValueError:
                raise HTTPException(
                    status_code=422,
                    detail=f"Invalid value '{raw}' for {enum_type.__name__}",
                )
    return items or None
