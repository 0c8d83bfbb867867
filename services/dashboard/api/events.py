"""
Events API endpoints.

Provides:
    GET /api/events - Filtered, paginated monitoring events with counts
    PATCH /api/events/{event_id} - Update an event's lifecycle status
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ValidationError

from services.dashboard.api import get_services, split_csv
from src.models.events import EventSeverity, EventStatus, EventType, MonitoringEvent
from src.models.queries import EventFilters, Pagination, SortOrder
from src.models.reports import MonitoringEventsResponse
from src.services.container import MonitoringServices

logger = structlog.get_logger(__name__)

router = APIRouter()


class EventStatusUpdate(BaseModel):
    """Request body for an event status update."""

    model_config = {"extra": "forbid"}

    status: EventStatus
    resolution_notes: Optional[str] = None


@router.get(
    "/events",
    response_model=MonitoringEventsResponse,
    summary="Get monitoring events",
    description="Retrieves monitoring events with filters, pagination and summary counts.",
)
async def get_events(
    event_type: Optional[str] = Query(
        None,
        description="Event type filter, comma-separated for several",
    ),
    severity: Optional[str] = Query(
        None,
        description="Severity filter: 'CRITICAL', 'HIGH', ... or comma-separated list",
    ),
    status: Optional[str] = Query(
        None,
        description="Status filter: 'OPEN', 'INVESTIGATING', ... or comma-separated list",
    ),
    card_id: Optional[str] = Query(None, description="Card filter"),
    transaction_id: Optional[str] = Query(None, description="Transaction filter"),
    detection_algorithm: Optional[str] = Query(None, description="Algorithm filter"),
    start_date: Optional[datetime] = Query(None, description="Earliest detection time"),
    end_date: Optional[datetime] = Query(None, description="Latest detection time"),
    min_confidence_score: Optional[Decimal] = Query(None, ge=0, le=1),
    has_resolution_notes: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=1000),
    sort_by: str = Query("detection_timestamp"),
    sort_order: SortOrder = Query(SortOrder.DESC),
    services: MonitoringServices = Depends(get_services),
) -> MonitoringEventsResponse:
    """
    Get one page of monitoring events.

    Returns:
        MonitoringEventsResponse: Events, pagination and counts.
    """
    try:
        filters = EventFilters(
            event_type=split_csv(event_type, EventType),
            severity=split_csv(severity, EventSeverity),
            status=split_csv(status, EventStatus),
            card_id=card_id,
            transaction_id=transaction_id,
            detection_algorithm=detection_algorithm,
            start_date=start_date,
            end_date=end_date,
            min_confidence_score=min_confidence_score,
            has_resolution_notes=has_resolution_notes,
        )
        pagination = Pagination(
            page=page,
            per_page=per_page,
            sort_by=sort_by,
            sort_order=sort_order,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return await services.client.get_monitoring_events(filters, pagination)


@router.patch(
    "/events/{event_id}",
    response_model=MonitoringEvent,
    summary="Update event status",
    description="Moves an event through its lifecycle and records resolution notes.",
)
async def update_event(
    event_id: int,
    update: EventStatusUpdate,
    services: MonitoringServices = Depends(get_services),
) -> MonitoringEvent:
    """
    Update an event's status.

    Returns:
        MonitoringEvent: The updated event.
    """
    event = await services.client.resolve_event(
        event_id,
        status=update.status,
        resolution_notes=update.resolution_notes,
    )
    logger.info("event_updated_via_api", event_id=event_id, status=update.status.value)
    return event
