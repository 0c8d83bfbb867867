"""
Query models for reading monitoring events.

Models:
    EventFilters: Filter set for event queries and subscriptions
    SortOrder: Sort direction
    Pagination: Page request
    PaginationMeta: Page description returned with results
    TimeRange: Closed time interval for metrics
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from src.models.events import EventSeverity, EventStatus, EventType, MonitoringEvent


SortField = Literal[
    "detection_timestamp",
    "created_at",
    "severity",
    "confidence_score",
    "event_id",
]


def _as_list(value: Any) -> Any:
    """Accept a single value where a list is expected."""
    if value is None or isinstance(value, list):
        return value
    if isinstance(value, (tuple, set, frozenset)):
        return list(value)
    return [value]


class EventFilters(BaseModel):
    """
    Filter set for event queries and subscriptions.

    List filters match any of their values. Empty filters match everything.

    Example:
        >>> filters = EventFilters(severity="CRITICAL", card_id="A1B2C3D4")
        >>> filters.severity
        [<EventSeverity.CRITICAL: 'CRITICAL'>]
    """

    model_config = {"frozen": True, "extra": "forbid"}

    event_type: Optional[List[EventType]] = None
    severity: Optional[List[EventSeverity]] = None
    status: Optional[List[EventStatus]] = None
    card_id: Optional[str] = None
    transaction_id: Optional[str] = None
    detection_algorithm: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    min_confidence_score: Optional[Decimal] = Field(
        default=None,
        ge=Decimal("0"),
        le=Decimal("1"),
    )
    has_resolution_notes: Optional[bool] = None

    @field_validator("event_type", "severity", "status", mode="before")
    @classmethod
    def coerce_list(cls, v: Any) -> Any:
        """Wrap single values into a list."""
        return _as_list(v)

    @model_validator(mode="after")
    def validate_dates(self) -> "EventFilters":
        """Validate the date range."""
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError(
                f"end_date ({self.end_date}) must be >= start_date ({self.start_date})"
            )
        return self

    def matches(self, event: MonitoringEvent) -> bool:
        """
        Check an event against every filter.

        Args:
            event: Event to check.

        Returns:
            bool: True if the event passes all filters.
        """
        if self.event_type and event.event_type not in self.event_type:
            return False
        if self.severity and event.severity not in self.severity:
            return False
        if self.status and event.status not in self.status:
            return False
        if self.card_id and event.card_id != self.card_id:
            return False
        if self.transaction_id and event.transaction_id != self.transaction_id:
            return False
        if self.detection_algorithm and event.detection_algorithm != self.detection_algorithm:
            return False
        if self.start_date and event.detection_timestamp < self.start_date:
            return False
        if self.end_date and event.detection_timestamp > self.end_date:
            return False
        if (
            self.min_confidence_score is not None
            and event.confidence_score < self.min_confidence_score
        ):
            return False
        if self.has_resolution_notes is not None:
            if bool(event.resolution_notes) != self.has_resolution_notes:
                return False
        return True


class SortOrder(str, Enum):
    """Sort direction."""

    ASC = "asc"
    DESC = "desc"


class Pagination(BaseModel):
    """Page request for event queries."""

    model_config = {"frozen": True, "extra": "forbid"}

    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=50, ge=1, le=1000)
    sort_by: SortField = "detection_timestamp"
    sort_order: SortOrder = SortOrder.DESC

    @property
    def offset(self) -> int:
        """Row offset of the first item on the page."""
        return (self.page - 1) * self.per_page


class PaginationMeta(BaseModel):
    """Page description returned with query results."""

    model_config = {"frozen": True, "extra": "forbid"}

    total: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    per_page: int = Field(..., ge=1)
    total_pages: int = Field(..., ge=0)
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, total: int, pagination: Pagination) -> "PaginationMeta":
        """
        Derive page metadata from a total count.

        Args:
            total: Number of rows matching the query.
            pagination: Requested page.

        Returns:
            PaginationMeta: Page description.
        """
        total_pages = -(-total // pagination.per_page)
        return cls(
            total=total,
            page=pagination.page,
            per_page=pagination.per_page,
            total_pages=total_pages,
            has_next=pagination.page < total_pages,
            has_prev=pagination.page > 1,
        )


class TimeRange(BaseModel):
    """Closed time interval."""

    model_config = {"frozen": True, "extra": "forbid"}

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def validate_range(self) -> "TimeRange":
        """Validate the interval."""
        if self.end < self.start:
            raise ValueError(f"end ({self.end}) must be >= start ({self.start})")
        return self
