"""
Alert history models.

Alerts are the operator-facing notifications raised for critical monitoring
events. Every CRITICAL event produces one alert history row.

Models:
    AlertLevel: Alert level enumeration
    AlertHistory: One raised alert
    AlertSummary: Compact alert view used in health checks
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from src.models.events import EventType


class AlertLevel(str, Enum):
    """
    Alert levels.

    Attributes:
        INFO: Informational.
        WARNING: Needs a look.
        CRITICAL: Needs action now.
        EMERGENCY: System-wide failure.
    """

    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    EMERGENCY = "EMERGENCY"


class AlertHistory(BaseModel):
    """
    One raised alert.

    Attributes:
        alert_id: Datastore id, None until persisted.
        monitoring_event_id: Event that raised the alert.
        alert_level: Alert level.
        alert_message: Human readable message.
        alert_timestamp: When the alert was raised (UTC).
        acknowledged_by: Operator that acknowledged it.
        acknowledged_at: When it was acknowledged.
        resolved_at: When it was resolved.
        escalation_level: Escalation step, starting at 1.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    alert_id: Optional[int] = Field(default=None, ge=1)
    monitoring_event_id: Optional[int] = Field(default=None, ge=1)
    alert_level: AlertLevel
    alert_message: str = Field(..., min_length=1)
    alert_timestamp: datetime
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    escalation_level: int = Field(default=1, ge=1)


class AlertSummary(BaseModel):
    """
    Compact alert view listed in health check responses.

    Summaries are built from CRITICAL monitoring events, so ``event_id`` is
    the id of the event the alert stands for.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    event_id: Optional[int] = None
    alert_level: AlertLevel
    alert_message: str
    alert_timestamp: datetime
    event_type: EventType
    resolved: bool = False
