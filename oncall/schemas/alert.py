"""Alert schemas.

Serializable alert snapshots passed through orchestrations, and the
request/response bodies of the alert endpoints.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from oncall.models.alert import AlertSeverity, AlertStatus


class AlertRecord(BaseModel):
    """Snapshot of an alert's persisted state."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    customer_id: str
    resource_id: str
    status: AlertStatus
    severity: AlertSeverity = AlertSeverity.MEDIUM
    title: str | None = None
    description: str | None = None
    escalation_attempts: int = 0
    current_escalation_target: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    resolved_at: datetime | None = None


class TimelineEntry(BaseModel):
    """One entry of an alert's change timeline."""

    model_config = ConfigDict(from_attributes=True)

    sequence: int
    actor: str
    comment: str
    previous_status: AlertStatus | None
    new_status: AlertStatus | None
    created_at: datetime


class AlertDetailResponse(AlertRecord):
    """Alert with its full timeline."""

    timeline: list[TimelineEntry]


class AlertActionRequest(BaseModel):
    """Body of the acknowledge/resolve actions."""

    actor: str = Field(..., min_length=1, max_length=200)
    comment: str | None = Field(default=None, max_length=2000)


class EscalateResponse(BaseModel):
    """Response after starting an escalation run."""

    alert_id: str
    instance_id: str
    status: str = "escalating"
