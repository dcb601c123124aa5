"""Escalation run schemas.

Inputs and results exchanged between the escalation orchestrations and
their activities. Everything here must round-trip through JSON, since
the runtime journals it.
"""

import enum

from pydantic import BaseModel, Field

from oncall.schemas.alert import AlertRecord
from oncall.schemas.coverage import EscalationPolicy, OnCallMember
from oncall.schemas.notification import NotificationResult


class EscalationOutcome(str, enum.Enum):
    """How an escalation run ended."""

    NO_COVERAGE = "no_coverage"
    HANDLED_EXTERNALLY = "handled_externally"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


class EscalationInput(BaseModel):
    """Everything the escalation state machine needs to run."""

    alert: AlertRecord
    primary_tier: list[OnCallMember] = Field(default_factory=list)
    backup_tier: list[OnCallMember] = Field(default_factory=list)
    policy: EscalationPolicy = Field(default_factory=EscalationPolicy.default)


class EscalationResult(BaseModel):
    """Output of an escalation run."""

    outcome: EscalationOutcome
    attempts: int = 0


class AttemptRecord(BaseModel):
    """Escalation bookkeeping written before a notification."""

    alert_id: str
    escalation_attempts: int
    user_id: str


class NotificationTarget(BaseModel):
    """Input of the send-notification activity."""

    alert: AlertRecord
    member: OnCallMember
    attempt: int


class NotificationOutcome(BaseModel):
    """Input of the record-notification-result activity."""

    alert_id: str
    member: OnCallMember
    attempt: int
    tier: str = "primary"
    result: NotificationResult


class TimelineNote(BaseModel):
    """A timeline comment, optionally paired with a status change."""

    alert_id: str
    comment: str
