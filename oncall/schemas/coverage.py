"""On-call coverage schemas."""

from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from oncall.config import settings


class OnCallMember(BaseModel):
    """A user in an escalation tier."""

    user_id: str
    display_name: str
    email: str | None = None
    phone: str | None = None


class EscalationPolicy(BaseModel):
    """Timing and attempt limits applied to an escalation run.

    retry_delay is carried for plans that set it; the wait logic only
    uses ack_timeout.
    """

    ack_timeout: timedelta = timedelta(minutes=5)
    max_attempts_per_tier: int = Field(default=3, ge=0)
    retry_delay: timedelta = timedelta(minutes=5)

    @classmethod
    def default(cls) -> "EscalationPolicy":
        """Policy used when no plan covers the alert."""
        return cls(
            ack_timeout=timedelta(minutes=settings.default_ack_timeout_minutes),
            max_attempts_per_tier=settings.default_max_attempts_per_tier,
            retry_delay=timedelta(minutes=settings.default_retry_delay_minutes),
        )


class OnCallCoverage(BaseModel):
    """Who is on call for a customer at an instant, and under what policy."""

    primary_tier: list[OnCallMember] = Field(default_factory=list)
    backup_tier: list[OnCallMember] = Field(default_factory=list)
    policy: EscalationPolicy = Field(default_factory=EscalationPolicy.default)
    plan_id: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.primary_tier and not self.backup_tier


class CoverageQuery(BaseModel):
    """Input of the coverage lookup activity."""

    customer_id: str
    as_of: datetime
