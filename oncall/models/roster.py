"""On-call roster models.

Users who can be paged, reusable plans carrying the escalation policy,
per-customer plan bindings, and the materialized schedule slices the
coverage resolver reads.
"""

import enum
from datetime import datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from oncall.models.base import Base, TimestampMixin, UTCDateTime, new_id, utc_now


class SliceRole(str, enum.Enum):
    """Escalation tier a schedule slice fills."""

    PRIMARY = "primary"
    BACKUP = "backup"


class OnCallUser(Base, TimestampMixin):
    """A person who can be paged.

    Either contact channel may be missing; the dispatcher only uses the
    channels that are present.
    """

    __tablename__ = "oncall_users"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=new_id,
    )

    display_name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )

    email: Mapped[str | None] = mapped_column(
        String(320),
        nullable=True,
    )

    phone: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<OnCallUser(id={self.id}, name={self.display_name!r})>"


class OnCallPlan(Base, TimestampMixin):
    """Reusable on-call plan and the escalation policy it applies."""

    __tablename__ = "oncall_plans"
    __table_args__ = (
        CheckConstraint("max_attempts_per_tier >= 0", name="ck_oncall_plans_max_attempts"),
    )

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=new_id,
    )

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )

    version: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="v1",
    )

    # Minutes to wait for an acknowledgment after a delivered page
    ack_timeout_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=5,
    )

    # Members tried per tier, in tier order
    max_attempts_per_tier: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=3,
    )

    # Reserved; not used by the wait logic
    retry_delay_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=5,
    )

    def __repr__(self) -> str:
        return (
            f"<OnCallPlan(id={self.id}, ack={self.ack_timeout_minutes}m, "
            f"max_attempts={self.max_attempts_per_tier})>"
        )


class CustomerPlanBinding(Base, TimestampMixin):
    """Binds a customer to a plan and the members of each tier."""

    __tablename__ = "customer_plan_bindings"

    customer_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
    )

    plan_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("oncall_plans.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Ordered user ids
    primary_member_ids: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    backup_member_ids: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )


class ScheduleSlice(Base):
    """Materialized on-call coverage for one tier over [start_utc, end_utc).

    Past slices are immutable; the horizon extender only appends.
    """

    __tablename__ = "schedule_slices"
    __table_args__ = (
        UniqueConstraint(
            "customer_id", "role", "start_utc", name="uq_schedule_slices_start"
        ),
        Index("ix_schedule_slices_customer_window", "customer_id", "start_utc", "end_utc"),
    )

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=new_id,
    )

    customer_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    plan_id: Mapped[str | None] = mapped_column(
        String(64),
        ForeignKey("oncall_plans.id", ondelete="SET NULL"),
        nullable=True,
    )

    role: Mapped[SliceRole] = mapped_column(
        Enum(
            SliceRole,
            name="slicerole",
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
    )

    member_ids: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    start_utc: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )

    end_utc: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )

    generated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utc_now,
    )

    def __repr__(self) -> str:
        return (
            f"<ScheduleSlice(customer={self.customer_id}, role={self.role.value}, "
            f"{self.start_utc.isoformat()}..{self.end_utc.isoformat()})>"
        )
