"""Orchestration instance and step journal models.

Private state of the durable execution runtime. One instance row per
alert id, plus an append-only journal of the steps it has completed.
"""

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from oncall.models.base import Base, TimestampMixin, UTCDateTime, utc_now


class OrchestrationStatus(str, enum.Enum):
    """Runtime status of an orchestration instance."""

    PENDING = "pending"
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_ORCHESTRATION_STATUSES = frozenset(
    {
        OrchestrationStatus.PENDING,
        OrchestrationStatus.RUNNING,
        OrchestrationStatus.SUSPENDED,
    }
)


class StepKind(str, enum.Enum):
    """Kind of journaled step."""

    ACTIVITY = "activity"
    TIMER = "timer"
    NEW_UUID = "new_uuid"


class OrchestrationInstance(Base, TimestampMixin):
    """A single orchestration run, keyed by the caller's instance id."""

    __tablename__ = "orchestration_instances"

    instance_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    status: Mapped[OrchestrationStatus] = mapped_column(
        Enum(
            OrchestrationStatus,
            name="orchestrationstatus",
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
        default=OrchestrationStatus.PENDING,
        index=True,
    )

    input: Mapped[Any] = mapped_column(
        JSON,
        nullable=True,
    )

    output: Mapped[Any] = mapped_column(
        JSON,
        nullable=True,
    )

    error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # When a suspended instance becomes runnable again
    wake_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        index=True,
    )

    lease_owner: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
    )

    lease_expires_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<OrchestrationInstance(id={self.instance_id}, name={self.name}, "
            f"status={self.status.value})>"
        )


class JournalEntry(Base):
    """One completed step of an orchestration instance."""

    __tablename__ = "orchestration_journal"
    __table_args__ = (
        UniqueConstraint("instance_id", "step_index", name="uq_orchestration_journal_step"),
    )

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    instance_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("orchestration_instances.instance_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    step_index: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    step_kind: Mapped[StepKind] = mapped_column(
        Enum(
            StepKind,
            name="stepkind",
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    # SHA-256 of the canonical JSON input
    input_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    input: Mapped[Any] = mapped_column(
        JSON,
        nullable=True,
    )

    result: Mapped[Any] = mapped_column(
        JSON,
        nullable=True,
    )

    error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    recorded_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utc_now,
    )
