"""Alert model.

Stores infrastructure health alerts under escalation, together with
their append-only change timeline.
"""

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from oncall.models.base import Base, TimestampMixin, UTCDateTime, new_id, utc_now


class AlertStatus(str, enum.Enum):
    """Lifecycle status of an alert."""

    RECEIVED = "received"
    CHECKING = "checking"
    PENDING = "pending"
    ESCALATED = "escalated"
    ACCEPTED = "accepted"
    RESOLVED = "resolved"
    FAILED = "failed"


TERMINAL_ALERT_STATUSES = frozenset(
    {AlertStatus.ACCEPTED, AlertStatus.RESOLVED, AlertStatus.FAILED}
)

alert_status_type = Enum(
    AlertStatus,
    name="alertstatus",
    values_callable=lambda e: [member.value for member in e],
)


class AlertSeverity(str, enum.Enum):
    """Severity reported by the monitoring source."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class Alert(Base, TimestampMixin):
    """An alert being driven through the on-call protocol.

    Status and escalation bookkeeping are written by the escalation
    activities and by the acknowledge/resolve actions. Display fields
    are set once by ingestion.
    """

    __tablename__ = "alerts"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=new_id,
    )

    customer_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )

    resource_id: Mapped[str] = mapped_column(
        String(512),
        nullable=False,
    )

    status: Mapped[AlertStatus] = mapped_column(
        alert_status_type,
        nullable=False,
        default=AlertStatus.RECEIVED,
    )

    severity: Mapped[AlertSeverity] = mapped_column(
        Enum(
            AlertSeverity,
            name="alertseverity",
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
        default=AlertSeverity.MEDIUM,
    )

    title: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )

    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # Notification attempts issued so far - never decreases
    escalation_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    # User currently being paged
    current_escalation_target: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    resolved_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    changes: Mapped[list["AlertChange"]] = relationship(
        back_populates="alert",
        order_by="AlertChange.sequence",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<Alert(id={self.id}, status={self.status.value}, "
            f"attempts={self.escalation_attempts})>"
        )


class AlertChange(Base):
    """One timeline entry of an alert. Rows are only ever inserted."""

    __tablename__ = "alert_changes"
    __table_args__ = (
        UniqueConstraint("alert_id", "sequence", name="uq_alert_changes_sequence"),
    )

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=new_id,
    )

    alert_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("alerts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    actor: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        default="system",
    )

    comment: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    previous_status: Mapped[AlertStatus | None] = mapped_column(
        alert_status_type,
        nullable=True,
    )

    new_status: Mapped[AlertStatus | None] = mapped_column(
        alert_status_type,
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utc_now,
    )

    alert: Mapped[Alert] = relationship(back_populates="changes")
