"""Alert record store.

Reads and writes persisted alert state for the escalation activities and
the acknowledge/resolve actions. Every status change and notification
attempt is appended to the alert's timeline.
"""

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from oncall.logging_config import get_logger
from oncall.models.alert import (
    TERMINAL_ALERT_STATUSES,
    Alert,
    AlertChange,
    AlertSeverity,
    AlertStatus,
)
from oncall.models.base import utc_now
from oncall.schemas.alert import AlertRecord
from oncall.schemas.escalation import NotificationOutcome

logger = get_logger(__name__)

SYSTEM_ACTOR = "system"


class AlertServiceError(Exception):
    """Base exception for alert store errors."""

    pass


class AlertNotFoundError(AlertServiceError):
    """The alert does not exist."""

    def __init__(self, alert_id: str):
        self.alert_id = alert_id
        super().__init__(f"Alert '{alert_id}' not found")


class AlertStateError(AlertServiceError):
    """The requested transition is not allowed from the alert's status."""

    def __init__(self, alert_id: str, status: AlertStatus, action: str):
        self.alert_id = alert_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} alert '{alert_id}' in status {status.value}")


def to_record(alert: Alert) -> AlertRecord:
    """Snapshot an ORM alert into its serializable form."""
    return AlertRecord.model_validate(alert)


async def get_alert(db: AsyncSession, alert_id: str) -> Alert | None:
    """Get an alert by id.

    Args:
        db: Database session.
        alert_id: Alert id.

    Returns:
        The alert with its timeline loaded, or None.
    """
    result = await db.execute(select(Alert).where(Alert.id == alert_id))
    return result.scalar_one_or_none()


def lock_alert_query(alert_id: str) -> Select[tuple[Alert]]:
    """Build the row-locking load used by every alert write."""
    return (
        select(Alert)
        .where(Alert.id == alert_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


async def _get_alert_for_update(db: AsyncSession, alert_id: str) -> Alert | None:
    # Lock the row so escalation activities and responder actions
    # serialize; status and timeline sequence are decided from the
    # committed state, never from a copy already in the session.
    result = await db.execute(lock_alert_query(alert_id))
    return result.scalar_one_or_none()


async def update_alert(db: AsyncSession, alert: Alert) -> Alert:
    """Persist pending changes to an alert.

    Args:
        db: Database session.
        alert: Alert with modified attributes.

    Returns:
        The refreshed alert.
    """
    db.add(alert)
    await db.commit()
    await db.refresh(alert)
    return alert


async def _next_sequence(db: AsyncSession, alert_id: str) -> int:
    result = await db.execute(
        select(func.coalesce(func.max(AlertChange.sequence), 0)).where(
            AlertChange.alert_id == alert_id
        )
    )
    return result.scalar_one() + 1


async def _append_change(
    db: AsyncSession,
    alert: Alert,
    comment: str,
    *,
    actor: str = SYSTEM_ACTOR,
    previous_status: AlertStatus | None = None,
    new_status: AlertStatus | None = None,
) -> AlertChange:
    change = AlertChange(
        sequence=await _next_sequence(db, alert.id),
        actor=actor,
        comment=comment,
        previous_status=previous_status,
        new_status=new_status,
        created_at=utc_now(),
    )
    alert.changes.append(change)
    return change


async def _transition(
    db: AsyncSession,
    alert: Alert,
    new_status: AlertStatus,
    comment: str,
    actor: str = SYSTEM_ACTOR,
) -> None:
    previous_status = alert.status
    alert.status = new_status
    await _append_change(
        db,
        alert,
        comment,
        actor=actor,
        previous_status=previous_status,
        new_status=new_status,
    )
    logger.info(
        "Alert status changed",
        alert_id=alert.id,
        previous_status=previous_status.value,
        new_status=new_status.value,
        actor=actor,
    )


async def create_alert(
    db: AsyncSession,
    customer_id: str,
    resource_id: str,
    severity: AlertSeverity = AlertSeverity.MEDIUM,
    title: str | None = None,
    description: str | None = None,
) -> Alert:
    """Store a newly received alert.

    Args:
        db: Database session.
        customer_id: Owning customer.
        resource_id: Monitored resource that raised the alert.
        severity: Reported severity.
        title: Short summary.
        description: Long description.

    Returns:
        The created alert in received status.
    """
    alert = Alert(
        customer_id=customer_id,
        resource_id=resource_id,
        status=AlertStatus.RECEIVED,
        severity=severity,
        title=title,
        description=description,
        escalation_attempts=0,
        changes=[],
    )
    return await update_alert(db, alert)


async def update_escalation_state(
    db: AsyncSession,
    alert_id: str,
    escalation_attempts: int,
    user_id: str,
) -> AlertRecord | None:
    """Record the attempt count and the user about to be paged.

    The attempt count never decreases. The alert moves to pending unless
    it is already escalated or terminal.

    Returns:
        The updated alert snapshot, or None if the alert no longer exists.
    """
    alert = await _get_alert_for_update(db, alert_id)
    if alert is None:
        return None

    alert.escalation_attempts = max(alert.escalation_attempts, escalation_attempts)
    alert.current_escalation_target = user_id

    if alert.status not in TERMINAL_ALERT_STATUSES and alert.status not in (
        AlertStatus.PENDING,
        AlertStatus.ESCALATED,
    ):
        await _transition(
            db, alert, AlertStatus.PENDING, "Escalation in progress, paging on-call"
        )

    alert = await update_alert(db, alert)
    return to_record(alert)


def summarize_notification(outcome: NotificationOutcome) -> str:
    """Build the timeline comment for one notification attempt."""
    member = outcome.member
    result = outcome.result

    channels = []
    if member.email:
        channels.append("email sent" if result.email_sent else "email failed")
    if member.phone:
        channels.append("SMS sent" if result.sms_sent else "SMS failed")
    summary = ", ".join(channels) if channels else "no contact channels"

    if result.delivered:
        comment = (
            f"Notified {outcome.tier} on-call {member.display_name} "
            f"(attempt {outcome.attempt}): {summary}"
        )
    else:
        comment = (
            f"Failed to notify {outcome.tier} on-call {member.display_name} "
            f"(attempt {outcome.attempt}): {summary}"
        )

    if result.error:
        comment = f"{comment}. Error: {result.error}"
    return comment


async def record_notification_result(
    db: AsyncSession,
    outcome: NotificationOutcome,
) -> bool:
    """Append the per-channel outcome of a notification to the timeline.

    Returns:
        False if the alert no longer exists.
    """
    alert = await _get_alert_for_update(db, outcome.alert_id)
    if alert is None:
        return False

    await _append_change(db, alert, summarize_notification(outcome))
    await update_alert(db, alert)
    return True


async def mark_escalated(
    db: AsyncSession,
    alert_id: str,
    comment: str,
) -> AlertRecord | None:
    """Move an alert to escalated with a timeline comment.

    A terminal alert keeps its status; only the comment is recorded.
    """
    alert = await _get_alert_for_update(db, alert_id)
    if alert is None:
        return None

    if alert.status in TERMINAL_ALERT_STATUSES:
        await _append_change(db, alert, comment)
    else:
        await _transition(db, alert, AlertStatus.ESCALATED, comment)

    alert = await update_alert(db, alert)
    return to_record(alert)


async def mark_failed(
    db: AsyncSession,
    alert_id: str,
    comment: str,
) -> AlertRecord | None:
    """Move an alert to failed with the error recorded in the timeline.

    An alert a human already accepted or resolved keeps its status.
    """
    alert = await _get_alert_for_update(db, alert_id)
    if alert is None:
        return None

    if alert.status in TERMINAL_ALERT_STATUSES:
        await _append_change(db, alert, comment)
    else:
        await _transition(db, alert, AlertStatus.FAILED, comment)

    alert = await update_alert(db, alert)
    return to_record(alert)


async def add_timeline_entry(
    db: AsyncSession,
    alert_id: str,
    comment: str,
    actor: str = SYSTEM_ACTOR,
) -> bool:
    """Append a comment to the timeline without changing status.

    Returns:
        False if the alert no longer exists.
    """
    alert = await _get_alert_for_update(db, alert_id)
    if alert is None:
        return False

    await _append_change(db, alert, comment, actor=actor)
    await update_alert(db, alert)
    return True


async def acknowledge_alert(
    db: AsyncSession,
    alert_id: str,
    actor: str,
    comment: str | None = None,
) -> Alert:
    """Accept an alert on behalf of a responder.

    Any running escalation stops at its next liveness check.

    Raises:
        AlertNotFoundError: Unknown alert.
        AlertStateError: The alert is already accepted, resolved or failed.
    """
    alert = await _get_alert_for_update(db, alert_id)
    if alert is None:
        raise AlertNotFoundError(alert_id)
    if alert.status in TERMINAL_ALERT_STATUSES:
        raise AlertStateError(alert_id, alert.status, "acknowledge")

    await _transition(
        db,
        alert,
        AlertStatus.ACCEPTED,
        comment or f"Acknowledged by {actor}",
        actor=actor,
    )
    return await update_alert(db, alert)


async def resolve_alert(
    db: AsyncSession,
    alert_id: str,
    actor: str,
    comment: str | None = None,
) -> Alert:
    """Resolve an alert. Accepted alerts can still be resolved.

    Raises:
        AlertNotFoundError: Unknown alert.
        AlertStateError: The alert is already resolved or failed.
    """
    alert = await _get_alert_for_update(db, alert_id)
    if alert is None:
        raise AlertNotFoundError(alert_id)
    if alert.status in (AlertStatus.RESOLVED, AlertStatus.FAILED):
        raise AlertStateError(alert_id, alert.status, "resolve")

    alert.resolved_at = utc_now()
    await _transition(
        db,
        alert,
        AlertStatus.RESOLVED,
        comment or f"Resolved by {actor}",
        actor=actor,
    )
    return await update_alert(db, alert)
