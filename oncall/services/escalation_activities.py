"""Escalation activities and runtime wiring.

Activities are the side-effecting steps the escalation orchestrations
call through the runtime. Each one opens its own database session, so
a step's writes are committed before the runtime journals its result.
"""

import functools
from collections.abc import Iterable

from oncall.config import settings
from oncall.database import get_db_session
from oncall.durable.runtime import OrchestrationRuntime
from oncall.logging_config import get_logger
from oncall.schemas.alert import AlertRecord
from oncall.schemas.coverage import CoverageQuery, OnCallCoverage
from oncall.schemas.escalation import (
    AttemptRecord,
    NotificationOutcome,
    NotificationTarget,
    TimelineNote,
)
from oncall.schemas.notification import NotificationResult
from oncall.services import alert_service
from oncall.services.alert_orchestrator import (
    FAILED_COMMENT_PREFIX,
    alert_orchestrator,
)
from oncall.services.coverage import resolve_coverage
from oncall.services.escalation_engine import (
    ADD_TIMELINE_ENTRY,
    GET_ALERT,
    GET_ON_CALL_COVERAGE,
    MARK_ESCALATED,
    MARK_FAILED,
    RECORD_NOTIFICATION_RESULT,
    SEND_NOTIFICATION,
    UPDATE_ESCALATION_STATE,
)
from oncall.services.notification_dispatcher import (
    build_notification_request,
    dispatch_notification,
)

logger = get_logger(__name__)

ALERT_ORCHESTRATOR = "alert_orchestrator"

_runtime: OrchestrationRuntime | None = None


async def get_on_call_coverage(query: CoverageQuery) -> OnCallCoverage:
    async with get_db_session() as db:
        return await resolve_coverage(db, query.customer_id, query.as_of)


async def get_alert(alert_id: str) -> AlertRecord | None:
    async with get_db_session() as db:
        alert = await alert_service.get_alert(db, alert_id)
        return alert_service.to_record(alert) if alert else None


async def update_escalation_state(update: AttemptRecord) -> AlertRecord | None:
    async with get_db_session() as db:
        return await alert_service.update_escalation_state(
            db, update.alert_id, update.escalation_attempts, update.user_id
        )


async def send_notification(target: NotificationTarget) -> NotificationResult:
    request = build_notification_request(target.alert, target.member)
    return await dispatch_notification(request)


async def record_notification_result(outcome: NotificationOutcome) -> bool:
    async with get_db_session() as db:
        return await alert_service.record_notification_result(db, outcome)


async def mark_escalated(note: TimelineNote) -> AlertRecord | None:
    async with get_db_session() as db:
        return await alert_service.mark_escalated(db, note.alert_id, note.comment)


async def mark_failed(note: TimelineNote) -> AlertRecord | None:
    async with get_db_session() as db:
        return await alert_service.mark_failed(db, note.alert_id, note.comment)


async def add_timeline_entry(note: TimelineNote) -> bool:
    async with get_db_session() as db:
        return await alert_service.add_timeline_entry(db, note.alert_id, note.comment)


async def mark_run_failed(alert_id: str, error: str) -> None:
    """Leave the alert failed when its run died past the orchestrator's own handling."""
    async with get_db_session() as db:
        await alert_service.mark_failed(db, alert_id, f"{FAILED_COMMENT_PREFIX}{error}")


def register_escalation_workflows(
    runtime: OrchestrationRuntime,
    handled_statuses: Iterable[str] | None = None,
) -> OrchestrationRuntime:
    """Register the alert orchestrator and its activities on a runtime.

    Args:
        runtime: Runtime to register on.
        handled_statuses: Alert statuses that stop a run; defaults to
            the configured ESCALATION_HANDLED_STATUSES.

    Returns:
        The same runtime.
    """
    statuses = frozenset(
        status.lower()
        for status in (
            handled_statuses
            if handled_statuses is not None
            else settings.escalation_handled_statuses
        )
    )

    runtime.register_orchestrator(
        ALERT_ORCHESTRATOR,
        functools.partial(alert_orchestrator, handled_statuses=statuses),
        AlertRecord,
        on_failure=mark_run_failed,
    )

    runtime.register_activity(GET_ON_CALL_COVERAGE, get_on_call_coverage)
    runtime.register_activity(GET_ALERT, get_alert)
    runtime.register_activity(UPDATE_ESCALATION_STATE, update_escalation_state)
    runtime.register_activity(SEND_NOTIFICATION, send_notification)
    runtime.register_activity(RECORD_NOTIFICATION_RESULT, record_notification_result)
    runtime.register_activity(MARK_ESCALATED, mark_escalated)
    runtime.register_activity(MARK_FAILED, mark_failed)
    runtime.register_activity(ADD_TIMELINE_ENTRY, add_timeline_entry)

    logger.debug(
        "Registered escalation workflows",
        handled_statuses=sorted(statuses),
    )
    return runtime


def get_runtime() -> OrchestrationRuntime:
    """Get or create the process-wide runtime with workflows registered."""
    global _runtime
    if _runtime is None:
        _runtime = register_escalation_workflows(OrchestrationRuntime())
    return _runtime


def reset_runtime() -> None:
    """Drop the process-wide runtime so the next call builds a new one."""
    global _runtime
    _runtime = None


async def start_alert_escalation(
    runtime: OrchestrationRuntime,
    alert: AlertRecord,
) -> str:
    """Start an escalation run for an alert and begin executing it.

    Raises:
        InstanceAlreadyRunningError: The alert already has an active run.

    Returns:
        The orchestration instance id (the alert id).
    """
    instance_id = await runtime.start_new(ALERT_ORCHESTRATOR, alert.id, alert)
    runtime.dispatch(instance_id)
    logger.info("Alert escalation started", alert_id=alert.id, instance_id=instance_id)
    return instance_id
