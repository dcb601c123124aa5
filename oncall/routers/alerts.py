"""Alerts router.

Manual escalation, out-of-band acknowledge/resolve actions, and alert
read-back with its timeline.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from oncall.config import settings
from oncall.database import get_db
from oncall.durable.errors import InstanceAlreadyRunningError
from oncall.durable.runtime import OrchestrationRuntime
from oncall.logging_config import get_logger
from oncall.models.alert import TERMINAL_ALERT_STATUSES
from oncall.schemas.alert import (
    AlertActionRequest,
    AlertDetailResponse,
    AlertRecord,
    EscalateResponse,
    TimelineEntry,
)
from oncall.services.alert_service import (
    AlertNotFoundError,
    AlertStateError,
    acknowledge_alert,
    get_alert,
    resolve_alert,
    to_record,
)
from oncall.services.escalation_activities import get_runtime, start_alert_escalation

logger = get_logger(__name__)

router = APIRouter(prefix="/api/alerts", tags=["alerts"])


@router.get("/{alert_id}", response_model=AlertDetailResponse)
async def get_alert_detail(
    alert_id: str,
    db: AsyncSession = Depends(get_db),
) -> AlertDetailResponse:
    """Get an alert with its full change timeline."""
    alert = await get_alert(db, alert_id)

    if alert is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Alert not found",
        )

    return AlertDetailResponse(
        **to_record(alert).model_dump(),
        timeline=[TimelineEntry.model_validate(change) for change in alert.changes],
    )


@router.post(
    "/{alert_id}/escalate",
    response_model=EscalateResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def escalate(
    alert_id: str,
    db: AsyncSession = Depends(get_db),
    runtime: OrchestrationRuntime = Depends(get_runtime),
) -> EscalateResponse:
    """Start an escalation run for an alert.

    Rejected when the alert is terminal or in a configured handled
    status, or when a run is in progress.
    """
    alert = await get_alert(db, alert_id)

    if alert is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Alert not found",
        )

    if (
        alert.status in TERMINAL_ALERT_STATUSES
        or alert.status.value in settings.escalation_handled_statuses
    ):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Alert is already {alert.status.value}",
        )

    try:
        instance_id = await start_alert_escalation(runtime, to_record(alert))
    except InstanceAlreadyRunningError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An escalation is already running for this alert",
        ) from None

    return EscalateResponse(alert_id=alert_id, instance_id=instance_id)


@router.post("/{alert_id}/acknowledge", response_model=AlertRecord)
async def acknowledge(
    alert_id: str,
    request: AlertActionRequest,
    db: AsyncSession = Depends(get_db),
) -> AlertRecord:
    """Accept an alert. A running escalation stops at its next check."""
    try:
        alert = await acknowledge_alert(db, alert_id, request.actor, request.comment)
    except AlertNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Alert not found",
        ) from None
    except AlertStateError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Alert is already {e.status.value}",
        ) from None

    return to_record(alert)


@router.post("/{alert_id}/resolve", response_model=AlertRecord)
async def resolve(
    alert_id: str,
    request: AlertActionRequest,
    db: AsyncSession = Depends(get_db),
) -> AlertRecord:
    """Resolve an alert."""
    try:
        alert = await resolve_alert(db, alert_id, request.actor, request.comment)
    except AlertNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Alert not found",
        ) from None
    except AlertStateError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Alert is already {e.status.value}",
        ) from None

    return to_record(alert)
