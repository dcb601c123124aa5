"""Top-level alert orchestrator.

Entry point of an alert's escalation run: resolves who is on call at
the run's logical start time, exits early when nobody is, and otherwise
hands over to the escalation state machine. Any error leaves the alert
failed with the error in its timeline, never stuck mid-escalation.
"""

from collections.abc import Collection

from oncall.durable.context import OrchestrationContext
from oncall.durable.errors import NonDeterministicOrchestrationError
from oncall.schemas.alert import AlertRecord
from oncall.schemas.coverage import CoverageQuery, OnCallCoverage
from oncall.schemas.escalation import (
    EscalationInput,
    EscalationOutcome,
    EscalationResult,
    TimelineNote,
)
from oncall.services.escalation_engine import (
    GET_ON_CALL_COVERAGE,
    MARK_ESCALATED,
    MARK_FAILED,
    run_escalation,
)

NO_COVERAGE_COMMENT = "No on-call users configured - unable to send notifications"
FAILED_COMMENT_PREFIX = "Orchestration failed: "


async def alert_orchestrator(
    ctx: OrchestrationContext,
    alert: AlertRecord,
    *,
    handled_statuses: Collection[str],
) -> EscalationResult:
    """Run the on-call protocol for one alert.

    Args:
        ctx: Orchestration context.
        alert: Alert snapshot the run was started with.
        handled_statuses: Alert statuses that stop the run.

    Returns:
        How the run ended.
    """
    ctx.logger.info(
        "Processing alert",
        alert_id=alert.id,
        customer_id=alert.customer_id,
    )

    try:
        coverage = await ctx.call_activity(
            GET_ON_CALL_COVERAGE,
            CoverageQuery(customer_id=alert.customer_id, as_of=ctx.current_utc_datetime),
            result_type=OnCallCoverage,
        )

        if coverage.is_empty:
            ctx.logger.warning("No on-call users configured", alert_id=alert.id)
            await ctx.call_activity(
                MARK_ESCALATED,
                TimelineNote(alert_id=alert.id, comment=NO_COVERAGE_COMMENT),
                result_type=AlertRecord | None,
            )
            return EscalationResult(outcome=EscalationOutcome.NO_COVERAGE)

        result = await run_escalation(
            ctx,
            EscalationInput(
                alert=alert,
                primary_tier=coverage.primary_tier,
                backup_tier=coverage.backup_tier,
                policy=coverage.policy,
            ),
            handled_statuses,
        )
    except NonDeterministicOrchestrationError:
        # The journal no longer matches this code; the runtime fails the
        # instance and its failure handler fails the alert
        raise
    except Exception as e:
        ctx.logger.error(
            "Alert orchestration failed",
            alert_id=alert.id,
            error=str(e),
        )
        await ctx.call_activity(
            MARK_FAILED,
            TimelineNote(alert_id=alert.id, comment=f"{FAILED_COMMENT_PREFIX}{e}"),
            result_type=AlertRecord | None,
        )
        return EscalationResult(outcome=EscalationOutcome.FAILED)

    ctx.logger.info(
        "Alert escalation finished",
        alert_id=alert.id,
        outcome=result.outcome.value,
        attempts=result.attempts,
    )
    return result
