"""Escalation state machine.

Pages the primary tier, then the backup tier, one member at a time.
Before every page the alert is re-read; a human acknowledging or
resolving it out of band stops the run. A page that reached the member
on at least one channel is followed by a durable wait of the policy's
ack timeout. A page that reached nobody moves straight on to the next
member.

This module is orchestration code: it runs under replay, so all I/O
goes through `ctx.call_activity` and all waiting through `ctx.delay`.
"""

import enum
from collections.abc import Collection

from oncall.durable.context import OrchestrationContext
from oncall.schemas.alert import AlertRecord
from oncall.schemas.coverage import EscalationPolicy, OnCallMember
from oncall.schemas.escalation import (
    AttemptRecord,
    EscalationInput,
    EscalationOutcome,
    EscalationResult,
    NotificationOutcome,
    NotificationTarget,
    TimelineNote,
)
from oncall.schemas.notification import NotificationResult

# Activity names
GET_ALERT = "get_alert"
GET_ON_CALL_COVERAGE = "get_on_call_coverage"
UPDATE_ESCALATION_STATE = "update_escalation_state"
SEND_NOTIFICATION = "send_notification"
RECORD_NOTIFICATION_RESULT = "record_notification_result"
MARK_ESCALATED = "mark_escalated"
MARK_FAILED = "mark_failed"
ADD_TIMELINE_ENTRY = "add_timeline_entry"

PRIMARY_NO_RESPONSE_COMMENT = "Primary on-call did not respond. Escalating to backup."
NO_PRIMARY_COMMENT = "No primary on-call available. Escalating to backup."


class EscalationTier(str, enum.Enum):
    """Escalation tiers, in the order they are paged."""

    PRIMARY = "primary"
    BACKUP = "backup"


class EscalationState(str, enum.Enum):
    """States of an escalation run."""

    NOTIFYING_TIER = "notifying_tier"
    WAITING_ACK = "waiting_ack"
    ADVANCE_TIER = "advance_tier"
    HANDLED_EXTERNALLY = "handled_externally"
    EXHAUSTED = "exhausted"


def members_for_attempts(
    members: list[OnCallMember],
    max_attempts: int,
) -> list[OnCallMember]:
    """Members actually paged in a tier: the first max_attempts, in order."""
    return members[: max(max_attempts, 0)]


def exhausted_comment(attempts: int) -> str:
    return f"All {attempts} notification attempts completed without response"


async def is_alert_handled(
    ctx: OrchestrationContext,
    alert_id: str,
    handled_statuses: Collection[str],
) -> bool:
    """Liveness check: re-read the alert and decide whether to stop.

    Returns:
        True if the alert no longer exists or is in a handled status.
    """
    alert = await ctx.call_activity(
        GET_ALERT, alert_id, result_type=AlertRecord | None
    )

    if alert is None:
        ctx.logger.warning(
            "Alert no longer exists, stopping escalation", alert_id=alert_id
        )
        return True

    if alert.status.value in handled_statuses:
        ctx.logger.info(
            "Alert handled, stopping escalation",
            alert_id=alert_id,
            status=alert.status.value,
        )
        return True

    return False


async def notify_member(
    ctx: OrchestrationContext,
    alert: AlertRecord,
    member: OnCallMember,
    tier: EscalationTier,
    attempt: int,
    policy: EscalationPolicy,
) -> bool:
    """Page one member and wait for an acknowledgment if they were reached.

    Args:
        ctx: Orchestration context.
        alert: Alert being escalated.
        member: Member to page.
        tier: Tier the member belongs to.
        attempt: Attempt number within this run, starting at 1.
        policy: Escalation policy in force.

    Returns:
        False if the alert disappeared before the page could be sent.
    """
    ctx.logger.info(
        "Notifying on-call member",
        alert_id=alert.id,
        tier=tier.value,
        user_id=member.user_id,
        attempt=attempt,
    )

    updated = await ctx.call_activity(
        UPDATE_ESCALATION_STATE,
        AttemptRecord(
            alert_id=alert.id,
            escalation_attempts=alert.escalation_attempts + attempt,
            user_id=member.user_id,
        ),
        result_type=AlertRecord | None,
    )
    if updated is None:
        return False

    result = await ctx.call_activity(
        SEND_NOTIFICATION,
        NotificationTarget(alert=updated, member=member, attempt=attempt),
        result_type=NotificationResult,
    )

    await ctx.call_activity(
        RECORD_NOTIFICATION_RESULT,
        NotificationOutcome(
            alert_id=alert.id,
            member=member,
            attempt=attempt,
            tier=tier.value,
            result=result,
        ),
        result_type=bool,
    )

    if result.delivered:
        ctx.logger.info(
            "Waiting for acknowledgment",
            alert_id=alert.id,
            state=EscalationState.WAITING_ACK.value,
            ack_timeout_seconds=policy.ack_timeout.total_seconds(),
        )
        await ctx.delay(policy.ack_timeout)
    else:
        ctx.logger.warning(
            "Member not reached on any channel, skipping ack wait",
            alert_id=alert.id,
            user_id=member.user_id,
        )

    return True


async def run_escalation(
    ctx: OrchestrationContext,
    data: EscalationInput,
    handled_statuses: Collection[str],
) -> EscalationResult:
    """Drive an alert through the primary and backup tiers.

    Args:
        ctx: Orchestration context.
        data: Alert, tiers and policy.
        handled_statuses: Alert statuses that stop the run.

    Returns:
        The outcome and the number of notification attempts issued.
    """
    alert = data.alert
    policy = data.policy
    cap = policy.max_attempts_per_tier
    tiers = [
        (EscalationTier.PRIMARY, members_for_attempts(data.primary_tier, cap)),
        (EscalationTier.BACKUP, members_for_attempts(data.backup_tier, cap)),
    ]
    primary_paged = bool(tiers[0][1])
    attempt = 0

    ctx.logger.info(
        "Starting escalation",
        alert_id=alert.id,
        primary_count=len(tiers[0][1]),
        backup_count=len(tiers[1][1]),
    )

    for tier, members in tiers:
        if not members:
            ctx.logger.info("Skipping empty tier", alert_id=alert.id, tier=tier.value)
            continue

        if tier is EscalationTier.BACKUP:
            if await is_alert_handled(ctx, alert.id, handled_statuses):
                return EscalationResult(
                    outcome=EscalationOutcome.HANDLED_EXTERNALLY, attempts=attempt
                )

            ctx.logger.info(
                "Escalating to backup tier",
                alert_id=alert.id,
                state=EscalationState.ADVANCE_TIER.value,
            )
            comment = PRIMARY_NO_RESPONSE_COMMENT if primary_paged else NO_PRIMARY_COMMENT
            await ctx.call_activity(
                MARK_ESCALATED,
                TimelineNote(alert_id=alert.id, comment=comment),
                result_type=AlertRecord | None,
            )

        for member in members:
            if await is_alert_handled(ctx, alert.id, handled_statuses):
                return EscalationResult(
                    outcome=EscalationOutcome.HANDLED_EXTERNALLY, attempts=attempt
                )

            sent = await notify_member(ctx, alert, member, tier, attempt + 1, policy)
            if not sent:
                return EscalationResult(
                    outcome=EscalationOutcome.HANDLED_EXTERNALLY, attempts=attempt
                )
            attempt += 1

    if await is_alert_handled(ctx, alert.id, handled_statuses):
        return EscalationResult(
            outcome=EscalationOutcome.HANDLED_EXTERNALLY, attempts=attempt
        )

    ctx.logger.warning(
        "All notification attempts exhausted",
        alert_id=alert.id,
        attempts=attempt,
        state=EscalationState.EXHAUSTED.value,
    )
    await ctx.call_activity(
        ADD_TIMELINE_ENTRY,
        TimelineNote(alert_id=alert.id, comment=exhausted_comment(attempt)),
        result_type=bool,
    )

    return EscalationResult(outcome=EscalationOutcome.EXHAUSTED, attempts=attempt)
