"""On-call coverage resolver.

Answers who is primary and backup for a customer at an instant, and
which escalation policy applies, from the materialized schedule slices.
"""

from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from oncall.logging_config import get_logger
from oncall.models.roster import OnCallPlan, OnCallUser, ScheduleSlice, SliceRole
from oncall.schemas.coverage import EscalationPolicy, OnCallCoverage, OnCallMember

logger = get_logger(__name__)


def policy_from_plan(plan: OnCallPlan) -> EscalationPolicy:
    """Build the escalation policy a plan defines."""
    return EscalationPolicy(
        ack_timeout=timedelta(minutes=plan.ack_timeout_minutes),
        max_attempts_per_tier=plan.max_attempts_per_tier,
        retry_delay=timedelta(minutes=plan.retry_delay_minutes),
    )


async def get_active_slice(
    db: AsyncSession,
    customer_id: str,
    role: SliceRole,
    as_of: datetime,
) -> ScheduleSlice | None:
    """Get the slice covering an instant for one tier.

    Slices are half-open: start_utc <= as_of < end_utc. If several
    overlap, the most recently started one wins.
    """
    result = await db.execute(
        select(ScheduleSlice)
        .where(
            ScheduleSlice.customer_id == customer_id,
            ScheduleSlice.role == role,
            ScheduleSlice.start_utc <= as_of,
            ScheduleSlice.end_utc > as_of,
        )
        .order_by(ScheduleSlice.start_utc.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_members(db: AsyncSession, member_ids: list[str]) -> list[OnCallMember]:
    """Resolve user ids to members, keeping the given order.

    Unknown ids are skipped.
    """
    if not member_ids:
        return []

    result = await db.execute(select(OnCallUser).where(OnCallUser.id.in_(member_ids)))
    users = {user.id: user for user in result.scalars().all()}

    members = []
    for user_id in member_ids:
        user = users.get(user_id)
        if user is None:
            logger.warning("On-call member not found, skipping", user_id=user_id)
            continue
        members.append(
            OnCallMember(
                user_id=user.id,
                display_name=user.display_name,
                email=user.email,
                phone=user.phone,
            )
        )
    return members


async def resolve_coverage(
    db: AsyncSession,
    customer_id: str,
    as_of: datetime,
) -> OnCallCoverage:
    """Resolve the on-call coverage for a customer at an instant.

    A tier with no covering slice is empty. The policy comes from the
    plan of the primary slice, else the backup slice, else the system
    default.

    Args:
        db: Database session.
        customer_id: Customer whose alert is being escalated.
        as_of: Instant to resolve for (UTC).

    Returns:
        Primary and backup tiers with the applicable policy.
    """
    primary_slice = await get_active_slice(db, customer_id, SliceRole.PRIMARY, as_of)
    backup_slice = await get_active_slice(db, customer_id, SliceRole.BACKUP, as_of)

    primary_tier = await get_members(db, primary_slice.member_ids) if primary_slice else []
    backup_tier = await get_members(db, backup_slice.member_ids) if backup_slice else []

    plan_id = None
    for active in (primary_slice, backup_slice):
        if active is not None and active.plan_id:
            plan_id = active.plan_id
            break

    plan = await db.get(OnCallPlan, plan_id) if plan_id else None
    policy = policy_from_plan(plan) if plan else EscalationPolicy.default()

    logger.debug(
        "Resolved on-call coverage",
        customer_id=customer_id,
        as_of=as_of.isoformat(),
        primary_count=len(primary_tier),
        backup_count=len(backup_tier),
        plan_id=plan.id if plan else None,
    )

    return OnCallCoverage(
        primary_tier=primary_tier,
        backup_tier=backup_tier,
        policy=policy,
        plan_id=plan.id if plan else None,
    )
