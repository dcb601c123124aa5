"""Schedule-horizon extender.

Keeps materialized schedule slices far enough ahead that the coverage
resolver never finds a gap just because future data was not generated
yet. Runs daily; every run is safe to repeat.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from oncall.config import settings
from oncall.database import get_session_maker
from oncall.logging_config import get_logger
from oncall.models.roster import CustomerPlanBinding, ScheduleSlice, SliceRole

logger = get_logger(__name__)

SliceGenerator = Callable[[CustomerPlanBinding, datetime, datetime], list[ScheduleSlice]]


class ScheduleHorizonError(Exception):
    """Schedule slices could not be extended for a customer."""

    pass


def start_of_day(moment: datetime) -> datetime:
    """Midnight UTC of the day containing moment."""
    moment = moment.astimezone(UTC)
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def generate_daily_slices(
    binding: CustomerPlanBinding,
    start: datetime,
    end: datetime,
) -> list[ScheduleSlice]:
    """Cover [start, end) with slices cut at UTC midnights.

    Each slice carries the binding's members for its tier. A tier with
    no members gets no slices.

    Args:
        binding: Customer plan binding providing the tier members.
        start: First instant to cover.
        end: First instant not covered.

    Returns:
        New, unsaved slices in start order.
    """
    tiers = [
        (SliceRole.PRIMARY, list(binding.primary_member_ids or [])),
        (SliceRole.BACKUP, list(binding.backup_member_ids or [])),
    ]

    slices = []
    cursor = start
    while cursor < end:
        boundary = min(start_of_day(cursor) + timedelta(days=1), end)
        for role, member_ids in tiers:
            if not member_ids:
                continue
            slices.append(
                ScheduleSlice(
                    customer_id=binding.customer_id,
                    plan_id=binding.plan_id,
                    role=role,
                    member_ids=member_ids,
                    start_utc=cursor,
                    end_utc=boundary,
                )
            )
        cursor = boundary

    return slices


async def get_latest_slice_end(db: AsyncSession, customer_id: str) -> datetime | None:
    """End of the furthest-reaching slice of a customer, if any."""
    result = await db.execute(
        select(func.max(ScheduleSlice.end_utc)).where(
            ScheduleSlice.customer_id == customer_id
        )
    )
    latest = result.scalar_one_or_none()
    if latest is not None and latest.tzinfo is None:
        # Aggregates bypass the column type on some backends
        latest = latest.replace(tzinfo=UTC)
    return latest


async def extend_horizon(
    db: AsyncSession,
    customer_id: str,
    from_utc: datetime,
    to_utc: datetime,
    generator: SliceGenerator = generate_daily_slices,
) -> int:
    """Generate slices so a customer is covered up to to_utc.

    Generation starts at the later of from_utc and the end of the
    latest existing slice. Slices whose (role, start) already exist are
    skipped, so re-running for a covered range changes nothing.

    Args:
        db: Database session.
        customer_id: Customer to extend.
        from_utc: Earliest instant to generate from.
        to_utc: Horizon to reach.
        generator: Builds slices for a binding over a range.

    Returns:
        Number of slices created.

    Raises:
        ScheduleHorizonError: Invalid range or no plan binding.
    """
    if to_utc <= from_utc:
        raise ScheduleHorizonError(
            f"Horizon end {to_utc.isoformat()} is not after start {from_utc.isoformat()}"
        )

    binding = await db.get(CustomerPlanBinding, customer_id)
    if binding is None:
        raise ScheduleHorizonError(f"No on-call plan bound to customer '{customer_id}'")

    latest_end = await get_latest_slice_end(db, customer_id)
    start = max(from_utc, latest_end) if latest_end else from_utc
    if start >= to_utc:
        logger.debug(
            "Schedule already covers horizon",
            customer_id=customer_id,
            horizon=to_utc.isoformat(),
        )
        return 0

    result = await db.execute(
        select(ScheduleSlice.role, ScheduleSlice.start_utc).where(
            ScheduleSlice.customer_id == customer_id,
            ScheduleSlice.start_utc >= start,
            ScheduleSlice.start_utc < to_utc,
        )
    )
    existing = {(role, slice_start) for role, slice_start in result.all()}

    new_slices = [
        candidate
        for candidate in generator(binding, start, to_utc)
        if (candidate.role, candidate.start_utc) not in existing
    ]
    if not new_slices:
        return 0

    db.add_all(new_slices)
    await db.commit()

    logger.info(
        "Extended on-call schedule",
        customer_id=customer_id,
        start=start.isoformat(),
        horizon=to_utc.isoformat(),
        slices_created=len(new_slices),
    )
    return len(new_slices)


async def extend_all_customers(
    now: datetime | None = None,
    horizon_days: int | None = None,
) -> dict[str, int]:
    """Extend every bound customer's schedule to the configured horizon.

    Each customer gets its own session so one failure does not stop
    the others.

    Returns:
        Counts of extended, skipped and failed customers.
    """
    today = start_of_day(now or datetime.now(UTC))
    horizon = today + timedelta(days=horizon_days or settings.schedule_horizon_days)

    logger.info("Starting daily schedule extension", horizon=horizon.isoformat())

    async with get_session_maker()() as db:
        result = await db.execute(
            select(CustomerPlanBinding.customer_id).order_by(
                CustomerPlanBinding.customer_id
            )
        )
        customer_ids = list(result.scalars().all())

    extended_count = 0
    skipped_count = 0
    error_count = 0

    for customer_id in customer_ids:
        try:
            async with get_session_maker()() as customer_db:
                created = await extend_horizon(customer_db, customer_id, today, horizon)
            if created:
                extended_count += 1
            else:
                skipped_count += 1

        except ScheduleHorizonError as e:
            logger.warning(
                "Schedule extension failed for customer",
                customer_id=customer_id,
                error=str(e),
            )
            error_count += 1

        except Exception as e:
            logger.error(
                "Unexpected error extending schedule",
                customer_id=customer_id,
                error=str(e),
            )
            error_count += 1

    logger.info(
        "Schedule extension completed",
        extended_count=extended_count,
        skipped_count=skipped_count,
        error_count=error_count,
    )

    return {
        "extended": extended_count,
        "skipped": skipped_count,
        "errors": error_count,
    }
