"""Background job scheduler.

APScheduler-based scheduler that drives due orchestration instances and
the daily schedule-horizon extension.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from oncall.config import settings
from oncall.logging_config import get_logger
from oncall.services.escalation_activities import get_runtime
from oncall.services.schedule_horizon import extend_all_customers

logger = get_logger(__name__)

# Global scheduler instance
scheduler: AsyncIOScheduler | None = None


async def run_due_orchestrations() -> None:
    """Execute orchestration instances that are pending or due to wake.

    Suspended instances whose ack wait has elapsed resume here, including
    ones left behind by a previous process.
    """
    try:
        picked_up = await get_runtime().tick()
        if picked_up > 0:
            logger.info("Executed due orchestrations", count=picked_up)
    except Exception as e:
        logger.error("Unexpected error running due orchestrations", error=str(e))


async def extend_schedules() -> None:
    """Extend on-call schedules for all customers to the horizon."""
    try:
        await extend_all_customers()
    except Exception as e:
        logger.error("Unexpected error extending schedules", error=str(e))


def start_scheduler() -> AsyncIOScheduler:
    """Start the background job scheduler.

    Returns:
        The started scheduler instance
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already running")
        return scheduler

    scheduler = AsyncIOScheduler(timezone="UTC")

    if settings.orchestration_enabled:
        scheduler.add_job(
            run_due_orchestrations,
            trigger=IntervalTrigger(
                seconds=settings.orchestration_poll_interval_seconds
            ),
            id="orchestration_tick",
            name="Due Orchestration Runner",
            replace_existing=True,
            max_instances=1,
        )
        logger.info(
            "Scheduled orchestration runner job",
            interval_seconds=settings.orchestration_poll_interval_seconds,
        )

    if settings.schedule_extension_enabled:
        scheduler.add_job(
            extend_schedules,
            trigger=CronTrigger(
                hour=settings.schedule_extension_hour_utc, minute=0, timezone="UTC"
            ),
            id="schedule_extension",
            name="On-Call Schedule Extension",
            replace_existing=True,
            max_instances=1,
        )
        logger.info(
            "Scheduled schedule extension job",
            hour_utc=settings.schedule_extension_hour_utc,
            horizon_days=settings.schedule_horizon_days,
        )

    scheduler.start()
    logger.info("Background scheduler started")

    return scheduler


def stop_scheduler() -> None:
    """Stop the background job scheduler."""
    global scheduler

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        scheduler = None
        logger.info("Background scheduler stopped")


def get_scheduler() -> AsyncIOScheduler | None:
    """Get the current scheduler instance.

    Returns:
        The scheduler instance or None if not started
    """
    return scheduler


@asynccontextmanager
async def scheduler_lifespan() -> AsyncGenerator[None, None]:
    """Async context manager for scheduler lifecycle.

    Use this in FastAPI lifespan to manage scheduler start/stop.
    """
    start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()
