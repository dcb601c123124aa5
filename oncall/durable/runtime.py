"""Orchestration runtime.

Starts, executes and resumes orchestration instances. Each execution
replays the orchestrator from the top against its journal; a timer that
has not fired unloads the instance (status suspended, wake_at set)
instead of holding a worker, and the scheduler tick picks it up again
once it is due.

At most one execution per instance id runs at a time: an in-process
lock registry rejects concurrent executions inside one worker, and a
lease row claimed by compare-and-set rejects them across workers.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from pydantic import TypeAdapter
from pydantic_core import to_jsonable_python
from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from oncall.config import settings
from oncall.database import get_session_maker
from oncall.durable.context import ActivityFn, OrchestrationContext
from oncall.durable.errors import (
    InstanceAlreadyRunningError,
    InstanceNotFoundError,
    NonDeterministicOrchestrationError,
    OrchestrationSuspended,
    UnknownFunctionError,
)
from oncall.durable.journal import load_history, purge_journal
from oncall.logging_config import get_logger, orchestration_id_ctx
from oncall.models.base import utc_now
from oncall.models.orchestration import (
    ACTIVE_ORCHESTRATION_STATUSES,
    OrchestrationInstance,
    OrchestrationStatus,
)

logger = get_logger(__name__)

OrchestratorFn = Callable[[OrchestrationContext, Any], Awaitable[Any]]
FailureHandler = Callable[[str, str], Awaitable[Any]]


@dataclass(frozen=True)
class _OrchestratorRegistration:
    fn: OrchestratorFn
    input_type: Any
    on_failure: FailureHandler | None = None


class OrchestrationRuntime:
    """Registry and executor for durable orchestrations."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
        clock: Callable[[], datetime] = utc_now,
        max_concurrent_runs: int | None = None,
        lease_seconds: int | None = None,
        worker_id: str | None = None,
        batch_size: int = 100,
    ):
        self._session_maker = session_maker
        self._clock = clock
        self._semaphore = asyncio.Semaphore(
            max_concurrent_runs or settings.orchestration_max_concurrent_runs
        )
        self._lease = timedelta(
            seconds=lease_seconds or settings.orchestration_lease_seconds
        )
        self.worker_id = worker_id or settings.orchestration_worker_id
        self._batch_size = batch_size
        self._orchestrators: dict[str, _OrchestratorRegistration] = {}
        self._activities: dict[str, ActivityFn] = {}
        self._instance_locks: dict[str, asyncio.Lock] = {}
        self._dispatched: set[asyncio.Task] = set()

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        # Resolved per call so a reset engine is picked up
        return self._session_maker or get_session_maker()

    def register_orchestrator(
        self,
        name: str,
        fn: OrchestratorFn,
        input_type: Any = Any,
        on_failure: FailureHandler | None = None,
    ) -> None:
        """Register an orchestrator function under a name.

        Args:
            name: Name used by start_new.
            fn: Async callable taking (ctx, input).
            input_type: Type the stored input is validated into.
            on_failure: Async callable taking (instance_id, error), awaited
                outside the journal whenever an instance ends failed.
        """
        self._orchestrators[name] = _OrchestratorRegistration(fn, input_type, on_failure)

    def register_activity(self, name: str, fn: ActivityFn) -> None:
        """Register an activity function under a name."""
        self._activities[name] = fn

    async def start_new(
        self,
        name: str,
        instance_id: str,
        input: Any = None,
    ) -> str:
        """Create a pending instance.

        A completed or failed instance with the same id is reset and
        started again; its journal is discarded.

        Raises:
            UnknownFunctionError: No orchestrator registered under name.
            InstanceAlreadyRunningError: The id has an active instance.

        Returns:
            The instance id.
        """
        if name not in self._orchestrators:
            raise UnknownFunctionError("orchestrator", name)

        payload = to_jsonable_python(input)
        now = self._clock()

        async with self._sessions()() as db:
            instance = await db.get(OrchestrationInstance, instance_id)

            if instance is not None:
                if instance.status in ACTIVE_ORCHESTRATION_STATUSES:
                    raise InstanceAlreadyRunningError(instance_id)

                purged = await purge_journal(db, instance_id)
                instance.name = name
                instance.status = OrchestrationStatus.PENDING
                instance.input = payload
                instance.output = None
                instance.error = None
                instance.wake_at = None
                instance.lease_owner = None
                instance.lease_expires_at = None
                instance.created_at = now
                logger.info(
                    "Restarting orchestration instance",
                    instance_id=instance_id,
                    orchestrator=name,
                    purged_steps=purged,
                )
            else:
                db.add(
                    OrchestrationInstance(
                        instance_id=instance_id,
                        name=name,
                        status=OrchestrationStatus.PENDING,
                        input=payload,
                        created_at=now,
                        updated_at=now,
                    )
                )

            try:
                await db.commit()
            except IntegrityError:
                # Another caller created the same id first
                await db.rollback()
                raise InstanceAlreadyRunningError(instance_id) from None

        logger.info(
            "Orchestration instance created",
            instance_id=instance_id,
            orchestrator=name,
        )
        return instance_id

    async def get_status(self, instance_id: str) -> OrchestrationInstance:
        """Get an instance row.

        Raises:
            InstanceNotFoundError: Unknown instance id.
        """
        async with self._sessions()() as db:
            instance = await db.get(OrchestrationInstance, instance_id)
            if instance is None:
                raise InstanceNotFoundError(instance_id)
            return instance

    async def execute(self, instance_id: str) -> OrchestrationStatus | None:
        """Replay an instance and advance it as far as it can go.

        Returns:
            The status the instance was left in, or None when it could
            not be claimed (already executing here or leased elsewhere).
        """
        async with self._semaphore:
            lock = self._instance_locks.setdefault(instance_id, asyncio.Lock())
            if lock.locked():
                logger.debug(
                    "Instance already executing in this worker",
                    instance_id=instance_id,
                )
                return None

            async with lock:
                try:
                    return await self._execute_claimed(instance_id)
                finally:
                    self._instance_locks.pop(instance_id, None)

    async def _acquire_lease(self, instance_id: str, now: datetime) -> bool:
        async with self._sessions()() as db:
            result = await db.execute(
                update(OrchestrationInstance)
                .where(
                    OrchestrationInstance.instance_id == instance_id,
                    OrchestrationInstance.status.in_(ACTIVE_ORCHESTRATION_STATUSES),
                    or_(
                        OrchestrationInstance.lease_owner.is_(None),
                        OrchestrationInstance.lease_expires_at < now,
                    ),
                )
                .values(
                    status=OrchestrationStatus.RUNNING,
                    lease_owner=self.worker_id,
                    lease_expires_at=now + self._lease,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount == 1

    async def _execute_claimed(self, instance_id: str) -> OrchestrationStatus | None:
        if not await self._acquire_lease(instance_id, self._clock()):
            logger.debug(
                "Instance lease not acquired",
                instance_id=instance_id,
                worker_id=self.worker_id,
            )
            return None

        token = orchestration_id_ctx.set(instance_id)
        try:
            async with self._sessions()() as db:
                instance = await db.get(OrchestrationInstance, instance_id)
                if instance is None:
                    raise InstanceNotFoundError(instance_id)

                try:
                    output = await self._run(db, instance)
                except OrchestrationSuspended as suspended:
                    instance.status = OrchestrationStatus.SUSPENDED
                    instance.wake_at = suspended.fire_at
                    logger.info(
                        "Orchestration suspended",
                        instance_id=instance_id,
                        wake_at=suspended.fire_at.isoformat(),
                    )
                except Exception as e:
                    await db.rollback()
                    instance = await db.get(OrchestrationInstance, instance_id)
                    instance.status = OrchestrationStatus.FAILED
                    instance.error = str(e) or type(e).__name__
                    instance.wake_at = None
                    logger.error(
                        "Orchestration failed",
                        instance_id=instance_id,
                        error=instance.error,
                        exc_info=True,
                    )
                else:
                    instance.status = OrchestrationStatus.COMPLETED
                    instance.output = to_jsonable_python(output)
                    instance.wake_at = None
                    logger.info(
                        "Orchestration completed",
                        instance_id=instance_id,
                    )

                instance.lease_owner = None
                instance.lease_expires_at = None
                await db.commit()
                status = instance.status

            if status == OrchestrationStatus.FAILED:
                await self._run_failure_handler(instance.name, instance_id, instance.error)
            return status
        finally:
            orchestration_id_ctx.reset(token)

    async def _run_failure_handler(
        self, name: str, instance_id: str, error: str | None
    ) -> None:
        registration = self._orchestrators.get(name)
        if registration is None or registration.on_failure is None:
            return

        try:
            await registration.on_failure(instance_id, error or "unknown error")
        except Exception as e:
            # The instance is already failed; the handler error is only logged
            logger.error(
                "Orchestration failure handler raised",
                instance_id=instance_id,
                error=str(e),
                exc_info=True,
            )

    async def _run(self, db: AsyncSession, instance: OrchestrationInstance) -> Any:
        registration = self._orchestrators.get(instance.name)
        if registration is None:
            raise UnknownFunctionError("orchestrator", instance.name)

        history = await load_history(db, instance.instance_id)
        ctx = OrchestrationContext(
            instance_id=instance.instance_id,
            db=db,
            history=history,
            activities=self._activities,
            start_time=instance.created_at,
            clock=self._clock,
        )
        data = TypeAdapter(registration.input_type).validate_python(instance.input)

        output = await registration.fn(ctx, data)

        if ctx.is_replaying:
            raise NonDeterministicOrchestrationError(
                f"Orchestration '{instance.instance_id}' finished after "
                f"{ctx.steps_consumed} of {len(history)} journaled steps"
            )
        return output

    async def due_instances(self) -> list[str]:
        """Ids of instances that are runnable now and not leased."""
        now = self._clock()
        lease_free = or_(
            OrchestrationInstance.lease_owner.is_(None),
            OrchestrationInstance.lease_expires_at < now,
        )

        async with self._sessions()() as db:
            result = await db.execute(
                select(OrchestrationInstance.instance_id)
                .where(
                    lease_free,
                    or_(
                        OrchestrationInstance.status == OrchestrationStatus.PENDING,
                        and_(
                            OrchestrationInstance.status
                            == OrchestrationStatus.SUSPENDED,
                            OrchestrationInstance.wake_at <= now,
                        ),
                        # Worker died mid-run; its lease has lapsed
                        OrchestrationInstance.status == OrchestrationStatus.RUNNING,
                    ),
                )
                .order_by(OrchestrationInstance.updated_at)
                .limit(self._batch_size)
            )
            return list(result.scalars().all())

    async def tick(self) -> int:
        """Execute every due instance, bounded by the worker semaphore.

        Returns:
            Number of instances picked up.
        """
        instance_ids = await self.due_instances()
        if not instance_ids:
            return 0

        results = await asyncio.gather(
            *(self.execute(instance_id) for instance_id in instance_ids),
            return_exceptions=True,
        )
        for instance_id, result in zip(instance_ids, results, strict=True):
            if isinstance(result, Exception):
                logger.error(
                    "Unexpected error executing orchestration",
                    instance_id=instance_id,
                    error=str(result),
                )

        return len(instance_ids)

    def dispatch(self, instance_id: str) -> asyncio.Task:
        """Execute an instance in the background without waiting for it."""
        task = asyncio.create_task(self.execute(instance_id))
        self._dispatched.add(task)
        task.add_done_callback(self._on_dispatched_done)
        return task

    def _on_dispatched_done(self, task: asyncio.Task) -> None:
        self._dispatched.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Dispatched orchestration raised",
                error=str(exc),
            )

    async def drain(self) -> None:
        """Wait for all dispatched executions to finish."""
        if self._dispatched:
            await asyncio.gather(*self._dispatched, return_exceptions=True)
