"""Replay-safe orchestration context.

Orchestrator code is re-run from the top every time its instance is
executed. The context intercepts each side-effecting step: steps already
in the journal return their recorded outcome, and only steps past the
end of the journal are performed live and recorded.
"""

import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

from pydantic import TypeAdapter
from sqlalchemy.ext.asyncio import AsyncSession

from oncall.durable.errors import (
    ActivityFailedError,
    NonDeterministicOrchestrationError,
    OrchestrationSuspended,
    UnknownFunctionError,
)
from oncall.durable.journal import append_entry, hash_payload
from oncall.logging_config import StructuredLogger, get_logger
from oncall.models.orchestration import JournalEntry, StepKind

ActivityFn = Callable[[Any], Awaitable[Any]]

TIMER_STEP_NAME = "timer"
NEW_UUID_STEP_NAME = "new_uuid"

_datetime_adapter = TypeAdapter(datetime)


class ReplaySafeLogger:
    """Logger that stays silent while the orchestration is replaying."""

    def __init__(self, ctx: "OrchestrationContext", logger: StructuredLogger):
        self._ctx = ctx
        self._logger = logger

    def debug(self, msg: str, **extra_fields: Any) -> None:
        if not self._ctx.is_replaying:
            self._logger.debug(msg, **extra_fields)

    def info(self, msg: str, **extra_fields: Any) -> None:
        if not self._ctx.is_replaying:
            self._logger.info(msg, **extra_fields)

    def warning(self, msg: str, **extra_fields: Any) -> None:
        if not self._ctx.is_replaying:
            self._logger.warning(msg, **extra_fields)

    def error(self, msg: str, **extra_fields: Any) -> None:
        if not self._ctx.is_replaying:
            self._logger.error(msg, **extra_fields)


class OrchestrationContext:
    """Deterministic view of the world handed to orchestrator functions.

    Orchestrators must obtain time, identifiers and every side effect
    through this object; reading the system clock or doing I/O directly
    breaks replay.
    """

    def __init__(
        self,
        *,
        instance_id: str,
        db: AsyncSession,
        history: list[JournalEntry],
        activities: dict[str, ActivityFn],
        start_time: datetime,
        clock: Callable[[], datetime],
        logger_name: str = "oncall.orchestration",
    ):
        self.instance_id = instance_id
        self._db = db
        self._history = history
        self._activities = activities
        self._clock = clock
        self._cursor = 0
        self._current_time = start_time
        self.logger = ReplaySafeLogger(self, get_logger(logger_name))

    @property
    def is_replaying(self) -> bool:
        """True while steps are being served from the journal."""
        return self._cursor < len(self._history)

    @property
    def current_utc_datetime(self) -> datetime:
        """Logical clock.

        The instance creation time, advanced to the recorded time of
        each step as it is replayed or performed. A fired timer moves it
        to the timer deadline.
        """
        return self._current_time

    @property
    def steps_consumed(self) -> int:
        return self._cursor

    def _next_recorded(
        self, kind: StepKind, name: str, input_hash: str
    ) -> JournalEntry | None:
        if not self.is_replaying:
            return None

        entry = self._history[self._cursor]
        if entry.step_kind != kind or entry.name != name:
            raise NonDeterministicOrchestrationError(
                f"Step {entry.step_index} of '{self.instance_id}' was recorded as "
                f"{entry.step_kind.value} '{entry.name}' but replay requested "
                f"{kind.value} '{name}'"
            )
        if entry.input_hash != input_hash:
            raise NonDeterministicOrchestrationError(
                f"Step {entry.step_index} of '{self.instance_id}' ({kind.value} "
                f"'{name}') was replayed with a different input"
            )

        self._cursor += 1
        self._current_time = entry.recorded_at
        return entry

    async def _record(
        self,
        kind: StepKind,
        name: str,
        input: Any,
        result: Any = None,
        error: str | None = None,
    ) -> JournalEntry:
        entry = await append_entry(
            self._db,
            instance_id=self.instance_id,
            step_index=len(self._history),
            step_kind=kind,
            name=name,
            input=input,
            result=result,
            error=error,
            recorded_at=self._clock(),
        )
        self._history.append(entry)
        self._cursor = len(self._history)
        self._current_time = entry.recorded_at
        return entry

    async def call_activity(
        self,
        name: str,
        input: Any = None,
        *,
        result_type: Any = Any,
    ) -> Any:
        """Run an activity at most once per journal step.

        Args:
            name: Registered activity name.
            input: JSON-serializable activity input.
            result_type: Type the (journaled) result is validated into.

        Returns:
            The activity result, identical whether performed live or replayed.

        Raises:
            ActivityFailedError: The activity raised, now or when first run.
            NonDeterministicOrchestrationError: The call does not match
                the journaled step at this position.
        """
        adapter = TypeAdapter(result_type)
        input_hash = hash_payload(input)

        recorded = self._next_recorded(StepKind.ACTIVITY, name, input_hash)
        if recorded is not None:
            if recorded.error is not None:
                raise ActivityFailedError(name, recorded.error)
            return adapter.validate_python(recorded.result)

        activity = self._activities.get(name)
        if activity is None:
            raise UnknownFunctionError("activity", name)

        try:
            result = await activity(input)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            self.logger.warning(
                "Activity failed",
                activity=name,
                error=message,
            )
            await self._record(StepKind.ACTIVITY, name, input, error=message)
            raise ActivityFailedError(name, message) from exc

        entry = await self._record(StepKind.ACTIVITY, name, input, result=result)
        return adapter.validate_python(entry.result)

    async def create_timer(self, fire_at: datetime) -> None:
        """Durably wait until an absolute deadline.

        The deadline is journaled the first time the timer is reached.
        Later executions keep waiting for that same deadline, so a
        restart never extends the wait.

        Raises:
            OrchestrationSuspended: The deadline has not passed yet.
        """
        input = {"fire_at": fire_at}
        recorded = self._next_recorded(
            StepKind.TIMER, TIMER_STEP_NAME, hash_payload(input)
        )
        if recorded is None:
            recorded = await self._record(StepKind.TIMER, TIMER_STEP_NAME, input)
            self.logger.debug("Timer created", fire_at=fire_at.isoformat())

        deadline = _datetime_adapter.validate_python(recorded.input["fire_at"])

        # Steps recorded after the timer prove it already fired
        if self.is_replaying or self._clock() >= deadline:
            self._current_time = deadline
            return

        raise OrchestrationSuspended(deadline)

    async def delay(self, duration: timedelta) -> None:
        """Durably wait for a duration measured on the logical clock."""
        await self.create_timer(self.current_utc_datetime + duration)

    async def new_uuid(self) -> str:
        """Identifier generated once and replayed thereafter."""
        recorded = self._next_recorded(
            StepKind.NEW_UUID, NEW_UUID_STEP_NAME, hash_payload(None)
        )
        if recorded is None:
            recorded = await self._record(
                StepKind.NEW_UUID, NEW_UUID_STEP_NAME, None, result=uuid.uuid4().hex
            )
        return recorded.result
