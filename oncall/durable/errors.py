"""Durable execution errors."""

from datetime import datetime


class DurableExecutionError(Exception):
    """Base error for the orchestration runtime."""


class UnknownFunctionError(DurableExecutionError):
    """An orchestrator or activity name has no registration."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"No {kind} registered under '{name}'")


class ActivityFailedError(DurableExecutionError):
    """An activity raised. Replays of the same step raise it again."""

    def __init__(self, name: str, message: str):
        self.name = name
        self.message = message
        super().__init__(f"Activity '{name}' failed: {message}")


class NonDeterministicOrchestrationError(DurableExecutionError):
    """Replayed orchestration code diverged from its journal."""


class InstanceAlreadyRunningError(DurableExecutionError):
    """An active instance already exists for the id."""

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Orchestration instance '{instance_id}' is already running")


class InstanceNotFoundError(DurableExecutionError):
    """No instance exists for the id."""

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Orchestration instance '{instance_id}' not found")


class OrchestrationSuspended(BaseException):
    """Raised by a timer whose deadline has not passed yet.

    Derives from BaseException so `except Exception` blocks inside
    orchestrator code let it through to the runtime.
    """

    def __init__(self, fire_at: datetime):
        self.fire_at = fire_at
        super().__init__(f"Suspended until {fire_at.isoformat()}")
