# Durable execution runtime
from oncall.durable.context import OrchestrationContext, ReplaySafeLogger
from oncall.durable.errors import (
    ActivityFailedError,
    DurableExecutionError,
    InstanceAlreadyRunningError,
    InstanceNotFoundError,
    NonDeterministicOrchestrationError,
    OrchestrationSuspended,
    UnknownFunctionError,
)
from oncall.durable.journal import canonical_json, hash_payload
from oncall.durable.runtime import OrchestrationRuntime

__all__ = [
    "ActivityFailedError",
    "DurableExecutionError",
    "InstanceAlreadyRunningError",
    "InstanceNotFoundError",
    "NonDeterministicOrchestrationError",
    "OrchestrationContext",
    "OrchestrationRuntime",
    "OrchestrationSuspended",
    "ReplaySafeLogger",
    "UnknownFunctionError",
    "canonical_json",
    "hash_payload",
]
