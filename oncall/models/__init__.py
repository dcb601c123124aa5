# Database Models
from oncall.models.alert import (
    TERMINAL_ALERT_STATUSES,
    Alert,
    AlertChange,
    AlertSeverity,
    AlertStatus,
)
from oncall.models.base import Base, TimestampMixin
from oncall.models.orchestration import (
    ACTIVE_ORCHESTRATION_STATUSES,
    JournalEntry,
    OrchestrationInstance,
    OrchestrationStatus,
    StepKind,
)
from oncall.models.roster import (
    CustomerPlanBinding,
    OnCallPlan,
    OnCallUser,
    ScheduleSlice,
    SliceRole,
)

__all__ = [
    "ACTIVE_ORCHESTRATION_STATUSES",
    "Alert",
    "AlertChange",
    "AlertSeverity",
    "AlertStatus",
    "Base",
    "CustomerPlanBinding",
    "JournalEntry",
    "OnCallPlan",
    "OnCallUser",
    "OrchestrationInstance",
    "OrchestrationStatus",
    "ScheduleSlice",
    "SliceRole",
    "StepKind",
    "TERMINAL_ALERT_STATUSES",
    "TimestampMixin",
]
