# Business Logic Services
from oncall.services.alert_service import (
    AlertNotFoundError,
    AlertServiceError,
    AlertStateError,
    acknowledge_alert,
    get_alert,
    resolve_alert,
    update_alert,
)
from oncall.services.coverage import resolve_coverage
from oncall.services.notification_dispatcher import (
    NotificationDispatchError,
    dispatch_notification,
)
from oncall.services.schedule_horizon import ScheduleHorizonError, extend_horizon

__all__ = [
    "AlertNotFoundError",
    "AlertServiceError",
    "AlertStateError",
    "NotificationDispatchError",
    "ScheduleHorizonError",
    "acknowledge_alert",
    "dispatch_notification",
    "extend_horizon",
    "get_alert",
    "resolve_alert",
    "resolve_coverage",
    "update_alert",
]
