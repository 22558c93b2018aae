"""locofit services.

Business logic for product delivery fulfillment:
- lifecycle: delivery state machine and reschedule negotiation
- authz: role and ownership gate
- queries: caller-scoped listings and statistics
- notifications: best-effort party notification
- alerts: upcoming-delivery alerts for the trainer dashboard
"""

from locofit.services.alerts import DeliveryAlertRegistry, select_upcoming
from locofit.services.authz import (
    OPERATION_ROLES,
    Actor,
    AuthorizationGate,
    DeliveryOperation,
)
from locofit.services.errors import (
    AuthorizationError,
    DeliveryError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from locofit.services.lifecycle import (
    DeliveryLifecycleService,
    OrderLineItem,
    TransitionResult,
    delivery_method_for_fulfillment,
)
from locofit.services.notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    NotificationError,
    WebhookNotificationDispatcher,
    build_notification_dispatcher,
)
from locofit.services.queries import DeliveryQueryService, DeliveryStats

__all__ = [
    "OPERATION_ROLES",
    "Actor",
    "AuthorizationError",
    "AuthorizationGate",
    "DeliveryAlertRegistry",
    "DeliveryError",
    "DeliveryLifecycleService",
    "DeliveryOperation",
    "DeliveryQueryService",
    "DeliveryStats",
    "LoggingNotificationDispatcher",
    "NotFoundError",
    "NotificationDispatcher",
    "NotificationError",
    "OrderLineItem",
    "StateConflictError",
    "TransitionResult",
    "ValidationError",
    "WebhookNotificationDispatcher",
    "build_notification_dispatcher",
    "delivery_method_for_fulfillment",
    "select_upcoming",
]
