"""SQLAlchemy ORM models for locofit.

- base: Common metadata, column types, and enums
- deliveries: Product delivery records
- events: Delivery activity log
"""

from locofit.db.models.base import (
    ActorRole,
    Base,
    DeliveryEventType,
    DeliveryMethod,
    DeliveryStatus,
    RescheduleStatus,
    ResolutionType,
    metadata,
)
from locofit.db.models.deliveries import ProductDelivery
from locofit.db.models.events import DeliveryEvent

__all__ = [
    "ActorRole",
    "Base",
    "DeliveryEvent",
    "DeliveryEventType",
    "DeliveryMethod",
    "DeliveryStatus",
    "ProductDelivery",
    "RescheduleStatus",
    "ResolutionType",
    "metadata",
]
