"""Base model definitions, mixins, and common types.

This module provides:
- SQLAlchemy declarative base with naming conventions
- Common column type annotations for UUIDs and timestamps
- Enum types used across multiple models
"""

import enum
import uuid
from datetime import UTC, datetime
from typing import Annotated

from sqlalchemy import JSON, DateTime, Enum, MetaData, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, mapped_column, registry

# Naming convention for constraints ensures consistent migration generation.
# See: https://alembic.sqlalchemy.org/en/latest/naming.html
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)

type_registry = registry()


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


# UUID primary key generated client-side so ids are known before flush
UUIDPrimaryKey = Annotated[
    uuid.UUID,
    mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4),
]

# UUID reference to an externally owned identity (not nullable by default)
UUIDReference = Annotated[uuid.UUID, mapped_column(Uuid(as_uuid=True), nullable=False)]

# Timestamp with timezone, defaults to now
TimestampTZ = Annotated[
    datetime,
    mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now()),
]

# Optional timestamp with timezone
OptionalTimestampTZ = Annotated[
    datetime | None,
    mapped_column(DateTime(timezone=True), nullable=True),
]

# JSONB on PostgreSQL, plain JSON elsewhere
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all locofit models."""

    metadata = metadata
    registry = type_registry


def enum_column(enum_cls: type[enum.Enum], name: str) -> Enum:
    """Build a SQL enum type persisted by member value."""
    return Enum(
        enum_cls,
        name=name,
        create_constraint=True,
        values_callable=lambda members: [member.value for member in members],
    )


# =============================================================================
# Common Enums
# =============================================================================


class DeliveryStatus(enum.Enum):
    """Fulfillment status of a product delivery.

    States:
        PENDING: Created from an order line item, nothing staged yet
        READY: Trainer staged the product for hand-off
        DELIVERED: Trainer handed the product over
        CONFIRMED: Client confirmed receipt (terminal)
        DISPUTED: Client reported an issue (terminal)
    """

    PENDING = "pending"
    READY = "ready"
    DELIVERED = "delivered"
    CONFIRMED = "confirmed"
    DISPUTED = "disputed"


class DeliveryMethod(enum.Enum):
    """How the product reaches the client."""

    IN_PERSON = "in_person"
    LOCKER = "locker"
    FRONT_DESK = "front_desk"
    SHIPPED = "shipped"


class RescheduleStatus(enum.Enum):
    """State of a client's reschedule request.

    Only PENDING is ever stored on a delivery row; approve and reject clear
    the request. APPROVED and REJECTED describe the outcome in results and
    in the activity log.
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ResolutionType(enum.Enum):
    """Manager decision recorded on a disputed delivery."""

    REFUND = "refund"
    REDELIVER = "redeliver"
    PARTIAL_REFUND = "partial_refund"
    CLOSED = "closed"


class ActorRole(enum.Enum):
    """Roles that may act on deliveries.

    Values:
        TRAINER: Owns the delivery obligation
        CLIENT: Receives the product
        ORDER_CREATOR: Checkout integration creating deliveries from orders
        MANAGER: Moderator resolving disputes and overseeing all deliveries
    """

    TRAINER = "trainer"
    CLIENT = "client"
    ORDER_CREATOR = "order_creator"
    MANAGER = "manager"


class DeliveryEventType(enum.Enum):
    """Activity log entries written alongside each delivery mutation."""

    CREATED = "created"
    SCHEDULED = "scheduled"
    MARKED_READY = "marked_ready"
    MARKED_DELIVERED = "marked_delivered"
    RECEIPT_CONFIRMED = "receipt_confirmed"
    ISSUE_REPORTED = "issue_reported"
    RESCHEDULE_REQUESTED = "reschedule_requested"
    RESCHEDULE_APPROVED = "reschedule_approved"
    RESCHEDULE_REJECTED = "reschedule_rejected"
    DISPUTE_RESOLVED = "dispute_resolved"
