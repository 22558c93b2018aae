"""Delivery activity log.

One row is written in the same transaction as every successful delivery
mutation, so the history of a record can be reconstructed after the fact.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from datetime import datetime  # noqa: TC003 - required at runtime for SQLAlchemy
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Index, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from locofit.db.models.base import (
    ActorRole,
    Base,
    DeliveryEventType,
    JSONDocument,
    UUIDPrimaryKey,
    enum_column,
    utcnow,
)


class DeliveryEvent(Base):
    """A single recorded mutation of a product delivery."""

    __tablename__ = "delivery_events"

    event_id: Mapped[UUIDPrimaryKey]

    delivery_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("product_deliveries.delivery_id", ondelete="RESTRICT"),
        nullable=False,
    )

    event_type: Mapped[DeliveryEventType] = mapped_column(
        enum_column(DeliveryEventType, "delivery_event_type"),
        nullable=False,
    )

    event_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    actor_role: Mapped[ActorRole] = mapped_column(
        enum_column(ActorRole, "actor_role"),
        nullable=False,
    )
    actor_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)

    # Transition details: previous/new status, method, proposed dates
    event_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
    )

    __table_args__ = (Index("ix_delivery_events_delivery_time", "delivery_id", "event_time"),)

    def __repr__(self) -> str:
        return (
            f"<DeliveryEvent(event_id={self.event_id}, "
            f"type={self.event_type.value if self.event_type else None})>"
        )
