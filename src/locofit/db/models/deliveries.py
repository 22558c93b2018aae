"""Product delivery model: one fulfillment obligation per ordered line item."""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from datetime import date, datetime  # noqa: TC003 - required at runtime for SQLAlchemy

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from locofit.db.models.base import (
    Base,
    DeliveryMethod,
    DeliveryStatus,
    OptionalTimestampTZ,
    RescheduleStatus,
    ResolutionType,
    TimestampTZ,
    UUIDPrimaryKey,
    UUIDReference,
    enum_column,
    utcnow,
)


class ProductDelivery(Base):
    """Fulfillment record for one product line item of an order.

    Created in PENDING by the order-creation integration and advanced by the
    trainer and client through the delivery lifecycle. Rows are never
    deleted; terminal records are kept as an audit trail.
    """

    __tablename__ = "product_deliveries"

    delivery_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    # Back-references to the originating order (owned by the storefront)
    order_id: Mapped[UUIDReference]
    order_item_id: Mapped[UUIDReference]

    # The two parties allowed to act on this record
    trainer_id: Mapped[UUIDReference]
    client_id: Mapped[UUIDReference]

    product_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    status: Mapped[DeliveryStatus] = mapped_column(
        enum_column(DeliveryStatus, "delivery_status"),
        nullable=False,
        default=DeliveryStatus.PENDING,
    )

    scheduled_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    delivery_method: Mapped[DeliveryMethod | None] = mapped_column(
        enum_column(DeliveryMethod, "delivery_method"),
        nullable=True,
    )
    # Only meaningful for shipped deliveries
    tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    delivered_at: Mapped[OptionalTimestampTZ]
    confirmed_at: Mapped[OptionalTimestampTZ]

    trainer_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Reschedule negotiation, set only while a client request is open
    reschedule_status: Mapped[RescheduleStatus | None] = mapped_column(
        enum_column(RescheduleStatus, "reschedule_status"),
        nullable=True,
    )
    reschedule_requested_at: Mapped[OptionalTimestampTZ]
    reschedule_proposed_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    reschedule_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Manager resolution of a dispute
    resolved_at: Mapped[OptionalTimestampTZ]
    resolved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    resolution_type: Mapped[ResolutionType | None] = mapped_column(
        enum_column(ResolutionType, "resolution_type"),
        nullable=True,
    )
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="quantity_positive"),
        Index("ix_product_deliveries_trainer_status", "trainer_id", "status"),
        Index("ix_product_deliveries_client_status", "client_id", "status"),
        Index("ix_product_deliveries_trainer_reschedule", "trainer_id", "reschedule_status"),
        UniqueConstraint("order_id", "order_item_id", name="uq_product_deliveries_order_item"),
    )

    def __repr__(self) -> str:
        return (
            f"<ProductDelivery(delivery_id={self.delivery_id}, "
            f"status={self.status.value if self.status else None})>"
        )
