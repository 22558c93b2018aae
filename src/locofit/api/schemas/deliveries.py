"""Pydantic schemas for delivery API endpoints.

Request bodies accept loosely typed values (dates and enum values as plain
strings) so that the delivery services produce the user-facing validation
messages rather than generic 422 responses.
"""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from locofit.db.models.base import (
    DeliveryMethod,
    DeliveryStatus,
    RescheduleStatus,
    ResolutionType,
)

# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class MarkDeliveredRequest(BaseModel):
    """Trainer hands the product over."""

    method: str | None = Field(
        default=None,
        description="One of in_person, locker, front_desk, shipped",
    )
    notes: str | None = Field(default=None, max_length=2000)
    tracking_number: str | None = Field(
        default=None,
        max_length=100,
        description="Stored only for shipped deliveries",
    )


class ConfirmReceiptRequest(BaseModel):
    """Client confirms the product arrived."""

    notes: str | None = Field(default=None, max_length=2000)


class ReportIssueRequest(BaseModel):
    """Client reports a problem with a delivered product."""

    notes: str = Field(default="", max_length=2000, description="At least 10 characters")


class RescheduleRequest(BaseModel):
    """Client proposes a new delivery date."""

    proposed_date: str | None = Field(default=None, description="YYYY-MM-DD, today or later")
    reason: str | None = Field(default=None, max_length=1000, description="At least 5 characters")


class RejectRescheduleRequest(BaseModel):
    """Trainer declines a proposed date."""

    note: str | None = Field(default=None, max_length=1000)


class ScheduleRequest(BaseModel):
    """Trainer sets the planned delivery date."""

    scheduled_date: str | None = Field(default=None, description="YYYY-MM-DD, today or later")


class ResolveDisputeRequest(BaseModel):
    """Manager records the outcome of a dispute."""

    resolution_type: str | None = Field(
        default=None,
        description="One of refund, redeliver, partial_refund, closed",
    )
    notes: str | None = Field(default=None, max_length=2000)


class OrderLineItemRequest(BaseModel):
    """One ordered product."""

    order_item_id: UUID
    product_name: str = Field(max_length=255)
    quantity: int
    product_id: UUID | None = None
    fulfillment: str | None = Field(
        default=None,
        description=(
            "Storefront fulfillment option (home_ship, trainer_delivery, vending, cafeteria)"
        ),
    )


class CreateDeliveriesRequest(BaseModel):
    """Order-creation integration registers the deliveries of a placed order."""

    trainer_id: UUID
    client_id: UUID
    items: list[OrderLineItemRequest]
    scheduled_date: date | None = None
    delivery_method: DeliveryMethod | None = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class DeliveryResponse(BaseModel):
    """A product delivery as seen by its trainer, client or a manager."""

    model_config = ConfigDict(from_attributes=True)

    delivery_id: UUID
    order_id: UUID
    order_item_id: UUID
    trainer_id: UUID
    client_id: UUID
    product_id: UUID | None = None
    product_name: str
    quantity: int
    status: DeliveryStatus
    scheduled_date: date | None = None
    delivery_method: DeliveryMethod | None = None
    tracking_number: str | None = None
    delivered_at: datetime | None = None
    confirmed_at: datetime | None = None
    trainer_notes: str | None = None
    client_notes: str | None = None
    dispute_reason: str | None = None
    reschedule_status: RescheduleStatus | None = None
    reschedule_requested_at: datetime | None = None
    reschedule_proposed_date: date | None = None
    reschedule_reason: str | None = None
    resolved_at: datetime | None = None
    resolution_type: ResolutionType | None = None
    resolution_notes: str | None = None
    created_at: datetime
    updated_at: datetime


class TransitionResponse(BaseModel):
    """Outcome of a delivery mutation."""

    delivery: DeliveryResponse
    previous_status: DeliveryStatus
    new_status: DeliveryStatus
    reschedule_outcome: RescheduleStatus | None = None
    event_id: UUID


class DeliveryListResponse(BaseModel):
    """A page of deliveries."""

    items: list[DeliveryResponse]
    count: int


class DeliveryStatsResponse(BaseModel):
    """Per-status delivery counts for a trainer."""

    total: int
    pending: int
    ready: int
    delivered: int
    confirmed: int
    disputed: int


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    message: str
    request_id: str | None = None
    detail: dict | None = None
