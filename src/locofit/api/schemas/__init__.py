"""Request and response schemas for the locofit API."""

from locofit.api.schemas.deliveries import (
    ConfirmReceiptRequest,
    CreateDeliveriesRequest,
    DeliveryListResponse,
    DeliveryResponse,
    DeliveryStatsResponse,
    ErrorResponse,
    MarkDeliveredRequest,
    OrderLineItemRequest,
    RejectRescheduleRequest,
    ReportIssueRequest,
    RescheduleRequest,
    ResolveDisputeRequest,
    ScheduleRequest,
    TransitionResponse,
)

__all__ = [
    "ConfirmReceiptRequest",
    "CreateDeliveriesRequest",
    "DeliveryListResponse",
    "DeliveryResponse",
    "DeliveryStatsResponse",
    "ErrorResponse",
    "MarkDeliveredRequest",
    "OrderLineItemRequest",
    "RejectRescheduleRequest",
    "ReportIssueRequest",
    "RescheduleRequest",
    "ResolveDisputeRequest",
    "ScheduleRequest",
    "TransitionResponse",
]
