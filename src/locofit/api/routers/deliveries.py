"""Product delivery API router.

Trainers advance deliveries and answer reschedule requests, clients confirm,
dispute and propose new dates, managers resolve disputes, and the
order-creation integration registers deliveries for placed orders.

All endpoints identify the caller through the gateway headers (see
locofit.api.middleware.auth). Domain errors are rendered by
ErrorHandlerMiddleware.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from datetime import datetime  # noqa: TC003 - FastAPI resolves query types at runtime
from typing import TYPE_CHECKING, Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from locofit.api.middleware.auth import CurrentActor
from locofit.api.schemas.deliveries import (
    ConfirmReceiptRequest,
    CreateDeliveriesRequest,
    DeliveryListResponse,
    DeliveryResponse,
    DeliveryStatsResponse,
    ErrorResponse,
    MarkDeliveredRequest,
    RejectRescheduleRequest,
    ReportIssueRequest,
    RescheduleRequest,
    ResolveDisputeRequest,
    ScheduleRequest,
    TransitionResponse,
)
from locofit.db import session_scope
from locofit.db.models.base import ActorRole, DeliveryStatus
from locofit.services.alerts import DEFAULT_ALERT_WINDOW_HOURS, DeliveryAlertRegistry
from locofit.services.errors import AuthorizationError
from locofit.services.lifecycle import DeliveryLifecycleService, OrderLineItem
from locofit.services.notifications import LoggingNotificationDispatcher, NotificationDispatcher
from locofit.services.queries import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, DeliveryQueryService

if TYPE_CHECKING:
    from locofit.db.models.deliveries import ProductDelivery
    from locofit.services.lifecycle import TransitionResult

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/deliveries",
    tags=["deliveries"],
    responses={
        400: {"description": "Invalid input", "model": ErrorResponse},
        401: {"description": "Caller identity missing", "model": ErrorResponse},
        404: {"description": "Delivery not found or not permitted", "model": ErrorResponse},
        409: {"description": "Transition not allowed from current state", "model": ErrorResponse},
    },
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get a database session from the application's session factory."""
    factory = getattr(request.app.state, "session_factory", None)
    if factory is None:
        msg = "Database is not configured for this application"
        raise RuntimeError(msg)

    async with session_scope(factory) as session:
        yield session


DbSession = Annotated[AsyncSession, Depends(get_db_session)]


def get_notifier(request: Request) -> NotificationDispatcher:
    """Notification dispatcher configured on the application."""
    notifier = getattr(request.app.state, "notifier", None)
    return notifier or LoggingNotificationDispatcher()


def get_alert_registry(request: Request) -> DeliveryAlertRegistry:
    """Dismissed-alert registry shared by the application."""
    return request.app.state.alert_registry


def get_alert_window_hours(request: Request) -> int:
    settings = getattr(request.app.state, "settings", None)
    return settings.alert_window_hours if settings else DEFAULT_ALERT_WINDOW_HOURS


def get_lifecycle_service(
    db: DbSession,
    notifier: Annotated[NotificationDispatcher, Depends(get_notifier)],
) -> DeliveryLifecycleService:
    return DeliveryLifecycleService(db, notifier=notifier)


def get_query_service(db: DbSession) -> DeliveryQueryService:
    return DeliveryQueryService(db)


Lifecycle = Annotated[DeliveryLifecycleService, Depends(get_lifecycle_service)]
Queries = Annotated[DeliveryQueryService, Depends(get_query_service)]
PageLimit = Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)]
PageOffset = Annotated[int, Query(ge=0)]


def _to_transition_response(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        delivery=DeliveryResponse.model_validate(result.delivery),
        previous_status=result.previous_status,
        new_status=result.new_status,
        reschedule_outcome=result.reschedule_outcome,
        event_id=result.event.event_id,
    )


def _to_list_response(deliveries: list[ProductDelivery]) -> DeliveryListResponse:
    return DeliveryListResponse(
        items=[DeliveryResponse.model_validate(d) for d in deliveries],
        count=len(deliveries),
    )


# ---------------------------------------------------------------------------
# Order creation
# ---------------------------------------------------------------------------


@router.post(
    "/orders/{order_id}",
    response_model=DeliveryListResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_for_order(
    order_id: UUID,
    body: CreateDeliveriesRequest,
    actor: CurrentActor,
    lifecycle: Lifecycle,
) -> DeliveryListResponse:
    """Create one pending delivery per ordered product.

    Line items already registered for the order are returned as stored.
    """
    deliveries = await lifecycle.create_for_order(
        actor,
        order_id,
        trainer_id=body.trainer_id,
        client_id=body.client_id,
        items=[
            OrderLineItem(
                order_item_id=item.order_item_id,
                product_name=item.product_name,
                quantity=item.quantity,
                product_id=item.product_id,
                fulfillment=item.fulfillment,
            )
            for item in body.items
        ],
        scheduled_date=body.scheduled_date,
        delivery_method=body.delivery_method,
    )
    return _to_list_response(deliveries)


# ---------------------------------------------------------------------------
# Trainer views
# ---------------------------------------------------------------------------


@router.get("/trainer", response_model=DeliveryListResponse)
async def list_by_trainer(
    actor: CurrentActor,
    queries: Queries,
    status_filter: Annotated[DeliveryStatus | None, Query(alias="status")] = None,
    client_id: UUID | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    limit: PageLimit = DEFAULT_PAGE_SIZE,
    offset: PageOffset = 0,
) -> DeliveryListResponse:
    """List the calling trainer's deliveries, newest first."""
    deliveries = await queries.list_by_trainer(
        actor,
        status=status_filter,
        client_id=client_id,
        created_from=created_from,
        created_to=created_to,
        limit=limit,
        offset=offset,
    )
    return _to_list_response(deliveries)


@router.get("/trainer/pending", response_model=DeliveryListResponse)
async def pending_by_trainer(actor: CurrentActor, queries: Queries) -> DeliveryListResponse:
    """Deliveries still to hand over, soonest scheduled first."""
    return _to_list_response(await queries.pending_by_trainer(actor))


@router.get("/trainer/stats", response_model=DeliveryStatsResponse)
async def stats_by_trainer(actor: CurrentActor, queries: Queries) -> DeliveryStatsResponse:
    """Per-status delivery counts for the calling trainer."""
    stats = await queries.stats_by_trainer(actor)
    return DeliveryStatsResponse(
        total=stats.total,
        pending=stats.count(DeliveryStatus.PENDING),
        ready=stats.count(DeliveryStatus.READY),
        delivered=stats.count(DeliveryStatus.DELIVERED),
        confirmed=stats.count(DeliveryStatus.CONFIRMED),
        disputed=stats.count(DeliveryStatus.DISPUTED),
    )


@router.get("/trainer/reschedule-requests", response_model=DeliveryListResponse)
async def reschedule_requests_by_trainer(
    actor: CurrentActor,
    queries: Queries,
) -> DeliveryListResponse:
    """Open reschedule requests awaiting the calling trainer."""
    return _to_list_response(await queries.reschedule_requests_by_trainer(actor))


@router.get("/trainer/alerts", response_model=DeliveryListResponse)
async def upcoming_alerts(
    actor: CurrentActor,
    queries: Queries,
    registry: Annotated[DeliveryAlertRegistry, Depends(get_alert_registry)],
    window_hours: Annotated[int, Depends(get_alert_window_hours)],
) -> DeliveryListResponse:
    """Deliveries due soon that the trainer has not dismissed."""
    deliveries = await queries.upcoming_for_trainer(actor, registry, window_hours=window_hours)
    return _to_list_response(deliveries)


@router.post("/trainer/alerts/{delivery_id}/dismiss", status_code=status.HTTP_204_NO_CONTENT)
async def dismiss_alert(
    delivery_id: UUID,
    actor: CurrentActor,
    registry: Annotated[DeliveryAlertRegistry, Depends(get_alert_registry)],
) -> None:
    """Hide the dashboard alert for one delivery."""
    if actor.role is not ActorRole.TRAINER:
        raise AuthorizationError(delivery_id=delivery_id, reason="alerts are for trainers")
    registry.dismiss(actor.actor_id, delivery_id)


# ---------------------------------------------------------------------------
# Client and manager views
# ---------------------------------------------------------------------------


@router.get("/client", response_model=DeliveryListResponse)
async def list_by_client(
    actor: CurrentActor,
    queries: Queries,
    status_filter: Annotated[DeliveryStatus | None, Query(alias="status")] = None,
    trainer_id: UUID | None = None,
    limit: PageLimit = DEFAULT_PAGE_SIZE,
    offset: PageOffset = 0,
) -> DeliveryListResponse:
    """List the calling client's deliveries, newest first."""
    deliveries = await queries.list_by_client(
        actor,
        status=status_filter,
        trainer_id=trainer_id,
        limit=limit,
        offset=offset,
    )
    return _to_list_response(deliveries)


@router.get("/manage", response_model=DeliveryListResponse)
async def list_all(
    actor: CurrentActor,
    queries: Queries,
    status_filter: Annotated[DeliveryStatus | None, Query(alias="status")] = None,
    trainer_id: UUID | None = None,
    client_id: UUID | None = None,
    limit: PageLimit = DEFAULT_PAGE_SIZE,
    offset: PageOffset = 0,
) -> DeliveryListResponse:
    """Manager view over every delivery."""
    deliveries = await queries.list_all(
        actor,
        status=status_filter,
        trainer_id=trainer_id,
        client_id=client_id,
        limit=limit,
        offset=offset,
    )
    return _to_list_response(deliveries)


# ---------------------------------------------------------------------------
# Delivery state machine
# ---------------------------------------------------------------------------


@router.post("/{delivery_id}/ready", response_model=TransitionResponse)
async def mark_ready(
    delivery_id: UUID,
    actor: CurrentActor,
    lifecycle: Lifecycle,
) -> TransitionResponse:
    """Trainer staged the product for hand-off."""
    return _to_transition_response(await lifecycle.mark_ready(actor, delivery_id))


@router.post("/{delivery_id}/delivered", response_model=TransitionResponse)
async def mark_delivered(
    delivery_id: UUID,
    body: MarkDeliveredRequest,
    actor: CurrentActor,
    lifecycle: Lifecycle,
) -> TransitionResponse:
    """Trainer handed the product over."""
    result = await lifecycle.mark_delivered(
        actor,
        delivery_id,
        body.method,
        notes=body.notes,
        tracking_number=body.tracking_number,
    )
    return _to_transition_response(result)


@router.post("/{delivery_id}/confirm", response_model=TransitionResponse)
async def confirm_receipt(
    delivery_id: UUID,
    actor: CurrentActor,
    lifecycle: Lifecycle,
    body: ConfirmReceiptRequest | None = None,
) -> TransitionResponse:
    """Client confirms the product arrived."""
    notes = body.notes if body else None
    return _to_transition_response(
        await lifecycle.confirm_receipt(actor, delivery_id, notes=notes)
    )


@router.post("/{delivery_id}/issue", response_model=TransitionResponse)
async def report_issue(
    delivery_id: UUID,
    body: ReportIssueRequest,
    actor: CurrentActor,
    lifecycle: Lifecycle,
) -> TransitionResponse:
    """Client reports a problem with the delivered product."""
    return _to_transition_response(await lifecycle.report_issue(actor, delivery_id, body.notes))


@router.post("/{delivery_id}/schedule", response_model=TransitionResponse)
async def schedule(
    delivery_id: UUID,
    body: ScheduleRequest,
    actor: CurrentActor,
    lifecycle: Lifecycle,
) -> TransitionResponse:
    """Trainer sets the planned delivery date."""
    return _to_transition_response(
        await lifecycle.schedule(actor, delivery_id, body.scheduled_date)
    )


@router.post("/{delivery_id}/resolve", response_model=TransitionResponse)
async def resolve_dispute(
    delivery_id: UUID,
    body: ResolveDisputeRequest,
    actor: CurrentActor,
    lifecycle: Lifecycle,
) -> TransitionResponse:
    """Manager records the outcome of a dispute."""
    result = await lifecycle.resolve_dispute(
        actor,
        delivery_id,
        body.resolution_type,
        notes=body.notes,
    )
    return _to_transition_response(result)


# ---------------------------------------------------------------------------
# Reschedule negotiation
# ---------------------------------------------------------------------------


@router.post("/{delivery_id}/reschedule", response_model=TransitionResponse)
async def request_reschedule(
    delivery_id: UUID,
    body: RescheduleRequest,
    actor: CurrentActor,
    lifecycle: Lifecycle,
) -> TransitionResponse:
    """Client proposes a new delivery date."""
    result = await lifecycle.request_reschedule(
        actor,
        delivery_id,
        body.proposed_date,
        body.reason,
    )
    return _to_transition_response(result)


@router.post("/{delivery_id}/reschedule/approve", response_model=TransitionResponse)
async def approve_reschedule(
    delivery_id: UUID,
    actor: CurrentActor,
    lifecycle: Lifecycle,
) -> TransitionResponse:
    """Trainer accepts the proposed date."""
    return _to_transition_response(await lifecycle.approve_reschedule(actor, delivery_id))


@router.post("/{delivery_id}/reschedule/reject", response_model=TransitionResponse)
async def reject_reschedule(
    delivery_id: UUID,
    actor: CurrentActor,
    lifecycle: Lifecycle,
    body: RejectRescheduleRequest | None = None,
) -> TransitionResponse:
    """Trainer declines the proposed date."""
    note = body.note if body else None
    return _to_transition_response(
        await lifecycle.reject_reschedule(actor, delivery_id, note=note)
    )
