"""Product delivery state machine and reschedule negotiation.

This module implements the delivery lifecycle with:
- Forward-only status transitions (no backwards)
- Role and ownership checks before any status is inspected
- Status checks before any input is validated
- Conditional updates so that racing actors cannot clobber each other
- An activity log row written in the same transaction as each mutation
- Best-effort party notification after commit

Status flow:
    pending -> ready -> delivered -> confirmed
       |                  ^     \\
       +------------------+      -> disputed

Reschedule negotiation is orthogonal to the status: a client proposes a
new date, the trainer approves or rejects it, and the status never moves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any, ClassVar

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from locofit.db.models.base import (
    DeliveryEventType,
    DeliveryMethod,
    DeliveryStatus,
    RescheduleStatus,
    ResolutionType,
)
from locofit.db.models.deliveries import ProductDelivery
from locofit.db.models.events import DeliveryEvent
from locofit.services.authz import AuthorizationGate, DeliveryOperation
from locofit.services.errors import NotFoundError, StateConflictError, ValidationError
from locofit.services.notifications import LoggingNotificationDispatcher

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession

    from locofit.services.authz import Actor
    from locofit.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


MIN_ISSUE_NOTES_LENGTH = 10
MIN_RESCHEDULE_REASON_LENGTH = 5
REJECTION_NOTE_PREFIX = "Reschedule rejected: "

NON_TERMINAL_STATUSES = frozenset(
    {DeliveryStatus.PENDING, DeliveryStatus.READY, DeliveryStatus.DELIVERED}
)
SCHEDULABLE_STATUSES = frozenset({DeliveryStatus.PENDING, DeliveryStatus.READY})

# Storefront fulfillment options and the delivery method they imply
FULFILLMENT_METHODS: dict[str, DeliveryMethod] = {
    "home_ship": DeliveryMethod.SHIPPED,
    "trainer_delivery": DeliveryMethod.IN_PERSON,
    "vending": DeliveryMethod.LOCKER,
    "cafeteria": DeliveryMethod.FRONT_DESK,
}


def delivery_method_for_fulfillment(fulfillment: str | None) -> DeliveryMethod:
    """Map a storefront fulfillment option to a delivery method.

    Unknown or missing options fall back to in-person hand-off.
    """
    if fulfillment is None:
        return DeliveryMethod.IN_PERSON
    return FULFILLMENT_METHODS.get(fulfillment.strip().lower(), DeliveryMethod.IN_PERSON)


def _today() -> date:
    return datetime.now(UTC).date()


def _clean_text(value: str | None) -> str | None:
    """Strip free text, treating blank input as absent."""
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True, slots=True)
class OrderLineItem:
    """One product line of a placed order.

    Attributes:
        order_item_id: Storefront id of the line item.
        product_name: Display name of the product.
        quantity: Number of units, must be positive.
        product_id: Catalog id of the product, when known.
        fulfillment: Storefront fulfillment option (home_ship, vending, ...).
    """

    order_item_id: UUID
    product_name: str
    quantity: int
    product_id: UUID | None = None
    fulfillment: str | None = None


@dataclass(frozen=True, slots=True)
class TransitionResult:
    """Result of a successful delivery mutation.

    Attributes:
        delivery: The delivery as stored after the mutation.
        previous_status: Status before the mutation.
        new_status: Status after the mutation (equal to previous_status for
            reschedule, schedule and resolution operations).
        event: Activity log row written with the mutation.
        reschedule_outcome: APPROVED or REJECTED for reschedule decisions,
            PENDING for a new request, None otherwise.
    """

    delivery: ProductDelivery
    previous_status: DeliveryStatus
    new_status: DeliveryStatus
    event: DeliveryEvent
    reschedule_outcome: RescheduleStatus | None = None


class DeliveryLifecycleService:
    """Service for managing product delivery transitions.

    Every mutating operation follows the same sequence:
    1. Check the caller's role for the operation
    2. Load the delivery (NotFoundError) and check ownership
    3. Check the current status against the legal set (StateConflictError)
    4. Validate the input (ValidationError)
    5. Conditionally update the row, re-asserting owner and status in the
       WHERE clause; zero affected rows means another actor won the race
    6. Write the activity log row and commit
    7. Notify both parties (failures are logged, never raised)

    Example:
        service = DeliveryLifecycleService(session)
        result = await service.mark_delivered(
            trainer, delivery_id, method=DeliveryMethod.IN_PERSON
        )
        print(result.delivery.delivered_at)
    """

    # Valid status transitions: from_status -> {allowed to_statuses}
    VALID_TRANSITIONS: ClassVar[dict[DeliveryStatus, set[DeliveryStatus]]] = {
        DeliveryStatus.PENDING: {DeliveryStatus.READY, DeliveryStatus.DELIVERED},
        DeliveryStatus.READY: {DeliveryStatus.DELIVERED},
        DeliveryStatus.DELIVERED: {DeliveryStatus.CONFIRMED, DeliveryStatus.DISPUTED},
        # Terminal statuses - no transitions out
        DeliveryStatus.CONFIRMED: set(),
        DeliveryStatus.DISPUTED: set(),
    }

    def __init__(
        self,
        session: AsyncSession,
        *,
        gate: AuthorizationGate | None = None,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        """Initialize the lifecycle service.

        Args:
            session: SQLAlchemy async session for database operations.
            gate: Authorization gate (defaults to the standard role mapping).
            notifier: Notification dispatcher (defaults to logging only).
        """
        self._session = session
        self._gate = gate or AuthorizationGate()
        self._notifier = notifier or LoggingNotificationDispatcher()

    def is_valid_transition(self, from_status: DeliveryStatus, to_status: DeliveryStatus) -> bool:
        """Check if a status transition is valid."""
        return to_status in self.VALID_TRANSITIONS.get(from_status, set())

    def is_terminal_status(self, status: DeliveryStatus) -> bool:
        """Check if a status is terminal (no outgoing transitions)."""
        return len(self.VALID_TRANSITIONS.get(status, set())) == 0

    def sources_of(self, to_status: DeliveryStatus) -> frozenset[DeliveryStatus]:
        """Statuses from which to_status can be reached."""
        return frozenset(
            from_status
            for from_status, targets in self.VALID_TRANSITIONS.items()
            if to_status in targets
        )

    async def get_delivery(self, delivery_id: UUID) -> ProductDelivery:
        """Get a delivery by ID.

        Raises:
            NotFoundError: If the delivery does not exist.
        """
        query = (
            select(ProductDelivery)
            .where(ProductDelivery.delivery_id == delivery_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(query)
        delivery = result.scalar_one_or_none()

        if delivery is None:
            raise NotFoundError(delivery_id)

        return delivery

    # -------------------------------------------------------------------------
    # Delivery state machine
    # -------------------------------------------------------------------------

    async def mark_ready(self, actor: Actor, delivery_id: UUID) -> TransitionResult:
        """Trainer staged the product for hand-off (pending -> ready)."""
        delivery = await self._load_authorized(actor, DeliveryOperation.MARK_READY, delivery_id)
        return await self._transition(
            actor,
            DeliveryOperation.MARK_READY,
            delivery,
            to_status=DeliveryStatus.READY,
            event_type=DeliveryEventType.MARKED_READY,
        )

    async def mark_delivered(
        self,
        actor: Actor,
        delivery_id: UUID,
        method: DeliveryMethod | str | None,
        *,
        notes: str | None = None,
        tracking_number: str | None = None,
    ) -> TransitionResult:
        """Trainer handed the product over (pending or ready -> delivered).

        The tracking number is only stored for shipped deliveries.

        Raises:
            ValidationError: If the method is missing or unknown.
        """
        delivery = await self._load_authorized(
            actor, DeliveryOperation.MARK_DELIVERED, delivery_id
        )
        self._require_status(
            actor,
            DeliveryOperation.MARK_DELIVERED,
            delivery,
            self.sources_of(DeliveryStatus.DELIVERED),
        )
        delivery_method = self._parse_method(method, delivery_id)

        values: dict[str, Any] = {
            "delivered_at": datetime.now(UTC),
            "delivery_method": delivery_method,
        }
        notes = _clean_text(notes)
        if notes is not None:
            values["trainer_notes"] = notes
        tracking_number = _clean_text(tracking_number)
        if delivery_method is DeliveryMethod.SHIPPED and tracking_number is not None:
            values["tracking_number"] = tracking_number

        return await self._transition(
            actor,
            DeliveryOperation.MARK_DELIVERED,
            delivery,
            to_status=DeliveryStatus.DELIVERED,
            event_type=DeliveryEventType.MARKED_DELIVERED,
            values=values,
            event_metadata={
                "delivery_method": delivery_method.value,
                "tracking_number": values.get("tracking_number"),
            },
        )

    async def confirm_receipt(
        self,
        actor: Actor,
        delivery_id: UUID,
        *,
        notes: str | None = None,
    ) -> TransitionResult:
        """Client confirmed the product arrived (delivered -> confirmed)."""
        delivery = await self._load_authorized(
            actor, DeliveryOperation.CONFIRM_RECEIPT, delivery_id
        )
        values: dict[str, Any] = {"confirmed_at": datetime.now(UTC)}
        notes = _clean_text(notes)
        if notes is not None:
            values["client_notes"] = notes

        return await self._transition(
            actor,
            DeliveryOperation.CONFIRM_RECEIPT,
            delivery,
            to_status=DeliveryStatus.CONFIRMED,
            event_type=DeliveryEventType.RECEIPT_CONFIRMED,
            values=values,
        )

    async def report_issue(self, actor: Actor, delivery_id: UUID, notes: str) -> TransitionResult:
        """Client disputed a handed-over product (delivered -> disputed).

        Raises:
            ValidationError: If the notes are shorter than MIN_ISSUE_NOTES_LENGTH.
        """
        delivery = await self._load_authorized(actor, DeliveryOperation.REPORT_ISSUE, delivery_id)
        self._require_status(
            actor,
            DeliveryOperation.REPORT_ISSUE,
            delivery,
            self.sources_of(DeliveryStatus.DISPUTED),
        )
        reason = _clean_text(notes) or ""
        if len(reason) < MIN_ISSUE_NOTES_LENGTH:
            raise ValidationError(
                f"Please describe the issue in at least {MIN_ISSUE_NOTES_LENGTH} characters",
                field="notes",
                delivery_id=delivery_id,
            )

        result = await self._transition(
            actor,
            DeliveryOperation.REPORT_ISSUE,
            delivery,
            to_status=DeliveryStatus.DISPUTED,
            event_type=DeliveryEventType.ISSUE_REPORTED,
            values={"client_notes": reason, "dispute_reason": reason},
            event_metadata={"dispute_reason": reason},
        )

        try:
            await self._notifier.notify_dispute_reported(result.delivery)
        except Exception as e:
            logger.warning(
                "Dispute notification failed: %s",
                e,
                extra={"delivery_id": str(delivery_id)},
            )
        return result

    async def schedule(
        self,
        actor: Actor,
        delivery_id: UUID,
        scheduled_date: date | str | None,
    ) -> TransitionResult:
        """Trainer sets the planned delivery date (pending or ready).

        Raises:
            ValidationError: If the date is missing, malformed or in the past.
        """
        delivery = await self._load_authorized(actor, DeliveryOperation.SCHEDULE, delivery_id)
        self._require_status(actor, DeliveryOperation.SCHEDULE, delivery, SCHEDULABLE_STATUSES)
        planned = self._parse_future_date(scheduled_date, "scheduled_date", delivery_id)

        return await self._mutate(
            actor,
            DeliveryOperation.SCHEDULE,
            delivery,
            expected=SCHEDULABLE_STATUSES,
            values={"scheduled_date": planned},
            event_type=DeliveryEventType.SCHEDULED,
            event_metadata={
                "previous_date": (
                    delivery.scheduled_date.isoformat() if delivery.scheduled_date else None
                ),
                "scheduled_date": planned.isoformat(),
            },
        )

    async def resolve_dispute(
        self,
        actor: Actor,
        delivery_id: UUID,
        resolution_type: ResolutionType | str | None,
        *,
        notes: str | None = None,
    ) -> TransitionResult:
        """Manager records the outcome of a dispute.

        The status stays disputed; the record is kept as an audit trail.

        Raises:
            ValidationError: If the resolution type is missing or unknown.
            StateConflictError: If the delivery is not disputed or already resolved.
        """
        delivery = await self._load_authorized(
            actor, DeliveryOperation.RESOLVE_DISPUTE, delivery_id
        )
        self._require_status(
            actor,
            DeliveryOperation.RESOLVE_DISPUTE,
            delivery,
            frozenset({DeliveryStatus.DISPUTED}),
        )
        if delivery.resolved_at is not None:
            self._reject(actor, DeliveryOperation.RESOLVE_DISPUTE, delivery, "already resolved")
            raise StateConflictError(
                "This dispute has already been resolved",
                delivery_id=delivery_id,
                current_status=delivery.status,
            )
        resolution = self._parse_resolution(resolution_type, delivery_id)

        notes = _clean_text(notes)
        return await self._mutate(
            actor,
            DeliveryOperation.RESOLVE_DISPUTE,
            delivery,
            expected=frozenset({DeliveryStatus.DISPUTED}),
            values={
                "resolved_at": datetime.now(UTC),
                "resolved_by": actor.actor_id,
                "resolution_type": resolution,
                "resolution_notes": notes,
            },
            conditions=(ProductDelivery.resolved_at.is_(None),),
            event_type=DeliveryEventType.DISPUTE_RESOLVED,
            event_metadata={"resolution_type": resolution.value, "notes": notes},
        )

    # -------------------------------------------------------------------------
    # Reschedule negotiation
    # -------------------------------------------------------------------------

    async def request_reschedule(
        self,
        actor: Actor,
        delivery_id: UUID,
        proposed_date: date | str | None,
        reason: str | None,
    ) -> TransitionResult:
        """Client proposes a new delivery date.

        Allowed before the delivery reaches a terminal status, and only when
        no other request is open.

        Raises:
            ValidationError: If the date is in the past or the reason too short.
            StateConflictError: If a request is already pending or the
                delivery is confirmed or disputed.
        """
        delivery = await self._load_authorized(
            actor, DeliveryOperation.REQUEST_RESCHEDULE, delivery_id
        )
        if delivery.reschedule_status is not None:
            self._reject(
                actor, DeliveryOperation.REQUEST_RESCHEDULE, delivery, "request already open"
            )
            raise StateConflictError(
                "A reschedule request is already pending for this delivery",
                delivery_id=delivery_id,
                current_status=delivery.status,
            )
        self._require_status(
            actor, DeliveryOperation.REQUEST_RESCHEDULE, delivery, NON_TERMINAL_STATUSES
        )
        proposed = self._parse_future_date(proposed_date, "proposed_date", delivery_id)
        cleaned_reason = _clean_text(reason) or ""
        if len(cleaned_reason) < MIN_RESCHEDULE_REASON_LENGTH:
            raise ValidationError(
                "Please give a reason of at least "
                f"{MIN_RESCHEDULE_REASON_LENGTH} characters for rescheduling",
                field="reason",
                delivery_id=delivery_id,
            )

        return await self._mutate(
            actor,
            DeliveryOperation.REQUEST_RESCHEDULE,
            delivery,
            expected=NON_TERMINAL_STATUSES,
            values={
                "reschedule_status": RescheduleStatus.PENDING,
                "reschedule_requested_at": datetime.now(UTC),
                "reschedule_proposed_date": proposed,
                "reschedule_reason": cleaned_reason,
            },
            conditions=(ProductDelivery.reschedule_status.is_(None),),
            event_type=DeliveryEventType.RESCHEDULE_REQUESTED,
            event_metadata={"proposed_date": proposed.isoformat(), "reason": cleaned_reason},
            reschedule_outcome=RescheduleStatus.PENDING,
        )

    async def approve_reschedule(self, actor: Actor, delivery_id: UUID) -> TransitionResult:
        """Trainer accepts the proposed date and closes the request.

        Raises:
            StateConflictError: If no request is pending.
        """
        delivery = await self._load_authorized(
            actor, DeliveryOperation.APPROVE_RESCHEDULE, delivery_id
        )
        self._require_open_request(actor, DeliveryOperation.APPROVE_RESCHEDULE, delivery)
        proposed = delivery.reschedule_proposed_date

        return await self._mutate(
            actor,
            DeliveryOperation.APPROVE_RESCHEDULE,
            delivery,
            expected=None,
            values={
                # Evaluated against the row being updated, not the stale read
                "scheduled_date": ProductDelivery.reschedule_proposed_date,
                **self._cleared_reschedule(),
            },
            conditions=(ProductDelivery.reschedule_status == RescheduleStatus.PENDING,),
            event_type=DeliveryEventType.RESCHEDULE_APPROVED,
            event_metadata={"scheduled_date": proposed.isoformat() if proposed else None},
            reschedule_outcome=RescheduleStatus.APPROVED,
        )

    async def reject_reschedule(
        self,
        actor: Actor,
        delivery_id: UUID,
        *,
        note: str | None = None,
    ) -> TransitionResult:
        """Trainer declines the proposed date and closes the request.

        A non-blank note is appended to the trainer notes.

        Raises:
            StateConflictError: If no request is pending.
        """
        delivery = await self._load_authorized(
            actor, DeliveryOperation.REJECT_RESCHEDULE, delivery_id
        )
        self._require_open_request(actor, DeliveryOperation.REJECT_RESCHEDULE, delivery)

        values: dict[str, Any] = self._cleared_reschedule()
        note = _clean_text(note)
        if note is not None:
            values["trainer_notes"] = (
                func.coalesce(ProductDelivery.trainer_notes + "\n", "")
                + f"{REJECTION_NOTE_PREFIX}{note}"
            )

        return await self._mutate(
            actor,
            DeliveryOperation.REJECT_RESCHEDULE,
            delivery,
            expected=None,
            values=values,
            conditions=(ProductDelivery.reschedule_status == RescheduleStatus.PENDING,),
            event_type=DeliveryEventType.RESCHEDULE_REJECTED,
            event_metadata={
                "proposed_date": (
                    delivery.reschedule_proposed_date.isoformat()
                    if delivery.reschedule_proposed_date
                    else None
                ),
                "note": note,
            },
            reschedule_outcome=RescheduleStatus.REJECTED,
        )

    # -------------------------------------------------------------------------
    # Order creation
    # -------------------------------------------------------------------------

    async def create_for_order(
        self,
        actor: Actor,
        order_id: UUID,
        *,
        trainer_id: UUID,
        client_id: UUID,
        items: Sequence[OrderLineItem],
        scheduled_date: date | None = None,
        delivery_method: DeliveryMethod | None = None,
    ) -> list[ProductDelivery]:
        """Create one pending delivery per ordered product line item.

        Args:
            actor: The order-creation integration.
            order_id: Storefront order id.
            trainer_id: Trainer responsible for the deliveries.
            client_id: Client receiving the products.
            items: Ordered product line items.
            scheduled_date: Optional planned date for every delivery.
            delivery_method: Method for every delivery; derived from each
                item's fulfillment option when omitted.

        Line items already registered for the order are not created again;
        their stored deliveries are returned instead, so a retried call is
        safe.

        Returns:
            The deliveries for the given items, in item order.

        Raises:
            ValidationError: If there are no items, an item is malformed or
                listed twice.
            StateConflictError: If another call registered the same items
                while this one was running.
        """
        self._gate.require_role(actor, DeliveryOperation.CREATE_FOR_ORDER)
        if not items:
            raise ValidationError("An order needs at least one product to deliver", field="items")

        names = []
        seen: set[UUID] = set()
        for index, item in enumerate(items):
            name = _clean_text(item.product_name)
            if name is None:
                raise ValidationError("Product name is required", field=f"items.{index}")
            if item.quantity <= 0:
                raise ValidationError("Quantity must be positive", field=f"items.{index}")
            if item.order_item_id in seen:
                raise ValidationError("Order line item listed twice", field=f"items.{index}")
            seen.add(item.order_item_id)
            names.append(name)

        result = await self._session.execute(
            select(ProductDelivery).where(
                ProductDelivery.order_id == order_id,
                ProductDelivery.order_item_id.in_([item.order_item_id for item in items]),
            )
        )
        stored = {delivery.order_item_id: delivery for delivery in result.scalars()}

        now = datetime.now(UTC)
        deliveries = []
        created = []
        for item, name in zip(items, names, strict=True):
            delivery = stored.get(item.order_item_id)
            if delivery is None:
                delivery = ProductDelivery(
                    order_id=order_id,
                    order_item_id=item.order_item_id,
                    trainer_id=trainer_id,
                    client_id=client_id,
                    product_id=item.product_id,
                    product_name=name,
                    quantity=item.quantity,
                    status=DeliveryStatus.PENDING,
                    scheduled_date=scheduled_date,
                    delivery_method=delivery_method
                    or delivery_method_for_fulfillment(item.fulfillment),
                    created_at=now,
                    updated_at=now,
                )
                self._session.add(delivery)
                created.append(delivery)
            deliveries.append(delivery)

        if not created:
            logger.info(
                "Deliveries already registered for order",
                extra={"order_id": str(order_id), "count": len(deliveries)},
            )
            return deliveries

        # Assign primary keys before the activity rows reference them
        try:
            await self._session.flush()
        except IntegrityError as e:
            await self._session.rollback()
            logger.warning(
                "Concurrent delivery registration for order",
                extra={"order_id": str(order_id), "actor_id": str(actor.actor_id)},
            )
            raise StateConflictError(
                "Deliveries for this order were just registered by another request; "
                "refresh and try again",
            ) from e

        for delivery in created:
            self._session.add(
                DeliveryEvent(
                    delivery_id=delivery.delivery_id,
                    event_type=DeliveryEventType.CREATED,
                    event_time=now,
                    actor_role=actor.role,
                    actor_id=actor.actor_id,
                    event_metadata={
                        "order_id": str(order_id),
                        "order_item_id": str(delivery.order_item_id),
                        "quantity": delivery.quantity,
                    },
                )
            )
        await self._session.commit()

        logger.info(
            "Deliveries created for order",
            extra={
                "order_id": str(order_id),
                "trainer_id": str(trainer_id),
                "client_id": str(client_id),
                "count": len(created),
            },
        )

        await self._notify(trainer_id, client_id)
        return deliveries

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _load_authorized(
        self,
        actor: Actor,
        operation: DeliveryOperation,
        delivery_id: UUID,
    ) -> ProductDelivery:
        """Role check, load, then ownership check."""
        self._gate.require_role(actor, operation, delivery_id)
        delivery = await self.get_delivery(delivery_id)
        self._gate.require_owner(actor, delivery)
        return delivery

    async def _transition(
        self,
        actor: Actor,
        operation: DeliveryOperation,
        delivery: ProductDelivery,
        *,
        to_status: DeliveryStatus,
        event_type: DeliveryEventType,
        values: dict[str, Any] | None = None,
        event_metadata: dict[str, Any] | None = None,
    ) -> TransitionResult:
        """Move the delivery to to_status along a defined edge."""
        return await self._mutate(
            actor,
            operation,
            delivery,
            expected=self.sources_of(to_status),
            values={**(values or {}), "status": to_status},
            event_type=event_type,
            event_metadata=event_metadata,
        )

    async def _mutate(
        self,
        actor: Actor,
        operation: DeliveryOperation,
        delivery: ProductDelivery,
        *,
        expected: frozenset[DeliveryStatus] | None,
        values: dict[str, Any],
        event_type: DeliveryEventType,
        conditions: Sequence[ColumnElement[bool]] = (),
        event_metadata: dict[str, Any] | None = None,
        reschedule_outcome: RescheduleStatus | None = None,
    ) -> TransitionResult:
        """Conditionally update one delivery and record the activity.

        Args:
            actor: Caller, already authorized for the delivery.
            operation: Operation being performed.
            delivery: The delivery as read by the caller.
            expected: Statuses the row must still be in, or None for
                operations that do not depend on the status.
            values: Column values to write.
            event_type: Activity log entry type.
            conditions: Extra WHERE conditions re-checked by the update.
            event_metadata: Details stored on the activity row.
            reschedule_outcome: Reschedule state reported in the result.

        Raises:
            StateConflictError: If the status read is outside expected, or if
                the row changed before the update was applied.
        """
        delivery_id = delivery.delivery_id
        previous_status = delivery.status

        if expected is not None:
            self._require_status(actor, operation, delivery, expected)

        now = datetime.now(UTC)
        stmt = update(ProductDelivery).where(
            ProductDelivery.delivery_id == delivery_id,
            *conditions,
        )
        owner_clause = self._gate.ownership_clause(actor)
        if owner_clause is not None:
            stmt = stmt.where(owner_clause)
        if expected is not None:
            stmt = stmt.where(
                ProductDelivery.status.in_(sorted(expected, key=lambda s: s.value))
            )
        stmt = stmt.values(**values, updated_at=now).execution_options(
            synchronize_session=False
        )

        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            current = await self._session.scalar(
                select(ProductDelivery.status).where(ProductDelivery.delivery_id == delivery_id)
            )
            logger.warning(
                "Delivery modified concurrently, update rejected",
                extra={
                    "delivery_id": str(delivery_id),
                    "operation": operation.value,
                    "read_status": previous_status.value,
                    "current_status": current.value if current else None,
                    "actor_id": str(actor.actor_id),
                },
            )
            raise StateConflictError(
                "This delivery was just updated by someone else; refresh and try again",
                delivery_id=delivery_id,
                current_status=current,
            )

        new_status = values.get("status", previous_status)
        metadata: dict[str, Any] = {
            "previous_status": previous_status.value,
            "new_status": new_status.value,
        }
        metadata.update(event_metadata or {})
        event = DeliveryEvent(
            delivery_id=delivery_id,
            event_type=event_type,
            event_time=now,
            actor_role=actor.role,
            actor_id=actor.actor_id,
            event_metadata=metadata,
        )
        self._session.add(event)
        await self._session.commit()
        # The update bypassed the identity map, reload the stored row
        await self._session.refresh(delivery)

        logger.info(
            "Delivery %s",
            event_type.value.replace("_", " "),
            extra={
                "delivery_id": str(delivery_id),
                "operation": operation.value,
                "from_status": previous_status.value,
                "to_status": new_status.value,
                "event_id": str(event.event_id),
                "actor_id": str(actor.actor_id),
            },
        )

        await self._notify(delivery.trainer_id, delivery.client_id)

        return TransitionResult(
            delivery=delivery,
            previous_status=previous_status,
            new_status=new_status,
            event=event,
            reschedule_outcome=reschedule_outcome,
        )

    async def _notify(self, trainer_id: UUID, client_id: UUID) -> None:
        """Best-effort party notification."""
        try:
            await self._notifier.notify_parties(trainer_id, client_id)
        except Exception as e:
            logger.warning(
                "Party notification failed: %s",
                e,
                extra={"trainer_id": str(trainer_id), "client_id": str(client_id)},
            )

    def _reject(
        self,
        actor: Actor,
        operation: DeliveryOperation,
        delivery: ProductDelivery,
        reason: str,
    ) -> None:
        logger.warning(
            "Invalid delivery operation attempted",
            extra={
                "delivery_id": str(delivery.delivery_id),
                "operation": operation.value,
                "status": delivery.status.value,
                "reschedule_status": (
                    delivery.reschedule_status.value if delivery.reschedule_status else None
                ),
                "reason": reason,
                "actor_id": str(actor.actor_id),
            },
        )

    def _require_status(
        self,
        actor: Actor,
        operation: DeliveryOperation,
        delivery: ProductDelivery,
        expected: frozenset[DeliveryStatus],
    ) -> None:
        """Raise StateConflictError unless the status read is in expected."""
        if delivery.status not in expected:
            self._reject(actor, operation, delivery, "status not allowed")
            raise StateConflictError(
                f"Cannot {operation.value.replace('_', ' ')} a delivery "
                f"that is {delivery.status.value}",
                delivery_id=delivery.delivery_id,
                current_status=delivery.status,
            )

    def _require_open_request(
        self,
        actor: Actor,
        operation: DeliveryOperation,
        delivery: ProductDelivery,
    ) -> None:
        if delivery.reschedule_status is not RescheduleStatus.PENDING:
            self._reject(actor, operation, delivery, "no open reschedule request")
            raise StateConflictError(
                "There is no pending reschedule request for this delivery",
                delivery_id=delivery.delivery_id,
                current_status=delivery.status,
            )

    @staticmethod
    def _cleared_reschedule() -> dict[str, Any]:
        return {
            "reschedule_status": None,
            "reschedule_requested_at": None,
            "reschedule_proposed_date": None,
            "reschedule_reason": None,
        }

    @staticmethod
    def _parse_method(method: DeliveryMethod | str | None, delivery_id: UUID) -> DeliveryMethod:
        if method is None or method == "":
            raise ValidationError(
                "Delivery method is required", field="method", delivery_id=delivery_id
            )
        if isinstance(method, DeliveryMethod):
            return method
        try:
            return DeliveryMethod(method)
        except ValueError:
            allowed = ", ".join(m.value for m in DeliveryMethod)
            raise ValidationError(
                f"Delivery method must be one of: {allowed}",
                field="method",
                delivery_id=delivery_id,
            ) from None

    @staticmethod
    def _parse_resolution(
        resolution_type: ResolutionType | str | None,
        delivery_id: UUID,
    ) -> ResolutionType:
        if isinstance(resolution_type, ResolutionType):
            return resolution_type
        try:
            return ResolutionType(resolution_type)
        except ValueError:
            allowed = ", ".join(r.value for r in ResolutionType)
            raise ValidationError(
                f"Resolution type must be one of: {allowed}",
                field="resolution_type",
                delivery_id=delivery_id,
            ) from None

    @staticmethod
    def _parse_future_date(value: date | str | None, field: str, delivery_id: UUID) -> date:
        """Parse a date that must be today or later (UTC)."""
        if value is None or value == "":
            raise ValidationError("A date is required", field=field, delivery_id=delivery_id)
        if isinstance(value, datetime):
            value = value.date()
        elif isinstance(value, str):
            try:
                value = date.fromisoformat(value)
            except ValueError:
                raise ValidationError(
                    "Dates must use the YYYY-MM-DD format",
                    field=field,
                    delivery_id=delivery_id,
                ) from None
        if value < _today():
            raise ValidationError(
                "The date cannot be in the past", field=field, delivery_id=delivery_id
            )
        return value
