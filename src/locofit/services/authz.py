"""Authorization gate for delivery operations.

This module provides:
- Operation definitions for every delivery action
- The role required by each operation
- Ownership checks against a delivery's trainer and client

All delivery policy lives here. The gate runs before any status is read so
that callers cannot probe records they do not own: every failure surfaces as
"not found or not permitted".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from locofit.db.models.base import ActorRole
from locofit.services.errors import AuthorizationError

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy import ColumnElement

    from locofit.db.models.deliveries import ProductDelivery

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Operation definitions
# ---------------------------------------------------------------------------


class DeliveryOperation(str, Enum):
    """Mutating operations on product deliveries."""

    CREATE_FOR_ORDER = "create_for_order"
    SCHEDULE = "schedule"
    MARK_READY = "mark_ready"
    MARK_DELIVERED = "mark_delivered"
    CONFIRM_RECEIPT = "confirm_receipt"
    REPORT_ISSUE = "report_issue"
    REQUEST_RESCHEDULE = "request_reschedule"
    APPROVE_RESCHEDULE = "approve_reschedule"
    REJECT_RESCHEDULE = "reject_reschedule"
    RESOLVE_DISPUTE = "resolve_dispute"


# ---------------------------------------------------------------------------
# Operation-to-role mapping
# ---------------------------------------------------------------------------

# Exactly one role may perform each operation.
OPERATION_ROLES: dict[DeliveryOperation, ActorRole] = {
    DeliveryOperation.CREATE_FOR_ORDER: ActorRole.ORDER_CREATOR,
    DeliveryOperation.SCHEDULE: ActorRole.TRAINER,
    DeliveryOperation.MARK_READY: ActorRole.TRAINER,
    DeliveryOperation.MARK_DELIVERED: ActorRole.TRAINER,
    DeliveryOperation.CONFIRM_RECEIPT: ActorRole.CLIENT,
    DeliveryOperation.REPORT_ISSUE: ActorRole.CLIENT,
    DeliveryOperation.REQUEST_RESCHEDULE: ActorRole.CLIENT,
    DeliveryOperation.APPROVE_RESCHEDULE: ActorRole.TRAINER,
    DeliveryOperation.REJECT_RESCHEDULE: ActorRole.TRAINER,
    DeliveryOperation.RESOLVE_DISPUTE: ActorRole.MANAGER,
}


@dataclass(frozen=True, slots=True)
class Actor:
    """The caller of a delivery operation.

    Attributes:
        actor_id: Identity of the caller (trainer, client, integration or manager id).
        role: Role the caller acts in.
    """

    actor_id: UUID
    role: ActorRole


class AuthorizationGate:
    """Role and ownership guard for delivery operations.

    Example:
        gate = AuthorizationGate()
        gate.require_role(actor, DeliveryOperation.MARK_READY)
        delivery = await load(delivery_id)
        gate.require_owner(actor, delivery)
    """

    def __init__(self, operation_roles: dict[DeliveryOperation, ActorRole] | None = None) -> None:
        """Initialize the gate.

        Args:
            operation_roles: Override of the operation-to-role mapping. Must
                cover every DeliveryOperation.

        Raises:
            ValueError: If an operation has no required role.
        """
        roles = dict(OPERATION_ROLES if operation_roles is None else operation_roles)
        missing = [op.value for op in DeliveryOperation if op not in roles]
        if missing:
            msg = f"No required role for operations: {', '.join(missing)}"
            raise ValueError(msg)
        self._operation_roles = roles

    def required_role(self, operation: DeliveryOperation) -> ActorRole:
        """Get the role allowed to perform an operation."""
        return self._operation_roles[operation]

    def require_role(
        self,
        actor: Actor,
        operation: DeliveryOperation,
        delivery_id: UUID | None = None,
    ) -> None:
        """Require the actor's role to match the operation.

        Raises:
            AuthorizationError: If the role does not match.
        """
        required = self.required_role(operation)
        if actor.role is not required:
            logger.warning(
                "Delivery operation denied: wrong role",
                extra={
                    "operation": operation.value,
                    "actor_id": str(actor.actor_id),
                    "actor_role": actor.role.value,
                    "required_role": required.value,
                    "delivery_id": str(delivery_id) if delivery_id else None,
                },
            )
            raise AuthorizationError(
                delivery_id=delivery_id,
                reason=f"{operation.value} requires role {required.value}",
            )

    def owner_id(self, actor: Actor, delivery: ProductDelivery) -> UUID | None:
        """Get the delivery party id the actor must match.

        Returns:
            The trainer or client id for party roles, None for roles that are
            not bound to a single delivery party.
        """
        if actor.role is ActorRole.TRAINER:
            return delivery.trainer_id
        elif actor.role is ActorRole.CLIENT:
            return delivery.client_id
        elif actor.role in (ActorRole.MANAGER, ActorRole.ORDER_CREATOR):
            return None
        msg = f"Unhandled actor role: {actor.role}"
        raise AssertionError(msg)

    def is_owner(self, actor: Actor, delivery: ProductDelivery) -> bool:
        """Check whether the actor may act on this delivery."""
        if actor.role is ActorRole.ORDER_CREATOR:
            return False
        owner = self.owner_id(actor, delivery)
        return owner is None or owner == actor.actor_id

    def require_owner(self, actor: Actor, delivery: ProductDelivery) -> None:
        """Require the actor to be the delivery's trainer or client.

        Raises:
            AuthorizationError: If the actor does not own the delivery.
        """
        if not self.is_owner(actor, delivery):
            logger.warning(
                "Delivery operation denied: not owner",
                extra={
                    "actor_id": str(actor.actor_id),
                    "actor_role": actor.role.value,
                    "delivery_id": str(delivery.delivery_id),
                },
            )
            raise AuthorizationError(
                delivery_id=delivery.delivery_id,
                reason="actor does not own delivery",
            )

    def ownership_clause(self, actor: Actor) -> ColumnElement[bool] | None:
        """SQL condition restricting rows to the actor's own deliveries.

        Used to re-assert ownership inside conditional updates and to scope
        list queries. Managers get no restriction.

        Raises:
            AuthorizationError: For roles that own no deliveries.
        """
        from locofit.db.models.deliveries import ProductDelivery

        if actor.role is ActorRole.TRAINER:
            return ProductDelivery.trainer_id == actor.actor_id
        elif actor.role is ActorRole.CLIENT:
            return ProductDelivery.client_id == actor.actor_id
        elif actor.role is ActorRole.MANAGER:
            return None
        elif actor.role is ActorRole.ORDER_CREATOR:
            raise AuthorizationError(reason="order creator owns no deliveries")
        msg = f"Unhandled actor role: {actor.role}"
        raise AssertionError(msg)
