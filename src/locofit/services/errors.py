"""Domain errors raised by delivery operations.

Every error carries a machine-readable code and one human-readable message
suitable for direct display. None of them are retried internally.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from uuid import UUID

    from locofit.db.models.base import DeliveryStatus

# Shared by authorization and lookup failures so callers cannot tell
# "does not exist" from "not yours".
NOT_VISIBLE_MESSAGE = "Delivery not found or not permitted"


class DeliveryError(Exception):
    """Base class for delivery operation failures."""

    code: ClassVar[str] = "delivery_error"

    def __init__(
        self,
        message: str,
        *,
        delivery_id: UUID | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.delivery_id = delivery_id
        self.detail = detail
        super().__init__(message)


class ValidationError(DeliveryError):
    """Malformed input: missing field, text too short, date in the past."""

    code = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        delivery_id: UUID | None = None,
    ) -> None:
        self.field = field
        super().__init__(
            message,
            delivery_id=delivery_id,
            detail={"field": field} if field else None,
        )


class AuthorizationError(DeliveryError):
    """Wrong role or non-owning identity.

    The message never reveals whether the delivery exists.
    """

    code = "not_found"

    def __init__(self, *, delivery_id: UUID | None = None, reason: str | None = None) -> None:
        # Kept for logging only, never rendered to the caller
        self.reason = reason
        super().__init__(NOT_VISIBLE_MESSAGE, delivery_id=delivery_id)


class NotFoundError(DeliveryError):
    """The delivery id does not resolve to a record visible to the caller."""

    code = "not_found"

    def __init__(self, delivery_id: UUID | None = None) -> None:
        super().__init__(NOT_VISIBLE_MESSAGE, delivery_id=delivery_id)


class StateConflictError(DeliveryError):
    """The requested transition is not legal from the record's current state."""

    code = "state_conflict"

    def __init__(
        self,
        message: str,
        *,
        delivery_id: UUID | None = None,
        current_status: DeliveryStatus | None = None,
    ) -> None:
        self.current_status = current_status
        super().__init__(
            message,
            delivery_id=delivery_id,
            detail={"current_status": current_status.value} if current_status else None,
        )
