"""Upcoming-delivery alerts for the trainer dashboard.

A trainer sees an alert for each pending or ready delivery scheduled within
the alert window. Dismissing an alert is ephemeral per-user UI state: the
registry keeps acknowledged delivery ids in process memory only and is not
part of any delivery invariant.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable
    from uuid import UUID

    from locofit.db.models.deliveries import ProductDelivery

logger = logging.getLogger(__name__)

DEFAULT_ALERT_WINDOW_HOURS = 48


class DeliveryAlertRegistry:
    """Per-user set of dismissed delivery alerts."""

    def __init__(self) -> None:
        self._dismissed: defaultdict[UUID, set[UUID]] = defaultdict(set)

    def dismiss(self, user_id: UUID, delivery_id: UUID) -> None:
        self._dismissed[user_id].add(delivery_id)
        logger.debug(
            "Delivery alert dismissed",
            extra={"user_id": str(user_id), "delivery_id": str(delivery_id)},
        )

    def dismissed(self, user_id: UUID) -> frozenset[UUID]:
        return frozenset(self._dismissed.get(user_id, ()))

    def clear(self, user_id: UUID) -> None:
        self._dismissed.pop(user_id, None)


def select_upcoming(
    deliveries: Iterable[ProductDelivery],
    *,
    dismissed: frozenset[UUID] = frozenset(),
    now: datetime | None = None,
    window_hours: int = DEFAULT_ALERT_WINDOW_HOURS,
) -> list[ProductDelivery]:
    """Pick deliveries whose scheduled date falls within the alert window.

    Dates are compared as UTC calendar days: a delivery is due from today
    through the day on which the window ends. Deliveries without a date,
    already past, further out than the window, or dismissed are skipped.

    Args:
        deliveries: Candidate deliveries, normally the trainer's pending ones.
        dismissed: Delivery ids the user acknowledged.
        now: Reference time (defaults to the current UTC time).
        window_hours: Size of the look-ahead window.

    Returns:
        Matching deliveries in input order.
    """
    now = now or datetime.now(UTC)
    today = now.astimezone(UTC).date()
    last_day = (now + timedelta(hours=window_hours)).astimezone(UTC).date()

    upcoming = []
    for delivery in deliveries:
        if delivery.delivery_id in dismissed or delivery.scheduled_date is None:
            continue
        if today <= delivery.scheduled_date <= last_day:
            upcoming.append(delivery)
    return upcoming
