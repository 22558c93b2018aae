"""Read-only delivery projections.

Queries never mutate state. Trainers and clients only ever see their own
deliveries; managers see all of them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from locofit.db.models.base import ActorRole, DeliveryStatus, RescheduleStatus
from locofit.db.models.deliveries import ProductDelivery
from locofit.services.alerts import DEFAULT_ALERT_WINDOW_HOURS, select_upcoming
from locofit.services.errors import AuthorizationError

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy import Select
    from sqlalchemy.ext.asyncio import AsyncSession

    from locofit.services.alerts import DeliveryAlertRegistry
    from locofit.services.authz import Actor

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200

OPEN_STATUSES = (DeliveryStatus.PENDING, DeliveryStatus.READY)


@dataclass(slots=True)
class DeliveryStats:
    """Per-status delivery counts for a trainer."""

    total: int = 0
    by_status: dict[DeliveryStatus, int] = field(
        default_factory=lambda: dict.fromkeys(DeliveryStatus, 0)
    )

    def count(self, status: DeliveryStatus) -> int:
        return self.by_status.get(status, 0)


class DeliveryQueryService:
    """Caller-scoped delivery listings and statistics.

    Example:
        queries = DeliveryQueryService(session)
        pending = await queries.pending_by_trainer(trainer)
        stats = await queries.stats_by_trainer(trainer)
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_by_trainer(
        self,
        actor: Actor,
        *,
        status: DeliveryStatus | None = None,
        client_id: UUID | None = None,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[ProductDelivery]:
        """List the trainer's deliveries, newest first."""
        self._require(actor, ActorRole.TRAINER)
        query = select(ProductDelivery).where(ProductDelivery.trainer_id == actor.actor_id)
        if status is not None:
            query = query.where(ProductDelivery.status == status)
        if client_id is not None:
            query = query.where(ProductDelivery.client_id == client_id)
        if created_from is not None:
            query = query.where(ProductDelivery.created_at >= created_from)
        if created_to is not None:
            query = query.where(ProductDelivery.created_at <= created_to)
        query = query.order_by(ProductDelivery.created_at.desc())
        return await self._fetch(query, limit, offset)

    async def list_by_client(
        self,
        actor: Actor,
        *,
        status: DeliveryStatus | None = None,
        trainer_id: UUID | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[ProductDelivery]:
        """List the client's deliveries, newest first."""
        self._require(actor, ActorRole.CLIENT)
        query = select(ProductDelivery).where(ProductDelivery.client_id == actor.actor_id)
        if status is not None:
            query = query.where(ProductDelivery.status == status)
        if trainer_id is not None:
            query = query.where(ProductDelivery.trainer_id == trainer_id)
        query = query.order_by(ProductDelivery.created_at.desc())
        return await self._fetch(query, limit, offset)

    async def pending_by_trainer(self, actor: Actor) -> list[ProductDelivery]:
        """Open deliveries (pending or ready), soonest scheduled first.

        Undated deliveries come last, oldest first.
        """
        self._require(actor, ActorRole.TRAINER)
        query = (
            select(ProductDelivery)
            .where(
                ProductDelivery.trainer_id == actor.actor_id,
                ProductDelivery.status.in_(OPEN_STATUSES),
            )
            .order_by(
                ProductDelivery.scheduled_date.is_(None),
                ProductDelivery.scheduled_date,
                ProductDelivery.created_at,
            )
        )
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def stats_by_trainer(self, actor: Actor) -> DeliveryStats:
        """Count the trainer's deliveries per status."""
        self._require(actor, ActorRole.TRAINER)
        query = (
            select(ProductDelivery.status, func.count())
            .where(ProductDelivery.trainer_id == actor.actor_id)
            .group_by(ProductDelivery.status)
        )
        result = await self._session.execute(query)

        stats = DeliveryStats()
        for status, count in result.all():
            stats.by_status[status] = count
            stats.total += count
        return stats

    async def reschedule_requests_by_trainer(self, actor: Actor) -> list[ProductDelivery]:
        """Open reschedule requests awaiting the trainer, oldest first."""
        self._require(actor, ActorRole.TRAINER)
        query = (
            select(ProductDelivery)
            .where(
                ProductDelivery.trainer_id == actor.actor_id,
                ProductDelivery.reschedule_status == RescheduleStatus.PENDING,
            )
            .order_by(ProductDelivery.reschedule_requested_at)
        )
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def list_all(
        self,
        actor: Actor,
        *,
        status: DeliveryStatus | None = None,
        trainer_id: UUID | None = None,
        client_id: UUID | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[ProductDelivery]:
        """Manager view over every delivery, newest first."""
        self._require(actor, ActorRole.MANAGER)
        query = select(ProductDelivery)
        if status is not None:
            query = query.where(ProductDelivery.status == status)
        if trainer_id is not None:
            query = query.where(ProductDelivery.trainer_id == trainer_id)
        if client_id is not None:
            query = query.where(ProductDelivery.client_id == client_id)
        query = query.order_by(ProductDelivery.created_at.desc())
        return await self._fetch(query, limit, offset)

    async def upcoming_for_trainer(
        self,
        actor: Actor,
        registry: DeliveryAlertRegistry,
        *,
        now: datetime | None = None,
        window_hours: int = DEFAULT_ALERT_WINDOW_HOURS,
    ) -> list[ProductDelivery]:
        """Open deliveries due within the alert window, minus dismissed ones."""
        pending = await self.pending_by_trainer(actor)
        return select_upcoming(
            pending,
            dismissed=registry.dismissed(actor.actor_id),
            now=now,
            window_hours=window_hours,
        )

    async def _fetch(
        self,
        query: Select[tuple[ProductDelivery]],
        limit: int,
        offset: int,
    ) -> list[ProductDelivery]:
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        result = await self._session.execute(query.limit(limit).offset(max(offset, 0)))
        return list(result.scalars().all())

    @staticmethod
    def _require(actor: Actor, role: ActorRole) -> None:
        if actor.role is not role:
            logger.warning(
                "Delivery query denied: wrong role",
                extra={
                    "actor_id": str(actor.actor_id),
                    "actor_role": actor.role.value,
                    "required_role": role.value,
                },
            )
            raise AuthorizationError(reason=f"query requires role {role.value}")
