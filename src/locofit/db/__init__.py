"""locofit database module.

Each application builds its own engine and session factory from
DatabaseSettings when it starts (see locofit.api.create_app) and keeps them
on ``app.state``. This module builds them and scopes one unit of work.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from locofit.core.config import DatabaseSettings

PSYCOPG_SCHEME = "postgresql+psycopg://"


def psycopg_url(url: str) -> str:
    """Point a plain PostgreSQL URL at the psycopg driver.

    URLs that already name a driver are returned unchanged.
    """
    for scheme in ("postgresql://", "postgres://"):
        if url.startswith(scheme):
            return PSYCOPG_SCHEME + url[len(scheme) :]
    return url


def create_engine_from_settings(settings: DatabaseSettings) -> AsyncEngine:
    """Build the async engine with the configured pool."""
    return create_async_engine(
        psycopg_url(str(settings.url)),
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout,
        echo=settings.echo,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory whose objects stay readable after commit."""
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session, rolling back if the block raises.

    Services commit their own units of work.

    Usage:
        async with session_scope(app.state.session_factory) as session:
            service = DeliveryLifecycleService(session)
            await service.mark_ready(actor, delivery_id)
    """
    async with factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
