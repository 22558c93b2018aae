"""Pytest configuration and shared fixtures.

Service and API tests run against an in-memory SQLite database through
aiosqlite; the schema is created from the ORM metadata for every test.
"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from locofit.api import create_app
from locofit.db.models import ActorRole, Base, ProductDelivery
from locofit.services.authz import Actor
from tests.factories import build_delivery


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def db_engine():
    """In-memory SQLite engine with the delivery schema created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for service-level tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_delivery(
    session_factory,
) -> Callable[..., Awaitable[ProductDelivery]]:
    """Factory inserting a delivery row and returning it.

    Rows are written through a separate session so tests read them back the
    way a fresh request would.
    """

    async def _make(trainer: Actor, client: Actor, **kwargs) -> ProductDelivery:
        delivery = build_delivery(trainer.actor_id, client.actor_id, **kwargs)
        async with session_factory() as session:
            session.add(delivery)
            await session.commit()
        return delivery

    return _make


# ---------------------------------------------------------------------------
# Actor fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def trainer() -> Actor:
    return Actor(actor_id=uuid4(), role=ActorRole.TRAINER)


@pytest.fixture
def other_trainer() -> Actor:
    return Actor(actor_id=uuid4(), role=ActorRole.TRAINER)


@pytest.fixture
def client() -> Actor:
    return Actor(actor_id=uuid4(), role=ActorRole.CLIENT)


@pytest.fixture
def other_client() -> Actor:
    return Actor(actor_id=uuid4(), role=ActorRole.CLIENT)


@pytest.fixture
def manager() -> Actor:
    return Actor(actor_id=uuid4(), role=ActorRole.MANAGER)


@pytest.fixture
def order_creator() -> Actor:
    return Actor(actor_id=uuid4(), role=ActorRole.ORDER_CREATOR)


@pytest.fixture
def notifier() -> AsyncMock:
    """Notification dispatcher recording every call."""
    return AsyncMock()


# ---------------------------------------------------------------------------
# API client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def test_app(session_factory, notifier):
    """Create a test FastAPI application backed by the test database."""
    app = create_app()
    app.state.session_factory = session_factory
    app.state.notifier = notifier
    return app


@pytest.fixture
async def api_client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for API testing."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
