"""locofit API service.

FastAPI application providing the product delivery endpoints:
- Delivery lifecycle transitions for trainers and clients
- Reschedule negotiation
- Dispute resolution for managers
- Caller-scoped listings, statistics and dashboard alerts

This module provides the app factory pattern for creating configured
FastAPI instances suitable for testing and production deployment.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from locofit.api.middleware import ErrorHandlerMiddleware, RequestIDMiddleware
from locofit.api.routers import deliveries_router
from locofit.db import create_engine_from_settings, create_session_factory
from locofit.services.alerts import DeliveryAlertRegistry
from locofit.services.notifications import build_notification_dispatcher

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from locofit.core.config import Settings

logger = logging.getLogger(__name__)

API_TITLE = "locofit API"
API_DESCRIPTION = """
Product delivery fulfillment for the trainer marketplace.

## Callers

Requests carry the caller identity in `X-Actor-Id` and `X-Actor-Role`
(`trainer`, `client`, `order_creator`, `manager`), set by the gateway.

## Documentation

- OpenAPI spec: `/api/openapi.json`
- Swagger UI: `/api/docs`
- ReDoc: `/api/redoc`
"""


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the database pool on startup, release it and the notifier on shutdown.

    A session factory already placed on app.state is kept as is.
    """
    engine = None
    if app.state.settings is not None and app.state.session_factory is None:
        engine = create_engine_from_settings(app.state.settings.database)
        app.state.session_factory = create_session_factory(engine)
    yield
    await app.state.notifier.close()
    if engine is not None:
        await engine.dispose()
        app.state.session_factory = None
    logger.info("locofit API shut down")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure a FastAPI application instance.

    The app gets:
    - The delivery router mounted under /api
    - Request ID middleware for distributed tracing
    - Error handling middleware for consistent JSON responses
    - A database session factory, opened by the lifespan from settings
    - A notification dispatcher built from settings
    - An in-process registry of dismissed dashboard alerts

    Args:
        settings: Optional Settings instance. Without settings the app logs
            notifications instead of pushing them.

    Returns:
        Configured FastAPI application ready to serve requests.

    Example:
        app = create_app()

        # For testing
        test_settings = Settings(environment="dev", debug=True, database={"url": ...})
        app = create_app(test_settings)
    """
    version = settings.app_version if settings else "0.1.0"

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=version,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=_lifespan,
    )

    app.state.settings = settings
    app.state.session_factory = None
    app.state.notifier = build_notification_dispatcher(
        settings.notifications if settings else None
    )
    app.state.alert_registry = DeliveryAlertRegistry()

    _add_middleware(app)
    _include_routers(app)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint for container orchestration."""
        return {"status": "healthy"}

    logger.info("locofit API application created (version=%s)", version)

    return app


def _add_middleware(app: FastAPI) -> None:
    """Add middleware to the application.

    The last middleware added is the outermost. Request IDs are assigned
    first so error bodies can include them.
    """
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)


def _include_routers(app: FastAPI) -> None:
    """Include API routers under the /api prefix."""
    app.include_router(deliveries_router, prefix="/api")
