"""Error handling middleware for consistent JSON error responses.

All errors are converted to one JSON structure:
- error: Machine-readable error code
- message: Human-readable description, safe to show to the user
- detail: Optional additional information
- request_id: Correlation ID for debugging

Delivery domain errors map to HTTP statuses here; authorization failures and
missing records share the 404 response so that callers cannot tell them apart.
"""

import logging
from collections.abc import Callable
from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from locofit.api.middleware.request_id import get_request_id
from locofit.services.errors import (
    AuthorizationError,
    DeliveryError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)

logger = logging.getLogger(__name__)


DELIVERY_ERROR_STATUS: dict[type[DeliveryError], int] = {
    ValidationError: 400,
    AuthorizationError: 404,
    NotFoundError: 404,
    StateConflictError: 409,
}


class APIError(Exception):
    """Base exception for API errors with structured details."""

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int = 400,
        detail: dict[str, Any] | None = None,
    ) -> None:
        """Initialize API error.

        Args:
            error: Machine-readable error code (e.g., "unauthorized").
            message: Human-readable error description.
            status_code: HTTP status code to return.
            detail: Optional additional details for debugging.
        """
        self.error = error
        self.message = message
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


class AuthenticationError(APIError):
    """Missing or malformed caller identity (401)."""

    def __init__(
        self, message: str = "Authentication required", detail: dict[str, Any] | None = None
    ) -> None:
        super().__init__(
            error="unauthorized",
            message=message,
            status_code=401,
            detail=detail,
        )


def status_for(exc: DeliveryError) -> int:
    """HTTP status for a delivery domain error."""
    for error_cls in type(exc).__mro__:
        if error_cls in DELIVERY_ERROR_STATUS:
            return DELIVERY_ERROR_STATUS[error_cls]
    return 400


def build_error_response(
    error: str,
    message: str,
    status_code: int,
    detail: dict[str, Any] | None = None,
) -> JSONResponse:
    """Build a standardized error response.

    Args:
        error: Machine-readable error code.
        message: Human-readable description.
        status_code: HTTP status code.
        detail: Optional additional details.

    Returns:
        JSONResponse with consistent error structure.
    """
    body: dict[str, Any] = {
        "error": error,
        "message": message,
    }

    request_id = get_request_id()
    if request_id:
        body["request_id"] = request_id

    if detail:
        body["detail"] = detail

    return JSONResponse(status_code=status_code, content=body)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Middleware that catches exceptions and returns consistent JSON errors.

    Handles:
    - DeliveryError and subclasses: delivery domain failures
    - APIError and subclasses: request-level failures such as authentication
    - HTTPException: FastAPI's built-in HTTP errors
    - Generic exceptions: Unexpected errors (logged, returns 500)
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        try:
            return await call_next(request)
        except DeliveryError as exc:
            status_code = status_for(exc)
            # Hide which of "missing" and "not yours" applied
            detail = None if status_code == 404 else exc.detail
            return build_error_response(
                error=exc.code,
                message=exc.message,
                status_code=status_code,
                detail=detail,
            )
        except APIError as exc:
            return build_error_response(
                error=exc.error,
                message=exc.message,
                status_code=exc.status_code,
                detail=exc.detail,
            )
        except HTTPException as exc:
            return build_error_response(
                error="http_error",
                message=str(exc.detail),
                status_code=exc.status_code,
            )
        except Exception:
            logger.exception(
                "Unexpected error processing request: %s %s",
                request.method,
                request.url.path,
            )
            return build_error_response(
                error="internal_error",
                message="An internal error occurred",
                status_code=500,
            )
