"""locofit API middleware components.

This module provides middleware for:
- Request ID tracking for distributed tracing
- Consistent error response formatting
- Caller identity resolution
"""

from locofit.api.middleware.auth import CurrentActor, get_current_actor
from locofit.api.middleware.errors import ErrorHandlerMiddleware
from locofit.api.middleware.request_id import RequestIDMiddleware

__all__ = [
    "CurrentActor",
    "ErrorHandlerMiddleware",
    "RequestIDMiddleware",
    "get_current_actor",
]
