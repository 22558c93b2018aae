"""Request correlation for API calls and log records.

Every response carries an X-Request-ID header. A client-supplied id is kept,
otherwise a new UUID is generated. The id is also exposed to logging through
RequestIDLogFilter so delivery log lines can be tied back to the HTTP call
that triggered them, and it is echoed in error bodies.
"""

import logging
import uuid
from collections.abc import Callable
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

REQUEST_ID_HEADER = "X-Request-ID"

# Longer client-supplied ids are replaced rather than echoed
MAX_REQUEST_ID_LENGTH = 128


def get_request_id() -> str | None:
    """Get the id of the request being handled, if any."""
    return request_id_ctx.get()


class RequestIDLogFilter(logging.Filter):
    """Adds a ``request_id`` attribute to every log record.

    Records emitted outside a request get ``-``.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"
        return True


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns a correlation id to each request and echoes it back."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        incoming = request.headers.get(REQUEST_ID_HEADER)
        if incoming and len(incoming) <= MAX_REQUEST_ID_LENGTH:
            request_id = incoming
        else:
            request_id = str(uuid.uuid4())

        token = request_id_ctx.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
