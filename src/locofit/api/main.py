"""locofit API service entry point.

This module provides the application instance for ASGI servers (uvicorn)
and a run() function for direct execution.
"""

import logging

from locofit.api import create_app
from locofit.api.middleware.request_id import RequestIDLogFilter
from locofit.core.settings import get_settings_safe

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] [request_id=%(request_id)s] %(message)s"

# Create the application instance for ASGI servers
# This is what uvicorn references: locofit.api.main:app
app = create_app(get_settings_safe())


def configure_logging(level: str) -> None:
    """Configure root logging with request correlation ids."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    for handler in logging.getLogger().handlers:
        handler.addFilter(RequestIDLogFilter())


def run() -> None:
    """Run the API server using uvicorn.

    This function is called by the locofit-api console script
    defined in pyproject.toml.
    """
    import uvicorn

    settings = get_settings_safe()
    if settings is not None:
        host, port, log_level = settings.api_host, settings.api_port, settings.log_level
    else:
        logger.warning("Could not load settings, using defaults")
        host, port, log_level = "127.0.0.1", 8000, "INFO"

    configure_logging(log_level)
    logger.info("Starting locofit API on %s:%d", host, port)

    uvicorn.run(
        "locofit.api.main:app",
        host=host,
        port=port,
        reload=False,
    )


if __name__ == "__main__":
    run()
