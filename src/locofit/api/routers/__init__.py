"""locofit API routers.

- deliveries: product delivery lifecycle, reschedule negotiation and views
"""

from locofit.api.routers.deliveries import router as deliveries_router

__all__ = ["deliveries_router"]
