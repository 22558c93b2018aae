"""locofit - product delivery fulfillment for the trainer marketplace.

Tracks the physical hand-off of ordered products from trainer to client:
delivery state machine, reschedule negotiation, role and ownership
authorization, and party notification.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
