"""
Ad Campaign Service

Advertisement campaign engine for the marketplace.

Features:
- Duration-discounted pricing per ad placement type
- Slot capacity with rotation (one live campaign per owner per slot)
- Campaign lifecycle: payment, approval, cancellation, renewal
- Scheduled expiry warnings, expiry and auto-renewal
- View/click counters with click-through rate
"""

__version__ = "1.0.0"
