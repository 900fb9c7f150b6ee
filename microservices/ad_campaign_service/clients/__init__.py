"""
Ad Campaign Service Client Module

HTTP clients for synchronous communication with other microservices.
"""

from .shop_client import ShopClient
from .media_client import MediaClient
from .notification_client import NotificationClient
from .payment_client import PaymentClient

__all__ = [
    "ShopClient",
    "MediaClient",
    "NotificationClient",
    "PaymentClient",
]
