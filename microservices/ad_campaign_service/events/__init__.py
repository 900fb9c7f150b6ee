"""
Ad Campaign Service Event Package

Event-driven architecture for the ad campaign service:
- Publishing: campaign lifecycle events (created, approved, expired, renewed, ...)
- Subscription: payment.completed to move paid campaigns into review
"""

from .models import (
    AdCampaignEventType,
    AdCampaignSubscribedEventType,
    AdCampaignStreamConfig,
    AdCampaignLifecycleEventData,
    PaymentCompletedEventData,
    create_lifecycle_event_data,
)
from .publishers import AdCampaignEventPublisher
from .handlers import get_event_handlers, handle_payment_completed

__all__ = [
    # Event models
    "AdCampaignEventType",
    "AdCampaignSubscribedEventType",
    "AdCampaignStreamConfig",
    "AdCampaignLifecycleEventData",
    "PaymentCompletedEventData",
    "create_lifecycle_event_data",
    # Publishers
    "AdCampaignEventPublisher",
    # Handlers
    "get_event_handlers",
    "handle_payment_completed",
]
