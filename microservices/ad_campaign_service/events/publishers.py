"""
Ad Campaign Event Publishers

Publishes campaign lifecycle events to NATS JetStream.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from core.nats_client import Event

from .models import AdCampaignEventType, PaymentOrphanedEventData, create_lifecycle_event_data

logger = logging.getLogger(__name__)


class AdCampaignEventPublisher:
    """Publisher for ad campaign service events"""

    def __init__(self, event_bus=None):
        self.event_bus = event_bus
        self.source = "ad_campaign_service"

    async def publish(
        self,
        event_type: AdCampaignEventType,
        data: Dict[str, Any],
    ) -> bool:
        """
        Publish an event to NATS.

        Args:
            event_type: The event type enum
            data: Event data payload

        Returns:
            True if published successfully, False otherwise
        """
        if not self.event_bus:
            logger.debug(f"Event bus not configured, skipping publish: {event_type.value}")
            return False

        try:
            event = Event(
                event_type=event_type.value,
                source=self.source,
                data=data,
            )
            await self.event_bus.publish_event(event)
            logger.debug(f"Published event: {event_type.value}")
            return True

        except Exception as e:
            logger.error(f"Failed to publish event {event_type.value}: {e}")
            return False

    async def publish_lifecycle(
        self,
        event_type: AdCampaignEventType,
        campaign,
        previous_status=None,
        reason: Optional[str] = None,
        days_remaining: Optional[int] = None,
    ) -> bool:
        """Publish an ad_campaign.* event describing the campaign after a transition"""
        data = create_lifecycle_event_data(
            campaign,
            previous_status=previous_status,
            reason=reason,
            days_remaining=days_remaining,
        )
        return await self.publish(event_type, data.model_dump(mode="json"))

    async def publish_payment_orphaned(
        self,
        campaign,
        payment_id: str,
        reason: str,
        payment_method: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> bool:
        """Ask for a refund of a payment the campaign could not take"""
        data = PaymentOrphanedEventData(
            campaign_id=campaign.campaign_id,
            owner_id=campaign.owner_id,
            campaign_status=campaign.status.value,
            payment_id=payment_id,
            payment_method=payment_method,
            amount=amount,
            reason=reason,
        )
        return await self.publish(AdCampaignEventType.PAYMENT_ORPHANED, data.model_dump(mode="json"))


__all__ = ["AdCampaignEventPublisher"]
