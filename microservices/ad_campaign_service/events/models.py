"""
Ad Campaign Service Event Models

Event data models for campaign lifecycle events.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

# =============================================================================
# Event Type Definitions (Service-Specific)
# =============================================================================


class AdCampaignEventType(str, Enum):
    """
    Events published by ad_campaign_service.

    Stream: ad_campaign-stream
    Subjects: ad_campaign.>
    """
    CREATED = "ad_campaign.created"
    PAYMENT_COMPLETED = "ad_campaign.payment_completed"
    APPROVED = "ad_campaign.approved"
    REJECTED = "ad_campaign.rejected"
    CANCELLED = "ad_campaign.cancelled"
    RENEWED = "ad_campaign.renewed"
    AUTO_RENEWED = "ad_campaign.auto_renewed"
    AUTO_RENEW_FAILED = "ad_campaign.auto_renew_failed"
    EXPIRED = "ad_campaign.expired"
    EXPIRING_SOON = "ad_campaign.expiring_soon"
    PAYMENT_ORPHANED = "ad_campaign.payment_orphaned"


class AdCampaignSubscribedEventType(str, Enum):
    """Events that ad_campaign_service subscribes to from other services."""
    PAYMENT_COMPLETED = "payment.completed"


class AdCampaignStreamConfig:
    """Stream configuration for ad_campaign_service"""
    STREAM_NAME = "ad_campaign-stream"
    SUBJECTS = ["ad_campaign.>"]
    MAX_MESSAGES = 100000
    CONSUMER_PREFIX = "ad_campaign"


# ============================================================================
# Published Event Models
# ============================================================================


class AdCampaignLifecycleEventData(BaseModel):
    """
    Common payload for every ad_campaign.* event.

    previous_status is set on transitions; reason and days_remaining only on
    the events that carry them (rejected, auto_renew_failed, expiring_soon).
    """

    campaign_id: str = Field(..., description="Campaign ID")
    owner_id: str = Field(..., description="Owning shop")
    ad_type: str = Field(..., description="Ad placement type")
    slot_number: Optional[int] = Field(None, description="Slot for slot-based types")
    status: str = Field(..., description="Status after the event")
    previous_status: Optional[str] = Field(None, description="Status before the event")
    payment_status: str = Field(..., description="Payment status after the event")
    total_price: Decimal = Field(..., description="Price of the current term")
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    auto_renew: bool = True
    reason: Optional[str] = None
    days_remaining: Optional[int] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        json_schema_extra = {
            "example": {
                "campaign_id": "adc_3f9a0c2b7d4e41f6a8b1c0de",
                "owner_id": "shop_123",
                "ad_type": "top_sidebar",
                "slot_number": 2,
                "status": "active",
                "previous_status": "pending",
                "payment_status": "completed",
                "total_price": "540.00",
                "auto_renew": True,
                "timestamp": "2026-01-10T00:00:00Z",
            }
        }


class PaymentOrphanedEventData(BaseModel):
    """
    Event: ad_campaign.payment_orphaned

    A completed payment that could not be applied to its campaign (the draft
    was superseded or cancelled, the owner's slot was taken, or the amount
    was short). Consumed by the payment service to issue a refund.
    """

    campaign_id: str
    owner_id: str
    campaign_status: str = Field(..., description="Campaign status when the payment arrived")
    payment_id: str
    payment_method: Optional[str] = None
    amount: Optional[Decimal] = None
    reason: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ============================================================================
# Subscribed Event Models
# ============================================================================


class PaymentCompletedEventData(BaseModel):
    """
    Event: payment.completed (from payment_service)

    The campaign is found through campaign_id, or through metadata
    ad_campaign_id / campaign_id when the payment was created for an ad.
    """

    payment_intent_id: Optional[str] = None
    payment_id: Optional[str] = None
    campaign_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: str = "USD"
    payment_method: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def resolve_campaign_id(self) -> Optional[str]:
        if self.campaign_id:
            return self.campaign_id
        metadata = self.metadata or {}
        if metadata.get("ad_campaign_id"):
            return metadata["ad_campaign_id"]
        candidate = metadata.get("campaign_id")
        if isinstance(candidate, str) and candidate.startswith("adc_"):
            return candidate
        return None

    def resolve_payment_id(self) -> Optional[str]:
        return self.payment_id or self.payment_intent_id


# ============================================================================
# Helper Functions
# ============================================================================


def create_lifecycle_event_data(
    campaign,
    previous_status=None,
    reason: Optional[str] = None,
    days_remaining: Optional[int] = None,
) -> AdCampaignLifecycleEventData:
    """Build the event payload from an AdCampaign"""
    return AdCampaignLifecycleEventData(
        campaign_id=campaign.campaign_id,
        owner_id=campaign.owner_id,
        ad_type=campaign.ad_type.value,
        slot_number=campaign.slot_number,
        status=campaign.status.value,
        previous_status=previous_status.value if isinstance(previous_status, Enum) else previous_status,
        payment_status=campaign.payment_status.value,
        total_price=campaign.total_price,
        start_date=campaign.start_date,
        end_date=campaign.end_date,
        auto_renew=campaign.auto_renew,
        reason=reason,
        days_remaining=days_remaining,
    )


__all__ = [
    "AdCampaignEventType",
    "AdCampaignSubscribedEventType",
    "AdCampaignStreamConfig",
    "AdCampaignLifecycleEventData",
    "PaymentOrphanedEventData",
    "PaymentCompletedEventData",
    "create_lifecycle_event_data",
]
