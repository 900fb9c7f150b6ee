"""
Ad Campaign Service Protocols

Defines interfaces for dependency injection and testing.
Following the protocol-based architecture pattern.
"""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, Tuple

from .models import (
    AdCampaign,
    AdCampaignStatus,
    AdType,
)

if TYPE_CHECKING:
    from .pricing import PricingConfig


# ====================
# Repository Protocol
# ====================


class AdCampaignRepositoryProtocol(Protocol):
    """Protocol for ad campaign data repository"""

    async def initialize(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def health_check(self) -> bool:
        ...

    async def create_campaign(self, campaign: AdCampaign) -> AdCampaign:
        """Insert a campaign; raises SlotUnavailableError on the owner-slot unique index"""
        ...

    async def get_campaign(self, campaign_id: str) -> Optional[AdCampaign]:
        ...

    async def update_campaign(
        self,
        campaign_id: str,
        updates: Dict[str, Any],
        expected_status: Optional[List[AdCampaignStatus]] = None,
    ) -> Optional[AdCampaign]:
        """
        Apply updates in one write.

        When expected_status is given the write only happens while the stored
        status is one of them; None is returned when the guard did not match.
        """
        ...

    async def list_campaigns(
        self,
        owner_id: Optional[str] = None,
        status: Optional[List[AdCampaignStatus]] = None,
        ad_type: Optional[AdType] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[AdCampaign], int]:
        ...

    async def list_live_campaigns(
        self,
        ad_type: AdType,
        now: datetime,
        slot_number: Optional[int] = None,
        owner_id: Optional[str] = None,
    ) -> List[AdCampaign]:
        """Campaigns with status pending/active and end_date > now"""
        ...

    async def list_active_for_display(
        self, ad_type: AdType, now: datetime, slot_number: Optional[int] = None
    ) -> List[AdCampaign]:
        ...

    async def cancel_unpaid_in_slot(
        self, owner_id: str, ad_type: AdType, slot_number: Optional[int]
    ) -> List[str]:
        """Cancel the owner's awaiting_payment drafts for a placement; returns their ids"""
        ...

    async def find_expiring_unwarned(self, now: datetime, until: datetime) -> List[AdCampaign]:
        ...

    async def mark_expiry_warned(self, campaign_id: str) -> bool:
        ...

    async def find_overdue_active(self, now: datetime) -> List[AdCampaign]:
        ...

    async def find_overdue_in_slot(
        self, owner_id: str, ad_type: AdType, slot_number: Optional[int], now: datetime
    ) -> List[AdCampaign]:
        """The owner's active campaigns in one slot with end_date < now"""
        ...

    async def expire_if_overdue(self, campaign_id: str, now: datetime) -> bool:
        """active -> expired in one guarded write (status='active' AND end_date < now)"""
        ...

    async def find_auto_renewable(self) -> List[AdCampaign]:
        ...

    async def increment_views(self, campaign_id: str, now: datetime) -> Optional[AdCampaign]:
        ...

    async def increment_clicks(self, campaign_id: str) -> Optional[AdCampaign]:
        ...

    async def load_pricing_config(self) -> Optional["PricingConfig"]:
        """Persisted ad plan config, or None when none has been saved"""
        ...

    async def save_pricing_config(self, config: "PricingConfig") -> None:
        ...


# ====================
# Event Bus Protocol
# ====================


class EventBusProtocol(Protocol):
    """Protocol for event bus"""

    async def publish_event(self, event: Any) -> None:
        ...


# ====================
# Client Protocols
# ====================


class ShopClientProtocol(Protocol):
    """Protocol for the shop/product directory"""

    async def get_shop(self, shop_id: str) -> Optional[Dict[str, Any]]:
        ...

    async def product_belongs_to_shop(self, product_id: str, shop_id: str) -> bool:
        ...


class MediaClientProtocol(Protocol):
    """Protocol for the media store"""

    async def delete(self, public_id: str) -> bool:
        ...


class NotificationClientProtocol(Protocol):
    """Protocol for the notification sink"""

    async def notify(self, recipient: str, subject: str, body: str) -> bool:
        ...


class PaymentClientProtocol(Protocol):
    """Protocol for payment capture"""

    async def capture(self, amount: Decimal, method: str, reference: str) -> str:
        """Capture a payment and return its payment id; raises PaymentCaptureError"""
        ...


# ====================
# Exceptions
# ====================


class AdCampaignServiceError(Exception):
    """Base exception for ad campaign service errors"""
    pass


class AdCampaignNotFoundError(AdCampaignServiceError):
    """Raised when campaign is not found"""
    pass


class InvalidAdTypeError(AdCampaignServiceError):
    """Raised for an unknown or currently unavailable ad type"""

    def __init__(self, message: str, ad_type: Optional[str] = None):
        super().__init__(message)
        self.ad_type = ad_type


class InvalidDurationError(AdCampaignServiceError):
    """Raised when the duration is not one of the offered month counts"""

    def __init__(self, message: str, duration: Optional[int] = None):
        super().__init__(message)
        self.duration = duration


class SlotUnavailableError(AdCampaignServiceError):
    """Raised when the owner already holds a live campaign in the slot"""
    pass


class NotSlotBasedError(AdCampaignServiceError):
    """Raised when a slot operation targets a non-slot ad type"""
    pass


class InvalidTransitionError(AdCampaignServiceError):
    """Raised when the campaign's state does not allow the operation"""

    def __init__(self, message: str, current_status: Optional[AdCampaignStatus] = None):
        super().__init__(message)
        self.current_status = current_status


class UnauthorizedError(AdCampaignServiceError):
    """Raised on owner/admin mismatch"""
    pass


class LinkTargetInvalidError(AdCampaignServiceError):
    """Raised when the link does not point at the owner's shop or product"""
    pass


class PaymentNotCompletedError(AdCampaignServiceError):
    """Raised when approving a campaign that has not been paid"""
    pass


class MediaRequiredError(AdCampaignServiceError):
    """Raised when a slot-based campaign has no media"""
    pass


class AdCampaignValidationError(AdCampaignServiceError):
    """Raised when request validation fails"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class PaymentCaptureError(AdCampaignServiceError):
    """Raised when the payment collaborator fails to capture a renewal payment"""
    pass


class RepositoryError(AdCampaignServiceError):
    """Raised when the data store fails"""
    pass


__all__ = [
    "AdCampaignRepositoryProtocol",
    "EventBusProtocol",
    "ShopClientProtocol",
    "MediaClientProtocol",
    "NotificationClientProtocol",
    "PaymentClientProtocol",
    "AdCampaignServiceError",
    "AdCampaignNotFoundError",
    "InvalidAdTypeError",
    "InvalidDurationError",
    "SlotUnavailableError",
    "NotSlotBasedError",
    "InvalidTransitionError",
    "UnauthorizedError",
    "LinkTargetInvalidError",
    "PaymentNotCompletedError",
    "MediaRequiredError",
    "AdCampaignValidationError",
    "PaymentCaptureError",
    "RepositoryError",
]
