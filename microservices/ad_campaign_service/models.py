"""
Ad Campaign Service Data Models

Advertisement campaigns, pricing breakdowns, slot occupancy and the
request/response models of the HTTP surface.
"""

from enum import Enum
from typing import Optional, Dict, Any, List
from datetime import datetime, timedelta
from decimal import Decimal
from pydantic import BaseModel, Field, field_validator


# ====================
# Enumerations
# ====================

class AdType(str, Enum):
    """Advertisement placement types"""
    LEADERBOARD = "leaderboard"
    TOP_SIDEBAR = "top_sidebar"
    RIGHT_SIDEBAR_TOP = "right_sidebar_top"
    RIGHT_SIDEBAR_MIDDLE = "right_sidebar_middle"
    RIGHT_SIDEBAR_BOTTOM = "right_sidebar_bottom"
    FEATURED_STORE = "featured_store"
    FEATURED_PRODUCT = "featured_product"
    NEWSLETTER_INCLUSION = "newsletter_inclusion"
    EDITORIAL_WRITEUP = "editorial_writeup"

    @property
    def is_slot_based(self) -> bool:
        return self in SLOT_BASED_AD_TYPES


SLOT_BASED_AD_TYPES = frozenset({
    AdType.LEADERBOARD,
    AdType.TOP_SIDEBAR,
    AdType.RIGHT_SIDEBAR_TOP,
    AdType.RIGHT_SIDEBAR_MIDDLE,
    AdType.RIGHT_SIDEBAR_BOTTOM,
})

# Recommended creative dimensions (width, height) for slot-based placements
AD_IMAGE_DIMENSIONS = {
    AdType.LEADERBOARD: (728, 120),
    AdType.TOP_SIDEBAR: (200, 120),
    AdType.RIGHT_SIDEBAR_TOP: (300, 200),
    AdType.RIGHT_SIDEBAR_MIDDLE: (300, 200),
    AdType.RIGHT_SIDEBAR_BOTTOM: (300, 200),
}


class AdCampaignStatus(str, Enum):
    """Campaign lifecycle states"""
    AWAITING_PAYMENT = "awaiting_payment"
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class PaymentStatus(str, Enum):
    """Payment status, independent of the lifecycle status"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


# ====================
# Core Data Models
# ====================

class MediaRef(BaseModel):
    """Opaque reference to media hosted by the media store"""
    url: str = Field(..., min_length=1)
    public_id: str = Field(..., min_length=1)


class RenewalRecord(BaseModel):
    """One entry of a campaign's append-only renewal history"""
    renewed_at: datetime
    duration: int
    price: Decimal
    payment_id: Optional[str] = None


class PriceBreakdown(BaseModel):
    """Result of pricing an ad type for a duration"""
    ad_type: AdType
    duration: int
    base_price: Decimal = Field(..., description="Monthly rate")
    discount_percent: int = Field(..., ge=0, le=100)
    subtotal: Decimal = Field(..., description="Monthly rate times duration")
    discount_amount: Decimal
    total_price: Decimal = Field(..., ge=0)
    is_free: bool = Field(False, description="Plan is in free mode")


class AdCampaign(BaseModel):
    """
    Advertisement campaign - a paid placement owned by a shop.

    Price fields are computed by the pricing engine at creation and on every
    renewal; they are stored and never recomputed implicitly.
    """
    id: Optional[int] = None
    campaign_id: str = Field(..., min_length=1, description="Unique campaign identifier")

    # Ownership and placement (immutable after creation)
    owner_id: str = Field(..., min_length=1, description="Owning shop ID")
    ad_type: AdType
    slot_number: Optional[int] = Field(None, ge=1, le=6)

    # Creative
    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    media_type: MediaType = MediaType.IMAGE
    media: Optional[MediaRef] = None
    link_url: str = Field(..., min_length=1)
    product_id: Optional[str] = None

    # Pricing
    duration: int = Field(..., description="Booked months")
    base_price: Decimal
    discount_percent: int = 0
    total_price: Decimal

    # Lifecycle
    status: AdCampaignStatus = AdCampaignStatus.AWAITING_PAYMENT
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_id: Optional[str] = None
    payment_method: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    start_date: datetime
    end_date: datetime
    auto_renew: bool = True
    expiry_warning_emailed: bool = False
    renewal_history: List[RenewalRecord] = Field(default_factory=list)

    # Analytics
    views: int = Field(default=0, ge=0)
    clicks: int = Field(default=0, ge=0)
    click_through_rate: float = Field(default=0.0, ge=0)

    # Display rotation
    rotation_order: int = 0
    last_displayed_at: Optional[datetime] = None

    # Timestamps
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_slot_based(self) -> bool:
        return self.ad_type.is_slot_based

    def is_expiring_soon(self, now: datetime, window_days: int = 7) -> bool:
        """True while end_date falls within the warning window and has not passed"""
        return now < self.end_date <= now + timedelta(days=window_days)


# ====================
# Request Models
# ====================

class AdCampaignCreateRequest(BaseModel):
    """
    Create campaign request.

    ad_type and duration are plain values so unsupported ones surface as
    domain errors instead of schema errors.
    """
    ad_type: str
    slot_number: Optional[int] = None
    duration: int
    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    media_type: MediaType = MediaType.IMAGE
    media: Optional[MediaRef] = None
    link_url: Optional[str] = None
    product_id: Optional[str] = None
    auto_renew: bool = True

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        if not v.strip():
            raise ValueError("title cannot be empty")
        return v.strip()


class PaymentCompletedRequest(BaseModel):
    payment_id: str = Field(..., min_length=1)
    payment_method: str = Field(default="paypal")


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class RenewRequest(BaseModel):
    duration: int
    payment_id: str = Field(..., min_length=1)


class ContentUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    media_type: Optional[MediaType] = None
    media: Optional[MediaRef] = None
    link_url: Optional[str] = None


class AutoRenewRequest(BaseModel):
    enabled: bool


class PricingUpdateRequest(BaseModel):
    """Admin update of the ad plan configuration"""
    ad_type: Optional[str] = None
    monthly_rate: Optional[Decimal] = Field(None, ge=0)
    is_active: Optional[bool] = None
    is_free: Optional[bool] = None
    duration_discounts: Optional[Dict[int, int]] = None


class LifecycleRunRequest(BaseModel):
    now: Optional[datetime] = None


# ====================
# Response Models
# ====================

class AdCampaignListResponse(BaseModel):
    campaigns: List[AdCampaign]
    total: int
    page: int = 1
    page_size: int = 20


class SlotInfo(BaseModel):
    slot: int
    ads_count: int = Field(..., description="Live campaigns rotating in this slot")
    owner_has_ad: bool
    available: bool


class SlotOverviewResponse(BaseModel):
    ad_type: AdType
    slots: List[SlotInfo]
    available_slots: List[int]
    total_active_ads: int


class DisplayFeedResponse(BaseModel):
    ad_type: AdType
    rotation_interval_ms: int
    campaigns: List[AdCampaign]


class AnalyticsSummary(BaseModel):
    campaign_id: str
    views: int
    clicks: int
    click_through_rate: float
    days_remaining: int
    status: AdCampaignStatus


class PricingPlan(BaseModel):
    ad_type: AdType
    monthly_rate: Decimal
    is_slot_based: bool
    slots: int
    is_active: bool
    is_free: bool = False
    dimensions: Optional[Dict[str, int]] = None


class DurationOption(BaseModel):
    months: int
    discount_percent: int
    label: str


class PricingCatalogResponse(BaseModel):
    plans: List[PricingPlan]
    durations: List[DurationOption]


class LifecycleRunResponse(BaseModel):
    now: datetime
    warnings: Dict[str, Any]
    expiry: Dict[str, Any]
    renewals: Dict[str, Any]


class HealthCheckResponse(BaseModel):
    status: str
    service: str
    port: int
    version: str
    timestamp: str
    dependencies: Dict[str, str] = Field(default_factory=dict)
