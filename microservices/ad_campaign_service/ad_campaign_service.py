"""
Ad Campaign Service Business Logic

Implements the campaign state machine: creation with pricing and slot checks,
payment, admin review, owner cancellation and renewal, content edits, and the
guarded transitions used by the lifecycle scheduler.
"""

import logging
import re
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union

from dateutil.relativedelta import relativedelta

from .analytics import AnalyticsCounter
from .events.models import AdCampaignEventType
from .events.publishers import AdCampaignEventPublisher
from .models import (
    AdCampaign,
    AdCampaignStatus,
    AdType,
    DisplayFeedResponse,
    MediaRef,
    MediaType,
    PaymentStatus,
    PriceBreakdown,
    PricingCatalogResponse,
    RenewalRecord,
)
from .pricing import PricingConfig, PricingEngine
from .protocols import (
    AdCampaignRepositoryProtocol,
    EventBusProtocol,
    MediaClientProtocol,
    NotificationClientProtocol,
    PaymentClientProtocol,
    ShopClientProtocol,
    AdCampaignNotFoundError,
    AdCampaignValidationError,
    InvalidTransitionError,
    LinkTargetInvalidError,
    MediaRequiredError,
    NotSlotBasedError,
    PaymentCaptureError,
    PaymentNotCompletedError,
    SlotUnavailableError,
    UnauthorizedError,
)
from .slot_registry import SlotRegistry

logger = logging.getLogger(__name__)

SHOP_LINK_PATTERN = re.compile(r"^/shop/(?P<shop_id>[\w-]+)/?$")
SHOP_QUERY_PATTERN = re.compile(r"[?&]shop=(?P<shop_id>[\w-]+)")
PRODUCT_LINK_PATTERN = re.compile(r"^/product/(?P<product_id>[\w-]+)/?$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def add_months(start: datetime, months: int) -> datetime:
    """Calendar month addition; the day is clamped to the end of shorter months"""
    return start + relativedelta(months=months)


class AdCampaignService:
    """Ad campaign business logic layer"""

    WARNING_WINDOW_DAYS = 7
    ROTATION_INTERVAL_MS = 10000
    AUTO_RENEW_PAYMENT_METHOD = "auto_renew"
    FREE_PAYMENT_METHOD = "free_testing"

    LIVE_STATUSES = [AdCampaignStatus.PENDING, AdCampaignStatus.ACTIVE]
    EDITABLE_STATUSES = [
        AdCampaignStatus.AWAITING_PAYMENT,
        AdCampaignStatus.PENDING,
        AdCampaignStatus.REJECTED,
    ]

    # event -> (allowed source states, target state)
    VALID_TRANSITIONS = {
        "payment_completed": ([AdCampaignStatus.AWAITING_PAYMENT], AdCampaignStatus.PENDING),
        "approve": ([AdCampaignStatus.PENDING], AdCampaignStatus.ACTIVE),
        "reject": ([AdCampaignStatus.PENDING], AdCampaignStatus.REJECTED),
        "cancel": ([AdCampaignStatus.PENDING, AdCampaignStatus.ACTIVE], AdCampaignStatus.CANCELLED),
        "expire": ([AdCampaignStatus.ACTIVE], AdCampaignStatus.EXPIRED),
        "auto_renew": ([AdCampaignStatus.EXPIRED], AdCampaignStatus.ACTIVE),
        "renew": ([AdCampaignStatus.EXPIRED, AdCampaignStatus.CANCELLED], AdCampaignStatus.ACTIVE),
        "supersede": ([AdCampaignStatus.AWAITING_PAYMENT], AdCampaignStatus.CANCELLED),
        "resubmit": ([AdCampaignStatus.REJECTED], AdCampaignStatus.AWAITING_PAYMENT),
    }

    def __init__(
        self,
        repository: AdCampaignRepositoryProtocol,
        event_bus: Optional[EventBusProtocol] = None,
        pricing_engine: Optional[PricingEngine] = None,
        slot_registry: Optional[SlotRegistry] = None,
        shop_client: Optional[ShopClientProtocol] = None,
        media_client: Optional[MediaClientProtocol] = None,
        notification_client: Optional[NotificationClientProtocol] = None,
        payment_client: Optional[PaymentClientProtocol] = None,
    ):
        self.repository = repository
        self.event_bus = event_bus
        self.pricing = pricing_engine or PricingEngine()
        self.slots = slot_registry or SlotRegistry(repository, self.pricing.config.slots_per_type)
        self.analytics = AnalyticsCounter(repository)
        self.shop_client = shop_client
        self.media_client = media_client
        self.notification_client = notification_client
        self.payment_client = payment_client
        self.publisher = AdCampaignEventPublisher(event_bus)

    # ====================
    # Transition helpers
    # ====================

    @classmethod
    def can_transition(cls, status: AdCampaignStatus, event: str) -> bool:
        sources, _ = cls.VALID_TRANSITIONS[event]
        return status in sources

    def _check_transition(self, campaign: AdCampaign, event: str) -> AdCampaignStatus:
        sources, target = self.VALID_TRANSITIONS[event]
        if campaign.status not in sources:
            allowed = ", ".join(s.value for s in sources)
            raise InvalidTransitionError(
                f"Cannot {event.replace('_', ' ')} campaign {campaign.campaign_id} in status "
                f"{campaign.status.value} (allowed from: {allowed})",
                campaign.status,
            )
        return target

    async def _apply_transition(
        self,
        campaign: AdCampaign,
        event: str,
        updates: Dict[str, Any],
    ) -> AdCampaign:
        """Validate the event against the stored state and commit it as one guarded write"""
        sources, target = self.VALID_TRANSITIONS[event]
        self._check_transition(campaign, event)
        updates = {**updates, "status": target}

        updated = await self.repository.update_campaign(
            campaign.campaign_id, updates, expected_status=sources
        )
        if updated is None:
            # Lost a race: re-read so the error reports the state that won
            current = await self.get_campaign(campaign.campaign_id)
            raise InvalidTransitionError(
                f"Campaign {campaign.campaign_id} changed concurrently to {current.status.value}",
                current.status,
            )

        logger.info(
            f"Campaign {campaign.campaign_id}: {campaign.status.value} -> {target.value} ({event})"
        )
        return updated

    @staticmethod
    def _require_owner(campaign: AdCampaign, owner_id: str):
        if not owner_id or campaign.owner_id != owner_id:
            raise UnauthorizedError(f"Campaign {campaign.campaign_id} does not belong to {owner_id}")

    @staticmethod
    def current_term(campaign: AdCampaign) -> int:
        """Months of the current booking term: the latest renewal, else the original duration"""
        if campaign.renewal_history:
            return campaign.renewal_history[-1].duration
        return campaign.duration

    async def _ensure_slot_free(
        self, campaign_or_type: Union[AdCampaign, AdType], owner_id: str,
        slot_number: Optional[int], now: datetime, exclude_id: Optional[str] = None,
    ):
        ad_type = campaign_or_type.ad_type if isinstance(campaign_or_type, AdCampaign) else campaign_or_type
        if not ad_type.is_slot_based:
            return
        await self._expire_overdue_in_slot(ad_type, owner_id, slot_number, now)
        live = await self.repository.list_live_campaigns(
            ad_type, now, slot_number=slot_number, owner_id=owner_id
        )
        if any(c.campaign_id != exclude_id for c in live):
            raise SlotUnavailableError(
                f"Owner {owner_id} already has a live {ad_type.value} campaign in slot {slot_number}"
            )

    async def _expire_overdue_in_slot(
        self, ad_type: AdType, owner_id: str, slot_number: Optional[int], now: datetime
    ):
        """
        Expire the owner's campaigns in this slot whose term ended before the
        scheduler swept them, so the store's unique index agrees with the
        derived occupancy.
        """
        overdue = await self.repository.find_overdue_in_slot(owner_id, ad_type, slot_number, now)
        for campaign in overdue:
            await self.expire_campaign(campaign.campaign_id, now)

    # ====================
    # Pricing and slots
    # ====================

    def quote(self, ad_type: Union[AdType, str], duration: int) -> PriceBreakdown:
        """Price an ad type for a duration (no auth, no side effects)"""
        return self.pricing.price(ad_type, duration)

    def pricing_catalog(self) -> PricingCatalogResponse:
        return PricingCatalogResponse(
            plans=self.pricing.list_plans(),
            durations=self.pricing.duration_options(),
        )

    async def update_pricing(
        self,
        ad_type: Optional[Union[AdType, str]] = None,
        monthly_rate: Optional[Decimal] = None,
        is_active: Optional[bool] = None,
        duration_discounts: Optional[Dict[int, int]] = None,
        is_free: Optional[bool] = None,
    ) -> PricingCatalogResponse:
        """
        Admin update of the ad plan configuration.

        Builds a new immutable PricingConfig, persists it and swaps the
        engine; campaigns already priced keep their stored prices.
        """
        config = self.pricing.config
        try:
            if monthly_rate is not None or is_active is not None or is_free is not None:
                if ad_type is None:
                    raise AdCampaignValidationError("ad_type is required to change a plan", field="ad_type")
                resolved = self.pricing.resolve_ad_type(ad_type)
                if monthly_rate is not None:
                    config = config.with_rate(resolved, monthly_rate)
                if is_active is not None:
                    config = config.with_plan_active(resolved, is_active)
                if is_free is not None:
                    config = config.with_plan_free(resolved, is_free)
            if duration_discounts is not None:
                config = config.with_discounts(duration_discounts)
        except ValueError as e:
            raise AdCampaignValidationError(str(e))

        await self.repository.save_pricing_config(config)
        self.pricing = PricingEngine(config)
        logger.info(
            f"Pricing configuration updated "
            f"(ad_type={ad_type}, rate={monthly_rate}, active={is_active}, free={is_free})"
        )
        return self.pricing_catalog()

    async def load_pricing(self) -> bool:
        """Replace the default tables with the persisted plan config, if any"""
        config = await self.repository.load_pricing_config()
        if config is None:
            return False
        self.pricing = PricingEngine(config)
        logger.info(f"Loaded persisted pricing for {len(config.monthly_rates)} ad types")
        return True

    async def available_slots(
        self, ad_type: Union[AdType, str], owner_id: str, now: Optional[datetime] = None
    ) -> List[int]:
        if not owner_id:
            raise UnauthorizedError("Owner is required to query slots")
        return await self.slots.available_slots(ad_type, owner_id, now or utcnow())

    async def slot_overview(self, ad_type: Union[AdType, str], owner_id: str, now: Optional[datetime] = None):
        if not owner_id:
            raise UnauthorizedError("Owner is required to query slots")
        return await self.slots.slot_overview(ad_type, owner_id, now or utcnow())

    # ====================
    # Link target validation
    # ====================

    async def _resolve_link_target(
        self,
        owner_id: str,
        ad_type: AdType,
        link_url: Optional[str],
        product_id: Optional[str],
    ) -> str:
        """
        Return a link that points at the owner's shop or one of its products.

        Without an explicit link, featured products link to the product and
        everything else to the shop.
        """
        if self.shop_client is not None:
            shop = await self.shop_client.get_shop(owner_id)
            if not shop:
                raise UnauthorizedError(f"Shop not found for owner {owner_id}")

        if product_id:
            await self._require_owned_product(owner_id, product_id)

        if not link_url:
            return f"/product/{product_id}" if product_id else f"/shop/{owner_id}"

        link_url = link_url.strip()
        match = SHOP_LINK_PATTERN.match(link_url) or SHOP_QUERY_PATTERN.search(link_url)
        if match:
            if match.group("shop_id") != owner_id:
                raise LinkTargetInvalidError(f"Link {link_url} points at another shop")
            return link_url

        match = PRODUCT_LINK_PATTERN.match(link_url)
        if match:
            linked_product = match.group("product_id")
            if linked_product != product_id:
                await self._require_owned_product(owner_id, linked_product)
            return link_url

        raise LinkTargetInvalidError(
            f"Link {link_url} must point at /shop/{owner_id} or one of the shop's products"
        )

    async def _require_owned_product(self, owner_id: str, product_id: str):
        if self.shop_client is None:
            raise LinkTargetInvalidError("Product ownership cannot be verified")
        if not await self.shop_client.product_belongs_to_shop(product_id, owner_id):
            raise LinkTargetInvalidError(f"Product {product_id} does not belong to shop {owner_id}")

    # ====================
    # Create
    # ====================

    async def create_campaign(
        self,
        owner_id: str,
        ad_type: Union[AdType, str],
        duration: int,
        title: str,
        slot_number: Optional[int] = None,
        media: Optional[MediaRef] = None,
        media_type: MediaType = MediaType.IMAGE,
        link_url: Optional[str] = None,
        product_id: Optional[str] = None,
        description: Optional[str] = None,
        auto_renew: bool = True,
        now: Optional[datetime] = None,
    ) -> AdCampaign:
        """
        Create a campaign in awaiting_payment.

        Checks, in order: ad type and duration (pricing), slot rules, media,
        product requirement, link target, then the owner's slot under the
        slot lock. The owner's unpaid drafts for the same placement are
        cancelled in favour of the new one. A plan in free mode skips payment
        and goes straight to review.
        """
        now = now or utcnow()
        if not owner_id:
            raise UnauthorizedError("Owner is required to create a campaign")

        price = self.pricing.quote_new_campaign(ad_type, duration)
        ad_type = price.ad_type

        if ad_type.is_slot_based:
            slot_number = self.slots.validate_slot_number(slot_number)
            if media is None:
                raise MediaRequiredError(f"{ad_type.value} campaigns require an image or video")
        elif slot_number is not None:
            raise NotSlotBasedError(f"Ad type {ad_type.value} does not use slots")

        if ad_type == AdType.FEATURED_PRODUCT and not product_id:
            raise AdCampaignValidationError("featured_product campaigns require product_id", field="product_id")

        link_url = await self._resolve_link_target(owner_id, ad_type, link_url, product_id)

        campaign = AdCampaign(
            campaign_id=f"adc_{uuid.uuid4().hex[:24]}",
            owner_id=owner_id,
            ad_type=ad_type,
            slot_number=slot_number,
            title=title,
            description=description,
            media_type=media_type,
            media=media,
            link_url=link_url,
            product_id=product_id,
            duration=price.duration,
            base_price=price.base_price,
            discount_percent=price.discount_percent,
            total_price=price.total_price,
            status=AdCampaignStatus.PENDING if price.is_free else AdCampaignStatus.AWAITING_PAYMENT,
            payment_status=PaymentStatus.COMPLETED if price.is_free else PaymentStatus.PENDING,
            payment_method=self.FREE_PAYMENT_METHOD if price.is_free else None,
            start_date=now,
            end_date=add_months(now, price.duration),
            auto_renew=auto_renew,
            created_at=now,
            updated_at=now,
        )

        if ad_type.is_slot_based:
            async with self.slots.slot_lock(owner_id, ad_type, slot_number):
                await self._ensure_slot_free(ad_type, owner_id, slot_number, now)
                superseded = await self.repository.cancel_unpaid_in_slot(owner_id, ad_type, slot_number)
                saved = await self.repository.create_campaign(campaign)
            if superseded:
                logger.info(f"Cancelled unpaid drafts {superseded} superseded by {saved.campaign_id}")
        else:
            saved = await self.repository.create_campaign(campaign)

        await self.publisher.publish_lifecycle(AdCampaignEventType.CREATED, saved)
        logger.info(
            f"Campaign created: {saved.campaign_id} ({ad_type.value}, slot={slot_number}, "
            f"{price.duration} months, total={price.total_price})"
        )
        return saved

    # ====================
    # Queries
    # ====================

    async def get_campaign(self, campaign_id: str) -> AdCampaign:
        campaign = await self.repository.get_campaign(campaign_id)
        if not campaign:
            raise AdCampaignNotFoundError(f"Campaign not found: {campaign_id}")
        return campaign

    async def get_owner_campaign(self, campaign_id: str, owner_id: str) -> AdCampaign:
        campaign = await self.get_campaign(campaign_id)
        self._require_owner(campaign, owner_id)
        return campaign

    async def list_owner_campaigns(
        self, owner_id: str, status: Optional[AdCampaignStatus] = None
    ) -> List[AdCampaign]:
        if not owner_id:
            raise UnauthorizedError("Owner is required")
        campaigns, _ = await self.repository.list_campaigns(
            owner_id=owner_id, status=[status] if status else None, limit=1000, offset=0
        )
        return campaigns

    async def list_campaigns(
        self,
        status: Optional[AdCampaignStatus] = None,
        ad_type: Optional[Union[AdType, str]] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[AdCampaign], int]:
        """Admin listing, newest first"""
        if page < 1 or page_size < 1:
            raise AdCampaignValidationError("page and page_size must be positive")
        resolved_type = self.pricing.resolve_ad_type(ad_type) if ad_type else None
        return await self.repository.list_campaigns(
            status=[status] if status else None,
            ad_type=resolved_type,
            limit=page_size,
            offset=(page - 1) * page_size,
        )

    async def active_for_display(
        self,
        ad_type: Union[AdType, str],
        now: Optional[datetime] = None,
        slot_number: Optional[int] = None,
    ) -> DisplayFeedResponse:
        """Active campaigns for a placement in rotation order"""
        resolved = self.pricing.resolve_ad_type(ad_type)
        if slot_number is not None:
            self.slots.require_slot_based(resolved)
        campaigns = await self.repository.list_active_for_display(resolved, now or utcnow(), slot_number)
        return DisplayFeedResponse(
            ad_type=resolved,
            rotation_interval_ms=self.ROTATION_INTERVAL_MS,
            campaigns=campaigns,
        )

    # ====================
    # Payment and review
    # ====================

    async def on_payment_completed(
        self,
        campaign_id: str,
        payment_id: str,
        method: str,
        amount: Optional[Decimal] = None,
        now: Optional[datetime] = None,
    ) -> AdCampaign:
        """awaiting_payment -> pending; redelivery of the same payment is a no-op"""
        now = now or utcnow()
        campaign = await self.get_campaign(campaign_id)

        if campaign.payment_status == PaymentStatus.COMPLETED and campaign.payment_id == payment_id:
            logger.info(f"Payment {payment_id} already applied to {campaign_id}, ignoring")
            return campaign

        updates = {
            "payment_status": PaymentStatus.COMPLETED,
            "payment_id": payment_id,
            "payment_method": method,
            "updated_at": now,
        }
        try:
            self._check_transition(campaign, "payment_completed")
            if amount is not None and Decimal(str(amount)) < campaign.total_price:
                raise AdCampaignValidationError(
                    f"Payment {payment_id} of {amount} does not cover {campaign.total_price}", field="amount"
                )

            if campaign.is_slot_based:
                async with self.slots.slot_lock(campaign.owner_id, campaign.ad_type, campaign.slot_number):
                    await self._ensure_slot_free(
                        campaign, campaign.owner_id, campaign.slot_number, now, exclude_id=campaign_id
                    )
                    updated = await self._apply_transition(campaign, "payment_completed", updates)
            else:
                updated = await self._apply_transition(campaign, "payment_completed", updates)
        except (InvalidTransitionError, SlotUnavailableError, AdCampaignValidationError) as e:
            # The money was taken but the campaign cannot use it
            logger.warning(f"Payment {payment_id} for {campaign_id} not applied, refund needed: {e}")
            await self.publisher.publish_payment_orphaned(
                campaign, payment_id=payment_id, payment_method=method, amount=amount, reason=str(e)
            )
            raise

        await self.publisher.publish_lifecycle(
            AdCampaignEventType.PAYMENT_COMPLETED, updated, previous_status=campaign.status
        )
        return updated

    async def approve(self, campaign_id: str, admin_id: str, now: Optional[datetime] = None) -> AdCampaign:
        """pending -> active; payment must be completed"""
        now = now or utcnow()
        if not admin_id:
            raise UnauthorizedError("Admin is required to approve campaigns")

        campaign = await self.get_campaign(campaign_id)
        if campaign.status == AdCampaignStatus.AWAITING_PAYMENT or (
            campaign.status == AdCampaignStatus.PENDING
            and campaign.payment_status != PaymentStatus.COMPLETED
        ):
            raise PaymentNotCompletedError(f"Campaign {campaign_id} has not been paid")

        updated = await self._apply_transition(campaign, "approve", {
            "approved_by": admin_id,
            "approved_at": now,
            "updated_at": now,
        })

        await self.notify_owner(
            updated,
            "Advertisement Approved",
            f'Your advertisement "{updated.title}" has been approved and is now live until '
            f"{updated.end_date.date().isoformat()}.",
        )
        await self.publisher.publish_lifecycle(
            AdCampaignEventType.APPROVED, updated, previous_status=campaign.status
        )
        return updated

    async def reject(
        self, campaign_id: str, admin_id: str, reason: str, now: Optional[datetime] = None
    ) -> AdCampaign:
        """pending -> rejected; the payment is marked refunded"""
        now = now or utcnow()
        if not admin_id:
            raise UnauthorizedError("Admin is required to reject campaigns")
        if not reason or not reason.strip():
            raise AdCampaignValidationError("A rejection reason is required", field="reason")

        campaign = await self.get_campaign(campaign_id)
        updated = await self._apply_transition(campaign, "reject", {
            "rejection_reason": reason.strip(),
            "payment_status": PaymentStatus.REFUNDED,
            "updated_at": now,
        })

        await self.notify_owner(
            updated,
            "Advertisement Rejected",
            f'Your advertisement "{updated.title}" has been rejected. Reason: {updated.rejection_reason}. '
            f"A refund has been initiated.",
        )
        await self.publisher.publish_lifecycle(
            AdCampaignEventType.REJECTED, updated, previous_status=campaign.status,
            reason=updated.rejection_reason,
        )
        return updated

    # ====================
    # Owner actions
    # ====================

    async def cancel(self, campaign_id: str, owner_id: str, now: Optional[datetime] = None) -> AdCampaign:
        """{pending, active} -> cancelled; auto-renew is switched off"""
        now = now or utcnow()
        campaign = await self.get_owner_campaign(campaign_id, owner_id)
        updated = await self._apply_transition(campaign, "cancel", {
            "auto_renew": False,
            "updated_at": now,
        })
        await self.publisher.publish_lifecycle(
            AdCampaignEventType.CANCELLED, updated, previous_status=campaign.status
        )
        return updated

    async def renew(
        self,
        campaign_id: str,
        owner_id: str,
        duration: int,
        payment_id: str,
        now: Optional[datetime] = None,
        auto_renew: Optional[bool] = None,
    ) -> AdCampaign:
        """
        {expired, cancelled} -> active for a new term.

        Only a campaign that went live after review can be renewed; a draft
        cancelled before payment or review has to be booked again. The price
        is recomputed for the new duration and the term starts now, not at
        the old end date. Counters carry over.
        """
        now = now or utcnow()
        campaign = await self.get_owner_campaign(campaign_id, owner_id)
        self._check_transition(campaign, "renew")
        if campaign.approved_at is None:
            raise InvalidTransitionError(
                f"Campaign {campaign_id} was never approved and cannot be renewed; create a new campaign",
                campaign.status,
            )

        price = self.pricing.price(campaign.ad_type, duration)
        if price.is_free:
            payment_id = payment_id or self.FREE_PAYMENT_METHOD
        if not payment_id:
            raise AdCampaignValidationError("payment_id is required to renew", field="payment_id")

        record = RenewalRecord(renewed_at=now, duration=price.duration, price=price.total_price, payment_id=payment_id)
        updates = {
            "base_price": price.base_price,
            "discount_percent": price.discount_percent,
            "total_price": price.total_price,
            "payment_status": PaymentStatus.COMPLETED,
            "payment_id": payment_id,
            "start_date": now,
            "end_date": add_months(now, price.duration),
            "expiry_warning_emailed": False,
            "renewal_history": campaign.renewal_history + [record],
            "updated_at": now,
        }
        if auto_renew is not None:
            updates["auto_renew"] = auto_renew

        if campaign.is_slot_based:
            async with self.slots.slot_lock(campaign.owner_id, campaign.ad_type, campaign.slot_number):
                await self._ensure_slot_free(
                    campaign, campaign.owner_id, campaign.slot_number, now, exclude_id=campaign_id
                )
                updated = await self._apply_transition(campaign, "renew", updates)
        else:
            updated = await self._apply_transition(campaign, "renew", updates)

        await self.notify_owner(
            updated,
            "Advertisement Renewed",
            f'Your advertisement "{updated.title}" has been renewed for {price.duration} month(s) '
            f"until {updated.end_date.date().isoformat()}.",
        )
        await self.publisher.publish_lifecycle(
            AdCampaignEventType.RENEWED, updated, previous_status=campaign.status
        )
        return updated

    async def set_auto_renew(self, campaign_id: str, owner_id: str, enabled: bool) -> AdCampaign:
        campaign = await self.get_owner_campaign(campaign_id, owner_id)
        if enabled and campaign.status == AdCampaignStatus.CANCELLED:
            raise InvalidTransitionError(
                "Cancelled campaigns cannot be re-armed for auto-renewal; renew instead", campaign.status
            )
        updated = await self.repository.update_campaign(
            campaign_id, {"auto_renew": enabled, "updated_at": utcnow()}
        )
        logger.info(f"Auto-renew {'enabled' if enabled else 'disabled'} for {campaign_id}")
        return updated

    async def update_content(
        self,
        campaign_id: str,
        owner_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        media: Optional[MediaRef] = None,
        media_type: Optional[MediaType] = None,
        link_url: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AdCampaign:
        """
        Edit creative while the campaign has not gone live.

        A rejected campaign is resubmitted: it returns to awaiting_payment
        (its payment was refunded) with the rejection reason cleared.
        """
        now = now or utcnow()
        campaign = await self.get_owner_campaign(campaign_id, owner_id)
        if campaign.status not in self.EDITABLE_STATUSES:
            raise InvalidTransitionError(
                f"Only unpaid, pending or rejected campaigns can be edited (status: {campaign.status.value})",
                campaign.status,
            )

        updates: Dict[str, Any] = {"updated_at": now}
        if title is not None:
            if not title.strip():
                raise AdCampaignValidationError("title cannot be empty", field="title")
            updates["title"] = title.strip()
        if description is not None:
            updates["description"] = description
        if link_url is not None:
            updates["link_url"] = await self._resolve_link_target(
                owner_id, campaign.ad_type, link_url, campaign.product_id
            )
        if media is not None:
            updates["media"] = media
            updates["media_type"] = media_type or campaign.media_type

        if campaign.status == AdCampaignStatus.REJECTED:
            updates.update({
                "rejection_reason": None,
                "payment_status": PaymentStatus.PENDING,
                "payment_id": None,
                "payment_method": None,
            })
            updated = await self._apply_transition(campaign, "resubmit", updates)
        else:
            updated = await self.repository.update_campaign(
                campaign_id, updates, expected_status=self.EDITABLE_STATUSES
            )
            if updated is None:
                current = await self.get_campaign(campaign_id)
                raise InvalidTransitionError(
                    f"Campaign {campaign_id} changed concurrently to {current.status.value}", current.status
                )

        if media is not None and campaign.media and campaign.media.public_id != media.public_id:
            await self._delete_media(campaign.media.public_id)

        logger.info(f"Campaign content updated: {campaign_id} ({', '.join(sorted(updates))})")
        return updated

    # ====================
    # Scheduler transitions
    # ====================

    async def expire_campaign(self, campaign_id: str, now: datetime) -> bool:
        """
        active -> expired for a campaign whose end date has passed.

        The guard is evaluated by the store at write time, so a campaign
        cancelled or renewed since it was selected is left alone.
        """
        expired = await self.repository.expire_if_overdue(campaign_id, now)
        if expired:
            logger.info(f"Campaign {campaign_id}: active -> expired")
            campaign = await self.repository.get_campaign(campaign_id)
            if campaign:
                await self.publisher.publish_lifecycle(
                    AdCampaignEventType.EXPIRED, campaign, previous_status=AdCampaignStatus.ACTIVE
                )
        return expired

    async def auto_renew_campaign(self, campaign_id: str, now: datetime) -> AdCampaign:
        """
        expired -> active for the current term, gated by payment capture.

        Raises PaymentCaptureError when the payment cannot be captured; the
        campaign then stays expired and is retried on the next cycle.
        """
        campaign = await self.get_campaign(campaign_id)
        self._check_transition(campaign, "auto_renew")
        if not campaign.auto_renew:
            raise InvalidTransitionError(f"Auto-renew is disabled for {campaign_id}", campaign.status)

        term = self.current_term(campaign)
        price = self.pricing.price(campaign.ad_type, term)
        await self._ensure_slot_free(campaign, campaign.owner_id, campaign.slot_number, now, exclude_id=campaign_id)

        if price.is_free:
            payment_id = self.FREE_PAYMENT_METHOD
        else:
            payment_id = await self._capture_renewal(campaign, price.total_price)

        record = RenewalRecord(renewed_at=now, duration=term, price=price.total_price, payment_id=payment_id)
        updated = await self._apply_transition(campaign, "auto_renew", {
            "base_price": price.base_price,
            "discount_percent": price.discount_percent,
            "total_price": price.total_price,
            "payment_status": PaymentStatus.COMPLETED,
            "payment_id": payment_id,
            "start_date": now,
            "end_date": add_months(now, term),
            "expiry_warning_emailed": False,
            "renewal_history": campaign.renewal_history + [record],
            "updated_at": now,
        })

        await self.notify_owner(
            updated,
            "Advertisement Auto-Renewed",
            f'Your advertisement "{updated.title}" has been automatically renewed for {term} month(s). '
            f"Amount charged: ${price.total_price}.",
        )
        await self.publisher.publish_lifecycle(
            AdCampaignEventType.AUTO_RENEWED, updated, previous_status=campaign.status
        )
        return updated

    async def _capture_renewal(self, campaign: AdCampaign, amount: Decimal) -> str:
        if self.payment_client is None:
            raise PaymentCaptureError("No payment collaborator configured for auto-renewal")
        try:
            payment_id = await self.payment_client.capture(
                amount, campaign.payment_method or self.AUTO_RENEW_PAYMENT_METHOD, campaign.campaign_id
            )
        except PaymentCaptureError:
            raise
        except Exception as e:
            raise PaymentCaptureError(f"Payment capture failed for {campaign.campaign_id}: {e}") from e
        if not payment_id:
            raise PaymentCaptureError(f"Payment capture returned no payment id for {campaign.campaign_id}")
        return payment_id

    async def publish_auto_renew_failed(self, campaign: AdCampaign, reason: str):
        await self.publisher.publish_lifecycle(
            AdCampaignEventType.AUTO_RENEW_FAILED, campaign, reason=reason
        )

    # ====================
    # Analytics
    # ====================

    async def record_view(self, campaign_id: str, now: Optional[datetime] = None) -> AdCampaign:
        return await self.analytics.record_view(campaign_id, now or utcnow())

    async def record_click(self, campaign_id: str) -> AdCampaign:
        return await self.analytics.record_click(campaign_id)

    async def analytics_summary(self, campaign_id: str, owner_id: str, now: Optional[datetime] = None):
        campaign = await self.get_owner_campaign(campaign_id, owner_id)
        return self.analytics.summarize(campaign, now or utcnow())

    # ====================
    # Collaborators
    # ====================

    async def _owner_address(self, campaign: AdCampaign) -> str:
        if self.shop_client is not None:
            try:
                shop = await self.shop_client.get_shop(campaign.owner_id)
                if shop and shop.get("email"):
                    return shop["email"]
            except Exception as e:
                logger.warning(f"Could not resolve contact for shop {campaign.owner_id}: {e}")
        return campaign.owner_id

    async def notify_owner(self, campaign: AdCampaign, subject: str, body: str) -> bool:
        """Best-effort notification; failures never undo a committed transition"""
        if not self.notification_client:
            logger.debug(f"Notification client not configured, skipping: {subject}")
            return False
        try:
            recipient = await self._owner_address(campaign)
            await self.notification_client.notify(recipient, subject, body)
            return True
        except Exception as e:
            logger.error(f"Failed to notify owner of {campaign.campaign_id} ({subject}): {e}")
            return False

    async def _delete_media(self, public_id: str):
        if not self.media_client:
            logger.debug(f"Media client not configured, not deleting {public_id}")
            return
        try:
            await self.media_client.delete(public_id)
        except Exception as e:
            logger.error(f"Failed to delete replaced media {public_id}: {e}")


__all__ = ["AdCampaignService", "add_months", "utcnow"]
