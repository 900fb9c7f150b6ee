"""
Component Test Fixtures for Ad Campaign Service

In-memory repository and collaborator mocks. The repository reproduces the
store's guarded writes and the owner/slot unique index so state machine and
scheduler tests exercise the same races the database resolves.
"""

import copy
import os
import sys
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.ad_campaign_service.ad_campaign_service import AdCampaignService
from microservices.ad_campaign_service.analytics import compute_ctr
from microservices.ad_campaign_service.lifecycle_scheduler import AdLifecycleScheduler
from microservices.ad_campaign_service.models import AdCampaign, AdCampaignStatus, AdType
from microservices.ad_campaign_service.pricing import PricingConfig
from microservices.ad_campaign_service.protocols import PaymentCaptureError, SlotUnavailableError
from tests.contracts.ad_campaign.data_contract import AdCampaignTestDataFactory

LIVE = (AdCampaignStatus.PENDING, AdCampaignStatus.ACTIVE)


# ====================
# Mock Repository
# ====================


class MockAdCampaignRepository:
    """Mock repository for component testing"""

    def __init__(self):
        self.campaigns: Dict[str, AdCampaign] = {}
        self.pricing_config: Optional[PricingConfig] = None
        self.update_calls: List[Tuple[str, Dict[str, Any]]] = []

    def add(self, *campaigns: AdCampaign):
        """Seed campaigns synchronously"""
        for campaign in campaigns:
            self.campaigns[campaign.campaign_id] = campaign.model_copy(deep=True)

    def stored(self, campaign_id: str) -> AdCampaign:
        return self.campaigns[campaign_id]

    def _copy(self, campaign: Optional[AdCampaign]) -> Optional[AdCampaign]:
        return campaign.model_copy(deep=True) if campaign else None

    def _check_unique_slot(self, candidate: AdCampaign):
        if candidate.slot_number is None or candidate.status not in LIVE:
            return
        for other in self.campaigns.values():
            if (
                other.campaign_id != candidate.campaign_id
                and other.owner_id == candidate.owner_id
                and other.ad_type == candidate.ad_type
                and other.slot_number == candidate.slot_number
                and other.status in LIVE
            ):
                raise SlotUnavailableError(f"Unique index violated by {candidate.campaign_id}")

    async def initialize(self):
        pass

    async def close(self):
        pass

    async def health_check(self) -> bool:
        return True

    async def create_campaign(self, campaign: AdCampaign) -> AdCampaign:
        self._check_unique_slot(campaign)
        self.campaigns[campaign.campaign_id] = campaign.model_copy(deep=True)
        return self._copy(campaign)

    async def get_campaign(self, campaign_id: str) -> Optional[AdCampaign]:
        return self._copy(self.campaigns.get(campaign_id))

    async def update_campaign(
        self,
        campaign_id: str,
        updates: Dict[str, Any],
        expected_status: Optional[List[AdCampaignStatus]] = None,
    ) -> Optional[AdCampaign]:
        self.update_calls.append((campaign_id, dict(updates)))
        campaign = self.campaigns.get(campaign_id)
        if campaign is None:
            return None
        if expected_status and campaign.status not in expected_status:
            return None
        updated = campaign.model_copy(update=copy.deepcopy(updates))
        self._check_unique_slot(updated)
        self.campaigns[campaign_id] = updated
        return self._copy(updated)

    async def list_campaigns(
        self,
        owner_id: Optional[str] = None,
        status: Optional[List[AdCampaignStatus]] = None,
        ad_type: Optional[AdType] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[AdCampaign], int]:
        results = list(self.campaigns.values())
        if owner_id:
            results = [c for c in results if c.owner_id == owner_id]
        if status:
            results = [c for c in results if c.status in status]
        if ad_type:
            results = [c for c in results if c.ad_type == ad_type]
        results.sort(key=lambda c: c.created_at or datetime.min, reverse=True)
        return [self._copy(c) for c in results[offset:offset + limit]], len(results)

    async def list_live_campaigns(
        self,
        ad_type: AdType,
        now: datetime,
        slot_number: Optional[int] = None,
        owner_id: Optional[str] = None,
    ) -> List[AdCampaign]:
        return [
            self._copy(c) for c in self.campaigns.values()
            if c.ad_type == ad_type
            and c.status in LIVE
            and c.end_date > now
            and (slot_number is None or c.slot_number == slot_number)
            and (owner_id is None or c.owner_id == owner_id)
        ]

    async def list_active_for_display(
        self, ad_type: AdType, now: datetime, slot_number: Optional[int] = None
    ) -> List[AdCampaign]:
        results = [
            c for c in self.campaigns.values()
            if c.ad_type == ad_type
            and c.status == AdCampaignStatus.ACTIVE
            and c.start_date <= now < c.end_date
            and (slot_number is None or c.slot_number == slot_number)
        ]
        results.sort(key=lambda c: (c.rotation_order, c.created_at))
        return [self._copy(c) for c in results]

    async def cancel_unpaid_in_slot(
        self, owner_id: str, ad_type: AdType, slot_number: Optional[int]
    ) -> List[str]:
        cancelled = []
        for campaign_id, c in list(self.campaigns.items()):
            if (
                c.owner_id == owner_id
                and c.ad_type == ad_type
                and c.slot_number == slot_number
                and c.status == AdCampaignStatus.AWAITING_PAYMENT
            ):
                self.campaigns[campaign_id] = c.model_copy(
                    update={"status": AdCampaignStatus.CANCELLED, "auto_renew": False}
                )
                cancelled.append(campaign_id)
        return cancelled

    async def find_expiring_unwarned(self, now: datetime, until: datetime) -> List[AdCampaign]:
        return [
            self._copy(c) for c in self.campaigns.values()
            if c.status == AdCampaignStatus.ACTIVE
            and not c.expiry_warning_emailed
            and now < c.end_date <= until
        ]

    async def mark_expiry_warned(self, campaign_id: str) -> bool:
        campaign = self.campaigns.get(campaign_id)
        if campaign is None or campaign.expiry_warning_emailed:
            return False
        self.campaigns[campaign_id] = campaign.model_copy(update={"expiry_warning_emailed": True})
        return True

    async def find_overdue_active(self, now: datetime) -> List[AdCampaign]:
        return [
            self._copy(c) for c in self.campaigns.values()
            if c.status == AdCampaignStatus.ACTIVE and c.end_date < now
        ]

    async def find_overdue_in_slot(
        self, owner_id: str, ad_type: AdType, slot_number: Optional[int], now: datetime
    ) -> List[AdCampaign]:
        return [
            self._copy(c) for c in self.campaigns.values()
            if c.owner_id == owner_id
            and c.ad_type == ad_type
            and c.slot_number == slot_number
            and c.status == AdCampaignStatus.ACTIVE
            and c.end_date < now
        ]

    async def expire_if_overdue(self, campaign_id: str, now: datetime) -> bool:
        campaign = self.campaigns.get(campaign_id)
        if campaign is None or campaign.status != AdCampaignStatus.ACTIVE or not campaign.end_date < now:
            return False
        self.campaigns[campaign_id] = campaign.model_copy(
            update={"status": AdCampaignStatus.EXPIRED, "updated_at": now}
        )
        return True

    async def find_auto_renewable(self) -> List[AdCampaign]:
        return [
            self._copy(c) for c in self.campaigns.values()
            if c.status == AdCampaignStatus.EXPIRED and c.auto_renew
        ]

    async def increment_views(self, campaign_id: str, now: datetime) -> Optional[AdCampaign]:
        campaign = self.campaigns.get(campaign_id)
        if campaign is None:
            return None
        views = campaign.views + 1
        self.campaigns[campaign_id] = campaign.model_copy(update={
            "views": views,
            "click_through_rate": compute_ctr(views, campaign.clicks),
            "last_displayed_at": now,
        })
        return self._copy(self.campaigns[campaign_id])

    async def increment_clicks(self, campaign_id: str) -> Optional[AdCampaign]:
        campaign = self.campaigns.get(campaign_id)
        if campaign is None:
            return None
        clicks = campaign.clicks + 1
        self.campaigns[campaign_id] = campaign.model_copy(update={
            "clicks": clicks,
            "click_through_rate": compute_ctr(campaign.views, clicks),
        })
        return self._copy(self.campaigns[campaign_id])

    async def load_pricing_config(self) -> Optional[PricingConfig]:
        return self.pricing_config

    async def save_pricing_config(self, config: PricingConfig) -> None:
        self.pricing_config = config


# ====================
# Mock Clients
# ====================


class MockShopClient:
    """Shop directory with registered shops and product ownership"""

    def __init__(self):
        self.shops: Dict[str, Dict[str, Any]] = {}
        self.products: Dict[str, str] = {}

    def add_shop(self, owner_id: str, email: Optional[str] = None):
        self.shops[owner_id] = AdCampaignTestDataFactory.make_shop(owner_id, email)

    def add_product(self, product_id: str, owner_id: str):
        self.products[product_id] = owner_id

    async def get_shop(self, shop_id: str) -> Optional[Dict[str, Any]]:
        return self.shops.get(shop_id)

    async def product_belongs_to_shop(self, product_id: str, shop_id: str) -> bool:
        return self.products.get(product_id) == shop_id


class MockMediaClient:
    def __init__(self):
        self.deleted: List[str] = []

    async def delete(self, public_id: str) -> bool:
        self.deleted.append(public_id)
        return True


class MockNotificationClient:
    def __init__(self):
        self.sent: List[Dict[str, str]] = []
        self.fail = False

    async def notify(self, recipient: str, subject: str, body: str) -> bool:
        if self.fail:
            raise RuntimeError("mail server unavailable")
        self.sent.append({"recipient": recipient, "subject": subject, "body": body})
        return True

    def subjects(self) -> List[str]:
        return [n["subject"] for n in self.sent]


class MockPaymentClient:
    def __init__(self):
        self.captures: List[Dict[str, Any]] = []
        self.decline = False
        self._counter = 0

    async def capture(self, amount: Decimal, method: str, reference: str) -> str:
        if self.decline:
            raise PaymentCaptureError(f"Card declined for {reference}")
        self._counter += 1
        payment_id = f"CAP-{self._counter:04d}"
        self.captures.append({"amount": amount, "method": method, "reference": reference, "payment_id": payment_id})
        return payment_id


# ====================
# Fixtures
# ====================


OWNER_ID = "shop_alpha"
OTHER_OWNER_ID = "shop_beta"


@pytest.fixture
def owner_id() -> str:
    return OWNER_ID


@pytest.fixture
def other_owner_id() -> str:
    return OTHER_OWNER_ID


@pytest.fixture
def factory() -> AdCampaignTestDataFactory:
    return AdCampaignTestDataFactory()


@pytest.fixture
def mock_repository() -> MockAdCampaignRepository:
    return MockAdCampaignRepository()


@pytest.fixture
def mock_shop_client() -> MockShopClient:
    client = MockShopClient()
    client.add_shop(OWNER_ID, "alpha@shops.example.com")
    client.add_shop(OTHER_OWNER_ID, "beta@shops.example.com")
    client.add_product("prod_alpha_1", OWNER_ID)
    client.add_product("prod_beta_1", OTHER_OWNER_ID)
    return client


@pytest.fixture
def mock_media_client() -> MockMediaClient:
    return MockMediaClient()


@pytest.fixture
def mock_notification_client() -> MockNotificationClient:
    return MockNotificationClient()


@pytest.fixture
def mock_payment_client() -> MockPaymentClient:
    return MockPaymentClient()


@pytest.fixture
def service(
    mock_repository,
    mock_event_bus,
    mock_shop_client,
    mock_media_client,
    mock_notification_client,
    mock_payment_client,
) -> AdCampaignService:
    return AdCampaignService(
        repository=mock_repository,
        event_bus=mock_event_bus,
        shop_client=mock_shop_client,
        media_client=mock_media_client,
        notification_client=mock_notification_client,
        payment_client=mock_payment_client,
    )


@pytest.fixture
def lifecycle(service) -> AdLifecycleScheduler:
    return AdLifecycleScheduler(service)
