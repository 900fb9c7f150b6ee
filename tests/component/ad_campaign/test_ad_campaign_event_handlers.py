"""
Component Tests for Ad Campaign Event Handlers and Publisher

payment.completed handling and lifecycle event publishing.
"""

import pytest

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.ad_campaign_service.events.handlers import (
    get_event_handlers,
    handle_payment_completed,
)
from microservices.ad_campaign_service.events.models import AdCampaignEventType
from microservices.ad_campaign_service.events.publishers import AdCampaignEventPublisher
from microservices.ad_campaign_service.models import AdCampaignStatus, PaymentStatus


@pytest.fixture
def unpaid(factory, owner_id, mock_repository):
    campaign = factory.make_campaign(owner_id=owner_id, status=AdCampaignStatus.AWAITING_PAYMENT)
    mock_repository.add(campaign)
    return campaign


class TestHandlePaymentCompleted:

    @pytest.mark.asyncio
    async def test_direct_campaign_id(self, service, unpaid, mock_repository, mock_event_bus):
        handled = await handle_payment_completed(
            {
                "payment_id": "PAY-1001",
                "campaign_id": unpaid.campaign_id,
                "amount": "200.00",
                "payment_method": "stripe",
            },
            service,
        )

        assert handled is True
        stored = mock_repository.stored(unpaid.campaign_id)
        assert stored.status == AdCampaignStatus.PENDING
        assert stored.payment_status == PaymentStatus.COMPLETED
        assert stored.payment_id == "PAY-1001"
        assert stored.payment_method == "stripe"
        mock_event_bus.assert_event_published(
            AdCampaignEventType.PAYMENT_COMPLETED,
            {"campaign_id": unpaid.campaign_id, "previous_status": "awaiting_payment"},
        )

    @pytest.mark.asyncio
    async def test_campaign_from_metadata(self, service, unpaid, mock_repository):
        handled = await handle_payment_completed(
            {"payment_intent_id": "pi_42", "metadata": {"ad_campaign_id": unpaid.campaign_id}},
            service,
        )

        assert handled is True
        stored = mock_repository.stored(unpaid.campaign_id)
        assert stored.payment_id == "pi_42"
        assert stored.payment_method == "unknown"

    @pytest.mark.asyncio
    async def test_redelivery_is_harmless(self, service, unpaid, mock_event_bus):
        data = {"payment_id": "PAY-1001", "campaign_id": unpaid.campaign_id}

        assert await handle_payment_completed(data, service) is True
        assert await handle_payment_completed(data, service) is True

        assert len(mock_event_bus.get_published(AdCampaignEventType.PAYMENT_COMPLETED)) == 1

    @pytest.mark.asyncio
    async def test_payment_for_something_else(self, service, mock_event_bus):
        handled = await handle_payment_completed(
            {"payment_id": "PAY-1", "metadata": {"campaign_id": "membership_7"}}, service
        )

        assert handled is False
        mock_event_bus.assert_no_events_published()

    @pytest.mark.asyncio
    async def test_unknown_campaign(self, service):
        assert await handle_payment_completed(
            {"payment_id": "PAY-1", "campaign_id": "adc_does_not_exist"}, service
        ) is False

    @pytest.mark.asyncio
    async def test_short_payment_not_applied(self, service, unpaid, mock_repository):
        handled = await handle_payment_completed(
            {"payment_id": "PAY-1", "campaign_id": unpaid.campaign_id, "amount": "150.00"}, service
        )

        assert handled is False
        assert mock_repository.stored(unpaid.campaign_id).status == AdCampaignStatus.AWAITING_PAYMENT

    @pytest.mark.asyncio
    async def test_missing_payment_id(self, service, unpaid):
        assert await handle_payment_completed({"campaign_id": unpaid.campaign_id}, service) is False

    @pytest.mark.asyncio
    async def test_malformed_amount(self, service, unpaid):
        assert await handle_payment_completed(
            {"payment_id": "PAY-1", "campaign_id": unpaid.campaign_id, "amount": "lots"}, service
        ) is False

    @pytest.mark.asyncio
    async def test_wrong_state(self, service, factory, mock_repository):
        active = factory.make_campaign()
        mock_repository.add(active)

        assert await handle_payment_completed(
            {"payment_id": "PAY-new", "campaign_id": active.campaign_id}, service
        ) is False

    @pytest.mark.asyncio
    async def test_payment_for_superseded_draft(self, service, factory, owner_id, mock_repository, mock_event_bus):
        superseded = factory.make_campaign(
            owner_id=owner_id, status=AdCampaignStatus.CANCELLED, payment_status=PaymentStatus.PENDING,
            approved_by=None, approved_at=None,
        )
        mock_repository.add(superseded)

        handled = await handle_payment_completed(
            {"payment_id": "PAY-LATE", "campaign_id": superseded.campaign_id, "amount": "200.00"}, service
        )

        assert handled is False
        mock_event_bus.assert_event_published(
            AdCampaignEventType.PAYMENT_ORPHANED,
            {"campaign_id": superseded.campaign_id, "payment_id": "PAY-LATE", "amount": "200.00"},
        )

    @pytest.mark.asyncio
    async def test_no_service(self, unpaid):
        assert await handle_payment_completed(
            {"payment_id": "PAY-1", "campaign_id": unpaid.campaign_id}, None
        ) is False


class TestHandlerRegistry:

    def test_subscribed_subjects(self, service):
        assert list(get_event_handlers(service)) == ["payment.completed"]

    @pytest.mark.asyncio
    async def test_delivery_through_event_bus(self, service, unpaid, mock_event_bus, mock_repository):
        for subject, handler in get_event_handlers(service).items():
            await mock_event_bus.subscribe_to_events(subject, handler, durable="ad-campaign-payment-completed")

        results = await mock_event_bus.simulate_event(
            "payment.completed", {"payment_id": "PAY-7", "campaign_id": unpaid.campaign_id}
        )

        assert results == [True]
        assert mock_repository.stored(unpaid.campaign_id).status == AdCampaignStatus.PENDING


class TestPublisher:

    @pytest.mark.asyncio
    async def test_lifecycle_payload(self, factory, mock_event_bus):
        campaign = factory.make_campaign()

        published = await AdCampaignEventPublisher(mock_event_bus).publish_lifecycle(
            AdCampaignEventType.EXPIRING_SOON, campaign, days_remaining=4
        )

        assert published is True
        event = mock_event_bus.get_last_event()
        assert event["type"] == "ad_campaign.expiring_soon"
        assert event["source"] == "ad_campaign_service"
        assert event["data"]["days_remaining"] == 4
        assert event["data"]["ad_type"] == "top_sidebar"
        assert event["data"]["status"] == "active"

    @pytest.mark.asyncio
    async def test_without_event_bus(self, factory):
        publisher = AdCampaignEventPublisher(None)

        assert await publisher.publish_lifecycle(AdCampaignEventType.CREATED, factory.make_campaign()) is False

    @pytest.mark.asyncio
    async def test_bus_error_is_contained(self, factory, mock_event_bus):
        mock_event_bus.set_error(ConnectionError("nats down"))

        published = await AdCampaignEventPublisher(mock_event_bus).publish_lifecycle(
            AdCampaignEventType.CREATED, factory.make_campaign()
        )

        assert published is False
