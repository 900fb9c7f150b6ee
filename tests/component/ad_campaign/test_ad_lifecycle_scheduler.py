"""
Component Tests for AdLifecycleScheduler

Expiry warnings, expiry and auto-renewal driven by an explicit clock.
"""

import pytest
from datetime import timedelta
from decimal import Decimal

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from microservices.ad_campaign_service.ad_campaign_service import AdCampaignService, add_months
from microservices.ad_campaign_service.events.models import AdCampaignEventType
from microservices.ad_campaign_service.lifecycle_scheduler import (
    LIFECYCLE_JOB_ID,
    AdLifecycleScheduler,
    create_lifecycle_job,
)
from microservices.ad_campaign_service.models import AdCampaignStatus, AdType, PaymentStatus
from tests.contracts.ad_campaign.data_contract import REFERENCE_NOW

NOW = REFERENCE_NOW


def expired_campaign(factory, owner_id, **kwargs):
    return factory.make_campaign(
        owner_id=owner_id,
        status=AdCampaignStatus.EXPIRED,
        start_date=kwargs.pop("start_date", NOW - timedelta(days=32)),
        end_date=kwargs.pop("end_date", NOW - timedelta(days=1)),
        **kwargs,
    )


class TestExpiryWarnings:

    @pytest.mark.asyncio
    async def test_warns_inside_window_once(
        self, lifecycle, factory, owner_id, mock_repository, mock_notification_client, mock_event_bus
    ):
        due = factory.make_campaign(owner_id=owner_id, slot_number=1, end_date=NOW + timedelta(days=3))
        later = factory.make_campaign(owner_id=owner_id, slot_number=2, end_date=NOW + timedelta(days=10))
        warned = factory.make_campaign(
            owner_id=owner_id, slot_number=3, end_date=NOW + timedelta(days=2), expiry_warning_emailed=True
        )
        pending = factory.make_campaign(
            owner_id=owner_id, slot_number=4, status=AdCampaignStatus.PENDING, end_date=NOW + timedelta(days=2)
        )
        mock_repository.add(due, later, warned, pending)

        summary = await lifecycle.run_expiry_warnings(NOW)

        assert summary["processed"] == 1
        assert summary["campaign_ids"] == [due.campaign_id]
        assert mock_repository.stored(due.campaign_id).expiry_warning_emailed is True
        sent = mock_notification_client.sent[-1]
        assert sent["subject"] == "Advertisement Expiring Soon"
        assert "expire in 3 days" in sent["body"]
        assert "automatically renewed" in sent["body"]
        mock_event_bus.assert_event_published(
            AdCampaignEventType.EXPIRING_SOON, {"campaign_id": due.campaign_id, "days_remaining": 3}
        )

        again = await lifecycle.run_expiry_warnings(NOW + timedelta(hours=1))
        assert again["processed"] == 0
        assert len(mock_notification_client.sent) == 1

    @pytest.mark.asyncio
    async def test_manual_renewal_wording(self, lifecycle, factory, mock_repository, mock_notification_client):
        mock_repository.add(factory.make_campaign(end_date=NOW + timedelta(days=5), auto_renew=False))

        await lifecycle.run_expiry_warnings(NOW)

        assert "Please renew to continue display." in mock_notification_client.sent[-1]["body"]

    @pytest.mark.asyncio
    async def test_flag_set_even_if_mail_fails(self, lifecycle, factory, mock_repository, mock_notification_client):
        campaign = factory.make_campaign(end_date=NOW + timedelta(days=1))
        mock_repository.add(campaign)
        mock_notification_client.fail = True

        summary = await lifecycle.run_expiry_warnings(NOW)

        assert summary["succeeded"] == 1
        assert mock_repository.stored(campaign.campaign_id).expiry_warning_emailed is True

    @pytest.mark.asyncio
    async def test_window_is_configurable(self, service, factory, mock_repository):
        mock_repository.add(factory.make_campaign(end_date=NOW + timedelta(days=10)))

        summary = await AdLifecycleScheduler(service, warning_window_days=14).run_expiry_warnings(NOW)

        assert summary["processed"] == 1


class TestExpiry:

    @pytest.mark.asyncio
    async def test_expires_overdue_only(self, lifecycle, factory, mock_repository, mock_event_bus):
        overdue = factory.make_campaign(slot_number=1, end_date=NOW - timedelta(hours=1))
        current = factory.make_campaign(slot_number=2, end_date=NOW + timedelta(days=1))
        cancelled = factory.make_campaign(
            slot_number=3, status=AdCampaignStatus.CANCELLED, end_date=NOW - timedelta(days=2)
        )
        mock_repository.add(overdue, current, cancelled)

        summary = await lifecycle.run_expiry(NOW)

        assert summary["campaign_ids"] == [overdue.campaign_id]
        assert mock_repository.stored(overdue.campaign_id).status == AdCampaignStatus.EXPIRED
        assert mock_repository.stored(current.campaign_id).status == AdCampaignStatus.ACTIVE
        assert mock_repository.stored(cancelled.campaign_id).status == AdCampaignStatus.CANCELLED
        mock_event_bus.assert_event_published(
            AdCampaignEventType.EXPIRED, {"campaign_id": overdue.campaign_id, "previous_status": "active"}
        )

    @pytest.mark.asyncio
    async def test_rerun_is_noop(self, lifecycle, factory, mock_repository):
        mock_repository.add(factory.make_campaign(end_date=NOW - timedelta(hours=1)))

        await lifecycle.run_expiry(NOW)
        again = await lifecycle.run_expiry(NOW)

        assert again["processed"] == 0

    @pytest.mark.asyncio
    async def test_cancelled_after_selection_is_left_alone(self, service, factory, owner_id, mock_repository):
        campaign = factory.make_campaign(owner_id=owner_id, end_date=NOW - timedelta(hours=1))
        mock_repository.add(campaign)
        await service.cancel(campaign.campaign_id, owner_id, now=NOW)

        assert await service.expire_campaign(campaign.campaign_id, NOW) is False
        assert mock_repository.stored(campaign.campaign_id).status == AdCampaignStatus.CANCELLED


class TestAutoRenewal:

    @pytest.mark.asyncio
    async def test_renews_for_current_term(
        self, lifecycle, factory, owner_id, mock_repository, mock_payment_client,
        mock_notification_client, mock_event_bus,
    ):
        campaign = expired_campaign(factory, owner_id, duration=3, views=80, clicks=4)
        mock_repository.add(campaign)

        summary = await lifecycle.run_auto_renewals(NOW)

        assert summary["succeeded"] == 1
        capture = mock_payment_client.captures[0]
        assert capture["amount"] == Decimal("540.00")
        assert capture["method"] == "paypal"
        assert capture["reference"] == campaign.campaign_id

        renewed = mock_repository.stored(campaign.campaign_id)
        assert renewed.status == AdCampaignStatus.ACTIVE
        assert renewed.payment_status == PaymentStatus.COMPLETED
        assert renewed.payment_id == capture["payment_id"]
        assert renewed.start_date == NOW
        assert renewed.end_date == add_months(NOW, 3)
        assert renewed.views == 80
        assert [(r.duration, r.payment_id) for r in renewed.renewal_history] == [(3, capture["payment_id"])]
        assert mock_notification_client.sent[-1]["subject"] == "Advertisement Auto-Renewed"
        assert "Amount charged: $540.00" in mock_notification_client.sent[-1]["body"]
        mock_event_bus.assert_event_published(AdCampaignEventType.AUTO_RENEWED, {"status": "active"})

    @pytest.mark.asyncio
    async def test_term_follows_latest_renewal(self, lifecycle, factory, owner_id, mock_repository, mock_payment_client):
        campaign = expired_campaign(
            factory, owner_id, duration=1, renewal_history=[factory.make_renewal_record(duration=6)]
        )
        mock_repository.add(campaign)

        await lifecycle.run_auto_renewals(NOW)

        assert mock_payment_client.captures[0]["amount"] == Decimal("1020.00")
        assert mock_repository.stored(campaign.campaign_id).end_date == add_months(NOW, 6)

    @pytest.mark.asyncio
    async def test_uses_current_rates(self, service, lifecycle, factory, owner_id, mock_repository, mock_payment_client):
        campaign = expired_campaign(factory, owner_id)
        mock_repository.add(campaign)
        await service.update_pricing(ad_type=AdType.TOP_SIDEBAR, monthly_rate=Decimal("260"))

        await lifecycle.run_auto_renewals(NOW)

        assert mock_payment_client.captures[0]["amount"] == Decimal("260.00")
        assert mock_repository.stored(campaign.campaign_id).total_price == Decimal("260.00")

    @pytest.mark.asyncio
    async def test_auto_renew_off_is_skipped(self, lifecycle, factory, owner_id, mock_repository, mock_payment_client):
        mock_repository.add(expired_campaign(factory, owner_id, auto_renew=False))

        summary = await lifecycle.run_auto_renewals(NOW)

        assert summary["processed"] == 0
        assert mock_payment_client.captures == []

    @pytest.mark.asyncio
    async def test_declined_payment_stays_expired(
        self, lifecycle, factory, owner_id, mock_repository, mock_payment_client, mock_event_bus
    ):
        campaign = expired_campaign(factory, owner_id)
        mock_repository.add(campaign)
        mock_payment_client.decline = True

        summary = await lifecycle.run_auto_renewals(NOW)

        assert summary["failed_ids"] == [campaign.campaign_id]
        assert mock_repository.stored(campaign.campaign_id).status == AdCampaignStatus.EXPIRED
        event = mock_event_bus.assert_event_published(
            AdCampaignEventType.AUTO_RENEW_FAILED, {"campaign_id": campaign.campaign_id}
        )
        assert "declined" in event["data"]["reason"]

        mock_payment_client.decline = False
        retry = await lifecycle.run_auto_renewals(NOW + timedelta(days=1))

        assert retry["succeeded"] == 1
        assert mock_repository.stored(campaign.campaign_id).status == AdCampaignStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_no_payment_collaborator(self, mock_repository, mock_event_bus, factory, owner_id):
        service = AdCampaignService(repository=mock_repository, event_bus=mock_event_bus)
        campaign = expired_campaign(factory, owner_id)
        mock_repository.add(campaign)

        summary = await AdLifecycleScheduler(service).run_auto_renewals(NOW)

        assert summary["failed"] == 1
        assert mock_repository.stored(campaign.campaign_id).status == AdCampaignStatus.EXPIRED
        mock_event_bus.assert_event_published(AdCampaignEventType.AUTO_RENEW_FAILED)

    @pytest.mark.asyncio
    async def test_slot_rebooked_blocks_renewal(
        self, lifecycle, factory, owner_id, mock_repository, mock_payment_client
    ):
        campaign = expired_campaign(factory, owner_id, slot_number=2)
        mock_repository.add(campaign, factory.make_campaign(owner_id=owner_id, slot_number=2))

        summary = await lifecycle.run_auto_renewals(NOW)

        assert summary["failed"] == 1
        assert mock_payment_client.captures == []
        assert mock_repository.stored(campaign.campaign_id).status == AdCampaignStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_batch(
        self, lifecycle, factory, owner_id, other_owner_id, mock_repository
    ):
        blocked = expired_campaign(factory, owner_id, slot_number=2)
        fine = expired_campaign(factory, other_owner_id, slot_number=2)
        mock_repository.add(blocked, fine, factory.make_campaign(owner_id=owner_id, slot_number=2))

        summary = await lifecycle.run_auto_renewals(NOW)

        assert summary["processed"] == 2
        assert summary["campaign_ids"] == [fine.campaign_id]
        assert summary["failed_ids"] == [blocked.campaign_id]


class TestCycle:

    @pytest.mark.asyncio
    async def test_expire_then_renew_in_one_cycle(self, lifecycle, factory, owner_id, mock_repository):
        campaign = factory.make_campaign(owner_id=owner_id, end_date=NOW - timedelta(minutes=5))
        mock_repository.add(campaign)

        result = await lifecycle.run_cycle(NOW)

        assert result["now"] == NOW
        assert result["expiry"]["campaign_ids"] == [campaign.campaign_id]
        assert result["renewals"]["campaign_ids"] == [campaign.campaign_id]
        renewed = mock_repository.stored(campaign.campaign_id)
        assert renewed.status == AdCampaignStatus.ACTIVE
        assert renewed.end_date == add_months(NOW, 1)

    @pytest.mark.asyncio
    async def test_cycle_is_idempotent(self, lifecycle, factory, mock_repository, mock_payment_client):
        mock_repository.add(factory.make_campaign(end_date=NOW - timedelta(minutes=5)))

        await lifecycle.run_cycle(NOW)
        second = await lifecycle.run_cycle(NOW)

        assert second["warnings"]["processed"] == 0
        assert second["expiry"]["processed"] == 0
        assert second["renewals"]["processed"] == 0
        assert len(mock_payment_client.captures) == 1

    @pytest.mark.asyncio
    async def test_scheduled_entry_point_swallows_errors(self, lifecycle, mock_repository):
        async def broken(now):
            raise RuntimeError("database unavailable")

        mock_repository.find_expiring_unwarned = lambda now, until: broken(now)

        await lifecycle.run_scheduled_cycle()


class TestSchedulerJob:

    def test_cron_job_registered(self, lifecycle):
        scheduler = create_lifecycle_job(lifecycle, hour=3, minute=30)

        assert isinstance(scheduler, AsyncIOScheduler)
        job = scheduler.get_job(LIFECYCLE_JOB_ID)
        assert job is not None
        assert "hour='3'" in str(job.trigger)
        assert "minute='30'" in str(job.trigger)

    def test_cron_defaults_from_environment(self, lifecycle, monkeypatch):
        monkeypatch.setenv("AD_LIFECYCLE_CRON_HOUR", "5")

        job = create_lifecycle_job(lifecycle).get_job(LIFECYCLE_JOB_ID)

        assert "hour='5'" in str(job.trigger)
