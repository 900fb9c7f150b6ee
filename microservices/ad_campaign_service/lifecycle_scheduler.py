"""
Ad Campaign Lifecycle Scheduler

Time-driven batch jobs that age campaigns forward:

1. expiry warnings for active campaigns ending within the warning window
2. expiry of active campaigns whose end date has passed
3. auto-renewal of expired campaigns that have auto-renew switched on

Every job takes the clock as an argument and is safe to re-run. Within one
cycle auto-renewal runs after expiry.
"""

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .ad_campaign_service import AdCampaignService
from .analytics import days_remaining
from .events.models import AdCampaignEventType
from .protocols import (
    AdCampaignRepositoryProtocol,
    AdCampaignServiceError,
    PaymentCaptureError,
)

logger = logging.getLogger(__name__)

LIFECYCLE_JOB_ID = "ad_campaign_lifecycle_job"


def _summary(job: str, now: datetime) -> Dict[str, Any]:
    return {
        "job": job,
        "now": now.isoformat(),
        "processed": 0,
        "succeeded": 0,
        "failed": 0,
        "campaign_ids": [],
        "failed_ids": [],
    }


class AdLifecycleScheduler:
    """Runs the lifecycle jobs over the whole campaign population"""

    def __init__(
        self,
        service: AdCampaignService,
        repository: Optional[AdCampaignRepositoryProtocol] = None,
        warning_window_days: int = AdCampaignService.WARNING_WINDOW_DAYS,
    ):
        self.service = service
        self.repository = repository or service.repository
        self.warning_window_days = warning_window_days

    # ====================
    # Job 1: expiry warnings
    # ====================

    async def run_expiry_warnings(self, now: datetime) -> Dict[str, Any]:
        """
        Warn owners of active campaigns ending within the window.

        The flag is set even when delivery fails; it guards against repeated
        warnings and a lost mail is not retried.
        """
        summary = _summary("expiry_warnings", now)
        until = now + timedelta(days=self.warning_window_days)
        campaigns = await self.repository.find_expiring_unwarned(now, until)

        for campaign in campaigns:
            summary["processed"] += 1
            try:
                remaining = days_remaining(campaign.end_date, now)
                follow_up = (
                    "It will be automatically renewed."
                    if campaign.auto_renew else "Please renew to continue display."
                )
                await self.service.notify_owner(
                    campaign,
                    "Advertisement Expiring Soon",
                    f'Your advertisement "{campaign.title}" will expire in {remaining} days. {follow_up}',
                )
                if await self.repository.mark_expiry_warned(campaign.campaign_id):
                    await self.service.publisher.publish_lifecycle(
                        AdCampaignEventType.EXPIRING_SOON, campaign, days_remaining=remaining
                    )
                summary["succeeded"] += 1
                summary["campaign_ids"].append(campaign.campaign_id)
            except Exception as e:
                summary["failed"] += 1
                summary["failed_ids"].append(campaign.campaign_id)
                logger.error(f"Expiry warning failed for {campaign.campaign_id}: {e}", exc_info=True)

        logger.info(
            f"Expiry warnings: {summary['succeeded']}/{summary['processed']} campaigns warned"
        )
        return summary

    # ====================
    # Job 2: expiry
    # ====================

    async def run_expiry(self, now: datetime) -> Dict[str, Any]:
        """Expire active campaigns whose end date is before now"""
        summary = _summary("expiry", now)
        campaigns = await self.repository.find_overdue_active(now)

        for campaign in campaigns:
            summary["processed"] += 1
            try:
                if await self.service.expire_campaign(campaign.campaign_id, now):
                    summary["succeeded"] += 1
                    summary["campaign_ids"].append(campaign.campaign_id)
            except Exception as e:
                summary["failed"] += 1
                summary["failed_ids"].append(campaign.campaign_id)
                logger.error(f"Expiry failed for {campaign.campaign_id}: {e}", exc_info=True)

        logger.info(f"Expiry: {summary['succeeded']} campaigns expired")
        return summary

    # ====================
    # Job 3: auto-renewal
    # ====================

    async def run_auto_renewals(self, now: datetime) -> Dict[str, Any]:
        """
        Renew expired campaigns with auto-renew on.

        A campaign is only moved to active once its payment is captured; on
        failure it stays expired and is picked up again next cycle.
        """
        summary = _summary("auto_renewals", now)
        campaigns = await self.repository.find_auto_renewable()

        for campaign in campaigns:
            summary["processed"] += 1
            try:
                await self.service.auto_renew_campaign(campaign.campaign_id, now)
                summary["succeeded"] += 1
                summary["campaign_ids"].append(campaign.campaign_id)
            except PaymentCaptureError as e:
                summary["failed"] += 1
                summary["failed_ids"].append(campaign.campaign_id)
                logger.warning(f"Auto-renewal payment failed for {campaign.campaign_id}: {e}")
                await self.service.publish_auto_renew_failed(campaign, str(e))
            except AdCampaignServiceError as e:
                summary["failed"] += 1
                summary["failed_ids"].append(campaign.campaign_id)
                logger.warning(f"Auto-renewal skipped for {campaign.campaign_id}: {e}")
            except Exception as e:
                summary["failed"] += 1
                summary["failed_ids"].append(campaign.campaign_id)
                logger.error(f"Auto-renewal failed for {campaign.campaign_id}: {e}", exc_info=True)

        logger.info(
            f"Auto-renewals: {summary['succeeded']} renewed, {summary['failed']} left expired"
        )
        return summary

    # ====================
    # Cycle
    # ====================

    async def run_cycle(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Warnings, then expiry, then auto-renewal"""
        now = now or datetime.now(timezone.utc)
        warnings = await self.run_expiry_warnings(now)
        expiry = await self.run_expiry(now)
        renewals = await self.run_auto_renewals(now)
        return {"now": now, "warnings": warnings, "expiry": expiry, "renewals": renewals}

    async def run_scheduled_cycle(self):
        """APScheduler entry point: one cycle on the real clock"""
        try:
            await self.run_cycle(datetime.now(timezone.utc))
        except Exception as e:
            logger.error(f"Ad lifecycle cycle failed, will retry next run: {e}", exc_info=True)


def create_lifecycle_job(
    lifecycle: AdLifecycleScheduler,
    hour: Optional[int] = None,
    minute: Optional[int] = None,
) -> AsyncIOScheduler:
    """
    Build an AsyncIOScheduler running the lifecycle cycle on a cron schedule.

    Defaults to daily at midnight; AD_LIFECYCLE_CRON_HOUR / AD_LIFECYCLE_CRON_MINUTE override.
    """
    if hour is None:
        hour = int(os.getenv("AD_LIFECYCLE_CRON_HOUR", "0"))
    if minute is None:
        minute = int(os.getenv("AD_LIFECYCLE_CRON_MINUTE", "0"))

    scheduler = AsyncIOScheduler(timezone=timezone.utc)
    scheduler.add_job(
        lifecycle.run_scheduled_cycle,
        'cron',
        hour=hour,
        minute=minute,
        id=LIFECYCLE_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return scheduler


__all__ = ["AdLifecycleScheduler", "create_lifecycle_job", "LIFECYCLE_JOB_ID"]
