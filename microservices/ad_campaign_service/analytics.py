"""
Ad Campaign Analytics Counter

View/click counting and click-through rate. Increments are delegated to the
store as atomic updates; CTR is recomputed in the same write.
"""

import logging
import math
from datetime import datetime

from .models import AdCampaign, AnalyticsSummary
from .protocols import AdCampaignNotFoundError, AdCampaignRepositoryProtocol

logger = logging.getLogger(__name__)


def compute_ctr(views: int, clicks: int) -> float:
    """clicks / views * 100, or 0 when there are no views"""
    if views <= 0:
        return 0.0
    return clicks / views * 100


def days_remaining(end_date: datetime, now: datetime) -> int:
    seconds = (end_date - now).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / 86400)


class AnalyticsCounter:
    """Fire-and-forget counters attached to a campaign"""

    def __init__(self, repository: AdCampaignRepositoryProtocol):
        self.repository = repository

    async def record_view(self, campaign_id: str, now: datetime) -> AdCampaign:
        campaign = await self.repository.increment_views(campaign_id, now)
        if campaign is None:
            raise AdCampaignNotFoundError(f"Campaign not found: {campaign_id}")
        return campaign

    async def record_click(self, campaign_id: str) -> AdCampaign:
        campaign = await self.repository.increment_clicks(campaign_id)
        if campaign is None:
            raise AdCampaignNotFoundError(f"Campaign not found: {campaign_id}")
        return campaign

    @staticmethod
    def summarize(campaign: AdCampaign, now: datetime) -> AnalyticsSummary:
        return AnalyticsSummary(
            campaign_id=campaign.campaign_id,
            views=campaign.views,
            clicks=campaign.clicks,
            click_through_rate=round(compute_ctr(campaign.views, campaign.clicks), 2),
            days_remaining=days_remaining(campaign.end_date, now),
            status=campaign.status,
        )


__all__ = ["AnalyticsCounter", "compute_ctr", "days_remaining"]
