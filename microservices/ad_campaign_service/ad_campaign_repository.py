"""
Ad Campaign Service Data Repository

Data access layer - PostgreSQL (Async)

State-changing writes that race with other writers carry their guard in the
WHERE clause (expected status, overdue end date, unset warning flag) so the
row-level check happens inside the UPDATE itself.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from asyncpg.exceptions import UniqueViolationError
from pydantic import BaseModel

from core.config import settings
from core.config_manager import ConfigManager
from core.postgres_client import AsyncPostgresClient

from .models import (
    AdCampaign,
    AdCampaignStatus,
    AdType,
    MediaRef,
    MediaType,
    PaymentStatus,
    RenewalRecord,
)
from .pricing import PricingConfig
from .protocols import RepositoryError, SlotUnavailableError

logger = logging.getLogger(__name__)

LIVE_STATUSES = [AdCampaignStatus.PENDING.value, AdCampaignStatus.ACTIVE.value]

# Columns update_campaign may write; keys outside this set are rejected
UPDATABLE_COLUMNS = frozenset({
    "title", "description", "media_type", "media", "link_url",
    "base_price", "discount_percent", "total_price",
    "status", "payment_status", "payment_id", "payment_method",
    "approved_by", "approved_at", "rejection_reason",
    "start_date", "end_date", "auto_renew", "expiry_warning_emailed",
    "renewal_history", "rotation_order", "updated_at",
})


def _to_db(value: Any) -> Any:
    """Convert model values to what asyncpg expects"""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_to_db(item) for item in value]
    return value


class AdCampaignRepository:
    """Ad campaign data repository - PostgreSQL (Async)"""

    def __init__(self, config: Optional[ConfigManager] = None):
        # Use config_manager for service discovery
        if config is None:
            config = ConfigManager("ad_campaign_service")

        host, port = config.discover_service(
            service_name='postgres_service',
            default_host='localhost',
            default_port=5432,
            env_host_key='POSTGRES_HOST',
            env_port_key='POSTGRES_PORT'
        )

        logger.info(f"Connecting to PostgreSQL at {host}:{port}")
        self.db = AsyncPostgresClient(
            host=host,
            port=port,
            database=settings.postgres_db,
            username=settings.postgres_user,
            password=settings.postgres_password,
            user_id="ad_campaign_service",
            min_size=settings.postgres_min_pool,
            max_size=settings.postgres_max_pool,
        )
        self.schema = "ad_campaign"
        self.campaigns_table = "campaigns"
        self.plans_table = "pricing_plans"
        self.discounts_table = "duration_discounts"

    async def initialize(self):
        """Open the connection pool"""
        async with self.db:
            logger.info("Ad campaign repository initialized with PostgreSQL")

    async def close(self):
        """Close database connection"""
        await self.db.close()
        logger.info("Ad campaign repository database connection closed")

    async def health_check(self) -> bool:
        """Check repository health"""
        try:
            async with self.db:
                result = await self.db.health_check()
                return bool(result.get("healthy"))
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return False

    # ====================
    # Campaign CRUD
    # ====================

    async def create_campaign(self, campaign: AdCampaign) -> AdCampaign:
        """Insert a campaign"""
        try:
            query = f'''
                INSERT INTO {self.schema}.{self.campaigns_table} (
                    campaign_id, owner_id, ad_type, slot_number,
                    title, description, media_type, media, link_url, product_id,
                    duration, base_price, discount_percent, total_price,
                    status, payment_status, payment_id, payment_method,
                    start_date, end_date, auto_renew, expiry_warning_emailed,
                    renewal_history, views, clicks, click_through_rate,
                    rotation_order, created_at, updated_at
                ) VALUES (
                    $1, $2, $3, $4, $5, $6, $7, $8, $9, $10,
                    $11, $12, $13, $14, $15, $16, $17, $18, $19, $20,
                    $21, $22, $23, $24, $25, $26, $27, $28, $29
                )
                RETURNING *
            '''
            now = datetime.now(timezone.utc)
            params = [
                campaign.campaign_id,
                campaign.owner_id,
                campaign.ad_type.value,
                campaign.slot_number,
                campaign.title,
                campaign.description,
                campaign.media_type.value,
                _to_db(campaign.media),
                campaign.link_url,
                campaign.product_id,
                campaign.duration,
                campaign.base_price,
                campaign.discount_percent,
                campaign.total_price,
                campaign.status.value,
                campaign.payment_status.value,
                campaign.payment_id,
                campaign.payment_method,
                campaign.start_date,
                campaign.end_date,
                campaign.auto_renew,
                campaign.expiry_warning_emailed,
                _to_db(campaign.renewal_history),
                campaign.views,
                campaign.clicks,
                campaign.click_through_rate,
                campaign.rotation_order,
                campaign.created_at or now,
                campaign.updated_at or now,
            ]

            async with self.db:
                row = await self.db.query_row(query, params=params)

            if not row:
                raise RepositoryError(f"Insert returned no row for {campaign.campaign_id}")
            return self._row_to_campaign(row)

        except UniqueViolationError as e:
            raise SlotUnavailableError(
                f"Owner {campaign.owner_id} already holds slot {campaign.slot_number} "
                f"of {campaign.ad_type.value}"
            ) from e
        except RepositoryError:
            raise
        except Exception as e:
            logger.error(f"Error creating campaign {campaign.campaign_id}: {e}", exc_info=True)
            raise RepositoryError(f"Failed to create campaign: {e}") from e

    async def get_campaign(self, campaign_id: str) -> Optional[AdCampaign]:
        """Get campaign by ID"""
        try:
            query = f'''
                SELECT * FROM {self.schema}.{self.campaigns_table}
                WHERE campaign_id = $1
            '''
            async with self.db:
                row = await self.db.query_row(query, params=[campaign_id])
            return self._row_to_campaign(row) if row else None
        except Exception as e:
            logger.error(f"Error getting campaign {campaign_id}: {e}", exc_info=True)
            raise RepositoryError(f"Failed to get campaign: {e}") from e

    async def update_campaign(
        self,
        campaign_id: str,
        updates: Dict[str, Any],
        expected_status: Optional[List[AdCampaignStatus]] = None,
    ) -> Optional[AdCampaign]:
        """
        Apply updates in one statement.

        With expected_status the UPDATE only matches while the stored status is
        one of them; None means the guard (or the id) did not match.
        """
        unknown = set(updates) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update columns: {sorted(unknown)}")

        set_clauses = []
        params: List[Any] = []
        for column, value in updates.items():
            params.append(_to_db(value))
            set_clauses.append(f"{column} = ${len(params)}")

        params.append(campaign_id)
        where = f"campaign_id = ${len(params)}"
        if expected_status:
            params.append([_to_db(s) for s in expected_status])
            where += f" AND status = ANY(${len(params)}::text[])"

        query = f'''
            UPDATE {self.schema}.{self.campaigns_table}
            SET {", ".join(set_clauses)}
            WHERE {where}
            RETURNING *
        '''
        try:
            async with self.db:
                row = await self.db.query_row(query, params=params)
            return self._row_to_campaign(row) if row else None
        except UniqueViolationError as e:
            raise SlotUnavailableError(
                f"Campaign {campaign_id} would give its owner a second live campaign in the slot"
            ) from e
        except Exception as e:
            logger.error(f"Error updating campaign {campaign_id}: {e}", exc_info=True)
            raise RepositoryError(f"Failed to update campaign: {e}") from e

    # ====================
    # Listings
    # ====================

    async def list_campaigns(
        self,
        owner_id: Optional[str] = None,
        status: Optional[List[AdCampaignStatus]] = None,
        ad_type: Optional[AdType] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[AdCampaign], int]:
        """List campaigns newest first, with the total before paging"""
        try:
            conditions = []
            params: List[Any] = []

            if owner_id:
                params.append(owner_id)
                conditions.append(f"owner_id = ${len(params)}")
            if status:
                params.append([_to_db(s) for s in status])
                conditions.append(f"status = ANY(${len(params)}::text[])")
            if ad_type:
                params.append(_to_db(ad_type))
                conditions.append(f"ad_type = ${len(params)}")

            where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""

            count_query = f'''
                SELECT COUNT(*) AS total FROM {self.schema}.{self.campaigns_table}
                {where_clause}
            '''
            list_query = f'''
                SELECT * FROM {self.schema}.{self.campaigns_table}
                {where_clause}
                ORDER BY created_at DESC
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
            '''

            async with self.db:
                count_row = await self.db.query_row(count_query, params=params)
                rows = await self.db.query(list_query, params=params + [limit, offset])

            total = count_row["total"] if count_row else 0
            return [self._row_to_campaign(row) for row in rows], total

        except Exception as e:
            logger.error(f"Error listing campaigns: {e}", exc_info=True)
            raise RepositoryError(f"Failed to list campaigns: {e}") from e

    async def list_live_campaigns(
        self,
        ad_type: AdType,
        now: datetime,
        slot_number: Optional[int] = None,
        owner_id: Optional[str] = None,
    ) -> List[AdCampaign]:
        """Campaigns holding a slot: status pending/active and end_date > now"""
        try:
            params: List[Any] = [_to_db(ad_type), LIVE_STATUSES, now]
            conditions = ["ad_type = $1", "status = ANY($2::text[])", "end_date > $3"]
            if slot_number is not None:
                params.append(slot_number)
                conditions.append(f"slot_number = ${len(params)}")
            if owner_id:
                params.append(owner_id)
                conditions.append(f"owner_id = ${len(params)}")

            query = f'''
                SELECT * FROM {self.schema}.{self.campaigns_table}
                WHERE {" AND ".join(conditions)}
                ORDER BY slot_number, created_at
            '''
            async with self.db:
                rows = await self.db.query(query, params=params)
            return [self._row_to_campaign(row) for row in rows]

        except Exception as e:
            logger.error(f"Error listing live {ad_type} campaigns: {e}", exc_info=True)
            raise RepositoryError(f"Failed to list live campaigns: {e}") from e

    async def list_active_for_display(
        self, ad_type: AdType, now: datetime, slot_number: Optional[int] = None
    ) -> List[AdCampaign]:
        """Active, in-term campaigns in rotation order"""
        try:
            params: List[Any] = [_to_db(ad_type), AdCampaignStatus.ACTIVE.value, now]
            slot_filter = ""
            if slot_number is not None:
                params.append(slot_number)
                slot_filter = f"AND slot_number = ${len(params)}"

            query = f'''
                SELECT * FROM {self.schema}.{self.campaigns_table}
                WHERE ad_type = $1 AND status = $2
                  AND start_date <= $3 AND end_date > $3
                  {slot_filter}
                ORDER BY rotation_order ASC, created_at ASC
            '''
            async with self.db:
                rows = await self.db.query(query, params=params)
            return [self._row_to_campaign(row) for row in rows]

        except Exception as e:
            logger.error(f"Error listing display feed for {ad_type}: {e}", exc_info=True)
            raise RepositoryError(f"Failed to list display campaigns: {e}") from e

    async def cancel_unpaid_in_slot(
        self, owner_id: str, ad_type: AdType, slot_number: Optional[int]
    ) -> List[str]:
        """Cancel the owner's awaiting_payment drafts for a placement"""
        try:
            query = f'''
                UPDATE {self.schema}.{self.campaigns_table}
                SET status = $4, auto_renew = FALSE, updated_at = $5
                WHERE owner_id = $1 AND ad_type = $2
                  AND slot_number IS NOT DISTINCT FROM $3
                  AND status = $6
                RETURNING campaign_id
            '''
            params = [
                owner_id,
                _to_db(ad_type),
                slot_number,
                AdCampaignStatus.CANCELLED.value,
                datetime.now(timezone.utc),
                AdCampaignStatus.AWAITING_PAYMENT.value,
            ]
            async with self.db:
                rows = await self.db.query(query, params=params)
            return [row["campaign_id"] for row in rows]

        except Exception as e:
            logger.error(f"Error cancelling unpaid drafts for {owner_id}: {e}", exc_info=True)
            raise RepositoryError(f"Failed to cancel unpaid drafts: {e}") from e

    # ====================
    # Lifecycle queries
    # ====================

    async def find_expiring_unwarned(self, now: datetime, until: datetime) -> List[AdCampaign]:
        """Active campaigns with now < end_date <= until that have not been warned"""
        try:
            query = f'''
                SELECT * FROM {self.schema}.{self.campaigns_table}
                WHERE status = $1 AND expiry_warning_emailed = FALSE
                  AND end_date > $2 AND end_date <= $3
                ORDER BY end_date
            '''
            async with self.db:
                rows = await self.db.query(query, params=[AdCampaignStatus.ACTIVE.value, now, until])
            return [self._row_to_campaign(row) for row in rows]
        except Exception as e:
            logger.error(f"Error finding expiring campaigns: {e}", exc_info=True)
            raise RepositoryError(f"Failed to find expiring campaigns: {e}") from e

    async def mark_expiry_warned(self, campaign_id: str) -> bool:
        """Set the warning flag; False when it was already set"""
        try:
            query = f'''
                UPDATE {self.schema}.{self.campaigns_table}
                SET expiry_warning_emailed = TRUE, updated_at = $2
                WHERE campaign_id = $1 AND expiry_warning_emailed = FALSE
            '''
            async with self.db:
                count = await self.db.execute(query, params=[campaign_id, datetime.now(timezone.utc)])
            return count > 0
        except Exception as e:
            logger.error(f"Error marking {campaign_id} warned: {e}", exc_info=True)
            raise RepositoryError(f"Failed to mark expiry warning: {e}") from e

    async def find_overdue_active(self, now: datetime) -> List[AdCampaign]:
        try:
            query = f'''
                SELECT * FROM {self.schema}.{self.campaigns_table}
                WHERE status = $1 AND end_date < $2
                ORDER BY end_date
            '''
            async with self.db:
                rows = await self.db.query(query, params=[AdCampaignStatus.ACTIVE.value, now])
            return [self._row_to_campaign(row) for row in rows]
        except Exception as e:
            logger.error(f"Error finding overdue campaigns: {e}", exc_info=True)
            raise RepositoryError(f"Failed to find overdue campaigns: {e}") from e

    async def find_overdue_in_slot(
        self, owner_id: str, ad_type: AdType, slot_number: Optional[int], now: datetime
    ) -> List[AdCampaign]:
        """The owner's active campaigns in one slot whose end date has passed"""
        try:
            query = f'''
                SELECT * FROM {self.schema}.{self.campaigns_table}
                WHERE owner_id = $1 AND ad_type = $2
                  AND slot_number IS NOT DISTINCT FROM $3
                  AND status = $4 AND end_date < $5
            '''
            params = [owner_id, _to_db(ad_type), slot_number, AdCampaignStatus.ACTIVE.value, now]
            async with self.db:
                rows = await self.db.query(query, params=params)
            return [self._row_to_campaign(row) for row in rows]
        except Exception as e:
            logger.error(f"Error finding overdue campaigns for {owner_id}: {e}", exc_info=True)
            raise RepositoryError(f"Failed to find overdue campaigns: {e}") from e

    async def expire_if_overdue(self, campaign_id: str, now: datetime) -> bool:
        """active -> expired, only while still active and past its end date"""
        try:
            query = f'''
                UPDATE {self.schema}.{self.campaigns_table}
                SET status = $2, updated_at = $3
                WHERE campaign_id = $1 AND status = $4 AND end_date < $3
            '''
            params = [
                campaign_id,
                AdCampaignStatus.EXPIRED.value,
                now,
                AdCampaignStatus.ACTIVE.value,
            ]
            async with self.db:
                count = await self.db.execute(query, params=params)
            return count > 0
        except Exception as e:
            logger.error(f"Error expiring campaign {campaign_id}: {e}", exc_info=True)
            raise RepositoryError(f"Failed to expire campaign: {e}") from e

    async def find_auto_renewable(self) -> List[AdCampaign]:
        try:
            query = f'''
                SELECT * FROM {self.schema}.{self.campaigns_table}
                WHERE status = $1 AND auto_renew = TRUE
                ORDER BY end_date
            '''
            async with self.db:
                rows = await self.db.query(query, params=[AdCampaignStatus.EXPIRED.value])
            return [self._row_to_campaign(row) for row in rows]
        except Exception as e:
            logger.error(f"Error finding auto-renewable campaigns: {e}", exc_info=True)
            raise RepositoryError(f"Failed to find auto-renewable campaigns: {e}") from e

    # ====================
    # Counters
    # ====================

    async def increment_views(self, campaign_id: str, now: datetime) -> Optional[AdCampaign]:
        """views + 1 and CTR recomputed in the same statement"""
        try:
            query = f'''
                UPDATE {self.schema}.{self.campaigns_table}
                SET views = views + 1,
                    click_through_rate = clicks::float8 / (views + 1) * 100,
                    last_displayed_at = $2
                WHERE campaign_id = $1
                RETURNING *
            '''
            async with self.db:
                row = await self.db.query_row(query, params=[campaign_id, now])
            return self._row_to_campaign(row) if row else None
        except Exception as e:
            logger.error(f"Error recording view for {campaign_id}: {e}", exc_info=True)
            raise RepositoryError(f"Failed to record view: {e}") from e

    async def increment_clicks(self, campaign_id: str) -> Optional[AdCampaign]:
        """clicks + 1 and CTR recomputed in the same statement"""
        try:
            query = f'''
                UPDATE {self.schema}.{self.campaigns_table}
                SET clicks = clicks + 1,
                    click_through_rate = CASE
                        WHEN views > 0 THEN (clicks + 1)::float8 / views * 100
                        ELSE 0
                    END
                WHERE campaign_id = $1
                RETURNING *
            '''
            async with self.db:
                row = await self.db.query_row(query, params=[campaign_id])
            return self._row_to_campaign(row) if row else None
        except Exception as e:
            logger.error(f"Error recording click for {campaign_id}: {e}", exc_info=True)
            raise RepositoryError(f"Failed to record click: {e}") from e

    # ====================
    # Pricing plans
    # ====================

    async def load_pricing_config(self) -> Optional[PricingConfig]:
        """Rebuild the admin plan config; None when nothing was saved"""
        try:
            async with self.db:
                plans = await self.db.query(
                    f"SELECT ad_type, monthly_rate, is_active, is_free FROM {self.schema}.{self.plans_table}"
                )
                discounts = await self.db.query(
                    f"SELECT months, discount_percent FROM {self.schema}.{self.discounts_table}"
                )
        except Exception as e:
            logger.error(f"Error loading pricing plans: {e}", exc_info=True)
            raise RepositoryError(f"Failed to load pricing plans: {e}") from e

        if not plans:
            return None

        kwargs: Dict[str, Any] = {
            "monthly_rates": {AdType(p["ad_type"]): Decimal(str(p["monthly_rate"])) for p in plans},
            "inactive_types": frozenset(AdType(p["ad_type"]) for p in plans if not p["is_active"]),
            "free_types": frozenset(AdType(p["ad_type"]) for p in plans if p.get("is_free")),
        }
        if discounts:
            kwargs["duration_discounts"] = {d["months"]: d["discount_percent"] for d in discounts}
        return PricingConfig(**kwargs)

    async def save_pricing_config(self, config: PricingConfig) -> None:
        """Replace the stored plan config in one transaction"""
        now = datetime.now(timezone.utc)
        plan_rows = [
            [ad_type.value, rate, config.is_active(ad_type), config.is_free(ad_type), now]
            for ad_type, rate in config.monthly_rates.items()
        ]
        discount_rows = [[months, percent] for months, percent in config.duration_discounts.items()]
        try:
            async with self.db.transaction() as tx:
                await tx.execute_many(
                    f'''
                    INSERT INTO {self.schema}.{self.plans_table}
                        (ad_type, monthly_rate, is_active, is_free, updated_at)
                    VALUES ($1, $2, $3, $4, $5)
                    ON CONFLICT (ad_type) DO UPDATE
                    SET monthly_rate = EXCLUDED.monthly_rate,
                        is_active = EXCLUDED.is_active,
                        is_free = EXCLUDED.is_free,
                        updated_at = EXCLUDED.updated_at
                    ''',
                    plan_rows,
                )
                await tx.execute(f"DELETE FROM {self.schema}.{self.discounts_table}")
                await tx.execute_many(
                    f'''
                    INSERT INTO {self.schema}.{self.discounts_table} (months, discount_percent)
                    VALUES ($1, $2)
                    ''',
                    discount_rows,
                )
            logger.info(f"Saved pricing config ({len(plan_rows)} plans, {len(discount_rows)} durations)")
        except Exception as e:
            logger.error(f"Error saving pricing plans: {e}", exc_info=True)
            raise RepositoryError(f"Failed to save pricing plans: {e}") from e

    # ====================
    # Row mapping
    # ====================

    def _row_to_campaign(self, row: Dict[str, Any]) -> AdCampaign:
        """Convert database row to AdCampaign model"""
        media = row.get("media")
        history = row.get("renewal_history") or []

        return AdCampaign.model_construct(
            id=row.get("id"),
            campaign_id=row["campaign_id"],
            owner_id=row["owner_id"],
            ad_type=AdType(row["ad_type"]),
            slot_number=row.get("slot_number"),
            title=row["title"],
            description=row.get("description"),
            media_type=MediaType(row.get("media_type") or MediaType.IMAGE.value),
            media=MediaRef(**media) if media else None,
            link_url=row["link_url"],
            product_id=row.get("product_id"),
            duration=row["duration"],
            base_price=Decimal(str(row["base_price"])),
            discount_percent=row.get("discount_percent") or 0,
            total_price=Decimal(str(row["total_price"])),
            status=AdCampaignStatus(row["status"]),
            payment_status=PaymentStatus(row["payment_status"]),
            payment_id=row.get("payment_id"),
            payment_method=row.get("payment_method"),
            approved_by=row.get("approved_by"),
            approved_at=row.get("approved_at"),
            rejection_reason=row.get("rejection_reason"),
            start_date=row["start_date"],
            end_date=row["end_date"],
            auto_renew=row.get("auto_renew", True),
            expiry_warning_emailed=row.get("expiry_warning_emailed", False),
            renewal_history=[RenewalRecord(**entry) for entry in history],
            views=row.get("views") or 0,
            clicks=row.get("clicks") or 0,
            click_through_rate=float(row.get("click_through_rate") or 0.0),
            rotation_order=row.get("rotation_order") or 0,
            last_displayed_at=row.get("last_displayed_at"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


__all__ = ["AdCampaignRepository"]
