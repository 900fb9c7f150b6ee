"""
Ad Campaign Service Factory

Factory for creating AdCampaignService with real dependencies.
This is the ONLY module that imports concrete implementations.
"""

import logging
from typing import Optional

from core.config_manager import ConfigManager

from .ad_campaign_repository import AdCampaignRepository
from .ad_campaign_service import AdCampaignService
from .pricing import PricingConfig, PricingEngine
from .slot_registry import SlotRegistry

logger = logging.getLogger(__name__)


def create_ad_campaign_service(
    config: Optional[ConfigManager] = None,
    event_bus=None,
    pricing_config: Optional[PricingConfig] = None,
    shop_client=None,
    media_client=None,
    notification_client=None,
    payment_client=None,
) -> AdCampaignService:
    """
    Create AdCampaignService with all real dependencies

    Args:
        config: Optional config manager (creates default if not provided)
        event_bus: Optional event bus for event publishing
        pricing_config: Ad plan tables (defaults when not provided)
        shop_client: Optional shop directory client (creates default if not provided)
        media_client: Optional media store client (creates default if not provided)
        notification_client: Optional notification client (creates default if not provided)
        payment_client: Optional payment client (creates default if not provided)

    Returns:
        Fully initialized AdCampaignService instance
    """
    if config is None:
        config = ConfigManager("ad_campaign_service")

    repository = AdCampaignRepository(config=config)
    pricing_engine = PricingEngine(pricing_config)
    slot_registry = SlotRegistry(repository, pricing_engine.config.slots_per_type)

    if shop_client is None:
        try:
            from .clients.shop_client import ShopClient

            shop_client = ShopClient(config=config)
            logger.info("✅ ShopClient initialized for ad campaign service")
        except Exception as e:
            logger.warning(f"⚠️ Failed to initialize ShopClient: {e}")
            logger.warning("Link targets will only be checked for shape, product links will be refused")

    if media_client is None:
        try:
            from .clients.media_client import MediaClient

            media_client = MediaClient(config=config)
            logger.info("✅ MediaClient initialized for ad campaign service")
        except Exception as e:
            logger.warning(f"⚠️ Failed to initialize MediaClient: {e}")
            logger.warning("Replaced media will not be deleted")

    if notification_client is None:
        try:
            from .clients.notification_client import NotificationClient

            notification_client = NotificationClient(config=config)
            logger.info("✅ NotificationClient initialized for ad campaign service")
        except Exception as e:
            logger.warning(f"⚠️ Failed to initialize NotificationClient: {e}")
            logger.warning("Owners will not be notified")

    if payment_client is None:
        try:
            from .clients.payment_client import PaymentClient

            payment_client = PaymentClient(config=config)
            logger.info("✅ PaymentClient initialized for ad campaign service")
        except Exception as e:
            logger.warning(f"⚠️ Failed to initialize PaymentClient: {e}")
            logger.warning("Auto-renewals will fail until payments are reachable")

    return AdCampaignService(
        repository=repository,
        event_bus=event_bus,
        pricing_engine=pricing_engine,
        slot_registry=slot_registry,
        shop_client=shop_client,
        media_client=media_client,
        notification_client=notification_client,
        payment_client=payment_client,
    )


async def close_clients(service: AdCampaignService):
    """Close the HTTP clients owned by a factory-built service"""
    for client in (service.shop_client, service.media_client,
                   service.notification_client, service.payment_client):
        if client is not None and hasattr(client, "close"):
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Error closing {type(client).__name__}: {e}")


__all__ = ["create_ad_campaign_service", "close_clients"]
