"""
Shop Directory HTTP Client

Looks up shops and product ownership for link target validation and owner
contact details.
"""

import httpx
import logging
from typing import Optional, Dict, Any

from core.service_client_base import BaseServiceClient

logger = logging.getLogger(__name__)


class ShopClient(BaseServiceClient):
    """Async HTTP client for the shop/product directory"""

    service_name = "shop_service"
    default_port = 8280
    env_prefix = "SHOP_SERVICE"

    async def get_shop(self, shop_id: str) -> Optional[Dict[str, Any]]:
        """
        Get a shop by id

        Returns:
            Shop data dictionary, or None if the shop does not exist

        Raises:
            httpx.HTTPError: when the directory cannot answer
        """
        try:
            response = await self.get(
                f"/api/v1/shops/{shop_id}",
                headers={"X-Internal-Call": "true"}
            )
            if response.status_code == 404:
                logger.info(f"Shop not found: {shop_id}")
                return None
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error getting shop {shop_id}: {e.response.status_code}")
            raise
        except httpx.RequestError as e:
            logger.error(f"Request error getting shop {shop_id}: {e}")
            raise

    async def product_belongs_to_shop(self, product_id: str, shop_id: str) -> bool:
        """True when the product exists and is listed by the shop"""
        try:
            response = await self.get(
                f"/api/v1/products/{product_id}",
                headers={"X-Internal-Call": "true"}
            )
            if response.status_code == 404:
                logger.info(f"Product not found: {product_id}")
                return False
            response.raise_for_status()
            product = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Error checking product {product_id}: {e}")
            raise

        owner = product.get("shop_id") or product.get("owner_id")
        return owner == shop_id


__all__ = ["ShopClient"]
