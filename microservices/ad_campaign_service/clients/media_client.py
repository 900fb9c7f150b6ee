"""
Media Store HTTP Client

Deletes creative assets that a campaign no longer references.
"""

import httpx
import logging

from core.service_client_base import BaseServiceClient

logger = logging.getLogger(__name__)


class MediaClient(BaseServiceClient):
    """Async HTTP client for media_service"""

    service_name = "media_service"
    default_port = 8222
    env_prefix = "MEDIA_SERVICE"

    async def delete(self, public_id: str) -> bool:
        """Delete an asset by its public id; a missing asset counts as deleted"""
        try:
            response = await self._request(
                "DELETE",
                f"/api/v1/media/{public_id}",
                headers={"X-Internal-Call": "true"}
            )
            if response.status_code == 404:
                logger.info(f"Media already gone: {public_id}")
                return True
            response.raise_for_status()
            logger.debug(f"Deleted media {public_id}")
            return True
        except httpx.HTTPError as e:
            logger.error(f"Failed to delete media {public_id}: {e}")
            return False


__all__ = ["MediaClient"]
