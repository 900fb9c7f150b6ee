"""
Notification Service HTTP Client

Sends owner-facing emails for approval, rejection, renewal and expiry.
"""

import httpx
import logging
from typing import Optional, Dict, Any

from core.service_client_base import BaseServiceClient

logger = logging.getLogger(__name__)


class NotificationClient(BaseServiceClient):
    """Async HTTP client for notification_service"""

    service_name = "notification_service"
    default_port = 8270
    env_prefix = "NOTIFICATION_SERVICE"

    async def notify(
        self,
        recipient: str,
        subject: str,
        body: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Send an email notification

        Args:
            recipient: Email address or user id
            subject: Email subject
            body: Plain-text body
            metadata: Extra fields stored with the notification

        Returns:
            True if the notification service accepted it
        """
        payload = {
            "type": "email",
            "recipient_email": recipient if "@" in recipient else None,
            "recipient_id": None if "@" in recipient else recipient,
            "subject": subject,
            "content": body,
            "metadata": {"source": "ad_campaign_service", **(metadata or {})},
        }
        try:
            response = await self.post("/api/v1/notifications/send", json=payload)
            response.raise_for_status()
            logger.debug(f"Notification sent to {recipient}: {subject}")
            return True
        except httpx.HTTPError as e:
            logger.error(f"Failed to send notification to {recipient}: {e}")
            return False


__all__ = ["NotificationClient"]
