"""
Payment Service HTTP Client

Captures renewal payments for auto-renewing campaigns.
"""

import httpx
import logging
from decimal import Decimal

from core.service_client_base import BaseServiceClient

from ..protocols import PaymentCaptureError

logger = logging.getLogger(__name__)


class PaymentClient(BaseServiceClient):
    """Async HTTP client for payment_service"""

    service_name = "payment_service"
    default_port = 8207
    env_prefix = "PAYMENT_SERVICE"

    async def capture(self, amount: Decimal, method: str, reference: str) -> str:
        """
        Charge the stored payment method of a campaign

        Returns:
            The payment id of the captured charge

        Raises:
            PaymentCaptureError: declined charge or payment service failure
        """
        payload = {
            "amount": str(amount),
            "currency": "USD",
            "payment_method": method,
            "metadata": {"ad_campaign_id": reference, "reason": "auto_renew"},
        }
        try:
            response = await self.post("/api/v1/payments/capture", json=payload)
            if response.status_code in (402, 422):
                detail = response.json().get("detail", "payment declined")
                raise PaymentCaptureError(f"Payment for {reference} declined: {detail}")
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Payment capture failed for {reference}: {e}")
            raise PaymentCaptureError(f"Payment service error for {reference}: {e}") from e

        payment_id = data.get("payment_id") or data.get("payment_intent_id")
        if not payment_id or data.get("status") not in (None, "succeeded", "completed"):
            raise PaymentCaptureError(f"Payment for {reference} not captured (status={data.get('status')})")

        logger.info(f"Captured {amount} for {reference}: {payment_id}")
        return payment_id


__all__ = ["PaymentClient"]
