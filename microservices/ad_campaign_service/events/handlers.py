"""
Ad Campaign Service Event Handlers

Handle events from other services that drive campaign transitions.
"""

import logging
from typing import Any, Dict, Union

from pydantic import ValidationError

from ..protocols import AdCampaignNotFoundError, AdCampaignServiceError
from .models import AdCampaignSubscribedEventType, PaymentCompletedEventData

logger = logging.getLogger(__name__)


def extract_event_data(event_or_data: Union[Dict[str, Any], Any]) -> Dict[str, Any]:
    """
    Extract data from either an Event object or a raw dict.

    Handles both:
    - Event objects with .data attribute (from NATS)
    - Raw dict (for testing or direct calls)
    """
    if hasattr(event_or_data, 'data'):
        return event_or_data.data
    return event_or_data


# ============================================================================
# Event Handlers
# ============================================================================


async def handle_payment_completed(event_or_data: Union[Dict[str, Any], Any], ad_campaign_service=None) -> bool:
    """
    Handle payment.completed event from payment_service

    Moves the paid campaign from awaiting_payment to pending. Payments that
    are not for an ad campaign are ignored. Redelivery is harmless: the
    service treats the same payment id as already applied.

    Event data:
        - payment_id / payment_intent_id: Payment reference
        - campaign_id or metadata.ad_campaign_id: Campaign being paid for
        - amount: Amount captured
        - payment_method: Method used
    """
    try:
        payload = PaymentCompletedEventData(**(extract_event_data(event_or_data) or {}))
    except ValidationError as e:
        logger.warning(f"Malformed payment.completed event: {e}")
        return False

    campaign_id = payload.resolve_campaign_id()
    if not campaign_id:
        logger.debug("payment.completed event is not for an ad campaign, ignoring")
        return False

    payment_id = payload.resolve_payment_id()
    if not payment_id:
        logger.warning(f"payment.completed event for {campaign_id} missing payment id")
        return False

    if not ad_campaign_service:
        return False

    try:
        await ad_campaign_service.on_payment_completed(
            campaign_id=campaign_id,
            payment_id=payment_id,
            method=payload.payment_method or "unknown",
            amount=payload.amount,
        )
        logger.info(f"Payment {payment_id} applied to campaign {campaign_id}")
        return True
    except AdCampaignNotFoundError:
        logger.warning(f"payment.completed for unknown campaign {campaign_id}")
    except AdCampaignServiceError as e:
        logger.warning(f"payment.completed for {campaign_id} not applied: {e}")
    except Exception as e:
        logger.error(f"Error handling payment.completed event for {campaign_id}: {e}", exc_info=True)
    return False


# ============================================================================
# Event Handler Registry
# ============================================================================


def get_event_handlers(ad_campaign_service=None) -> Dict[str, callable]:
    """
    Return a mapping of event types to handler functions

    Used in main.py to register event subscriptions.

    Events subscribed:
        - payment.completed: mark the campaign paid and queue it for review
    """
    return {
        AdCampaignSubscribedEventType.PAYMENT_COMPLETED.value:
            lambda event: handle_payment_completed(event, ad_campaign_service),
    }
