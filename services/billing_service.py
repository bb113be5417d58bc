"""
Billing Service - turns payment-gateway callbacks into subscription records
"""

import logging
from typing import Optional

import stripe

from config.settings import settings
from models.entitlement import PaymentCallback
from services.subscription_service import SubscriptionStatusResolver
from utils.errors import InvalidState

logger = logging.getLogger(__name__)

# Initialize Stripe client
if settings.stripe_secret_key:
    stripe.api_key = settings.stripe_secret_key
else:
    logger.warning("STRIPE_SECRET_KEY is not set. Stripe webhooks can still be verified with STRIPE_WEBHOOK_SECRET.")

# Stripe events that confirm a successful payment
PAYMENT_SUCCEEDED_EVENTS = ("checkout.session.completed", "invoice.paid")
PAYMENT_FAILED_EVENTS = ("invoice.payment_failed", "checkout.session.async_payment_failed")


def _as_dict(event) -> dict:
    """Plain-dict view of a StripeObject (or a dict passed through)."""
    for attr in ("to_dict", "to_dict_recursive"):
        convert = getattr(event, attr, None)
        if callable(convert):
            return convert()
    return event


def payment_callback_from_event(event) -> Optional[PaymentCallback]:
    """
    Extract a PaymentCallback from a verified Stripe event.

    The user id travels in the object's metadata (set when the checkout
    session is created). Events without one are ignored.

    Args:
        event: Verified Stripe Event object

    Returns:
        PaymentCallback, or None for unrelated events
    """
    event = _as_dict(event)
    event_type = event["type"]
    if event_type not in PAYMENT_SUCCEEDED_EVENTS + PAYMENT_FAILED_EVENTS:
        return None

    obj = event["data"]["object"]
    metadata = obj.get("metadata") or {}
    user_id = metadata.get("user_id")
    if not user_id:
        logger.warning(f"Stripe event {event['id']} ({event_type}) has no metadata.user_id; ignoring")
        return None

    amount = obj.get("amount_total")
    if amount is None:
        amount = obj.get("amount_paid", 0)

    currency = obj.get("currency")
    return PaymentCallback(
        user_id=user_id,
        reference=obj.get("id") or event["id"],
        amount=int(amount or 0),
        currency=currency.upper() if currency else None,
        success=event_type in PAYMENT_SUCCEEDED_EVENTS,
        plan_name=metadata.get("plan_name"),
    )


class BillingService:
    """
    Service class for handling billing-related business logic.
    The checkout handshake itself belongs to the gateway; this only reacts
    to its success/failure callbacks and to cancellation requests.
    """

    def __init__(self, subscriptions: SubscriptionStatusResolver):
        """
        Initialize the billing service.

        Args:
            subscriptions: Resolver bound to the request's DualStore
        """
        self.subscriptions = subscriptions

    async def handle_payment_callback(self, callback: PaymentCallback):
        """
        Record a payment callback.

        Returns:
            Normalized response: {"data": record|None, "is_error": False} or {"error": str(e), "is_error": True}
        """
        try:
            record = await self.subscriptions.record_payment_success(callback)
            return {"data": record, "is_error": False}
        except Exception as e:
            logger.error(f"Failed to record payment {callback.reference}: {e}", exc_info=True)
            return {"error": str(e), "is_error": True}

    async def cancel_subscription(self, user_id: str):
        """
        Request cancellation at period end.

        Returns:
            Normalized response: {"data": record, "is_error": False} or {"error": str(e), "is_error": True}
        """
        try:
            record = await self.subscriptions.cancel(user_id)
            return {"data": record, "is_error": False}
        except InvalidState as e:
            return {"error": e.message, "is_error": True, "invalid_state": True}
        except Exception as e:
            logger.error(f"Failed to cancel subscription for {user_id}: {e}", exc_info=True)
            return {"error": str(e), "is_error": True}

    async def process_webhook(self, event):
        """
        Process a verified Stripe webhook event.

        Args:
            event: Verified Stripe Event object (from webhook signature verification)

        Returns:
            Normalized response: {"data": True, "is_error": False} or {"error": str(e), "is_error": True}
        """
        try:
            logger.info(f"Processing Stripe webhook event: {event['type']}")
            callback = payment_callback_from_event(event)
            if callback is None:
                return {"data": True, "is_error": False}
            return await self.handle_payment_callback(callback)
        except Exception as e:
            logger.error(f"Error processing webhook: {e}", exc_info=True)
            return {"error": str(e), "is_error": True}
