"""
Billing Router - payment callbacks, cancellation and subscription status
Webhook is defined FIRST to avoid middleware conflicts
"""

import logging
from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
import stripe

from backend.utils.responses import success_response, error_response
from config.settings import settings
from models.entitlement import CancelSubscriptionRequest, PaymentCallback
from routers.dependencies import get_store
from services.billing_service import BillingService
from services.dual_store import DualStore
from services.subscription_service import SubscriptionStatusResolver

logger = logging.getLogger(__name__)

# Create billing router
billing_router = APIRouter(prefix="/api/billing", tags=["billing"])


def _billing_service(store: DualStore) -> BillingService:
    return BillingService(SubscriptionStatusResolver(store))


# WEBHOOK ENDPOINT - MUST BE DEFINED FIRST TO AVOID MIDDLEWARE CONFLICTS
@billing_router.post("/webhook")
async def stripe_webhook(
    request: Request,
    store: DualStore = Depends(get_store)
):
    """
    Handle Stripe webhook events with signature verification.

    Only verified events are processed. Always returns 200 OK to Stripe to
    prevent retries.

    Args:
        request: FastAPI Request object (for raw body)
        store: DualStore for the request

    Returns:
        JSON response with 200 status code
    """
    try:
        webhook_secret = settings.stripe_webhook_secret
        if not webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET environment variable is not set")
            return JSONResponse(
                status_code=200,
                content={"ok": False, "received": True, "error": "Webhook secret not configured"}
            )

        # Get raw request body (required for signature verification)
        payload = await request.body()

        stripe_signature = request.headers.get("stripe-signature")
        if not stripe_signature:
            logger.error("Missing Stripe-Signature header")
            return JSONResponse(
                status_code=200,
                content={"ok": False, "received": True, "error": "Missing signature header"}
            )

        try:
            event = stripe.Webhook.construct_event(
                payload,
                stripe_signature,
                webhook_secret
            )
        except stripe.SignatureVerificationError as e:
            logger.error(f"Stripe webhook signature verification failed: {e}")
            return JSONResponse(
                status_code=200,
                content={"ok": False, "received": True, "error": "Invalid webhook signature"}
            )
        except ValueError as e:
            logger.error(f"Invalid webhook payload: {e}")
            return JSONResponse(
                status_code=200,
                content={"ok": False, "received": True, "error": "Invalid payload format"}
            )

        result = await _billing_service(store).process_webhook(event)

        success = not result.get("is_error", True)
        return JSONResponse(
            status_code=200,
            content={
                "ok": success,
                "received": True,
                "event_type": event["type"]
            }
        )

    except Exception as e:
        logger.error(f"Webhook error: {e}", exc_info=True)
        return JSONResponse(
            status_code=200,
            content={"ok": False, "received": True, "error": "Webhook processing failed"}
        )


@billing_router.post("/payment-callback")
async def payment_callback(
    callback: PaymentCallback,
    store: DualStore = Depends(get_store)
):
    """
    Gateway-agnostic payment result callback.
    A successful payment creates the subscription and opens access immediately.
    """
    result = await _billing_service(store).handle_payment_callback(callback)
    if result.get("is_error"):
        return error_response("PAYMENT_RECORD_FAILED", status=500, message="Could not record payment")
    if result["data"] is None:
        return success_response({"user_id": callback.user_id, "subscribed": False}, message="Payment not successful")
    return success_response(result["data"].model_dump(), message="Subscription active")


@billing_router.post("/cancel")
async def cancel_subscription(
    body: CancelSubscriptionRequest,
    store: DualStore = Depends(get_store)
):
    """
    Cancel at period end. Access continues through the paid period.
    """
    if body.reason:
        logger.info(f"Cancellation requested by {body.user_id}: {body.reason}")
    result = await _billing_service(store).cancel_subscription(body.user_id)
    if result.get("invalid_state"):
        return error_response("INVALID_STATE", status=409, message=result["error"])
    if result.get("is_error"):
        return error_response("CANCEL_FAILED", status=500, message="Could not cancel subscription")
    return success_response(result["data"].model_dump(), message="Subscription will end at period end")


@billing_router.get("/subscription/{user_id}")
async def get_subscription(
    user_id: str,
    store: DualStore = Depends(get_store)
):
    """
    Subscription status as seen by the entitlement engine.
    """
    resolution = await SubscriptionStatusResolver(store).resolve(user_id)
    return success_response({
        "user_id": user_id,
        "active": resolution.active,
        "source": resolution.source,
        "subscription": resolution.record.model_dump() if resolution.record else None,
    })
