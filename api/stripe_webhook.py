# api/stripe_webhook.py - subscription sync
"""
Stripe Webhook Handler
Keeps profiles and subscription_usage in step with Stripe subscriptions
"""

from fastapi import APIRouter, Depends, Request, HTTPException, Header
from fastapi.responses import JSONResponse
import stripe
import json
import logging
import os
from typing import Optional

from api.deps import get_pool
from services.billing import BillingSync

router = APIRouter(tags=["billing"])
logger = logging.getLogger(__name__)

def get_billing(pool=Depends(get_pool)) -> BillingSync:
    stripe.api_key = os.getenv("STRIPE_SECRET_KEY")
    return BillingSync(pool)

HANDLERS = {
    "checkout.session.completed": "handle_checkout_completed",
    "customer.subscription.updated": "handle_subscription_updated",
    "customer.subscription.deleted": "handle_subscription_deleted",
    "invoice.payment_failed": "handle_payment_failed",
}

@router.post("/stripe/webhook")
async def handle_stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
    billing: BillingSync = Depends(get_billing),
):
    """Verify, deduplicate and apply a Stripe event"""
    body = await request.body()
    webhook_secret = os.getenv("STRIPE_WEBHOOK_SECRET")
    if not webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET not configured")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    try:
        stripe.Webhook.construct_event(body, stripe_signature, webhook_secret)
    except ValueError:
        logger.error("Invalid payload in Stripe webhook")
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.error.SignatureVerificationError:
        logger.error("Invalid signature in Stripe webhook")
        raise HTTPException(status_code=400, detail="Invalid signature")

    # signature checked above; handlers work on the plain JSON body
    event = json.loads(body)
    event_id = event.get("id")
    event_type = event.get("type")

    handler_name = HANDLERS.get(event_type)
    if not handler_name:
        logger.info(f"Unhandled event type: {event_type}")
        return JSONResponse({"received": True, "handled": False})

    if not await billing.claim_event(event_id, event_type):
        logger.info(f"Webhook event {event_id} already processed, skipping")
        return JSONResponse({"received": True, "message": "Event already processed"})

    try:
        await getattr(billing, handler_name)(event["data"]["object"])
    except Exception as e:
        logger.error(f"Webhook processing failed for {event_id} ({event_type}): {e}")
        # let Stripe retry
        await billing.release_event(event_id)
        raise HTTPException(status_code=500, detail="Failed to process webhook")

    return JSONResponse({"received": True, "event_id": event_id})
