"""
Stripe -> profiles / subscription_usage synchronisation
"""
import calendar
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import stripe

from services.subscription import LIMITS

logger = logging.getLogger(__name__)

PAID_PLANS = ("plus", "pro", "enterprise")

def plan_from_price_id(price_id: Optional[str]) -> Optional[str]:
    price_id = (price_id or "").lower()
    for plan in ("enterprise", "pro", "plus"):
        if plan in price_id:
            return plan
    return None

def resolve_plan(subscription: Dict[str, Any], price: Dict[str, Any] = None,
                 product: Dict[str, Any] = None) -> str:
    """Subscription metadata, then price metadata, then product metadata, then the price id"""
    for source in (subscription, price, product):
        plan_id = ((source or {}).get("metadata") or {}).get("plan_id")
        if plan_id in PAID_PLANS:
            return plan_id
    return plan_from_price_id(first_price_id(subscription)) or "free"

def first_price_id(subscription: Dict[str, Any]) -> Optional[str]:
    items = ((subscription or {}).get("items") or {}).get("data") or []
    if not items:
        return None
    return (items[0].get("price") or {}).get("id")

def add_month(moment: datetime) -> datetime:
    year = moment.year + moment.month // 12
    month = moment.month % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)

def _plain(obj) -> Dict[str, Any]:
    """Stripe API objects as plain dicts"""
    if obj is None or isinstance(obj, dict):
        return obj
    return obj.to_dict()

def _period_end(subscription: Dict[str, Any]) -> Optional[datetime]:
    ts = subscription.get("current_period_end")
    return datetime.fromtimestamp(ts, tz=timezone.utc) if ts else None

class BillingSync:
    def __init__(self, pool, stripe_api=stripe):
        self.pool = pool
        self.stripe = stripe_api

    # Idempotency
    async def claim_event(self, event_id: str, event_type: str) -> bool:
        """True when this call recorded the event first"""
        async with self.pool.acquire() as con:
            claimed = await con.fetchval("""
                INSERT INTO processed_webhook_events (event_id, event_type, metadata)
                VALUES ($1, $2, $3::jsonb)
                ON CONFLICT (event_id) DO NOTHING
                RETURNING event_id
            """, event_id, event_type, json.dumps({"processed_at": datetime.utcnow().isoformat()}))
        return claimed is not None

    async def release_event(self, event_id: str):
        async with self.pool.acquire() as con:
            await con.execute("DELETE FROM processed_webhook_events WHERE event_id = $1", event_id)

    # Event handlers
    async def handle_checkout_completed(self, session: Dict[str, Any]):
        customer_id = session.get("customer")
        subscription_id = session.get("subscription")
        user_id = session.get("client_reference_id")
        email = session.get("customer_email") or (session.get("customer_details") or {}).get("email")

        async with self.pool.acquire() as con:
            await con.execute("""
                UPDATE profiles SET stripe_customer_id = $1, updated_at = NOW()
                WHERE id::text = $2 OR ($2 IS NULL AND email = $3)
            """, customer_id, user_id, email)

        if subscription_id:
            subscription = _plain(self.stripe.Subscription.retrieve(subscription_id))
            await self.sync_subscription(subscription)

    async def handle_subscription_updated(self, subscription: Dict[str, Any]):
        await self.sync_subscription(subscription)

    async def handle_subscription_deleted(self, subscription: Dict[str, Any]):
        async with self.pool.acquire() as con:
            await con.execute("""
                UPDATE profiles
                SET subscription_plan = CASE WHEN is_admin THEN 'enterprise' ELSE 'free' END,
                    subscription_status = CASE WHEN is_admin THEN 'active' ELSE 'canceled' END,
                    subscription_id = NULL,
                    updated_at = NOW()
                WHERE stripe_customer_id = $1
            """, subscription.get("customer"))
        logger.info(f"Subscription {subscription.get('id')} canceled")

    async def handle_payment_failed(self, invoice: Dict[str, Any]):
        async with self.pool.acquire() as con:
            await con.execute("""
                UPDATE profiles SET subscription_status = 'past_due', updated_at = NOW()
                WHERE stripe_customer_id = $1 AND NOT is_admin
            """, invoice.get("customer"))
        logger.warning(f"💳 Payment failed for customer {invoice.get('customer')} (invoice {invoice.get('id')})")

    # Sync
    def _lookup_price_metadata(self, subscription: Dict[str, Any]):
        """Price and product objects are only fetched when the subscription carries no plan_id"""
        if ((subscription.get("metadata") or {}).get("plan_id")) in PAID_PLANS:
            return None, None
        price_id = first_price_id(subscription)
        if not price_id:
            return None, None
        try:
            price = _plain(self.stripe.Price.retrieve(price_id))
            product = None
            if not ((price.get("metadata") or {}).get("plan_id")) and price.get("product"):
                product_id = price["product"] if isinstance(price["product"], str) else price["product"]["id"]
                product = _plain(self.stripe.Product.retrieve(product_id))
            return price, product
        except stripe.error.StripeError as e:
            logger.error(f"Could not read Stripe price metadata for {price_id}: {e}")
            return None, None

    async def sync_subscription(self, subscription: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        customer_id = subscription.get("customer")
        async with self.pool.acquire() as con:
            profile = await con.fetchrow(
                "SELECT id, is_admin FROM profiles WHERE stripe_customer_id = $1", customer_id
            )
        if not profile:
            logger.error(f"No profile for Stripe customer {customer_id}")
            return None

        price, product = self._lookup_price_metadata(subscription)
        plan = resolve_plan(subscription, price, product)
        status = subscription.get("status") or "active"
        if profile["is_admin"]:
            plan, status = "enterprise", "active"

        period_end = _period_end(subscription)
        limits = LIMITS[plan]
        now = datetime.now(timezone.utc)

        async with self.pool.acquire() as con:
            async with con.transaction():
                await con.execute("""
                    UPDATE profiles
                    SET subscription_plan = $1, subscription_status = $2, subscription_id = $3,
                        subscription_period_end = $4, updated_at = NOW()
                    WHERE id = $5
                """, plan, status, subscription.get("id"), period_end, profile["id"])

                usage = await con.fetchrow("""
                    SELECT id, plan_type FROM subscription_usage
                    WHERE user_id = $1 ORDER BY created_at DESC LIMIT 1
                """, profile["id"])

                if usage is None:
                    await con.execute("""
                        INSERT INTO subscription_usage (
                            user_id, plan_type, plan_status, stripe_subscription_id,
                            domains_included, snapshots_included,
                            billing_period_start, billing_period_end
                        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    """, profile["id"], plan, status, subscription.get("id"),
                        limits["domains"], limits["snapshots_per_month"], now, add_month(now))
                elif usage["plan_type"] != plan:
                    await con.execute("""
                        UPDATE subscription_usage
                        SET plan_type = $1, plan_status = $2, stripe_subscription_id = $3,
                            domains_included = $4, snapshots_included = $5,
                            billing_period_start = $6, billing_period_end = $7, updated_at = NOW()
                        WHERE id = $8
                    """, plan, status, subscription.get("id"), limits["domains"],
                        limits["snapshots_per_month"], now, add_month(now), usage["id"])
                else:
                    await con.execute("""
                        UPDATE subscription_usage
                        SET plan_status = $1, stripe_subscription_id = $2, updated_at = NOW()
                        WHERE id = $3
                    """, status, subscription.get("id"), usage["id"])

        logger.info(f"💳 Synced user {profile['id']} to {plan} ({status})")
        return {"user_id": profile["id"], "plan": plan, "status": status}
