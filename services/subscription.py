"""
Subscription plans, feature gates and usage limits
"""
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

PLANS = {
    "free": {"order": 0, "name": "Free"},
    "plus": {"order": 1, "name": "Plus"},
    "pro": {"order": 2, "name": "Pro"},
    "enterprise": {"order": 3, "name": "Enterprise"},
}

UNLIMITED = -1

LIMITS = {
    "free": {
        "domains": 1,
        "data_retention_days": 30,
        "crawler_logs": UNLIMITED,
        "snapshots_per_month": 0,
        "attribution_credits": {"included": 0, "price": 0.25},
    },
    "plus": {
        "domains": 1,
        "data_retention_days": 30,
        "crawler_logs": UNLIMITED,
        "snapshots_per_month": 10,
        "attribution_credits": {"included": 0, "price": 0.25},
    },
    "pro": {
        "domains": 1,
        "data_retention_days": 90,
        "crawler_logs": UNLIMITED,
        "snapshots_per_month": 50,
        "attribution_credits": {"included": 500, "price": 0.15},
    },
    "enterprise": {
        "domains": 1,
        "data_retention_days": UNLIMITED,
        "crawler_logs": UNLIMITED,
        "snapshots_per_month": UNLIMITED,
        "attribution_credits": {"included": "custom", "price": 0.10},
    },
}

FEATURES = {
    "ai-attribution": ["plus", "pro", "enterprise"],
    "basic-insights": ["plus"],
    "advanced-insights": ["pro", "enterprise"],
    "visitor-leads": ["pro", "enterprise"],
    "max-visibility": ["pro", "enterprise"],
    "snapshots": ["plus", "pro", "enterprise"],
    "slack-alerts": ["pro", "enterprise"],
    "api-access": ["pro", "enterprise"],
    "crm-integrations": ["enterprise"],
    "priority-support": ["enterprise"],
    "custom-models": ["enterprise"],
    "sla": ["enterprise"],
    "multi-domain": ["pro", "enterprise"],
}

CREDIT_PACKS = {
    "small": {"credits": 100, "price": 25},
    "medium": {"credits": 500, "price": 100},
    "large": {"credits": 2000, "price": 300},
}

ACTIVE_STATUSES = ("active", "trialing")

def normalize_plan(plan: Optional[str]) -> str:
    """Legacy / unknown plan names fall back to free"""
    plan = (plan or "free").lower()
    return plan if plan in PLANS else "free"

def get_subscription_limits(plan: str) -> Dict[str, Any]:
    return LIMITS[normalize_plan(plan)]

def has_feature_access(plan: str, feature: str) -> bool:
    return normalize_plan(plan) in FEATURES.get(feature, [])

def compare_plans(plan1: str, plan2: str) -> int:
    return PLANS[normalize_plan(plan1)]["order"] - PLANS[normalize_plan(plan2)]["order"]

def is_at_least_plan(current_plan: str, required_plan: str) -> bool:
    return compare_plans(current_plan, required_plan) >= 0

def get_upgrade_path(current_plan: str) -> List[str]:
    current_order = PLANS[normalize_plan(current_plan)]["order"]
    return sorted(
        (p for p, meta in PLANS.items() if meta["order"] > current_order),
        key=lambda p: PLANS[p]["order"]
    )

def format_limit(limit: Union[int, str]) -> str:
    if limit == UNLIMITED:
        return "Unlimited"
    if limit == 0:
        return "Not available"
    return str(limit)

def calculate_attribution_overage(used: int, included: Union[int, str], plan: str) -> float:
    """Dollar cost of credits used beyond the plan allowance (custom plans are invoiced separately)"""
    if isinstance(included, str):
        return 0
    if used <= included:
        return 0
    price = LIMITS[normalize_plan(plan)]["attribution_credits"]["price"]
    return round((used - included) * price, 2)

def get_retention_cutoff(plan: str, now: datetime = None) -> Optional[datetime]:
    """Oldest timestamp a plan may see; None means unlimited retention"""
    days = get_subscription_limits(plan)["data_retention_days"]
    if days == UNLIMITED:
        return None
    return (now or datetime.utcnow()) - timedelta(days=days)

def domain_allowance(plan: str, domain_addons: int = 0) -> int:
    allowance = get_subscription_limits(plan)["domains"]
    if has_feature_access(plan, "multi-domain"):
        allowance += max(0, domain_addons or 0)
    return allowance

def has_active_subscription(profile: Dict[str, Any]) -> bool:
    return bool(profile.get("stripe_customer_id")) and profile.get("subscription_status") in ACTIVE_STATUSES

class UsageService:
    """Profile-backed usage checks"""

    def __init__(self, pool):
        self.pool = pool

    async def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        async with self.pool.acquire() as con:
            row = await con.fetchrow("""
                SELECT id, email, is_admin, subscription_plan, subscription_status,
                       stripe_customer_id, subscription_period_end, domain_addons
                FROM profiles WHERE id = $1
            """, user_id)
        return dict(row) if row else None

    async def current_usage(self, user_id: str, profile: Dict[str, Any] = None) -> Optional[Dict[str, Any]]:
        profile = profile or await self.get_profile(user_id)
        if not profile:
            return None

        plan = normalize_plan(profile.get("subscription_plan"))
        allowance = domain_allowance(plan, profile.get("domain_addons") or 0)
        since = datetime.utcnow() - timedelta(days=30)

        async with self.pool.acquire() as con:
            domains_used = await con.fetchval(
                "SELECT COUNT(*) FROM workspaces WHERE user_id = $1", user_id
            ) or 0
            crawler_visits = await con.fetchval(
                "SELECT COUNT(*) FROM crawler_visits WHERE user_id = $1 AND timestamp >= $2", user_id, since
            ) or 0
            credits_used = await con.fetchval("""
                SELECT COALESCE(SUM(amount), 0) FROM usage_events
                WHERE user_id = $1 AND event_type = 'attribution_credit' AND created_at >= $2
            """, user_id, since) or 0
        credits_used = int(credits_used)

        included = get_subscription_limits(plan)["attribution_credits"]["included"]
        return {
            "plan": plan,
            "crawler_visits_used": crawler_visits,
            "domains_used": domains_used,
            "domains_allowed": allowance,
            "domains_remaining": max(0, allowance - domains_used),
            "is_over_limit": domains_used > allowance,
            "attribution_credits_used": credits_used,
            "attribution_overage": calculate_attribution_overage(credits_used, included, plan),
        }

    async def can_add_domain(self, user_id: str) -> Dict[str, Any]:
        profile = await self.get_profile(user_id)
        if not profile:
            return {"allowed": False, "reason": "Could not fetch user profile"}
        if profile.get("is_admin"):
            return {"allowed": True}

        usage = await self.current_usage(user_id, profile)
        if usage["domains_used"] >= usage["domains_allowed"]:
            return {
                "allowed": False,
                "reason": f"Domain limit reached ({usage['domains_allowed']})",
                "usage": usage,
            }
        return {"allowed": True, "usage": usage}

    async def record_usage(self, user_id: str, event_type: str, amount: int = 1,
                           billable: bool = False, metadata: Dict[str, Any] = None):
        async with self.pool.acquire() as con:
            await con.execute("""
                INSERT INTO usage_events (user_id, event_type, amount, billable, metadata)
                VALUES ($1, $2, $3, $4, $5::jsonb)
            """, user_id, event_type, amount, billable, json.dumps(metadata or {}, default=str))
