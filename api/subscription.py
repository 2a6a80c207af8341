"""
Subscription info for the dashboard billing page
"""
from fastapi import APIRouter, Depends

from api.deps import get_current_user_id, get_profile, get_usage
from services.subscription import (
    CREDIT_PACKS, FEATURES, PLANS, UsageService, format_limit, get_subscription_limits,
    get_upgrade_path, has_feature_access, normalize_plan
)

router = APIRouter(prefix="/api/subscription", tags=["subscription"])

@router.get("/info")
async def subscription_info(
    user_id: str = Depends(get_current_user_id),
    profile: dict = Depends(get_profile),
    usage: UsageService = Depends(get_usage),
):
    plan = normalize_plan(profile.get("subscription_plan"))
    limits = get_subscription_limits(plan)
    features = [f for f in FEATURES if profile.get("is_admin") or has_feature_access(plan, f)]

    return {
        "plan": plan,
        "plan_name": PLANS[plan]["name"],
        "status": profile.get("subscription_status") or "inactive",
        "period_end": profile.get("subscription_period_end"),
        "is_admin": bool(profile.get("is_admin")),
        "limits": limits,
        "limits_display": {
            "domains": format_limit(limits["domains"]),
            "data_retention_days": format_limit(limits["data_retention_days"]),
            "snapshots_per_month": format_limit(limits["snapshots_per_month"]),
        },
        "features": features,
        "usage": await usage.current_usage(user_id, profile),
        "upgrade_path": get_upgrade_path(plan),
        "credit_packs": CREDIT_PACKS,
    }
