"""
Shared request dependencies: pool, caller identity, tenant scoping, plan gates
"""
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from services.subscription import UsageService, has_feature_access, normalize_plan
from services.workspaces import WorkspaceService

def get_pool(request: Request):
    pool = getattr(request.app.state, "pg_pool", None)
    if pool is None:
        raise HTTPException(status_code=503, detail="Database unavailable")
    return pool

def get_current_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    """The auth gateway injects the authenticated user id"""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id

def get_workspaces(pool=Depends(get_pool)) -> WorkspaceService:
    return WorkspaceService(pool)

def get_usage(pool=Depends(get_pool)) -> UsageService:
    return UsageService(pool)

async def get_profile(
    user_id: str = Depends(get_current_user_id),
    usage: UsageService = Depends(get_usage),
) -> dict:
    profile = await usage.get_profile(user_id)
    if not profile:
        raise HTTPException(status_code=401, detail="Unknown user")
    return profile

async def require_workspace(
    workspace_id: str,
    user_id: str = Depends(get_current_user_id),
    workspaces: WorkspaceService = Depends(get_workspaces),
) -> dict:
    workspace = await workspaces.get_for_user(workspace_id, user_id)
    if not workspace:
        raise HTTPException(status_code=404, detail="Workspace not found or access denied")
    return workspace

def require_feature(feature: str):
    """Dependency factory: 402 unless the caller's plan (or admin flag) unlocks the feature"""
    async def _check(profile: dict = Depends(get_profile)) -> dict:
        if profile.get("is_admin"):
            return profile
        plan = normalize_plan(profile.get("subscription_plan"))
        if not has_feature_access(plan, feature):
            raise HTTPException(status_code=402, detail=f"Your {plan} plan does not include {feature}")
        return profile
    return _check
