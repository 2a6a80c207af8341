"""
Dashboard API (owner-scoped reads)
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from api.deps import get_current_user_id, get_pool, get_profile, get_workspaces
from services.dashboard import ATTRIBUTION_TIMEFRAME, DEFAULT_TIMEFRAME, DashboardService
from services.workspaces import WorkspaceService

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])
logger = logging.getLogger(__name__)

def get_dashboard(pool=Depends(get_pool)) -> DashboardService:
    return DashboardService(pool)

async def owned_workspace(
    workspace_id: str = Query(...),
    user_id: str = Depends(get_current_user_id),
    workspaces: WorkspaceService = Depends(get_workspaces),
) -> dict:
    workspace = await workspaces.get_for_user(workspace_id, user_id)
    if not workspace:
        raise HTTPException(status_code=404, detail="Workspace not found or access denied")
    return workspace

@router.get("/crawler-stats")
async def crawler_stats(
    timeframe: str = Query(DEFAULT_TIMEFRAME),
    workspace: dict = Depends(owned_workspace),
    profile: dict = Depends(get_profile),
    dashboard: DashboardService = Depends(get_dashboard),
):
    try:
        return await dashboard.crawler_stats(workspace["id"], profile, timeframe.lower())
    except Exception as e:
        logger.error(f"Crawler stats failed for workspace {workspace['id']}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch crawler data")

@router.get("/crawler-visits")
async def crawler_visits(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    crawler: Optional[str] = None,
    workspace: dict = Depends(owned_workspace),
    profile: dict = Depends(get_profile),
    dashboard: DashboardService = Depends(get_dashboard),
):
    return await dashboard.crawler_visits(workspace["id"], profile, limit, offset, crawler)

@router.get("/attribution-stats")
async def attribution_stats(
    days: int = Query(7, ge=1, le=365),
    workspace: dict = Depends(owned_workspace),
    dashboard: DashboardService = Depends(get_dashboard),
):
    return await dashboard.attribution_stats(workspace["id"], days)

@router.get("/attribution-bots")
async def attribution_bots(
    timeframe: str = Query(ATTRIBUTION_TIMEFRAME),
    workspace: dict = Depends(owned_workspace),
    profile: dict = Depends(get_profile),
    dashboard: DashboardService = Depends(get_dashboard),
):
    return await dashboard.attribution_bots(workspace["id"], profile, timeframe)

@router.get("/attribution-companies")
async def attribution_companies(
    timeframe: str = Query(ATTRIBUTION_TIMEFRAME),
    workspace: dict = Depends(owned_workspace),
    profile: dict = Depends(get_profile),
    dashboard: DashboardService = Depends(get_dashboard),
):
    return await dashboard.attribution_companies(workspace["id"], profile, timeframe)

@router.get("/attribution-pages")
async def attribution_pages(
    timeframe: str = Query(ATTRIBUTION_TIMEFRAME),
    workspace: dict = Depends(owned_workspace),
    profile: dict = Depends(get_profile),
    dashboard: DashboardService = Depends(get_dashboard),
):
    return await dashboard.attribution_pages(workspace["id"], profile, timeframe)

@router.get("/crawler-detail")
async def crawler_detail(
    bot_name: str = Query(..., min_length=1),
    timeframe: str = Query(ATTRIBUTION_TIMEFRAME),
    workspace: dict = Depends(owned_workspace),
    profile: dict = Depends(get_profile),
    dashboard: DashboardService = Depends(get_dashboard),
):
    try:
        return await dashboard.crawler_detail(workspace["id"], profile, bot_name, timeframe)
    except Exception as e:
        logger.error(f"Crawler detail failed for {bot_name} in workspace {workspace['id']}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch crawler data")

@router.get("/page-detail")
async def page_detail(
    page_path: str = Query(..., min_length=1),
    timeframe: str = Query(ATTRIBUTION_TIMEFRAME),
    workspace: dict = Depends(owned_workspace),
    profile: dict = Depends(get_profile),
    dashboard: DashboardService = Depends(get_dashboard),
):
    try:
        return await dashboard.page_detail(workspace["id"], profile, page_path, timeframe)
    except Exception as e:
        logger.error(f"Page detail failed for {page_path} in workspace {workspace['id']}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch page data")
