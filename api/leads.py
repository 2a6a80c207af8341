"""
Leads API: enriched visitors per workspace
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from api.deps import get_current_user_id, get_pool, get_workspaces, require_feature
from services.enrichment.ipinfo_client import is_public_ip
from services.leads import EnrichmentError, LeadEnrichmentService
from services.workspaces import WorkspaceService

router = APIRouter(prefix="/api/leads", tags=["leads"])
logger = logging.getLogger(__name__)

class EnrichNowRequest(BaseModel):
    workspace_id: str
    ip: str
    page: Optional[str] = None
    referrer: Optional[str] = None
    icp_titles: Optional[List[str]] = None

def get_lead_service(pool=Depends(get_pool)) -> LeadEnrichmentService:
    return LeadEnrichmentService(pool)

async def _owned_workspace(workspace_id: str, user_id: str, workspaces: WorkspaceService) -> dict:
    workspace = await workspaces.get_for_user(workspace_id, user_id)
    if not workspace:
        raise HTTPException(status_code=404, detail="Workspace not found or access denied")
    return workspace

@router.get("")
async def list_leads(
    workspace_id: str = Query(...),
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    _profile: dict = Depends(require_feature("visitor-leads")),
    workspaces: WorkspaceService = Depends(get_workspaces),
    leads: LeadEnrichmentService = Depends(get_lead_service),
):
    await _owned_workspace(workspace_id, user_id, workspaces)
    rows = await leads.list_leads(workspace_id, limit)
    return {"success": True, "leads": rows, "total": len(rows), "workspace_id": workspace_id}

@router.post("/enrich-now")
async def enrich_now(
    body: EnrichNowRequest,
    user_id: str = Depends(get_current_user_id),
    _profile: dict = Depends(require_feature("visitor-leads")),
    workspaces: WorkspaceService = Depends(get_workspaces),
    leads: LeadEnrichmentService = Depends(get_lead_service),
):
    """Run enrichment synchronously for one IP, bypassing the dedupe window"""
    workspace = await _owned_workspace(body.workspace_id, user_id, workspaces)
    if not is_public_ip(body.ip):
        raise HTTPException(status_code=400, detail="A public IP address is required")

    try:
        return await leads.enrich_visitor(
            workspace, body.ip, page=body.page, referrer=body.referrer,
            icp_titles=body.icp_titles, force=True
        )
    except EnrichmentError as e:
        logger.error(f"Manual enrichment unavailable: {e}")
        raise HTTPException(status_code=503, detail="Lead enrichment is not configured")
