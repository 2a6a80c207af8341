"""
Workspaces and their API keys (dashboard surface, owner-scoped)
"""
import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from api.deps import get_current_user_id, get_pool, get_usage, get_workspaces, require_workspace
from config.app_config import get_config
from services.api_keys import KEY_PREFIXES, ApiKeyLimitError, ApiKeyService
from services.subscription import UsageService
from services.workspaces import WorkspaceService

router = APIRouter(prefix="/api/workspaces", tags=["workspaces"])
logger = logging.getLogger(__name__)

class WorkspaceCreate(BaseModel):
    name: Optional[str] = None
    domain: str

class ApiKeyCreate(BaseModel):
    name: Optional[str] = None
    key_type: str = "live"
    permissions: Optional[Dict[str, bool]] = None

def get_api_keys(pool=Depends(get_pool)) -> ApiKeyService:
    return ApiKeyService(pool, max_keys=get_config().get_max_api_keys())

@router.get("")
async def list_workspaces(
    user_id: str = Depends(get_current_user_id),
    workspaces: WorkspaceService = Depends(get_workspaces),
):
    return {"success": True, "workspaces": await workspaces.list_for_user(user_id)}

@router.post("", status_code=201)
async def create_workspace(
    body: WorkspaceCreate,
    user_id: str = Depends(get_current_user_id),
    workspaces: WorkspaceService = Depends(get_workspaces),
    usage: UsageService = Depends(get_usage),
):
    check = await usage.can_add_domain(user_id)
    if not check["allowed"]:
        raise HTTPException(status_code=402, detail=check["reason"])

    try:
        workspace = await workspaces.create(user_id, body.name, body.domain)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "workspace": workspace}

@router.delete("/{workspace_id}")
async def delete_workspace(
    workspace_id: str,
    user_id: str = Depends(get_current_user_id),
    workspaces: WorkspaceService = Depends(get_workspaces),
):
    if not await workspaces.delete(workspace_id, user_id):
        raise HTTPException(status_code=404, detail="Workspace not found or access denied")
    return {"success": True}

@router.get("/{workspace_id}/api-keys")
async def list_api_keys(
    workspace: dict = Depends(require_workspace),
    api_keys: ApiKeyService = Depends(get_api_keys),
):
    return {"success": True, "keys": await api_keys.list_keys(workspace["id"])}

@router.post("/{workspace_id}/api-keys", status_code=201)
async def create_api_key(
    body: ApiKeyCreate,
    workspace: dict = Depends(require_workspace),
    user_id: str = Depends(get_current_user_id),
    api_keys: ApiKeyService = Depends(get_api_keys),
):
    if body.key_type not in KEY_PREFIXES:
        raise HTTPException(status_code=400, detail="key_type must be 'live' or 'test'")

    try:
        key = await api_keys.create_key(
            workspace=workspace, user_id=user_id, name=body.name,
            key_type=body.key_type, permissions=body.permissions,
        )
    except ApiKeyLimitError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "success": True,
        "key": key,
        "message": "API key created successfully. Copy it now, it won't be shown again.",
    }

@router.delete("/{workspace_id}/api-keys")
async def revoke_api_key(
    id: str = Query(..., description="API key id"),
    workspace: dict = Depends(require_workspace),
    api_keys: ApiKeyService = Depends(get_api_keys),
):
    if not await api_keys.revoke_key(workspace["id"], id):
        raise HTTPException(status_code=404, detail="API key not found")
    logger.info(f"API key {id} revoked for workspace {workspace['id']}")
    return {"success": True}
