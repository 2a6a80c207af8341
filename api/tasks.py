"""
Cloud Tasks endpoints for async processing
Heavy work handlers that run outside the critical path
"""
from fastapi import APIRouter, Request, HTTPException, Header, Depends
import logging

from api.deps import get_pool
from services.leads import run_enrichment_job
from services.max_visibility.pipeline import run_assessment_job
from services.tasks import verify_task_signature
from services.workspaces import WorkspaceService

router = APIRouter(prefix="/tasks", tags=["tasks"])
logger = logging.getLogger(__name__)

def verify_internal_signature(x_tasks_signature: str, payload: dict):
    """Verify task is from our internal task queue"""
    if not verify_task_signature(x_tasks_signature, payload):
        logger.warning("Invalid task signature")
        raise HTTPException(status_code=403, detail="Invalid signature")

@router.post("/run_assessment")
async def run_assessment_task(
    request: Request,
    x_tasks_signature: str = Header(..., alias="X-Tasks-Signature"),
    pool=Depends(get_pool),
):
    """Run a queued MAX Visibility assessment"""
    payload = await request.json()
    verify_internal_signature(x_tasks_signature, payload)

    assessment_id = payload["assessment_id"]
    logger.info(f"Running assessment {assessment_id}")
    await run_assessment_job(pool, assessment_id, payload.get("question_count"))
    return {"status": "processed", "assessment_id": assessment_id}

@router.post("/enrich_visitor")
async def enrich_visitor_task(
    request: Request,
    x_tasks_signature: str = Header(..., alias="X-Tasks-Signature"),
    pool=Depends(get_pool),
):
    """Enrich one visitor IP into a lead"""
    payload = await request.json()
    verify_internal_signature(x_tasks_signature, payload)

    workspace_id = payload["workspace_id"]
    workspace = await WorkspaceService(pool).get_public(workspace_id)
    if not workspace:
        logger.warning(f"Enrichment task for unknown workspace {workspace_id}")
        return {"status": "skipped", "workspace_id": workspace_id}

    await run_enrichment_job(pool, workspace, payload["ip"], payload.get("page"), payload.get("referrer"))
    return {"status": "processed", "workspace_id": workspace_id}

@router.get("/health")
async def tasks_health():
    """Tasks service health check"""
    return {
        "status": "healthy",
        "service": "Split Async Tasks",
        "endpoints": [
            "/tasks/run_assessment",
            "/tasks/enrich_visitor",
        ]
    }
