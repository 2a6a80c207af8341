"""
MAX Visibility API: start assessments, poll progress, read results, trends and recommendations
"""
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from api.deps import get_current_user_id, get_pool, get_workspaces, require_feature
from services.feature_flags import competitive_analysis_enabled, max_visibility_enabled
from services.max_visibility.competitive_analysis import CompetitiveAnalyzer
from services.max_visibility.pipeline import company_from_run, run_assessment_job
from services.max_visibility.recommendation_engine import RecommendationEngine
from services.max_visibility.store import MaxVisibilityStore
from services.max_visibility.trend_analysis import InsufficientDataError, analyze_trends
from services.tasks import assessment_payload, dispatch
from services.workspaces import WorkspaceService

router = APIRouter(prefix="/api/max-visibility", tags=["max-visibility"])
logger = logging.getLogger(__name__)

class AssessRequest(BaseModel):
    workspace_id: Optional[str] = None
    question_count: Optional[int] = Field(None, ge=1, le=100)

def get_store(pool=Depends(get_pool)) -> MaxVisibilityStore:
    return MaxVisibilityStore(pool)

def _require_enabled():
    if not max_visibility_enabled():
        raise HTTPException(status_code=503, detail="MAX Visibility is temporarily disabled")

async def _owned_run(store: MaxVisibilityStore, assessment_id: str, user_id: str) -> dict:
    run = await store.get_run(assessment_id, user_id)
    if not run:
        raise HTTPException(status_code=404, detail="Assessment not found")
    return run

def _summary(run: dict) -> dict:
    return {
        "id": str(run["id"]),
        "company_id": str(run["company_id"]),
        "company_name": run["company_name"],
        "status": run["status"],
        "total_score": run["total_score"],
        "mention_rate": run["mention_rate"],
        "progress_percentage": run["progress_percentage"],
        "progress_stage": run["progress_stage"],
        "started_at": run["started_at"].isoformat() if run.get("started_at") else None,
        "completed_at": run["completed_at"].isoformat() if run.get("completed_at") else None,
    }

@router.post("/assess")
async def start_assessment(
    body: AssessRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    _profile: dict = Depends(require_feature("max-visibility")),
    pool=Depends(get_pool),
    workspaces: WorkspaceService = Depends(get_workspaces),
    store: MaxVisibilityStore = Depends(get_store),
):
    """Create the run row and hand the pipeline to the task queue"""
    _require_enabled()
    if body.workspace_id:
        workspace = await workspaces.get_for_user(body.workspace_id, user_id)
        if not workspace:
            raise HTTPException(status_code=404, detail="Workspace not found or access denied")
    else:
        owned = await workspaces.list_for_user(user_id)
        if not owned:
            raise HTTPException(status_code=400, detail="Create a workspace before running an assessment")
        workspace = owned[0]

    company = await store.find_or_create_company(user_id, workspace["workspace_name"], workspace["domain"])
    assessment_id = await store.create_run(company["id"], user_id)

    payload = assessment_payload(assessment_id)
    if body.question_count:
        payload["question_count"] = body.question_count
    await dispatch(
        background_tasks, "/tasks/run_assessment", payload,
        run_assessment_job, pool, assessment_id, body.question_count,
    )
    logger.info(f"🚀 Assessment {assessment_id} queued for {workspace['domain']}")
    return {"success": True, "data": {"assessment_id": assessment_id}}

@router.get("/assess")
async def assessment_status(
    id: str = Query(...),
    user_id: str = Depends(get_current_user_id),
    store: MaxVisibilityStore = Depends(get_store),
):
    run = await _owned_run(store, id, user_id)
    return {
        "success": True,
        "data": {
            "assessment_id": str(run["id"]),
            "status": run["status"],
            "progress_percentage": run["progress_percentage"],
            "progress_stage": run["progress_stage"],
            "progress_message": run["progress_message"],
            "error_message": run["error_message"],
            "total_score": run["total_score"] if run["status"] == "completed" else None,
        },
    }

@router.get("/assessments")
async def list_assessments(
    company_id: Optional[str] = None,
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    store: MaxVisibilityStore = Depends(get_store),
):
    page = await store.list_runs(user_id, company_id, limit, offset)
    return {
        "success": True,
        "data": [_summary(r) for r in page["assessments"]],
        "pagination": {
            "total": page["total"],
            "limit": limit,
            "offset": offset,
            "has_more": offset + limit < page["total"],
        },
    }

@router.get("/results/{assessment_id}")
async def assessment_results(
    assessment_id: str,
    user_id: str = Depends(get_current_user_id),
    store: MaxVisibilityStore = Depends(get_store),
):
    run = await _owned_run(store, assessment_id, user_id)
    if run["status"] != "completed":
        raise HTTPException(status_code=409, detail=f"Assessment is {run['status']}")

    return {
        "success": True,
        "data": {
            "assessment": _summary(run),
            "company": company_from_run(run),
            "visibility_scores": run["scores"],
            "question_analyses": await store.get_question_analyses(assessment_id),
            "competitors": await store.get_competitors(assessment_id),
        },
    }

@router.get("/trends")
async def visibility_trends(
    company_id: str = Query(...),
    days: int = Query(90, ge=1, le=365),
    include_predictions: bool = True,
    alert_check: bool = True,
    user_id: str = Depends(get_current_user_id),
    store: MaxVisibilityStore = Depends(get_store),
):
    if not await store.get_company(company_id, user_id):
        raise HTTPException(status_code=404, detail="Company not found or access denied")

    runs = await store.score_history(company_id, days)
    try:
        summary = analyze_trends(company_id, runs, include_predictions, alert_check)
    except InsufficientDataError:
        raise HTTPException(
            status_code=400, detail="At least 2 historical assessments are required for trend analysis"
        )
    return {"success": True, "data": summary}

@router.get("/recommendations")
async def recommendations(
    assessment_id: str = Query(...),
    effort_preference: Optional[str] = Query(None, pattern="^(low|medium|high|mixed)$"),
    user_id: str = Depends(get_current_user_id),
    store: MaxVisibilityStore = Depends(get_store),
):
    run = await _owned_run(store, assessment_id, user_id)
    if run["status"] != "completed" or not run.get("scores"):
        raise HTTPException(status_code=409, detail=f"Assessment is {run['status']}")

    company = company_from_run(run)
    analyses = await store.get_question_analyses(assessment_id)

    trend = None
    try:
        trend = analyze_trends(str(company["id"]), await store.score_history(company["id"]),
                               include_predictions=False)
    except InsufficientDataError:
        logger.info(f"No trend data yet for company {company['id']}")

    competitive = None
    if competitive_analysis_enabled():
        competitive = CompetitiveAnalyzer(company["name"], company["domain"], company.get("industry")).analyze(analyses)

    report = RecommendationEngine().generate(
        str(company["id"]), run["scores"], analyses, trend=trend, competitive=competitive,
        preferences={"effort_preference": effort_preference},
    )
    return {"success": True, "data": report}
