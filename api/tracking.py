"""
Public tracking endpoints: crawler pixel and visitor beacon
"""
import base64
import logging
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import Response

from api.deps import get_pool
from config.app_config import get_config
from infra.cache import rate_limit_check
from services.crawler_ingest import CrawlerEventStore, normalize_domain
from services.crawlers import detect_crawler
from services.enrichment.ipinfo_client import is_public_ip
from services.feature_flags import lead_enrichment_enabled
from services.leads import detect_ai_source, run_enrichment_job
from services.subscription import UsageService, has_feature_access, normalize_plan
from services.tasks import dispatch, enrichment_payload
from services.visitors import VisitorEventStore
from services.workspaces import WorkspaceService

router = APIRouter(tags=["tracking"])
logger = logging.getLogger(__name__)

TRANSPARENT_GIF = base64.b64decode("R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7")
PIXEL_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
    "Pragma": "no-cache",
    "Expires": "0",
    "Access-Control-Allow-Origin": "*",
}

def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.headers.get("x-real-ip") or "127.0.0.1"

def resolve_page(url: Optional[str], referer: Optional[str], workspace_domain: str) -> Tuple[str, str]:
    """(domain, path) from the url parameter, then the Referer header, then the workspace itself"""
    for candidate in (url, referer):
        if not candidate:
            continue
        parsed = urlparse(candidate)
        if parsed.scheme in ("http", "https") and parsed.hostname:
            return normalize_domain(parsed.hostname), parsed.path or "/"
    return normalize_domain(workspace_domain), "/"

def _pixel() -> Response:
    return Response(content=TRANSPARENT_GIF, media_type="image/gif", headers=PIXEL_HEADERS)

@router.get("/api/track/{workspace_id}/pixel.gif")
async def tracking_pixel(workspace_id: str, request: Request, url: Optional[str] = None,
                         ref: Optional[str] = None):
    user_agent = request.headers.get("user-agent", "")
    crawler = detect_crawler(user_agent)
    if not crawler:
        return _pixel()

    try:
        pool = get_pool(request)
        workspace = await WorkspaceService(pool).get_public(workspace_id)
        if not workspace:
            logger.warning(f"Pixel hit for unknown workspace {workspace_id}")
            return _pixel()

        domain, path = resolve_page(url, request.headers.get("referer"), workspace["domain"])
        await CrawlerEventStore(pool).record_visit(
            workspace, crawler, domain, path, user_agent,
            metadata={"source": "pixel", "ref": ref, "ip": client_ip(request)},
        )
        logger.info(f"🤖 Pixel: {crawler['name']} on {domain}{path}")
    except Exception as e:
        logger.error(f"Pixel tracking failed for workspace {workspace_id}: {e}")
    return _pixel()

def _field(body: Dict[str, Any], name: str, short: str):
    return body.get(name) if body.get(name) is not None else body.get(short)

@router.post("/api/tracking/collect")
async def collect_visitor(request: Request, background_tasks: BackgroundTasks, pool=Depends(get_pool)):
    """
    JS beacon. Accepts both the long field names and the snippet's short keys
    (w workspace, v visitor, u url, r referrer, ua user agent, tz, t, vp, sp)
    """
    ip = client_ip(request)
    limit = get_config().get_rate_limit("collect_per_ip_per_minute")
    if not await rate_limit_check(f"collect:{ip}", limit):
        raise HTTPException(status_code=429, detail="Too Many Requests")

    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    workspace_id = _field(body, "workspace_id", "w")
    if not workspace_id:
        raise HTTPException(status_code=400, detail="workspace_id is required")

    workspace = await WorkspaceService(pool).get_public(workspace_id)
    if not workspace:
        raise HTTPException(status_code=404, detail="Workspace not found")

    url = _field(body, "url", "u")
    referrer = _field(body, "referrer", "r")
    user_agent = _field(body, "user_agent", "ua") or request.headers.get("user-agent", "")

    crawler = detect_crawler(user_agent)
    if crawler:
        domain, path = resolve_page(url, None, workspace["domain"])
        await CrawlerEventStore(pool).record_visit(
            workspace, crawler, domain, path, user_agent, metadata={"source": "beacon"}
        )
        return {"success": True, "type": "crawler"}

    ai_source = detect_ai_source(referrer, body.get("utm_source"), body.get("utm_medium"))
    await VisitorEventStore(pool).record(workspace, {
        "visitor_id": _field(body, "visitor_id", "v"),
        "session_id": body.get("session_id"),
        "url": url,
        "referrer": referrer,
        "ai_source": ai_source,
        "ip": ip,
        "user_agent": user_agent,
        "metadata": {k: body.get(k) for k in ("tz", "t", "vp", "sp") if body.get(k) is not None},
    })

    usage = UsageService(pool)
    await usage.record_usage(workspace["user_id"], "visitor_tracked", metadata={
        "workspace_id": workspace["id"], "url": url, "ai_source": ai_source,
    })

    if lead_enrichment_enabled() and is_public_ip(ip):
        profile = await usage.get_profile(workspace["user_id"]) or {}
        plan = normalize_plan(profile.get("subscription_plan"))
        if profile.get("is_admin") or has_feature_access(plan, "visitor-leads"):
            await dispatch(
                background_tasks, "/tasks/enrich_visitor",
                enrichment_payload(workspace["id"], ip, url, referrer),
                run_enrichment_job, pool, workspace, ip, url, referrer,
            )

    return {"success": True, "type": "visitor", "ai_source": ai_source}
