"""
Crawler events ingestion API
Batches of crawler hits posted by the split-analytics SDK and the WordPress plugin
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel

from api.deps import get_pool
from config.app_config import get_config
from infra.cache import rate_limit_check
from services.api_keys import ApiKeyService
from services.crawler_ingest import CrawlerEventStore

router = APIRouter(prefix="/api/crawler-events", tags=["crawler-events"])
logger = logging.getLogger(__name__)

class CrawlerEventBatch(BaseModel):
    events: List[Dict[str, Any]]

def get_api_keys(pool=Depends(get_pool)) -> ApiKeyService:
    return ApiKeyService(pool, max_keys=get_config().get_max_api_keys())

def get_event_store(pool=Depends(get_pool)) -> CrawlerEventStore:
    return CrawlerEventStore(pool)

async def authenticate_api_key(
    authorization: Optional[str] = Header(None),
    api_keys: ApiKeyService = Depends(get_api_keys),
) -> Dict[str, Any]:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid authorization header")

    key_data = await api_keys.validate(authorization[len("Bearer "):].strip())
    if not key_data:
        raise HTTPException(status_code=401, detail="Invalid API key")
    if not key_data["permissions"].get("crawler_tracking", True):
        raise HTTPException(status_code=403, detail="API key is not allowed to track crawlers")
    return key_data

@router.post("")
async def ingest_crawler_events(
    batch: CrawlerEventBatch,
    key_data: Dict[str, Any] = Depends(authenticate_api_key),
    store: CrawlerEventStore = Depends(get_event_store),
):
    """Validate, store and aggregate a batch of crawler events."""
    config = get_config()

    if not batch.events:
        raise HTTPException(status_code=400, detail="Invalid request body. Expected { events: [...] }")
    if len(batch.events) > config.get_max_events_per_batch():
        raise HTTPException(
            status_code=400,
            detail=f"Too many events in one batch (max {config.get_max_events_per_batch()})"
        )

    limit = config.get_rate_limit("crawler_events_per_key_per_minute")
    if not await rate_limit_check(f"crawler-events:{key_data['key_id']}", limit):
        raise HTTPException(status_code=429, detail="Too Many Requests")

    workspace = {
        "id": key_data["workspace_id"],
        "user_id": key_data["user_id"],
        "domain": key_data["domain"],
    }

    try:
        result = await store.ingest(batch.events, workspace)
    except Exception as e:
        logger.error(f"Crawler event ingestion failed for workspace {workspace['id']}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")

    logger.info(f"🤖 Stored {result['processed']} crawler events for workspace {workspace['id']}")
    return {
        "success": True,
        "processed": result["processed"],
        "rejected": result["rejected"],
        "message": f"Successfully processed {result['processed']} crawler events",
    }

@router.get("")
async def crawler_events_health():
    return {"status": "ok", "message": "Split Analytics Crawler Events API", "version": "0.1.0"}
