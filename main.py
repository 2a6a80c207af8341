"""
Split API
=========

AI crawler tracking, AI-attributed lead enrichment and MAX Visibility scoring
for multi-tenant workspaces.
"""

import logging
import os
from datetime import datetime
from contextlib import asynccontextmanager
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.crawler_events import router as crawler_events_router
from api.dashboard import router as dashboard_router
from api.leads import router as leads_router
from api.max_visibility import router as max_visibility_router
from api.middleware.ingest_headers import PublicIngestHeadersMiddleware
from api.stripe_webhook import router as stripe_webhook_router
from api.subscription import router as subscription_router
from api.tasks import router as tasks_router
from api.tracking import router as tracking_router
from api.workspaces import router as workspaces_router
from config.app_config import get_config
from infra.cache import cache
from infra.middleware import SecurityHeadersMiddleware, TimingMiddleware, RateLimitMiddleware

# Configure logging with PII masking
from infra.security_filters import PiiMaskFilter

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

# Add PII masking filter to root logger
root_logger = logging.getLogger()
root_logger.addFilter(PiiMaskFilter())

logger = logging.getLogger(__name__)

config = get_config()

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database pool and Redis cache."""
    from services.db_pool import get_pool, close_pool
    try:
        app.state.pg_pool = await get_pool()
        logger.info("✅ DB pool initialized")
    except Exception as e:
        logger.error(f"DB pool initialization failed: {e}")
        app.state.pg_pool = None

    try:
        app.state.redis = await cache.initialize()
        if app.state.redis:
            logger.info("✅ Redis cache connected for hot data")
    except Exception as e:
        logger.error(f"Redis initialization failed: {e}")
        app.state.redis = None

    yield

    # Cleanup
    await cache.close()
    if app.state.pg_pool:
        await close_pool()

app = FastAPI(
    title="Split API",
    description="AI crawler analytics, lead attribution and MAX Visibility",
    version=config.version,
    lifespan=lifespan
)

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(TimingMiddleware)
app.add_middleware(
    RateLimitMiddleware,
    requests_per_minute=config.get_rate_limit("requests_per_minute"),
)

# Dashboard CORS (after security middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get_dashboard_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)

# Outermost so customer-site ingest traffic never meets the dashboard allow-list
app.add_middleware(PublicIngestHeadersMiddleware)

app.include_router(crawler_events_router)
app.include_router(tracking_router)
app.include_router(workspaces_router)
app.include_router(dashboard_router)
app.include_router(leads_router)
app.include_router(subscription_router)
app.include_router(stripe_webhook_router)
app.include_router(max_visibility_router)
app.include_router(tasks_router)

@app.get("/health")
async def health_check():
    """Health check with pool, cache and flag status."""
    from services.db_pool import get_pool_stats
    from services.feature_flags import feature_flags

    try:
        pool_stats = await get_pool_stats()
    except Exception as e:
        pool_stats = {"error": str(e)}

    return {
        "status": "healthy",
        "service": config.brand_name,
        "version": config.version,
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "feature_flags": feature_flags.all_flags(),
        "database": pool_stats if getattr(app.state, "pg_pool", None) else "not configured",
        "cache": "redis_connected" if cache.enabled else "not configured",
        "environment": {
            "app_env": config.environment,
            "base_url": bool(os.getenv("BASE_URL")),
        },
    }

@app.get("/")
async def root():
    return {
        "service": config.brand_name,
        "version": config.version,
        "status": "operational",
        "endpoints": {
            "crawler_events": "/api/crawler-events",
            "tracking": "/api/track/*",
            "max_visibility": "/api/max-visibility/*",
            "health": "/health"
        }
    }

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8080")))
