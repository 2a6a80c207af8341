"""
Postgres connection pool for the Split API
One asyncpg pool per process, sized so Cloud Run scale-out stays under the
database connection ceiling
"""
import os, asyncpg, asyncio
import logging

logger = logging.getLogger(__name__)

POOL_MIN = int(os.getenv("POOL_MIN", "2"))
POOL_MAX = int(os.getenv("POOL_MAX", "10"))
POOL_MAX_LIFETIME = int(os.getenv("POOL_MAX_LIFETIME_SEC", "120"))

_pool = None
_pool_lock = asyncio.Lock()

async def get_pool():
    """Get connection pool (singleton per process)"""
    global _pool
    if _pool is None:
        async with _pool_lock:
            if _pool is None:
                dsn = os.getenv("DATABASE_URL")
                if not dsn:
                    raise RuntimeError("DATABASE_URL is not set")
                logger.info(f"Creating DB pool: min={POOL_MIN}, max={POOL_MAX}, lifetime={POOL_MAX_LIFETIME}s")
                _pool = await asyncpg.create_pool(
                    dsn=dsn,
                    min_size=POOL_MIN,
                    max_size=POOL_MAX,
                    max_inactive_connection_lifetime=POOL_MAX_LIFETIME,
                    command_timeout=30
                )
                logger.info("✅ DB pool created")
    return _pool

async def get_pool_stats():
    """Pool statistics for the health endpoint"""
    if _pool is None:
        return {"status": "not_initialized"}

    return {
        "status": "ok",
        "size": _pool.get_size(),
        "idle": _pool.get_idle_size(),
        "max_size": _pool.get_max_size(),
        "utilization": (_pool.get_size() - _pool.get_idle_size()) / _pool.get_max_size()
    }

async def close_pool():
    """Close pool gracefully"""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("DB pool closed")

