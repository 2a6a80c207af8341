# infra/cache.py
"""
Redis caching layer for dashboard stats, enrichment dedupe and counters
"""

import json
import logging
import os
from typing import Any, Callable, Optional
import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

class CacheManager:
    """Redis-based cache manager. Every operation is a no-op while disabled."""

    def __init__(self):
        self.redis: Optional[aioredis.Redis] = None
        self.enabled = False

    async def initialize(self, redis_url: Optional[str] = None):
        """Initialize Redis connection"""
        redis_url = redis_url or os.getenv("REDIS_URL")
        if not redis_url:
            logger.warning("REDIS_URL not set - caching disabled")
            return None

        try:
            self.redis = aioredis.from_url(
                redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_keepalive=True,
                retry_on_timeout=True
            )
            await self.redis.ping()
            self.enabled = True
            logger.info("Redis cache initialized")
        except Exception as e:
            logger.error(f"Failed to initialize Redis cache: {e}")
            self.enabled = False
        return self.redis

    async def close(self):
        if self.redis is not None:
            await self.redis.aclose()
        self.redis = None
        self.enabled = False

    async def get(self, key: str) -> Optional[Any]:
        if not self.enabled:
            return None

        try:
            value = await self.redis.get(key)
            if value:
                return json.loads(value)
        except Exception as e:
            logger.error(f"Cache get error for key {key}: {e}")
        return None

    async def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        if not self.enabled:
            return False

        try:
            await self.redis.setex(key, ttl, json.dumps(value, default=str))
            return True
        except Exception as e:
            logger.error(f"Cache set error for key {key}: {e}")
            return False

    async def set_if_absent(self, key: str, value: Any, ttl: int = 300) -> bool:
        """SET NX. Returns True when the key was written (or caching is off)."""
        if not self.enabled:
            return True

        try:
            written = await self.redis.set(key, json.dumps(value, default=str), ex=ttl, nx=True)
            return bool(written)
        except Exception as e:
            logger.error(f"Cache set_if_absent error for key {key}: {e}")
            return True

    async def delete(self, key: str) -> bool:
        if not self.enabled:
            return False

        try:
            await self.redis.delete(key)
            return True
        except Exception as e:
            logger.error(f"Cache delete error for key {key}: {e}")
            return False

    async def cached_call(self, key: str, loader: Callable, ttl: int = 300) -> Any:
        """Get cached result or await the loader and cache what it returns"""
        cached = await self.get(key)
        if cached is not None:
            return cached

        result = await loader() if callable(loader) else loader
        await self.set(key, result, ttl)
        return result

    async def increment(self, key: str, amount: int = 1, ttl: int = 3600) -> int:
        """Increment a counter with TTL"""
        if not self.enabled:
            return 0

        try:
            pipe = self.redis.pipeline()
            pipe.incr(key, amount)
            pipe.expire(key, ttl)
            results = await pipe.execute()
            return results[0]
        except Exception as e:
            logger.error(f"Cache increment error for key {key}: {e}")
            return 0

# Global cache instance
cache = CacheManager()

async def rate_limit_check(identifier: str, limit: int, window: int = 60) -> bool:
    """Check if identifier is within rate limit (always true without Redis)"""
    count = await cache.increment(f"ratelimit:{identifier}", ttl=window)
    return count <= limit
