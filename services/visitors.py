"""
Human visitor events from the JS beacon
"""
import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

def path_from_url(url: Optional[str]) -> str:
    if not url:
        return "/"
    parsed = urlparse(url)
    return parsed.path or "/"

class VisitorEventStore:
    def __init__(self, pool):
        self.pool = pool

    async def record(self, workspace: Dict[str, Any], visitor: Dict[str, Any]) -> str:
        async with self.pool.acquire() as con:
            return await con.fetchval("""
                INSERT INTO visitor_events (
                    workspace_id, user_id, visitor_id, session_id, url, path,
                    referrer, ai_source, ip_address, user_agent, metadata
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11::jsonb)
                RETURNING id
            """,
                workspace["id"], workspace["user_id"], visitor.get("visitor_id"),
                visitor.get("session_id"), visitor.get("url"), path_from_url(visitor.get("url")),
                visitor.get("referrer"), visitor.get("ai_source"), visitor["ip"],
                visitor.get("user_agent"), json.dumps(visitor.get("metadata") or {}, default=str)
            )
