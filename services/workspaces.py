"""
Workspace lookups, always scoped by owner unless explicitly public (pixel / ingest)
"""
import logging
from typing import Any, Dict, List, Optional

from services.crawler_ingest import normalize_domain

logger = logging.getLogger(__name__)

_COLUMNS = "id, user_id, workspace_name, domain, created_at"

class WorkspaceService:
    def __init__(self, pool):
        self.pool = pool

    async def get_public(self, workspace_id: str) -> Optional[Dict[str, Any]]:
        """Unscoped lookup used by the tracking endpoints"""
        async with self.pool.acquire() as con:
            row = await con.fetchrow(f"SELECT {_COLUMNS} FROM workspaces WHERE id = $1", workspace_id)
        return dict(row) if row else None

    async def get_for_user(self, workspace_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        async with self.pool.acquire() as con:
            row = await con.fetchrow(
                f"SELECT {_COLUMNS} FROM workspaces WHERE id = $1 AND user_id = $2",
                workspace_id, user_id
            )
        return dict(row) if row else None

    async def list_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        async with self.pool.acquire() as con:
            rows = await con.fetch(
                f"SELECT {_COLUMNS} FROM workspaces WHERE user_id = $1 ORDER BY created_at", user_id
            )
        return [dict(r) for r in rows]

    async def create(self, user_id: str, name: str, domain: str) -> Dict[str, Any]:
        host = normalize_domain(domain)
        if not host or "." not in host:
            raise ValueError(f"Invalid domain: {domain!r}")

        async with self.pool.acquire() as con:
            row = await con.fetchrow(f"""
                INSERT INTO workspaces (user_id, workspace_name, domain)
                VALUES ($1, $2, $3)
                RETURNING {_COLUMNS}
            """, user_id, (name or host).strip(), host)
        logger.info(f"Workspace {row['id']} created for {host}")
        return dict(row)

    async def delete(self, workspace_id: str, user_id: str) -> bool:
        async with self.pool.acquire() as con:
            async with con.transaction():
                owned = await con.fetchval(
                    "SELECT id FROM workspaces WHERE id = $1 AND user_id = $2", workspace_id, user_id
                )
                if not owned:
                    return False
                await con.execute("DELETE FROM workspace_api_keys WHERE workspace_id = $1", workspace_id)
                await con.execute("DELETE FROM workspaces WHERE id = $1", workspace_id)
        logger.info(f"Workspace {workspace_id} deleted")
        return True
