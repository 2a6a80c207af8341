"""
Workspace API keys
Keys are shown once at creation; only their SHA-256 hash is stored
"""
import json
import logging
import secrets
import string
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from infra.security_filters import hash_api_key

logger = logging.getLogger(__name__)

KEY_PREFIXES = {"live": "split_live_", "test": "split_test_"}
DEFAULT_PERMISSIONS = {"crawler_tracking": True, "read_data": True}
_ALPHABET = string.ascii_lowercase + string.digits

class ApiKeyLimitError(Exception):
    pass

def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_ALPHABET[26 + rem] if rem < 10 else _ALPHABET[rem - 10])
    return "".join(reversed(digits))

def generate_api_key(key_type: str = "live") -> str:
    """split_<type>_<base36 ms timestamp>_<26 random chars>"""
    if key_type not in KEY_PREFIXES:
        raise ValueError(f"Unknown key type: {key_type}")
    timestamp = _base36(int(time.time() * 1000))
    random_part = "".join(secrets.choice(_ALPHABET) for _ in range(26))
    return f"{KEY_PREFIXES[key_type]}{timestamp}_{random_part}"

def _permissions(value) -> Dict[str, bool]:
    if not value:
        return dict(DEFAULT_PERMISSIONS)
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)

class ApiKeyService:
    def __init__(self, pool, max_keys: int = 10):
        self.pool = pool
        self.max_keys = max_keys

    async def validate(self, api_key: str) -> Optional[Dict[str, Any]]:
        """
        Resolve a plaintext key to its workspace.
        Returns {key_id, workspace_id, user_id, domain, permissions} or None.
        """
        if not api_key or not api_key.startswith(tuple(KEY_PREFIXES.values())):
            return None

        async with self.pool.acquire() as con:
            row = await con.fetchrow("""
                SELECT k.id AS key_id, k.permissions, w.id AS workspace_id, w.user_id, w.domain
                FROM workspace_api_keys k
                JOIN workspaces w ON w.id = k.workspace_id
                WHERE k.key_hash = $1 AND k.is_active = TRUE
            """, hash_api_key(api_key))
            if not row:
                return None
            await con.execute(
                "UPDATE workspace_api_keys SET last_used_at = NOW() WHERE id = $1", row["key_id"]
            )

        result = dict(row)
        result["permissions"] = _permissions(result.get("permissions"))
        return result

    async def list_keys(self, workspace_id: str) -> List[Dict[str, Any]]:
        async with self.pool.acquire() as con:
            rows = await con.fetch("""
                SELECT id, name, permissions, is_active, last_used_at, created_at, metadata
                FROM workspace_api_keys
                WHERE workspace_id = $1
                ORDER BY created_at DESC
            """, workspace_id)
        keys = []
        for r in rows:
            item = dict(r)
            item["workspace_id"] = workspace_id
            item["permissions"] = _permissions(item.get("permissions"))
            keys.append(item)
        return keys

    async def create_key(self, *, workspace: Dict[str, Any], user_id: str, name: Optional[str] = None,
                         key_type: str = "live", permissions: Optional[Dict[str, bool]] = None) -> Dict[str, Any]:
        api_key = generate_api_key(key_type)
        key_name = (name or "").strip() or (
            f"{workspace.get('workspace_name') or workspace['domain']} {key_type.title()} Key "
            f"{datetime.utcnow().strftime('%Y-%m-%d')}"
        )
        perms = permissions or dict(DEFAULT_PERMISSIONS)

        async with self.pool.acquire() as con:
            count = await con.fetchval(
                "SELECT COUNT(*) FROM workspace_api_keys WHERE workspace_id = $1", workspace["id"]
            )
            if count and count >= self.max_keys:
                raise ApiKeyLimitError(f"Maximum number of API keys ({self.max_keys}) reached for this workspace")

            row = await con.fetchrow("""
                INSERT INTO workspace_api_keys (workspace_id, name, key_hash, permissions, metadata)
                VALUES ($1, $2, $3, $4::jsonb, $5::jsonb)
                RETURNING id, is_active, last_used_at, created_at
            """, workspace["id"], key_name, hash_api_key(api_key), json.dumps(perms),
                json.dumps({"created_by": user_id, "key_type": key_type}))

        logger.info(f"🔑 API key {row['id']} created for workspace {workspace['id']}")
        return {
            "id": row["id"],
            "workspace_id": workspace["id"],
            "name": key_name,
            "api_key": api_key,
            "permissions": perms,
            "is_active": row["is_active"],
            "last_used_at": row["last_used_at"],
            "created_at": row["created_at"],
            "key_type": key_type,
        }

    async def revoke_key(self, workspace_id: str, key_id: str) -> bool:
        async with self.pool.acquire() as con:
            result = await con.execute("""
                UPDATE workspace_api_keys SET is_active = FALSE, updated_at = NOW()
                WHERE id = $1 AND workspace_id = $2
            """, key_id, workspace_id)
        return result.endswith(" 1")
