"""
Crawler event ingestion
Normalises SDK / plugin events, enforces the workspace domain allow-list and
rolls visits up into crawler_stats_daily
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from services.crawlers import detect_crawler, crawler_info

logger = logging.getLogger(__name__)

# SDK payloads are camelCase, the WordPress plugin sends snake_case
_FIELD_ALIASES = {
    "crawler_name": ("crawler_name", "crawlerName"),
    "crawler_company": ("crawler_company", "crawlerCompany"),
    "crawler_category": ("crawler_category", "crawlerCategory"),
    "user_agent": ("user_agent", "userAgent"),
    "status_code": ("status_code", "statusCode"),
    "response_time_ms": ("response_time_ms", "responseTimeMs"),
}

def _pick(raw: Dict[str, Any], field: str):
    for key in _FIELD_ALIASES.get(field, (field,)):
        if raw.get(key) is not None:
            return raw[key]
    return None

def normalize_domain(value: Optional[str]) -> str:
    """Host only: no scheme, port, path or leading www., lower-cased"""
    if not value:
        return ""
    value = str(value).strip().lower()
    if "://" not in value:
        value = "http://" + value
    try:
        host = urlparse(value).hostname or ""
    except ValueError:
        return ""
    if host.startswith("www."):
        host = host[4:]
    return host

def domain_allowed(event_domain: str, workspace_domain: str) -> bool:
    event_host = normalize_domain(event_domain)
    allowed = normalize_domain(workspace_domain)
    if not event_host or not allowed:
        return False
    return event_host == allowed or event_host.endswith("." + allowed)

def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 string or epoch milliseconds -> aware UTC datetime"""
    if value is None or value == "":
        return None
    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except (ValueError, OverflowError, OSError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)

def normalize_event(raw: Dict[str, Any], workspace: Dict[str, Any], now: datetime = None) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    """
    Turn one incoming event into a crawler_visits row.
    Returns (row, None) or (None, reason) when the event is rejected.
    """
    if not isinstance(raw, dict):
        return None, "not_an_object"

    domain = normalize_domain(raw.get("domain"))
    if not domain_allowed(domain, workspace["domain"]):
        return None, "domain_not_allowed"

    user_agent = _pick(raw, "user_agent") or ""
    name = _pick(raw, "crawler_name")
    if name:
        known = crawler_info(name) or {}
        company = _pick(raw, "crawler_company") or known.get("company") or "Unknown"
        category = _pick(raw, "crawler_category") or known.get("category") or "ai-training"
    else:
        detected = detect_crawler(user_agent)
        if not detected:
            return None, "not_a_crawler"
        name, company, category = detected["name"], detected["company"], detected["category"]

    timestamp = parse_timestamp(raw.get("timestamp")) or now or datetime.now(timezone.utc)

    response_time = _pick(raw, "response_time_ms")
    status_code = _pick(raw, "status_code")
    try:
        status_code = int(status_code) if status_code is not None else None
        response_time = float(response_time) if response_time is not None else None
    except (TypeError, ValueError):
        return None, "invalid_field"

    row = {
        "user_id": workspace["user_id"],
        "workspace_id": workspace["id"],
        "domain": domain,
        "path": raw.get("path") or "/",
        "crawler_name": name,
        "crawler_company": company,
        "crawler_category": category,
        "user_agent": user_agent,
        "timestamp": timestamp,
        "status_code": status_code,
        "response_time_ms": response_time,
        "country": raw.get("country"),
        "metadata": raw.get("metadata") or {},
    }
    return row, None

def aggregate_daily_stats(visits: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Roll visit rows up by (user_id, domain, date, crawler_name)."""
    buckets: Dict[tuple, Dict[str, Any]] = {}

    for visit in visits:
        day = visit["timestamp"].date()
        key = (visit["user_id"], visit["domain"], day, visit["crawler_name"])
        stats = buckets.get(key)
        if stats is None:
            stats = buckets[key] = {
                "user_id": visit["user_id"],
                "workspace_id": visit.get("workspace_id"),
                "domain": visit["domain"],
                "date": day,
                "crawler_name": visit["crawler_name"],
                "crawler_company": visit["crawler_company"],
                "visit_count": 0,
                "paths": {},
                "countries": {},
                "response_time_total": 0.0,
                "response_time_samples": 0,
            }

        stats["visit_count"] += 1
        path = visit.get("path") or "/"
        stats["paths"][path] = stats["paths"].get(path, 0) + 1
        if visit.get("country"):
            stats["countries"][visit["country"]] = stats["countries"].get(visit["country"], 0) + 1
        if visit.get("response_time_ms"):
            stats["response_time_total"] += visit["response_time_ms"]
            stats["response_time_samples"] += 1

    results = []
    for stats in buckets.values():
        samples = stats.pop("response_time_samples")
        total = stats.pop("response_time_total")
        stats["unique_paths"] = len(stats["paths"])
        stats["avg_response_time_ms"] = round(total / samples, 2) if samples else None
        stats["response_time_samples"] = samples
        results.append(stats)
    return results

def _as_dict(value) -> Dict[str, int]:
    if not value:
        return {}
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)

def merge_daily_stats(existing: Optional[Dict[str, Any]], new: Dict[str, Any]) -> Dict[str, Any]:
    """Merge a fresh aggregate into the stored row for the same key."""
    if not existing:
        return dict(new)

    merged = dict(new)
    paths = _as_dict(existing.get("paths"))
    for path, count in new["paths"].items():
        paths[path] = paths.get(path, 0) + count
    countries = _as_dict(existing.get("countries"))
    for country, count in new["countries"].items():
        countries[country] = countries.get(country, 0) + count

    old_samples = existing.get("response_time_samples") or 0
    old_avg = existing.get("avg_response_time_ms")
    new_samples = new.get("response_time_samples") or 0
    new_avg = new.get("avg_response_time_ms")
    samples = old_samples + new_samples
    if samples:
        total = float(old_avg or 0) * old_samples + float(new_avg or 0) * new_samples
        merged["avg_response_time_ms"] = round(total / samples, 2)
    else:
        merged["avg_response_time_ms"] = None

    merged["visit_count"] = (existing.get("visit_count") or 0) + new["visit_count"]
    merged["paths"] = paths
    merged["countries"] = countries
    merged["unique_paths"] = len(paths)
    merged["response_time_samples"] = samples
    return merged

class CrawlerEventStore:
    """Writes crawler visits and daily roll-ups"""

    def __init__(self, pool):
        self.pool = pool

    async def insert_visits(self, visits: List[Dict[str, Any]]):
        if not visits:
            return
        async with self.pool.acquire() as con:
            await con.executemany("""
                INSERT INTO crawler_visits
                    (user_id, workspace_id, domain, path, crawler_name, crawler_company,
                     crawler_category, user_agent, timestamp, status_code, response_time_ms,
                     country, metadata)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13::jsonb)
            """, [
                (v["user_id"], v["workspace_id"], v["domain"], v["path"], v["crawler_name"],
                 v["crawler_company"], v["crawler_category"], v["user_agent"], v["timestamp"],
                 v["status_code"], v["response_time_ms"], v["country"], json.dumps(v["metadata"], default=str))
                for v in visits
            ])

    async def upsert_daily_stats(self, aggregates: List[Dict[str, Any]]) -> int:
        """Read-modify-write each roll-up row under a row lock. Returns rows written."""
        written = 0
        async with self.pool.acquire() as con:
            async with con.transaction():
                for stats in aggregates:
                    existing = await con.fetchrow("""
                        SELECT visit_count, paths, countries, avg_response_time_ms, response_time_samples
                        FROM crawler_stats_daily
                        WHERE user_id = $1 AND domain = $2 AND date = $3 AND crawler_name = $4
                        FOR UPDATE
                    """, stats["user_id"], stats["domain"], stats["date"], stats["crawler_name"])

                    merged = merge_daily_stats(dict(existing) if existing else None, stats)
                    await con.execute("""
                        INSERT INTO crawler_stats_daily
                            (user_id, workspace_id, domain, date, crawler_name, crawler_company,
                             visit_count, unique_paths, avg_response_time_ms, response_time_samples,
                             countries, paths, updated_at)
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11::jsonb, $12::jsonb, NOW())
                        ON CONFLICT (user_id, domain, date, crawler_name)
                        DO UPDATE SET visit_count = EXCLUDED.visit_count,
                                      unique_paths = EXCLUDED.unique_paths,
                                      avg_response_time_ms = EXCLUDED.avg_response_time_ms,
                                      response_time_samples = EXCLUDED.response_time_samples,
                                      countries = EXCLUDED.countries,
                                      paths = EXCLUDED.paths,
                                      updated_at = NOW()
                    """, merged["user_id"], merged.get("workspace_id"), merged["domain"], merged["date"],
                        merged["crawler_name"], merged["crawler_company"], merged["visit_count"],
                        merged["unique_paths"], merged["avg_response_time_ms"], merged["response_time_samples"],
                        json.dumps(merged["countries"]), json.dumps(merged["paths"]))
                    written += 1
        return written

    async def ingest(self, raw_events: List[Dict[str, Any]], workspace: Dict[str, Any]) -> Dict[str, Any]:
        """Validate, insert and aggregate one batch for a workspace."""
        visits, rejected = [], {}
        now = datetime.now(timezone.utc)
        for raw in raw_events:
            row, reason = normalize_event(raw, workspace, now)
            if row is None:
                rejected[reason] = rejected.get(reason, 0) + 1
                continue
            visits.append(row)

        if rejected:
            logger.warning(f"Rejected crawler events for workspace {workspace['id']}: {rejected}")

        await self.insert_visits(visits)

        try:
            await self.upsert_daily_stats(aggregate_daily_stats(visits))
        except Exception as e:
            # crawler_visits stays the source of truth for the roll-up
            logger.error(f"Daily stats upsert failed for workspace {workspace['id']}: {e}")

        return {
            "processed": len(visits),
            "rejected": sum(rejected.values()),
            "rejected_reasons": rejected,
        }

    async def record_visit(self, workspace: Dict[str, Any], crawler: Dict[str, str], domain: str, path: str,
                           user_agent: str, metadata: Dict[str, Any] = None):
        """Single visit from the pixel / beacon (already known to be a crawler)"""
        visit = {
            "user_id": workspace["user_id"],
            "workspace_id": workspace["id"],
            "domain": normalize_domain(domain) or normalize_domain(workspace["domain"]),
            "path": path or "/",
            "crawler_name": crawler["name"],
            "crawler_company": crawler["company"],
            "crawler_category": crawler["category"],
            "user_agent": user_agent or "",
            "timestamp": datetime.now(timezone.utc),
            "status_code": 200,
            "response_time_ms": None,
            "country": None,
            "metadata": metadata or {},
        }
        await self.insert_visits([visit])
        await self.upsert_daily_stats(aggregate_daily_stats([visit]))
        return visit
