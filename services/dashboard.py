"""
Dashboard read models: crawler breakdown, recent visits, attribution summary,
per-bot / per-company / per-page attribution and single crawler or page detail
"""
import logging
import re
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from config.app_config import get_config
from infra.cache import cache
from services.subscription import get_retention_cutoff, has_active_subscription, normalize_plan

logger = logging.getLogger(__name__)

TIMEFRAMES = {
    "last24h": timedelta(hours=24),
    "last7d": timedelta(days=7),
    "last30d": timedelta(days=30),
    "last90d": timedelta(days=90),
    "last365d": timedelta(days=365),
}
DEFAULT_TIMEFRAME = "last24h"
ATTRIBUTION_TIMEFRAME = "last7d"
RECENT_ACTIVITY_LIMIT = 20

MAIN_CRAWLERS = {
    "OpenAI": "GPTBot",
    "Anthropic": "ClaudeBot",
    "Google": "Google-Extended",
    "Perplexity": "PerplexityBot",
    "Microsoft": "BingBot",
}
COMPANY_ICONS = {
    "OpenAI": "/images/chatgpt.svg",
    "Anthropic": "/images/claude.svg",
    "Google": "/images/gemini.svg",
    "Perplexity": "/images/perplexity.svg",
    "Microsoft": "/images/bing.svg",
}
COMPANY_COLORS = {
    "OpenAI": "#10a37f",
    "Anthropic": "#cc785c",
    "Google": "#4285f4",
    "Perplexity": "#1fb6ff",
    "Microsoft": "#00bcf2",
}
DEFAULT_COLOR = "#888"
COMPANY_DOMAINS = {
    "OpenAI": "openai.com",
    "Anthropic": "anthropic.com",
    "Google": "google.com",
    "Perplexity": "perplexity.ai",
    "Microsoft": "microsoft.com",
    "Meta": "meta.com",
    "LinkedIn": "linkedin.com",
    "Apple": "apple.com",
    "Amazon": "amazon.com",
    "ByteDance": "bytedance.com",
    "You.com": "you.com",
    "Baidu": "baidu.com",
    "Yandex": "yandex.com",
    "DuckDuckGo": "duckduckgo.com",
    "Common Crawl": "commoncrawl.org",
    "Petal Search": "petalsearch.com",
}
SIGNIFICANT_SHARE = 0.05
SESSION_GAP = timedelta(minutes=5)

def resolve_timeframe(timeframe: Optional[str], default: str = DEFAULT_TIMEFRAME) -> str:
    timeframe = (timeframe or default).lower()
    return timeframe if timeframe in TIMEFRAMES else default

def timeframe_start(timeframe: Optional[str], now: datetime = None, default: str = DEFAULT_TIMEFRAME) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now - TIMEFRAMES[resolve_timeframe(timeframe, default)]

def crawler_icon(company: str) -> str:
    if company in COMPANY_ICONS:
        return COMPANY_ICONS[company]
    domain = COMPANY_DOMAINS.get(company) or f"{re.sub(r'[^a-z0-9]', '', company.lower())}.com"
    return f"https://www.google.com/s2/favicons?domain={domain}&sz=128"

def crawler_color(company: str) -> str:
    return COMPANY_COLORS.get(company, DEFAULT_COLOR)

def row_limit_for(profile: Dict[str, Any]) -> Optional[int]:
    """Visible crawler_visits rows; None means unlimited"""
    if profile.get("is_admin"):
        return None
    if has_active_subscription(profile):
        return None
    return get_config().get_plan_row_limit((profile.get("subscription_plan") or "free").lower())

def build_crawler_breakdown(counts: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    counts: rows of {crawler_company, crawler_name, visits}.
    A company is split per crawler only when more than one of its crawlers
    carries over 5% of the company's traffic; otherwise it is one row under its main crawler.
    """
    companies: Dict[str, Dict[str, int]] = {}
    for row in counts:
        company = row["crawler_company"] or "Unknown"
        crawlers = companies.setdefault(company, {})
        crawlers[row["crawler_name"]] = crawlers.get(row["crawler_name"], 0) + int(row["visits"])

    total = sum(sum(c.values()) for c in companies.values())
    if not total:
        return {"crawlers": [], "totalCrawls": 0}

    def _row(name, company, crawls):
        return {
            "name": name,
            "company": company,
            "percentage": round(crawls / total * 100, 2),
            "crawls": crawls,
            "icon": crawler_icon(company),
            "color": crawler_color(company),
        }

    rows = []
    for company, crawlers in companies.items():
        company_visits = sum(crawlers.values())
        names = list(crawlers)
        significant = [n for n in names if crawlers[n] / company_visits > SIGNIFICANT_SHARE]

        if len(names) > 1 and len(significant) > 1:
            rows.extend(_row(n, company, crawlers[n]) for n in significant)
        elif len(names) > 1:
            rows.append(_row(MAIN_CRAWLERS.get(company, names[0]), company, company_visits))
        else:
            rows.append(_row(names[0], company, company_visits))

    rows.sort(key=lambda r: r["crawls"], reverse=True)
    return {"crawlers": rows, "totalCrawls": total}

def count_sessions(visits: List[Dict[str, Any]], gap: timedelta = SESSION_GAP) -> Dict[str, float]:
    """Sessions per crawler+domain, split where consecutive hits are more than `gap` apart"""
    groups: Dict[str, List[datetime]] = {}
    for visit in visits:
        groups.setdefault(f"{visit['crawler_name']}-{visit['domain']}", []).append(visit["timestamp"])

    sessions, pages = 0, 0
    for stamps in groups.values():
        stamps.sort()
        sessions += 1
        for prev, current in zip(stamps, stamps[1:]):
            if current - prev > gap:
                sessions += 1
        pages += len(stamps)

    return {
        "totalSessions": sessions,
        "avgPagesPerSession": round(pages / sessions, 1) if sessions else 0,
    }

def format_interval(seconds: float) -> str:
    hours = seconds / 3600
    if hours < 1:
        return f"{round(seconds / 60)}m"
    if hours < 24:
        return f"{round(hours, 1):g}h"
    return f"{round(hours / 24, 1):g}d"

def average_interval(stamps: List[datetime]) -> str:
    """Mean gap between consecutive visits"""
    if len(stamps) < 2:
        return "N/A"
    ordered = sorted(stamps)
    return format_interval((ordered[-1] - ordered[0]).total_seconds() / (len(ordered) - 1))

def relative_time(moment: datetime, now: datetime = None) -> str:
    now = now or datetime.now(timezone.utc)
    hours = int((now - moment).total_seconds() // 3600)
    if hours < 1:
        return "Just now"
    if hours < 24:
        return f"{hours}h ago"
    if hours // 24 < 7:
        return f"{hours // 24}d ago"
    return moment.date().isoformat()

def _avg_ms(values: List[float]) -> Optional[int]:
    timed = [v for v in values if v]
    return round(sum(timed) / len(timed)) if timed else None

def build_bot_attribution(visits: List[Dict[str, Any]]) -> Dict[str, Any]:
    bots: Dict[str, Dict[str, Any]] = {}
    for visit in visits:
        bot = bots.setdefault(visit["crawler_name"], {
            "company": visit.get("crawler_company") or "Unknown", "stamps": [], "pages": {},
        })
        bot["stamps"].append(visit["timestamp"])
        page = bot["pages"].setdefault(visit["path"], {"visits": 0, "last": visit["timestamp"]})
        page["visits"] += 1
        page["last"] = max(page["last"], visit["timestamp"])

    rows = []
    for name, bot in bots.items():
        pages = [{"path": path, "visits": data["visits"], "lastVisit": data["last"].isoformat()}
                 for path, data in bot["pages"].items()]
        pages.sort(key=lambda p: p["visits"], reverse=True)
        rows.append({
            "botName": name,
            "company": bot["company"],
            "totalCrawls": len(bot["stamps"]),
            "pathsVisited": len(bot["pages"]),
            "avgInterval": average_interval(bot["stamps"]),
            "crawlerCount": 1,
            "lastSeen": max(bot["stamps"]).isoformat(),
            "pages": pages,
        })
    rows.sort(key=lambda r: r["totalCrawls"], reverse=True)
    return {"bots": rows}

def build_company_attribution(visits: List[Dict[str, Any]], timeframe: str = ATTRIBUTION_TIMEFRAME,
                              now: datetime = None) -> Dict[str, Any]:
    """avgInterval here is the timeframe spread evenly over the company's crawls"""
    window = TIMEFRAMES[resolve_timeframe(timeframe, ATTRIBUTION_TIMEFRAME)].total_seconds()
    companies: Dict[str, Dict[str, Any]] = {}
    for visit in visits:
        stats = companies.setdefault(visit.get("crawler_company") or "Unknown", {
            "crawls": 0, "paths": set(), "crawlers": [], "last": visit["timestamp"],
        })
        stats["crawls"] += 1
        stats["paths"].add(visit["path"])
        if visit["crawler_name"] not in stats["crawlers"]:
            stats["crawlers"].append(visit["crawler_name"])
        stats["last"] = max(stats["last"], visit["timestamp"])

    rows = [{
        "company": company,
        "totalCrawls": stats["crawls"],
        "uniquePaths": len(stats["paths"]),
        "avgInterval": format_interval(window / stats["crawls"]) if stats["crawls"] > 1 else "N/A",
        "crawlers": stats["crawlers"],
        "lastSeen": relative_time(stats["last"], now),
    } for company, stats in companies.items()]
    rows.sort(key=lambda r: r["totalCrawls"], reverse=True)
    return {"companies": rows}

def build_page_attribution(visits: List[Dict[str, Any]]) -> Dict[str, Any]:
    pages: Dict[str, Dict[str, Any]] = {}
    for visit in visits:
        stats = pages.setdefault(visit["path"], {"crawlers": Counter(), "times": [], "last": visit["timestamp"]})
        stats["crawlers"][visit["crawler_name"]] += 1
        stats["times"].append(visit.get("response_time_ms"))
        stats["last"] = max(stats["last"], visit["timestamp"])

    rows = [{
        "path": path,
        "totalCrawls": sum(stats["crawlers"].values()),
        "uniqueCrawlers": len(stats["crawlers"]),
        "avgResponse": _avg_ms(stats["times"]) or 0,
        "lastCrawled": stats["last"].isoformat(),
        "topCrawler": stats["crawlers"].most_common(1)[0][0],
    } for path, stats in pages.items()]
    rows.sort(key=lambda r: r["totalCrawls"], reverse=True)
    return {"pages": rows}

def _bucket(moment: datetime, hourly: bool) -> datetime:
    moment = moment.astimezone(timezone.utc)
    if hourly:
        return moment.replace(minute=0, second=0, microsecond=0)
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)

def activity_chart(stamps: List[datetime], timeframe: str, count_key: str,
                   now: datetime = None) -> List[Dict[str, Any]]:
    """Hourly buckets for last24h, otherwise one bucket per day, oldest first"""
    now = now or datetime.now(timezone.utc)
    hourly = timeframe == "last24h"
    periods = 24 if hourly else TIMEFRAMES[timeframe].days
    step = timedelta(hours=1) if hourly else timedelta(days=1)
    counts = Counter(_bucket(stamp, hourly) for stamp in stamps)

    chart = []
    for i in range(periods - 1, -1, -1):
        start = _bucket(now - step * i, hourly)
        chart.append({
            "date": start.isoformat(),
            count_key: counts.get(start, 0),
            "showLabel": i % 2 == 0 if hourly else True,
        })
    return chart

def build_crawler_detail(visits: List[Dict[str, Any]], timeframe: str = ATTRIBUTION_TIMEFRAME,
                         now: datetime = None) -> Dict[str, Any]:
    if not visits:
        return {"stats": None, "chartData": []}
    timeframe = resolve_timeframe(timeframe, ATTRIBUTION_TIMEFRAME)
    latest = max(visits, key=lambda v: v["timestamp"])

    paths: Dict[str, Dict[str, Any]] = {}
    for visit in visits:
        data = paths.setdefault(visit["path"], {"visits": 0, "last": visit["timestamp"], "times": []})
        data["visits"] += 1
        data["last"] = max(data["last"], visit["timestamp"])
        data["times"].append(visit.get("response_time_ms"))

    activity = sorted(paths.items(), key=lambda item: item[1]["last"], reverse=True)[:RECENT_ACTIVITY_LIMIT]
    stamps = [v["timestamp"] for v in visits]
    return {
        "stats": {
            "totalCrawls": len(visits),
            "uniquePaths": len(paths),
            "avgInterval": average_interval(stamps),
            "lastSeen": latest["timestamp"].isoformat(),
            "company": latest.get("crawler_company") or "Unknown",
            "recentActivity": [{
                "path": path,
                "visits": data["visits"],
                "lastVisit": data["last"].isoformat(),
                "responseTime": _avg_ms(data["times"]),
            } for path, data in activity],
        },
        "chartData": activity_chart(stamps, timeframe, "crawls", now),
    }

def build_page_detail(path: str, visits: List[Dict[str, Any]], timeframe: str = ATTRIBUTION_TIMEFRAME,
                      now: datetime = None) -> Dict[str, Any]:
    if not visits:
        return {"stats": None, "chartData": []}
    timeframe = resolve_timeframe(timeframe, ATTRIBUTION_TIMEFRAME)

    crawlers: Dict[str, Dict[str, Any]] = {}
    for visit in visits:
        data = crawlers.setdefault(visit["crawler_name"], {
            "company": visit.get("crawler_company") or "Unknown", "visits": 0,
            "last": visit["timestamp"], "times": [],
        })
        data["visits"] += 1
        data["last"] = max(data["last"], visit["timestamp"])
        data["times"].append(visit.get("response_time_ms"))

    recent = sorted(crawlers.items(), key=lambda item: item[1]["last"], reverse=True)[:RECENT_ACTIVITY_LIMIT]
    stamps = [v["timestamp"] for v in visits]
    return {
        "stats": {
            "totalVisits": len(visits),
            "uniqueCrawlers": len(crawlers),
            "uniqueCompanies": len({v.get("crawler_company") for v in visits}),
            "lastCrawled": max(stamps).isoformat(),
            "path": path,
            "recentVisits": [{
                "botName": name,
                "company": data["company"],
                "visits": data["visits"],
                "lastVisit": data["last"].isoformat(),
                "avgResponseTime": _avg_ms(data["times"]),
            } for name, data in recent],
        },
        "chartData": activity_chart(stamps, timeframe, "visits", now),
    }

class DashboardService:
    def __init__(self, pool):
        self.pool = pool

    async def crawler_stats(self, workspace_id: str, profile: Dict[str, Any],
                            timeframe: str = DEFAULT_TIMEFRAME) -> Dict[str, Any]:
        timeframe = timeframe if timeframe in TIMEFRAMES else DEFAULT_TIMEFRAME
        limit = row_limit_for(profile)
        key = f"crawler-stats:{workspace_id}:{timeframe}:{'all' if limit is None else limit}"

        async def _load():
            if limit == 0:
                return {"crawlers": [], "totalCrawls": 0}
            return build_crawler_breakdown(await self._crawler_counts(workspace_id, timeframe_start(timeframe), limit))

        return await cache.cached_call(key, _load, ttl=get_config().get_stats_cache_ttl())

    async def _crawler_counts(self, workspace_id: str, since: datetime, limit: Optional[int]):
        async with self.pool.acquire() as con:
            if limit is None:
                rows = await con.fetch("""
                    SELECT crawler_company, crawler_name, COUNT(*) AS visits
                    FROM crawler_visits
                    WHERE workspace_id = $1 AND timestamp >= $2
                    GROUP BY crawler_company, crawler_name
                """, workspace_id, since)
            else:
                rows = await con.fetch("""
                    SELECT crawler_company, crawler_name, COUNT(*) AS visits
                    FROM (
                        SELECT crawler_company, crawler_name FROM crawler_visits
                        WHERE workspace_id = $1 AND timestamp >= $2
                        ORDER BY timestamp DESC
                        LIMIT $3
                    ) limited
                    GROUP BY crawler_company, crawler_name
                """, workspace_id, since, limit)
        return [dict(r) for r in rows]

    async def crawler_visits(self, workspace_id: str, profile: Dict[str, Any], limit: int = 50,
                             offset: int = 0, crawler: Optional[str] = None) -> Dict[str, Any]:
        plan = "enterprise" if profile.get("is_admin") else normalize_plan(profile.get("subscription_plan"))
        cutoff = get_retention_cutoff(plan, datetime.now(timezone.utc)) or datetime(1970, 1, 1, tzinfo=timezone.utc)

        conditions = "workspace_id = $1 AND timestamp >= $2"
        args: List[Any] = [workspace_id, cutoff]
        if crawler and crawler != "all":
            conditions += " AND crawler_name = $3"
            args.append(crawler)

        async with self.pool.acquire() as con:
            total = await con.fetchval(f"SELECT COUNT(*) FROM crawler_visits WHERE {conditions}", *args)
            rows = await con.fetch(f"""
                SELECT id, timestamp, domain, path, crawler_name, crawler_company,
                       crawler_category, status_code, response_time_ms, country
                FROM crawler_visits
                WHERE {conditions}
                ORDER BY timestamp DESC
                LIMIT {int(limit)} OFFSET {int(offset)}
            """, *args)

        return {
            "visits": [dict(r) for r in rows],
            "total": total or 0,
            "limit": limit,
            "offset": offset,
            "retention_cutoff": cutoff.isoformat(),
        }

    async def attribution_stats(self, workspace_id: str, days: int = 7) -> Dict[str, Any]:
        since = datetime.now(timezone.utc) - timedelta(days=days)
        async with self.pool.acquire() as con:
            visits = await con.fetch("""
                SELECT crawler_name, domain, path, timestamp, response_time_ms
                FROM crawler_visits
                WHERE workspace_id = $1 AND timestamp >= $2
            """, workspace_id, since)
            referrals = await con.fetch("""
                SELECT ai_source, COUNT(*) AS visitors
                FROM visitor_events
                WHERE workspace_id = $1 AND created_at >= $2 AND ai_source IS NOT NULL
                GROUP BY ai_source
                ORDER BY visitors DESC
            """, workspace_id, since)
            top_pages = await con.fetch("""
                SELECT path, COUNT(*) AS visitors
                FROM visitor_events
                WHERE workspace_id = $1 AND created_at >= $2 AND ai_source IS NOT NULL
                GROUP BY path
                ORDER BY visitors DESC
                LIMIT 10
            """, workspace_id, since)

        visits = [dict(v) for v in visits]
        timed = [v["response_time_ms"] for v in visits if v.get("response_time_ms") is not None]
        stats = {
            "totalCrawls": len(visits),
            "uniqueCrawlers": len({v["crawler_name"] for v in visits}),
            "uniqueDomains": len({v["domain"] for v in visits}),
            "uniquePaths": len({v["path"] for v in visits}),
            "avgResponseTime": round(sum(timed) / len(timed)) if timed else 0,
        }
        stats.update(count_sessions(visits) if visits else {"totalSessions": 0, "avgPagesPerSession": 0})
        stats["aiReferrals"] = {r["ai_source"]: r["visitors"] for r in referrals}
        stats["totalAiReferrals"] = sum(stats["aiReferrals"].values())
        stats["topPages"] = [{"path": p["path"], "visitors": p["visitors"]} for p in top_pages]
        return stats

    async def _timeframe_visits(self, workspace_id: str, profile: Dict[str, Any], since: datetime,
                                crawler: Optional[str] = None, path: Optional[str] = None) -> List[Dict[str, Any]]:
        limit = row_limit_for(profile)
        if limit == 0:
            return []

        conditions = "workspace_id = $1 AND timestamp >= $2"
        args: List[Any] = [workspace_id, since]
        if crawler:
            args.append(crawler)
            conditions += f" AND crawler_name = ${len(args)}"
        if path:
            args.append(path)
            conditions += f" AND path = ${len(args)}"
        limit_clause = "" if limit is None else f"LIMIT {int(limit)}"

        async with self.pool.acquire() as con:
            rows = await con.fetch(f"""
                SELECT crawler_name, crawler_company, domain, path, timestamp, response_time_ms
                FROM crawler_visits
                WHERE {conditions}
                ORDER BY timestamp DESC
                {limit_clause}
            """, *args)
        return [dict(r) for r in rows]

    async def attribution_bots(self, workspace_id: str, profile: Dict[str, Any],
                               timeframe: str = ATTRIBUTION_TIMEFRAME) -> Dict[str, Any]:
        since = timeframe_start(timeframe, default=ATTRIBUTION_TIMEFRAME)
        return build_bot_attribution(await self._timeframe_visits(workspace_id, profile, since))

    async def attribution_companies(self, workspace_id: str, profile: Dict[str, Any],
                                    timeframe: str = ATTRIBUTION_TIMEFRAME) -> Dict[str, Any]:
        since = timeframe_start(timeframe, default=ATTRIBUTION_TIMEFRAME)
        visits = await self._timeframe_visits(workspace_id, profile, since)
        return build_company_attribution(visits, timeframe)

    async def attribution_pages(self, workspace_id: str, profile: Dict[str, Any],
                                timeframe: str = ATTRIBUTION_TIMEFRAME) -> Dict[str, Any]:
        since = timeframe_start(timeframe, default=ATTRIBUTION_TIMEFRAME)
        return build_page_attribution(await self._timeframe_visits(workspace_id, profile, since))

    async def crawler_detail(self, workspace_id: str, profile: Dict[str, Any], bot_name: str,
                             timeframe: str = ATTRIBUTION_TIMEFRAME) -> Dict[str, Any]:
        since = timeframe_start(timeframe, default=ATTRIBUTION_TIMEFRAME)
        visits = await self._timeframe_visits(workspace_id, profile, since, crawler=bot_name)
        logger.info(f"Crawler detail for {bot_name} in workspace {workspace_id}: {len(visits)} visits")
        return build_crawler_detail(visits, timeframe)

    async def page_detail(self, workspace_id: str, profile: Dict[str, Any], page_path: str,
                          timeframe: str = ATTRIBUTION_TIMEFRAME) -> Dict[str, Any]:
        since = timeframe_start(timeframe, default=ATTRIBUTION_TIMEFRAME)
        visits = await self._timeframe_visits(workspace_id, profile, since, path=page_path)
        return build_page_detail(page_path, visits, timeframe)
