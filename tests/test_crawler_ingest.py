from datetime import datetime, timezone

import pytest

from services.crawler_ingest import (
    CrawlerEventStore,
    aggregate_daily_stats,
    domain_allowed,
    merge_daily_stats,
    normalize_domain,
    normalize_event,
    parse_timestamp,
)
from services.crawlers import (
    crawler_categories,
    crawlers_by_company,
    crawlers_in_category,
    detect_crawler,
    is_ai_crawler,
)

WORKSPACE = {"id": "ws-1", "user_id": "user-1", "domain": "example.com"}

def _visit(day, crawler="GPTBot", path="/", rt=None, country=None):
    return {
        "user_id": "user-1", "workspace_id": "ws-1", "domain": "example.com", "path": path,
        "crawler_name": crawler, "crawler_company": "OpenAI", "crawler_category": "ai-training",
        "timestamp": datetime(2024, 5, day, 12, tzinfo=timezone.utc),
        "response_time_ms": rt, "country": country,
    }

def test_detect_crawler_prefers_longest_token():
    ua = "Mozilla/5.0 (compatible; Applebot-Extended/0.1)"
    assert detect_crawler(ua) == {"name": "Applebot-Extended", "company": "Apple", "category": "ai-training"}
    assert detect_crawler("mozilla/5.0 gptbot/1.1")["company"] == "OpenAI"
    assert detect_crawler("Mozilla/5.0 (Windows NT 10.0) Chrome/120") is None
    assert not is_ai_crawler(None)

def test_crawlers_in_category_rejects_unknown():
    assert "PerplexityBot" in crawlers_in_category("ai-search")
    with pytest.raises(ValueError):
        crawlers_in_category("scrapers")

def test_crawler_groupings():
    categories = crawler_categories()
    assert set(categories) == {"ai-training", "ai-assistant", "ai-search", "search-ai", "social-ai"}
    assert "OAI-SearchBot" in categories["ai-search"]
    assert sum(len(names) for names in categories.values()) == 24
    assert crawlers_by_company()["Anthropic"] == ["Claude-Web", "ClaudeBot", "anthropic-ai"]

@pytest.mark.parametrize("raw, expected", [
    ("https://www.Example.com:8443/path?q=1", "example.com"),
    ("blog.example.com", "blog.example.com"),
    ("", ""),
    (None, ""),
    ("http://[bad", ""),
])
def test_normalize_domain(raw, expected):
    assert normalize_domain(raw) == expected

def test_domain_allowed_accepts_subdomains_only():
    assert domain_allowed("docs.example.com", "example.com")
    assert domain_allowed("www.example.com", "https://example.com/")
    assert not domain_allowed("notexample.com", "example.com")
    assert not domain_allowed("", "example.com")

def test_parse_timestamp_handles_epoch_ms_and_iso():
    assert parse_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)
    assert parse_timestamp("2024-05-01T10:00:00Z") == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
    assert parse_timestamp("2024-05-01T10:00:00").tzinfo == timezone.utc
    assert parse_timestamp("yesterday") is None

def test_normalize_event_uses_sdk_field_names():
    row, reason = normalize_event({
        "domain": "www.example.com", "path": "/pricing", "crawlerName": "ClaudeBot",
        "userAgent": "ClaudeBot/1.0", "statusCode": "200", "responseTimeMs": 41,
    }, WORKSPACE)
    assert reason is None
    assert row["crawler_company"] == "Anthropic"
    assert row["status_code"] == 200
    assert row["response_time_ms"] == 41.0
    assert row["workspace_id"] == "ws-1"

def test_normalize_event_rejections():
    assert normalize_event({"domain": "other.com", "user_agent": "GPTBot"}, WORKSPACE) == (None, "domain_not_allowed")
    assert normalize_event({"domain": "example.com", "user_agent": "Firefox"}, WORKSPACE) == (None, "not_a_crawler")
    assert normalize_event("junk", WORKSPACE) == (None, "not_an_object")

def test_normalize_event_rejects_unparseable_fields():
    base = {"domain": "example.com", "user_agent": "GPTBot/1.0"}
    assert normalize_event(dict(base, statusCode="OK"), WORKSPACE) == (None, "invalid_field")
    assert normalize_event(dict(base, responseTimeMs="fast"), WORKSPACE) == (None, "invalid_field")
    assert normalize_event(dict(base, domain="http://[bad"), WORKSPACE) == (None, "domain_not_allowed")

def test_aggregate_daily_stats_groups_by_day_and_crawler():
    stats = aggregate_daily_stats([
        _visit(1, path="/a", rt=100, country="US"),
        _visit(1, path="/a", rt=200, country="US"),
        _visit(1, path="/b"),
        _visit(2),
        _visit(1, crawler="ClaudeBot"),
    ])
    assert len(stats) == 3
    day_one = next(s for s in stats if s["crawler_name"] == "GPTBot" and s["date"].day == 1)
    assert day_one["visit_count"] == 3
    assert day_one["paths"] == {"/a": 2, "/b": 1}
    assert day_one["unique_paths"] == 2
    assert day_one["countries"] == {"US": 2}
    assert day_one["avg_response_time_ms"] == 150.0
    assert day_one["response_time_samples"] == 2

def test_merge_daily_stats_weights_response_time_by_samples():
    new = aggregate_daily_stats([_visit(1, path="/a", rt=300)])[0]
    merged = merge_daily_stats({
        "visit_count": 4, "paths": '{"/a": 3, "/c": 1}', "countries": {},
        "avg_response_time_ms": 100.0, "response_time_samples": 3,
    }, new)
    assert merged["visit_count"] == 5
    assert merged["paths"] == {"/a": 4, "/c": 1}
    assert merged["unique_paths"] == 2
    assert merged["avg_response_time_ms"] == 150.0
    assert merged["response_time_samples"] == 4

def test_merge_daily_stats_without_existing_row():
    new = aggregate_daily_stats([_visit(1)])[0]
    assert merge_daily_stats(None, new) == new

async def test_ingest_inserts_valid_events_and_counts_rejections(pool):
    result = await CrawlerEventStore(pool).ingest([
        {"domain": "example.com", "user_agent": "GPTBot/1.0", "timestamp": "2024-05-01T00:00:00Z"},
        {"domain": "example.com", "user_agent": "PerplexityBot", "timestamp": "2024-05-01T01:00:00Z"},
        {"domain": "evil.com", "user_agent": "GPTBot"},
    ], WORKSPACE)

    assert result == {"processed": 2, "rejected": 1, "rejected_reasons": {"domain_not_allowed": 1}}
    (rows,) = pool.con.args_for("INSERT INTO crawler_visits")
    assert [r[4] for r in rows] == ["GPTBot", "PerplexityBot"]
    assert any("FOR UPDATE" in q for q in pool.con.queries("fetchrow"))
    assert len(pool.con.queries("execute")) == 2

async def test_ingest_survives_rollup_failure(pool):
    pool.con.queue("fetchrow", RuntimeError("deadlock detected"))
    result = await CrawlerEventStore(pool).ingest(
        [{"domain": "example.com", "user_agent": "GPTBot"}], WORKSPACE
    )
    assert result["processed"] == 1
