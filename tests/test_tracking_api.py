import uuid

import pytest

import api.tracking as tracking
import services.tasks as tasks_service
from api.crawler_events import router as crawler_events_router
from api.tracking import TRANSPARENT_GIF, resolve_page, router as tracking_router
from infra.middleware import RATE_LIMIT_EXEMPT_PREFIXES, RateLimitMiddleware
from infra.security_filters import hash_api_key
from services.feature_flags import feature_flags
from services.leads import detect_ai_source

WORKSPACE_ROW = {"id": "ws-1", "user_id": "user-1", "workspace_name": "Acme", "domain": "acme.io",
                 "created_at": None}
GPTBOT_UA = "Mozilla/5.0 AppleWebKit/537.36 (KHTML, like Gecko; compatible; GPTBot/1.2)"
KEY_ROW = {"key_id": "k-1", "permissions": None, "workspace_id": "ws-1", "user_id": "user-1", "domain": "acme.io"}
BEARER = {"Authorization": "Bearer split_live_abc_def"}

@pytest.fixture
def client(make_client):
    return make_client(tracking_router, crawler_events_router)

def test_resolve_page_falls_back_to_referer_then_workspace():
    assert resolve_page("https://www.acme.io/blog/post", None, "acme.io") == ("acme.io", "/blog/post")
    assert resolve_page("not a url", "http://docs.acme.io/x", "acme.io") == ("docs.acme.io", "/x")
    assert resolve_page(None, None, "https://acme.io") == ("acme.io", "/")

@pytest.mark.parametrize("referrer, utm_source, utm_medium, expected", [
    ("https://chat.openai.com/c/123", None, None, "chatgpt"),
    ("https://www.perplexity.ai/search", None, None, "perplexity"),
    (None, "OpenAI", None, "chatgpt"),
    (None, None, "llm", "unknown-ai"),
    ("https://google.com", "newsletter", "email", None),
])
def test_detect_ai_source(referrer, utm_source, utm_medium, expected):
    assert detect_ai_source(referrer, utm_source, utm_medium) == expected

def test_pixel_ignores_humans(client, pool):
    response = client.get("/api/track/ws-1/pixel.gif", headers={"User-Agent": "Mozilla/5.0 Firefox/125.0"})
    assert response.status_code == 200
    assert response.content == TRANSPARENT_GIF
    assert response.headers["content-type"] == "image/gif"
    assert pool.con.calls == []

def test_pixel_records_crawler_visit(client, pool):
    pool.con.queue("fetchrow", WORKSPACE_ROW)
    response = client.get(
        "/api/track/ws-1/pixel.gif",
        params={"url": "https://acme.io/pricing"},
        headers={"User-Agent": GPTBOT_UA},
    )
    assert response.status_code == 200
    assert "no-store" in response.headers["cache-control"]
    (rows,) = pool.con.args_for("INSERT INTO crawler_visits")
    assert rows[0][2:5] == ("acme.io", "/pricing", "GPTBot")

def test_pixel_never_fails_for_unknown_workspace(client, pool):
    response = client.get("/api/track/missing/pixel.gif", headers={"User-Agent": GPTBOT_UA})
    assert response.status_code == 200
    assert response.content == TRANSPARENT_GIF

def test_collect_requires_workspace(client):
    assert client.post("/api/tracking/collect", json={"u": "https://acme.io"}).status_code == 400

def test_collect_unknown_workspace_is_404(client):
    assert client.post("/api/tracking/collect", json={"w": "nope"}).status_code == 404

def test_collect_rejects_non_object_body(client):
    assert client.post("/api/tracking/collect", json=["w"]).status_code == 400

def test_collect_routes_crawlers_to_crawler_visits(client, pool):
    pool.con.queue("fetchrow", WORKSPACE_ROW)
    response = client.post("/api/tracking/collect", json={"w": "ws-1", "u": "https://acme.io/a", "ua": GPTBOT_UA})
    assert response.json() == {"success": True, "type": "crawler"}
    assert not any("visitor_events" in q for q in pool.con.queries())

def test_collect_visitor_on_free_plan_skips_enrichment(client, pool, monkeypatch):
    jobs = []
    monkeypatch.setattr(tracking, "run_enrichment_job", lambda *a: jobs.append(a))
    pool.con.queue("fetchrow", WORKSPACE_ROW, {"id": "user-1", "subscription_plan": "free"})

    response = client.post(
        "/api/tracking/collect",
        json={"w": "ws-1", "v": "v-1", "u": "https://acme.io/", "r": "https://chatgpt.com/", "tz": "UTC"},
        headers={"User-Agent": "Mozilla/5.0 Safari/605.1", "X-Forwarded-For": "8.8.8.8, 10.0.0.1"},
    )
    assert response.json() == {"success": True, "type": "visitor", "ai_source": "chatgpt"}
    args = pool.con.args_for("INSERT INTO visitor_events")
    assert args[2] == "v-1"
    assert args[8] == "8.8.8.8"
    assert jobs == []

def test_collect_visitor_on_pro_plan_schedules_enrichment(client, pool, monkeypatch):
    jobs = []

    async def fake_job(*args):
        jobs.append(args)

    monkeypatch.setattr(tracking, "run_enrichment_job", fake_job)
    pool.con.queue("fetchrow", WORKSPACE_ROW, {"id": "user-1", "subscription_plan": "pro"})

    response = client.post(
        "/api/tracking/collect",
        json={"workspace_id": "ws-1", "url": "https://acme.io/"},
        headers={"X-Forwarded-For": "8.8.8.8"},
    )
    assert response.status_code == 200
    assert len(jobs) == 1
    assert jobs[0][2] == "8.8.8.8"

def test_crawler_events_rejects_missing_key(client):
    response = client.post("/api/crawler-events", json={"events": [{"domain": "acme.io"}]})
    assert response.status_code == 401

def test_crawler_events_rejects_unknown_key(client, pool):
    response = client.post(
        "/api/crawler-events",
        json={"events": [{"domain": "acme.io"}]},
        headers={"Authorization": "Bearer split_live_abc_def"},
    )
    assert response.status_code == 401
    assert pool.con.args_for("workspace_api_keys k") == (hash_api_key("split_live_abc_def"),)

def test_crawler_events_forbidden_without_tracking_permission(client, pool):
    pool.con.queue("fetchrow", {"key_id": "k-1", "permissions": '{"crawler_tracking": false}',
                                "workspace_id": "ws-1", "user_id": "user-1", "domain": "acme.io"})
    response = client.post(
        "/api/crawler-events",
        json={"events": [{"domain": "acme.io"}]},
        headers={"Authorization": "Bearer split_live_abc_def"},
    )
    assert response.status_code == 403

def test_crawler_events_batch(client, pool):
    pool.con.queue("fetchrow", {"key_id": "k-1", "permissions": None,
                                "workspace_id": "ws-1", "user_id": "user-1", "domain": "acme.io"})
    response = client.post(
        "/api/crawler-events",
        json={"events": [
            {"domain": "acme.io", "path": "/", "userAgent": GPTBOT_UA},
            {"domain": "other.io", "path": "/", "userAgent": GPTBOT_UA},
        ]},
        headers={"Authorization": "Bearer split_live_abc_def"},
    )
    body = response.json()
    assert response.status_code == 200
    assert body["processed"] == 1
    assert body["rejected"] == 1

def test_crawler_events_empty_batch_is_400(client, pool):
    pool.con.queue("fetchrow", {"key_id": "k-1", "permissions": None,
                                "workspace_id": "ws-1", "user_id": "user-1", "domain": "acme.io"})
    response = client.post("/api/crawler-events", json={"events": []},
                           headers={"Authorization": "Bearer split_live_abc_def"})
    assert response.status_code == 400

def test_crawler_events_batch_over_cap_is_400(client, pool):
    pool.con.queue("fetchrow", KEY_ROW)
    events = [{"domain": "acme.io", "path": f"/{i}", "userAgent": GPTBOT_UA} for i in range(101)]
    response = client.post("/api/crawler-events", json={"events": events}, headers=BEARER)
    assert response.status_code == 400
    assert "100" in response.json()["detail"]
    assert pool.con.queries("executemany") == []

def test_crawler_events_bad_fields_reject_only_that_event(client, pool):
    pool.con.queue("fetchrow", KEY_ROW)
    response = client.post(
        "/api/crawler-events",
        json={"events": [
            {"domain": "acme.io", "path": "/", "userAgent": GPTBOT_UA, "statusCode": "OK"},
            {"domain": "http://[bad", "path": "/", "userAgent": GPTBOT_UA},
            {"domain": "acme.io", "path": "/ok", "userAgent": GPTBOT_UA, "statusCode": 200},
        ]},
        headers=BEARER,
    )
    body = response.json()
    assert response.status_code == 200
    assert body["processed"] == 1
    assert body["rejected"] == 2

def test_ingest_paths_are_exempt_from_global_rate_limit():
    for prefix in ("/api/track/", "/api/tracking/", "/api/crawler-events"):
        assert prefix in RATE_LIMIT_EXEMPT_PREFIXES

def test_pixel_keeps_serving_gif_under_global_rate_limit(make_client):
    client = make_client(tracking_router)
    client.app.add_middleware(RateLimitMiddleware, requests_per_minute=1)
    for _ in range(3):
        response = client.get("/api/track/ws-1/pixel.gif", headers={"User-Agent": "Mozilla/5.0 Firefox/125.0"})
        assert response.status_code == 200
        assert response.content == TRANSPARENT_GIF

def test_collect_with_uuid_workspace_enqueues_string_id(client, pool, monkeypatch):
    class RecordingScheduler:
        def __init__(self):
            self.enqueued = []

        async def enqueue_task(self, endpoint, payload, delay_seconds=0):
            tasks_service.sign_payload(payload)
            self.enqueued.append((endpoint, payload))
            return "tasks/1"

    async def local_job(*args):
        raise AssertionError("enrichment should go through Cloud Tasks")

    scheduler = RecordingScheduler()
    monkeypatch.setattr(tasks_service, "task_scheduler", scheduler)
    monkeypatch.setattr(tracking, "run_enrichment_job", local_job)
    feature_flags.set("FEATURE_CLOUD_TASKS", True)

    workspace_id = uuid.uuid4()
    pool.con.queue("fetchrow", dict(WORKSPACE_ROW, id=workspace_id), {"id": "user-1", "subscription_plan": "pro"})
    response = client.post("/api/tracking/collect", json={"w": str(workspace_id), "u": "https://acme.io/"},
                           headers={"X-Forwarded-For": "8.8.8.8"})
    assert response.status_code == 200
    endpoint, payload = scheduler.enqueued[0]
    assert endpoint == "/tasks/enrich_visitor"
    assert payload["workspace_id"] == str(workspace_id)
