from datetime import datetime, timezone

import pytest

import api.max_visibility as max_visibility_api
from api.max_visibility import router
from services.feature_flags import feature_flags

HEADERS = {"X-User-Id": "user-1"}
PRO = {"id": "user-1", "subscription_plan": "pro"}
WORKSPACE = {"id": "ws-1", "user_id": "user-1", "workspace_name": "Acme", "domain": "acme.io"}
COMPANY = {"id": "c-1", "company_name": "Acme", "root_url": "https://acme.io", "industry": None, "description": None}
SCORES = {"overall_score": 0.3, "mention_rate": 0.2, "mention_quality": 0.4, "source_influence": 0.3,
          "competitive_positioning": 0.3, "response_consistency": 0.5, "total_questions": 4}

def _run(status="completed", **extra):
    run = {
        "id": "run-1", "company_id": "c-1", "status": status, "total_score": 30, "mention_rate": 0.2,
        "sentiment_score": 0.0, "citation_score": 30, "competitive_score": 30, "consistency_score": 50,
        "progress_percentage": 100 if status == "completed" else 45, "progress_stage": "analysis",
        "progress_message": "Analyzing question 2 of 4...", "error_message": None,
        "scores": SCORES if status == "completed" else None, "triggered_by": "user-1",
        "started_at": datetime(2024, 3, 1, 12, tzinfo=timezone.utc), "completed_at": None,
        "company_name": "Acme", "root_url": "https://acme.io", "industry": None, "description": None,
    }
    run.update(extra)
    return run

@pytest.fixture
def client(make_client):
    return make_client(router)

@pytest.fixture
def jobs(monkeypatch):
    started = []

    async def fake_job(pool, assessment_id, question_count=None):
        started.append((assessment_id, question_count))

    monkeypatch.setattr(max_visibility_api, "run_assessment_job", fake_job)
    return started

def test_assess_requires_plan(client, pool, jobs):
    pool.con.queue("fetchrow", {"id": "user-1", "subscription_plan": "plus"})
    response = client.post("/api/max-visibility/assess", json={}, headers=HEADERS)
    assert response.status_code == 402
    assert jobs == []

def test_assess_disabled_by_flag(client, pool, jobs):
    feature_flags.set("FEATURE_MAX_VISIBILITY", False)
    pool.con.queue("fetchrow", PRO)
    response = client.post("/api/max-visibility/assess", json={}, headers=HEADERS)
    assert response.status_code == 503

def test_assess_uses_first_workspace_and_runs_in_background(client, pool, jobs):
    pool.con.queue("fetchrow", PRO, COMPANY)
    pool.con.queue("fetch", [WORKSPACE, dict(WORKSPACE, id="ws-2", domain="other.io")])
    pool.con.queue("fetchval", 77)

    response = client.post("/api/max-visibility/assess", json={"question_count": 10}, headers=HEADERS)
    assert response.status_code == 200
    assert response.json() == {"success": True, "data": {"assessment_id": "77"}}
    assert jobs == [("77", 10)]
    assert pool.con.args_for("FROM companies")[0][0] == "acme.io"

def test_assess_rejects_foreign_workspace(client, pool, jobs):
    pool.con.queue("fetchrow", PRO, None)
    response = client.post("/api/max-visibility/assess", json={"workspace_id": "ws-9"}, headers=HEADERS)
    assert response.status_code == 404
    assert jobs == []

def test_assess_without_workspaces(client, pool, jobs):
    pool.con.queue("fetchrow", PRO)
    response = client.post("/api/max-visibility/assess", json={}, headers=HEADERS)
    assert response.status_code == 400

def test_assess_validates_question_count(client, pool, jobs):
    pool.con.queue("fetchrow", PRO)
    response = client.post("/api/max-visibility/assess", json={"question_count": 500}, headers=HEADERS)
    assert response.status_code == 422

def test_assessment_status(client, pool):
    pool.con.queue("fetchrow", _run("running"))
    response = client.get("/api/max-visibility/assess", params={"id": "run-1"}, headers=HEADERS)
    data = response.json()["data"]
    assert data["status"] == "running"
    assert data["progress_percentage"] == 45
    assert data["total_score"] is None
    assert pool.con.calls[0][2] == ("run-1", "user-1")

def test_assessment_status_not_found(client):
    response = client.get("/api/max-visibility/assess", params={"id": "run-9"}, headers=HEADERS)
    assert response.status_code == 404

def test_list_assessments_pagination(client, pool):
    pool.con.queue("fetchval", 3)
    pool.con.queue("fetch", [_run()])
    response = client.get("/api/max-visibility/assessments", params={"limit": 1}, headers=HEADERS)
    body = response.json()
    assert body["data"][0]["started_at"] == "2024-03-01T12:00:00+00:00"
    assert body["pagination"] == {"total": 3, "limit": 1, "offset": 0, "has_more": True}

def test_results_conflict_while_running(client, pool):
    pool.con.queue("fetchrow", _run("running"))
    response = client.get("/api/max-visibility/results/run-1", headers=HEADERS)
    assert response.status_code == 409
    assert response.json()["detail"] == "Assessment is running"

def test_results_for_completed_run(client, pool):
    pool.con.queue("fetchrow", _run())
    pool.con.queue("fetch", [], [], [{"competitor_name": "Mixpanel", "competitor_domain": "mixpanel.com",
                                      "mention_count": 2, "visibility_score": 0.4, "rank_position": 1}])
    data = client.get("/api/max-visibility/results/run-1", headers=HEADERS).json()["data"]
    assert data["company"]["domain"] == "acme.io"
    assert data["visibility_scores"]["overall_score"] == 0.3
    assert data["competitors"][0]["competitor_name"] == "Mixpanel"

def test_trends_need_two_runs(client, pool):
    pool.con.queue("fetchrow", COMPANY)
    pool.con.queue("fetch", [{"id": "run-1", "completed_at": datetime(2024, 3, 1, tzinfo=timezone.utc),
                              "scores": SCORES}])
    response = client.get("/api/max-visibility/trends", params={"company_id": "c-1"}, headers=HEADERS)
    assert response.status_code == 400

def test_trends_for_unknown_company(client):
    response = client.get("/api/max-visibility/trends", params={"company_id": "c-9"}, headers=HEADERS)
    assert response.status_code == 404

def test_trends_summary(client, pool):
    pool.con.queue("fetchrow", COMPANY)
    pool.con.queue("fetch", [
        {"id": "run-1", "completed_at": datetime(2024, 3, 1, tzinfo=timezone.utc), "scores": SCORES},
        {"id": "run-2", "completed_at": datetime(2024, 3, 8, tzinfo=timezone.utc),
         "scores": dict(SCORES, overall_score=0.33, mention_rate=0.22)},
    ])
    response = client.get("/api/max-visibility/trends", params={"company_id": "c-1", "alert_check": False},
                          headers=HEADERS)
    data = response.json()["data"]
    assert data["analysis_period"]["data_points"] == 2
    assert data["overall_trend"]["trend_direction"] == "upward"
    assert data["active_alerts"] == []

def test_recommendations_for_completed_run(client, pool):
    feature_flags.set("FEATURE_COMPETITIVE_ANALYSIS", False)
    pool.con.queue("fetchrow", _run())
    response = client.get("/api/max-visibility/recommendations", params={"assessment_id": "run-1"},
                          headers=HEADERS)
    data = response.json()["data"]
    assert data["company_id"] == "c-1"
    assert [r["id"].rsplit("_", 1)[0] for r in data["recommendations"]] == [
        "content_frequency", "sentiment_improvement", "authority_building"]

def test_recommendations_reject_unfinished_run(client, pool):
    pool.con.queue("fetchrow", _run("failed"))
    response = client.get("/api/max-visibility/recommendations", params={"assessment_id": "run-1"},
                          headers=HEADERS)
    assert response.status_code == 409

def test_recommendations_validate_effort(client):
    response = client.get("/api/max-visibility/recommendations",
                          params={"assessment_id": "run-1", "effort_preference": "extreme"}, headers=HEADERS)
    assert response.status_code == 422
