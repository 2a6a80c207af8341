import json

import pytest

from services.max_visibility.store import MaxVisibilityStore, average_sentiment

COMPANY_ROW = {"id": "c-1", "company_name": "Acme", "root_url": "https://acme.io",
               "industry": None, "description": None}

def _analysis(citations=()):
    return {
        "question_id": "q-1",
        "response_id": "pplx-1",
        "ai_response": "Acme is great",
        "citations": [{"url": c["url"]} for c in citations],
        "mention_analysis": {"mention_detected": True, "mention_position": "primary", "sentiment": "positive",
                             "mention_context": "Acme is great", "confidence": 0.9},
        "citation_analysis": list(citations),
        "question_score": 0.75,
    }

def test_average_sentiment_ignores_missed_questions():
    analyses = [
        {"mention_analysis": {"mention_detected": True, "sentiment": "very_positive"}},
        {"mention_analysis": {"mention_detected": True, "sentiment": "negative"}},
        {"mention_analysis": {"mention_detected": False, "sentiment": "very_negative"}},
    ]
    assert average_sentiment(analyses) == 0.25
    assert average_sentiment([]) == 0.0

async def test_find_or_create_company_reuses_existing(pool):
    pool.con.queue("fetchrow", COMPANY_ROW)
    company = await MaxVisibilityStore(pool).find_or_create_company("user-1", "Acme", "acme.io")
    assert company["id"] == "c-1"
    assert pool.con.calls[0][2] == (["acme.io", "https://acme.io", "http://acme.io"],)
    assert len(pool.con.calls) == 1

async def test_find_or_create_company_inserts(pool):
    pool.con.queue("fetchrow", None, dict(COMPANY_ROW, id="c-2"))
    company = await MaxVisibilityStore(pool).find_or_create_company("user-1", "", "acme.io")
    assert company["id"] == "c-2"
    assert pool.con.args_for("INSERT INTO companies") == ("Unknown Company", "https://acme.io", "user-1")

async def test_create_run_returns_string_id(pool):
    pool.con.queue("fetchval", 42)
    assert await MaxVisibilityStore(pool).create_run("c-1", "user-1") == "42"

async def test_get_run_decodes_scores(pool):
    pool.con.queue("fetchrow", {"id": "run-1", "status": "completed", "scores": json.dumps({"overall_score": 0.5})})
    run = await MaxVisibilityStore(pool).get_run("run-1", user_id="user-1")
    assert run["scores"] == {"overall_score": 0.5}
    assert "AND r.triggered_by = $2" in pool.con.queries("fetchrow")[0]
    assert pool.con.calls[0][2] == ("run-1", "user-1")

async def test_list_runs_with_company_filter(pool):
    pool.con.queue("fetchval", 3)
    pool.con.queue("fetch", [{"id": "run-1", "scores": None}])
    result = await MaxVisibilityStore(pool).list_runs("user-1", company_id="c-1", limit=1, offset=2)
    assert result == {"assessments": [{"id": "run-1", "scores": None}], "total": 3}
    assert "LIMIT 1 OFFSET 2" in pool.con.queries("fetch")[0]
    assert pool.con.args_for("SELECT COUNT(*)") == ("user-1", "c-1")

async def test_fail_run_truncates_message(pool):
    await MaxVisibilityStore(pool).fail_run("run-1", "x" * 900)
    assert len(pool.con.args_for("status = 'failed'")[1]) == 500

async def test_save_questions_numbers_positions(pool):
    pool.con.queue("fetchval", 10, 11)
    saved = await MaxVisibilityStore(pool).save_questions("run-1", [
        {"question": "A?", "type": "direct"}, {"question": "B?", "type": "indirect"},
    ])
    assert [q["id"] for q in saved] == ["10", "11"]
    assert [args[3] for _, _, args in pool.con.calls] == [1, 2]

async def test_save_question_analysis_writes_citations(pool):
    pool.con.queue("fetchval", "resp-1")
    citation = {"url": "https://acme.io", "title": "", "domain": "acme.io", "bucket": "owned",
                "influence_score": 0.95, "relevance_score": 0.9}
    response_id = await MaxVisibilityStore(pool).save_question_analysis(_analysis([citation]))
    assert response_id == "resp-1"
    response_args = pool.con.args_for("INSERT INTO max_visibility_responses")
    assert response_args[3] == len("Acme is great")
    assert response_args[10] == 75.0
    (rows,) = pool.con.args_for("INSERT INTO max_visibility_citations")
    assert rows == [("resp-1", "https://acme.io", None, "acme.io", "owned", 0.95, 0.9, 1)]

async def test_save_question_analysis_without_citations(pool):
    await MaxVisibilityStore(pool).save_question_analysis(_analysis())
    assert pool.con.queries("executemany") == []

async def test_get_question_analyses_groups_citations(pool):
    pool.con.queue("fetch", [
        {"question_id": "q-1", "question": "A?", "question_type": "direct", "position": 1,
         "response_id": "r-1", "full_response": "Acme!", "mention_detected": True, "mention_position": "primary",
         "mention_sentiment": "positive", "mention_context": None, "mention_confidence": 0.9,
         "citation_count": 1, "response_quality_score": 80},
        {"question_id": "q-2", "question": "B?", "question_type": "indirect", "position": 2,
         "response_id": None, "full_response": None, "mention_detected": None, "mention_position": None,
         "mention_sentiment": None, "mention_context": None, "mention_confidence": None,
         "citation_count": None, "response_quality_score": None},
    ], [
        {"response_id": "r-1", "citation_url": "https://g2.com/acme", "citation_title": None,
         "citation_domain": "g2.com", "bucket": "operated", "influence_score": 0.85, "relevance_score": 0.7},
    ])
    analyses = await MaxVisibilityStore(pool).get_question_analyses("run-1")
    assert analyses[0]["citation_analysis"][0]["bucket"] == "operated"
    assert analyses[0]["question_score"] == 0.8
    assert analyses[1]["ai_response"] == ""
    assert analyses[1]["mention_analysis"]["mention_position"] == "none"
    assert analyses[1]["citation_analysis"] == []

async def test_complete_run_stores_scores_json(pool):
    pool.con.queue("fetchval", "run-1")
    scores = {"overall_score": 0.643, "mention_rate": 0.5, "source_influence": 0.625,
              "competitive_positioning": 0.7, "response_consistency": 0.708}
    await MaxVisibilityStore(pool).complete_run("run-1", scores, [_analysis()])
    args = pool.con.args_for("status = 'completed'")
    assert args[1] == 64
    assert args[3] == 0.5
    assert json.loads(args[7]) == scores

async def test_complete_run_missing_record(pool):
    scores = {"overall_score": 0.1, "mention_rate": 0, "source_influence": 0,
              "competitive_positioning": 0.5, "response_consistency": 1.0}
    with pytest.raises(LookupError):
        await MaxVisibilityStore(pool).complete_run("run-9", scores, [])

async def test_save_competitors_skips_empty_list(pool):
    store = MaxVisibilityStore(pool)
    await store.save_competitors("run-1", [])
    assert pool.con.calls == []
    await store.save_competitors("run-1", [{"name": "Mixpanel", "domain": "mixpanel.com"}])
    (rows,) = pool.con.args_for("INSERT INTO max_visibility_competitors")
    assert rows == [("run-1", "Mixpanel", "mixpanel.com", 0, 0.0, 1)]
