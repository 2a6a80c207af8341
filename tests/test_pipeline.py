import random

import pytest

import services.max_visibility.pipeline as pipeline_module
from services.feature_flags import feature_flags
from services.max_visibility.pipeline import (
    MaxVisibilityError,
    MaxVisibilityPipeline,
    company_from_run,
    error_analysis,
    run_assessment_job,
    run_metrics,
)
from services.max_visibility.question_generator import QuestionGenerator

SETTINGS = {"question_count": 4, "batch_size": 2, "batch_delay_seconds": 0}
COMPANY = {"id": "c-1", "name": "Acme", "domain": "acme.io", "industry": None, "competitors": ["Mixpanel"]}
MENTION = {"mention_detected": True, "mention_position": "primary", "sentiment": "positive", "confidence": 0.9,
           "mention_context": "Acme is the best", "competitors_mentioned": ["Mixpanel"], "reasoning": "named"}

class FakeStore:
    def __init__(self, previous=None):
        self.previous = previous
        self.progress = []
        self.failed = None
        self.saved_analyses = []
        self.competitors = None
        self.metrics = None
        self.completed = None

    async def create_run(self, company_id, user_id):
        return "run-new"

    async def update_progress(self, run_id, percentage, stage, message, status="running"):
        self.progress.append((percentage, stage))

    async def fail_run(self, run_id, message):
        self.failed = (run_id, message)

    async def save_questions(self, run_id, questions):
        return [{**q, "id": f"q-{i}"} for i, q in enumerate(questions, start=1)]

    async def previous_score(self, company_id, exclude_run_id):
        return self.previous

    async def save_question_analysis(self, analysis):
        self.saved_analyses.append(analysis)
        return "resp"

    async def save_competitors(self, run_id, competitors):
        self.competitors = competitors

    async def save_metrics(self, run_id, metrics):
        self.metrics = {m["metric_name"]: m["metric_value"] for m in metrics}

    async def complete_run(self, run_id, scores, analyses):
        self.completed = (run_id, scores)

class FakePerplexity:
    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.calls = 0

    async def query(self, question):
        self.calls += 1
        if self.calls in self.fail_on:
            raise RuntimeError("upstream timeout")
        return {"id": f"pplx-{self.calls}", "content": "Acme is the best choice, compared to Mixpanel.",
                "citations": [{"url": "https://acme.io/pricing", "title": "", "domain": "acme.io"}]}

class FakeMentions:
    async def analyze(self, text, name, domain, aliases=None):
        return dict(MENTION)

def _pipeline(store, perplexity=None):
    return MaxVisibilityPipeline(
        pool=None, store=store, generator=QuestionGenerator(rng=random.Random(5)),
        perplexity=perplexity or FakePerplexity(), mention_analyzer=FakeMentions(), settings=SETTINGS,
    )

def _request(**extra):
    return {"company": dict(COMPANY), "question_types": ["direct", "comparison"], **extra}

async def test_run_assessment_end_to_end():
    store = FakeStore(previous=0.5)
    result = await _pipeline(store).run_assessment(_request(), "run-1")

    assert result["assessment_id"] == "run-1"
    assert len(result["question_analyses"]) == 4
    assert store.progress == [(0, "setup"), (20, "questions"), (50, "analysis"), (80, "analysis"), (85, "scoring")]
    assert len(store.saved_analyses) == 4

    run_id, scores = store.completed
    assert run_id == "run-1"
    assert scores["mention_rate"] == 1.0
    assert scores["citation_breakdown"]["owned"] == 4
    assert scores["historical_comparison"]["previous_score"] == 0.5
    assert "component_scores" in scores
    assert store.metrics["citation_diversity"] == 1
    assert store.competitors[0]["name"] == "Mixpanel"

async def test_failed_question_becomes_zero_score_analysis():
    store = FakeStore()
    result = await _pipeline(store, FakePerplexity(fail_on={2})).run_assessment(_request(), "run-1")
    failed = [a for a in result["question_analyses"] if a.get("error")]
    assert len(failed) == 1
    assert failed[0]["question_score"] == 0.0
    assert failed[0]["mention_analysis"]["reasoning"] == "Processing failed: upstream timeout"
    assert len(store.saved_analyses) == 3
    assert store.metrics["failed_questions"] == 1
    assert store.completed[1]["mention_rate"] == 0.75

async def test_run_creates_record_when_no_id_given():
    feature_flags.set("FEATURE_COMPETITIVE_ANALYSIS", False)
    store = FakeStore()
    result = await _pipeline(store).run_assessment(_request(triggered_by="user-1"))
    assert result["assessment_id"] == "run-new"
    assert result["competitive_analysis"] is None
    assert store.competitors is None

async def test_invalid_request_fails_run():
    store = FakeStore()
    with pytest.raises(MaxVisibilityError) as excinfo:
        await _pipeline(store).run_assessment({"company": {"id": "c-1", "domain": "acme.io"}}, "run-1")
    assert excinfo.value.code == "INVALID_REQUEST"
    assert excinfo.value.stage == "validation"
    assert store.failed == ("run-1", "Company name is required")

async def test_unknown_question_type_fails_run():
    store = FakeStore()
    with pytest.raises(MaxVisibilityError) as excinfo:
        await _pipeline(store).run_assessment(_request(question_types=["riddle"]), "run-1")
    assert excinfo.value.code == "QUESTION_GENERATION_FAILED"
    assert store.failed[0] == "run-1"

async def test_missing_perplexity_key_fails_whole_run(monkeypatch):
    monkeypatch.delenv("PERPLEXITY_API_KEY", raising=False)
    store = FakeStore()
    pipeline = MaxVisibilityPipeline(pool=None, store=store, generator=QuestionGenerator(),
                                     mention_analyzer=FakeMentions(), settings=SETTINGS)
    with pytest.raises(MaxVisibilityError) as excinfo:
        await pipeline.run_assessment(_request(), "run-1")
    assert excinfo.value.code == "CONFIG_ERROR"
    assert store.completed is None
    assert "PERPLEXITY_API_KEY" in store.failed[1]

async def test_storage_failure_is_reported_with_stage():
    store = FakeStore()

    async def broken_complete(run_id, scores, analyses):
        raise LookupError("Assessment record not found: run-1")

    store.complete_run = broken_complete
    with pytest.raises(MaxVisibilityError) as excinfo:
        await _pipeline(store).run_assessment(_request(), "run-1")
    assert excinfo.value.code == "ASSESSMENT_FAILED"
    assert excinfo.value.stage == "saving"
    assert store.failed[1].startswith("Assessment failed:")

def test_run_metrics():
    analyses = [
        {"ai_response": "abcd", "mention_analysis": dict(MENTION),
         "citation_analysis": [{"domain": "acme.io"}, {"domain": "g2.com"}]},
        error_analysis({"id": "q-2", "question": "B?", "type": "direct"}, RuntimeError("boom")),
    ]
    metrics = {m["metric_name"]: m["metric_value"] for m in run_metrics(analyses)}
    assert metrics["primary_mentions"] == 1
    assert metrics["citation_diversity"] == 2
    assert metrics["positive_sentiment_rate"] == 1.0
    assert metrics["failed_questions"] == 1

def test_company_from_run():
    run = {"company_id": "c-1", "company_name": "Acme", "root_url": "https://acme.io/", "industry": "saas"}
    assert company_from_run(run) == {"id": "c-1", "name": "Acme", "domain": "acme.io",
                                     "industry": "saas", "description": None}

async def test_run_assessment_job_skips_finished_runs(pool, monkeypatch):
    started = []
    monkeypatch.setattr(pipeline_module, "MaxVisibilityPipeline", lambda *a, **kw: started.append(a))
    pool.con.queue("fetchrow", {"id": "run-1", "status": "completed", "scores": None})
    await run_assessment_job(pool, "run-1")
    await run_assessment_job(pool, "run-2")
    assert started == []

async def test_run_assessment_job_rebuilds_request(pool, monkeypatch):
    requests = []

    class RecordingPipeline:
        def __init__(self, pool, store=None):
            pass

        async def run_assessment(self, request, assessment_id):
            requests.append((request, assessment_id))
            raise MaxVisibilityError("ASSESSMENT_FAILED", "boom", stage="analysis")

    monkeypatch.setattr(pipeline_module, "MaxVisibilityPipeline", RecordingPipeline)
    pool.con.queue("fetchrow", {"id": "run-1", "status": "pending", "scores": None, "company_id": "c-1",
                                "company_name": "Acme", "root_url": "https://acme.io", "triggered_by": "user-1"})
    await run_assessment_job(pool, "run-1", question_count=10)
    request, assessment_id = requests[0]
    assert assessment_id == "run-1"
    assert request["company"]["domain"] == "acme.io"
    assert request["question_count"] == 10
    assert request["triggered_by"] == "user-1"
