"""
MAX Visibility assessment pipeline

setup -> questions -> analysis (Perplexity + mention + citation per question) -> scoring -> save
Per-question failures become zero-score analyses; anything else fails the run.
"""
import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from config.app_config import get_config
from services.feature_flags import competitive_analysis_enabled
from services.max_visibility.citation_analyzer import CitationAnalyzer
from services.max_visibility.competitive_analysis import CompetitiveAnalyzer, guess_domain
from services.max_visibility.mention_analyzer import MentionAnalyzer
from services.max_visibility.perplexity_client import PerplexityClient
from services.max_visibility.question_generator import QuestionGenerationError, QuestionGenerator
from services.max_visibility.scoring import question_score, score_breakdown
from services.max_visibility.store import MaxVisibilityStore

logger = logging.getLogger(__name__)

class MaxVisibilityError(Exception):
    def __init__(self, code: str, message: str, stage: str = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.stage = stage

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "stage": self.stage}

def error_analysis(question: Dict[str, Any], error: Exception) -> Dict[str, Any]:
    return {
        "question_id": question["id"],
        "question_text": question["question"],
        "question_type": question["type"],
        "ai_response": f"Error: {error}",
        "citations": [],
        "mention_analysis": {
            "mention_detected": False,
            "mention_position": "none",
            "sentiment": "neutral",
            "mention_context": None,
            "confidence": 0,
            "competitors_mentioned": [],
            "reasoning": f"Processing failed: {error}",
        },
        "citation_analysis": [],
        "question_score": 0.0,
        "error": str(error),
        "processed_at": datetime.now(timezone.utc).isoformat(),
    }

def run_metrics(analyses: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    hits = [a for a in analyses if a["mention_analysis"]["mention_detected"]]
    positive = [a for a in hits if a["mention_analysis"]["sentiment"] in ("positive", "very_positive")]
    domains = {c["domain"] for a in analyses for c in a["citation_analysis"] if c.get("domain")}
    return [
        {"metric_name": "avg_response_length",
         "metric_value": sum(len(a["ai_response"]) for a in analyses) / max(len(analyses), 1),
         "metric_unit": "characters", "metric_category": "quality"},
        {"metric_name": "primary_mentions",
         "metric_value": sum(1 for a in hits if a["mention_analysis"]["mention_position"] == "primary"),
         "metric_unit": "count", "metric_category": "visibility"},
        {"metric_name": "citation_diversity", "metric_value": len(domains),
         "metric_unit": "unique_domains", "metric_category": "influence"},
        {"metric_name": "positive_sentiment_rate", "metric_value": len(positive) / max(len(hits), 1),
         "metric_unit": "percentage", "metric_category": "sentiment"},
        {"metric_name": "failed_questions", "metric_value": sum(1 for a in analyses if a.get("error")),
         "metric_unit": "count", "metric_category": "quality"},
    ]

def company_from_run(run: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": run["company_id"],
        "name": run["company_name"],
        "domain": re.sub(r"^https?://", "", run["root_url"] or "").rstrip("/"),
        "industry": run.get("industry"),
        "description": run.get("description"),
    }

class MaxVisibilityPipeline:
    def __init__(self, pool, store: MaxVisibilityStore = None, generator: QuestionGenerator = None,
                 perplexity: PerplexityClient = None, mention_analyzer: MentionAnalyzer = None,
                 settings: Dict[str, Any] = None):
        self.store = store or MaxVisibilityStore(pool)
        self.generator = generator or QuestionGenerator()
        self._perplexity = perplexity
        self._mention_analyzer = mention_analyzer
        self.settings = settings or get_config().get_max_visibility()

    @property
    def perplexity(self) -> PerplexityClient:
        if self._perplexity is None:
            try:
                self._perplexity = PerplexityClient()
            except ValueError as e:
                raise MaxVisibilityError("CONFIG_ERROR", str(e), stage="setup")
        return self._perplexity

    @property
    def mention_analyzer(self) -> MentionAnalyzer:
        if self._mention_analyzer is None:
            try:
                self._mention_analyzer = MentionAnalyzer()
            except ValueError as e:
                raise MaxVisibilityError("CONFIG_ERROR", str(e), stage="setup")
        return self._mention_analyzer

    async def _progress(self, run_id: str, percentage: int, stage: str, message: str):
        logger.info(f"Assessment {run_id}: {percentage}% {stage} - {message}")
        await self.store.update_progress(run_id, percentage, stage, message)

    def validate(self, request: Dict[str, Any]):
        company = request.get("company") or {}
        errors = QuestionGenerator.validate_request(
            company, request.get("question_count") or self.settings.get("question_count", 50)
        )
        if errors:
            raise MaxVisibilityError("INVALID_REQUEST", "; ".join(errors), stage="validation")

    async def run_assessment(self, request: Dict[str, Any], assessment_id: str = None) -> Dict[str, Any]:
        started = datetime.now(timezone.utc)
        try:
            self.validate(request)
        except MaxVisibilityError as e:
            if assessment_id:
                await self.store.fail_run(assessment_id, e.message)
            raise
        company = request["company"]

        if assessment_id is None:
            assessment_id = await self.store.create_run(company["id"], request.get("triggered_by"))

        stage = "setup"
        try:
            await self._progress(assessment_id, 0, stage, "Generating conversational questions...")
            generated = self.generator.generate(
                company,
                request.get("question_count") or self.settings.get("question_count", 50),
                request.get("question_types"),
            )
            questions = await self.store.save_questions(assessment_id, generated)

            stage = "questions"
            await self._progress(assessment_id, 20, stage, f"Processing {len(questions)} questions...")
            stage = "analysis"
            analyses = await self.process_questions(assessment_id, questions, company)

            stage = "scoring"
            await self._progress(assessment_id, 85, stage, "Calculating visibility scores...")
            previous = await self.store.previous_score(company["id"], assessment_id)
            breakdown = score_breakdown(analyses, previous_score=previous, industry=company.get("industry"))
            scores = dict(breakdown["scores"])
            scores.update({
                "component_scores": breakdown["component_scores"],
                "historical_comparison": breakdown["historical_comparison"],
                "industry_benchmark": breakdown["industry_benchmark"],
                "recommendations": breakdown["recommendations"],
                "calculation_details": breakdown["calculation_details"],
            })

            stage = "saving"
            competitive = None
            if competitive_analysis_enabled():
                competitive = CompetitiveAnalyzer(
                    company["name"], company["domain"], company.get("industry"), company.get("competitors")
                ).analyze(analyses)
                await self.store.save_competitors(assessment_id, [
                    {"name": c["competitor"]["name"], "domain": c["competitor"]["domain"],
                     "mention_count": c["metrics"]["mention_count"],
                     "visibility_score": c["metrics"]["ai_visibility_score"]}
                    for c in competitive["competitors"]
                ])
            await self.store.save_metrics(assessment_id, run_metrics(analyses))
            await self.store.complete_run(assessment_id, scores, analyses)

        except QuestionGenerationError as e:
            await self.store.fail_run(assessment_id, str(e))
            raise MaxVisibilityError("QUESTION_GENERATION_FAILED", str(e), stage=stage)
        except MaxVisibilityError as e:
            await self.store.fail_run(assessment_id, e.message)
            raise
        except Exception as e:
            logger.error(f"Assessment {assessment_id} failed during {stage}: {e}")
            await self.store.fail_run(assessment_id, f"Assessment failed: {e}")
            raise MaxVisibilityError("ASSESSMENT_FAILED", f"Assessment failed: {e}", stage=stage)

        elapsed_ms = int((datetime.now(timezone.utc) - started).total_seconds() * 1000)
        logger.info(f"✅ Assessment {assessment_id} completed: score {scores['overall_score']} in {elapsed_ms}ms")
        return {
            "assessment_id": assessment_id,
            "company": company,
            "question_analyses": analyses,
            "visibility_scores": scores,
            "competitive_analysis": competitive,
            "processing_time_ms": elapsed_ms,
            "completed_at": datetime.now(timezone.utc).isoformat(),
        }

    async def process_questions(self, assessment_id: str, questions: List[Dict[str, Any]],
                                company: Dict[str, Any]) -> List[Dict[str, Any]]:
        batch_size = max(1, int(self.settings.get("batch_size", 5)))
        delay = float(self.settings.get("batch_delay_seconds", 1.0))
        citations = CitationAnalyzer(
            company["name"], company["domain"],
            owned_domains=company.get("owned_domains") or [],
            operated_domains=company.get("operated_domains") or [],
            competitor_domains=[guess_domain(c) for c in company.get("competitors") or []],
        )

        analyses = []
        total = len(questions)
        for start in range(0, total, batch_size):
            batch = questions[start:start + batch_size]
            results = await asyncio.gather(*[self._safe_process(q, company, citations) for q in batch])
            analyses.extend(results)

            done = start + len(batch)
            await self._progress(assessment_id, round(20 + done / total * 60), "analysis",
                                 f"Analyzing question {done} of {total}...")
            if done < total:
                await asyncio.sleep(delay)
        return analyses

    async def _safe_process(self, question, company, citations: CitationAnalyzer) -> Dict[str, Any]:
        try:
            analysis = await self.process_question(question, company, citations)
        except MaxVisibilityError:
            raise
        except Exception as e:
            logger.warning(f"Question {question['id']} failed: {e}")
            return error_analysis(question, e)

        try:
            await self.store.save_question_analysis(analysis)
        except Exception as e:
            logger.error(f"Could not save analysis for question {question['id']}: {e}")
        return analysis

    async def process_question(self, question: Dict[str, Any], company: Dict[str, Any],
                               citations: CitationAnalyzer) -> Dict[str, Any]:
        answer = await self.perplexity.query(question["question"])
        mention = await self.mention_analyzer.analyze(
            answer["content"], company["name"], company["domain"], company.get("aliases")
        )
        classified = citations.analyze(answer["citations"])
        return {
            "question_id": question["id"],
            "question_text": question["question"],
            "question_type": question["type"],
            "response_id": answer.get("id"),
            "ai_response": answer["content"],
            "citations": answer["citations"],
            "mention_analysis": mention,
            "citation_analysis": classified,
            "question_score": question_score(mention, classified, question["type"]),
            "processed_at": datetime.now(timezone.utc).isoformat(),
        }

    async def test_connectivity(self) -> Dict[str, Any]:
        errors = []
        try:
            result = await self.perplexity.test_connection()
            if not result["success"]:
                errors.append(f"Perplexity: {result['error']}")
        except MaxVisibilityError as e:
            errors.append(f"Perplexity: {e.message}")

        try:
            result = await self.mention_analyzer.test_connection()
            if not result["success"]:
                errors.append(f"OpenAI: {result['error']}")
        except MaxVisibilityError as e:
            errors.append(f"OpenAI: {e.message}")

        try:
            await self.store.ping()
        except Exception as e:
            errors.append(f"Database: {e}")

        return {"success": not errors, "errors": errors}

    async def get_assessment_status(self, assessment_id: str) -> Optional[str]:
        return await self.store.get_status(assessment_id)

async def run_assessment_job(pool, assessment_id: str, question_count: int = None):
    """Background entry point: rebuild the request from the stored run and execute it"""
    store = MaxVisibilityStore(pool)
    run = await store.get_run(assessment_id)
    if not run:
        logger.error(f"Assessment {assessment_id} not found")
        return
    if run["status"] not in ("pending", "running"):
        logger.info(f"Assessment {assessment_id} already {run['status']}, skipping")
        return

    request = {"company": company_from_run(run), "triggered_by": run["triggered_by"]}
    if question_count:
        request["question_count"] = question_count
    try:
        await MaxVisibilityPipeline(pool, store=store).run_assessment(request, assessment_id)
    except MaxVisibilityError as e:
        logger.error(f"❌ Assessment {assessment_id} failed ({e.code} at {e.stage}): {e.message}")
