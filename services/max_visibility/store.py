"""
Persistence for MAX Visibility runs, questions, responses, citations and metrics
"""
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

SENTIMENT_VALUES = {
    "very_positive": 1.0,
    "positive": 0.5,
    "neutral": 0.0,
    "negative": -0.5,
    "very_negative": -1.0,
}

_RUN_COLUMNS = """
    r.id, r.company_id, r.status, r.total_score, r.mention_rate, r.sentiment_score,
    r.citation_score, r.competitive_score, r.consistency_score,
    r.progress_percentage, r.progress_stage, r.progress_message, r.error_message,
    r.scores, r.triggered_by, r.started_at, r.completed_at,
    c.company_name, c.root_url, c.industry, c.description
"""

def average_sentiment(analyses: List[Dict[str, Any]]) -> float:
    hits = [a["mention_analysis"] for a in analyses if a["mention_analysis"].get("mention_detected")]
    if not hits:
        return 0.0
    return sum(SENTIMENT_VALUES.get(m.get("sentiment"), 0.0) for m in hits) / len(hits)

def _row(row) -> Optional[Dict[str, Any]]:
    if not row:
        return None
    data = dict(row)
    if isinstance(data.get("scores"), str):
        data["scores"] = json.loads(data["scores"])
    return data

class MaxVisibilityStore:
    def __init__(self, pool):
        self.pool = pool

    # Companies
    async def find_or_create_company(self, user_id: str, name: str, domain: str) -> Dict[str, Any]:
        root_url = domain if domain.startswith("http") else f"https://{domain}"
        async with self.pool.acquire() as con:
            row = await con.fetchrow("""
                SELECT id, company_name, root_url, industry, description
                FROM companies
                WHERE root_url = ANY($1::text[])
                LIMIT 1
            """, [domain, f"https://{domain}", f"http://{domain}"])
            if row:
                return dict(row)
            row = await con.fetchrow("""
                INSERT INTO companies (company_name, root_url, created_by)
                VALUES ($1, $2, $3)
                RETURNING id, company_name, root_url, industry, description
            """, name or "Unknown Company", root_url, user_id)
        logger.info(f"Company {row['id']} created for {domain}")
        return dict(row)

    async def get_company(self, company_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        """Company visible to the user through one of their workspaces or because they created it"""
        async with self.pool.acquire() as con:
            row = await con.fetchrow("""
                SELECT c.id, c.company_name, c.root_url
                FROM companies c
                WHERE c.id = $1
                  AND (c.created_by = $2 OR EXISTS (
                      SELECT 1 FROM workspaces w
                      WHERE w.user_id = $2
                        AND c.root_url IN (w.domain, 'https://' || w.domain, 'http://' || w.domain)
                  ))
            """, company_id, user_id)
        return dict(row) if row else None

    # Runs
    async def create_run(self, company_id: str, user_id: str) -> str:
        async with self.pool.acquire() as con:
            run_id = await con.fetchval("""
                INSERT INTO max_visibility_runs (
                    company_id, status, total_score, mention_rate, progress_percentage,
                    progress_stage, progress_message, triggered_by, started_at
                ) VALUES ($1, 'pending', 0, 0, 0, 'setup', 'Assessment starting...', $2, NOW())
                RETURNING id
            """, company_id, user_id)
        return str(run_id)

    async def update_progress(self, run_id: str, percentage: int, stage: str, message: str,
                              status: str = "running"):
        async with self.pool.acquire() as con:
            await con.execute("""
                UPDATE max_visibility_runs
                SET status = $2, progress_percentage = $3, progress_stage = $4,
                    progress_message = $5, updated_at = NOW()
                WHERE id = $1
            """, run_id, status, percentage, stage, message)

    async def fail_run(self, run_id: str, message: str):
        async with self.pool.acquire() as con:
            await con.execute("""
                UPDATE max_visibility_runs
                SET status = 'failed', progress_stage = 'failed', progress_message = $2,
                    error_message = $2, completed_at = NOW(), updated_at = NOW()
                WHERE id = $1
            """, run_id, message[:500])

    async def get_run(self, run_id: str, user_id: str = None) -> Optional[Dict[str, Any]]:
        query = f"""
            SELECT {_RUN_COLUMNS}
            FROM max_visibility_runs r
            JOIN companies c ON c.id = r.company_id
            WHERE r.id = $1
        """
        args = [run_id]
        if user_id:
            query += " AND r.triggered_by = $2"
            args.append(user_id)
        async with self.pool.acquire() as con:
            row = await con.fetchrow(query, *args)
        return _row(row)

    async def get_status(self, run_id: str) -> Optional[str]:
        async with self.pool.acquire() as con:
            return await con.fetchval("SELECT status FROM max_visibility_runs WHERE id = $1", run_id)

    async def list_runs(self, user_id: str, company_id: str = None, limit: int = 10,
                        offset: int = 0) -> Dict[str, Any]:
        where = "r.triggered_by = $1"
        args: List[Any] = [user_id]
        if company_id:
            where += " AND r.company_id = $2"
            args.append(company_id)

        async with self.pool.acquire() as con:
            total = await con.fetchval(f"SELECT COUNT(*) FROM max_visibility_runs r WHERE {where}", *args)
            rows = await con.fetch(f"""
                SELECT {_RUN_COLUMNS}
                FROM max_visibility_runs r
                JOIN companies c ON c.id = r.company_id
                WHERE {where}
                ORDER BY r.started_at DESC
                LIMIT {int(limit)} OFFSET {int(offset)}
            """, *args)
        return {"assessments": [_row(r) for r in rows], "total": total or 0}

    async def previous_score(self, company_id: str, exclude_run_id: str) -> Optional[float]:
        async with self.pool.acquire() as con:
            score = await con.fetchval("""
                SELECT (scores->>'overall_score')::float
                FROM max_visibility_runs
                WHERE company_id = $1 AND status = 'completed' AND id <> $2
                ORDER BY completed_at DESC
                LIMIT 1
            """, company_id, exclude_run_id)
        return score

    async def score_history(self, company_id: str, days: int = 90) -> List[Dict[str, Any]]:
        since = datetime.now(timezone.utc) - timedelta(days=days)
        async with self.pool.acquire() as con:
            rows = await con.fetch("""
                SELECT id, completed_at, scores
                FROM max_visibility_runs
                WHERE company_id = $1 AND status = 'completed' AND completed_at >= $2
                ORDER BY completed_at
            """, company_id, since)
        return [_row(r) for r in rows]

    # Questions and responses
    async def save_questions(self, run_id: str, questions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        saved = []
        async with self.pool.acquire() as con:
            for position, q in enumerate(questions, start=1):
                question_id = await con.fetchval("""
                    INSERT INTO max_visibility_questions (run_id, question, question_type, position)
                    VALUES ($1, $2, $3, $4)
                    RETURNING id
                """, run_id, q["question"], q["type"], position)
                saved.append({**q, "id": str(question_id)})
        return saved

    async def save_question_analysis(self, analysis: Dict[str, Any]) -> Optional[str]:
        mention = analysis["mention_analysis"]
        async with self.pool.acquire() as con:
            async with con.transaction():
                response_id = await con.fetchval("""
                    INSERT INTO max_visibility_responses (
                        question_id, perplexity_response_id, full_response, response_length,
                        mention_detected, mention_position, mention_sentiment, mention_context,
                        mention_confidence, citation_count, response_quality_score, analyzed_at
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, NOW())
                    RETURNING id
                """, analysis["question_id"], analysis.get("response_id"), analysis["ai_response"],
                    len(analysis["ai_response"]), mention["mention_detected"], mention["mention_position"],
                    mention["sentiment"], mention.get("mention_context"), mention["confidence"],
                    len(analysis["citations"]), analysis["question_score"] * 100)

                if analysis["citation_analysis"]:
                    await con.executemany("""
                        INSERT INTO max_visibility_citations (
                            response_id, citation_url, citation_title, citation_domain, bucket,
                            influence_score, relevance_score, position_in_citations
                        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    """, [
                        (response_id, c["url"], c.get("title") or None, c["domain"], c["bucket"],
                         c["influence_score"], c["relevance_score"], i)
                        for i, c in enumerate(analysis["citation_analysis"], start=1)
                    ])
        return str(response_id)

    async def get_question_analyses(self, run_id: str) -> List[Dict[str, Any]]:
        async with self.pool.acquire() as con:
            rows = await con.fetch("""
                SELECT q.id AS question_id, q.question, q.question_type, q.position,
                       r.id AS response_id, r.full_response, r.mention_detected, r.mention_position,
                       r.mention_sentiment, r.mention_context, r.mention_confidence,
                       r.citation_count, r.response_quality_score
                FROM max_visibility_questions q
                LEFT JOIN max_visibility_responses r ON r.question_id = q.id
                WHERE q.run_id = $1
                ORDER BY q.position
            """, run_id)
            citations = await con.fetch("""
                SELECT c.response_id, c.citation_url, c.citation_title, c.citation_domain, c.bucket,
                       c.influence_score, c.relevance_score
                FROM max_visibility_citations c
                JOIN max_visibility_responses r ON r.id = c.response_id
                JOIN max_visibility_questions q ON q.id = r.question_id
                WHERE q.run_id = $1
                ORDER BY c.position_in_citations
            """, run_id)

        by_response: Dict[Any, List[Dict[str, Any]]] = {}
        for c in citations:
            by_response.setdefault(c["response_id"], []).append({
                "url": c["citation_url"],
                "title": c["citation_title"] or "",
                "domain": c["citation_domain"],
                "bucket": c["bucket"],
                "influence_score": c["influence_score"],
                "relevance_score": c["relevance_score"],
            })

        analyses = []
        for r in rows:
            analyses.append({
                "question_id": str(r["question_id"]),
                "question_text": r["question"],
                "question_type": r["question_type"],
                "ai_response": r["full_response"] or "",
                "mention_analysis": {
                    "mention_detected": bool(r["mention_detected"]),
                    "mention_position": r["mention_position"] or "none",
                    "sentiment": r["mention_sentiment"] or "neutral",
                    "mention_context": r["mention_context"],
                    "confidence": r["mention_confidence"] or 0,
                },
                "citation_analysis": by_response.get(r["response_id"], []),
                "question_score": (r["response_quality_score"] or 0) / 100,
            })
        return analyses

    # Results
    async def save_competitors(self, run_id: str, competitors: List[Dict[str, Any]]):
        if not competitors:
            return
        async with self.pool.acquire() as con:
            await con.executemany("""
                INSERT INTO max_visibility_competitors (
                    run_id, competitor_name, competitor_domain, mention_count, visibility_score, rank_position
                ) VALUES ($1, $2, $3, $4, $5, $6)
            """, [
                (run_id, c["name"], c.get("domain"), c.get("mention_count", 0),
                 c.get("visibility_score", 0.0), i)
                for i, c in enumerate(competitors, start=1)
            ])

    async def get_competitors(self, run_id: str) -> List[Dict[str, Any]]:
        async with self.pool.acquire() as con:
            rows = await con.fetch("""
                SELECT competitor_name, competitor_domain, mention_count, visibility_score, rank_position
                FROM max_visibility_competitors WHERE run_id = $1 ORDER BY rank_position
            """, run_id)
        return [dict(r) for r in rows]

    async def save_metrics(self, run_id: str, metrics: List[Dict[str, Any]]):
        async with self.pool.acquire() as con:
            await con.executemany("""
                INSERT INTO max_visibility_metrics (run_id, metric_name, metric_value, metric_unit, metric_category)
                VALUES ($1, $2, $3, $4, $5)
            """, [
                (run_id, m["metric_name"], m["metric_value"], m["metric_unit"], m["metric_category"])
                for m in metrics
            ])

    async def complete_run(self, run_id: str, scores: Dict[str, Any], analyses: List[Dict[str, Any]]):
        async with self.pool.acquire() as con:
            updated = await con.fetchval("""
                UPDATE max_visibility_runs
                SET status = 'completed', total_score = $2, mention_rate = $3, sentiment_score = $4,
                    citation_score = $5, competitive_score = $6, consistency_score = $7,
                    scores = $8::jsonb, progress_percentage = 100, progress_stage = 'complete',
                    progress_message = 'Assessment complete!', completed_at = NOW(), updated_at = NOW()
                WHERE id = $1
                RETURNING id
            """, run_id, round(scores["overall_score"] * 100), scores["mention_rate"],
                average_sentiment(analyses), round(scores["source_influence"] * 100),
                round(scores["competitive_positioning"] * 100), round(scores["response_consistency"] * 100),
                json.dumps(scores))
        if not updated:
            raise LookupError(f"Assessment record not found: {run_id}")

    async def ping(self):
        async with self.pool.acquire() as con:
            await con.fetchval("SELECT id FROM max_visibility_runs LIMIT 1")
