"""
MAX Visibility scoring: component scores, weighted total, history, benchmarks
"""
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from config.app_config import get_config

DEFAULT_WEIGHTS = {
    "mention_rate": 0.40,
    "mention_quality": 0.25,
    "source_influence": 0.20,
    "competitive_positioning": 0.10,
    "response_consistency": 0.05,
}

POSITION_SCORES = {"primary": 1.0, "secondary": 0.7, "passing": 0.3, "none": 0.0}
SENTIMENT_MULTIPLIERS = {
    "very_positive": 1.3,
    "positive": 1.1,
    "neutral": 1.0,
    "negative": 0.7,
    "very_negative": 0.4,
}

# question-level scoring rewards a passing mention a little more
QUESTION_POSITION_SCORES = {"primary": 1.0, "secondary": 0.7, "passing": 0.4, "none": 0.0}
TYPE_WEIGHTS = {
    "direct": 1.0,
    "indirect": 0.8,
    "comparison": 1.2,
    "recommendation": 1.1,
    "explanatory": 0.7,
}

COMPETITIVE_TERMS = re.compile(r"\bvs\.?\b|compare|alternative", re.IGNORECASE)

INDUSTRY_BENCHMARKS = {
    "technology": {"average": 0.72, "p90": 0.88, "p75": 0.80, "p50": 0.72, "p25": 0.64, "p10": 0.55, "sample_size": 1247},
    "finance": {"average": 0.68, "p90": 0.85, "p75": 0.76, "p50": 0.68, "p25": 0.60, "p10": 0.52, "sample_size": 892},
    "healthcare": {"average": 0.65, "p90": 0.82, "p75": 0.73, "p50": 0.65, "p25": 0.57, "p10": 0.48, "sample_size": 634},
}

def scoring_weights() -> Dict[str, float]:
    weights = dict(DEFAULT_WEIGHTS)
    weights.update(get_config().get_scoring_weights())
    return weights

def mentioned(analysis: Dict[str, Any]) -> bool:
    return bool((analysis.get("mention_analysis") or {}).get("mention_detected"))

def mention_quality(mention: Dict[str, Any]) -> float:
    base = POSITION_SCORES.get(mention.get("mention_position"), 0.0)
    multiplier = SENTIMENT_MULTIPLIERS.get(mention.get("sentiment"), 1.0)
    confidence = mention.get("confidence") or 0.8
    return max(0.0, min(1.0, base * multiplier * confidence))

def is_competitive_question(analysis: Dict[str, Any]) -> bool:
    return analysis.get("question_type") == "comparison" or bool(
        COMPETITIVE_TERMS.search(analysis.get("question_text") or "")
    )

def competitive_score(analyses: List[Dict[str, Any]]) -> float:
    competitive = [a for a in analyses if is_competitive_question(a)]
    if not competitive:
        return 0.5
    scores = [mention_quality(a["mention_analysis"]) if mentioned(a) else 0.0 for a in competitive]
    return sum(scores) / len(scores)

def consistency_score(analyses: List[Dict[str, Any]]) -> float:
    hits = [a["mention_analysis"] for a in analyses if mentioned(a)]
    if len(hits) < 2:
        return 1.0
    sentiments = {m.get("sentiment") for m in hits}
    positions = {m.get("mention_position") for m in hits}
    sentiment_consistency = 1 - (len(sentiments) - 1) / 4
    position_consistency = 1 - (len(positions) - 1) / 3
    return max(0.2, (sentiment_consistency + position_consistency) / 2)

def citation_breakdown(citations: List[Dict[str, Any]]) -> Dict[str, int]:
    breakdown = {"owned": 0, "operated": 0, "earned": 0, "competitor": 0}
    for c in citations:
        if c.get("bucket") in breakdown:
            breakdown[c["bucket"]] += 1
    return breakdown

def question_score(mention: Dict[str, Any], citations: List[Dict[str, Any]], question_type: str) -> float:
    score = 0.0
    if mention.get("mention_detected"):
        score += QUESTION_POSITION_SCORES.get(mention.get("mention_position"), 0.0)
    if mention.get("sentiment") in ("positive", "very_positive"):
        score *= 1.2
    if citations:
        score += sum(c.get("influence_score", 0) for c in citations) / len(citations) * 0.3
    score *= TYPE_WEIGHTS.get(question_type, 1.0)
    return round(min(score, 1.0), 4)

def calculate_scores(analyses: List[Dict[str, Any]], weights: Dict[str, float] = None) -> Dict[str, Any]:
    weights = weights or scoring_weights()
    total = len(analyses)
    hits = [a for a in analyses if mentioned(a)]

    rate = len(hits) / total if total else 0.0
    qualities = [mention_quality(a["mention_analysis"]) for a in hits]
    quality = sum(qualities) / len(qualities) if qualities else 0.0
    citations = [c for a in analyses for c in (a.get("citation_analysis") or [])]
    influence = sum(c.get("influence_score", 0) for c in citations) / len(citations) if citations else 0.0

    components = {
        "mention_rate": rate,
        "mention_quality": quality,
        "source_influence": influence,
        "competitive_positioning": competitive_score(analyses),
        "response_consistency": consistency_score(analyses),
    }
    overall = sum(components[k] * weights[k] for k in DEFAULT_WEIGHTS)

    scores = {k: round(v, 4) for k, v in components.items()}
    scores.update({
        "overall_score": round(overall, 4),
        "total_questions": total,
        "mentioned_questions": len(hits),
        "citation_breakdown": citation_breakdown(citations),
        "calculated_at": datetime.now(timezone.utc).isoformat(),
    })
    return scores

def historical_comparison(current: float, previous: Optional[float]) -> Optional[Dict[str, Any]]:
    if not previous:
        return None
    change = current - previous
    trend = "stable"
    if abs(change) > 0.01:
        trend = "improving" if change > 0 else "declining"
    return {
        "previous_score": previous,
        "change": round(change, 4),
        "change_percentage": round(change / previous * 100, 2) if previous > 0 else 0.0,
        "trend": trend,
    }

def industry_benchmark(score: float, industry: Optional[str]) -> Optional[Dict[str, Any]]:
    benchmark = INDUSTRY_BENCHMARKS.get((industry or "").lower())
    if not benchmark:
        return None

    if score >= benchmark["p90"]:
        percentile = 95
    elif score >= benchmark["p75"]:
        percentile = 80
    elif score >= benchmark["p50"]:
        percentile = 60
    elif score >= benchmark["p25"]:
        percentile = 30
    else:
        percentile = 15

    return {
        "industry": industry.lower(),
        "industry_average": benchmark["average"],
        "percentile": percentile,
        "ranking": max(1, math.ceil(benchmark["sample_size"] * (100 - percentile) / 100)),
        "total_companies": benchmark["sample_size"],
    }

def score_recommendations(scores: Dict[str, Any], historical: Optional[Dict[str, Any]] = None,
                          benchmark: Optional[Dict[str, Any]] = None) -> List[str]:
    recs = []
    if scores["mention_rate"] < 0.3:
        recs.append("🎯 Focus on increasing brand mentions - create more discussion-worthy content and thought leadership pieces")
    if scores["mention_quality"] < 0.5:
        recs.append("✨ Improve mention quality by enhancing brand sentiment through better customer experiences and PR")
    if scores["source_influence"] < 0.4:
        recs.append("🔗 Build relationships with high-authority sources and influencers in your industry")
    if scores["competitive_positioning"] < 0.5:
        recs.append("⚔️ Strengthen competitive differentiation and improve performance in comparison scenarios")
    if scores["response_consistency"] < 0.7:
        recs.append("🎭 Work on brand consistency across all touchpoints and messaging")
    if historical and historical["trend"] == "declining":
        recs.append("📉 Address declining trend - review recent changes and competitor activities")
    if benchmark and benchmark["percentile"] < 50:
        recs.append(f"📊 Performance below industry median - focus on best practices from top {benchmark['industry']} performers")
    return recs

def explain_components(scores: Dict[str, Any], analyses: List[Dict[str, Any]]) -> Dict[str, str]:
    pct = {k: round(scores[k] * 100) for k in DEFAULT_WEIGHTS}
    n_citations = sum(len(a.get("citation_analysis") or []) for a in analyses)
    n_competitive = sum(1 for a in analyses if is_competitive_question(a))
    return {
        "mention_rate": (
            f"Your brand was mentioned in {scores['mentioned_questions']} out of {scores['total_questions']} "
            f"AI responses ({pct['mention_rate']}%)."
        ),
        "mention_quality": (
            f"Average quality of mentions scored {pct['mention_quality']}%, combining mention position, "
            f"sentiment and analysis confidence."
        ),
        "source_influence": f"Source influence scored {pct['source_influence']}% across {n_citations} citations.",
        "competitive_positioning": (
            f"Competitive positioning scored {pct['competitive_positioning']}% across {n_competitive} competitive scenarios."
        ),
        "response_consistency": (
            f"Response consistency scored {pct['response_consistency']}% across question types."
        ),
    }

def calculation_details(scores: Dict[str, Any], weights: Dict[str, float]) -> List[str]:
    lines = []
    for key in DEFAULT_WEIGHTS:
        label = key.replace("_", " ").title()
        lines.append(
            f"{label}: {scores[key] * 100:.1f}% x {weights[key] * 100:g}% weight = "
            f"{scores[key] * weights[key] * 100:.1f} points"
        )
    return lines

def score_breakdown(analyses: List[Dict[str, Any]], previous_score: Optional[float] = None,
                    industry: Optional[str] = None, weights: Dict[str, float] = None) -> Dict[str, Any]:
    weights = weights or scoring_weights()
    scores = calculate_scores(analyses, weights)
    historical = historical_comparison(scores["overall_score"], previous_score)
    benchmark = industry_benchmark(scores["overall_score"], industry)
    explanations = explain_components(scores, analyses)

    return {
        "overall_score": scores["overall_score"],
        "scores": scores,
        "component_scores": {
            k: {"score": scores[k], "weight": weights[k], "explanation": explanations[k]}
            for k in DEFAULT_WEIGHTS
        },
        "historical_comparison": historical,
        "industry_benchmark": benchmark,
        "recommendations": score_recommendations(scores, historical, benchmark),
        "calculation_details": calculation_details(scores, weights),
    }
