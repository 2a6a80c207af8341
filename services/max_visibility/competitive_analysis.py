"""
Competitive landscape built from the answers of a MAX Visibility run
"""
import logging
import re
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# competitor mention rates are measured against a standard run size
ASSUMED_QUESTIONS = 50

SENTIMENT_VALUES = {
    "very_positive": 1.0,
    "positive": 0.5,
    "neutral": 0.0,
    "negative": -0.5,
    "very_negative": -1.0,
}

POSITIVE_WORDS = ("better", "best", "excellent", "superior", "leading", "innovative")
NEGATIVE_WORDS = ("worse", "poor", "limited", "expensive", "difficult", "lacking")

_NAME = r"([A-Z][\w&.-]*(?:\s+[A-Z][\w&.-]*){0,2})"
COMPETITOR_PATTERNS = [
    re.compile(r"(?i:compared?\s+to)\s+" + _NAME),
    re.compile(r"(?i:alternatives?\s+(?:like|such\s+as))\s+" + _NAME),
    re.compile(r"(?i:competitors?\s+including)\s+" + _NAME),
    re.compile(r"(?i:similar\s+to)\s+" + _NAME),
    re.compile(r"(?i:\bvs\.?)\s+" + _NAME),
]

INDUSTRY_COMPETITORS = {
    "technology": [
        ("Microsoft", "microsoft.com"), ("Google", "google.com"), ("Amazon", "amazon.com"),
        ("Apple", "apple.com"), ("Meta", "meta.com"), ("Salesforce", "salesforce.com"),
        ("HubSpot", "hubspot.com"), ("Slack", "slack.com"),
    ],
    "finance": [
        ("JPMorgan Chase", "jpmorganchase.com"), ("Goldman Sachs", "goldmansachs.com"),
        ("Bank of America", "bankofamerica.com"), ("Wells Fargo", "wellsfargo.com"),
        ("Stripe", "stripe.com"), ("Square", "squareup.com"), ("PayPal", "paypal.com"),
    ],
}

def domain_to_company_name(domain: str) -> str:
    domain = re.sub(r"^www\.", "", domain.lower())
    domain = re.sub(r"\.(com|org|net|io)$", "", domain)
    return " ".join(part.capitalize() for part in domain.split("."))

def guess_domain(name: str) -> str:
    return re.sub(r"\s+", "", name.lower()) + ".com"

def extract_competitor_mentions(text: str, company_name: str) -> List[Dict[str, Any]]:
    found = []
    for pattern in COMPETITOR_PATTERNS:
        for match in pattern.finditer(text or ""):
            name = match.group(1).strip().rstrip(".")
            if len(name) > 2 and name.lower() != company_name.lower():
                found.append({"name": name, "confidence": 0.7})
    return found

def industry_competitors(industry: Optional[str]) -> List[Dict[str, Any]]:
    return [
        {"name": name, "domain": domain, "confidence": 0.9, "detected_from": "industry_db"}
        for name, domain in INDUSTRY_COMPETITORS.get((industry or "").lower(), [])
    ]

def merge_competitors(detected: List[Dict[str, Any]], industry: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Detected competitors win; industry entries are added at 0.8x confidence"""
    merged = {c["name"].lower(): c for c in detected}
    for c in industry:
        merged.setdefault(c["name"].lower(), {**c, "confidence": round(c["confidence"] * 0.8, 4)})
    return list(merged.values())

def context_sentiment(text: str, name: str, window: int = 100) -> str:
    lower = (text or "").lower()
    idx = lower.find(name.lower())
    if idx == -1:
        return "neutral"
    context = lower[max(0, idx - window):idx + len(name) + window]
    positive = sum(1 for w in POSITIVE_WORDS if w in context)
    negative = sum(1 for w in NEGATIVE_WORDS if w in context)
    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"

def _mentioned(analysis: Dict[str, Any]) -> bool:
    return bool((analysis.get("mention_analysis") or {}).get("mention_detected"))

def _excerpt(text: str) -> str:
    return text[:500] + "..." if len(text) > 500 else text

class CompetitiveAnalyzer:
    def __init__(self, company_name: str, company_domain: str, industry: str = None,
                 known_competitors: List[str] = None):
        self.company_name = company_name
        self.company_domain = company_domain
        self.industry = industry
        self.known_competitors = known_competitors or []

    def detect_competitors(self, analyses: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        competitors: Dict[str, Dict[str, Any]] = {}

        for name in self.known_competitors:
            competitors.setdefault(name.lower(), {
                "name": name, "domain": guess_domain(name), "confidence": 0.9, "detected_from": "manual"
            })

        for analysis in analyses:
            mentions = extract_competitor_mentions(analysis.get("ai_response", ""), self.company_name)
            for name in (analysis.get("mention_analysis") or {}).get("competitors_mentioned") or []:
                if name.lower() != self.company_name.lower():
                    mentions.append({"name": name, "confidence": 0.7})
            for m in mentions:
                competitors.setdefault(m["name"].lower(), {
                    "name": m["name"], "domain": guess_domain(m["name"]),
                    "confidence": m["confidence"], "detected_from": "mention",
                })

            for citation in analysis.get("citation_analysis") or []:
                if citation.get("bucket") != "competitor":
                    continue
                name = domain_to_company_name(citation["domain"])
                competitors.setdefault(name.lower(), {
                    "name": name, "domain": citation["domain"],
                    "confidence": citation.get("influence_score") or 0.6, "detected_from": "citation",
                })

        return list(competitors.values())

    def competitor_metrics(self, competitor: Dict[str, Any], analyses: List[Dict[str, Any]]) -> Dict[str, Any]:
        name = competitor["name"].lower()
        hits = [a for a in analyses if name in (a.get("ai_response") or "").lower()]
        mention_rate = min(len(hits) / ASSUMED_QUESTIONS, 1.0)
        citation_count = sum(len(a.get("citation_analysis") or []) for a in hits)
        sentiments = [SENTIMENT_VALUES[context_sentiment(a["ai_response"], competitor["name"])] for a in hits]

        metrics = {
            "mention_count": len(hits),
            "mention_rate": round(mention_rate, 4),
            "mention_quality": 0.6,
            "source_influence": 0.7,
            "sentiment_average": round(sum(sentiments) / len(sentiments), 4) if sentiments else 0.0,
            "citation_count": citation_count,
            "owned_citations": 0,
            "operated_citations": 0,
            "earned_citations": citation_count,
            "ai_visibility_score": round(mention_rate * 0.7, 4),
        }
        samples = [{
            "question": a["question_text"],
            "ai_response": _excerpt(a["ai_response"]),
            "mention_detected": True,
            "mention_position": "secondary",
            "mention_sentiment": context_sentiment(a["ai_response"], competitor["name"]),
        } for a in hits[:3]]
        return {"competitor": competitor, "metrics": metrics, "sample_responses": samples}

    def target_metrics(self, analyses: List[Dict[str, Any]]) -> Dict[str, Any]:
        total = len(analyses)
        hits = [a for a in analyses if _mentioned(a)]
        citations = [c for a in analyses for c in (a.get("citation_analysis") or [])]
        breakdown = {"owned": 0, "operated": 0, "earned": 0, "competitor": 0}
        for c in citations:
            if c.get("bucket") in breakdown:
                breakdown[c["bucket"]] += 1
        influence = sum(c.get("influence_score", 0) for c in citations) / len(citations) if citations else 0.0
        sentiment = sum(SENTIMENT_VALUES.get(a["mention_analysis"].get("sentiment"), 0.0) for a in hits)
        rate = len(hits) / total if total else 0.0

        metrics = {
            "mention_count": len(hits),
            "mention_rate": round(rate, 4),
            "mention_quality": 0.8,
            "source_influence": round(influence, 4),
            "sentiment_average": round(sentiment / max(len(hits), 1), 4),
            "citation_count": len(citations),
            "owned_citations": breakdown["owned"],
            "operated_citations": breakdown["operated"],
            "earned_citations": breakdown["earned"],
            "ai_visibility_score": round(rate, 4),
        }
        samples = [{
            "question": a["question_text"],
            "ai_response": _excerpt(a["ai_response"]),
            "mention_detected": True,
            "mention_position": a["mention_analysis"].get("mention_position") or "secondary",
            "mention_sentiment": a["mention_analysis"].get("sentiment") or "neutral",
        } for a in hits[:3]]
        return {
            "competitor": {
                "name": self.company_name, "domain": self.company_domain,
                "confidence": 1.0, "detected_from": "manual", "industry": self.industry,
            },
            "metrics": metrics,
            "sample_responses": samples,
        }

    def analyze(self, analyses: List[Dict[str, Any]], max_competitors: int = 5,
                include_industry: bool = True) -> Dict[str, Any]:
        competitors = self.detect_competitors(analyses)
        if include_industry and self.industry:
            competitors = merge_competitors(competitors, industry_competitors(self.industry))
        competitors = sorted(competitors, key=lambda c: c["confidence"], reverse=True)[:max_competitors]

        target = self.target_metrics(analyses)
        others = [self.competitor_metrics(c, analyses) for c in competitors]
        rank_positions(target, others)

        return {
            "target_company": target,
            "competitors": others,
            "market_insights": market_insights([target] + others),
            "competitive_insights": competitive_insights(target, others),
            "benchmarking": benchmarking(target, others),
        }

    def competitive_questions(self, competitors: List[Dict[str, Any]], year: int) -> List[str]:
        name = self.company_name
        questions = []
        for c in competitors[:3]:
            other = c["name"]
            questions.extend([
                f"Compare {name} vs {other} for enterprise customers",
                f"What are the key differences between {name} and {other}?",
                f"Which is better for startups: {name} or {other}?",
                f"{name} vs {other}: pricing and features comparison",
                f"Why would someone choose {name} over {other}?",
            ])
        questions.extend([
            f"Top alternatives to {name} in {year}",
            f"Best competitors to {name}",
            f"{name} vs competition: comprehensive analysis",
            f"Market leaders in {self.industry or 'the industry'} besides {name}",
            f"Who are {name}'s biggest competitors?",
        ])
        return questions

def rank_positions(target: Dict[str, Any], competitors: List[Dict[str, Any]]):
    everyone = [target] + competitors
    total_mentions = sum(e["metrics"]["mention_count"] for e in everyone)
    ordered = sorted(everyone, key=lambda e: e["metrics"]["ai_visibility_score"], reverse=True)
    for entry in everyone:
        score = entry["metrics"]["ai_visibility_score"]
        entry["positioning"] = {
            "rank": sum(1 for e in ordered if e["metrics"]["ai_visibility_score"] > score) + 1,
            "share_of_voice": round(entry["metrics"]["mention_count"] / total_mentions, 4) if total_mentions else 0.0,
            "competitive_advantage": [],
            "competitive_weakness": [],
        }

    t = target["metrics"]
    for c in competitors:
        m = c["metrics"]
        for key in ("mention_rate", "source_influence", "sentiment_average"):
            if m[key] > t[key]:
                c["positioning"]["competitive_advantage"].append(key)
            elif m[key] < t[key]:
                c["positioning"]["competitive_weakness"].append(key)

def market_insights(entries: List[Dict[str, Any]]) -> Dict[str, Any]:
    by_score = sorted(entries, key=lambda e: e["metrics"]["ai_visibility_score"], reverse=True)
    return {
        "total_market_mentions": round(sum(e["metrics"]["mention_rate"] * ASSUMED_QUESTIONS for e in entries)),
        "market_leaders": [e["competitor"]["name"] for e in by_score[:3]],
        "emerging_players": [
            e["competitor"]["name"] for e in entries if 0.3 < e["metrics"]["ai_visibility_score"] < 0.7
        ],
        "market_sentiment": round(sum(e["metrics"]["sentiment_average"] for e in entries) / len(entries), 4),
        "key_themes": ["AI adoption", "Digital transformation", "Customer experience"],
    }

def competitive_insights(target: Dict[str, Any], competitors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    insights = []
    score = target["metrics"]["ai_visibility_score"]
    rank = sum(1 for c in competitors if c["metrics"]["ai_visibility_score"] > score) + 1

    if competitors and rank > len(competitors) / 2:
        insights.append({
            "category": "positioning",
            "title": "Visibility Gap Identified",
            "description": (
                f"Your AI visibility score ({score * 100:.1f}%) ranks {rank} out of "
                f"{len(competitors) + 1} competitors analyzed."
            ),
            "priority": "high",
            "actionable_steps": [
                "Increase thought leadership content creation",
                "Improve SEO and content distribution",
                "Build relationships with industry influencers",
            ],
            "data_points": {"current_rank": rank, "total_competitors": len(competitors) + 1, "visibility_score": score},
        })

    if competitors:
        market_avg = sum(c["metrics"]["sentiment_average"] for c in competitors) / len(competitors)
        target_sentiment = target["metrics"]["sentiment_average"]
        if target_sentiment < market_avg:
            insights.append({
                "category": "messaging",
                "title": "Sentiment Below Market Average",
                "description": (
                    f"Your brand sentiment ({target_sentiment:.2f}) is below the market average ({market_avg:.2f})."
                ),
                "priority": "medium",
                "actionable_steps": [
                    "Review recent customer feedback and PR",
                    "Improve customer success initiatives",
                    "Address any recent negative coverage",
                ],
                "data_points": {"target_sentiment": target_sentiment, "market_average": round(market_avg, 4)},
            })
    return insights

def benchmarking(target: Dict[str, Any], competitors: List[Dict[str, Any]]) -> Dict[str, Any]:
    scores = [e["metrics"]["ai_visibility_score"] for e in [target] + competitors]
    average = sum(scores) / len(scores)
    score = target["metrics"]["ai_visibility_score"]
    rank = sorted(scores, reverse=True).index(score) + 1
    percentile = (len(scores) - rank + 1) / len(scores) * 100

    gaps = []
    if target["metrics"]["mention_rate"] < average:
        gaps.append("Increase brand mention frequency in AI responses")
    if target["metrics"]["source_influence"] < 0.7:
        gaps.append("Build authority through high-influence source relationships")

    return {
        "industry_average": round(average, 4),
        "target_percentile": round(percentile, 2),
        "gaps_and_opportunities": gaps,
    }
