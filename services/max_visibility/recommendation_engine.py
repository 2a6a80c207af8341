"""
MAX Visibility recommendations

Turns a completed assessment (scores + question analyses), optionally enriched with the
trend summary and the competitive landscape, into a prioritised improvement report.
"""
import logging
import math
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

EFFORT_THRESHOLDS = {"low": 0.4, "medium": 0.7, "high": 1.0}

TOPIC_RULES = [
    ("Pricing", re.compile(r"price|pricing|cost", re.IGNORECASE)),
    ("Features", re.compile(r"feature|capabilit", re.IGNORECASE)),
    ("Competitive Comparison", re.compile(r"compare|\bvs\.?\b", re.IGNORECASE)),
    ("Implementation", re.compile(r"integrat|implementation", re.IGNORECASE)),
]

def _rec_id(kind: str) -> str:
    return f"{kind}_{uuid.uuid4().hex[:12]}"

def _pct(value: float) -> str:
    return f"{value * 100:.1f}%"

def priority_score(impact: float, effort: float) -> float:
    return min((impact / max(effort, 0.1)) / 10, 1.0)

def mention_detected(analysis: Dict[str, Any]) -> bool:
    mention = analysis.get("mention_analysis")
    if isinstance(mention, bool):
        return mention
    if isinstance(mention, dict):
        return bool(mention.get("mention_detected"))
    return False

def question_topic(question: str) -> str:
    for topic, pattern in TOPIC_RULES:
        if pattern.search(question or ""):
            return topic
    return "General"

def topic_performance(analyses: List[Dict[str, Any]]) -> Dict[str, Dict[str, float]]:
    counts: Dict[str, List[int]] = {}
    for a in analyses:
        hits = counts.setdefault(question_topic(a.get("question_text", "")), [0, 0])
        hits[0] += 1
        if mention_detected(a):
            hits[1] += 1
    return {topic: {"count": total, "mention_rate": hit / total} for topic, (total, hit) in counts.items()}

def weak_question_types(analyses: List[Dict[str, Any]], threshold: float = 0.4) -> List[str]:
    by_type: Dict[str, List[bool]] = {}
    for a in analyses:
        by_type.setdefault(a.get("question_type") or "unknown", []).append(mention_detected(a))
    return [t for t, hits in by_type.items() if sum(hits) / len(hits) < threshold]

def field_size(competitive: Dict[str, Any]) -> int:
    return len(competitive.get("competitors") or []) + 1

def target_rank(competitive: Dict[str, Any]) -> int:
    return competitive["target_company"].get("positioning", {}).get("rank", 1)

def analysis_summary(scores: Dict[str, Any], trend: Dict[str, Any] = None,
                     competitive: Dict[str, Any] = None) -> Dict[str, Any]:
    strengths = []
    if scores["mention_rate"] > 0.6:
        strengths.append("Strong brand mention frequency")
    if scores["mention_quality"] > 0.7:
        strengths.append("High-quality brand mentions")
    if scores["source_influence"] > 0.7:
        strengths.append("Citations from authoritative sources")
    if scores["competitive_positioning"] > 0.6:
        strengths.append("Good competitive positioning")
    if scores["response_consistency"] > 0.8:
        strengths.append("Consistent brand messaging")

    weaknesses = []
    if scores["mention_rate"] < 0.4:
        weaknesses.append("Low brand mention frequency")
    if scores["mention_quality"] < 0.5:
        weaknesses.append("Poor mention sentiment/quality")
    if scores["source_influence"] < 0.5:
        weaknesses.append("Limited high-authority citations")
    if scores["competitive_positioning"] < 0.4:
        weaknesses.append("Weak competitive positioning")
    if scores["response_consistency"] < 0.6:
        weaknesses.append("Inconsistent brand messaging")

    position = "developing"
    if competitive:
        rank, total = target_rank(competitive), field_size(competitive)
        if rank <= total * 0.2:
            position = "market_leader"
        elif rank <= total * 0.4:
            position = "strong_player"
        elif rank <= total * 0.7:
            position = "emerging_player"

    return {
        "overall_health_score": scores["overall_score"],
        "primary_strengths": strengths[:3],
        "critical_weaknesses": weaknesses[:3],
        "market_position": position,
        "trend_direction": trend["overall_trend"]["trend_direction"] if trend else "stable",
    }

def _recommendation(kind: str, category: str, title: str, description: str, impact: float, effort: float,
                    confidence: float, timeline: str, difficulty: str, **details) -> Dict[str, Any]:
    rec = {
        "id": _rec_id(kind),
        "category": category,
        "title": title,
        "description": description,
        "impact_score": impact,
        "effort_score": effort,
        "priority_score": priority_score(impact, effort),
        "confidence_score": confidence,
        "timeline": timeline,
        "difficulty": difficulty,
        "actionable_steps": [],
        "success_metrics": [],
        "required_resources": [],
        "estimated_time_investment": None,
        "potential_risks": [],
        "supporting_evidence": {},
        "dependencies": [],
        "synergies": [],
        "alternatives": [],
    }
    rec.update(details)
    return rec

def content_frequency(scores: Dict[str, Any]) -> Dict[str, Any]:
    rate = scores["mention_rate"]
    target = rate + min(0.3, 0.8 - rate)
    return _recommendation(
        "content_frequency", "content", "Increase Content Creation Frequency",
        f"Your brand mention rate ({_pct(rate)}) is below optimal levels. "
        "Increasing content creation can improve visibility.",
        0.8, 0.6, 0.9, "short_term", "intermediate",
        actionable_steps=[
            "Audit current content calendar and identify gaps",
            "Increase publication frequency by 2-3x in high-performing topics",
            "Focus on conversational, Q&A style content",
            "Establish thought leadership in 2-3 core topics",
            "Create content series addressing common questions",
        ],
        success_metrics=[
            f"Increase mention rate to {_pct(target)}",
            "Improve overall visibility score by 15-25%",
            "Achieve mentions in 60%+ of relevant AI responses",
        ],
        required_resources=[
            "Content creation team or freelancers",
            "SEO tools for keyword research",
            "4-6 hours per week for content planning",
        ],
        estimated_time_investment="2-3 months for full impact",
        potential_risks=[
            "Quality may suffer if quantity increases too rapidly",
            "May take 6-8 weeks to see visibility improvements",
        ],
        supporting_evidence={
            "current_performance": {"mention_rate": rate, "questions_analyzed": scores.get("total_questions", 0)},
            "benchmark_data": {"industry_average": 0.5, "top_performers": 0.75},
        },
        synergies=["technical_seo", "authority_building"],
        alternatives=["paid_content_promotion", "influencer_partnerships"],
    )

def sentiment_improvement(scores: Dict[str, Any]) -> Dict[str, Any]:
    quality = scores["mention_quality"]
    return _recommendation(
        "sentiment_improvement", "strategic", "Improve Brand Sentiment & Mention Quality",
        f"Your mention quality score ({_pct(quality)}) indicates opportunities to improve "
        "how your brand is perceived in AI responses.",
        0.7, 0.7, 0.8, "medium_term", "intermediate",
        actionable_steps=[
            "Analyze negative mentions to identify improvement areas",
            "Develop customer success stories and case studies",
            "Create educational content addressing common concerns",
            "Implement reputation management monitoring",
        ],
        success_metrics=[
            "Increase mention quality score to 75%+",
            "Reduce negative sentiment mentions by 50%",
            "Increase positive case study citations",
        ],
        required_resources=["PR/reputation management team", "Customer success insights", "Social listening tools"],
        estimated_time_investment="3-6 months for sustained improvement",
        potential_risks=[
            "Addressing negative perceptions takes time",
            "Results depend on actual product/service improvements",
        ],
        supporting_evidence={"current_performance": {"mention_quality": quality}},
        synergies=["content_creation", "customer_experience"],
        alternatives=["crisis_communication", "influencer_endorsements"],
    )

def authority_building(scores: Dict[str, Any]) -> Dict[str, Any]:
    influence = scores["source_influence"]
    return _recommendation(
        "authority_building", "pr", "Build High-Authority Source Relationships",
        f"Your source influence score ({_pct(influence)}) suggests opportunities to gain "
        "citations from more authoritative sources.",
        0.8, 0.9, 0.7, "long_term", "advanced",
        actionable_steps=[
            "Identify top-tier publications in your industry",
            "Develop relationships with key journalists and editors",
            "Create newsworthy research and industry reports",
            "Participate in industry conferences and panels",
        ],
        success_metrics=[
            "Increase source influence score to 70%+",
            "Gain citations from 5+ tier-1 publications",
            "Establish 3+ ongoing media relationships",
        ],
        required_resources=["PR team or agency", "Executive time for thought leadership", "Media monitoring tools"],
        estimated_time_investment="6-12 months for significant impact",
        potential_risks=[
            "High effort with uncertain outcome",
            "Requires consistent long-term commitment",
        ],
        supporting_evidence={"current_performance": {"source_influence": influence}},
        dependencies=["content_creation"],
        synergies=["thought_leadership", "industry_research"],
        alternatives=["influencer_partnerships", "podcast_appearances"],
    )

def competitive_improvement(competitive: Dict[str, Any]) -> Dict[str, Any]:
    rank, total = target_rank(competitive), field_size(competitive)
    target_score = competitive["target_company"]["metrics"]["ai_visibility_score"]
    competitors = competitive["competitors"]
    top = max(competitors, key=lambda c: c["metrics"]["ai_visibility_score"])
    top_name = top["competitor"]["name"]
    top_score = top["metrics"]["ai_visibility_score"]
    average = sum(c["metrics"]["ai_visibility_score"] for c in competitors) / len(competitors)

    gaps = []
    if target_score > 0:
        gaps.append(f"{top_name} outperforms by {(top_score / target_score - 1) * 100:.0f}%")
    else:
        gaps.append(f"{top_name} is visible where you are not mentioned at all")

    return _recommendation(
        "competitive_improvement", "competitive", "Improve Competitive Market Position",
        f"Currently ranking #{rank} out of {total} competitors. Focus on areas where top performers excel.",
        0.9, 0.8, 0.8, "medium_term", "advanced",
        actionable_steps=[
            f"Analyze {top_name}'s content strategy and messaging",
            "Identify competitive gaps in key topic areas",
            "Develop differentiated positioning strategy",
            "Create comparison-focused content addressing competitive scenarios",
        ],
        success_metrics=[
            f"Improve competitive ranking to top {math.ceil(total * 0.3)} positions",
            f"Increase AI visibility score by {max(top_score - target_score, 0) * 0.5 * 100:.0f}%",
            "Achieve mentions in 70%+ of competitive comparison queries",
        ],
        required_resources=["Competitive intelligence team", "Content strategy specialists",
                            "Ongoing competitor monitoring tools"],
        estimated_time_investment="4-6 months for measurable improvement",
        potential_risks=[
            "Competitor strategies may change during implementation",
            "Market dynamics can shift competitive landscape",
        ],
        supporting_evidence={
            "current_performance": {"competitive_rank": rank, "visibility_score": target_score,
                                    "total_competitors": total},
            "benchmark_data": {"top_performer_score": top_score, "average_competitor_score": round(average, 4)},
            "competitive_gaps": gaps,
        },
        dependencies=["content_creation", "messaging_consistency"],
        synergies=["authority_building", "thought_leadership"],
        alternatives=["niche_positioning", "blue_ocean_strategy"],
    )

def trend_reversal(trend: Dict[str, Any]) -> Dict[str, Any]:
    overall = trend["overall_trend"]
    decline = abs(overall["change_percentage"])
    current = overall["current_value"]
    return _recommendation(
        "trend_reversal", "strategic", "Reverse Declining Performance Trend",
        f"Your AI visibility is trending {overall['trend_direction']} with a {decline:.1f}% decline. "
        "Immediate intervention required.",
        0.9, 0.7, 0.85, "immediate", "intermediate",
        actionable_steps=[
            "Audit recent changes that may have caused the decline",
            "Implement emergency content production plan for high-impact topics",
            "Review and address any negative sentiment or PR issues",
            "Analyze competitor activities that may be affecting market share",
        ],
        success_metrics=[
            "Stop decline within 2-4 weeks",
            f"Recover to baseline performance ({current * 1.1:.2f}) within 8 weeks",
            "Achieve positive trend direction within 3 months",
        ],
        required_resources=["Dedicated rapid response team", "Emergency content creation budget",
                            "Enhanced monitoring and alerting"],
        estimated_time_investment="2-3 months for trend reversal and stabilization",
        potential_risks=[
            "Underlying issues may require more than marketing fixes",
            "Market conditions may be causing broader industry decline",
        ],
        supporting_evidence={
            "current_performance": {"trend_direction": overall["trend_direction"],
                                    "change_percentage": overall["change_percentage"],
                                    "current_score": current},
            "trend_indicators": [
                f"{decline:.1f}% decline over recent period",
                f"Statistical significance: {overall['statistical_significance'] * 100:.0f}%",
            ] + list(trend.get("key_insights") or []),
        },
        synergies=["content_frequency", "reputation_management"],
        alternatives=["pivot_strategy", "market_repositioning"],
    )

def topic_specific(weak_types: List[str]) -> Dict[str, Any]:
    first = weak_types[0].replace("_", " ")
    return _recommendation(
        "topic_specific", "content", f"Improve Performance in {first.title()} Content",
        f"Analysis shows low visibility in {', '.join(weak_types)} question types. "
        "Focus content creation in these areas.",
        0.6, 0.5, 0.8, "short_term", "beginner",
        actionable_steps=[
            f"Create 5-10 pieces of content focused on {first} questions",
            "Research competitor content in these areas",
            "Optimize content for conversational search queries",
            "Build topical authority through consistent publishing",
        ],
        success_metrics=[
            f"Improve mention rate in {weak_types[0]} questions to 50%+",
            "Gain more relevant citations",
        ],
        required_resources=["Content writers familiar with the topic", "Research tools for competitive analysis"],
        estimated_time_investment="4-6 weeks",
        potential_risks=["May require subject matter expertise"],
        supporting_evidence={"current_performance": {"poor_performing_types": weak_types,
                                                     "current_mention_rates": "Below 40% in key areas"}},
        synergies=["content_frequency"],
        alternatives=["expert_interviews", "collaborative_content"],
    )

def competitor_advantages(competitive: Dict[str, Any]) -> List[str]:
    target = competitive["target_company"]["metrics"]
    advantages = []
    for c in competitive.get("competitors") or []:
        m, name = c["metrics"], c["competitor"]["name"]
        if m["mention_rate"] > target["mention_rate"] * 1.2:
            if target["mention_rate"] > 0:
                advantages.append(
                    f"{name} has {(m['mention_rate'] / target['mention_rate'] - 1) * 100:.0f}% higher mention rate"
                )
            else:
                advantages.append(f"{name} is mentioned where you are not")
        if m["sentiment_average"] > target["sentiment_average"] + 0.2:
            advantages.append(f"{name} has significantly better sentiment")
    return advantages

def content_gaps(analyses: List[Dict[str, Any]], competitive: Dict[str, Any] = None) -> List[Dict[str, Any]]:
    gaps = []
    for topic, perf in topic_performance(analyses).items():
        if perf["mention_rate"] >= 0.3:
            continue
        gaps.append({
            "gap_type": "topic",
            "gap_title": f"Low Visibility in {topic}",
            "gap_description": f"Only {_pct(perf['mention_rate'])} mention rate in {topic} discussions",
            "opportunity_score": round(0.8 - perf["mention_rate"], 4),
            "effort_to_address": 0.6,
            "missing_topics": [topic],
            "competitor_advantages": [],
            "recommended_content": [{
                "content_type": "Educational Articles",
                "suggested_titles": [
                    f"Complete Guide to {topic}",
                    f"{topic}: Best Practices and Common Mistakes",
                    f"How to Choose the Right {topic} Solution",
                ],
                "target_keywords": [topic, f"{topic} guide", f"{topic} best practices"],
                "optimal_timing": "Within 4-6 weeks",
            }],
            "business_impact": {"potential_mention_increase": 0.3, "potential_sentiment_improvement": 0.1,
                                "competitive_advantage_gain": 0.2},
        })

    advantages = competitor_advantages(competitive) if competitive else []
    if advantages:
        gaps.append({
            "gap_type": "competitor_coverage",
            "gap_title": "Competitor Content Advantages",
            "gap_description": "Competitors have stronger presence in key topics",
            "opportunity_score": 0.7,
            "effort_to_address": 0.8,
            "missing_topics": [],
            "competitor_advantages": advantages,
            "recommended_content": [{
                "content_type": "Competitive Analysis",
                "suggested_titles": [
                    "Industry Comparison: Finding the Right Solution",
                    "Alternative Approaches to Common Challenges",
                    "Comprehensive Buyer's Guide",
                ],
                "target_keywords": ["comparison", "alternatives", "vs"],
                "optimal_timing": "Within 2-3 weeks",
            }],
            "business_impact": {"potential_mention_increase": 0.25, "potential_sentiment_improvement": 0.15,
                                "competitive_advantage_gain": 0.4},
        })
    return gaps

def optimization_opportunities(scores: Dict[str, Any]) -> List[Dict[str, Any]]:
    opportunities = []
    if scores["response_consistency"] < 0.7:
        opportunities.append({
            "opportunity_id": _rec_id("consistency_quick_win"),
            "opportunity_type": "quick_win",
            "title": "Improve Message Consistency",
            "description": "Low response consistency indicates messaging optimization opportunities",
            "current_state": {"metric": "Response Consistency", "current_value": scores["response_consistency"],
                              "industry_benchmark": 0.75, "top_performer_value": 0.90},
            "potential_improvement": {"realistic_target": 0.8, "optimistic_target": 0.85,
                                      "confidence_level": 0.8, "timeframe_months": 2},
            "implementation_plan": [{
                "phase": "Message Audit & Alignment",
                "duration_weeks": 4,
                "key_activities": [
                    "Audit existing content for message consistency",
                    "Develop unified messaging framework",
                    "Update key content pieces",
                ],
                "success_criteria": ["Unified messaging framework documented", "Top 20 content pieces updated"],
            }],
            "roi_analysis": {"estimated_cost": "$5,000 - $15,000",
                             "potential_revenue_impact": "10-15% improvement in conversion rates",
                             "payback_period_months": 3, "risk_level": "low"},
        })
    if scores["source_influence"] < 0.5:
        opportunities.append({
            "opportunity_id": _rec_id("authority_investment"),
            "opportunity_type": "strategic_investment",
            "title": "Build Industry Authority",
            "description": "Low source influence suggests significant opportunity to build industry authority",
            "current_state": {"metric": "Source Influence", "current_value": scores["source_influence"],
                              "industry_benchmark": 0.65, "top_performer_value": 0.85},
            "potential_improvement": {"realistic_target": 0.65, "optimistic_target": 0.75,
                                      "confidence_level": 0.7, "timeframe_months": 8},
            "implementation_plan": [
                {
                    "phase": "Foundation Building",
                    "duration_weeks": 8,
                    "key_activities": ["Develop industry research program", "Establish media relationships",
                                       "Create thought leadership content"],
                    "success_criteria": ["Research program launched", "5+ media contacts established"],
                },
                {
                    "phase": "Authority Scaling",
                    "duration_weeks": 12,
                    "key_activities": ["Publish industry reports", "Secure tier-1 media coverage",
                                       "Speak at major conferences"],
                    "success_criteria": ["2+ industry reports published", "5+ tier-1 citations achieved"],
                },
            ],
            "roi_analysis": {"estimated_cost": "$50,000 - $100,000",
                             "potential_revenue_impact": "25-40% improvement in brand value",
                             "payback_period_months": 12, "risk_level": "medium"},
        })
    return opportunities

def prioritized_plan(recommendations: List[Dict[str, Any]], effort_preference: str = None) -> Dict[str, List]:
    ordered = sorted(recommendations, key=lambda r: r["priority_score"], reverse=True)
    if effort_preference in EFFORT_THRESHOLDS:
        limit = EFFORT_THRESHOLDS[effort_preference]
        ordered = [r for r in ordered if r["effort_score"] <= limit]

    return {
        "immediate_actions": [
            r for r in ordered
            if r["timeline"] == "immediate" or (r["effort_score"] < 0.3 and r["impact_score"] > 0.6)
        ][:3],
        "short_term_goals": [r for r in ordered if r["timeline"] in ("short_term", "medium_term")][:5],
        "long_term_strategy": [r for r in ordered if r["timeline"] == "long_term" or r["impact_score"] > 0.8][:4],
    }

def implementation_roadmap(plan: Dict[str, List]) -> List[Dict[str, Any]]:
    return [
        {
            "week": 1,
            "focus_area": "Quick Wins & Foundation",
            "key_recommendations": [r["title"] for r in plan["immediate_actions"]],
            "expected_outcomes": ["Immediate visibility improvements", "Foundation set for larger initiatives"],
        },
        {
            "week": 3,
            "focus_area": "Content & Technical Optimization",
            "key_recommendations": [r["title"] for r in plan["short_term_goals"][:3]],
            "expected_outcomes": ["15-25% improvement in key metrics", "Better competitive positioning"],
        },
        {
            "week": 9,
            "focus_area": "Authority Building & Strategic Growth",
            "key_recommendations": [r["title"] for r in plan["long_term_strategy"][:2]],
            "expected_outcomes": ["Significant authority improvements", "Sustainable competitive advantages"],
        },
    ]

def success_tracking(scores: Dict[str, Any]) -> List[Dict[str, Any]]:
    def kpi(name, metric, step, cap, frequency):
        baseline = scores[metric]
        return {"kpi": name, "current_baseline": baseline,
                "target_value": round(min(baseline + step, cap), 4), "measurement_frequency": frequency}

    return [
        kpi("Overall Visibility Score", "overall_score", 0.15, 0.9, "Monthly"),
        kpi("Mention Rate", "mention_rate", 0.2, 0.8, "Bi-weekly"),
        kpi("Mention Quality", "mention_quality", 0.15, 0.85, "Monthly"),
        kpi("Source Influence", "source_influence", 0.1, 0.8, "Quarterly"),
    ]

class RecommendationEngine:
    def base_recommendations(self, scores: Dict[str, Any], analyses: List[Dict[str, Any]],
                             trend: Dict[str, Any] = None,
                             competitive: Dict[str, Any] = None) -> List[Dict[str, Any]]:
        recs = []
        if scores["mention_rate"] < 0.5:
            recs.append(content_frequency(scores))
        if scores["mention_quality"] < 0.6:
            recs.append(sentiment_improvement(scores))
        if scores["source_influence"] < 0.6:
            recs.append(authority_building(scores))
        if competitive and competitive.get("competitors"):
            if target_rank(competitive) > field_size(competitive) * 0.5:
                recs.append(competitive_improvement(competitive))
        if trend and trend["overall_trend"]["trend_direction"] == "downward":
            recs.append(trend_reversal(trend))

        weak = weak_question_types(analyses)
        if weak:
            recs.append(topic_specific(weak))
        return recs

    def generate(self, company_id: str, scores: Dict[str, Any], analyses: List[Dict[str, Any]],
                 trend: Dict[str, Any] = None, competitive: Dict[str, Any] = None,
                 preferences: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        preferences = preferences or {}
        recs = self.base_recommendations(scores, analyses, trend, competitive)
        plan = prioritized_plan(recs, preferences.get("effort_preference"))
        logger.info(f"💡 {len(recs)} recommendations for company {company_id}")

        return {
            "company_id": company_id,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "analysis_summary": analysis_summary(scores, trend, competitive),
            "recommendations": recs,
            "content_gaps": content_gaps(analyses, competitive),
            "optimization_opportunities": optimization_opportunities(scores),
            "prioritized_action_plan": plan,
            "implementation_roadmap": implementation_roadmap(plan),
            "success_tracking": success_tracking(scores),
        }
