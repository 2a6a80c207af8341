import pytest

from services.max_visibility.scoring import (
    DEFAULT_WEIGHTS,
    calculate_scores,
    calculation_details,
    competitive_score,
    consistency_score,
    historical_comparison,
    industry_benchmark,
    mention_quality,
    question_score,
    score_breakdown,
    score_recommendations,
)

def _analysis(question_type="direct", text="What does Acme do?", position=None, sentiment="neutral",
              confidence=1.0, citations=()):
    mention = {"mention_detected": position is not None, "mention_position": position or "none",
               "sentiment": sentiment, "confidence": confidence}
    return {"question_type": question_type, "question_text": text,
            "mention_analysis": mention, "citation_analysis": list(citations)}

ANALYSES = [
    _analysis(position="primary", sentiment="positive", citations=[{"bucket": "owned", "influence_score": 0.95}]),
    _analysis("comparison", "Acme or Mixpanel?", position="secondary",
              citations=[{"bucket": "competitor", "influence_score": 0.3}]),
    _analysis("indirect", "Best analytics tools?"),
    _analysis("explanatory", "How do I choose analytics?"),
]

def test_mention_quality_is_clamped():
    assert mention_quality({"mention_position": "primary", "sentiment": "very_positive", "confidence": 1}) == 1.0
    assert mention_quality({"mention_position": "secondary", "sentiment": "negative", "confidence": 0.5}) == pytest.approx(0.245)
    assert mention_quality({"mention_position": "passing", "sentiment": "neutral"}) == pytest.approx(0.24)

def test_competitive_score_uses_comparison_questions():
    assert competitive_score([_analysis()]) == 0.5
    assert competitive_score([_analysis(text="Acme vs. Mixpanel", position="primary")]) == 1.0
    assert competitive_score([_analysis(text="alternatives to Acme"), _analysis("comparison", position="passing")]) == pytest.approx(0.15)

def test_consistency_score():
    assert consistency_score([_analysis(position="primary")]) == 1.0
    same = [_analysis(position="primary", sentiment="positive")] * 3
    assert consistency_score(same) == 1.0
    mixed = [_analysis(position=p, sentiment=s) for p, s in
             [("primary", "very_positive"), ("secondary", "positive"), ("passing", "neutral"),
              ("primary", "negative"), ("secondary", "very_negative")]]
    assert consistency_score(mixed) == pytest.approx(max(0.2, (0 + 1 / 3) / 2))

def test_calculate_scores():
    scores = calculate_scores(ANALYSES, DEFAULT_WEIGHTS)
    assert scores["mention_rate"] == 0.5
    assert scores["mention_quality"] == 0.85
    assert scores["source_influence"] == 0.625
    assert scores["competitive_positioning"] == 0.7
    assert scores["response_consistency"] == pytest.approx(0.7083, abs=1e-4)
    assert scores["overall_score"] == pytest.approx(0.6429, abs=1e-4)
    assert scores["citation_breakdown"] == {"owned": 1, "operated": 0, "earned": 0, "competitor": 1}
    assert (scores["total_questions"], scores["mentioned_questions"]) == (4, 2)

def test_calculate_scores_without_analyses():
    scores = calculate_scores([], DEFAULT_WEIGHTS)
    assert scores["mention_rate"] == 0.0
    assert scores["competitive_positioning"] == 0.5
    assert scores["response_consistency"] == 1.0
    assert scores["overall_score"] == pytest.approx(0.1)

def test_question_score():
    primary = {"mention_detected": True, "mention_position": "primary", "sentiment": "positive"}
    assert question_score(primary, [{"influence_score": 0.9}], "comparison") == 1.0
    passing = {"mention_detected": True, "mention_position": "passing", "sentiment": "neutral"}
    assert question_score(passing, [], "explanatory") == pytest.approx(0.28)
    assert question_score({"mention_detected": False}, [{"influence_score": 0.5}], "direct") == pytest.approx(0.15)

def test_historical_comparison():
    assert historical_comparison(0.6, None) is None
    assert historical_comparison(0.6, 0) is None
    comparison = historical_comparison(0.6, 0.5)
    assert comparison["trend"] == "improving"
    assert comparison["change_percentage"] == 20.0
    assert historical_comparison(0.505, 0.5)["trend"] == "stable"

def test_industry_benchmark():
    benchmark = industry_benchmark(0.81, "Technology")
    assert benchmark["percentile"] == 80
    assert benchmark["ranking"] == 250
    assert industry_benchmark(0.2, "finance")["percentile"] == 15
    assert industry_benchmark(0.9, "gardening") is None

def test_score_recommendations():
    scores = calculate_scores([], DEFAULT_WEIGHTS)
    recs = score_recommendations(scores, {"trend": "declining"}, {"percentile": 15, "industry": "finance"})
    assert len(recs) == 5
    assert recs[-1].endswith("top finance performers")

def test_calculation_details():
    lines = calculation_details(calculate_scores(ANALYSES, DEFAULT_WEIGHTS), DEFAULT_WEIGHTS)
    assert lines[0] == "Mention Rate: 50.0% x 40% weight = 20.0 points"

def test_score_breakdown():
    breakdown = score_breakdown(ANALYSES, previous_score=0.7, industry="healthcare", weights=DEFAULT_WEIGHTS)
    assert breakdown["historical_comparison"]["trend"] == "declining"
    assert breakdown["industry_benchmark"]["percentile"] == 30
    assert breakdown["component_scores"]["mention_rate"]["weight"] == 0.40
    assert "2 out of 4" in breakdown["component_scores"]["mention_rate"]["explanation"]
