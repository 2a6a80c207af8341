"""
Trend analysis over completed MAX Visibility runs: regression, volatility,
seasonality, patterns, predictions and alerts
"""
import logging
import math
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

METRICS = ("mention_rate", "mention_quality", "source_influence",
           "competitive_positioning", "response_consistency")

SIGNIFICANT_CHANGE = 0.10
CRITICAL_CHANGE = 0.25
LOW_PERFORMANCE = 0.30
VOLATILITY = 0.15
FORECAST_DAYS = 30

class InsufficientDataError(Exception):
    """Fewer than two completed runs in the requested window"""

def _as_datetime(value) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

def data_points_from_runs(runs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    points = []
    for run in runs:
        scores = run.get("scores") or {}
        point = {"date": _as_datetime(run["completed_at"]),
                 "overall_score": scores.get("overall_score") or 0.0,
                 "questions_analyzed": scores.get("total_questions") or 0}
        for metric in METRICS:
            point[metric] = scores.get(metric) or 0.0
        points.append(point)
    return points

def linear_regression(values: Sequence[float]) -> Tuple[float, float, float]:
    """Least squares over the index; returns (slope, intercept, r_squared)"""
    n = len(values)
    xs = range(n)
    sum_x = sum(xs)
    sum_y = sum(values)
    sum_xy = sum(x * y for x, y in zip(xs, values))
    sum_xx = sum(x * x for x in xs)

    denominator = n * sum_xx - sum_x * sum_x
    slope = (n * sum_xy - sum_x * sum_y) / denominator if denominator else 0.0
    intercept = (sum_y - slope * sum_x) / n

    mean = sum_y / n
    total_ss = sum((y - mean) ** 2 for y in values)
    residual_ss = sum((y - (slope * x + intercept)) ** 2 for x, y in zip(xs, values))
    if total_ss == 0:
        r_squared = 1.0 if residual_ss == 0 else 0.0
    else:
        r_squared = 1 - residual_ss / total_ss
    return slope, intercept, r_squared

def volatility(values: Sequence[float]) -> float:
    """Coefficient of variation (population std / mean)"""
    if len(values) < 2:
        return 0.0
    mean = sum(values) / len(values)
    if mean <= 0:
        return 0.0
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return math.sqrt(variance) / mean

def weekly_pattern_strength(points: List[Tuple[datetime, float]]) -> float:
    """Between-weekday variance over mean within-weekday variance"""
    groups: Dict[int, List[float]] = {}
    for date, value in points:
        groups.setdefault(date.weekday(), []).append(value)
    if len(groups) < 3:
        return 0.0

    averages = [sum(v) / len(v) for v in groups.values()]
    overall = sum(averages) / len(averages)
    between = sum((a - overall) ** 2 for a in averages) / len(averages)

    within_total = 0.0
    for values in groups.values():
        if len(values) < 2:
            continue
        mean = sum(values) / len(values)
        within_total += sum((v - mean) ** 2 for v in values) / len(values)
    within = within_total / len(groups)
    return between / within if within > 0 else 0.0

def prediction_confidence(n_points: int, vol: float) -> float:
    return max(0.1, min(n_points / 30, 1.0) * max(0.0, 1 - vol * 2))

def metric_trend(points: List[Tuple[datetime, float]], metric: str) -> Dict[str, Any]:
    if len(points) < 2:
        raise InsufficientDataError("Insufficient data points for trend analysis")

    values = [v for _, v in points]
    current, previous = values[-1], values[-2]
    slope, _, r_squared = linear_regression(values)
    vol = volatility(values)

    direction = "stable"
    if abs(slope) > 0.001:
        direction = "upward" if slope > 0 else "downward"
    if vol > VOLATILITY:
        direction = "volatile"

    return {
        "metric": metric,
        "current_value": current,
        "trend_direction": direction,
        "slope": slope,
        "change_rate": slope * 30,
        "change_percentage": (current - previous) / previous * 100 if previous else 0.0,
        "statistical_significance": min(max(r_squared, 0.0), 1.0),
        "prediction_confidence": prediction_confidence(len(points), vol),
        "seasonality_detected": len(points) >= 14 and weekly_pattern_strength(points) > 0.3,
        "volatility_score": vol,
    }

def detect_patterns(points: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    scores = [p["overall_score"] for p in points]
    last = points[-1]["date"]
    patterns = []

    slope, _, r_squared = linear_regression(scores)
    if slope > 0.001 and r_squared > 0.5:
        patterns.append({
            "pattern_type": "growth",
            "pattern_strength": r_squared,
            "pattern_duration": len(points),
            "pattern_description": f"Consistent growth pattern detected with {slope * 30 * 100:.1f}% monthly improvement",
            "next_expected_change": {"direction": "up", "confidence": r_squared,
                                     "estimated_date": (last + timedelta(days=7)).isoformat(),
                                     "estimated_magnitude": slope * 7},
        })

    seasonal = weekly_pattern_strength([(p["date"], p["overall_score"]) for p in points])
    if seasonal > 0.4:
        patterns.append({
            "pattern_type": "seasonal",
            "pattern_strength": seasonal,
            "pattern_duration": 7,
            "pattern_description": f"Weekly seasonal pattern detected with {seasonal * 100:.1f}% regularity",
            "next_expected_change": {"direction": "stable", "confidence": seasonal,
                                     "estimated_date": (last + timedelta(days=7)).isoformat(),
                                     "estimated_magnitude": 0.02},
        })

    if len(points) >= 5:
        recent_vol = volatility(scores[-5:])
        if recent_vol < 0.05:
            patterns.append({
                "pattern_type": "plateau",
                "pattern_strength": 1 - recent_vol,
                "pattern_duration": 5,
                "pattern_description": f"Performance plateau detected with low volatility ({recent_vol * 100:.1f}%)",
                "next_expected_change": {"direction": "stable", "confidence": 0.8,
                                         "estimated_date": (last + timedelta(days=14)).isoformat(),
                                         "estimated_magnitude": 0.01},
            })

    if len(points) >= 6:
        mid = len(scores) // 2
        first = sum(scores[:mid]) / mid
        second = sum(scores[mid:]) / (len(scores) - mid)
        after_min = len(scores) - scores.index(min(scores)) - 1
        if after_min > 0 and first > 0 and second > first * 1.1:
            strength = (second - first) / first
            patterns.append({
                "pattern_type": "recovery",
                "pattern_strength": min(strength, 1.0),
                "pattern_duration": after_min,
                "pattern_description": f"Recovery pattern detected with {strength * 100:.1f}% improvement",
                "next_expected_change": {"direction": "up", "confidence": 0.7,
                                         "estimated_date": (last + timedelta(days=7)).isoformat(),
                                         "estimated_magnitude": strength / 4},
            })
    return patterns

def predictions(points: List[Tuple[datetime, float]], horizon: int = FORECAST_DAYS) -> List[Dict[str, Any]]:
    values = [v for _, v in points]
    slope, _, _ = linear_regression(values)
    vol = volatility(values)
    last_date, last_value = points[-1]

    out = []
    for day in range(1, horizon + 1, 7):
        predicted = last_value + slope * day
        interval = predicted * vol * 2
        out.append({
            "date": (last_date + timedelta(days=day)).isoformat(),
            "predicted_value": max(0.0, min(1.0, predicted)),
            "confidence_interval_lower": max(0.0, predicted - interval),
            "confidence_interval_upper": min(1.0, predicted + interval),
            "prediction_confidence": max(0.1, 1 - vol * day / horizon),
        })
    return out

def risk_factors(trend: Dict[str, Any], points: List[Dict[str, Any]]) -> List[str]:
    risks = []
    if trend["trend_direction"] == "downward":
        risks.append("Declining performance trend detected")
    if trend["volatility_score"] > VOLATILITY:
        risks.append("High performance volatility may indicate instability")
    if trend["current_value"] < LOW_PERFORMANCE:
        risks.append("Current performance below industry standards")
    recent = [p["overall_score"] for p in points[-3:]]
    if len(recent) == 3 and all(recent[i] < recent[i - 1] for i in range(1, 3)):
        risks.append("Consecutive performance decreases in recent assessments")
    return risks

def opportunity_factors(trend: Dict[str, Any], points: List[Dict[str, Any]]) -> List[str]:
    opportunities = []
    if trend["trend_direction"] == "upward":
        opportunities.append("Positive momentum that can be accelerated")
    if trend["statistical_significance"] > 0.7:
        opportunities.append("Strong statistical confidence in trend predictions")
    if trend["seasonality_detected"]:
        opportunities.append("Predictable patterns can be leveraged for planning")
    if len(points) >= 2 and points[-1]["overall_score"] > points[-2]["overall_score"]:
        opportunities.append("Recent improvement suggests effective optimizations")
    return opportunities

def predictive_recommendations(trend: Dict[str, Any], forecast: List[Dict[str, Any]]) -> List[str]:
    recs = []
    if trend["trend_direction"] == "downward":
        recs.append("Implement immediate intervention strategies to reverse declining trend")
        recs.append("Conduct root cause analysis to identify performance inhibitors")
    if trend["volatility_score"] > 0.1:
        recs.append("Focus on consistency improvements to reduce performance volatility")
        recs.append("Establish more predictable content and engagement strategies")
    if any(p["predicted_value"] < 0.4 for p in forecast):
        recs.append("Proactive measures needed to prevent predicted performance decline")
    if trend["trend_direction"] == "upward":
        recs.append("Maintain current successful strategies and consider scaling")
        recs.append("Document successful practices for replication")
    return recs

ALERT_STEPS = {
    "threshold_breach": [
        "Implement targeted improvements for {metric}",
        "Review competitor strategies and industry benchmarks",
        "Consider increasing content creation frequency",
    ],
    "anomaly": [
        "Investigate unusual performance patterns",
        "Check for external factors affecting visibility",
        "Validate data quality and measurement accuracy",
    ],
}

def alert_steps(alert_type: str, metric: str, severity: str) -> List[str]:
    if alert_type == "significant_change":
        steps = []
        if severity == "high":
            steps += ["Investigate immediate causes of performance change",
                      "Review recent content and strategy modifications"]
        return steps + ["Monitor closely over next 7 days"]
    return [s.format(metric=metric.replace("_", " ")) for s in ALERT_STEPS.get(alert_type, [])]

def make_alert(company_id: str, alert_type: str, severity: str, metric: str, current: float,
               previous: float, change: float, threshold: float, description: str) -> Dict[str, Any]:
    return {
        "alert_id": f"alert_{uuid.uuid4().hex[:12]}",
        "alert_type": alert_type,
        "severity": severity,
        "metric": metric,
        "current_value": current,
        "previous_value": previous,
        "change_percentage": change,
        "threshold": threshold,
        "description": description,
        "actionable_steps": alert_steps(alert_type, metric, severity),
        "triggered_at": datetime.now(timezone.utc).isoformat(),
        "company_id": company_id,
    }

def check_alerts(company_id: str, trends: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
    alerts = []
    for metric, trend in trends.items():
        change = trend["change_percentage"]
        if abs(change) > SIGNIFICANT_CHANGE * 100:
            severity = "high" if abs(change) > CRITICAL_CHANGE * 100 else "medium"
            alerts.append(make_alert(
                company_id, "significant_change", severity, metric, trend["current_value"],
                trend["current_value"] / (1 + change / 100), change, SIGNIFICANT_CHANGE * 100,
                f"Significant {'improvement' if change > 0 else 'decline'} in {metric}",
            ))
        if trend["current_value"] < LOW_PERFORMANCE:
            alerts.append(make_alert(
                company_id, "threshold_breach", "high", metric, trend["current_value"], LOW_PERFORMANCE,
                (trend["current_value"] - LOW_PERFORMANCE) / LOW_PERFORMANCE * 100, LOW_PERFORMANCE,
                f"{metric} performance below acceptable threshold",
            ))
        if trend["volatility_score"] > VOLATILITY:
            alerts.append(make_alert(
                company_id, "anomaly", "medium", metric, trend["volatility_score"], VOLATILITY,
                (trend["volatility_score"] - VOLATILITY) / VOLATILITY * 100, VOLATILITY,
                f"High volatility detected in {metric}",
            ))
    return alerts

def health_score(trends: Dict[str, Dict[str, Any]], patterns: List[Dict[str, Any]]) -> float:
    score = 0.5
    for trend in trends.values():
        if trend["trend_direction"] == "upward":
            score += 0.1
        if trend["trend_direction"] == "downward":
            score -= 0.15
        if trend["volatility_score"] > VOLATILITY:
            score -= 0.05
    for pattern in patterns:
        if pattern["pattern_type"] in ("growth", "recovery"):
            score += 0.1 * pattern["pattern_strength"]
    return max(0.0, min(1.0, score))

def key_insights(overall: Dict[str, Any], trends: Dict[str, Dict[str, Any]],
                 patterns: List[Dict[str, Any]]) -> List[str]:
    insights = []
    if overall["trend_direction"] in ("upward", "downward"):
        direction = "improving" if overall["trend_direction"] == "upward" else "declining"
        insights.append(
            f"Overall AI visibility is {direction} with {abs(overall['change_percentage']):.1f}% change"
        )

    best_name, best = max(trends.items(), key=lambda item: item[1]["current_value"])
    insights.append(f"{best_name.replace('_', ' ')} is your strongest metric at {best['current_value'] * 100:.1f}%")

    weak = [name for name, t in trends.items() if t["current_value"] < 0.4 or t["trend_direction"] == "downward"]
    if weak:
        insights.append(f"Focus needed on: {', '.join(n.replace('_', ' ') for n in weak)}")
    if any(p["pattern_type"] == "growth" for p in patterns):
        insights.append("Consistent growth patterns detected - maintain current strategies")
    volatile = [name for name, t in trends.items() if t["volatility_score"] > VOLATILITY]
    if volatile:
        insights.append(f"High volatility in {', '.join(n.replace('_', ' ') for n in volatile)} - focus on consistency")
    return insights

def analyze_trends(company_id: str, runs: List[Dict[str, Any]], include_predictions: bool = True,
                   alert_check: bool = True) -> Dict[str, Any]:
    points = data_points_from_runs(runs)
    if len(points) < 2:
        raise InsufficientDataError("Insufficient historical data for trend analysis")

    def series(metric):
        return [(p["date"], p[metric]) for p in points]

    overall = metric_trend(series("overall_score"), "overall_score")
    trends = {metric: metric_trend(series(metric), metric) for metric in METRICS}
    patterns = detect_patterns(points)

    insights = []
    if include_predictions:
        for metric, trend in trends.items():
            if trend["prediction_confidence"] > 0.6:
                forecast = predictions(series(metric))
                insights.append({
                    "metric": metric,
                    "forecast_horizon_days": FORECAST_DAYS,
                    "predictions": forecast,
                    "risk_factors": risk_factors(trend, points),
                    "opportunity_factors": opportunity_factors(trend, points),
                    "recommendations": predictive_recommendations(trend, forecast),
                })

    return {
        "company_id": company_id,
        "analysis_period": {
            "start_date": points[0]["date"].isoformat(),
            "end_date": points[-1]["date"].isoformat(),
            "data_points": len(points),
        },
        "overall_trend": overall,
        "metric_trends": trends,
        "detected_patterns": patterns,
        "predictive_insights": insights,
        "active_alerts": check_alerts(company_id, trends) if alert_check else [],
        "trend_health_score": round(health_score(trends, patterns), 4),
        "key_insights": key_insights(overall, trends, patterns),
    }

def latest_direction(runs: List[Dict[str, Any]]) -> Optional[str]:
    """Overall trend direction, or None with fewer than two runs"""
    points = data_points_from_runs(runs)
    if len(points) < 2:
        return None
    return metric_trend([(p["date"], p["overall_score"]) for p in points], "overall_score")["trend_direction"]
