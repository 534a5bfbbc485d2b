# pocketpilot/forecast.py
# Category spending forecast and goal time-to-completion projections.
from __future__ import annotations

import logging
import math
import statistics
from collections import defaultdict
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from dateutil.relativedelta import relativedelta

from pocketpilot.dates import month_key, to_date
from pocketpilot.errors import NotFoundError, ValidationError
from pocketpilot.store import Store

log = logging.getLogger(__name__)

HISTORY_DAYS = 365
MIN_POINTS = 3
RECENT_POINTS = 30
GOAL_LOOKBACK_DAYS = 90
DEFAULT_MONTHLY_CONTRIBUTION = 100.0

FORECAST_TOOL = {
    "type": "object",
    "properties": {
        "forecasts": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "month": {"type": "integer"},
                    "predicted_amount": {"type": "number"},
                    "confidence_lower": {"type": "number"},
                    "confidence_upper": {"type": "number"},
                },
                "required": ["month", "predicted_amount", "confidence_lower", "confidence_upper"],
            },
        },
        "insights": {
            "type": "object",
            "properties": {"recommendations": {"type": "array", "items": {"type": "string"}}},
        },
    },
    "required": ["forecasts"],
}

SAVINGS_TOOL = {
    "type": "object",
    "properties": {
        "suggestions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "action": {"type": "string"},
                    "savings": {"type": "number", "description": "Monthly savings amount"},
                    "category": {"type": "string"},
                    "difficulty": {"type": "string", "enum": ["easy", "medium", "hard"]},
                },
                "required": ["id", "action", "savings", "category", "difficulty"],
            },
            "minItems": 3,
            "maxItems": 3,
        },
    },
    "required": ["suggestions"],
}


# ==================== STATISTICS ====================
def spending_statistics(history: List[Dict[str, Any]]) -> Dict[str, Any]:
    """history: [{"date", "amount"}] oldest first, amounts as positive spend."""
    sums = [0.0] * 7
    counts = [0] * 7
    for h in history:
        d = to_date(h["date"])
        if d is None:
            continue
        dow = (d.weekday() + 1) % 7  # Sunday first
        sums[dow] += h["amount"]
        counts[dow] += 1
    weekly = [round(sums[i] / counts[i], 2) if counts[i] else 0.0 for i in range(7)]

    recent = history[-RECENT_POINTS:]
    half = len(recent) // 2
    first = statistics.mean(h["amount"] for h in recent[:half]) if half else 0.0
    second = statistics.mean(h["amount"] for h in recent[half:]) if recent[half:] else 0.0
    if second > first:
        trend = "increasing"
    elif second < first:
        trend = "decreasing"
    else:
        trend = "stable"

    amounts = [h["amount"] for h in history]
    mean = statistics.mean(amounts) if amounts else 0.0
    std = statistics.pstdev(amounts) if amounts else 0.0
    cv = std / mean if mean else 0.0
    volatility = "high" if cv > 0.3 else "medium" if cv > 0.15 else "low"

    anomalies = [
        f"Unusual spike on {to_date(h['date']).isoformat()}: ${h['amount']:.2f}"
        for h in history if abs(h["amount"] - mean) > 2 * std
    ]
    return {
        "weekly_pattern": weekly,
        "trend": trend,
        "volatility": volatility,
        "mean": round(mean, 2),
        "std_dev": round(std, 2),
        "anomalies": anomalies,
    }


def _flat_forecast(history: List[Dict[str, Any]], months: int) -> Dict[str, Any]:
    totals: Dict[str, float] = defaultdict(float)
    for h in history:
        totals[month_key(h["date"])] += h["amount"]
    monthly = list(totals.values()) or [0.0]
    avg = statistics.mean(monthly)
    sigma = statistics.pstdev(monthly) if len(monthly) > 1 else avg * 0.15
    return {
        "forecasts": [
            {
                "month": i,
                "predicted_amount": round(avg, 2),
                "confidence_lower": round(max(0.0, avg - sigma), 2),
                "confidence_upper": round(avg + sigma, 2),
            }
            for i in range(1, months + 1)
        ],
        "insights": {"recommendations": []},
    }


def _forecast_prompt(stats: Dict[str, Any], recent: List[Dict[str, Any]], months: int) -> str:
    lines = "\n".join(f"{h['date']}: ${h['amount']:.2f}" for h in recent)
    anomalies = f"\n- Anomalies detected: {len(stats['anomalies'])}" if stats["anomalies"] else ""
    return (
        "You are a financial forecasting AI using exponential smoothing. Based on the following data, "
        f"predict spending for the next {months} months.\n\n"
        f"Historical spending (last 30 points):\n{lines}\n\n"
        "Context:\n"
        f"- Trend: {stats['trend']}\n"
        f"- Volatility: {stats['volatility']}\n"
        f"- Average: ${stats['mean']:.2f}\n"
        f"- Std Dev: ${stats['std_dev']:.2f}\n"
        f"- Weekly pattern (Sun-Sat): {', '.join(f'${v:.0f}' for v in stats['weekly_pattern'])}"
        f"{anomalies}\n\n"
        "Provide monthly predictions with confidence intervals (lower/upper bounds)."
    )


def predict_spending(store: Store, user_id: str, category: str, months: int = 3, llm=None,
                     today: Optional[date] = None) -> Dict[str, Any]:
    if not category:
        raise ValidationError("category is required")
    months = max(1, min(int(months or 3), 12))
    today = today or date.today()
    since = today - timedelta(days=HISTORY_DAYS)
    log.info("[SpendingForecast] user=%s category=%s months=%d", user_id, category, months)

    def _window(r):
        d = to_date(r.get("date"))
        return bool(d and d >= since)

    rows = store.table("transactions").select(user_id=user_id, category=category, where=_window, order_by="date")
    history = [{"date": to_date(r["date"]).isoformat(), "amount": abs(float(r.get("amount") or 0.0))} for r in rows]
    if len(history) < MIN_POINTS:
        raise ValidationError("Insufficient historical data for forecasting")

    stats = spending_statistics(history)
    if llm is not None:
        messages = [
            {"role": "system", "content": "You are a financial forecasting expert. Analyze spending patterns and provide accurate predictions."},
            {"role": "user", "content": _forecast_prompt(stats, history[-RECENT_POINTS:], months)},
        ]
        result = llm.call_tool(messages, "provide_forecast",
                               "Return monthly spending forecast predictions with confidence intervals",
                               FORECAST_TOOL)
    else:
        result = _flat_forecast(history, months)

    forecasts = result.get("forecasts") or []
    records = []
    for f in forecasts:
        predicted = float(f.get("predicted_amount") or 0.0)
        mid = (float(f.get("confidence_lower") or 0.0) + float(f.get("confidence_upper") or 0.0)) / 2
        records.append({
            "user_id": user_id,
            "category": category,
            "forecast_date": (today + timedelta(days=int(f.get("month") or 1) * 30)).isoformat(),
            "predicted_amount": predicted,
            "confidence_score": round(mid / predicted, 3) if predicted else None,
        })
    if records:
        store.table("spending_forecasts").insert(records)

    recs = list(((result.get("insights") or {}).get("recommendations")) or [])
    if stats["trend"] == "increasing":
        recs.append(f"Your {category} spending is trending upward. Consider setting alerts.")
    if stats["volatility"] == "high":
        recs.append(f"High volatility detected in {category}. Try to maintain consistent spending.")
    if len(stats["anomalies"]) > 2:
        recs.append("Multiple unusual transactions detected. Review for accuracy.")

    return {
        "forecasts": [
            {**f, "confidence": {"lower": f.get("confidence_lower"), "upper": f.get("confidence_upper")}}
            for f in forecasts
        ],
        "insights": {
            "trend": stats["trend"],
            "volatility": stats["volatility"],
            "anomalies": stats["anomalies"][:3],
            "recommendations": recs[:3],
        },
    }


# ==================== TIME TO GOAL ====================
def monthly_contribution(goal: Dict[str, Any], transactions: List[Dict[str, Any]]) -> float:
    if goal.get("monthly_contribution"):
        return float(goal["monthly_contribution"])
    inflows = [float(t.get("amount") or 0.0) for t in transactions if float(t.get("amount") or 0.0) > 0][:30]
    if not inflows:
        return DEFAULT_MONTHLY_CONTRIBUTION
    return sum(inflows) / len(inflows) * 30


def projection_date(remaining: float, contribution: float, today: date) -> date:
    if remaining <= 0:
        return today
    if contribution <= 0:
        return today + relativedelta(months=12)
    return today + relativedelta(months=math.ceil(remaining / contribution))


def _default_suggestions(by_category: Dict[str, Dict[str, float]]) -> List[Dict[str, Any]]:
    top = sorted(by_category.items(), key=lambda kv: kv[1]["total"], reverse=True)[:3]
    out = []
    for (cat, data), difficulty in zip(top, ("easy", "medium", "hard")):
        monthly = data["total"] / 3.0
        out.append({
            "id": cat.lower().replace(" ", "-"),
            "action": f"Trim {cat} spending by 10%",
            "savings": round(monthly * 0.10, 2),
            "category": cat,
            "difficulty": difficulty,
        })
    return out


def time_to_goal(store: Store, user_id: str, goal_id: str, llm=None, today: Optional[date] = None) -> Dict[str, Any]:
    if not goal_id:
        raise ValidationError("Goal ID is required")
    today = today or date.today()
    goal = store.table("goals").first(id=goal_id, user_id=user_id)
    if not goal:
        raise NotFoundError("Goal not found")

    remaining = float(goal.get("target_amount") or 0.0) - float(goal.get("current_amount") or 0.0)
    since = today - timedelta(days=GOAL_LOOKBACK_DAYS)

    def _window(r):
        d = to_date(r.get("date"))
        return bool(d and d >= since)

    txs = store.table("transactions").select(user_id=user_id, where=_window, order_by="date", desc=True, limit=500)
    by_category: Dict[str, Dict[str, float]] = defaultdict(lambda: {"total": 0.0, "count": 0})
    for t in txs:
        if float(t.get("amount") or 0.0) >= 0:
            continue
        cat = t.get("category") or "Other"
        by_category[cat]["total"] += abs(float(t.get("amount") or 0.0))
        by_category[cat]["count"] += 1

    if llm is not None:
        summary = "\n".join(f"{c}: ${d['total']:.2f} ({d['count']} transactions)" for c, d in by_category.items())
        prompt = (
            "Analyze this user's spending and suggest 3 realistic, actionable savings strategies to help "
            "them reach their goal faster.\n\n"
            f"Goal: ${remaining:.2f} remaining to save\n"
            f"Deadline: {goal.get('deadline') or 'No deadline set'}\n\n"
            f"Recent spending (last 90 days):\n{summary}\n\n"
            "Focus on the top spending categories. Make suggestions practical and specific with monthly savings amounts."
        )
        parsed = llm.call_tool([{"role": "user", "content": prompt}], "generate_savings_suggestions",
                               "Generate 3 savings suggestions to help reach a financial goal faster", SAVINGS_TOOL)
        raw = parsed.get("suggestions") or []
    else:
        raw = _default_suggestions(by_category)

    contribution = monthly_contribution(goal, txs)
    current = projection_date(remaining, contribution, today)
    suggestions = []
    for s in raw:
        savings = float(s.get("savings") or 0.0)
        new_date = projection_date(remaining, contribution + savings, today)
        days_saved = (current - new_date).days
        suggestions.append({
            "id": s.get("id") or s.get("category"),
            "action": s.get("action"),
            "savings": savings,
            "timeReduction": f"{days_saved} days" if days_saved > 0 else "0 days",
            "newProjection": new_date.isoformat(),
            "difficulty": s.get("difficulty") or "medium",
            "category": s.get("category") or "Other",
        })

    log.info("[TimeToGoal] user=%s goal=%s remaining=%.2f", user_id, goal_id, remaining)
    return {
        "currentProjection": current.isoformat(),
        "currentMonthlyContribution": f"{contribution:.2f}",
        "remaining": f"{remaining:.2f}",
        "suggestions": suggestions,
    }
