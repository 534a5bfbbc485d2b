# pocketpilot/health.py
# Weighted 0-100 financial health score from credit, debt, goals, investments
# and confirmed subscriptions.
from __future__ import annotations

import logging
from typing import Any, Dict, List

from pocketpilot.store import Store

log = logging.getLogger(__name__)

WEIGHTS = {
    "credit": 0.25,
    "debt": 0.20,
    "savings": 0.20,
    "goals": 0.15,
    "investment": 0.10,
    "emergency_fund": 0.10,
}
NEUTRAL = 50
DEBT_CEILING = 50000.0
EMERGENCY_MONTHS = 6


def _num(v) -> float:
    try:
        return float(v or 0)
    except (TypeError, ValueError):
        return 0.0


def score_components(credit_scores: List[Dict[str, Any]], debts: List[Dict[str, Any]],
                     goals: List[Dict[str, Any]], investments: List[Dict[str, Any]],
                     subscriptions: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Each component is 0-100. `credit_scores` is newest first."""
    latest = credit_scores[0] if credit_scores else None
    credit = round((_num(latest.get("score")) - 300) / 550 * 100) if latest else NEUTRAL

    total_debt = sum(_num(d.get("current_balance")) for d in debts)
    debt = 100 if total_debt == 0 else max(0.0, 100 - min(100.0, total_debt / DEBT_CEILING * 100))

    if goals:
        progress = 0.0
        for g in goals:
            target = _num(g.get("target_amount"))
            progress += min(100.0, _num(g.get("current_amount")) / target * 100) if target else 100.0
        savings = round(progress / len(goals))
        done = sum(1 for g in goals if _num(g.get("current_amount")) >= _num(g.get("target_amount")))
        goals_score = round(done / len(goals) * 100)
    else:
        savings = NEUTRAL
        goals_score = NEUTRAL

    inv_value = sum(_num(i.get("total_value")) for i in investments)
    inv_gains = sum(_num(i.get("gains_losses")) for i in investments)
    investment = max(0.0, min(100.0, 50 + inv_gains / inv_value * 100)) if inv_value > 0 else NEUTRAL

    monthly_expenses = sum(_num(s.get("amount")) for s in subscriptions)
    savings_balance = sum(_num(g.get("current_amount")) for g in goals)
    months_covered = savings_balance / monthly_expenses if monthly_expenses > 0 else 0.0
    emergency = min(100.0, months_covered / EMERGENCY_MONTHS * 100)

    components = {
        "credit": credit,
        "debt": debt,
        "savings": savings,
        "goals": goals_score,
        "investment": investment,
        "emergency_fund": emergency,
    }
    overall = round(sum(components[k] * w for k, w in WEIGHTS.items()))
    return {
        "overall": overall,
        "components": components,
        "latest_credit": _num(latest.get("score")) if latest else None,
        "total_debt": total_debt,
        "months_covered": months_covered,
        "subscription_count": len(subscriptions),
        "subscription_cost": monthly_expenses,
    }


def recommendations(scored: Dict[str, Any]) -> List[Dict[str, Any]]:
    c = scored["components"]
    recs = []
    if c["credit"] < 60 and scored["latest_credit"] is not None:
        recs.append({
            "id": "improve-credit",
            "title": "Improve Your Credit Score",
            "description": (f"Your credit score is {scored['latest_credit']:.0f}. Focus on paying bills on time "
                            "and reducing credit utilization below 30%."),
            "priority": "high",
            "impact": 15,
            "actionLabel": "View Credit Details",
            "actionLink": "/credit",
        })
    if c["debt"] < 60 and scored["total_debt"] > 0:
        recs.append({
            "id": "reduce-debt",
            "title": "Create a Debt Payoff Plan",
            "description": (f"You have ${scored['total_debt']:.2f} in debt. Consider using the avalanche or "
                            "snowball method to pay it down faster."),
            "priority": "high",
            "impact": 12,
            "actionLabel": "Manage Debts",
            "actionLink": "/debts",
        })
    if c["emergency_fund"] < 40:
        recs.append({
            "id": "emergency-fund",
            "title": "Build Your Emergency Fund",
            "description": (f"You have {scored['months_covered']:.1f} months of expenses saved. "
                            "Aim for 3-6 months for financial security."),
            "priority": "high",
            "impact": 10,
            "actionLabel": "Set Savings Goal",
            "actionLink": "/goals",
        })
    if c["savings"] > 80:
        recs.append({
            "id": "great-progress",
            "title": "You're Doing Great!",
            "description": "Your savings progress is excellent. Keep up the good work and consider increasing your goals.",
            "priority": "low",
            "impact": 5,
            "actionLabel": "Review Goals",
            "actionLink": "/goals",
        })
    if scored["subscription_count"] > 10:
        recs.append({
            "id": "review-subscriptions",
            "title": "Review Your Subscriptions",
            "description": (f"You have {scored['subscription_count']} active subscriptions costing "
                            f"${scored['subscription_cost']:.2f}/month. Consider canceling unused ones."),
            "priority": "medium",
            "impact": 8,
            "actionLabel": "Manage Subscriptions",
            "actionLink": "/subscriptions",
        })
    return recs


def run_health_score(store: Store, user_id: str) -> Dict[str, Any]:
    log.info("[FinancialHealth] user=%s", user_id)
    scored = score_components(
        store.table("credit_scores").select(user_id=user_id, order_by="score_date", desc=True, limit=1),
        store.table("debts").select(user_id=user_id),
        store.table("goals").select(user_id=user_id, where=lambda g: g.get("status") != "deleted"),
        store.table("investment_accounts").select(user_id=user_id),
        store.table("detected_subscriptions").select(user_id=user_id, is_confirmed=True,
                                                     where=lambda s: s.get("status") != "deleted"),
    )
    recs = recommendations(scored)
    c = scored["components"]

    store.table("financial_health_scores").insert({
        "user_id": user_id,
        "overall_score": scored["overall"],
        "credit_score_component": c["credit"],
        "debt_component": c["debt"],
        "savings_component": c["savings"],
        "goals_component": c["goals"],
        "investment_component": c["investment"],
        "emergency_fund_component": c["emergency_fund"],
        "recommendations": recs,
    })
    try:
        store.table("financial_health_history").insert({
            "user_id": user_id,
            "score": scored["overall"],
            "components": dict(c),
            "recommendations": recs,
        })
    except Exception:
        # history is a trend aid; the score itself is already saved
        log.exception("[FinancialHealth] history save failed")

    return {
        "success": True,
        "overallScore": scored["overall"],
        "components": {
            "credit": c["credit"],
            "debt": c["debt"],
            "savings": c["savings"],
            "goals": c["goals"],
            "investment": c["investment"],
            "emergencyFund": c["emergency_fund"],
        },
        "recommendations": recs,
    }
