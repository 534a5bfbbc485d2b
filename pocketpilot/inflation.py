# pocketpilot/inflation.py
# Flag budgets whose category spend has outgrown the limit for several months.
from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import date
from typing import Any, Dict, List, Optional

from dateutil.relativedelta import relativedelta

from pocketpilot.dates import month_key, to_date
from pocketpilot.store import Store

log = logging.getLogger(__name__)

DEFAULT_MONTHS = 3
DEFAULT_THRESHOLD = 0.10
MIN_OVER_MONTHS = 2
HEADROOM = 1.05
CLOSED_STATUSES = ("dismissed", "accepted")


def last_complete_months(today: date, months: int) -> List[str]:
    first_of_month = today.replace(day=1)
    return [(first_of_month - relativedelta(months=i)).strftime("%Y-%m") for i in range(months, 0, -1)]


def monthly_category_spend(transactions: List[Dict[str, Any]], category: str, months: int = DEFAULT_MONTHS,
                           today: Optional[date] = None) -> List[Dict[str, Any]]:
    today = today or date.today()
    keys = last_complete_months(today, months)
    totals: Dict[str, float] = defaultdict(float)
    want = (category or "").strip().lower()
    for t in transactions or []:
        if (t.get("category") or "").strip().lower() != want:
            continue
        try:
            amt = float(t.get("amount", 0.0) or 0.0)
        except (TypeError, ValueError):
            continue
        if amt >= 0:
            continue
        mk = month_key(t.get("date"))
        if mk in keys:
            totals[mk] += -amt
    return [{"month": k, "total": round(totals.get(k, 0.0), 2)} for k in keys]


def _round_up_5(x: float) -> float:
    return float(math.ceil(x / 5.0) * 5)


def detect_budget_inflation(budgets: List[Dict[str, Any]], transactions: List[Dict[str, Any]],
                            today: Optional[date] = None, months: int = DEFAULT_MONTHS,
                            threshold: float = DEFAULT_THRESHOLD) -> List[Dict[str, Any]]:
    today = today or date.today()
    alerts: List[Dict[str, Any]] = []
    for b in budgets or []:
        if b.get("is_active") is False or b.get("status") == "deleted":
            continue
        category = b.get("category")
        try:
            limit = float(b.get("amount") or b.get("total_limit") or 0.0)
        except (TypeError, ValueError):
            limit = 0.0
        if not category or limit <= 0:
            continue

        series = monthly_category_spend(transactions, category, months, today)
        totals = [m["total"] for m in series]
        over = [t for t in totals if t > limit * (1.0 + threshold)]
        avg = sum(totals) / len(totals) if totals else 0.0
        if len(over) < min(MIN_OVER_MONTHS, months) or avg <= limit:
            continue

        overage_pct = round((avg - limit) / limit * 100.0, 1)
        suggested = _round_up_5(avg * HEADROOM)
        alerts.append({
            "budget_id": b.get("id"),
            "category": category,
            "old_budget": round(limit, 2),
            "suggested_budget": suggested,
            "reason": (
                f"{category} spending exceeded your ${limit:,.0f} budget in {len(over)} of the last "
                f"{months} months (average ${avg:,.2f}, {overage_pct}% over)."
            ),
            "evidence": {"months": series, "average": round(avg, 2), "overage_pct": overage_pct},
        })
    return alerts


def run_inflation_detection(store: Store, user_id: str, today: Optional[date] = None,
                            months: int = DEFAULT_MONTHS) -> Dict[str, Any]:
    today = today or date.today()
    budgets = store.table("budgets").select(user_id=user_id)
    start = today.replace(day=1) - relativedelta(months=months)

    def _window(r):
        d = to_date(r.get("date"))
        return bool(d and d >= start)

    txs = store.table("transactions").select(user_id=user_id, where=_window)
    log.info("[DetectBudgetInflation] user=%s budgets=%d transactions=%d", user_id, len(budgets), len(txs))

    table = store.table("budget_inflation_alerts")
    saved = []
    for a in detect_budget_inflation(budgets, txs, today=today, months=months):
        existing = table.first(user_id=user_id, budget_id=a["budget_id"])
        if existing and existing.get("status") in CLOSED_STATUSES:
            continue
        saved.append(table.upsert({"user_id": user_id, "status": "pending", **a},
                                  on_conflict=("user_id", "budget_id")))
    return {"alerts": saved, "count": len(saved)}
