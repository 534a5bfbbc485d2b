# pocketpilot/alerts.py
# Budget threshold alerts (notify once per budget/level/month), transaction
# anomaly checks, and the pending-alert queue worker.
from __future__ import annotations

import logging
import threading
from collections import Counter
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional

from pocketpilot import filter_config as fc
from pocketpilot.dates import month_key, parse_any_date, to_date, utcnow_iso
from pocketpilot.errors import FunctionError, ValidationError
from pocketpilot.llm import parse_json_content
from pocketpilot.store import Store

log = logging.getLogger(__name__)

WARNING_RATIO = 0.8
EXCEEDED_RATIO = 1.0
DEFAULT_AVG_SPEND = 50.0
DEFAULT_MONTHLY_BUDGET = 2000.0
BATCH_THRESHOLD = 3


# ==================== BUDGET ALERTS ====================
def budget_alert_level(spent: float, limit: float) -> Optional[str]:
    if not limit or limit <= 0:
        return None
    ratio = spent / limit
    if ratio >= EXCEEDED_RATIO:
        return "exceeded"
    if ratio >= WARNING_RATIO:
        return "warning"
    return None


class BudgetAlertTracker:
    """Remembers which budget/level/period keys were already shown."""

    def __init__(self):
        self._shown = set()
        self._lock = threading.Lock()

    @staticmethod
    def key(budget_id: str, level: str, period: str) -> str:
        return f"{budget_id}:{level}:{period}"

    def should_notify(self, key: str) -> bool:
        with self._lock:
            if key in self._shown:
                return False
            self._shown.add(key)
            return True

    def reset(self) -> None:
        with self._lock:
            self._shown.clear()

    def __len__(self):
        return len(self._shown)


def _spent_this_month(transactions: List[Dict[str, Any]], category: str, period: str) -> float:
    want = (category or "").strip().lower()
    total = 0.0
    for t in transactions:
        if want and (t.get("category") or "").strip().lower() != want:
            continue
        if month_key(t.get("date")) != period:
            continue
        try:
            amt = float(t.get("amount", 0.0) or 0.0)
        except (TypeError, ValueError):
            continue
        if amt < 0:
            total += -amt
    return round(total, 2)


def check_budgets(store: Store, user_id: str, tracker: BudgetAlertTracker,
                  today: Optional[date] = None) -> Dict[str, Any]:
    today = today or date.today()
    period = today.strftime("%Y-%m")
    budgets = [b for b in store.table("budgets").select(user_id=user_id)
               if b.get("is_active", True) and b.get("status") != "deleted"]
    txs = store.table("transactions").select(user_id=user_id, where=lambda r: month_key(r.get("date")) == period)

    statuses, new_alerts = [], []
    notifications = store.table("wallet_notifications")
    for b in budgets:
        limit = float(b.get("amount") or b.get("total_limit") or 0.0)
        spent = _spent_this_month(txs, b.get("category") or "", period)
        level = budget_alert_level(spent, limit)
        pct = round(spent / limit * 100.0, 1) if limit else 0.0
        statuses.append({"budget_id": b["id"], "category": b.get("category"), "spent": spent,
                         "limit": limit, "percent": pct, "level": level})
        if not level:
            continue
        key = tracker.key(b["id"], level, period)
        if not tracker.should_notify(key):
            continue
        name = b.get("name") or b.get("category") or "Budget"
        if level == "exceeded":
            title = f"{name} budget exceeded"
            message = f"You've spent ${spent:,.2f} of your ${limit:,.2f} {name} budget ({pct:.0f}%)."
        else:
            title = f"{name} budget at {pct:.0f}%"
            message = f"You've used {pct:.0f}% of your {name} budget (${spent:,.2f} of ${limit:,.2f})."
        alert = {"key": key, "budget_id": b["id"], "level": level, "title": title, "message": message,
                 "percent": pct}
        notifications.insert({
            "user_id": user_id,
            "notification_type": "budget_alert",
            "title": title,
            "message": message,
            "priority": "high" if level == "exceeded" else "medium",
            "read": False,
            "metadata": {"budget_id": b["id"], "level": level, "period": period, "spent": spent, "limit": limit},
        })
        new_alerts.append(alert)

    if new_alerts:
        log.info("[BudgetAlerts] user=%s new=%d", user_id, len(new_alerts))
    return {"budgets": statuses, "alerts": new_alerts}


# ==================== ANOMALY RULES ====================
def _normal(confidence: float = 0.1) -> Dict[str, Any]:
    return {"isAnomaly": False, "riskLevel": "low", "alertType": None,
            "confidence": confidence, "message": "Normal transaction"}


def detect_anomaly(tx: Dict[str, Any], history: Dict[str, Any]) -> Dict[str, Any]:
    """Rule-based check used when no model is available (and as a baseline)."""
    amount = abs(float(tx.get("amount") or 0.0))
    avg = float(history.get("averageSpend") or 0.0) or 100.0
    merchant = tx.get("merchant") or ""

    if amount > avg * 3:
        ratio = amount / avg
        return {
            "isAnomaly": True,
            "riskLevel": "high" if amount > avg * 5 else "medium",
            "alertType": "unusual_amount",
            "confidence": round(min(0.95, 0.7 + ratio * 0.05), 2),
            "message": f"Transaction amount ${amount:.2f} is {ratio:.1f}x your average spend",
        }

    when = parse_any_date(tx.get("transaction_date") or tx.get("timestamp") or tx.get("date"))
    for prev in history.get("recentTransactions") or []:
        prev_when = parse_any_date(prev.get("transaction_date") or prev.get("date"))
        if not when or not prev_when:
            continue
        if (prev.get("merchant") == merchant
                and abs(float(prev.get("amount") or 0.0)) == amount
                and abs((when - prev_when).total_seconds()) < 24 * 3600):
            return {"isAnomaly": True, "riskLevel": "medium", "alertType": "duplicate_charge",
                    "confidence": 0.9, "message": f"Potential duplicate charge at {merchant}"}

    lower = merchant.lower()
    if any(p in lower for p in fc.SUSPICIOUS_MERCHANT_PATTERNS):
        return {"isAnomaly": True, "riskLevel": "high", "alertType": "suspicious_merchant",
                "confidence": 0.85, "message": f"Transaction at potentially suspicious merchant: {merchant}"}

    category = tx.get("category") or ""
    cat_avg = float((history.get("categories") or {}).get(category) or avg)
    if amount > cat_avg * 2.5:
        return {"isAnomaly": True, "riskLevel": "low", "alertType": "category_overspend",
                "confidence": 0.7, "message": f"{category} spending unusually high"}

    return _normal()


def build_user_context(store: Store, user_id: str, today: Optional[date] = None) -> Dict[str, Any]:
    today = today or date.today()
    cutoff = today - timedelta(days=30)

    def _recent(r):
        d = to_date(r.get("date"))
        return bool(d and d >= cutoff)

    recent = store.table("transactions").select(user_id=user_id, where=_recent, order_by="date", desc=True, limit=100)
    amounts = [abs(float(t.get("amount") or 0.0)) for t in recent]
    avg = sum(amounts) / len(amounts) if amounts else DEFAULT_AVG_SPEND

    by_cat: Dict[str, List[float]] = {}
    for t in recent:
        if t.get("category"):
            by_cat.setdefault(t["category"], []).append(abs(float(t.get("amount") or 0.0)))
    usual = [c for c, _ in Counter(t["category"] for t in recent if t.get("category")).most_common(5)]

    budgets = [b for b in store.table("budgets").select(user_id=user_id)
               if b.get("is_active", True) and b.get("status") != "deleted"]
    monthly_budget = sum(float(b.get("amount") or b.get("total_limit") or 0.0) for b in budgets) or DEFAULT_MONTHLY_BUDGET

    return {
        "averageSpend": round(avg, 2),
        "monthlyBudget": monthly_budget,
        "usualCategories": usual,
        "recentTransactionCount": len(recent),
        "categories": {c: round(sum(v) / len(v), 2) for c, v in by_cat.items()},
        "recentTransactions": [
            {"merchant": t.get("merchant") or t.get("description"), "amount": t.get("amount"), "date": t.get("date")}
            for t in recent
        ],
    }


def _llm_messages(tx: Dict[str, Any], ctx: Dict[str, Any]) -> List[Dict[str, str]]:
    system = (
        "You are a real-time transaction monitor. Analyze transactions for anomalies and generate "
        "instant alerts. Respond with ONLY valid JSON.\n\nDetect:\n"
        "- Unusual amounts (much higher than user average)\n"
        "- Suspicious merchants (unusual patterns)\n"
        "- Budget warnings (approaching limits)\n"
        "- Duplicate charges (same merchant/amount recently)\n"
        "- Time anomalies (unusual purchase time)"
    )
    user = (
        "Analyze this transaction:\n"
        f"Merchant: {tx.get('merchant')}\n"
        f"Amount: ${tx.get('amount')}\n"
        f"Category: {tx.get('category') or 'Unknown'}\n"
        f"Time: {tx.get('timestamp') or tx.get('transaction_date') or tx.get('date')}\n\n"
        "User Profile:\n"
        f"- Average spend: ${ctx['averageSpend']}\n"
        f"- Monthly budget: ${ctx['monthlyBudget']}\n"
        f"- Usual categories: {', '.join(ctx['usualCategories'])}\n"
        f"- Recent transactions: {ctx['recentTransactionCount']}\n\n"
        'Return ONLY: {"isAnomaly":false,"riskLevel":"low","alertType":null,"message":"Normal transaction"}'
    )
    return [{"role": "system", "content": system}, {"role": "user", "content": user}]


def analyze_transaction(store: Store, user_id: str, tx: Dict[str, Any], fast_llm=None,
                        quota=None, today: Optional[date] = None) -> Dict[str, Any]:
    if not tx or not tx.get("merchant") or tx.get("amount") in (None, ""):
        raise ValidationError("Missing transaction or userId")
    ctx = build_user_context(store, user_id, today)

    result = None
    model = "rules"
    latency = 0
    strategy = None
    client_quota = getattr(fast_llm, "quota", None)
    quota = quota if quota is not None else client_quota
    # a client without its own tracker gets paced and recorded here
    external = quota is not None and client_quota is None
    if fast_llm is not None:
        called = False
        try:
            if external:
                quota.before_call()
            called = True
            reply = fast_llm.chat(_llm_messages(tx, ctx), temperature=0.1, max_tokens=300)
            latency = reply.latency_ms
            if external:
                quota.record(reply.headers, latency, True)
            parsed = parse_json_content(reply.content)
            result = {**_normal(0.8), **(parsed or {})} if parsed else _normal(0.8)
            result["message"] = result.get("message") or "Transaction processed"
            model = "fast-instant"
            strategy = quota.state.strategy() if quota is not None else None
        except FunctionError as e:
            if external and called:
                quota.record(None, 0, False, e.status)
            log.warning("[InstantAlert] model unavailable, using rules: %s", e.message)
    if result is None:
        result = detect_anomaly(tx, ctx)

    result["latencyMs"] = latency
    result["model"] = model
    if strategy:
        result["strategy"] = strategy

    store.table("ai_model_routing_analytics").insert({
        "user_id": user_id,
        "query_type": "speed_critical",
        "model_used": model,
        "response_time_ms": latency,
        "confidence_score": 0.95 if result.get("isAnomaly") else 0.8,
        "query_length": len(str(tx)),
    })

    if result.get("isAnomaly"):
        merchant = tx.get("merchant")
        label = "Unusual Transaction" if result.get("alertType") == "unusual_amount" else "Transaction Alert"
        store.table("wallet_notifications").insert({
            "user_id": user_id,
            "notification_type": "transaction_alert",
            "title": f"⚠️ {label}: {merchant}",
            "message": result.get("message"),
            "priority": result.get("riskLevel"),
            "read": False,
            "metadata": {
                "transaction_id": tx.get("id"),
                "transaction_amount": tx.get("amount"),
                "merchant": merchant,
                "alert_type": result.get("alertType"),
                "risk_level": result.get("riskLevel"),
                "latency_ms": latency,
                "model": model,
            },
        })
        store.table("notification_queue").insert({
            "user_id": user_id,
            "notification_type": "transaction_anomaly",
            "subject": f"⚠️ {merchant}",
            "content": {
                "title": f"Unusual Transaction: {merchant}",
                "body": result.get("message"),
                "data": {"type": "transaction_anomaly", "riskLevel": result.get("riskLevel"), "model": model},
            },
            "status": "pending",
        })

    result["userContext"] = {"averageSpend": ctx["averageSpend"], "monthlyBudget": ctx["monthlyBudget"]}
    return result


# ==================== ALERT QUEUE ====================
def enqueue_transaction_alert(store: Store, user_id: str, tx: Dict[str, Any]) -> Dict[str, Any]:
    if not tx or not tx.get("merchant"):
        raise ValidationError("transaction.merchant is required")
    return store.table("transaction_alert_queue").insert({
        "user_id": user_id,
        "transaction_data": tx,
        "status": "pending",
    })


def process_alert_queue(store: Store, analyze: Callable[[str, Dict[str, Any]], Dict[str, Any]],
                        batch_threshold: int = BATCH_THRESHOLD, limit: int = 10,
                        batch_limit: int = 50, user_id: Optional[str] = None) -> Dict[str, Any]:
    """Drain pending alerts; user_id=None drains every user (operator CLI only)."""
    queue = store.table("transaction_alert_queue")
    scope = {"user_id": user_id} if user_id is not None else {}
    depth = queue.count(status="pending", **scope)
    mode = "batch" if depth > batch_threshold else "single"
    log.info("[ProcessAlerts] user=%s queue depth=%d mode=%s", user_id or "*", depth, mode)

    pending = queue.select(status="pending", order_by="created_at",
                           limit=batch_limit if mode == "batch" else limit, **scope)
    if not pending:
        return {"mode": mode, "processed": 0, "results": [], "message": "No pending alerts"}

    results = []
    for item in pending:
        queue.update({"status": "processing"}, id=item["id"])
        tx = dict(item.get("transaction_data") or {})
        tx["amount"] = abs(float(tx.get("amount") or 0.0))
        try:
            analysis = analyze(item["user_id"], tx)
            queue.update({"status": "completed", "processed_at": utcnow_iso()}, id=item["id"])
            results.append({
                "alertId": item["id"],
                "transactionId": tx.get("id"),
                "isAnomaly": bool(analysis.get("isAnomaly")),
                "riskLevel": analysis.get("riskLevel"),
                "latencyMs": analysis.get("latencyMs"),
            })
        except Exception as e:
            log.exception("[ProcessAlerts] alert %s failed", item["id"])
            msg = e.message if isinstance(e, FunctionError) else str(e) or "Unknown error"
            queue.update({"status": "failed", "error_message": msg, "processed_at": utcnow_iso()}, id=item["id"])
            results.append({"alertId": item["id"], "error": msg})

    log.info("[ProcessAlerts] processed=%d mode=%s", len(results), mode)
    return {"mode": mode, "processed": len(results), "results": results}
