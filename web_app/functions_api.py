# web_app/functions_api.py
# POST /functions/<name>: authenticate -> query -> compute -> write -> JSON.
from __future__ import annotations

import logging
import time
from datetime import date, datetime, timedelta

from flask import Blueprint, g, jsonify, request

from pocketpilot.alerts import analyze_transaction, check_budgets, enqueue_transaction_alert, process_alert_queue
from pocketpilot.analytics import widget_usage_summary
from pocketpilot.benefits import run_benefit_hunter
from pocketpilot.cache import user_key
from pocketpilot.categorize import suggest_category
from pocketpilot.errors import ValidationError
from pocketpilot.forecast import predict_spending, time_to_goal
from pocketpilot.health import run_health_score
from pocketpilot.inflation import run_inflation_detection
from pocketpilot.insights import generate_insights, proxy_chat
from pocketpilot.market import monitor_gas_prices
from pocketpilot.plaid_link import create_link_token, exchange_public_token, sync_transactions
from pocketpilot.recurring import run_subscription_detection
from pocketpilot.settings import ttl_for
from web_app.services import current

bp = Blueprint("functions_api", __name__, url_prefix="/functions")
log = logging.getLogger(__name__)


@bp.before_request
def log_entry():
    # budget_alerts -> [BudgetAlerts]
    name = "".join(p.title() for p in request.endpoint.rsplit(".", 1)[-1].split("_"))
    log.info("[%s] user=%s", name, g.user["id"])


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _uid() -> str:
    return g.user["id"]


def _int_arg(data: dict, name: str, default: int, lo: int, hi: int) -> int:
    raw = data.get(name, default)
    try:
        val = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")
    if not lo <= val <= hi:
        raise ValidationError(f"{name} must be between {lo} and {hi}")
    return val


def _date_arg(data: dict, name: str, default: date) -> date:
    raw = data.get(name)
    if not raw:
        return default
    try:
        return datetime.strptime(str(raw)[:10], "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(f"{name} must be YYYY-MM-DD")


def _cached(payload, from_cache: bool, started: float):
    resp = jsonify(payload)
    resp.headers["X-Cache"] = "HIT" if from_cache else "MISS"
    resp.headers["X-Cache-Time"] = f"{(time.monotonic() - started) * 1000:.1f}ms"
    return resp


# ==================== DETECTION ====================
@bp.post("/detect-subscriptions")
def detect_subscriptions():
    data = _body()
    days = _int_arg(data, "days", 180, 30, 730)
    return jsonify({"success": True, **run_subscription_detection(current().store, _uid(), days=days)})


@bp.post("/detect-budget-inflation")
def detect_budget_inflation():
    months = _int_arg(_body(), "months", 3, 2, 12)
    return jsonify({"success": True, **run_inflation_detection(current().store, _uid(), months=months)})


@bp.post("/budget-alerts")
def budget_alerts():
    svc = current()
    return jsonify(check_budgets(svc.store, _uid(), svc.alert_tracker))


# ==================== MARKET ====================
@bp.get("/gas-prices")
def gas_prices():
    started = time.monotonic()
    prices, from_cache = current().gas.current_with_source()
    return _cached({"prices": prices}, from_cache, started)


@bp.post("/monitor-gas-prices")
def monitor_gas():
    svc = current()
    return jsonify({"success": True, **monitor_gas_prices(svc.store, svc.gas)})


@bp.post("/merchant-logo")
def merchant_logo():
    merchant = _body().get("merchant") or request.args.get("merchant")
    return jsonify({"logo": current().logos.lookup(merchant)})


# ==================== TRANSACTION ALERTS ====================
@bp.post("/instant-transaction-alert")
def instant_transaction_alert():
    svc = current()
    tx = _body().get("transaction")
    if not isinstance(tx, dict):
        raise ValidationError("Missing transaction or userId")
    result = analyze_transaction(svc.store, _uid(), tx, fast_llm=svc.fast_llm, quota=svc.quota)
    return jsonify(result)


@bp.post("/enqueue-transaction-alert")
def enqueue_alert():
    tx = _body().get("transaction")
    if not isinstance(tx, dict):
        raise ValidationError("transaction is required")
    row = enqueue_transaction_alert(current().store, _uid(), tx)
    return jsonify({"success": True, "alertId": row["id"]}), 201


@bp.post("/process-transaction-alerts")
def process_transaction_alerts():
    svc = current()

    def _analyze(user_id, tx):
        return analyze_transaction(svc.store, user_id, tx, fast_llm=svc.fast_llm, quota=svc.quota)

    result = process_alert_queue(svc.store, _analyze, user_id=_uid())
    result["quota"] = svc.quota.snapshot()
    return jsonify({"success": True, **result})


@bp.post("/smart-category-suggest")
def smart_category_suggest():
    svc = current()
    data = _body()
    result = suggest_category(
        svc.store, _uid(),
        merchant=data.get("merchantName") or "",
        amount=data.get("amount") or 0.0,
        description=data.get("description") or "",
        fast_llm=svc.fast_llm,
        llm=svc.llm,
    )
    return jsonify(result)


# ==================== PLANNING ====================
@bp.post("/benefit-hunter")
def benefit_hunter():
    svc = current()
    return jsonify(run_benefit_hunter(svc.store, _uid(), llm=svc.llm))


@bp.post("/calculate-financial-health")
def calculate_financial_health():
    svc = current()
    started = time.monotonic()
    key = user_key("health_score", _uid())
    if _body().get("force"):
        svc.cache.delete(key)
    result, from_cache = svc.cache.get_or_set(key, lambda: run_health_score(svc.store, _uid()),
                                              ttl_for("health_score"))
    return _cached(result, from_cache, started)


@bp.post("/predict-spending-forecast")
def predict_spending_forecast():
    svc = current()
    data = _body()
    months = _int_arg(data, "months", 3, 1, 12)
    return jsonify(predict_spending(svc.store, _uid(), data.get("category"), months=months, llm=svc.llm))


@bp.post("/calculate-time-to-goal")
def calculate_time_to_goal():
    svc = current()
    return jsonify(time_to_goal(svc.store, _uid(), _body().get("goalId"), llm=svc.llm))


# ==================== AI PROXIES ====================
@bp.post("/ai-insights")
def ai_insights():
    svc = current()
    started = time.monotonic()
    result = generate_insights(svc.store, _uid(), svc.llm, svc.cache, force=bool(_body().get("force")))
    return _cached(result, result["from_cache"], started)


@bp.post("/ai-chat")
def ai_chat():
    return jsonify({"reply": proxy_chat(current().llm, _body().get("messages"))})


# ==================== WIDGET ANALYTICS ====================
@bp.post("/widget-analytics")
def widget_analytics_track():
    data = _body()
    svc = current()
    flushed = svc.analytics.track(_uid(), data.get("widgetId"), data.get("eventType"), data.get("metadata"))
    return jsonify({"success": True, "queued": len(svc.analytics), "flushed": flushed}), 202


@bp.get("/widget-analytics")
def widget_analytics_summary():
    svc = current()
    svc.analytics.flush()
    return jsonify({"widgets": widget_usage_summary(svc.store, _uid())})


# ==================== BANK LINK ====================
@bp.post("/plaid-link-token")
def plaid_link_token():
    svc = current()
    token = create_link_token(svc.plaid_client(), _uid(), svc.settings.plaid_client_name)
    return jsonify({"link_token": token})


@bp.post("/plaid-exchange-token")
def plaid_exchange_token():
    svc = current()
    item = exchange_public_token(svc.store, svc.plaid_client(), _uid(), _body().get("public_token"))
    return jsonify({"success": True, **item})


@bp.post("/plaid-sync")
def plaid_sync():
    svc = current()
    data = _body()
    today = date.today()
    days = _int_arg(data, "days", 30, 1, 730)
    start = _date_arg(data, "start", today - timedelta(days=days))
    end = _date_arg(data, "end", today)
    return jsonify({"success": True, **sync_transactions(svc.store, svc.plaid_client(), _uid(), start, end)})
