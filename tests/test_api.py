import logging
from datetime import date

from conftest import USER, FakeLLM
from web_app.app import create_app


# ------------------ AUTH / MIDDLEWARE ------------------
def test_healthz_needs_no_token(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.get_json() == {"ok": True}
    assert r.headers["Access-Control-Allow-Origin"] == "*"


def test_missing_token_is_401(client):
    r = client.post("/functions/budget-alerts")
    assert r.status_code == 401
    assert r.get_json() == {"error": "Missing authorization header"}


def test_bad_token_is_401(client):
    r = client.get("/api/budgets", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401


def test_preflight_gets_cors_headers(client):
    r = client.open("/functions/ai-insights", method="OPTIONS")
    assert r.status_code == 200
    assert "authorization" in r.headers["Access-Control-Allow-Headers"]


def test_issue_token_then_use_it(client):
    r = client.post("/auth/token", json={"user_id": "u-9", "email": "u9@example.com"})
    assert r.status_code == 201
    token = r.get_json()["access_token"]
    listed = client.get("/api/goals", headers={"Authorization": f"Bearer {token}"})
    assert listed.status_code == 200
    assert listed.get_json()["count"] == 0
    assert client.post("/auth/token", json={}).status_code == 400


def test_unknown_route_is_json_404(client, auth_headers):
    r = client.get("/nope", headers=auth_headers)
    assert r.status_code == 404
    assert "error" in r.get_json()


# ------------------ CRUD ------------------
def test_crud_is_scoped_and_soft_deletes(client, auth_headers, app):
    r = client.post("/api/budgets", json={"category": "Groceries", "amount": "400"}, headers=auth_headers)
    assert r.status_code == 201
    row = r.get_json()["row"]
    assert row["amount"] == 400.0
    assert row["status"] == "active"
    assert row["user_id"] == USER

    other = app.extensions["pocketpilot"].auth.issue_token("someone-else")
    r = client.patch(f"/api/budgets/{row['id']}", json={"amount": 1},
                     headers={"Authorization": f"Bearer {other}"})
    assert r.status_code == 404

    r = client.patch(f"/api/budgets/{row['id']}", json={"amount": 450, "user_id": "hijack"}, headers=auth_headers)
    assert r.get_json()["row"]["amount"] == 450.0
    assert r.get_json()["row"]["user_id"] == USER

    assert client.delete(f"/api/budgets/{row['id']}", headers=auth_headers).get_json()["soft"] is True
    assert client.get("/api/budgets", headers=auth_headers).get_json()["count"] == 0
    assert client.get("/api/budgets?include_deleted=1", headers=auth_headers).get_json()["count"] == 1


def test_crud_validation(client, auth_headers):
    assert client.get("/api/secrets", headers=auth_headers).status_code == 404
    r = client.post("/api/goals", json={"name": "Trip"}, headers=auth_headers)
    assert r.status_code == 400
    assert "target_amount" in r.get_json()["error"]
    r = client.post("/api/goals", json={"name": "Trip", "target_amount": "lots"}, headers=auth_headers)
    assert r.status_code == 400


def test_manual_transaction_sign_and_category(client, auth_headers):
    r = client.post("/api/transactions/manual",
                    json={"amount": 12.5, "kind": "expense", "description": "Starbucks latte", "date": "06/01/2025"},
                    headers=auth_headers)
    assert r.status_code == 201
    saved = r.get_json()["saved"]
    assert saved["amount"] == -12.5
    assert saved["date"] == "2025-06-01"
    assert saved["source"] == "manual"
    assert saved["category"]
    assert client.post("/api/transactions/manual", json={}, headers=auth_headers).status_code == 400


# ------------------ FUNCTIONS ------------------
def test_budget_alert_toasts_once(client, auth_headers, store):
    today = date.today().isoformat()
    store.table("budgets").insert({"user_id": USER, "category": "Dining Out", "amount": 100, "status": "active"})
    store.table("transactions").insert({"user_id": USER, "date": today, "amount": -85, "category": "Dining Out"})
    first = client.post("/functions/budget-alerts", headers=auth_headers).get_json()
    second = client.post("/functions/budget-alerts", headers=auth_headers).get_json()
    assert [a["level"] for a in first["alerts"]] == ["warning"]
    assert second["alerts"] == []


def test_detect_subscriptions_validates_days(client, auth_headers):
    r = client.post("/functions/detect-subscriptions", json={"days": 5}, headers=auth_headers)
    assert r.status_code == 400
    r = client.post("/functions/detect-subscriptions", json={"days": 90}, headers=auth_headers)
    assert r.status_code == 200
    assert r.get_json()["success"] is True


def test_ai_insights_without_key_is_config_error(client, auth_headers, store):
    store.table("transactions").insert({"user_id": USER, "date": date.today().isoformat(), "amount": -9,
                                        "category": "Coffee"})
    r = client.post("/functions/ai-insights", headers=auth_headers)
    assert r.status_code == 500
    assert r.get_json() == {"error": "LLM_API_KEY not configured"}


def test_ai_insights_without_key_and_no_activity(client, auth_headers):
    r = client.post("/functions/ai-insights", headers=auth_headers)
    assert r.status_code == 200
    assert r.get_json()["insight"].startswith("Not enough recent activity")


def test_ai_insights_text_and_cache_headers(settings, store):
    store.table("transactions").insert({"user_id": USER, "date": date.today().isoformat(), "amount": -42,
                                        "category": "Groceries"})
    app = create_app(settings, store, llm=FakeLLM("You spent $42.00 on Groceries."), fast_llm=None)
    client = app.test_client()
    headers = {"Authorization": f"Bearer {app.extensions['pocketpilot'].auth.issue_token(USER)}"}

    first = client.post("/functions/ai-insights", headers=headers)
    assert first.status_code == 200
    assert first.get_json()["insight"] == "You spent $42.00 on Groceries."
    assert first.headers["X-Cache"] == "MISS"
    assert "Cache-Control" not in first.headers

    second = client.post("/functions/ai-insights", headers=headers)
    assert second.headers["X-Cache"] == "HIT"


def test_health_score_cached_per_user(client, auth_headers):
    first = client.post("/functions/calculate-financial-health", headers=auth_headers)
    assert first.status_code == 200
    assert first.get_json()["success"] is True
    assert first.headers["X-Cache"] == "MISS"
    again = client.post("/functions/calculate-financial-health", headers=auth_headers)
    assert again.headers["X-Cache"] == "HIT"
    forced = client.post("/functions/calculate-financial-health", json={"force": True}, headers=auth_headers)
    assert forced.headers["X-Cache"] == "MISS"


def test_goal_projection_not_found(client, auth_headers):
    r = client.post("/functions/calculate-time-to-goal", json={"goalId": "missing"}, headers=auth_headers)
    assert r.status_code == 404
    assert r.get_json() == {"error": "Goal not found"}


def test_widget_analytics_track_and_summary(client, auth_headers):
    r = client.post("/functions/widget-analytics", json={"widgetId": "net-worth", "eventType": "view"},
                    headers=auth_headers)
    assert r.status_code == 202
    summary = client.get("/functions/widget-analytics", headers=auth_headers).get_json()
    assert summary["widgets"][0]["widget_id"] == "net-worth"
    bad = client.post("/functions/widget-analytics", json={"widgetId": "x", "eventType": "hover"},
                      headers=auth_headers)
    assert bad.status_code == 400


def test_ai_chat_returns_reply(settings, store):
    app = create_app(settings, store, llm=FakeLLM("Sure, here's a tip."), fast_llm=None)
    client = app.test_client()
    headers = {"Authorization": f"Bearer {app.extensions['pocketpilot'].auth.issue_token(USER)}"}
    r = client.post("/functions/ai-chat", json={"messages": [{"role": "user", "content": "tips?"}]}, headers=headers)
    assert r.get_json() == {"reply": "Sure, here's a tip."}


def test_plaid_without_credentials(client, auth_headers):
    r = client.post("/functions/plaid-link-token", headers=auth_headers)
    assert r.status_code == 500
    assert "PLAID" in r.get_json()["error"]


def test_process_alerts_only_drains_callers_queue(client, auth_headers, store):
    queue = store.table("transaction_alert_queue")
    queue.insert({"user_id": "other-user", "status": "pending", "priority": 1,
                  "transaction_data": {"id": "tx-secret", "merchant": "Jeweler", "amount": 900}})
    r = client.post("/functions/process-transaction-alerts", headers=auth_headers)
    assert r.status_code == 200
    assert r.get_json()["processed"] == 0
    assert "tx-secret" not in r.get_data(as_text=True)
    assert queue.first(user_id="other-user")["status"] == "pending"


def test_function_entry_is_logged(client, auth_headers, caplog):
    caplog.set_level(logging.INFO, logger="web_app.functions_api")
    client.post("/functions/budget-alerts", headers=auth_headers)
    assert f"[BudgetAlerts] user={USER}" in caplog.text
