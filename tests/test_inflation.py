from datetime import date

from pocketpilot.inflation import (
    detect_budget_inflation,
    last_complete_months,
    monthly_category_spend,
    run_inflation_detection,
)

TODAY = date(2025, 5, 15)


def _spend(month, total, category="Dining Out"):
    return {"date": f"2025-{month:02d}-10", "amount": -total, "category": category}


def test_last_complete_months():
    assert last_complete_months(TODAY, 3) == ["2025-02", "2025-03", "2025-04"]
    assert last_complete_months(date(2025, 1, 3), 2) == ["2024-11", "2024-12"]


def test_monthly_category_spend_counts_outflows_only():
    txs = [_spend(3, 100), _spend(3, 50), {"date": "2025-03-02", "amount": 40, "category": "Dining Out"},
           _spend(4, 20, category="Groceries"), _spend(5, 999)]
    series = monthly_category_spend(txs, "dining out", months=3, today=TODAY)
    assert series == [
        {"month": "2025-02", "total": 0.0},
        {"month": "2025-03", "total": 150.0},
        {"month": "2025-04", "total": 0.0},
    ]


def test_flags_budget_that_keeps_running_over():
    budgets = [{"id": "b1", "category": "Dining Out", "amount": 300}]
    txs = [_spend(2, 340), _spend(3, 360), _spend(4, 380)]
    alerts = detect_budget_inflation(budgets, txs, today=TODAY)
    assert len(alerts) == 1
    a = alerts[0]
    assert a["budget_id"] == "b1"
    assert a["old_budget"] == 300
    # avg 360 * 1.05 = 378 -> 380
    assert a["suggested_budget"] == 380.0
    assert a["evidence"]["average"] == 360.0
    assert a["evidence"]["overage_pct"] == 20.0
    assert "3 of the last 3 months" in a["reason"]


def test_single_spike_is_not_inflation():
    budgets = [{"id": "b1", "category": "Dining Out", "amount": 300}]
    txs = [_spend(2, 200), _spend(3, 600), _spend(4, 250)]
    assert detect_budget_inflation(budgets, txs, today=TODAY) == []


def test_small_overage_below_threshold_ignored():
    budgets = [{"id": "b1", "category": "Dining Out", "amount": 300}]
    txs = [_spend(2, 320), _spend(3, 325), _spend(4, 320)]
    assert detect_budget_inflation(budgets, txs, today=TODAY) == []


def test_inactive_budgets_skipped():
    budgets = [{"id": "b1", "category": "Dining Out", "amount": 300, "is_active": False}]
    txs = [_spend(2, 500), _spend(3, 500), _spend(4, 500)]
    assert detect_budget_inflation(budgets, txs, today=TODAY) == []


def test_run_does_not_reopen_dismissed_alerts(store):
    store.table("budgets").insert({"id": "b1", "user_id": "u1", "category": "Dining Out", "amount": 300})
    store.table("transactions").insert([{**t, "user_id": "u1"} for t in (_spend(2, 400), _spend(3, 400), _spend(4, 400))])

    first = run_inflation_detection(store, "u1", today=TODAY)
    assert first["count"] == 1
    assert first["alerts"][0]["status"] == "pending"

    alerts = store.table("budget_inflation_alerts")
    alerts.update({"status": "dismissed"}, budget_id="b1")
    assert run_inflation_detection(store, "u1", today=TODAY)["count"] == 0
    assert alerts.count(user_id="u1") == 1
