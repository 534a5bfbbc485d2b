from datetime import date

import pytest

from conftest import FakeLLM
from pocketpilot.errors import NotFoundError, ValidationError
from pocketpilot.forecast import predict_spending, projection_date, spending_statistics, time_to_goal

TODAY = date(2025, 6, 20)


def _history(amounts, start_day=1):
    return [{"date": f"2025-05-{start_day + i:02d}", "amount": a} for i, a in enumerate(amounts)]


def test_statistics_trend_and_volatility():
    stats = spending_statistics(_history([10, 10, 10, 10, 20, 20, 20, 20]))
    assert stats["trend"] == "increasing"
    assert stats["volatility"] == "high"
    assert stats["mean"] == 15.0
    flat = spending_statistics(_history([10] * 6))
    assert flat["trend"] == "stable"
    assert flat["volatility"] == "low"
    assert flat["anomalies"] == []


def test_statistics_flags_spikes_and_weekly_pattern():
    stats = spending_statistics(_history([10] * 12 + [200]))
    assert len(stats["anomalies"]) == 1
    assert "2025-05-13" in stats["anomalies"][0]
    assert len(stats["weekly_pattern"]) == 7


def _seed_category(store, amounts_by_month):
    rows = []
    for month, amounts in amounts_by_month.items():
        for i, a in enumerate(amounts):
            rows.append({"user_id": "u1", "category": "Dining Out", "date": f"2025-{month:02d}-{i + 1:02d}",
                         "amount": -a})
    store.table("transactions").insert(rows)


def test_forecast_needs_history(store):
    _seed_category(store, {5: [10, 12]})
    with pytest.raises(ValidationError, match="Insufficient"):
        predict_spending(store, "u1", "Dining Out", today=TODAY)


def test_flat_forecast_without_model(store):
    _seed_category(store, {3: [100, 100], 4: [150, 150], 5: [125, 125]})
    out = predict_spending(store, "u1", "Dining Out", months=2, today=TODAY)
    assert [f["month"] for f in out["forecasts"]] == [1, 2]
    first = out["forecasts"][0]
    assert first["predicted_amount"] == 250.0
    assert first["confidence"]["lower"] < 250.0 < first["confidence"]["upper"]
    assert store.table("spending_forecasts").count(user_id="u1") == 2


def test_forecast_uses_model_and_merges_recommendations(store):
    _seed_category(store, {5: [10, 10, 10, 30, 30, 30]})
    llm = FakeLLM(tool_args={
        "forecasts": [{"month": 1, "predicted_amount": 130, "confidence_lower": 110, "confidence_upper": 150}],
        "insights": {"recommendations": ["Cook at home twice a week."]},
    })
    out = predict_spending(store, "u1", "Dining Out", months=1, llm=llm, today=TODAY)
    assert llm.calls == [("tool", "provide_forecast")]
    recs = out["insights"]["recommendations"]
    assert recs[0] == "Cook at home twice a week."
    assert any("trending upward" in r for r in recs)
    saved = store.table("spending_forecasts").first(user_id="u1")
    assert saved["forecast_date"] == "2025-07-20"
    assert saved["confidence_score"] == 1.0


def test_projection_date():
    assert projection_date(1000, 250, TODAY) == date(2025, 10, 20)
    assert projection_date(1000, 0, TODAY) == date(2026, 6, 20)
    assert projection_date(0, 100, TODAY) == TODAY


def test_time_to_goal_with_default_suggestions(store):
    goal = store.table("goals").insert({"user_id": "u1", "name": "Trip", "target_amount": 1200,
                                        "current_amount": 200, "monthly_contribution": 250})
    _seed_category(store, {5: [300], 6: [300]})
    out = time_to_goal(store, "u1", goal["id"], today=TODAY)
    assert out["remaining"] == "1000.00"
    assert out["currentMonthlyContribution"] == "250.00"
    assert out["currentProjection"] == "2025-10-20"
    s = out["suggestions"][0]
    assert s["category"] == "Dining Out"
    assert s["savings"] == 20.0
    assert s["timeReduction"] == "0 days"


def test_time_to_goal_with_model(store):
    goal = store.table("goals").insert({"user_id": "u1", "name": "Car", "target_amount": 3000,
                                        "current_amount": 0, "monthly_contribution": 250})
    llm = FakeLLM(tool_args={"suggestions": [
        {"id": "s1", "action": "Cancel streaming", "savings": 250, "category": "Subscriptions", "difficulty": "easy"},
    ]})
    out = time_to_goal(store, "u1", goal["id"], llm=llm, today=TODAY)
    s = out["suggestions"][0]
    assert s["newProjection"] == "2025-12-20"
    assert s["timeReduction"] == "182 days"


def test_time_to_goal_other_users_goal(store):
    goal = store.table("goals").insert({"user_id": "u2", "name": "x", "target_amount": 1})
    with pytest.raises(NotFoundError):
        time_to_goal(store, "u1", goal["id"], today=TODAY)
