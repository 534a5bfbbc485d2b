from datetime import date

import pytest

from conftest import FakeLLM
from pocketpilot.cache import TTLCache
from pocketpilot.errors import ConfigError, UpstreamError, ValidationError
from pocketpilot.insights import generate_insights, proxy_chat, spending_summary

TODAY = date(2025, 6, 20)


def test_summary_window_and_totals():
    txs = [
        {"date": "2025-06-01", "amount": -40.0, "category": "Groceries"},
        {"date": "2025-06-02", "amount": -60.5, "category": "Dining Out"},
        {"date": "2025-06-03", "amount": -10.0, "category": "Groceries"},
        {"date": "2025-06-05", "amount": 1000.0, "category": "Income"},
        {"date": "2025-04-01", "amount": -999.0, "category": "Travel"},
        {"date": "2025-06-06", "amount": "n/a"},
    ]
    s = spending_summary(txs, TODAY)
    assert s["transaction_count"] == 4
    assert s["total_spent"] == 110.5
    assert s["net"] == 889.5
    assert [c["category"] for c in s["categories"]] == ["Dining Out", "Groceries"]


def test_insights_cached_until_forced(store):
    store.table("transactions").insert({"user_id": "u1", "date": "2025-06-10", "amount": -25, "category": "Coffee"})
    llm = FakeLLM("You spent $25.00 on Coffee this month.")
    cache = TTLCache()
    first = generate_insights(store, "u1", llm, cache, today=TODAY)
    second = generate_insights(store, "u1", llm, cache, today=TODAY)
    assert first["insight"] == "You spent $25.00 on Coffee this month."
    assert (first["from_cache"], second["from_cache"]) == (False, True)
    assert len(llm.calls) == 1
    generate_insights(store, "u1", llm, cache, today=TODAY, force=True)
    assert len(llm.calls) == 2
    assert store.table("ai_insights").count(user_id="u1") == 2


def test_insights_without_activity_skip_model(store):
    llm = FakeLLM("unused")
    out = generate_insights(store, "u1", llm, TTLCache(), today=TODAY)
    assert out["insight"].startswith("Not enough recent activity")
    assert llm.calls == []


def test_insights_errors(store):
    store.table("transactions").insert({"user_id": "u1", "date": "2025-06-10", "amount": -5})
    with pytest.raises(ConfigError):
        generate_insights(store, "u1", None, TTLCache(), today=TODAY)
    with pytest.raises(UpstreamError):
        generate_insights(store, "u1", FakeLLM("   "), TTLCache(), today=TODAY)


def test_proxy_chat_validates_messages():
    llm = FakeLLM("Hi there")
    assert proxy_chat(llm, [{"role": "user", "content": "hello"}]) == "Hi there"
    with pytest.raises(ValidationError):
        proxy_chat(llm, [])
    with pytest.raises(ValidationError):
        proxy_chat(llm, [{"role": "tool", "content": "x"}])
    with pytest.raises(ValidationError):
        proxy_chat(llm, [{"role": "user", "content": "  "}])


def test_proxy_chat_keeps_recent_messages():
    llm = FakeLLM("ok")
    history = [{"role": "user", "content": f"m{i}"} for i in range(50)]
    proxy_chat(llm, history)
    sent = llm.calls[0][1]
    assert len(sent) == 40
    assert sent[0]["content"] == "m10"


def test_insights_without_activity_needs_no_model(store):
    out = generate_insights(store, "u1", None, TTLCache(), today=TODAY)
    assert out["insight"].startswith("Not enough recent activity")
    assert out["from_cache"] is False
    assert store.table("ai_insights").count(user_id="u1") == 1
