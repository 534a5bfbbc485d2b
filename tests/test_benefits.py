from datetime import date

from conftest import FakeLLM
from pocketpilot.benefits import match_benefits, run_benefit_hunter
from pocketpilot.errors import UpstreamError

TODAY = date(2025, 6, 20)

TRAVEL = {
    "id": "ben-travel", "benefit_name": "Trip Delay Insurance", "description": "Covers delays over 6h",
    "benefit_category": "travel", "card_tier": "basic", "is_active": True,
    "trigger_merchant_categories": ["airline"], "trigger_keywords": [], "trigger_min_amount_cents": 10000,
    "validity_days": 14,
}
PHONE = {
    "id": "ben-phone", "benefit_name": "Cell Phone Protection", "description": "Pay your bill with the card",
    "benefit_category": "protection", "card_tier": "gold", "is_active": True,
    "trigger_merchant_categories": [], "trigger_keywords": ["verizon", "t-mobile"],
}


def test_match_by_category_keyword_and_floor():
    flight = {"merchant_name": "DELTA AIR", "merchant_category": "Airlines", "amount_cents": -45000}
    assert match_benefits(flight, [TRAVEL, PHONE]) == [TRAVEL]
    cheap = dict(flight, amount_cents=-5000)
    assert match_benefits(cheap, [TRAVEL]) == []
    bill = {"merchant_name": "Verizon Wireless", "merchant_category": "Telecom", "amount_cents": -8000}
    assert match_benefits(bill, [TRAVEL, PHONE]) == [PHONE]


def _seed(store, tier=None):
    store.table("card_benefits").insert([TRAVEL, PHONE])
    if tier:
        store.table("card_tier_status").insert({"user_id": "u1", "current_tier": tier})
    store.table("card_transactions").insert([
        {"id": "t1", "user_id": "u1", "merchant_name": "DELTA AIR", "merchant_category": "Airlines",
         "amount_cents": -45000, "transaction_date": "2025-06-18T10:00:00Z"},
        {"id": "t2", "user_id": "u1", "merchant_name": "Verizon", "merchant_category": "Telecom",
         "amount_cents": -8000, "transaction_date": "2025-06-19T10:00:00Z"},
        {"id": "t3", "user_id": "u1", "merchant_name": "DELTA AIR", "merchant_category": "Airlines",
         "amount_cents": -45000, "transaction_date": "2025-05-01T10:00:00Z"},
    ])


def test_basic_tier_only_gets_basic_benefits(store):
    _seed(store)
    out = run_benefit_hunter(store, "u1", today=TODAY)
    assert out["newMatches"] == 1
    nudge = store.table("agent_nudges").first(user_id="u1")
    assert nudge["priority"] == 2
    assert "Trip Delay Insurance" in nudge["message"]
    match = store.table("benefit_matches").first(user_id="u1")
    assert match["expires_at"].startswith("2025-07-04")


def test_gold_tier_and_llm_urgency(store):
    _seed(store, tier="gold")
    llm = FakeLLM({"confidence": 0.97, "actionableMessage": "File a delay claim within 60 days.", "urgency": "high"})
    out = run_benefit_hunter(store, "u1", llm=llm, today=TODAY)
    assert out["newMatches"] == 2
    priorities = sorted(n["priority"] for n in store.table("agent_nudges").select(user_id="u1"))
    assert priorities == [3, 3]


def test_already_matched_transactions_are_skipped(store):
    _seed(store)
    run_benefit_hunter(store, "u1", today=TODAY)
    assert run_benefit_hunter(store, "u1", today=TODAY)["newMatches"] == 0


def test_ai_failure_skips_benefit(store):
    _seed(store)
    out = run_benefit_hunter(store, "u1", llm=FakeLLM(error=UpstreamError("AI service error: 500")), today=TODAY)
    assert out["newMatches"] == 0
    assert store.table("benefit_matches").count() == 0


def test_no_recent_transactions(store):
    assert run_benefit_hunter(store, "nobody", today=TODAY)["newMatches"] == 0
