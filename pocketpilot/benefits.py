# pocketpilot/benefits.py
# Benefit hunter: match recent card purchases to card perks and nudge the user.
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from pocketpilot.dates import to_date
from pocketpilot.errors import FunctionError
from pocketpilot.llm import parse_json_content
from pocketpilot.store import Store

log = logging.getLogger(__name__)

LOOKBACK_DAYS = 7
DEFAULT_VALIDITY_DAYS = 30
URGENCY_PRIORITY = {"high": 3, "medium": 2, "low": 1}


def _dollars(tx: Dict[str, Any]) -> float:
    return abs(int(tx.get("amount_cents") or 0)) / 100.0


def match_benefits(tx: Dict[str, Any], benefits: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    cents = abs(int(tx.get("amount_cents") or 0))
    category = (tx.get("merchant_category") or "").lower()
    merchant = (tx.get("merchant_name") or "").lower()
    out = []
    for b in benefits or []:
        floor = b.get("trigger_min_amount_cents")
        if floor and cents < int(floor):
            continue
        cats = b.get("trigger_merchant_categories") or []
        if category and any(c.lower() in category for c in cats):
            out.append(b)
            continue
        keywords = b.get("trigger_keywords") or []
        if any(k.lower() in merchant for k in keywords):
            out.append(b)
    return out


def _prompt(tx: Dict[str, Any], benefit: Dict[str, Any]) -> str:
    return (
        "You are a credit card benefits analyst. Analyze this transaction and benefit match:\n\n"
        "Transaction:\n"
        f"- Merchant: {tx.get('merchant_name')}\n"
        f"- Category: {tx.get('merchant_category') or 'Unknown'}\n"
        f"- Amount: ${_dollars(tx):.2f}\n"
        f"- Date: {tx.get('transaction_date')}\n\n"
        "Benefit:\n"
        f"- Name: {benefit.get('benefit_name')}\n"
        f"- Description: {benefit.get('description')}\n"
        f"- Activation Required: {'Yes' if benefit.get('activation_required') else 'No'}\n\n"
        "Write a personalized, actionable message (2-3 sentences) for the user about this benefit. "
        "Rate the match confidence (0.0-1.0) and urgency (low/medium/high).\n\n"
        'Return ONLY valid JSON: {"confidence":0.95,"actionableMessage":"...","urgency":"medium"}'
    )


def _fallback(tx: Dict[str, Any], benefit: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "confidence": 0.8,
        "urgency": "medium",
        "actionableMessage": (
            f"You recently made a purchase at {tx.get('merchant_name')}. "
            f"Don't forget to take advantage of your {benefit.get('benefit_name')} benefit!"
        ),
    }


def _assess(llm, tx, benefit) -> Dict[str, Any]:
    if llm is None:
        return _fallback(tx, benefit)
    reply = llm.chat([{"role": "user", "content": _prompt(tx, benefit)}], temperature=0.7, max_tokens=500)
    return parse_json_content(reply.content) or _fallback(tx, benefit)


def run_benefit_hunter(store: Store, user_id: str, llm=None, today: Optional[date] = None) -> Dict[str, Any]:
    today = today or date.today()
    since = today - timedelta(days=LOOKBACK_DAYS)
    log.info("[BenefitHunter] user=%s", user_id)

    def _recent(r):
        d = to_date(r.get("transaction_date"))
        return bool(d and d >= since)

    txs = store.table("card_transactions").select(user_id=user_id, where=_recent,
                                                  order_by="transaction_date", desc=True)
    if not txs:
        return {"message": "No recent transactions to analyze", "newMatches": 0}

    tier_row = store.table("card_tier_status").first(user_id=user_id)
    tier = (tier_row or {}).get("current_tier") or "basic"
    benefits = store.table("card_benefits").select(
        is_active=True, where=lambda b: b.get("card_tier") in (tier, "basic"))
    log.info("[BenefitHunter] %d transactions, %d benefits for tier %s", len(txs), len(benefits), tier)

    matches_t = store.table("benefit_matches")
    nudges_t = store.table("agent_nudges")
    new_matches = 0
    for tx in txs:
        if matches_t.first(transaction_id=tx["id"]):
            continue
        for benefit in match_benefits(tx, benefits):
            try:
                ai = _assess(llm, tx, benefit)
            except FunctionError as e:
                log.error("[BenefitHunter] AI failed for benefit %s: %s", benefit.get("id"), e.message)
                continue
            confidence = float(ai.get("confidence") or 0.8)
            message = ai.get("actionableMessage") or benefit.get("description")
            expires_at = datetime.combine(today, datetime.min.time()) + timedelta(
                days=int(benefit.get("validity_days") or DEFAULT_VALIDITY_DAYS))

            matches_t.insert({
                "user_id": user_id,
                "transaction_id": tx["id"],
                "benefit_id": benefit.get("id"),
                "match_confidence": confidence,
                "status": "pending",
                "expires_at": expires_at.isoformat(),
            })
            nudges_t.insert({
                "user_id": user_id,
                "agent_type": "benefit_hunter",
                "nudge_type": benefit.get("benefit_category"),
                "message": message,
                "priority": URGENCY_PRIORITY.get(ai.get("urgency"), 1),
                "action_url": benefit.get("activation_url"),
                "trigger_data": {
                    "transaction_id": tx["id"],
                    "benefit_id": benefit.get("id"),
                    "merchant": tx.get("merchant_name"),
                    "amount": _dollars(tx),
                },
                "expires_at": expires_at.isoformat(),
            })
            new_matches += 1

    log.info("[BenefitHunter] created %d matches", new_matches)
    return {"success": True, "newMatches": new_matches, "message": f"Found {new_matches} new benefit(s) for you!"}
