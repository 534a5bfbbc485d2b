# pocketpilot/categorize.py
# Category suggestion: cached user picks -> fast LLM -> gateway LLM -> keywords.
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from pocketpilot import filter_config as fc
from pocketpilot.errors import FunctionError, ValidationError
from pocketpilot.store import Store

log = logging.getLogger(__name__)

CACHE_CONFIDENCE = 0.7
KEYWORD_CONFIDENCE = 0.5


# === Keyword categorizer ===
def clean_description(desc: str) -> str:
    desc = (desc or "").strip().upper()
    desc = desc.replace("-", "")
    return re.sub(r"\s+", " ", desc)


def keyword_hits(desc: str, kw: str) -> bool:
    """Substring match, except whole-word for STRICT_BOUNDARY_KEYWORDS."""
    desc = clean_description(desc)
    kw = clean_description(kw)
    if not kw:
        return False
    if kw in set(fc.STRICT_BOUNDARY_KEYWORDS):
        return re.search(rf"\b{re.escape(kw)}\b", desc) is not None
    return kw in desc


def looks_like_transfer(desc: str) -> bool:
    U = (desc or "").upper()
    return any(kw in U for kw in fc.TRANSFER_KEYWORDS)


def is_return(desc: str) -> bool:
    U = (desc or "").upper()
    return any(k in U for k in fc.RETURN_KEYWORDS)


def categorize_transaction(desc: str, amount: float, category_keywords: Optional[Dict[str, List[str]]] = None) -> str:
    category_keywords = fc.CATEGORY_KEYWORDS if category_keywords is None else category_keywords
    desc = clean_description(desc)
    returned = is_return(desc)

    # Transfers first so they never land in spending
    if looks_like_transfer(desc):
        return "Transfers"

    priority_order = ["Income"] + [cat for cat in category_keywords if cat != "Income"]
    for category in priority_order:
        for keyword in category_keywords.get(category, []):
            if keyword_hits(desc, keyword):
                # refunds go back to the merchant category, outflows are never income
                if category == "Income" and (returned or (amount is not None and float(amount) < 0)):
                    continue
                return category
    return "Miscellaneous"


def _code_for(name: str, categories: List[Dict[str, str]]) -> str:
    for c in categories:
        if (c.get("name") or "").lower() == (name or "").lower():
            return c.get("code") or name.upper()
    return "MISC"


def amount_range(amount: float) -> str:
    a = abs(float(amount or 0.0))
    if a < 50:
        return "low"
    if a < 200:
        return "medium"
    return "high"


# === Suggestion pipeline ===
def available_categories(store: Store, user_id: str) -> List[Dict[str, str]]:
    custom = store.table("budget_categories").select(user_id=user_id, is_custom=True)
    out = [dict(c) for c in fc.SYSTEM_CATEGORIES]
    seen = {c["code"] for c in out}
    for c in custom:
        code = c.get("code")
        if code and code not in seen:
            out.append({"code": code, "name": c.get("name") or code})
            seen.add(code)
    return out


def _cached_suggestion(store: Store, user_id: str, merchant: str) -> Optional[Dict[str, Any]]:
    needle = merchant.lower()
    rows = store.table("category_suggestions").select(
        user_id=user_id,
        where=lambda r: needle in (r.get("merchant_name") or "").lower(),
        order_by="times_used",
        desc=True,
        limit=1,
    )
    return rows[0] if rows else None


def _prompt(merchant: str, amount: float, description: str, categories: List[Dict[str, str]]):
    system = (
        "You are an instant transaction categorizer. Respond with ONLY valid JSON, no other text.\n"
        "Available categories: " + ", ".join(f"{c['code']}:{c['name']}" for c in categories)
    )
    user = (
        "Categorize this transaction:\n"
        f'Merchant: "{merchant}"\n'
        f"Amount: ${amount}\n"
        f"Description: {description or 'N/A'}\n\n"
        'Return ONLY: {"categoryCode":"CODE","confidence":0.95,"reasoning":"brief reason"}'
    )
    return [{"role": "system", "content": system}, {"role": "user", "content": user}]


def _ask(client, messages) -> Dict[str, Any]:
    reply = client.chat(messages, temperature=0.1, max_tokens=150, json_mode=False)
    parsed = reply.json()
    if not parsed or not parsed.get("categoryCode"):
        raise FunctionError("Failed to parse categorization response")
    return {
        "categoryCode": parsed["categoryCode"],
        "confidence": float(parsed.get("confidence") or 0.0),
        "reasoning": parsed.get("reasoning") or "",
        "latencyMs": reply.latency_ms,
    }


def suggest_category(store: Store, user_id: str, merchant: str, amount: float = 0.0,
                     description: str = "", fast_llm=None, llm=None) -> Dict[str, Any]:
    merchant = (merchant or "").strip()
    if not merchant:
        raise ValidationError("merchantName is required")
    amount = float(amount or 0.0)

    suggestions = store.table("category_suggestions")
    cached = _cached_suggestion(store, user_id, merchant)
    if cached and float(cached.get("confidence_score") or 0.0) > CACHE_CONFIDENCE:
        suggestions.update({"times_used": int(cached.get("times_used") or 0) + 1}, id=cached["id"])
        return {
            "categoryCode": cached["suggested_category_code"],
            "confidence": cached["confidence_score"],
            "source": "cache",
            "latencyMs": 0,
        }

    categories = available_categories(store, user_id)
    messages = _prompt(merchant, amount, description, categories)

    suggestion = None
    source = None
    for name, client in (("fast", fast_llm), ("gateway", llm)):
        if client is None:
            continue
        try:
            suggestion = _ask(client, messages)
            source = name
            break
        except FunctionError as e:
            log.warning("[SmartCategory] %s model failed, falling back: %s", name, e.message)

    if suggestion is None:
        cat_name = categorize_transaction(f"{merchant} {description or ''}", -abs(amount))
        suggestion = {
            "categoryCode": _code_for(cat_name, categories),
            "confidence": KEYWORD_CONFIDENCE,
            "reasoning": f"Keyword match: {cat_name}",
            "latencyMs": 0,
        }
        source = "keywords"

    suggestions.insert({
        "user_id": user_id,
        "merchant_name": merchant,
        "amount_range": amount_range(amount),
        "suggested_category_code": suggestion["categoryCode"],
        "confidence_score": suggestion["confidence"],
        "times_used": 1,
    })
    store.table("ai_model_routing_analytics").insert({
        "user_id": user_id,
        "query_type": "speed_critical",
        "model_used": {"fast": "fast-instant", "gateway": "gateway-flash"}.get(source, "keywords"),
        "response_time_ms": suggestion.get("latencyMs"),
        "confidence_score": suggestion["confidence"],
        "query_length": len(merchant) + len(description or ""),
    })

    return {**suggestion, "source": source}
