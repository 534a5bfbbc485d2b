# pocketpilot/insights.py
# AI insight text for the dashboard panel, plus a thin chat passthrough.
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from pocketpilot.cache import TTLCache, user_key
from pocketpilot.dates import to_date, utcnow_iso
from pocketpilot.errors import ConfigError, UpstreamError, ValidationError
from pocketpilot.settings import ttl_for
from pocketpilot.store import Store

log = logging.getLogger(__name__)

SUMMARY_DAYS = 30
CHAT_ROLES = ("system", "user", "assistant")
MAX_CHAT_MESSAGES = 40

INSIGHT_SYSTEM = (
    "You are a friendly personal finance coach. Given a user's last 30 days of spending, "
    "write 2-4 short, specific, encouraging insights. Mention dollar amounts. No markdown headings."
)


def spending_summary(transactions: List[Dict[str, Any]], today: Optional[date] = None) -> Dict[str, Any]:
    today = today or date.today()
    since = today - timedelta(days=SUMMARY_DAYS)
    by_cat: Dict[str, float] = defaultdict(float)
    income = 0.0
    count = 0
    for t in transactions or []:
        d = to_date(t.get("date"))
        if not d or d < since or d > today:
            continue
        try:
            amt = float(t.get("amount") or 0.0)
        except (TypeError, ValueError):
            continue
        count += 1
        if amt > 0:
            income += amt
        else:
            by_cat[t.get("category") or "Uncategorized"] += -amt

    categories = sorted(({"category": c, "total": round(v, 2)} for c, v in by_cat.items()),
                        key=lambda x: x["total"], reverse=True)
    spent = round(sum(by_cat.values()), 2)
    return {
        "days": SUMMARY_DAYS,
        "transaction_count": count,
        "total_spent": spent,
        "total_income": round(income, 2),
        "net": round(income - spent, 2),
        "categories": categories,
    }


def _summary_text(summary: Dict[str, Any]) -> str:
    lines = [
        f"Transactions: {summary['transaction_count']}",
        f"Total spent: ${summary['total_spent']:,.2f}",
        f"Total income: ${summary['total_income']:,.2f}",
        "By category:",
    ]
    lines += [f"- {c['category']}: ${c['total']:,.2f}" for c in summary["categories"][:10]]
    return "\n".join(lines)


def generate_insights(store: Store, user_id: str, llm, cache: TTLCache, today: Optional[date] = None,
                      force: bool = False) -> Dict[str, Any]:
    key = user_key("insights", user_id)
    if force:
        cache.delete(key)

    def _compute():
        txs = store.table("transactions").select(user_id=user_id)
        summary = spending_summary(txs, today)
        if not summary["transaction_count"]:
            text = "Not enough recent activity yet. Add or sync a few transactions to get personalized insights."
        else:
            if llm is None:
                raise ConfigError("LLM_API_KEY not configured")
            reply = llm.chat([
                {"role": "system", "content": INSIGHT_SYSTEM},
                {"role": "user", "content": _summary_text(summary)},
            ], temperature=0.7, max_tokens=400)
            text = (reply.content or "").strip()
            if not text:
                raise UpstreamError("AI returned an empty insight")
        generated_at = utcnow_iso()
        store.table("ai_insights").insert({
            "user_id": user_id,
            "insight_type": "spending_summary",
            "content": text,
            "summary": summary,
            "generated_at": generated_at,
        })
        return {"insight": text, "generated_at": generated_at}

    value, from_cache = cache.get_or_set(key, _compute, ttl_for("insights"))
    log.info("[AIInsights] user=%s from_cache=%s", user_id, from_cache)
    return {**value, "from_cache": from_cache}


def proxy_chat(llm, messages: List[Dict[str, Any]]) -> str:
    if llm is None:
        raise ConfigError("LLM_API_KEY not configured")
    if not isinstance(messages, list) or not messages:
        raise ValidationError("messages must be a non-empty list")
    clean = []
    for m in messages[-MAX_CHAT_MESSAGES:]:
        role = (m or {}).get("role")
        content = (m or {}).get("content")
        if role not in CHAT_ROLES:
            raise ValidationError(f"Invalid message role: {role}")
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Message content must be a non-empty string")
        clean.append({"role": role, "content": content})
    reply = llm.chat(clean)
    return reply.content
