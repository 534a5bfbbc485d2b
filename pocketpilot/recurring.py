# pocketpilot/recurring.py
# Subscription detection: group outflows by merchant, cluster by amount,
# read the cadence off the median gap between charges.
from __future__ import annotations

import logging
import statistics
from collections import Counter, defaultdict
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from dateutil.relativedelta import relativedelta

from pocketpilot import recurring_config as RC
from pocketpilot.categorize import looks_like_transfer
from pocketpilot.dates import to_date
from pocketpilot.store import Store

log = logging.getLogger(__name__)

CADENCE_STEPS = {
    "weekly": ("days", 7),
    "biweekly": ("days", 14),
    "monthly": ("months", 1),
    "quarterly": ("months", 3),
    "annual": ("years", 1),
}


def _cmp(s: str) -> str:
    return "".join(ch for ch in (s or "").upper() if ch.isalnum())


_DENY_CMP = [_cmp(x) for x in RC.DENY_MERCHANTS]
_ALIAS_CMP = {
    _cmp(variant): canon
    for canon, variants in RC.CANONICAL_VENDOR_ALIASES.items()
    for variant in (variants or [])
}


def normalize_merchant(desc: str) -> str:
    if not desc:
        return "(unknown)"
    s = str(desc).upper()
    for ch in "0123456789'\"*#-_.\\/(),[]:;@!&+$%^~?{}<>=|":
        s = s.replace(ch, " ")
    words = [w for w in s.split() if w not in RC.NOISE_WORDS]
    return " ".join(words).strip() or "(unknown)"


def canonical_merchant(desc: str) -> str:
    desc_cmp = _cmp(desc)
    matches = [k for k in _ALIAS_CMP if k and k in desc_cmp]
    if matches:
        return _ALIAS_CMP[max(matches, key=len)]
    return normalize_merchant(desc)


def cadence_from_days(days: float) -> str:
    if days <= 0:
        return "unknown"
    if 6 <= days <= 8:
        return "weekly"
    if 11 <= days <= 17:
        return "biweekly"
    if 26 <= days <= 35:
        return "monthly"
    if 80 <= days <= 105:
        return "quarterly"
    if 350 <= days <= 390:
        return "annual"
    return "unknown"


def next_after(d: date, frequency: str) -> date:
    kind, val = CADENCE_STEPS.get(frequency, ("months", 1))
    if kind == "days":
        return d + timedelta(days=val)
    if kind == "months":
        return d + relativedelta(months=+val)
    return d + relativedelta(years=+val)


def _is_denied(desc: str) -> bool:
    d = _cmp(desc)
    return any(x and x in d for x in _DENY_CMP)


def _recurring_hint(row: Dict[str, Any]) -> bool:
    if (row.get("category") or "") in RC.RECURRING_CATEGORIES:
        return True
    U = (row.get("description") or "").upper()
    return any(k in U for k in RC.RECURRING_KEYWORDS)


def _eligible(tx: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if tx.get("pending"):
        return None
    try:
        amt = float(tx.get("amount", 0.0) or 0.0)
    except (TypeError, ValueError):
        return None
    if amt >= 0:
        return None
    d = to_date(tx.get("date") or tx.get("transaction_date"))
    if not d:
        return None
    raw = tx.get("merchant") or tx.get("merchant_name") or tx.get("description") or tx.get("name") or ""
    if _is_denied(raw) or looks_like_transfer(raw) or (tx.get("category") == "Transfers"):
        return None
    return {
        "date": d,
        "amount": abs(amt),
        "description": tx.get("description") or raw,
        "category": tx.get("category") or "",
        "merchant_key": canonical_merchant(raw),
    }


def cluster_by_amount(rows: List[Dict[str, Any]]) -> List[List[Dict[str, Any]]]:
    """Same merchant, amounts within $3 or 5% of the cluster median."""
    clusters: List[List[Dict[str, Any]]] = []
    for r in sorted(rows, key=lambda x: x["date"]):
        a = r["amount"]
        for cl in clusters:
            m = statistics.median(x["amount"] for x in cl)
            tol = max(RC.AMOUNT_TOLERANCE_DOLLARS, RC.AMOUNT_TOLERANCE_PCT * max(m, a, 1.0))
            if abs(a - m) <= tol:
                cl.append(r)
                break
        else:
            clusters.append([r])
    return clusters


def _stream(merchant: str, rows: List[Dict[str, Any]], today: date, min_occurrences: int) -> Optional[Dict[str, Any]]:
    rows = sorted(rows, key=lambda r: r["date"])
    dates = [r["date"] for r in rows]
    amounts = [r["amount"] for r in rows]
    rep_amount = round(statistics.median(amounts), 2)

    interval = None
    if len(rows) >= max(2, min_occurrences):
        gaps = [(dates[i + 1] - dates[i]).days for i in range(len(dates) - 1)]
        interval = statistics.median(gaps)
        frequency = cadence_from_days(interval)
        if frequency == "unknown":
            return None
        spread = max(abs(g - interval) for g in gaps) / interval if interval else 1.0
        mean = statistics.mean(amounts)
        cv = (statistics.pstdev(amounts) / mean) if mean else 1.0
        confidence = 0.5
        if spread <= 0.2:
            confidence += 0.25
        confidence += 0.2 * (1.0 - min(cv / RC.VARIANCE_TOLERANCE, 1.0))
        confidence += min(0.1, 0.02 * (len(rows) - 2))
    elif len(rows) == 1 and _recurring_hint(rows[0]):
        frequency = "monthly"
        confidence = 0.4
    else:
        return None

    last = dates[-1]
    next_expected = next_after(last, frequency)
    status = "missed" if today > next_expected + timedelta(days=RC.MISSED_GRACE_DAYS) else "active"
    cats = Counter(r["category"] for r in rows if r["category"])

    return {
        "merchant": merchant,
        "amount": rep_amount,
        "frequency": frequency,
        "interval_days": interval,
        "occurrences": len(rows),
        "first_charge_date": dates[0].isoformat(),
        "last_charge_date": last.isoformat(),
        "next_expected_date": next_expected.isoformat(),
        "category": cats.most_common(1)[0][0] if cats else None,
        "confidence": round(min(confidence, 0.99), 2),
        "status": status,
        "monthly_cost": round(rep_amount * RC.MONTHLY_EQUIV_RATIO.get(frequency, 1.0), 2),
    }


def detect_subscriptions(transactions: List[Dict[str, Any]], today: Optional[date] = None,
                         min_occurrences: int = RC.MIN_OCCURRENCES) -> List[Dict[str, Any]]:
    today = today or date.today()
    by_merch: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for tx in transactions or []:
        row = _eligible(tx)
        if row:
            by_merch[row["merchant_key"]].append(row)

    found: List[Dict[str, Any]] = []
    for merchant, rows in by_merch.items():
        clusters = cluster_by_amount(rows)
        for cl in clusters:
            s = _stream(merchant, cl, today, min_occurrences)
            if not s:
                continue
            if len(clusters) > 1 and any(x["merchant"] == merchant for x in found):
                # same merchant, second price point (e.g. two plans)
                s["merchant"] = f"{merchant} (${s['amount']:.2f})"
            found.append(s)

    found.sort(key=lambda s: (s["monthly_cost"], s["occurrences"]), reverse=True)
    return found


def run_subscription_detection(store: Store, user_id: str, days: int = RC.LOOKBACK_DAYS,
                               today: Optional[date] = None) -> Dict[str, Any]:
    today = today or date.today()
    cutoff = today - timedelta(days=days)

    def _recent(r):
        d = to_date(r.get("date"))
        return bool(d and d >= cutoff)

    txs = store.table("transactions").select(user_id=user_id, where=_recent)
    log.info("[DetectSubscriptions] user=%s transactions=%d", user_id, len(txs))
    subs = detect_subscriptions(txs, today=today)

    table = store.table("detected_subscriptions")
    saved = []
    for s in subs:
        row = {"user_id": user_id, **s}
        existing = table.first(user_id=user_id, merchant=s["merchant"])
        if existing is None:
            row["is_confirmed"] = False
        elif existing.get("status") == "deleted":
            # user removed it; stay removed
            continue
        saved.append(table.upsert(row, on_conflict=("user_id", "merchant")))

    monthly_total = round(sum(s["monthly_cost"] for s in saved if s.get("status") == "active"), 2)
    log.info("[DetectSubscriptions] user=%s found=%d saved=%d monthly_total=%.2f", user_id, len(subs),
             len(saved), monthly_total)
    return {"subscriptions": saved, "count": len(saved), "monthly_total": monthly_total}
