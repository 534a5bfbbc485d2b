# pocketpilot/dates.py
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


def parse_any_date(s) -> Optional[datetime]:
    """Accepts datetime/date objects, ISO strings (with or without Z), MM/DD/YYYY."""
    if not s:
        return None
    if isinstance(s, datetime):
        return s.replace(tzinfo=None)
    if isinstance(s, date):
        return datetime(s.year, s.month, s.day)
    s = str(s).strip()
    for fmt in ("%m/%d/%Y", "%Y-%m-%d", "%m/%d/%y"):
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            pass
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return None


def to_date(s) -> Optional[date]:
    dt = parse_any_date(s)
    return dt.date() if dt else None


def month_key(d) -> Optional[str]:
    dd = to_date(d)
    return f"{dd.year:04d}-{dd.month:02d}" if dd else None


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utcnow_iso() -> str:
    return utcnow().isoformat(timespec="seconds") + "Z"
