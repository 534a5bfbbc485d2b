# pocketpilot/analytics.py
# Widget interaction events, batched in memory and written in one insert.
# Queued events are lost if the process exits before a flush.
from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from pocketpilot.dates import utcnow_iso
from pocketpilot.errors import ValidationError
from pocketpilot.store import Store

log = logging.getLogger(__name__)

EVENT_TYPES = ("view", "click", "expand", "collapse", "action", "dismiss", "configure")


class AnalyticsBatcher:
    def __init__(self, store: Store, flush_size: int = 20, flush_interval: float = 5.0,
                 timer_factory: Callable[..., Any] = threading.Timer):
        self.store = store
        self.flush_size = flush_size
        self.flush_interval = flush_interval
        self._timer_factory = timer_factory
        self._queue: List[Dict[str, Any]] = []
        self._timer = None
        self._lock = threading.Lock()

    def __len__(self):
        return len(self._queue)

    def track(self, user_id: str, widget_id: str, event_type: str,
              metadata: Optional[Dict[str, Any]] = None) -> int:
        if not widget_id:
            raise ValidationError("widgetId is required")
        if event_type not in EVENT_TYPES:
            raise ValidationError(f"Unknown event type: {event_type}")
        event = {
            "user_id": user_id,
            "widget_id": widget_id,
            "event_type": event_type,
            "metadata": metadata or {},
            "occurred_at": utcnow_iso(),
        }
        with self._lock:
            self._queue.append(event)
            size = len(self._queue)
            if size < self.flush_size and self._timer is None:
                self._timer = self._timer_factory(self.flush_interval, self.flush)
                self._timer.daemon = True
                self._timer.start()
        if size >= self.flush_size:
            return self.flush()
        return 0

    def flush(self) -> int:
        with self._lock:
            batch, self._queue = self._queue, []
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        if not batch:
            return 0
        try:
            self.store.table("widget_analytics").insert(batch)
        except Exception:
            log.exception("[WidgetAnalytics] flush failed, dropping %d events", len(batch))
            return 0
        log.info("[WidgetAnalytics] flushed %d events", len(batch))
        return len(batch)

    def close(self) -> int:
        return self.flush()


def widget_usage_summary(store: Store, user_id: str) -> List[Dict[str, Any]]:
    per_widget: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
    last_seen: Dict[str, str] = {}
    for e in store.table("widget_analytics").select(user_id=user_id):
        wid = e.get("widget_id")
        per_widget[wid][e.get("event_type")] += 1
        ts = e.get("occurred_at") or ""
        if ts > last_seen.get(wid, ""):
            last_seen[wid] = ts

    out = [
        {"widget_id": wid, "total": sum(counts.values()), "events": dict(counts), "last_used": last_seen.get(wid)}
        for wid, counts in per_widget.items()
    ]
    out.sort(key=lambda w: w["total"], reverse=True)
    return out
