import pytest

from pocketpilot.analytics import AnalyticsBatcher, widget_usage_summary
from pocketpilot.errors import ValidationError


class FakeTimer:
    created = []

    def __init__(self, interval, fn):
        self.interval = interval
        self.fn = fn
        self.started = False
        self.cancelled = False
        self.daemon = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.fn()


@pytest.fixture(autouse=True)
def _reset_timers():
    FakeTimer.created = []


def test_events_wait_for_timer(store):
    b = AnalyticsBatcher(store, flush_size=10, flush_interval=5.0, timer_factory=FakeTimer)
    b.track("u1", "net-worth", "view")
    b.track("u1", "net-worth", "click")
    assert len(FakeTimer.created) == 1
    assert FakeTimer.created[0].interval == 5.0
    assert store.table("widget_analytics").count() == 0

    FakeTimer.created[0].fire()
    assert store.table("widget_analytics").count() == 2
    assert len(b) == 0


def test_flush_size_triggers_immediate_write(store):
    b = AnalyticsBatcher(store, flush_size=3, timer_factory=FakeTimer)
    b.track("u1", "w", "view")
    b.track("u1", "w", "view")
    assert b.track("u1", "w", "view") == 3
    assert store.table("widget_analytics").count() == 3
    assert FakeTimer.created[0].cancelled


def test_close_flushes_pending(store):
    b = AnalyticsBatcher(store, timer_factory=FakeTimer)
    b.track("u1", "w", "expand", {"section": "top"})
    assert b.close() == 1
    assert b.close() == 0
    row = store.table("widget_analytics").first()
    assert row["metadata"] == {"section": "top"}


def test_rejects_unknown_event(store):
    b = AnalyticsBatcher(store, timer_factory=FakeTimer)
    with pytest.raises(ValidationError):
        b.track("u1", "w", "hover")
    with pytest.raises(ValidationError):
        b.track("u1", "", "view")


def test_usage_summary_most_used_first(store):
    b = AnalyticsBatcher(store, timer_factory=FakeTimer)
    for event in ("view", "click", "view"):
        b.track("u1", "budget", event)
    b.track("u1", "goals", "view")
    b.track("u2", "budget", "view")
    b.flush()
    summary = widget_usage_summary(store, "u1")
    assert [w["widget_id"] for w in summary] == ["budget", "goals"]
    assert summary[0]["events"] == {"view": 2, "click": 1}
    assert summary[0]["total"] == 3
