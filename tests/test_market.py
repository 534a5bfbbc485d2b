from datetime import datetime, timedelta

import pytest

from conftest import FakeResponse, FakeSession
from pocketpilot.cache import TTLCache
from pocketpilot.errors import UpstreamError, ValidationError
from pocketpilot.market import GasPriceClient, LogoClient, monitor_gas_prices

ORACLE = {
    "status": "1",
    "message": "OK",
    "result": {"SafeGasPrice": "12", "ProposeGasPrice": "14", "FastGasPrice": "18.5", "suggestBaseFee": "11.7"},
}
NOW = datetime(2025, 6, 20, 12, 0, 0)


def _gas(payload=ORACLE):
    session = FakeSession(FakeResponse(200, payload))
    return GasPriceClient("https://oracle.example/api", "k", session=session, cache=TTLCache()), session


def test_gas_prices_are_cached():
    client, session = _gas()
    first, hit1 = client.current_with_source()
    second, hit2 = client.current_with_source()
    assert first["standard"] == 14.0
    assert first["fast"] == 18.5
    assert (hit1, hit2) == (False, True)
    assert len(session.requests) == 1
    assert session.requests[0][2]["params"]["action"] == "gasoracle"


def test_malformed_oracle_payload():
    client, _ = _gas({"status": "0", "result": "Max rate limit reached"})
    with pytest.raises(UpstreamError):
        client.current()


def _alert(store, threshold, speed="standard", last=None):
    return store.table("gas_price_alerts").insert({
        "user_id": "u1", "speed": speed, "threshold_gwei": threshold, "is_active": True,
        "last_triggered_at": last,
    })


def test_monitor_triggers_once_within_cooldown(store):
    client, _ = _gas()
    hit = _alert(store, 15)
    _alert(store, 10)
    out = monitor_gas_prices(store, client, now=NOW)
    assert out["triggered"] == 1
    assert store.table("gas_price_history").count() == 1
    assert store.table("gas_price_alerts").get(hit["id"])["last_triggered_at"].startswith("2025-06-20T12:00")

    again = monitor_gas_prices(store, client, now=NOW + timedelta(hours=1))
    assert again["triggered"] == 0
    later = monitor_gas_prices(store, client, now=NOW + timedelta(hours=7))
    assert later["triggered"] == 1
    assert store.table("wallet_notifications").count(notification_type="gas_price_alert") == 2


def test_monitor_uses_alert_speed(store):
    client, _ = _gas()
    _alert(store, 13, speed="safe")
    _alert(store, 13, speed="fast")
    assert monitor_gas_prices(store, client, now=NOW)["triggered"] == 1


def test_logo_lookup_normalizes_and_caches():
    session = FakeSession(FakeResponse(200, [{"name": "Netflix", "domain": "netflix.com",
                                               "logo": "https://logo.example/netflix.com"}]))
    client = LogoClient("https://logos.example/suggest", session=session, cache=TTLCache())
    out = client.lookup("NETFLIX.COM 866-579")
    assert out["domain"] == "netflix.com"
    client.lookup("netflix.com 866-579")
    assert len(session.requests) == 1
    assert session.requests[0][2]["params"]["query"] == "netflix"


def test_logo_miss_returns_none():
    client = LogoClient("https://logos.example/suggest", session=FakeSession(FakeResponse(200, [])), cache=TTLCache())
    assert client.lookup("Some Tiny Diner") is None
    with pytest.raises(ValidationError):
        client.lookup("")
