# pocketpilot/market.py
# Gas price oracle + price-drop alerts, and merchant logo lookup.
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import requests

from pocketpilot.cache import TTLCache, global_key
from pocketpilot.dates import parse_any_date, utcnow
from pocketpilot.errors import UpstreamError, ValidationError
from pocketpilot.recurring import normalize_merchant
from pocketpilot.settings import ttl_for
from pocketpilot.store import Store

log = logging.getLogger(__name__)

SPEEDS = ("safe", "standard", "fast")
COOLDOWN_HOURS = 6


def _gwei(value) -> float:
    try:
        return round(float(value), 2)
    except (TypeError, ValueError):
        raise UpstreamError(f"Gas oracle returned a bad price: {value!r}")


class GasPriceClient:
    """Etherscan-style gas oracle (module=gastracker&action=gasoracle)."""

    def __init__(self, url: str, api_key: Optional[str] = None, session: Optional[requests.Session] = None,
                 cache: Optional[TTLCache] = None, timeout: float = 15.0):
        self.url = url
        self.api_key = api_key
        self.session = session or requests.Session()
        self.cache = cache if cache is not None else TTLCache()
        self.timeout = timeout

    def _fetch(self) -> Dict[str, Any]:
        params = {"module": "gastracker", "action": "gasoracle"}
        if self.api_key:
            params["apikey"] = self.api_key
        try:
            resp = self.session.get(self.url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamError(f"Gas oracle unreachable: {e}")
        if resp.status_code >= 400:
            log.error("Gas oracle error %s: %s", resp.status_code, (resp.text or "")[:200])
            raise UpstreamError(f"Gas oracle error: {resp.status_code}")
        try:
            data = resp.json()
        except ValueError:
            raise UpstreamError("Gas oracle returned invalid JSON")
        result = data.get("result") if isinstance(data, dict) else None
        if not isinstance(result, dict) or "ProposeGasPrice" not in result:
            raise UpstreamError("Gas oracle returned an unexpected payload")
        return {
            "safe": _gwei(result.get("SafeGasPrice")),
            "standard": _gwei(result.get("ProposeGasPrice")),
            "fast": _gwei(result.get("FastGasPrice")),
            "base_fee": _gwei(result.get("suggestBaseFee") or 0),
            "fetched_at": utcnow().isoformat(timespec="seconds") + "Z",
        }

    def current(self) -> Dict[str, Any]:
        prices, _ = self.current_with_source()
        return prices

    def current_with_source(self):
        return self.cache.get_or_set(global_key("gas_prices"), self._fetch, ttl_for("gas_prices"))


def _cooling_down(alert: Dict[str, Any], now: datetime, cooldown_hours: float) -> bool:
    last = parse_any_date(alert.get("last_triggered_at"))
    return bool(last and now - last < timedelta(hours=cooldown_hours))


def monitor_gas_prices(store: Store, client: GasPriceClient, now: Optional[datetime] = None,
                       cooldown_hours: float = COOLDOWN_HOURS) -> Dict[str, Any]:
    now = now or utcnow()
    prices = client.current()
    store.table("gas_price_history").insert({
        "safe_gwei": prices["safe"],
        "standard_gwei": prices["standard"],
        "fast_gwei": prices["fast"],
        "base_fee_gwei": prices["base_fee"],
        "recorded_at": now.isoformat(timespec="seconds") + "Z",
    })

    alerts = store.table("gas_price_alerts")
    triggered = 0
    for a in alerts.select(is_active=True):
        speed = a.get("speed") or "standard"
        if speed not in SPEEDS:
            log.warning("[MonitorGas] alert %s has unknown speed %r", a.get("id"), speed)
            continue
        try:
            threshold = float(a.get("threshold_gwei"))
        except (TypeError, ValueError):
            continue
        price = prices[speed]
        if price > threshold or _cooling_down(a, now, cooldown_hours):
            continue
        store.table("wallet_notifications").insert({
            "user_id": a.get("user_id"),
            "notification_type": "gas_price_alert",
            "title": f"⛽ Gas is down to {price:g} gwei",
            "message": f"{speed.title()} gas is {price:g} gwei, at or below your {threshold:g} gwei target.",
            "priority": "medium",
            "read": False,
            "metadata": {"alert_id": a.get("id"), "speed": speed, "price_gwei": price, "threshold_gwei": threshold},
        })
        alerts.update({"last_triggered_at": now.isoformat(timespec="seconds") + "Z"}, id=a["id"])
        triggered += 1

    log.info("[MonitorGas] standard=%s gwei triggered=%d", prices["standard"], triggered)
    return {"prices": prices, "triggered": triggered}


class LogoClient:
    def __init__(self, url: str, api_key: Optional[str] = None, session: Optional[requests.Session] = None,
                 cache: Optional[TTLCache] = None, timeout: float = 10.0):
        self.url = url
        self.api_key = api_key
        self.session = session or requests.Session()
        self.cache = cache if cache is not None else TTLCache()
        self.timeout = timeout

    def _fetch(self, name: str) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            resp = self.session.get(self.url, params={"query": name.lower()}, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamError(f"Logo service unreachable: {e}")
        if resp.status_code >= 400:
            raise UpstreamError(f"Logo service error: {resp.status_code}")
        try:
            data = resp.json()
        except ValueError:
            raise UpstreamError("Logo service returned invalid JSON")
        hits = data if isinstance(data, list) else (data or {}).get("results") or []
        if not hits:
            # cached as a miss so unknown merchants are not re-queried all day
            return {"merchant": name, "domain": None, "logo_url": None}
        top = hits[0]
        return {"merchant": name, "domain": top.get("domain"), "logo_url": top.get("logo")}

    def lookup(self, merchant: str) -> Optional[Dict[str, Any]]:
        if not (merchant or "").strip():
            raise ValidationError("merchant is required")
        name = normalize_merchant(merchant)
        if name == "(unknown)":
            return None
        found, _ = self.cache.get_or_set(global_key("merchant_logo", name), lambda: self._fetch(name),
                                         ttl_for("merchant_logo"))
        return found if found.get("logo_url") else None
