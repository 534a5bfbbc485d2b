# web_app/services.py
# Everything a request handler needs, built once per app.
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from flask import current_app

from pocketpilot.alerts import BudgetAlertTracker
from pocketpilot.analytics import AnalyticsBatcher
from pocketpilot.auth import AuthService
from pocketpilot.cache import TTLCache
from pocketpilot.llm import LLMClient
from pocketpilot.market import GasPriceClient, LogoClient
from pocketpilot.plaid_link import build_client
from pocketpilot.quota import QuotaTracker
from pocketpilot.settings import Settings
from pocketpilot.store import Store

EXTENSION_KEY = "pocketpilot"


@dataclass
class Services:
    settings: Settings
    store: Store
    auth: AuthService
    cache: TTLCache
    quota: QuotaTracker
    alert_tracker: BudgetAlertTracker
    analytics: AnalyticsBatcher
    gas: GasPriceClient
    logos: LogoClient
    llm: Optional[Any] = None
    fast_llm: Optional[Any] = None
    plaid: Optional[Any] = None

    def plaid_client(self):
        if self.plaid is None:
            self.plaid = build_client(self.settings)
        return self.plaid


def build_services(settings: Settings, store: Optional[Store] = None, **overrides) -> Services:
    """Wire default clients from settings; keyword overrides replace any of them (tests pass fakes)."""
    store = store or Store(settings.data_dir)
    cache = overrides.pop("cache", None) or TTLCache()
    quota = overrides.pop("quota", None) or QuotaTracker()

    llm = LLMClient(settings.llm_gateway_url, settings.llm_api_key, settings.llm_model,
                    timeout=settings.http_timeout, name="LLM_API_KEY")
    fast_llm = LLMClient(settings.fast_llm_url, settings.fast_llm_api_key, settings.fast_llm_model,
                         timeout=settings.http_timeout, quota=quota, name="FAST_LLM_API_KEY")

    svc = Services(
        settings=settings,
        store=store,
        auth=AuthService(settings.secret_key, settings.token_max_age),
        cache=cache,
        quota=quota,
        alert_tracker=BudgetAlertTracker(),
        analytics=AnalyticsBatcher(store),
        gas=GasPriceClient(settings.gas_api_url, settings.gas_api_key, cache=cache, timeout=settings.http_timeout),
        logos=LogoClient(settings.logo_api_url, settings.logo_api_key, cache=cache, timeout=settings.http_timeout),
        llm=llm if llm.configured else None,
        fast_llm=fast_llm if fast_llm.configured else None,
    )
    for name, value in overrides.items():
        if not hasattr(svc, name):
            raise TypeError(f"Unknown service override: {name}")
        setattr(svc, name, value)
    return svc


def current() -> Services:
    return current_app.extensions[EXTENSION_KEY]
