# pocketpilot/settings.py
# Env-driven configuration + logging bootstrap.
from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv

load_dotenv()

PLAID_ENV_HOSTS = {
    "sandbox":     "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production":  "https://production.plaid.com",
}

# --------------------------
# Static TTL table (seconds) per cache type
# --------------------------
CACHE_TTLS: Dict[str, int] = {
    "insights": 3600,
    "gas_prices": 120,
    "merchant_logo": 86400,
    "category_context": 300,
    "health_score": 600,
}
DEFAULT_TTL = 300

LOG_FORMAT = "%(asctime)s %(levelname)s: %(message)s"


def ttl_for(cache_type: str) -> int:
    return int(CACHE_TTLS.get(cache_type, DEFAULT_TTL))


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw in (None, ""):
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass
class Settings:
    data_dir: Path = Path(".data")
    logs_dir: Optional[Path] = None
    secret_key: str = "dev"
    token_max_age: int = 7 * 24 * 3600
    cors_origin: str = "*"
    http_timeout: float = 30.0

    llm_gateway_url: str = "https://ai.gateway.lovable.dev/v1"
    llm_api_key: Optional[str] = None
    llm_model: str = "google/gemini-2.5-flash"

    fast_llm_url: str = "https://api.groq.com/openai/v1"
    fast_llm_api_key: Optional[str] = None
    fast_llm_model: str = "llama-3.1-8b-instant"

    plaid_client_id: Optional[str] = None
    plaid_secret: Optional[str] = None
    plaid_env: Optional[str] = None
    plaid_client_name: str = "PocketPilot"

    gas_api_url: str = "https://api.etherscan.io/api"
    gas_api_key: Optional[str] = None
    logo_api_url: str = "https://autocomplete.clearbit.com/v1/companies/suggest"
    logo_api_key: Optional[str] = None

    @property
    def plaid_host(self) -> Optional[str]:
        return PLAID_ENV_HOSTS.get((self.plaid_env or "").strip().lower())


def load_settings() -> Settings:
    """Build Settings from the process environment (.env already loaded)."""
    logs = os.environ.get("LOGS_DIR")
    return Settings(
        data_dir=Path(os.environ.get("DATA_DIR") or ".data"),
        logs_dir=Path(logs) if logs else None,
        secret_key=os.environ.get("SECRET_KEY", "dev"),
        token_max_age=_env_int("TOKEN_MAX_AGE", 7 * 24 * 3600),
        cors_origin=os.environ.get("CORS_ORIGIN", "*"),
        http_timeout=_env_float("HTTP_TIMEOUT", 30.0),
        llm_gateway_url=os.environ.get("LLM_GATEWAY_URL", Settings.llm_gateway_url),
        llm_api_key=os.environ.get("LLM_API_KEY"),
        llm_model=os.environ.get("LLM_MODEL", Settings.llm_model),
        fast_llm_url=os.environ.get("FAST_LLM_URL", Settings.fast_llm_url),
        fast_llm_api_key=os.environ.get("FAST_LLM_API_KEY"),
        fast_llm_model=os.environ.get("FAST_LLM_MODEL", Settings.fast_llm_model),
        plaid_client_id=os.environ.get("PLAID_CLIENT_ID"),
        plaid_secret=os.environ.get("PLAID_SECRET"),
        plaid_env=os.environ.get("PLAID_ENV"),
        plaid_client_name=os.environ.get("PLAID_CLIENT_NAME", "PocketPilot"),
        gas_api_url=os.environ.get("GAS_API_URL", Settings.gas_api_url),
        gas_api_key=os.environ.get("GAS_API_KEY"),
        logo_api_url=os.environ.get("LOGO_API_URL", Settings.logo_api_url),
        logo_api_key=os.environ.get("LOGO_API_KEY"),
    )


_LOGGING_READY = False


def configure_logging(name: str, settings: Optional[Settings] = None, level: int = logging.INFO) -> None:
    """basicConfig once: LOGS_DIR/<name>.log when configured, else stderr."""
    global _LOGGING_READY
    if _LOGGING_READY:
        return
    settings = settings or load_settings()
    if settings.logs_dir:
        settings.logs_dir.mkdir(parents=True, exist_ok=True)
        logging.basicConfig(
            filename=settings.logs_dir / f"{name}.log",
            level=level,
            format=LOG_FORMAT,
        )
    else:
        logging.basicConfig(stream=sys.stderr, level=level, format=LOG_FORMAT)
    _LOGGING_READY = True
