# pocketpilot/quota.py
# Adaptive limiter + circuit breaker for the fast (rate-limited) LLM.
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from pocketpilot.errors import CircuitOpenError

log = logging.getLogger(__name__)

REQUESTS_PER_DAY = 14400
TOKENS_PER_MINUTE = 6000
CIRCUIT_TIMEOUT_SEC = 60
MAX_CONSECUTIVE_FAILURES = 3
MIN_TOKENS_REMAINING = 100
MIN_REQUESTS_REMAINING = 10

STRATEGY_DELAYS = {
    "aggressive": 0.0,
    "moderate": 0.1,
    "conservative": 0.5,
    "critical": 2.0,
}


def _int_header(headers: Mapping[str, str], name: str, default: int) -> int:
    try:
        return int(float(headers.get(name) or default))
    except (TypeError, ValueError):
        return default


def parse_rate_headers(headers: Optional[Mapping[str, str]]) -> dict:
    h = {str(k).lower(): v for k, v in (headers or {}).items()}
    return {
        "requests_limit": _int_header(h, "x-ratelimit-limit-requests", REQUESTS_PER_DAY),
        "requests_remaining": _int_header(h, "x-ratelimit-remaining-requests", REQUESTS_PER_DAY),
        "tokens_limit": _int_header(h, "x-ratelimit-limit-tokens", TOKENS_PER_MINUTE),
        "tokens_remaining": _int_header(h, "x-ratelimit-remaining-tokens", TOKENS_PER_MINUTE),
        "retry_after": h.get("retry-after"),
    }


@dataclass
class QuotaState:
    requests_remaining: int = REQUESTS_PER_DAY
    requests_limit: int = REQUESTS_PER_DAY
    tokens_remaining: int = TOKENS_PER_MINUTE
    tokens_limit: int = TOKENS_PER_MINUTE
    avg_latency_ms: float = 0.0
    circuit_state: str = "closed"
    opened_at: Optional[float] = None
    consecutive_failures: int = 0
    calls: int = 0

    def strategy(self) -> str:
        req = self.requests_remaining / self.requests_limit if self.requests_limit else 0.0
        tok = self.tokens_remaining / self.tokens_limit if self.tokens_limit else 0.0
        ratio = min(req, tok)
        if ratio > 0.7:
            return "aggressive"
        if ratio > 0.3:
            return "moderate"
        if ratio > 0.1:
            return "conservative"
        return "critical"


def delay_for(strategy: str) -> float:
    return STRATEGY_DELAYS.get(strategy, 0.0)


class QuotaTracker:
    def __init__(self, clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], None] = time.sleep,
                 circuit_timeout: float = CIRCUIT_TIMEOUT_SEC):
        self.state = QuotaState()
        self._clock = clock
        self._sleep = sleep
        self.circuit_timeout = circuit_timeout
        self._lock = threading.Lock()

    def before_call(self) -> str:
        """Raise while the circuit is open; otherwise pace by strategy and return it."""
        with self._lock:
            s = self.state
            if s.circuit_state == "open":
                if s.opened_at is not None and self._clock() - s.opened_at < self.circuit_timeout:
                    raise CircuitOpenError("CIRCUIT_OPEN: Rate limit protection active")
                s.circuit_state = "half-open"
                log.info("[Quota] circuit half-open")
            strategy = s.strategy()
        delay = delay_for(strategy)
        if delay > 0:
            self._sleep(delay)
        return strategy

    def record(self, headers: Optional[Mapping[str, str]], latency_ms: float,
               success: bool, status: Optional[int] = None) -> None:
        with self._lock:
            s = self.state
            # transport failures carry no headers; keep the last known counters
            if headers:
                info = parse_rate_headers(headers)
                s.requests_limit = info["requests_limit"]
                s.requests_remaining = info["requests_remaining"]
                s.tokens_limit = info["tokens_limit"]
                s.tokens_remaining = info["tokens_remaining"]
            s.calls += 1
            s.avg_latency_ms += (latency_ms - s.avg_latency_ms) / s.calls
            if success:
                s.consecutive_failures = 0
                if s.circuit_state != "closed":
                    log.info("[Quota] circuit closed")
                s.circuit_state = "closed"
                s.opened_at = None
                return
            s.consecutive_failures += 1
            if (status == 429
                    or s.consecutive_failures >= MAX_CONSECUTIVE_FAILURES
                    or s.tokens_remaining < MIN_TOKENS_REMAINING
                    or s.requests_remaining < MIN_REQUESTS_REMAINING):
                s.circuit_state = "open"
                s.opened_at = self._clock()
                log.warning("[Quota] circuit opened (status=%s failures=%d)", status, s.consecutive_failures)

    def snapshot(self) -> dict:
        s = self.state
        return {
            "strategy": s.strategy(),
            "circuit_state": s.circuit_state,
            "requests_remaining": s.requests_remaining,
            "tokens_remaining": s.tokens_remaining,
            "avg_latency_ms": round(s.avg_latency_ms, 1),
            "consecutive_failures": s.consecutive_failures,
        }
