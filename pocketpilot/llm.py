# pocketpilot/llm.py
# Thin client for OpenAI-compatible chat/completions gateways.
from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from pocketpilot.errors import ConfigError, RateLimitedError, UpstreamError
from pocketpilot.quota import QuotaTracker

log = logging.getLogger(__name__)

_JSON_BLOCK = re.compile(r"\{[^{}]*\}", re.DOTALL)


def parse_json_content(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Full parse first, then the first flat {...} block, else None."""
    if not text:
        return None
    s = text.strip()
    if s.startswith("```"):
        s = s.strip("`")
        if s.lower().startswith("json"):
            s = s[4:]
    try:
        val = json.loads(s)
        return val if isinstance(val, dict) else None
    except ValueError:
        pass
    m = _JSON_BLOCK.search(s)
    if m:
        try:
            val = json.loads(m.group(0))
            return val if isinstance(val, dict) else None
        except ValueError:
            return None
    return None


@dataclass
class LLMReply:
    content: str
    latency_ms: int
    model: str
    headers: Dict[str, str] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)

    def json(self) -> Optional[Dict[str, Any]]:
        return parse_json_content(self.content)


class LLMClient:
    def __init__(self, base_url: str, api_key: Optional[str], model: str,
                 timeout: float = 30.0, session: Optional[requests.Session] = None,
                 quota: Optional[QuotaTracker] = None, name: str = "LLM_API_KEY"):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()
        self.quota = quota
        self.name = name

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.base_url)

    def _post(self, payload: Dict[str, Any]) -> LLMReply:
        if not self.api_key:
            raise ConfigError(f"{self.name} not configured")
        if self.quota is not None:
            self.quota.before_call()

        started = time.monotonic()
        try:
            resp = self.session.post(
                f"{self.base_url}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            if self.quota is not None:
                self.quota.record(None, (time.monotonic() - started) * 1000, False)
            raise UpstreamError(f"AI gateway unreachable: {e}")
        latency_ms = int((time.monotonic() - started) * 1000)
        headers = dict(resp.headers or {})

        if resp.status_code >= 400:
            if self.quota is not None:
                self.quota.record(headers, latency_ms, False, resp.status_code)
            log.error("AI API error %s: %s", resp.status_code, (resp.text or "")[:300])
            if resp.status_code == 429:
                raise RateLimitedError("RATE_LIMITED: AI rate limit hit")
            raise UpstreamError(f"AI service error: {resp.status_code}")

        if self.quota is not None:
            self.quota.record(headers, latency_ms, True)
        try:
            data = resp.json()
        except ValueError:
            raise UpstreamError("AI service returned invalid JSON")
        message = ((data.get("choices") or [{}])[0] or {}).get("message") or {}
        return LLMReply(
            content=message.get("content") or "",
            latency_ms=latency_ms,
            model=payload.get("model") or self.model,
            headers=headers,
            raw=data,
        )

    def chat(self, messages: List[Dict[str, str]], temperature: Optional[float] = None,
             max_tokens: Optional[int] = None, json_mode: bool = False) -> LLMReply:
        payload: Dict[str, Any] = {"model": self.model, "messages": messages}
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        return self._post(payload)

    def call_tool(self, messages: List[Dict[str, str]], name: str, description: str,
                  parameters: Dict[str, Any]) -> Dict[str, Any]:
        payload = {
            "model": self.model,
            "messages": messages,
            "tools": [{
                "type": "function",
                "function": {"name": name, "description": description, "parameters": parameters},
            }],
            "tool_choice": {"type": "function", "function": {"name": name}},
        }
        reply = self._post(payload)
        message = ((reply.raw.get("choices") or [{}])[0] or {}).get("message") or {}
        calls = message.get("tool_calls") or []
        args = ((calls[0] if calls else {}).get("function") or {}).get("arguments")
        if not args:
            log.error("No tool call in AI response for %s", name)
            raise UpstreamError("AI did not return structured output")
        if isinstance(args, dict):
            return args
        try:
            return json.loads(args)
        except ValueError:
            raise UpstreamError("AI returned malformed tool arguments")
