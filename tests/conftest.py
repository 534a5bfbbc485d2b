import json

import pytest

from pocketpilot.llm import LLMReply
from pocketpilot.settings import Settings
from pocketpilot.store import Store
from web_app.app import create_app

USER = "user-1"


class FakeLLM:
    """Stands in for LLMClient: canned chat content and/or tool arguments."""

    def __init__(self, content="", tool_args=None, error=None, latency_ms=7):
        self.content = content
        self.tool_args = tool_args or {}
        self.error = error
        self.latency_ms = latency_ms
        self.quota = None
        self.calls = []

    def chat(self, messages, temperature=None, max_tokens=None, json_mode=False):
        self.calls.append(("chat", messages))
        if self.error is not None:
            raise self.error
        content = self.content if isinstance(self.content, str) else json.dumps(self.content)
        return LLMReply(content=content, latency_ms=self.latency_ms, model="fake")

    def call_tool(self, messages, name, description, parameters):
        self.calls.append(("tool", name))
        if self.error is not None:
            raise self.error
        return self.tool_args


class FakeResponse:
    def __init__(self, status_code=200, payload=None, headers=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        self.text = text or (json.dumps(payload) if payload is not None else "")

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def _next(self, method, url, kwargs):
        self.requests.append((method, url, kwargs))
        resp = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(resp, Exception):
            raise resp
        return resp

    def get(self, url, **kwargs):
        return self._next("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, kwargs)


@pytest.fixture
def store(tmp_path):
    return Store(tmp_path / "data")


@pytest.fixture
def settings(tmp_path):
    return Settings(data_dir=tmp_path / "data", secret_key="test-secret")


@pytest.fixture
def app(settings, store):
    app = create_app(settings, store, llm=None, fast_llm=None)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def token(app):
    return app.extensions["pocketpilot"].auth.issue_token(USER, "user@example.com")


@pytest.fixture
def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}
