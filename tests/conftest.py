from typing import Callable, List

import httpx
import pytest
from fastapi.testclient import TestClient

from chat_relay.core.config import Settings
from main import create_app


class FakeUpstream:
    """替代上游接口，记录收到的请求"""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.respond: Callable[[httpx.Request], httpx.Response] = lambda request: httpx.Response(
            200, content=b"data: {\"choices\":[]}\n\n"
        )

    def handler(self, request: httpx.Request):
        self.requests.append(request)
        return self.respond(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def make_settings(**overrides) -> Settings:
    values = {"OPENROUTER_API_KEY": "test-key", "LOG_LEVEL": "DEBUG"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def make_client(upstream):
    def _make(raise_server_exceptions: bool = True, **overrides) -> TestClient:
        app = create_app(make_settings(**overrides), transport=upstream.transport)
        return TestClient(app, raise_server_exceptions=raise_server_exceptions)

    return _make


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()


@pytest.fixture
def chat_payload() -> dict:
    return {
        "character": {"name": "Mira", "description": "You are Mira, a ship's navigator."},
        "chatHistory": [
            {"sender": "user", "main": "hi"},
            {"sender": "ai", "main": "hello"},
            {"sender": "user"},
        ],
        "userMessage": "Where are we headed?",
    }
