"""Unit tests for the FastAPI relay."""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import ndjson


@asynccontextmanager
async def _noop_lifespan(app):
    yield


class _Upstream:
    """Programmable stand-in for the Ollama chat endpoint."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.body = b""
        self.status = 200
        self.error: Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status, content=self.body)

    @property
    def last_payload(self) -> dict:
        return json.loads(self.requests[-1].content)


@pytest.fixture(autouse=True)
def _relay_state():
    """Swap in a no-op lifespan and mocked upstream clients.

    The lifespan is replaced so TestClient does not open real
    connections to an Ollama server on startup.
    """
    import ollama_chat.web as web

    upstream = _Upstream()
    ollama_client = MagicMock()
    ollama_client.list = AsyncMock(return_value=SimpleNamespace(models=[]))

    original_config = web._config
    original_lifespan = web.app.router.lifespan_context

    web.app.router.lifespan_context = _noop_lifespan
    web._config = web.AppConfig()
    web.app.state.http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    web.app.state.ollama_client = ollama_client

    yield web, upstream, ollama_client

    web._config = original_config
    web.app.router.lifespan_context = original_lifespan


@pytest.fixture
def client():
    import ollama_chat.web as web

    with TestClient(web.app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
def upstream(_relay_state) -> _Upstream:
    return _relay_state[1]


@pytest.fixture
def ollama_client(_relay_state) -> MagicMock:
    return _relay_state[2]


def _frames(resp) -> list[dict]:
    return [json.loads(line) for line in resp.text.splitlines() if line]


# ---------- Chat endpoint ----------


class TestChat:
    def test_streams_relay_frames(self, client, upstream, hello_upstream_bytes) -> None:
        upstream.body = hello_upstream_bytes

        resp = client.post(
            "/chat",
            json={"messages": [{"role": "user", "content": "hi"}], "model": "llama3.1:8b"},
        )

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/x-ndjson")
        assert _frames(resp) == [
            {"content": "Hel"},
            {"content": "lo"},
            {
                "content": "",
                "stats": {"tokensPerSecond": 2.5, "totalTokens": 5, "generationTimeSeconds": 2},
            },
        ]

    def test_forwards_conversation_upstream(self, client, upstream, hello_upstream_bytes) -> None:
        upstream.body = hello_upstream_bytes

        client.post(
            "/chat",
            json={
                "messages": [
                    {"role": "user", "content": "hi"},
                    {"role": "assistant", "content": "hey", "modelId": "x", "interrupted": True},
                ],
                "model": "gemma3:1b",
            },
        )

        payload = upstream.last_payload
        assert payload["model"] == "gemma3:1b"
        assert payload["stream"] is True
        assert payload["messages"] == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hey"},
        ]

    def test_system_prompt_becomes_leading_turn(self, client, upstream, hello_upstream_bytes) -> None:
        upstream.body = hello_upstream_bytes

        client.post(
            "/chat",
            json={
                "messages": [{"role": "user", "content": "hi"}],
                "systemPrompt": "You are a patient teacher.",
            },
        )

        messages = upstream.last_payload["messages"]
        assert messages[0] == {"role": "system", "content": "You are a patient teacher."}
        assert messages[1] == {"role": "user", "content": "hi"}

    def test_default_model(self, client, upstream, hello_upstream_bytes) -> None:
        upstream.body = hello_upstream_bytes

        client.post("/chat", json={"messages": [{"role": "user", "content": "hi"}]})

        assert upstream.last_payload["model"] == "llama3.1:8b"

    def test_connection_refused_is_json_error(self, client, upstream) -> None:
        upstream.error = httpx.ConnectError("Connection refused")

        resp = client.post("/chat", json={"messages": [{"role": "user", "content": "hi"}]})

        assert resp.status_code == 503
        assert resp.json() == {"error": "Failed to communicate with Ollama"}

    def test_upstream_error_status_is_json_error(self, client, upstream) -> None:
        upstream.status = 404
        upstream.body = json.dumps({"error": 'model "nope" not found'}).encode()

        resp = client.post(
            "/chat", json={"messages": [{"role": "user", "content": "hi"}], "model": "nope"}
        )

        assert resp.status_code == 502
        assert "not found" in resp.json()["error"]

    def test_malformed_upstream_lines_are_skipped(self, client, upstream) -> None:
        upstream.body = b"junk\n" + ndjson({"message": {"content": "ok"}}, {"done": True})

        resp = client.post("/chat", json={"messages": [{"role": "user", "content": "hi"}]})

        assert _frames(resp) == [{"content": "ok"}, {"content": "", "stats": {}}]

    def test_invalid_body_is_json_error(self, client) -> None:
        resp = client.post("/chat", json={"messages": [{"role": "robot", "content": "hi"}]})

        assert resp.status_code == 422
        assert "error" in resp.json()

    def test_uninitialized_relay(self, client, _relay_state) -> None:
        web = _relay_state[0]
        web.app.state.http_client = None

        resp = client.post("/chat", json={"messages": [{"role": "user", "content": "hi"}]})

        assert resp.status_code == 503
        assert resp.json()["error"] == "Relay not initialized"


# ---------- Models endpoint ----------


class TestModels:
    def test_lists_installed_models(self, client, ollama_client) -> None:
        ollama_client.list.return_value = SimpleNamespace(
            models=[
                SimpleNamespace(
                    model="llama3.1:8b",
                    size=4_920_753_328,
                    modified_at=datetime(2024, 8, 1, 12, 0, tzinfo=timezone.utc),
                ),
                SimpleNamespace(model="gemma3:1b", size=None, modified_at=None),
            ]
        )

        resp = client.get("/models")

        assert resp.status_code == 200
        assert resp.json() == {
            "models": [
                {
                    "name": "llama3.1:8b",
                    "size": 4_920_753_328,
                    "modified_at": "2024-08-01T12:00:00+00:00",
                },
                {"name": "gemma3:1b", "size": 0, "modified_at": ""},
            ]
        }

    def test_failure_is_empty_list_with_error_status(self, client, ollama_client) -> None:
        ollama_client.list.side_effect = ConnectionError("refused")

        resp = client.get("/models")

        assert resp.status_code == 502
        assert resp.json() == {"models": []}

    def test_empty_success_is_distinct_from_failure(self, client) -> None:
        resp = client.get("/models")

        assert resp.status_code == 200
        assert resp.json() == {"models": []}


# ---------- Health endpoint ----------


class TestHealth:
    def test_healthy_when_ollama_reachable(self, client) -> None:
        resp = client.get("/health")

        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy", "ollama_connected": True}

    def test_degraded_when_ollama_unreachable(self, client, ollama_client) -> None:
        ollama_client.list.side_effect = Exception("connection refused")

        resp = client.get("/health")

        assert resp.status_code == 200
        assert resp.json() == {"status": "degraded", "ollama_connected": False}
