"""Shared fixtures for the test suite."""

import json

import pytest

from ollama_chat.models import ConversationTurn

# Upstream lines for the canonical "Hello" exchange.
HELLO_UPSTREAM = [
    {"model": "llama3.1:8b", "message": {"role": "assistant", "content": "Hel"}, "done": False},
    {"model": "llama3.1:8b", "message": {"role": "assistant", "content": "lo"}, "done": False},
    {"done": True, "eval_count": 5, "eval_duration": 2_000_000_000},
]


def ndjson(*objects) -> bytes:
    """Encode objects as newline-delimited JSON."""
    return b"".join(json.dumps(obj, ensure_ascii=False).encode("utf-8") + b"\n" for obj in objects)


def split_every(data: bytes, size: int) -> list[bytes]:
    return [data[i : i + size] for i in range(0, len(data), size)]


@pytest.fixture
def hello_upstream_bytes() -> bytes:
    return ndjson(*HELLO_UPSTREAM)


@pytest.fixture
def hello_relay_bytes() -> bytes:
    return ndjson(
        {"content": "Hel"},
        {"content": "lo"},
        {"content": "", "stats": {"tokensPerSecond": 2.5, "totalTokens": 5, "generationTimeSeconds": 2.0}},
    )


@pytest.fixture
def sample_turns() -> list[ConversationTurn]:
    return [
        ConversationTurn(role="user", content="What is Python?"),
        ConversationTurn(
            role="assistant",
            content="A programming language.",
            model_id="llama3.1:8b",
        ),
        ConversationTurn(role="user", content="Who created it?"),
    ]
