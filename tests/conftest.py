"""Shared test fixtures for mlx-bridge tests."""

import json

import pytest


# ─────────────────────────────────────────────────────────────────────
# MOCK DATA
# ─────────────────────────────────────────────────────────────────────

MOCK_API_BASE = "http://localhost:8000/"
MOCK_INFO_URL = "http://localhost:8000/info"
MOCK_GENERATE_URL = "http://localhost:8000/generate"

MOCK_MODEL = "mlx-community/Llama-3.2-3B-Instruct-4bit"

MOCK_INFO_RESPONSE = {
    "model_id": MOCK_MODEL,
    "max_tokens": 8192,
}


def sse_stream(*events: dict) -> str:
    """Build an SSE body with one `data:` event per payload."""
    return "".join(f"data: {json.dumps(event)}\n\n" for event in events)


async def aiter_lines(lines):
    """Async iterator over a fixed list of lines."""
    for line in lines:
        yield line


# ─────────────────────────────────────────────────────────────────────
# FIXTURES
# ─────────────────────────────────────────────────────────────────────

@pytest.fixture
def adapter():
    """MlxLmAdapter against the default base URL, startup probe disabled."""
    from mlx_bridge.adapters.mlx_lm import MlxLmAdapter
    return MlxLmAdapter(probe=False)


@pytest.fixture
def sample_messages():
    """Return a short two-turn conversation."""
    from mlx_bridge.config import Message
    return [
        Message(role="user", content="hi"),
        Message(role="assistant", content="hey"),
    ]


@pytest.fixture
def clean_registry():
    """Empty provider registry before and after the test."""
    from mlx_bridge.registry import clear_providers
    clear_providers()
    yield
    clear_providers()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove MLX_* variables so defaults apply."""
    for key in (
        "MLX_API_BASE",
        "MLX_API_KEY",
        "MLX_MODEL",
        "MLX_CONTEXT_LENGTH",
        "MLX_TIMEOUT_SECONDS",
    ):
        monkeypatch.delenv(key, raising=False)
    return monkeypatch
