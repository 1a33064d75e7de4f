"""Integration test configuration and fixtures.

Offline tests wire the real store, queue, worker and orchestrator together
with fake model and image backends. Tests that call a live LLM are skipped
automatically when no provider is configured.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from dotenv import load_dotenv

# Load .env file at import time so provider availability checks work
load_dotenv()

if TYPE_CHECKING:
    from collections.abc import Generator

    from langchain_core.language_models import BaseChatModel

LIVE_MODEL_SPECS = {
    "openrouter": "openrouter/meta-llama/llama-3.3-70b-instruct",
    "openai": "openai/gpt-4o-mini",
    "ollama": "ollama/qwen3:8b",
}


def _ollama_available() -> bool:
    """Check if Ollama is configured and reachable."""
    host = os.getenv("OLLAMA_HOST")
    if not host:
        return False

    try:
        import httpx

        response = httpx.get(f"{host}/api/tags", timeout=5.0)
        return response.status_code == 200
    except (httpx.HTTPError, OSError):
        return False


def _openrouter_available() -> bool:
    return bool(os.getenv("OPENROUTER_API_KEY"))


def _openai_available() -> bool:
    return bool(os.getenv("OPENAI_API_KEY"))


requires_any_provider = pytest.mark.skipif(
    not (_openrouter_available() or _openai_available() or _ollama_available()),
    reason="No LLM provider configured (need OPENROUTER_API_KEY, OPENAI_API_KEY or OLLAMA_HOST)",
)


@pytest.fixture(params=["openrouter", "openai", "ollama"])
def any_model(request: pytest.FixtureRequest) -> Generator[BaseChatModel, None, None]:
    """Live chat model, once per configured provider.

    Providers that are not configured are skipped.
    """
    available = {
        "openrouter": _openrouter_available,
        "openai": _openai_available,
        "ollama": _ollama_available,
    }
    if not available[request.param]():
        pytest.skip(f"{request.param} not configured")

    from dreamcard.providers.factory import create_chat_model_from_spec

    yield create_chat_model_from_spec(
        LIVE_MODEL_SPECS[request.param], temperature=0.8, max_tokens=1500
    )


@pytest.fixture
def dream_text() -> str:
    """A short, vivid dream that every style can interpret."""
    return (
        "I was walking up a staircase inside a lighthouse. Every step turned into water "
        "and the light at the top kept moving further away, humming my mother's song."
    )
