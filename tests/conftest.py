"""
Shared pytest fixtures.

Every test runs against a known configuration (Gemini selected, fake key,
generous rate limit) with a clean provider cache and empty rate-limit
buckets, so tests are isolated from each other and from the real .env.
"""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

# ── Make the project root importable without installing the package ────────────
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import config  # noqa: E402
import server  # noqa: E402
import providers.manager as manager_mod  # noqa: E402
from providers.base import Completion, CompletionProvider  # noqa: E402


OAT_MILK_TEXT = (
    'Here you go: {"product_name":"Oat Milk","inferred_intent":"avoiding dairy",'
    '"verdict":"Green","reasoning":"No dairy, low sugar",'
    '"key_insights":["No lactose","Low sugar","Fortified"]} Hope this helps!'
)


@pytest.fixture(autouse=True)
def test_config(monkeypatch):
    monkeypatch.setattr(config, "AI_PROVIDER", "google")
    monkeypatch.setattr(config, "AI_MODEL", None)
    monkeypatch.setattr(config, "GOOGLE_API_KEY", "test-google-key")
    monkeypatch.setattr(config, "OPENAI_API_KEY", None)
    monkeypatch.setattr(config, "ANTHROPIC_API_KEY", None)
    monkeypatch.setattr(config, "PROVIDER_TIMEOUT_SECS", 5.0)
    monkeypatch.setattr(config, "MAX_TEXT_CHARS", 5000)
    monkeypatch.setattr(config, "RATE_MAX_REQUESTS", 1000)
    monkeypatch.setattr(config, "RATE_WINDOW_SECS", 60.0)
    monkeypatch.setattr(config, "CORS_ORIGIN", "*")
    monkeypatch.setattr(config, "TRUST_PROXY_HEADERS", False)
    yield


@pytest.fixture(autouse=True)
def reset_state():
    """Each test starts with no cached provider and empty rate buckets."""
    manager_mod.reset_provider()
    server._rate_buckets.clear()
    server._last_sweep = 0.0
    yield
    manager_mod.reset_provider()
    server._rate_buckets.clear()


def make_completion(text: Optional[str], provider_name: str = "google/test-model") -> Completion:
    return Completion(
        provider_name=provider_name,
        model_id=provider_name.split("/")[-1],
        text=text,
        latency_ms=120,
        input_tokens=900,
        output_tokens=110,
        cost_usd=0.0004,
    )


def make_provider(text: Optional[str] = OAT_MILK_TEXT, side_effect=None) -> CompletionProvider:
    p = MagicMock(spec=CompletionProvider)
    p.name = "google"
    p.model_id = "test-model"
    p.full_name = "google/test-model"
    if side_effect is not None:
        p.complete = AsyncMock(side_effect=side_effect)
    else:
        p.complete = AsyncMock(return_value=make_completion(text))
    return p


@pytest.fixture
def fake_provider():
    """Install a mocked provider answering with the Oat Milk completion."""
    p = make_provider()
    manager_mod._provider = p
    return p
