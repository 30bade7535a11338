"""
Tests for server.py — HTTP contract of the gateway (aiohttp test client).

Covers:
  - POST /analyze: 200 result, 400 without an image, 500 fallback with
    raw_response for unusable completions, 500 fallback on provider failure
  - POST /analyze-text: 200 result, 400 for blank text / non-JSON body
  - GET /health
  - CORS headers and OPTIONS preflight
  - 429 once the per-client rate limit is exhausted
  - every 500 body is itself a schema-valid AnalysisResult
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

import config
import server
import providers.manager as manager_mod
from analysis import validate_result
from conftest import OAT_MILK_TEXT, make_provider
from providers.base import PROMPT_VERSION
from server import build_web_app


@pytest_asyncio.fixture
async def client():
    async with TestClient(TestServer(build_web_app())) as c:
        yield c


def image_form(field: str = "label", content_type: str = "image/jpeg") -> aiohttp.FormData:
    form = aiohttp.FormData()
    form.add_field(field, b"\xff\xd8\xff\xe0fake-jpeg", filename="label.jpg", content_type=content_type)
    return form


# ── /analyze ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestAnalyzeEndpoint:
    async def test_success(self, client, fake_provider):
        resp = await client.post("/analyze", data=image_form())
        assert resp.status == 200
        body = await resp.json()
        assert body["product_name"] == "Oat Milk"
        assert body["verdict"] == "Green"
        assert body["key_insights"] == ["No lactose", "Low sugar", "Fortified"]
        args = fake_provider.complete.await_args.args
        assert args[1] == b"\xff\xd8\xff\xe0fake-jpeg"
        assert args[2] == "image/jpeg"

    @pytest.mark.parametrize("field", ["image", "file"])
    async def test_alternate_field_names(self, client, fake_provider, field):
        resp = await client.post("/analyze", data=image_form(field))
        assert resp.status == 200

    async def test_no_image_is_400(self, client, fake_provider):
        form = aiohttp.FormData()
        form.add_field("note", "hello")
        resp = await client.post("/analyze", data=form)
        assert resp.status == 400
        assert await resp.json() == {"error": "No image uploaded"}
        fake_provider.complete.assert_not_awaited()

    async def test_empty_body_is_400(self, client, fake_provider):
        resp = await client.post("/analyze")
        assert resp.status == 400
        assert (await resp.json())["error"] == "No image uploaded"

    async def test_multipart_without_boundary_is_400(self, client, fake_provider):
        resp = await client.post("/analyze", data=b"garbage",
                                 headers={"Content-Type": "multipart/form-data"})
        assert resp.status == 400
        assert (await resp.json())["error"].startswith("Malformed upload")
        fake_provider.complete.assert_not_awaited()

    async def test_non_image_upload_is_400(self, client, fake_provider):
        resp = await client.post("/analyze", data=image_form(content_type="application/pdf"))
        assert resp.status == 400
        assert "Unsupported file type" in (await resp.json())["error"]

    async def test_no_json_in_completion_is_fallback(self, client):
        manager_mod._provider = make_provider(text="I cannot analyze this image.")
        resp = await client.post("/analyze", data=image_form())
        assert resp.status == 500
        body = await resp.json()
        assert body["verdict"] == "Yellow"
        assert body["product_name"] == "Unknown"
        assert body["inferred_intent"] == "Analysis failed"
        assert "No JSON" in body["reasoning"]
        assert body["key_insights"] == ["No JSON in AI response", "Check server logs", "Retry analysis"]
        assert body["raw_response"] == "I cannot analyze this image."

    async def test_invalid_json_keeps_raw_response_verbatim(self, client):
        raw = 'Sure: {"product_name": "Chips", "verdict": "Red",} bye'
        manager_mod._provider = make_provider(text=raw)
        resp = await client.post("/analyze", data=image_form())
        assert resp.status == 500
        body = await resp.json()
        assert body["raw_response"] == raw
        assert body["key_insights"][0] == "Invalid JSON from AI"

    async def test_provider_timeout_is_fallback(self, client, monkeypatch):
        monkeypatch.setattr(config, "PROVIDER_TIMEOUT_SECS", 0.05)

        async def hang(*_args):
            await asyncio.sleep(5)

        manager_mod._provider = make_provider(side_effect=hang)
        resp = await client.post("/analyze", data=image_form())
        assert resp.status == 500
        body = await resp.json()
        assert body["verdict"] == "Yellow"
        assert body["key_insights"][0] == "AI provider timeout"
        assert "raw_response" not in body

    async def test_provider_network_failure_is_fallback(self, client):
        manager_mod._provider = make_provider(side_effect=ConnectionError("connection refused"))
        resp = await client.post("/analyze", data=image_form())
        assert resp.status == 500
        body = await resp.json()
        assert body["key_insights"][0] == "AI provider error"
        assert "connection refused" in body["reasoning"]

    async def test_upload_too_large_is_413(self, monkeypatch, fake_provider):
        monkeypatch.setattr(config, "MAX_UPLOAD_BYTES", 1024)
        form = aiohttp.FormData()
        form.add_field("label", b"\x00" * 4096, filename="big.jpg", content_type="image/jpeg")
        async with TestClient(TestServer(build_web_app())) as small_client:
            resp = await small_client.post("/analyze", data=form)
        assert resp.status == 413
        fake_provider.complete.assert_not_awaited()

    async def test_repeated_submissions_are_schema_valid(self, client):
        answers = [
            OAT_MILK_TEXT,
            "Sorry, I can't read that.",
            '{"product_name": "X"}',
        ]
        for text in answers:
            manager_mod._provider = make_provider(text=text)
            resp = await client.post("/analyze", data=image_form())
            body = await resp.json()
            body.pop("raw_response", None)
            validate_result(body)


# ── /analyze-text ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestAnalyzeTextEndpoint:
    async def test_success(self, client, fake_provider):
        resp = await client.post("/analyze-text", json={"text": "Strawberry Ice Cream, Sugar, Palm Oil, E621"})
        assert resp.status == 200
        body = await resp.json()
        assert body["verdict"] == "Green"
        prompt = fake_provider.complete.await_args.args[0]
        assert "Palm Oil, E621" in prompt

    async def test_blank_text_is_400(self, client, fake_provider):
        resp = await client.post("/analyze-text", json={"text": "   "})
        assert resp.status == 400
        assert await resp.json() == {"error": "No text provided"}

    async def test_missing_text_key_is_400(self, client, fake_provider):
        resp = await client.post("/analyze-text", json={"ingredients": "oats"})
        assert resp.status == 400

    async def test_non_json_body_is_400(self, client, fake_provider):
        resp = await client.post("/analyze-text", data="text=oats",
                                 headers={"Content-Type": "application/x-www-form-urlencoded"})
        assert resp.status == 400
        assert await resp.json() == {"error": "Request body must be JSON"}

    async def test_json_array_body_is_400(self, client, fake_provider):
        resp = await client.post("/analyze-text", json=["oats"])
        assert resp.status == 400

    async def test_schema_error_is_fallback(self, client):
        raw = '{"product_name": "Chips", "verdict": "Maybe"}'
        manager_mod._provider = make_provider(text=raw)
        resp = await client.post("/analyze-text", json={"text": "chips"})
        assert resp.status == 500
        body = await resp.json()
        assert body["key_insights"][0] == "AI response failed validation"
        assert "verdict" in body["reasoning"]
        assert body["raw_response"] == raw


# ── /health, CORS, rate limit ─────────────────────────────────────────────────

@pytest.mark.asyncio
class TestPlumbing:
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status == 200
        assert await resp.json() == {
            "status": "ok", "provider": "google", "prompt_version": PROMPT_VERSION,
        }

    async def test_cors_header_on_success(self, client, fake_provider):
        resp = await client.post("/analyze-text", json={"text": "oats"})
        assert resp.headers["Access-Control-Allow-Origin"] == "*"

    async def test_cors_header_on_not_found(self, client):
        resp = await client.get("/nope")
        assert resp.status == 404
        assert resp.headers["Access-Control-Allow-Origin"] == "*"

    async def test_preflight(self, client, monkeypatch):
        monkeypatch.setattr(config, "CORS_ORIGIN", "http://localhost:5173")
        resp = await client.options("/analyze")
        assert resp.status == 204
        assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"
        assert "POST" in resp.headers["Access-Control-Allow-Methods"]

    async def test_rate_limited_after_quota(self, client, fake_provider, monkeypatch):
        monkeypatch.setattr(config, "RATE_MAX_REQUESTS", 2)
        for _ in range(2):
            resp = await client.post("/analyze-text", json={"text": "oats"})
            assert resp.status == 200
        resp = await client.post("/analyze-text", json={"text": "oats"})
        assert resp.status == 429
        assert await resp.json() == {"error": "Too many requests"}

    async def test_spoofed_real_ip_does_not_reset_quota(self, client, fake_provider, monkeypatch):
        monkeypatch.setattr(config, "RATE_MAX_REQUESTS", 2)
        statuses = []
        for i in range(4):
            resp = await client.post("/analyze-text", json={"text": "oats"},
                                     headers={"X-Real-IP": f"1.2.3.{i}"})
            statuses.append(resp.status)
        assert statuses == [200, 200, 429, 429]
        assert list(server._rate_buckets) == ["127.0.0.1"]

    async def test_real_ip_honoured_behind_trusted_proxy(self, client, fake_provider, monkeypatch):
        monkeypatch.setattr(config, "RATE_MAX_REQUESTS", 1)
        monkeypatch.setattr(config, "TRUST_PROXY_HEADERS", True)
        for i in range(3):
            resp = await client.post("/analyze-text", json={"text": "oats"},
                                     headers={"X-Real-IP": f"10.0.0.{i}"})
            assert resp.status == 200


class TestStartServer:
    @pytest.mark.asyncio
    async def test_runner_cancels_handlers_on_disconnect(self, monkeypatch):
        runner = MagicMock()
        runner.setup = AsyncMock()
        site = MagicMock()
        site.start = AsyncMock()
        runner_cls = MagicMock(return_value=runner)
        monkeypatch.setattr(server.web, "AppRunner", runner_cls)
        monkeypatch.setattr(server.web, "TCPSite", MagicMock(return_value=site))

        assert await server.start_server() is runner

        assert runner_cls.call_args.kwargs["handler_cancellation"] is True
        site.start.assert_awaited_once()
