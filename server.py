"""
server.py — aiohttp web server for the analysis gateway.

Endpoints:
  POST /analyze       multipart form, image in field "label" (or "image"/"file")
  POST /analyze-text  JSON {"text": "..."}
  GET  /health        JSON status + active provider + prompt version

Responses:
  200  AnalysisResult JSON
  400  {"error": "..."}                       missing / unusable input
  413  upload larger than MAX_UPLOAD_BYTES    (aiohttp)
  429  {"error": "Too many requests"}
  500  fallback AnalysisResult (+ raw_response when the model's text is known)

The 500 body always has the AnalysisResult shape so the client can render it.
"""
from __future__ import annotations

import json
import logging
import time
from collections import defaultdict, deque
from typing import Optional

from aiohttp import web

import config
import gateway
from analysis import fallback_result
from errors import AnalysisError, CompletionFormatError, InputError
from providers.base import PROMPT_VERSION

logger = logging.getLogger(__name__)

UPLOAD_FIELDS = ("label", "image", "file")


# ── Rate limiter ───────────────────────────────────────────────────────────────
_rate_buckets: dict[str, deque] = defaultdict(deque)
_last_sweep: float = 0.0


def _sweep_expired(now: float) -> None:
    """Drop buckets whose newest request has left the window."""
    stale = [
        key for key, bucket in _rate_buckets.items()
        if not bucket or now - bucket[-1] > config.RATE_WINDOW_SECS
    ]
    for key in stale:
        del _rate_buckets[key]


def _is_rate_limited(client_id: str) -> bool:
    global _last_sweep
    if config.RATE_MAX_REQUESTS <= 0:
        return False
    now = time.monotonic()
    if now - _last_sweep > config.RATE_WINDOW_SECS:
        _sweep_expired(now)
        _last_sweep = now

    bucket = _rate_buckets[client_id]
    while bucket and now - bucket[0] > config.RATE_WINDOW_SECS:
        bucket.popleft()
    if len(bucket) >= config.RATE_MAX_REQUESTS:
        return True
    bucket.append(now)
    return False


def _client_id(request: web.Request) -> str:
    # X-Real-IP is client-controlled unless a trusted proxy sets it
    if config.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("X-Real-IP")
        if forwarded:
            return forwarded
    return request.remote or "unknown"


# ── Response helpers ───────────────────────────────────────────────────────────

def _error_response(exc: BaseException) -> web.Response:
    """Map a pipeline failure to its HTTP response."""
    if isinstance(exc, InputError):
        return web.json_response({"error": str(exc)}, status=400)

    body = fallback_result(exc).to_dict()
    if isinstance(exc, CompletionFormatError) and exc.raw_text is not None:
        body["raw_response"] = exc.raw_text
    return web.json_response(body, status=500)


def _too_many_requests() -> web.Response:
    return web.json_response({"error": "Too many requests"}, status=429)


async def _read_upload(request: web.Request) -> tuple[Optional[bytes], Optional[str]]:
    """
    Return (bytes, content_type) of the first uploaded file found in
    UPLOAD_FIELDS, or (None, None). Temp files are closed before returning.
    """
    if not request.content_type.startswith("multipart/"):
        return None, None

    try:
        form = await request.post()
    except ValueError as exc:
        # e.g. multipart content type without a boundary
        raise InputError(f"Malformed upload: {exc}") from exc
    found: tuple[Optional[bytes], Optional[str]] = (None, None)
    for name in UPLOAD_FIELDS:
        field = form.get(name)
        if isinstance(field, web.FileField):
            found = (field.file.read(), field.content_type)
            break
    for value in form.values():
        if isinstance(value, web.FileField):
            value.file.close()
    return found


# ── Request handlers ───────────────────────────────────────────────────────────

async def handle_analyze(request: web.Request) -> web.Response:
    """Image path: multipart upload → AnalysisResult."""
    if _is_rate_limited(_client_id(request)):
        return _too_many_requests()

    logger.info("Incoming /analyze request from %s", _client_id(request))
    try:
        image_bytes, mime_type = await _read_upload(request)
        result = await gateway.analyse_image(image_bytes, mime_type)
    except web.HTTPException:
        raise
    except InputError as exc:
        logger.warning("/analyze rejected: %s", exc)
        return _error_response(exc)
    except AnalysisError as exc:
        return _error_response(exc)
    except Exception as exc:
        logger.exception("/analyze crashed: %s", exc)
        return _error_response(exc)

    return web.json_response(result.to_dict())


async def handle_analyze_text(request: web.Request) -> web.Response:
    """Text path: {"text": ...} → AnalysisResult."""
    if _is_rate_limited(_client_id(request)):
        return _too_many_requests()

    logger.info("Incoming /analyze-text request from %s", _client_id(request))
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return web.json_response({"error": "Request body must be JSON"}, status=400)
    if not isinstance(payload, dict):
        return web.json_response({"error": "Request body must be a JSON object"}, status=400)

    try:
        result = await gateway.analyse_text(payload.get("text"))
    except InputError as exc:
        logger.warning("/analyze-text rejected: %s", exc)
        return _error_response(exc)
    except AnalysisError as exc:
        return _error_response(exc)
    except Exception as exc:
        logger.exception("/analyze-text crashed: %s", exc)
        return _error_response(exc)

    return web.json_response(result.to_dict())


async def handle_health(request: web.Request) -> web.Response:
    """Health check — returns 200 OK. Use with uptime monitors."""
    return web.json_response({
        "status":         "ok",
        "provider":       config.AI_PROVIDER,
        "prompt_version": PROMPT_VERSION,
    })


# ── CORS ──────────────────────────────────────────────────────────────────────

_CORS_HEADERS = {
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def _apply_cors(headers) -> None:
    headers["Access-Control-Allow-Origin"] = config.CORS_ORIGIN
    headers.update(_CORS_HEADERS)


@web.middleware
async def cors_middleware(request: web.Request, handler):
    if request.method == "OPTIONS":
        response = web.Response(status=204)
        _apply_cors(response.headers)
        return response
    try:
        response = await handler(request)
    except web.HTTPException as exc:
        _apply_cors(exc.headers)
        raise
    _apply_cors(response.headers)
    return response


# ── App factory ────────────────────────────────────────────────────────────────

def build_web_app() -> web.Application:
    app = web.Application(
        client_max_size=config.MAX_UPLOAD_BYTES,
        middlewares=[cors_middleware],
    )
    app.router.add_get("/health",        handle_health)
    app.router.add_post("/analyze",      handle_analyze)
    app.router.add_post("/analyze-text", handle_analyze_text)
    return app


async def start_server() -> web.AppRunner:
    """Start the web server. Returns runner so caller can shut it down cleanly."""
    app    = build_web_app()
    # Cancel the handler (and the pending provider call) when the client disconnects
    runner = web.AppRunner(app, access_log=logger, handler_cancellation=True)
    await runner.setup()
    site = web.TCPSite(runner, config.HOST, config.PORT)
    await site.start()
    logger.info(
        "Gateway listening on http://%s:%d  (provider: %s, prompt %s)",
        config.HOST, config.PORT, config.AI_PROVIDER, PROMPT_VERSION,
    )
    return runner
