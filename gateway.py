"""
gateway.py — the two analysis operations behind the HTTP endpoints.

  analyse_image(image_bytes, mime_type)  → AnalysisResult
  analyse_text(text)                     → AnalysisResult

Both build a prompt, run one completion through providers.manager and
turn the completion text into a validated AnalysisResult. Failures are
raised as typed errors (errors.py); mapping them to HTTP responses and
the fallback payload is the web layer's job.
"""
from __future__ import annotations

import logging
from typing import Optional

import config
from analysis import AnalysisResult, parse_analysis
from errors import CompletionFormatError, InputError
from providers import manager
from providers.base import IMAGE_PROMPT, build_text_prompt

logger = logging.getLogger(__name__)


def _parse(completion_text: str, provider_name: str) -> AnalysisResult:
    try:
        result = parse_analysis(completion_text)
    except CompletionFormatError as exc:
        logger.error(
            "[%s] Unusable completion (%s): %s — raw: %s",
            provider_name, type(exc).__name__, exc, (exc.raw_text or "")[:500],
        )
        raise
    logger.info(
        "[%s] Verdict %s for %r",
        provider_name, result.verdict.value, result.product_name,
    )
    return result


async def analyse_image(image_bytes: Optional[bytes], mime_type: Optional[str] = None) -> AnalysisResult:
    """Analyse an uploaded food-label photo."""
    if not image_bytes:
        raise InputError("No image uploaded")
    if mime_type and not mime_type.startswith("image/"):
        raise InputError(f"Unsupported file type '{mime_type}' — upload a JPG, PNG or WEBP image")

    logger.info("Analysing image: %s, %d bytes", mime_type or "unknown type", len(image_bytes))
    completion = await manager.complete(IMAGE_PROMPT, image_bytes, mime_type)
    return _parse(completion.text, completion.provider_name)


async def analyse_text(text: Optional[str]) -> AnalysisResult:
    """Analyse a product name or free-text ingredient list."""
    if not isinstance(text, str) or not text.strip():
        raise InputError("No text provided")
    if len(text) > config.MAX_TEXT_CHARS:
        raise InputError(f"Text too long — limit is {config.MAX_TEXT_CHARS} characters")

    logger.info("Analysing text: %d chars", len(text))
    completion = await manager.complete(build_text_prompt(text))
    return _parse(completion.text, completion.provider_name)
