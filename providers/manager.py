"""
Provider Manager — builds the configured completion provider and runs calls
against it with a hard timeout.

Selection (config / .env):
  AI_PROVIDER=google|openai|anthropic   (default google)
  AI_MODEL=<model id>                   (blank → provider default)

Every failure on the way to a usable completion text is reported as a
ProviderError:
  timeout         — no answer within PROVIDER_TIMEOUT_SECS
  provider        — SDK / network / auth / quota error
  empty_response  — the call succeeded but produced no text

No retries: the fallback response tells the user to retry instead.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import config
from errors import ProviderError
from providers.base import PROMPT_VERSION, Completion, CompletionProvider

logger = logging.getLogger(__name__)

# Module-level cache — cleared by reset_provider()
_provider: Optional[CompletionProvider] = None


def _build_provider() -> CompletionProvider:
    """Instantiate the provider selected by config.AI_PROVIDER."""
    name = config.AI_PROVIDER
    api_key = config.api_key_for(name)
    if not api_key:
        raise RuntimeError(f"No API key configured for AI provider '{name}'")

    if name == "google":
        from providers.gemini_provider import GeminiProvider, DEFAULT_MODEL
        provider: CompletionProvider = GeminiProvider(api_key, config.AI_MODEL or DEFAULT_MODEL)
    elif name == "openai":
        from providers.openai_provider import OpenAIProvider, DEFAULT_MODEL
        provider = OpenAIProvider(api_key, config.AI_MODEL or DEFAULT_MODEL)
    elif name == "anthropic":
        from providers.anthropic_provider import AnthropicProvider, DEFAULT_MODEL
        provider = AnthropicProvider(api_key, config.AI_MODEL or DEFAULT_MODEL)
    else:
        raise RuntimeError(f"Unknown AI provider '{name}'")

    logger.info("Loaded provider: %s", provider.full_name)
    return provider


def get_provider() -> CompletionProvider:
    global _provider
    if _provider is None:
        _provider = _build_provider()
    return _provider


def reset_provider() -> None:
    global _provider
    _provider = None


# ── Core call ─────────────────────────────────────────────────────────────────

async def complete(
    prompt: str,
    image_bytes: Optional[bytes] = None,
    mime_type: Optional[str] = None,
) -> Completion:
    """
    Run one completion against the configured provider.
    Returns a Completion whose .text is a non-blank string, or raises ProviderError.
    """
    try:
        provider = get_provider()
    except Exception as exc:
        logger.error("Could not initialise AI provider '%s': %s", config.AI_PROVIDER, exc, exc_info=True)
        raise ProviderError(
            f"Could not initialise AI provider: {exc}",
            kind="provider",
            provider_name=config.AI_PROVIDER,
        ) from exc
    timeout = config.PROVIDER_TIMEOUT_SECS

    try:
        completion = await asyncio.wait_for(
            provider.complete(prompt, image_bytes, mime_type),
            timeout=timeout,
        )
    except asyncio.TimeoutError as exc:
        logger.error("[%s] No response within %.0fs", provider.full_name, timeout)
        raise ProviderError(
            f"AI provider did not respond within {timeout:g}s",
            kind="timeout",
            provider_name=provider.full_name,
        ) from exc
    except asyncio.CancelledError:
        logger.info("[%s] Call cancelled (client went away)", provider.full_name)
        raise
    except Exception as exc:
        logger.error("[%s] Failed: %s", provider.full_name, exc, exc_info=True)
        raise ProviderError(
            f"{type(exc).__name__}: {exc}",
            kind="provider",
            provider_name=provider.full_name,
        ) from exc

    if not completion.text or not completion.text.strip():
        logger.error("[%s] Empty completion", provider.full_name)
        raise ProviderError(
            "AI provider returned an empty response",
            kind="empty_response",
            provider_name=provider.full_name,
        )

    logger.info(
        "[%s] OK — prompt=%s latency=%dms tokens=%d/%d cost=%s",
        completion.provider_name, PROMPT_VERSION, completion.latency_ms,
        completion.input_tokens, completion.output_tokens, completion.cost_str,
    )
    return completion
