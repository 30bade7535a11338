"""
Anthropic completion provider — supports claude-3-5-haiku and claude-3-5-sonnet.

Pricing (as of early 2025):
  claude-3-5-haiku-20241022:  $0.80 / 1M input,  $4.00  / 1M output
  claude-3-5-sonnet-20241022: $3.00 / 1M input,  $15.00 / 1M output
Images: ~1600 tokens per standard image.

Claude is good at reading fine print on nutrition labels, which makes it a
reasonable alternative when Gemini struggles with small text.
"""
from __future__ import annotations

import base64
import time
import logging
from typing import Optional

import anthropic

from providers.base import (
    SYSTEM_PROMPT,
    Completion, CompletionProvider, detect_mime_type,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-3-5-haiku-20241022"

_ANTHROPIC_IMAGE_TOKENS = 1600  # approximate tokens per image for Claude


class AnthropicProvider(CompletionProvider):

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL):
        self.name = "anthropic"
        self.model_id = model
        self._client = anthropic.AsyncAnthropic(api_key=api_key)

        _pricing = {
            "claude-3-5-haiku-20241022":  (0.0008, 0.004),
            "claude-3-5-sonnet-20241022": (0.003,  0.015),
        }
        self.cost_per_1k_input_tokens, self.cost_per_1k_output_tokens = _pricing.get(
            model, (0.003, 0.015)
        )
        self.cost_per_image = _ANTHROPIC_IMAGE_TOKENS / 1000 * self.cost_per_1k_input_tokens

    async def complete(
        self,
        prompt: str,
        image_bytes: Optional[bytes] = None,
        mime_type: Optional[str] = None,
    ) -> Completion:
        content: list[dict] = []
        if image_bytes:
            content.append({
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": detect_mime_type(image_bytes, mime_type),
                    "data": base64.b64encode(image_bytes).decode(),
                },
            })
        content.append({"type": "text", "text": prompt})

        t0 = time.monotonic()
        message = await self._client.messages.create(
            model=self.model_id,
            max_tokens=800,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": content}],
        )
        latency_ms = int((time.monotonic() - t0) * 1000)

        # Concatenate text blocks; non-text blocks (tool use etc.) are ignored
        raw = "".join(
            block.text for block in message.content if getattr(block, "type", "") == "text"
        )
        input_tokens = message.usage.input_tokens
        output_tokens = message.usage.output_tokens

        return Completion(
            provider_name=self.full_name,
            model_id=self.model_id,
            text=raw,
            latency_ms=latency_ms,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=self.estimate_cost(input_tokens, output_tokens, with_image=bool(image_bytes)),
        )
