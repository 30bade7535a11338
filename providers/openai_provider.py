"""
OpenAI completion provider — supports gpt-4o and gpt-4o-mini.

Pricing (as of early 2025):
  gpt-4o:       $2.50 / 1M input tokens,  $10.00 / 1M output tokens
  gpt-4o-mini:  $0.15 / 1M input tokens,  $0.60  / 1M output tokens
A typical label photo at detail=high costs ~765 input tokens.
"""
from __future__ import annotations

import base64
import time
import logging
from typing import Optional

from openai import AsyncOpenAI

from providers.base import (
    SYSTEM_PROMPT,
    Completion, CompletionProvider, detect_mime_type,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"


class OpenAIProvider(CompletionProvider):

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL):
        self.name = "openai"
        self.model_id = model
        self._client = AsyncOpenAI(api_key=api_key)

        # Pricing per 1k tokens
        _pricing = {
            "gpt-4o":      (0.0025,  0.01),
            "gpt-4o-mini": (0.00015, 0.0006),
        }
        self.cost_per_1k_input_tokens, self.cost_per_1k_output_tokens = _pricing.get(
            model, (0.0025, 0.01)
        )
        self.cost_per_image = 765 / 1000 * self.cost_per_1k_input_tokens

    async def complete(
        self,
        prompt: str,
        image_bytes: Optional[bytes] = None,
        mime_type: Optional[str] = None,
    ) -> Completion:
        content: list[dict] = []
        if image_bytes:
            b64 = base64.b64encode(image_bytes).decode()
            media_type = detect_mime_type(image_bytes, mime_type)
            content.append({
                "type": "image_url",
                "image_url": {
                    "url": f"data:{media_type};base64,{b64}",
                    "detail": "high",
                },
            })
        content.append({"type": "text", "text": prompt})

        t0 = time.monotonic()
        response = await self._client.chat.completions.create(
            model=self.model_id,
            max_tokens=800,
            temperature=0.2,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": content},
            ],
        )
        latency_ms = int((time.monotonic() - t0) * 1000)

        raw = response.choices[0].message.content if response.choices else None
        usage = response.usage
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0

        return Completion(
            provider_name=self.full_name,
            model_id=self.model_id,
            text=raw,
            latency_ms=latency_ms,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=self.estimate_cost(input_tokens, output_tokens, with_image=bool(image_bytes)),
        )
