"""
Google Gemini completion provider — uses the google-genai SDK.

Pricing (per 1M tokens, as of 2025):
  gemini-2.5-flash:      $0.30  input,  $2.50 output
  gemini-2.0-flash:      $0.10  input,  $0.40 output
  gemini-2.0-flash-lite: $0.075 input,  $0.30 output
Images are billed as input tokens (~258 tokens per image).
"""
from __future__ import annotations

import time
import logging
from typing import Optional

from google import genai
from google.genai import types as genai_types

from providers.base import (
    SYSTEM_PROMPT,
    Completion, CompletionProvider, detect_mime_type,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"

_IMAGE_TOKENS = 258

_PRICING: dict[str, tuple[float, float]] = {
    # model_id: ($/1k_input_tokens, $/1k_output_tokens)
    "gemini-2.5-flash":      (0.0003,   0.0025),
    "gemini-2.0-flash":      (0.0001,   0.0004),
    "gemini-2.0-flash-lite": (0.000075, 0.0003),
}


class GeminiProvider(CompletionProvider):

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL):
        self.name     = "google"
        self.model_id = model
        self._client  = genai.Client(api_key=api_key)

        rates = _PRICING.get(model, _PRICING[DEFAULT_MODEL])
        self.cost_per_1k_input_tokens  = rates[0]
        self.cost_per_1k_output_tokens = rates[1]
        self.cost_per_image            = _IMAGE_TOKENS / 1000 * rates[0]

    async def complete(
        self,
        prompt: str,
        image_bytes: Optional[bytes] = None,
        mime_type: Optional[str] = None,
    ) -> Completion:
        gen_config = genai_types.GenerateContentConfig(
            system_instruction=SYSTEM_PROMPT,
            temperature=0.2,
        )

        contents: list = []
        if image_bytes:
            contents.append(
                genai_types.Part.from_bytes(
                    data=image_bytes,
                    mime_type=detect_mime_type(image_bytes, mime_type),
                )
            )
        contents.append(prompt)

        t0 = time.monotonic()
        response = await self._client.aio.models.generate_content(
            model=self.model_id,
            contents=contents,
            config=gen_config,
        )
        latency_ms = int((time.monotonic() - t0) * 1000)

        usage         = response.usage_metadata
        input_tokens  = getattr(usage, "prompt_token_count", None) or 0
        output_tokens = getattr(usage, "candidates_token_count", None) or 0

        return Completion(
            provider_name = self.full_name,
            model_id      = self.model_id,
            text          = response.text,
            latency_ms    = latency_ms,
            input_tokens  = input_tokens,
            output_tokens = output_tokens,
            cost_usd      = self.estimate_cost(input_tokens, output_tokens, with_image=bool(image_bytes)),
        )
