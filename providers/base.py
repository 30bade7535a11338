"""
Shared prompts, result type and base class for all completion providers.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# ── Prompt (shared across all providers) ──────────────────────────────────────
# The instruction text is part of the API contract with the model: bump
# PROMPT_VERSION whenever SYSTEM_PROMPT, IMAGE_PROMPT or the text template change.

PROMPT_VERSION = "2025-01-v1"

SYSTEM_PROMPT = """You are an expert Nutritional Co-Pilot. The user will share a food label
photo or a list of ingredients.
Your goal is NOT to transcribe the text. Your goal is to INFER INTENT and REASON.

1. Identify the Product
2. Infer what the user cares about
3. Analyze ingredients
4. Give a Green, Yellow, or Red verdict

Return strictly JSON, no markdown, no prose:
{
  "product_name": "String",
  "inferred_intent": "String",
  "verdict": "Green | Yellow | Red",
  "reasoning": "String",
  "key_insights": ["String", "String", "String"]
}

Rules:
- verdict is exactly one of Green, Yellow, Red (Green = recommended,
  Yellow = caution or uncertain, Red = avoid)
- key_insights: three short, concrete observations about the ingredients
- If the product cannot be identified, still return the JSON with your best guess
"""

IMAGE_PROMPT = (
    "Analyse this food label photo and return the JSON verdict."
)

_TEXT_TEMPLATE = (
    "Analyse this product name or ingredient list and return the JSON verdict.\n\n"
    "Input:\n{text}"
)


def build_text_prompt(text: str) -> str:
    """User turn for the text-only path."""
    return _TEXT_TEMPLATE.format(text=text.strip())


# ── Image type sniffing ───────────────────────────────────────────────────────

def detect_mime_type(image_bytes: bytes, declared: Optional[str] = None) -> str:
    """Trust a declared image/* type, otherwise sniff magic bytes (default jpeg)."""
    if declared and declared.startswith("image/"):
        return declared
    if image_bytes[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if image_bytes[:4] == b"GIF8":
        return "image/gif"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


# ── Shared result type ─────────────────────────────────────────────────────────

@dataclass
class Completion:
    """Raw text answer from a single provider call."""
    provider_name: str          # e.g. "google/gemini-2.5-flash"
    model_id: str
    text: Optional[str]
    latency_ms: int
    input_tokens: int
    output_tokens: int
    cost_usd: float             # estimated cost

    @property
    def cost_str(self) -> str:
        if self.cost_usd < 0.001:
            return f"${self.cost_usd * 1000:.3f}m"   # show in milli-dollars
        return f"${self.cost_usd:.4f}"


# ── Abstract base ──────────────────────────────────────────────────────────────

class CompletionProvider(ABC):
    """Base class all completion providers must implement."""

    name: str           # e.g. "google"
    model_id: str       # e.g. "gemini-2.5-flash"
    cost_per_1k_input_tokens: float
    cost_per_1k_output_tokens: float
    # Extra flat cost when an image is attached
    cost_per_image: float = 0.0

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        image_bytes: Optional[bytes] = None,
        mime_type: Optional[str] = None,
    ) -> Completion:
        """Send SYSTEM_PROMPT + prompt (+ optional inline image) and return the raw text."""
        ...

    @property
    def full_name(self) -> str:
        return f"{self.name}/{self.model_id}"

    def estimate_cost(self, input_tokens: int, output_tokens: int, with_image: bool = False) -> float:
        return (
            (self.cost_per_image if with_image else 0.0)
            + input_tokens / 1000 * self.cost_per_1k_input_tokens
            + output_tokens / 1000 * self.cost_per_1k_output_tokens
        )
