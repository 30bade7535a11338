"""
analysis.py — the AnalysisResult type and the completion → result pipeline.

A model completion is untrusted free-form text. It may wrap the JSON in
prose, markdown fences or a polite preamble, and nothing guarantees the
JSON matches the shape we asked for. parse_analysis() either returns a
validated AnalysisResult or raises one of:

  ExtractionError  — no {...} span at all
  ParseError       — the span is not valid JSON
  SchemaError      — valid JSON, wrong shape (names every bad field)

All three carry the original completion text as .raw_text.

Known limitation: extraction takes everything from the first "{" to the
last "}". A "}" in trailing prose after the real object widens the span
and turns into a ParseError.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from errors import AnalysisError, ExtractionError, ParseError, SchemaError

logger = logging.getLogger(__name__)


class Verdict(str, Enum):
    GREEN  = "Green"     # recommended
    YELLOW = "Yellow"    # caution / uncertain
    RED    = "Red"       # avoid


STRING_FIELDS = ("product_name", "inferred_intent", "reasoning")


@dataclass
class AnalysisResult:
    """Structured nutrition verdict returned to the client."""
    product_name: str
    inferred_intent: str
    verdict: Verdict
    reasoning: str
    key_insights: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_name":    self.product_name,
            "inferred_intent": self.inferred_intent,
            "verdict":         self.verdict.value,
            "reasoning":       self.reasoning,
            "key_insights":    list(self.key_insights),
        }


# ── Extraction ────────────────────────────────────────────────────────────────

def extract_json(raw: Optional[str]) -> dict[str, Any]:
    """
    Pull the outermost JSON object out of a completion and parse it.
    Raises ExtractionError or ParseError.
    """
    text = raw or ""
    start = text.find("{")
    end   = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        raise ExtractionError("no JSON object found", raw_text=raw)

    candidate = text[start:end + 1]
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ParseError(f"invalid JSON in AI response: {exc}", raw_text=raw) from exc

    # A valid "{...}" span always decodes to a dict
    return data


# ── Validation ────────────────────────────────────────────────────────────────

def validate_result(data: dict[str, Any], raw_text: Optional[str] = None) -> AnalysisResult:
    """
    Check a parsed object against the AnalysisResult contract.
    Collects every offending field before raising a single SchemaError.
    """
    bad: list[str] = []

    for name in STRING_FIELDS:
        value = data.get(name)
        if not isinstance(value, str) or not value.strip():
            bad.append(name)

    verdict_raw = data.get("verdict")
    verdict: Optional[Verdict] = None
    if isinstance(verdict_raw, str):
        try:
            verdict = Verdict(verdict_raw)      # case-sensitive
        except ValueError:
            pass
    if verdict is None:
        bad.append("verdict")

    insights = data.get("key_insights")
    if not isinstance(insights, list) or not all(isinstance(i, str) for i in insights):
        bad.append("key_insights")

    if bad:
        raise SchemaError(bad, raw_text=raw_text)

    if not insights:
        logger.warning("AI response for %r has no key_insights", data["product_name"])

    return AnalysisResult(
        product_name    = data["product_name"],
        inferred_intent = data["inferred_intent"],
        verdict         = verdict,
        reasoning       = data["reasoning"],
        key_insights    = list(insights),
    )


def parse_analysis(raw: Optional[str]) -> AnalysisResult:
    """Completion text → validated AnalysisResult (or a CompletionFormatError)."""
    return validate_result(extract_json(raw), raw_text=raw)


# ── Fallback ──────────────────────────────────────────────────────────────────

def fallback_result(error: BaseException) -> AnalysisResult:
    """
    Renderable stand-in for a failed analysis. Always Yellow: when nothing
    was actually analysed we signal neither "safe" nor "avoid".
    """
    if isinstance(error, AnalysisError):
        category = error.category
    else:
        category = AnalysisError.category
    detail = str(error)
    return AnalysisResult(
        product_name    = "Unknown",
        inferred_intent = "Analysis failed",
        verdict         = Verdict.YELLOW,
        reasoning       = f"{category}: {detail}" if detail else category,
        key_insights    = [category, "Check server logs", "Retry analysis"],
    )
