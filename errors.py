"""
errors.py — exception taxonomy for the analysis pipeline.

  AnalysisError
    ├── InputError                 → 400, plain {"error": message}
    ├── ProviderError              → 500, fallback response
    └── CompletionFormatError      → 500, fallback response + raw_response
          ├── ExtractionError      no {...} span in the completion
          ├── ParseError           {...} span is not valid JSON
          └── SchemaError          JSON parsed but not an AnalysisResult

Every error knows the short category string that ends up as the first
key_insight of the fallback response.
"""
from __future__ import annotations

from typing import Iterable, Optional


class AnalysisError(Exception):
    """Base class for every failure the gateway knows how to report."""

    category = "Unexpected server error"


class InputError(AnalysisError):
    """Missing or unusable client input (no upload, blank text, wrong type)."""

    category = "Invalid input"


class ProviderError(AnalysisError):
    """
    The AI provider could not produce a completion.

    kind is one of:
      provider        — SDK / network / auth / rate-limit failure
      timeout         — no answer within PROVIDER_TIMEOUT_SECS
      empty_response  — the provider answered with no text
    """

    def __init__(self, message: str, kind: str = "provider", provider_name: str = ""):
        super().__init__(message)
        self.kind = kind
        self.provider_name = provider_name

    @property
    def category(self) -> str:  # type: ignore[override]
        if self.kind == "timeout":
            return "AI provider timeout"
        return "AI provider error"


class CompletionFormatError(AnalysisError):
    """The completion text could not be turned into an AnalysisResult."""

    def __init__(self, message: str, raw_text: Optional[str] = None):
        super().__init__(message)
        self.raw_text = raw_text


class ExtractionError(CompletionFormatError):
    category = "No JSON in AI response"


class ParseError(CompletionFormatError):
    category = "Invalid JSON from AI"


class SchemaError(CompletionFormatError):
    category = "AI response failed validation"

    def __init__(self, fields: Iterable[str], raw_text: Optional[str] = None):
        self.fields = tuple(fields)
        super().__init__("missing or invalid field(s): " + ", ".join(self.fields), raw_text)
