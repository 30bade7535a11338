"""
Central configuration — reads from .env file.

Every setting is a module attribute so code reading config.X always sees
the current value (tests monkeypatch these directly).

The only required secret is the API key of the selected AI provider.
main.py calls validate() before binding the port so a missing key stops
the process at startup instead of failing on the first request.
"""
import os
from dotenv import load_dotenv

load_dotenv()


class ConfigError(RuntimeError):
    """Raised by validate() when the gateway cannot start."""


# ── AI provider ────────────────────────────────────────────────────────────────
# google     → Gemini via google-genai (default, gemini-2.5-flash)
# openai     → OpenAI chat completions (gpt-4o-mini)
# anthropic  → Anthropic messages API (claude-3-5-haiku)
AI_PROVIDER: str = os.getenv("AI_PROVIDER", "google").strip().lower()

# Leave blank to use the provider's default model
AI_MODEL: str | None = os.getenv("AI_MODEL", "").strip() or None

# GEMINI_API_KEY is accepted as an alias for GOOGLE_API_KEY
GOOGLE_API_KEY: str | None    = os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY")
OPENAI_API_KEY: str | None    = os.getenv("OPENAI_API_KEY")
ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")

# Upper bound on a single provider call; exceeding it is reported as a timeout
PROVIDER_TIMEOUT_SECS: float = float(os.getenv("PROVIDER_TIMEOUT_SECS", "30"))

# ── Web server ─────────────────────────────────────────────────────────────────
HOST: str = os.getenv("HOST", "0.0.0.0")
PORT: int = int(os.getenv("PORT", "5000"))

MAX_UPLOAD_BYTES: int = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
MAX_TEXT_CHARS: int   = int(os.getenv("MAX_TEXT_CHARS", "5000"))

CORS_ORIGIN: str = os.getenv("CORS_ORIGIN", "*")

# Sliding-window limiter per client IP. RATE_MAX_REQUESTS=0 turns it off.
RATE_MAX_REQUESTS: int  = int(os.getenv("RATE_MAX_REQUESTS", "10"))
RATE_WINDOW_SECS: float = float(os.getenv("RATE_WINDOW_SECS", "60"))

# Only enable behind a reverse proxy (nginx) that sets X-Real-IP itself;
# otherwise the limiter keys on the socket peer address.
TRUST_PROXY_HEADERS: bool = os.getenv("TRUST_PROXY_HEADERS", "false").lower() == "true"

# ── Logging ───────────────────────────────────────────────────────────────────
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
DATA_DIR: str  = os.getenv("DATA_DIR", "data")

PROVIDERS = ("google", "openai", "anthropic")


def api_key_for(provider: str) -> str | None:
    """Return the configured API key for a provider name, or None."""
    return {
        "google":    GOOGLE_API_KEY,
        "openai":    OPENAI_API_KEY,
        "anthropic": ANTHROPIC_API_KEY,
    }.get(provider)


def validate() -> None:
    """Raise ConfigError if the selected provider is unknown or has no key."""
    if AI_PROVIDER not in PROVIDERS:
        raise ConfigError(
            f"Unknown AI_PROVIDER '{AI_PROVIDER}'. Choose one of: {', '.join(PROVIDERS)}"
        )
    if not api_key_for(AI_PROVIDER):
        env_name = "GOOGLE_API_KEY (or GEMINI_API_KEY)" if AI_PROVIDER == "google" \
            else f"{AI_PROVIDER.upper()}_API_KEY"
        raise ConfigError(f"{env_name} missing — set it in the environment or .env")
    if PROVIDER_TIMEOUT_SECS <= 0:
        raise ConfigError("PROVIDER_TIMEOUT_SECS must be positive")
