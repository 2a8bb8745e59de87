"""Central configuration for the structured-output pipeline.

Contains:
- OpenRouter API settings (via .env)
- Structured and plain-text generation defaults
- Transport retry settings
- Fallback error classification patterns
- Model pricing table for usage/cost bookkeeping
"""
from pathlib import Path

from dotenv import load_dotenv
import os


# Load environment variables from the .env file (in src/ directory)
load_dotenv(Path(__file__).parent / ".env")


# ============================================================================
# OPENROUTER API
# ============================================================================

OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
OPENROUTER_BASE_URL = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")

# Transport policy: retries live in the client, never in the repair pipeline
PROVIDER_TIMEOUT = int(os.getenv("PROVIDER_TIMEOUT", "60"))
PROVIDER_MAX_RETRIES = int(os.getenv("PROVIDER_MAX_RETRIES", "3"))
PROVIDER_BACKOFF_BASE = float(os.getenv("PROVIDER_BACKOFF_BASE", "1.5"))


# ============================================================================
# GENERATION DEFAULTS
# ============================================================================

# Structured generation (analyzers, section writers)
STRUCTURED_TEMPERATURE = 0.3
STRUCTURED_MAX_TOKENS = 8000

# Plain text generation
TEXT_TEMPERATURE = 0.7
TEXT_MAX_TOKENS = 2000

# Close truncated JSON with json_repair when the regex repairs are not enough.
# Off by default: the fallback then fails exactly when the repaired text
# does not parse.
STRUCTURED_LENIENT_JSON = os.getenv("STRUCTURED_LENIENT_JSON", "false").lower() in ("1", "true", "yes")


# ============================================================================
# FALLBACK CLASSIFICATION
# ============================================================================

# Substrings of an error message that mark a malformed-output failure.
# Best effort: provider errors never match regardless of message content,
# and anything unmatched propagates without a second model call.
FALLBACK_ERROR_PATTERNS: tuple[str, ...] = (
    "validation",
    "Expected array",
    "Required",
    "Invalid",
    "parse",
)


# ============================================================================
# LOGGING
# ============================================================================

# Characters of raw/candidate text shown in debug log lines
LOG_PREVIEW_CHARS = 200


# ============================================================================
# MODEL PRICING
# ============================================================================

# USD per 1M tokens: (prompt, completion).
# Only used when the provider does not report cost itself.
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "anthropic/claude-3-5-sonnet": (3.0, 15.0),
    "anthropic/claude-3-7-sonnet": (3.0, 15.0),
    "anthropic/claude-sonnet-4": (3.0, 15.0),
    "anthropic/claude-haiku-4.5": (1.0, 5.0),
    "openai/gpt-4o": (2.5, 10.0),
    "openai/gpt-4o-mini": (0.15, 0.6),
    "openai/gpt-5-mini": (0.25, 2.0),
    "google/gemini-2.0-flash-001": (0.1, 0.4),
    "deepseek/deepseek-chat": (0.27, 1.1),
    "deepseek/deepseek-v3.2": (0.27, 0.4),
}
