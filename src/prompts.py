"""LLM prompt fragments for the structured-output pipeline.

Contains the instruction appended to a prompt when structured generation
falls back to plain text generation.
"""


# =============================================================================
# STRUCTURED OUTPUT FALLBACK
# =============================================================================

# Appended after a blank line to the caller's original prompt.
# Targets the hybrid XML-tag/JSON output some models emit in tool-call mode.
FALLBACK_JSON_ONLY_INSTRUCTION = (
    "CRITICAL: Return ONLY valid JSON. No XML tags, parameter names, or additional text."
)


def build_fallback_prompt(prompt: str) -> str:
    """Append the JSON-only instruction to a prompt for the text fallback."""
    return f"{prompt}\n\n{FALLBACK_JSON_ONLY_INSTRUCTION}"
