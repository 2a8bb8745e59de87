"""Pull the JSON payload out of a raw completion.

Models asked for JSON often wrap it in markdown fences or surround it
with prose ("Here is the JSON: ..."). extract_json_text() trims that
wrapping. Every step after the initial parse check is lossy, so text
that already parses is returned untouched.
"""
import re

from src.structured.json_probe import parses_as_json

# Leading fence with optional language tag, and trailing fence
_OPENING_FENCE = re.compile(r"^```(?:json|JSON)?[ \t]*\n?")
_CLOSING_FENCE = re.compile(r"\n?[ \t]*```\s*$")

_ROOT_START = re.compile(r"[{\[]")


def strip_code_fences(text: str) -> str:
    """Remove a leading and trailing triple-backtick fence, if present."""
    stripped = text.strip()
    stripped = _OPENING_FENCE.sub("", stripped, count=1)
    stripped = _CLOSING_FENCE.sub("", stripped, count=1)
    return stripped


def extract_json_text(raw: str) -> str:
    """Best-effort JSON substring of a raw completion. Never raises.

    Steps:
    1. Return raw unchanged if it already parses
    2. Strip code fences
    3. Drop everything before the first '{' or '['
    4. Drop everything after the last '}' (object root) or ']' (array root)

    Text with no '{' or '[' at all comes back fence-stripped but otherwise
    as is; the caller's parse attempt then fails.

    Example:
        >>> extract_json_text('Here you go:\\n```json\\n{"a": 1}\\n```')
        '{"a": 1}'
    """
    if parses_as_json(raw):
        return raw

    text = strip_code_fences(raw)

    start = _ROOT_START.search(text)
    if start is None:
        return text
    text = text[start.start():]

    closer = "]" if text.startswith("[") else "}"
    end = text.rfind(closer)
    if end != -1:
        text = text[:end + 1]

    return text
