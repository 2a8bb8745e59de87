"""Comma repair for almost-JSON.

Tag rewriting and sloppy model output leave two kinds of damage behind:
fields with no comma between them, and trailing commas before a closer.
Both are fixed by token-adjacency patterns rather than a tokenizer; the
inputs are close enough to JSON that a grammar-based repair would be
overkill for the handful of defects actually observed.

Each rule is a (pattern, replacement, name) triple applied in order.
"""
import re

from src.shared.log_setup import setup_logging

logger = setup_logging(__name__)

# A field key followed by its colon: "name":
_FIELD = r'("[^"\\]*(?:\\.[^"\\]*)*"\s*:)'

MISSING_COMMA_RULES: list[tuple[re.Pattern, str, str]] = [
    # Closing brace/bracket directly followed by a field: } "b": / ] "b":
    (re.compile(r"([}\]])(\s*)" + _FIELD), r"\1,\2\3", "CLOSER_FIELD"),

    # String value followed by a field: "a": "x" "b":
    (re.compile(r'(:\s*"[^"\\]*(?:\\.[^"\\]*)*")(\s*)' + _FIELD), r"\1,\2\3", "STRING_FIELD"),

    # Flat array value followed by a field: "a": [1, 2] "b":
    (re.compile(r"(:\s*\[[^\]]*\])(\s*)" + _FIELD), r"\1,\2\3", "ARRAY_FIELD"),

    # Flat object value followed by a field: "a": {"x": 1} "b":
    (re.compile(r"(:\s*\{[^}]*\})(\s*)" + _FIELD), r"\1,\2\3", "OBJECT_FIELD"),
]

TRAILING_COMMA_PATTERN = re.compile(r",(\s*[}\]])")


def insert_missing_commas(text: str) -> str:
    """Insert a comma wherever a value or closer runs straight into a field."""
    for pattern, replacement, rule_name in MISSING_COMMA_RULES:
        text, count = pattern.subn(replacement, text)
        if count:
            logger.debug(f"[punctuation] {rule_name}: inserted {count} comma(s)")
    return text


def strip_trailing_commas(text: str) -> str:
    """Remove commas immediately before a closing brace or bracket."""
    return TRAILING_COMMA_PATTERN.sub(r"\1", text)


def repair_punctuation(text: str) -> str:
    """Fix missing and trailing commas. Never raises.

    The result may still be invalid JSON; the caller finds out when
    it parses.

    Example:
        >>> repair_punctuation('{"a": [1,2]  "b": 3,}')
        '{"a": [1,2],  "b": 3}'
    """
    return strip_trailing_commas(insert_missing_commas(text))
