"""Rewrite pseudo-XML parameter tags into JSON fields.

Some models, when asked for JSON, fall back into their tool-call syntax
and emit hybrids such as:

    {"title": "Checkout", <parameter name="goals">["fast", "cheap"]</parameter>}

normalize_parameter_tags() rewrites the observed variants with ordered
regex passes, most specific first. Order matters: a looser later pass
must never claim text a stricter earlier pass would have rewritten.

    1. CLOSED          <parameter name="F">V</parameter>
    2. UNCLOSED_ARRAY  , <parameter name="F">[...]
    3. UNCLOSED_OBJECT , <parameter name="F">{...}
    4. LEADING_ARRAY   {... <parameter name="F">[...]   (start of text, no comma)
    5. SCALAR          <parameter name="F">value
    6. SELF_CLOSING    <parameter name="F"/>

Whatever '<...>' fragments survive all six passes are dropped.
"""
import json
import re
from typing import Callable, Optional

from src.shared.log_setup import setup_logging
from src.structured.json_probe import parses_as_json

logger = setup_logging(__name__)

# Opening tag. '/' is excluded from the attribute run so self-closing
# tags are left for the SELF_CLOSING pass.
_OPEN_TAG = r'<parameter\s+name="([^"]+)"[^>/]*>'

# Closed tag whose value does not run into another opening tag
CLOSED_TAG_PATTERN = re.compile(
    _OPEN_TAG + r"((?:(?!<parameter\b).)*?)</parameter>", re.DOTALL
)
UNCLOSED_ARRAY_PATTERN = re.compile(r",\s*" + _OPEN_TAG + r"\s*(?=\[)")
UNCLOSED_OBJECT_PATTERN = re.compile(r",\s*" + _OPEN_TAG + r"\s*(?=\{)")
LEADING_ARRAY_PATTERN = re.compile(r"^(\s*\{[^}<]*?)\s*,?\s*" + _OPEN_TAG + r"\s*(?=\[)")
SCALAR_TAG_PATTERN = re.compile(
    _OPEN_TAG + r'[ \t]*("(?:[^"\\\n]|\\.)*"|[^<\s,}\]]*)'
)
SELF_CLOSING_PATTERN = re.compile(r'<parameter\s+name="([^"]+)"\s*/>')
TAG_ARTIFACT_PATTERN = re.compile(r"<[^<>]+>")

_CLOSERS = {"[": "]", "{": "}"}


def _field(name: str) -> str:
    return json.dumps(name)


def _as_json_value(value: str) -> str:
    """Value as-is if it is valid JSON, otherwise as a JSON string."""
    stripped = value.strip()
    if stripped and parses_as_json(stripped):
        return stripped
    return json.dumps(stripped)


def _balanced_end(text: str, start: int) -> Optional[int]:
    """Index just past the bracket matching text[start], or None if unbalanced.

    Brackets inside JSON strings are ignored.
    """
    stack = []
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        char = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append(_CLOSERS[char])
        elif char in "]}":
            if not stack or stack.pop() != char:
                return None
            if not stack:
                return i + 1
    return None


def _value_end(text: str, start: int) -> Optional[int]:
    """End of a bracketed value starting at text[start].

    Prefers the balanced close; falls back to the first matching closer
    so a damaged value is still consumed (and then replaced by empty).
    """
    end = _balanced_end(text, start)
    if end is not None:
        return end
    closer = _CLOSERS[text[start]]
    index = text.find(closer, start)
    return index + 1 if index != -1 else None


def _rewrite_unclosed(
    text: str,
    pattern: re.Pattern,
    empty: str,
    render: Callable[[re.Match, str], str],
    count: int = 0,
) -> str:
    """Rewrite an opening tag followed by a bracketed value.

    `render` receives the tag match and the JSON text to emit (the value
    itself if it parses, `empty` otherwise). Tags whose value never
    closes are left in place for the later passes.
    """
    out = []
    pos = 0
    rewritten = 0
    while count == 0 or rewritten < count:
        match = pattern.search(text, pos)
        if match is None:
            break
        value_start = match.end()
        value_end = _value_end(text, value_start)
        if value_end is None:
            out.append(text[pos:match.end()])
            pos = match.end()
            continue

        value = text[value_start:value_end].strip()
        if not parses_as_json(value):
            logger.debug(f"Unparseable tag value for {match.group(match.re.groups)!r}, using {empty}")
            value = empty

        out.append(text[pos:match.start()])
        out.append(render(match, value))
        pos = value_end
        rewritten += 1

    out.append(text[pos:])
    return "".join(out)


# ============================================================================
# PASSES
# ============================================================================

def rewrite_closed_tags(text: str) -> str:
    """<parameter name="F">V</parameter> -> "F": V (V quoted if not JSON)."""
    return CLOSED_TAG_PATTERN.sub(
        lambda m: f"{_field(m.group(1))}: {_as_json_value(m.group(2))}", text
    )


def rewrite_unclosed_array_tags(text: str) -> str:
    """, <parameter name="F">[...] -> , "F": [...] (or [] if unparseable)."""
    return _rewrite_unclosed(
        text, UNCLOSED_ARRAY_PATTERN, "[]",
        lambda m, value: f", {_field(m.group(1))}: {value}",
    )


def rewrite_unclosed_object_tags(text: str) -> str:
    """, <parameter name="F">{...} -> , "F": {...} (or {} if unparseable)."""
    return _rewrite_unclosed(
        text, UNCLOSED_OBJECT_PATTERN, "{}",
        lambda m, value: f", {_field(m.group(1))}: {value}",
    )


def rewrite_leading_array_tag(text: str) -> str:
    """Array tag in the first object of the text, with no preceding comma."""
    def render(match: re.Match, value: str) -> str:
        prefix = match.group(1)
        separator = "" if prefix.rstrip().endswith("{") else ", "
        return f"{prefix}{separator}{_field(match.group(2))}: {value}"

    return _rewrite_unclosed(text, LEADING_ARRAY_PATTERN, "[]", render, count=1)


def rewrite_scalar_tags(text: str) -> str:
    """<parameter name="F">value -> "F": value, value ending at , } ] or whitespace."""
    return SCALAR_TAG_PATTERN.sub(
        lambda m: f"{_field(m.group(1))}: {_as_json_value(m.group(2))}", text
    )


def rewrite_self_closing_tags(text: str) -> str:
    """<parameter name="F"/> -> "F": null."""
    return SELF_CLOSING_PATTERN.sub(lambda m: f"{_field(m.group(1))}: null", text)


def strip_tag_artifacts(text: str) -> str:
    """Drop any '<...>' fragment left over after the rewrite passes."""
    return TAG_ARTIFACT_PATTERN.sub("", text)


# Pass order is significant, see module docstring
TAG_PASSES: list[tuple[Callable[[str], str], str]] = [
    (rewrite_closed_tags, "CLOSED"),
    (rewrite_unclosed_array_tags, "UNCLOSED_ARRAY"),
    (rewrite_unclosed_object_tags, "UNCLOSED_OBJECT"),
    (rewrite_leading_array_tag, "LEADING_ARRAY"),
    (rewrite_scalar_tags, "SCALAR"),
    (rewrite_self_closing_tags, "SELF_CLOSING"),
    (strip_tag_artifacts, "ARTIFACTS"),
]


def normalize_parameter_tags(text: str) -> str:
    """Rewrite every parameter-tag variant into plain JSON fields. Never raises.

    Example:
        >>> normalize_parameter_tags('{"a": 1, <parameter name="b">[1,2,3]</parameter>}')
        '{"a": 1, "b": [1,2,3]}'
    """
    for rewrite, pass_name in TAG_PASSES:
        rewritten = rewrite(text)
        if rewritten != text:
            logger.debug(f"[tags] {pass_name} pass rewrote {len(text)} -> {len(rewritten)} chars")
        text = rewritten
    return text
