"""Coerce string-encoded arrays at declared field paths.

Models sometimes return a nested array as its JSON text:

    {"requirements": {"functional": "[\\"Login\\", \\"Export\\"]"}}

The schema alone cannot say "this value may arrive pre-serialized", so
callers declare those locations up front as dotted paths
("requirements.functional").
"""
import json
from typing import Any, Iterable

from src.shared.log_setup import setup_logging

logger = setup_logging(__name__)


def _coerce_value(value: Any, path: str) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except (ValueError, RecursionError):
            logger.warning(f"Failed to parse JSON string for field {path}, using empty array")
            return []
    if isinstance(value, list):
        return value
    return []


def _walk(node: dict[str, Any], paths: frozenset[str], prefix: str) -> dict[str, Any]:
    result = {}
    for key, value in node.items():
        path = f"{prefix}.{key}" if prefix else key
        if path in paths:
            result[key] = _coerce_value(value, path)
        elif isinstance(value, dict):
            result[key] = _walk(value, paths, path)
        else:
            result[key] = value
    return result


def coerce_array_fields(obj: Any, paths: Iterable[str]) -> Any:
    """Return a copy of obj with the values at `paths` turned into arrays.

    At each declared path:
    - a string is JSON-decoded, or replaced by [] if it does not decode
    - a list is kept
    - anything else becomes []

    Nested objects are walked along every key that is not itself a
    declared path, so several independent fields are coerced in one call.
    Paths that do not exist in obj are ignored. Lists are not descended
    into. The input is never mutated; every dict in the result is new.

    Example:
        >>> coerce_array_fields({"requirements": {"functional": "not json"}},
        ...                     ["requirements.functional"])
        {'requirements': {'functional': []}}
    """
    if not isinstance(obj, dict):
        return obj
    return _walk(obj, frozenset(paths), "")
