"""Structured generation with recovery from malformed model output."""

from .extraction import extract_json_text, strip_code_fences
from .tags import normalize_parameter_tags
from .punctuation import repair_punctuation
from .coercion import coerce_array_fields
from .generator import (
    GenerationRequest,
    StructuredResult,
    RepairExhaustedError,
    generate_structured,
    generate_structured_result,
    is_fallback_eligible,
    repair_completion_text,
)
from .streaming import (
    StreamItem,
    generate_structured_with_progress,
    stream_structured,
)
