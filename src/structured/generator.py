"""Schema-validated generation with malformed-output recovery.

## What This Module Does

generate_structured() asks the model for output matching a Pydantic
schema and returns a validated instance. Most calls end after the first
request. When the output fails validation, the model is asked once more
for plain text with a JSON-only instruction, and the text is repaired
before being validated again:

    extract_json_text -> normalize_parameter_tags -> repair_punctuation
        -> json.loads -> coerce_array_fields -> validate

## Key Design Decisions

- Fallback only for malformed output. Provider failures (network, auth,
  rate limit) propagate immediately; a second model call would only
  double the latency and cost of an error that will happen again.
- The caller always sees the original validation error when recovery
  fails, chained to the reason recovery failed. It is the most
  informative signal regardless of which stage gave up.
- Every return is schema-valid. Field coercion may default a value to
  [], but the result still has to pass validation.
- Repair stages are string -> string and stop as soon as the candidate
  parses, so already-valid text is never mutated.
"""

from dataclasses import dataclass, field
import json
from typing import Callable, Generic, Optional, Type, TypeVar

from json_repair import repair_json
from pydantic import BaseModel, ValidationError as PydanticValidationError

from src.config import (
    FALLBACK_ERROR_PATTERNS,
    STRUCTURED_LENIENT_JSON,
    STRUCTURED_MAX_TOKENS,
    STRUCTURED_TEMPERATURE,
)
from src.prompts import build_fallback_prompt
from src.shared.log_setup import preview, setup_logging
from src.shared.openrouter_client import CompletionResult, OpenRouterError, invoke_model
from src.shared.schemas import validate_candidate
from src.shared.usage import GenerationUsage
from src.structured.coercion import coerce_array_fields
from src.structured.extraction import extract_json_text
from src.structured.json_probe import parses_as_json
from src.structured.punctuation import repair_punctuation
from src.structured.tags import normalize_parameter_tags

logger = setup_logging(__name__)

T = TypeVar("T", bound=BaseModel)

# invoke(model, prompt, temperature=..., max_tokens=..., response_model=None)
Invoker = Callable[..., CompletionResult]


class RepairExhaustedError(Exception):
    """Every fallback stage ran and the output is still unusable.

    Never reaches callers of generate_structured(); it is attached as the
    __cause__ of the original validation error.
    """
    pass


@dataclass
class GenerationRequest(Generic[T]):
    """One structured generation call."""
    model: str
    schema: Type[T]
    prompt: str
    temperature: float = STRUCTURED_TEMPERATURE
    max_tokens: int = STRUCTURED_MAX_TOKENS
    # Dotted paths whose value may arrive as a JSON string, e.g. "requirements.functional"
    array_field_paths: Optional[list[str]] = None
    lenient_json: bool = STRUCTURED_LENIENT_JSON


@dataclass
class StructuredResult(Generic[T]):
    """Validated value plus the usage of every model call made for it."""
    value: T
    usage: list[GenerationUsage] = field(default_factory=list)
    used_fallback: bool = False


REPAIR_STAGES: list[tuple[Callable[[str], str], str]] = [
    (extract_json_text, "extract"),
    (normalize_parameter_tags, "tags"),
    (repair_punctuation, "punctuation"),
]


def is_fallback_eligible(error: BaseException) -> bool:
    """Decide whether a failed first attempt looks like malformed output.

    Provider errors are never eligible. Pydantic validation errors and
    JSON decode errors always are. Anything else is eligible only if its
    message contains one of FALLBACK_ERROR_PATTERNS; unclassified errors
    get no fallback.
    """
    if isinstance(error, OpenRouterError):
        return False
    if isinstance(error, (PydanticValidationError, json.JSONDecodeError)):
        return True
    message = str(error)
    return any(pattern in message for pattern in FALLBACK_ERROR_PATTERNS)


def repair_completion_text(raw: str) -> str:
    """Run the text repair stages in order, stopping once the text parses."""
    candidate = raw
    for stage, stage_name in REPAIR_STAGES:
        if parses_as_json(candidate):
            break
        candidate = stage(candidate)
        logger.debug(f"[structured] after {stage_name}: {preview(candidate)}")
    return candidate


def _decode(text: str, lenient: bool):
    try:
        return json.loads(text)
    except (ValueError, RecursionError) as exc:
        if lenient:
            # Closes truncated objects/arrays the regex stages cannot
            repaired = repair_json(text, return_objects=True)
            if isinstance(repaired, (dict, list)) and repaired:
                logger.warning(
                    f"[structured] Closed malformed JSON with json_repair ({len(text)} chars)"
                )
                return repaired
        raise RepairExhaustedError(f"Repaired text is not valid JSON: {exc}") from exc


def _generate_direct(request: GenerationRequest[T], invoke: Invoker, usage: list[GenerationUsage]) -> T:
    completion = invoke(
        request.model,
        request.prompt,
        temperature=request.temperature,
        max_tokens=request.max_tokens,
        response_model=request.schema,
    )
    usage.append(completion.usage)
    return request.schema.model_validate_json(completion.text)


def _generate_fallback(request: GenerationRequest[T], invoke: Invoker, usage: list[GenerationUsage]) -> T:
    completion = invoke(
        request.model,
        build_fallback_prompt(request.prompt),
        temperature=request.temperature,
        max_tokens=request.max_tokens,
    )
    usage.append(completion.usage)
    logger.debug(f"[structured] fallback raw: {preview(completion.text)}")

    repaired = repair_completion_text(completion.text)
    data = _decode(repaired, request.lenient_json)

    if request.array_field_paths:
        data = coerce_array_fields(data, request.array_field_paths)

    outcome = validate_candidate(request.schema, data)
    if not outcome.ok:
        raise RepairExhaustedError(
            f"Repaired output failed validation: {'; '.join(outcome.violations)}"
        )
    return outcome.value


def generate_structured_result(
    request: GenerationRequest[T],
    invoke: Optional[Invoker] = None,
) -> StructuredResult[T]:
    """Generate a schema-validated object, recovering from malformed output.

    Args:
        request: Model, schema, prompt and generation options.
        invoke: Provider call; defaults to invoke_model (OpenRouter).

    Returns:
        StructuredResult with the validated instance, the usage of each
        model call (one or two), and whether the fallback was needed.

    Raises:
        OpenRouterError: The first model call failed. Never retried here.
        PydanticValidationError: The first output was invalid and recovery
            failed. This is the original error, with the recovery failure
            as its __cause__.
    """
    invoke = invoke or invoke_model
    usage: list[GenerationUsage] = []
    schema_name = request.schema.__name__

    try:
        value = _generate_direct(request, invoke, usage)
    except Exception as error:
        if not is_fallback_eligible(error):
            raise

        logger.warning(
            f"[structured] Schema validation failed for {schema_name}, "
            f"attempting fallback: {preview(str(error))}"
        )
        try:
            value = _generate_fallback(request, invoke, usage)
        except Exception as fallback_error:
            logger.error(f"[structured] Fallback failed for {schema_name}: {fallback_error}")
            raise error from fallback_error

        logger.info(f"[structured] Fallback recovered a valid {schema_name}")
        return StructuredResult(value=value, usage=usage, used_fallback=True)

    return StructuredResult(value=value, usage=usage)


def generate_structured(
    model: str,
    schema: Type[T],
    prompt: str,
    *,
    temperature: float = STRUCTURED_TEMPERATURE,
    max_tokens: int = STRUCTURED_MAX_TOKENS,
    array_field_paths: Optional[list[str]] = None,
    invoke: Optional[Invoker] = None,
) -> T:
    """Generate an instance of `schema` from `prompt`.

    Example:
        >>> class Persona(BaseModel):
        ...     name: str
        ...     summary: str
        >>> class PersonaSet(BaseModel):
        ...     personas: list[Persona]
        >>> result = generate_structured(
        ...     model="anthropic/claude-3-5-sonnet",
        ...     schema=PersonaSet,
        ...     prompt="Draft two personas for an expense tracking app as JSON.",
        ... )
    """
    request = GenerationRequest(
        model=model,
        schema=schema,
        prompt=prompt,
        temperature=temperature,
        max_tokens=max_tokens,
        array_field_paths=array_field_paths,
    )
    return generate_structured_result(request, invoke=invoke).value
