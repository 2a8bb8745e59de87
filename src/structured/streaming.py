"""Streaming structured generation with partial-object progress.

stream_structured() reads the completion as it arrives. Each time the
text received so far decodes to a new, non-empty object it yields a
"partial" StreamItem; once the stream ends and the full text validates
against the schema it yields a single "complete" item with the
validated instance.

Partial objects are previews: json_repair closes the brackets and
strings still open in the prefix, and nothing is validated until the
end.

When streaming fails, or the streamed text does not validate, the call
falls back to generate_structured() (which has its own repair fallback)
and yields an empty partial followed by the complete result. If that
fails too, the streaming error is raised with the fallback failure as
its __cause__.
"""

from dataclasses import dataclass
from typing import Any, Callable, Iterator, Literal, Optional, Type, TypeVar

from json_repair import repair_json
from pydantic import BaseModel

from src.config import STRUCTURED_MAX_TOKENS, STRUCTURED_TEMPERATURE
from src.shared.log_setup import preview, setup_logging
from src.shared.openrouter_client import stream_model
from src.structured.generator import Invoker, generate_structured

logger = setup_logging(__name__)

T = TypeVar("T", bound=BaseModel)

StreamKind = Literal["partial", "complete"]

# on_progress(value, kind): value is a dict for "partial", the instance for "complete"
ProgressCallback = Callable[[Any, StreamKind], None]

# stream(model, prompt, temperature=..., max_tokens=..., response_model=None) -> chunks
Streamer = Callable[..., Iterator[str]]


@dataclass
class StreamItem:
    """One update from stream_structured()."""
    kind: StreamKind
    value: Any


def _partial_object(text: str) -> Optional[dict[str, Any]]:
    """Best-effort decode of an unfinished JSON object, or None."""
    start = text.find("{")
    if start == -1:
        return None
    try:
        value = repair_json(text[start:], return_objects=True)
    except (ValueError, RecursionError):
        return None
    if isinstance(value, dict) and value:
        return value
    return None


def stream_structured(
    model: str,
    schema: Type[T],
    prompt: str,
    *,
    temperature: float = STRUCTURED_TEMPERATURE,
    max_tokens: int = STRUCTURED_MAX_TOKENS,
    array_field_paths: Optional[list[str]] = None,
    on_progress: Optional[ProgressCallback] = None,
    stream: Optional[Streamer] = None,
    invoke: Optional[Invoker] = None,
) -> Iterator[StreamItem]:
    """Stream a schema-validated object, yielding partial previews on the way.

    Args:
        model: OpenRouter model ID.
        schema: Pydantic model the final object must validate against.
        prompt: The prompt text.
        temperature: Sampling temperature.
        max_tokens: Maximum tokens.
        array_field_paths: Passed to generate_structured() on fallback.
        on_progress: Called with every partial object and with the
            final instance.
        stream: Streaming provider call; defaults to stream_model (OpenRouter).
        invoke: Provider call for the fallback; defaults to invoke_model.

    Yields:
        StreamItem("partial", dict) zero or more times, then exactly one
        StreamItem("complete", instance).

    Raises:
        Exception: The streaming error, when the fallback also failed.
    """
    stream = stream or stream_model
    schema_name = schema.__name__

    try:
        text = ""
        last_partial = None
        chunks = stream(
            model,
            prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            response_model=schema,
        )
        for chunk in chunks:
            text += chunk
            partial = _partial_object(text)
            if partial is None or partial == last_partial:
                continue
            last_partial = partial
            if on_progress:
                on_progress(partial, "partial")
            yield StreamItem("partial", partial)

        final = schema.model_validate_json(text)

    except Exception as error:
        logger.warning(
            f"[structured] Streaming failed for {schema_name}, "
            f"falling back to non-streaming generation: {preview(str(error))}"
        )
        try:
            result = generate_structured(
                model,
                schema,
                prompt,
                temperature=temperature,
                max_tokens=max_tokens,
                array_field_paths=array_field_paths,
                invoke=invoke,
            )
        except Exception as fallback_error:
            logger.error(f"[structured] Streaming fallback failed for {schema_name}: {fallback_error}")
            raise error from fallback_error

        yield StreamItem("partial", {})
        if on_progress:
            on_progress(result, "complete")
        yield StreamItem("complete", result)
        return

    logger.info(f"[structured] Streamed a valid {schema_name} ({len(text)} chars)")
    if on_progress:
        on_progress(final, "complete")
    yield StreamItem("complete", final)


def generate_structured_with_progress(
    model: str,
    schema: Type[T],
    prompt: str,
    *,
    temperature: float = STRUCTURED_TEMPERATURE,
    max_tokens: int = STRUCTURED_MAX_TOKENS,
    array_field_paths: Optional[list[str]] = None,
    on_progress: Optional[ProgressCallback] = None,
    stream: Optional[Streamer] = None,
    invoke: Optional[Invoker] = None,
) -> T:
    """Consume stream_structured() and return the final instance.

    For callers that want progress callbacks but only need the result.

    Example:
        >>> personas = generate_structured_with_progress(
        ...     "anthropic/claude-3-5-sonnet",
        ...     PersonaSet,
        ...     "Draft two personas for an expense tracking app as JSON.",
        ...     on_progress=lambda value, kind: print(kind, value),
        ... )
    """
    final = None
    for item in stream_structured(
        model,
        schema,
        prompt,
        temperature=temperature,
        max_tokens=max_tokens,
        array_field_paths=array_field_paths,
        on_progress=on_progress,
        stream=stream,
        invoke=invoke,
    ):
        if item.kind == "complete":
            final = item.value

    if final is None:
        raise RuntimeError("Stream completed without returning final object")
    return final
