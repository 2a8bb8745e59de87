"""Unified OpenRouter API client.

## Centralized LLM Communication

All model calls go through this module so that:
- Retry logic and error handling are consistent
- Rate limits are handled in one place
- Every call is logged with its size and token usage
- Swapping models is a parameter, not a code change

## Library Usage

Uses `requests` for HTTP calls. The retry pattern implements
exponential backoff, which is essential for handling:
- Rate limits (429 errors) from OpenRouter
- Temporary server errors (5xx)
- Network transients

Retries stop here. The structured-output pipeline never retries a
provider failure; it only reacts to malformed output.

## Data Flow

1. Caller (structured generator, analyzers) needs a completion
2. Calls invoke_model() with a prompt, optionally a Pydantic schema
3. Receives CompletionResult(text, usage) or a OpenRouterError subclass

stream_chat_completion() is the streaming counterpart: it yields content
deltas from the server-sent event stream and is never retried, since
chunks already handed to the caller cannot be taken back.
"""

from dataclasses import dataclass, field
import json
import time
from typing import Any, Iterator, Optional, Type

import requests
from pydantic import BaseModel

from src.config import (
    OPENROUTER_API_KEY,
    OPENROUTER_BASE_URL,
    PROVIDER_BACKOFF_BASE,
    PROVIDER_MAX_RETRIES,
    PROVIDER_TIMEOUT,
    STRUCTURED_TEMPERATURE,
    STRUCTURED_MAX_TOKENS,
    TEXT_TEMPERATURE,
    TEXT_MAX_TOKENS,
)
from src.shared.log_setup import setup_logging
from src.shared.schemas import response_format_for
from src.shared.usage import GenerationUsage, usage_from_response

logger = setup_logging(__name__)


class OpenRouterError(Exception):
    """Base exception for OpenRouter API errors."""
    pass


class RateLimitError(OpenRouterError):
    """Raised when rate limit is exceeded after all retries."""
    pass


class APIError(OpenRouterError):
    """Raised when API returns an error response."""
    pass


@dataclass
class CompletionResult:
    """Raw text returned by one model call, with its usage."""
    text: str
    usage: GenerationUsage = field(default_factory=GenerationUsage)


def _retry_delay(response: Optional[requests.Response], attempt: int, backoff_base: float) -> float:
    """Use retry-after header if provided, otherwise exponential backoff."""
    if response is not None:
        retry_after = response.headers.get("retry-after")
        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                pass
    return backoff_base ** (attempt + 1)


def call_chat_completion(
    messages: list[dict[str, str]],
    model: str,
    temperature: float = TEXT_TEMPERATURE,
    max_tokens: int = TEXT_MAX_TOKENS,
    response_format: Optional[dict[str, Any]] = None,
    timeout: int = PROVIDER_TIMEOUT,
    max_retries: int = PROVIDER_MAX_RETRIES,
    backoff_base: float = PROVIDER_BACKOFF_BASE,
) -> CompletionResult:
    """Call OpenRouter chat completion API with retry logic.

    Args:
        messages: List of message dicts with 'role' and 'content' keys.
            Example: [{"role": "user", "content": "Hello"}]
        model: OpenRouter model ID (e.g., "anthropic/claude-3-5-sonnet").
        temperature: Sampling temperature (0.0 = deterministic, 1.0 = creative).
        max_tokens: Maximum tokens in response.
        response_format: Optional OpenRouter response_format payload
            (json_schema mode for structured output).
        timeout: Request timeout in seconds.
        max_retries: Number of retries on failure.
        backoff_base: Backoff multiplier for retries.

    Returns:
        CompletionResult with the assistant's content and call usage.

    Raises:
        OpenRouterError: On API errors after all retries.
        RateLimitError: If rate limited after all retries.
        APIError: On non-retryable error responses.
    """
    if not OPENROUTER_API_KEY:
        raise OpenRouterError("OPENROUTER_API_KEY not set in environment")

    url = f"{OPENROUTER_BASE_URL}/chat/completions"
    headers = {
        "Authorization": f"Bearer {OPENROUTER_API_KEY}",
        "Content-Type": "application/json",
    }

    payload: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
        "usage": {"include": True},
    }

    if response_format is not None:
        payload["response_format"] = response_format

    for attempt in range(max_retries + 1):
        try:
            response = requests.post(
                url, json=payload, headers=headers, timeout=timeout
            )

            if response.status_code == 200:
                result = response.json()

                # Handle error responses that return 200 but no choices
                # (OpenRouter sometimes does this for rate limits or overload)
                if not result.get("choices"):
                    error_msg = (result.get("error") or {}).get("message", str(result))
                    if attempt < max_retries:
                        delay = backoff_base ** (attempt + 1)
                        logger.warning(
                            f"API returned 200 with error: {error_msg}, "
                            f"retry {attempt + 1}/{max_retries} after {delay:.1f}s"
                        )
                        time.sleep(delay)
                        continue
                    raise APIError(f"API error after {max_retries} retries: {error_msg}")

                content = result["choices"][0]["message"].get("content") or ""
                usage = usage_from_response(model, result)

                chars_in = sum(len(m.get("content", "")) for m in messages)
                mode = " (structured)" if response_format is not None else ""
                logger.info(
                    f"[LLM] model={model} chars_in={chars_in} chars_out={len(content)} "
                    f"tokens={usage.total_tokens}{mode}"
                )

                return CompletionResult(text=content, usage=usage)

            # Retryable errors: rate limit or server errors
            if response.status_code >= 500 or response.status_code == 429:
                if attempt < max_retries:
                    delay = _retry_delay(response, attempt, backoff_base)
                    error_type = "Rate limit" if response.status_code == 429 else "Server error"
                    logger.warning(
                        f"{error_type} ({response.status_code}), "
                        f"retry {attempt + 1}/{max_retries} after {delay:.1f}s"
                    )
                    time.sleep(delay)
                    continue
                else:
                    if response.status_code == 429:
                        raise RateLimitError(f"Rate limited after {max_retries} retries")
                    raise APIError(f"Server error {response.status_code} after {max_retries} retries")

            # Non-retryable client errors
            try:
                error_detail = response.json().get("error", {}).get("message", response.text)
            except (ValueError, KeyError, AttributeError):
                error_detail = response.text
            raise APIError(f"API error {response.status_code}: {error_detail}")

        except requests.RequestException as exc:
            if attempt < max_retries:
                delay = backoff_base ** (attempt + 1)
                logger.warning(
                    f"Request failed ({exc}), retry {attempt + 1}/{max_retries} in {delay:.1f}s"
                )
                time.sleep(delay)
                continue
            raise OpenRouterError(f"Request failed after {max_retries} retries: {exc}")

    raise OpenRouterError("Max retries exceeded")


def invoke_model(
    model: str,
    prompt: str,
    temperature: float = STRUCTURED_TEMPERATURE,
    max_tokens: int = STRUCTURED_MAX_TOKENS,
    response_model: Optional[Type[BaseModel]] = None,
) -> CompletionResult:
    """Single-prompt model call, schema-constrained when a model is given.

    This is the provider boundary used by the structured generator. With
    `response_model`, OpenRouter is asked for json_schema output; the
    provider only best-effort constrains it, so the text still has to be
    validated by the caller.

    Args:
        model: OpenRouter model ID.
        prompt: The prompt text, sent as a single user message.
        temperature: Sampling temperature.
        max_tokens: Maximum tokens.
        response_model: Optional Pydantic schema for json_schema mode.

    Returns:
        CompletionResult with raw text and usage.
    """
    response_format = response_format_for(response_model) if response_model is not None else None
    return call_chat_completion(
        messages=[{"role": "user", "content": prompt}],
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
        response_format=response_format,
    )


def call_simple_prompt(
    prompt: str,
    model: str,
    temperature: float = TEXT_TEMPERATURE,
    max_tokens: int = TEXT_MAX_TOKENS,
    **kwargs,
) -> str:
    """Convenience wrapper for plain text generation.

    Example:
        >>> response = call_simple_prompt(
        ...     "Summarize the product context in two sentences: ...",
        ...     model="anthropic/claude-3-5-sonnet",
        ... )
    """
    messages = [{"role": "user", "content": prompt}]
    return call_chat_completion(
        messages=messages,
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
        **kwargs,
    ).text


def _stream_delta(data: str) -> Optional[str]:
    """Content delta of one `data:` payload, raising on in-band errors."""
    try:
        chunk = json.loads(data)
    except ValueError as exc:
        raise APIError(f"Malformed stream chunk: {data[:100]}") from exc

    if chunk.get("error"):
        error = chunk["error"]
        message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
        raise APIError(f"Stream error: {message}")

    choices = chunk.get("choices") or []
    if not choices:
        return None
    return (choices[0].get("delta") or {}).get("content")


def stream_chat_completion(
    messages: list[dict[str, str]],
    model: str,
    temperature: float = TEXT_TEMPERATURE,
    max_tokens: int = TEXT_MAX_TOKENS,
    response_format: Optional[dict[str, Any]] = None,
    timeout: int = PROVIDER_TIMEOUT,
) -> Iterator[str]:
    """Stream a chat completion, yielding content deltas as they arrive.

    Reads OpenRouter's server-sent events: `data: {...}` lines carry the
    deltas, lines starting with ':' are keep-alive comments and
    `data: [DONE]` ends the stream.

    Raises:
        OpenRouterError: Missing API key, or the connection failed.
        RateLimitError: The stream was refused with 429.
        APIError: Any other error status, or an error sent mid-stream.
    """
    if not OPENROUTER_API_KEY:
        raise OpenRouterError("OPENROUTER_API_KEY not set in environment")

    url = f"{OPENROUTER_BASE_URL}/chat/completions"
    headers = {
        "Authorization": f"Bearer {OPENROUTER_API_KEY}",
        "Content-Type": "application/json",
    }

    payload: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
        "stream": True,
    }

    if response_format is not None:
        payload["response_format"] = response_format

    try:
        response = requests.post(url, json=payload, headers=headers, timeout=timeout, stream=True)
    except requests.RequestException as exc:
        raise OpenRouterError(f"Stream request failed: {exc}") from exc

    try:
        if response.status_code == 429:
            raise RateLimitError("Rate limited while opening stream")
        if response.status_code != 200:
            raise APIError(f"API error {response.status_code}: {response.text}")

        chars_out = 0
        for raw_line in response.iter_lines():
            line = raw_line.decode("utf-8") if isinstance(raw_line, bytes) else raw_line
            if not line.startswith("data:"):
                continue
            data = line[len("data:"):].strip()
            if data == "[DONE]":
                break
            delta = _stream_delta(data)
            if delta:
                chars_out += len(delta)
                yield delta

        chars_in = sum(len(m.get("content", "")) for m in messages)
        logger.info(f"[LLM] model={model} chars_in={chars_in} chars_out={chars_out} (stream)")

    except requests.RequestException as exc:
        raise OpenRouterError(f"Stream interrupted: {exc}") from exc
    finally:
        response.close()


def stream_model(
    model: str,
    prompt: str,
    temperature: float = STRUCTURED_TEMPERATURE,
    max_tokens: int = STRUCTURED_MAX_TOKENS,
    response_model: Optional[Type[BaseModel]] = None,
) -> Iterator[str]:
    """Streaming counterpart of invoke_model(); yields text chunks."""
    response_format = response_format_for(response_model) if response_model is not None else None
    return stream_chat_completion(
        messages=[{"role": "user", "content": prompt}],
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
        response_format=response_format,
    )


def stream_text(
    prompt: str,
    model: str,
    temperature: float = TEXT_TEMPERATURE,
    max_tokens: int = TEXT_MAX_TOKENS,
) -> Iterator[str]:
    """Plain text generation, streamed.

    Example:
        >>> for chunk in stream_text("Write a one-line tagline", model="openai/gpt-4o-mini"):
        ...     print(chunk, end="")
    """
    return stream_chat_completion(
        messages=[{"role": "user", "content": prompt}],
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
    )
