# Shared utilities for the structured-output pipeline

from .log_setup import setup_logging, preview

# OpenRouter API client
from .openrouter_client import (
    call_chat_completion,
    call_simple_prompt,
    invoke_model,
    stream_chat_completion,
    stream_model,
    stream_text,
    CompletionResult,
    OpenRouterError,
    RateLimitError,
    APIError,
)

from .schemas import ValidationOutcome, validate_candidate, validate_or_raise, response_format_for

from .usage import (
    GenerationUsage,
    ModelPricing,
    UsageEntry,
    UsageSummary,
    lookup_pricing,
    summarize_usage,
    usage_from_response,
)
