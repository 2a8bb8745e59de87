"""Token and cost bookkeeping for model calls.

Every provider call returns its own GenerationUsage; nothing here keeps
state between calls. Callers that want a run-level total collect
UsageEntry records and pass them to summarize_usage().

Pricing is a pure lookup over MODEL_PRICING in src/config.py. A cost
reported by OpenRouter in the response (usage accounting) always wins
over the table.
"""

from dataclasses import dataclass, field
from typing import Any, Literal, Optional

from src.config import MODEL_PRICING

UsageCategory = Literal["analyzer", "section", "orchestrator", "clarification", "other"]

CURRENCY = "USD"


@dataclass(frozen=True)
class ModelPricing:
    """Price per 1M tokens for one model."""
    prompt_per_million: float
    completion_per_million: float


@dataclass
class GenerationUsage:
    """Usage reported for a single model call."""
    model: Optional[str] = None
    provider: Optional[str] = None
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    prompt_cost: Optional[float] = None
    completion_cost: Optional[float] = None
    total_cost: Optional[float] = None
    currency: Optional[str] = None
    raw_usage: dict[str, Any] = field(default_factory=dict)


@dataclass
class UsageEntry:
    """A named usage record, e.g. one analyzer call within a run."""
    name: str
    category: UsageCategory
    usage: GenerationUsage
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class UsageSummary:
    """Aggregated usage across entries. Metrics no entry reported stay None."""
    entries: list[UsageEntry] = field(default_factory=list)
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    prompt_cost: Optional[float] = None
    completion_cost: Optional[float] = None
    total_cost: Optional[float] = None
    currency: Optional[str] = None


def lookup_pricing(model_id: str) -> Optional[ModelPricing]:
    """Return pricing for a model id, or None if the model is not in the table.

    Tolerates OpenRouter variant suffixes such as ":free" or ":beta".
    """
    if not model_id:
        return None
    entry = MODEL_PRICING.get(model_id) or MODEL_PRICING.get(model_id.split(":")[0])
    if entry is None:
        return None
    return ModelPricing(prompt_per_million=entry[0], completion_per_million=entry[1])


def _coerce_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            return None
    return None


def _coerce_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _provider_from_model(model: str) -> Optional[str]:
    if model and "/" in model:
        return model.split("/", 1)[0]
    return None


def usage_from_response(model: str, payload: dict[str, Any]) -> GenerationUsage:
    """Build GenerationUsage from an OpenRouter chat completion payload.

    Args:
        model: Model id the request was sent to.
        payload: Decoded JSON response body.

    Returns:
        GenerationUsage. Token fields are None when the response carries
        no usage block.
    """
    raw = payload.get("usage") or {}
    usage = GenerationUsage(
        model=payload.get("model") or model,
        provider=payload.get("provider") or _provider_from_model(model),
        prompt_tokens=_coerce_int(raw.get("prompt_tokens")),
        completion_tokens=_coerce_int(raw.get("completion_tokens")),
        total_tokens=_coerce_int(raw.get("total_tokens")),
        raw_usage=dict(raw),
    )
    if usage.total_tokens is None and (
        usage.prompt_tokens is not None or usage.completion_tokens is not None
    ):
        usage.total_tokens = (usage.prompt_tokens or 0) + (usage.completion_tokens or 0)

    reported_cost = _coerce_float(raw.get("cost"))
    if reported_cost is not None:
        usage.total_cost = reported_cost
        usage.currency = CURRENCY
        return usage

    pricing = lookup_pricing(model)
    if pricing is None:
        return usage

    if usage.prompt_tokens is not None:
        usage.prompt_cost = usage.prompt_tokens * pricing.prompt_per_million / 1_000_000
    if usage.completion_tokens is not None:
        usage.completion_cost = usage.completion_tokens * pricing.completion_per_million / 1_000_000
    if usage.prompt_cost is not None or usage.completion_cost is not None:
        usage.total_cost = (usage.prompt_cost or 0.0) + (usage.completion_cost or 0.0)
        usage.currency = CURRENCY
    return usage


def _add(total: Optional[float], value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return total
    return (total or 0) + value


def summarize_usage(entries: list[UsageEntry]) -> UsageSummary:
    """Sum token and cost metrics across usage entries.

    Each metric is summed only over entries that report it. When no entry
    reports a total, the total is derived from the prompt and completion
    sums.

    Example:
        >>> summary = summarize_usage([
        ...     UsageEntry("context", "analyzer", GenerationUsage(prompt_tokens=10, completion_tokens=5)),
        ... ])
        >>> summary.total_tokens
        15
    """
    if not entries:
        return UsageSummary()

    summary = UsageSummary(entries=list(entries))

    for entry in entries:
        usage = entry.usage or GenerationUsage()
        summary.prompt_tokens = _add(summary.prompt_tokens, usage.prompt_tokens)
        summary.completion_tokens = _add(summary.completion_tokens, usage.completion_tokens)
        summary.total_tokens = _add(summary.total_tokens, usage.total_tokens)
        summary.prompt_cost = _add(summary.prompt_cost, usage.prompt_cost)
        summary.completion_cost = _add(summary.completion_cost, usage.completion_cost)
        summary.total_cost = _add(summary.total_cost, usage.total_cost)
        if not summary.currency and usage.currency:
            summary.currency = usage.currency

    if summary.total_tokens is None and (
        summary.prompt_tokens is not None or summary.completion_tokens is not None
    ):
        summary.total_tokens = (summary.prompt_tokens or 0) + (summary.completion_tokens or 0)

    if summary.total_cost is None and (
        summary.prompt_cost is not None or summary.completion_cost is not None
    ):
        summary.total_cost = (summary.prompt_cost or 0.0) + (summary.completion_cost or 0.0)

    return summary
