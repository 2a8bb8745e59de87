# Tests for usage and pricing bookkeeping.

import pytest

from src.shared.usage import (
    GenerationUsage,
    UsageEntry,
    lookup_pricing,
    summarize_usage,
    usage_from_response,
)


class TestLookupPricing:
    def test_known_model(self):
        pricing = lookup_pricing("openai/gpt-4o-mini")
        assert pricing.prompt_per_million == 0.15
        assert pricing.completion_per_million == 0.6

    def test_variant_suffix(self):
        assert lookup_pricing("openai/gpt-4o-mini:free") == lookup_pricing("openai/gpt-4o-mini")

    def test_unknown_model(self):
        assert lookup_pricing("acme/unknown-model") is None
        assert lookup_pricing("") is None


class TestUsageFromResponse:
    def test_cost_from_pricing_table(self):
        payload = {"usage": {"prompt_tokens": 1000, "completion_tokens": 2000}}
        usage = usage_from_response("openai/gpt-4o-mini", payload)
        assert usage.provider == "openai"
        assert usage.total_tokens == 3000
        assert usage.prompt_cost == pytest.approx(0.00015)
        assert usage.completion_cost == pytest.approx(0.0012)
        assert usage.total_cost == pytest.approx(0.00135)
        assert usage.currency == "USD"

    def test_reported_cost_wins(self):
        payload = {"usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15, "cost": 0.42}}
        usage = usage_from_response("openai/gpt-4o-mini", payload)
        assert usage.total_cost == 0.42
        assert usage.prompt_cost is None

    def test_no_usage_block(self):
        usage = usage_from_response("acme/unknown-model", {})
        assert usage.total_tokens is None
        assert usage.total_cost is None
        assert usage.model == "acme/unknown-model"


class TestSummarizeUsage:
    def test_empty(self):
        summary = summarize_usage([])
        assert summary.entries == []
        assert summary.total_tokens is None

    def test_sums_reported_metrics(self):
        entries = [
            UsageEntry("context", "analyzer", GenerationUsage(prompt_tokens=10, completion_tokens=5, total_cost=0.1, currency="USD")),
            UsageEntry("personas", "section", GenerationUsage(prompt_tokens=20, total_cost=0.2)),
        ]
        summary = summarize_usage(entries)
        assert summary.prompt_tokens == 30
        assert summary.completion_tokens == 5
        assert summary.total_tokens == 35
        assert summary.total_cost == pytest.approx(0.3)
        assert summary.currency == "USD"
        assert len(summary.entries) == 2

    def test_reported_totals_not_rederived(self):
        entries = [
            UsageEntry("a", "other", GenerationUsage(prompt_tokens=1, completion_tokens=1, total_tokens=100)),
        ]
        assert summarize_usage(entries).total_tokens == 100

    def test_cost_total_derived_from_parts(self):
        entries = [
            UsageEntry("a", "other", GenerationUsage(prompt_cost=0.25, completion_cost=0.5)),
        ]
        assert summarize_usage(entries).total_cost == pytest.approx(0.75)
