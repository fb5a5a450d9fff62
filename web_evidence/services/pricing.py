"""Token and request pricing used for pipeline telemetry."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ModelPricing:
    input: float  # USD per 1M input tokens
    cached: float  # USD per 1M cached input tokens
    output: float  # USD per 1M output tokens


MODEL_PRICING: dict[str, ModelPricing] = {
    "openai/gpt-oss-20b": ModelPricing(input=0.03, cached=0.0, output=0.14),
    "gpt-oss-20b": ModelPricing(input=0.03, cached=0.0, output=0.14),
    "meta-llama/Meta-Llama-3.1-8B-Instruct-Turbo": ModelPricing(input=0.02, cached=0.002, output=0.03),
    "google/gemma-3-4b-it": ModelPricing(input=0.04, cached=0.0, output=0.08),
    "mistralai/Mistral-Small-24B-Instruct-2501": ModelPricing(input=0.05, cached=0.0, output=0.08),
    "gpt-4o-mini": ModelPricing(input=0.6, cached=0.06, output=2.4),
}

# Per-request SERP costs
BRIGHTDATA_SERP_COST_USD = 0.0015
DATAFORSEO_SERP_COST_USD = 0.002
# Reserved for the unlocker fetch path, which is not wired up.
BRIGHTDATA_UNLOCKER_COST_USD = 0.0


def calculate_cost(
    model: str,
    input_tokens: int,
    cached_tokens: int = 0,
    output_tokens: int = 0,
) -> float:
    """Estimate the USD cost of one LLM call. Unknown models cost nothing."""
    pricing = MODEL_PRICING.get(model)
    if pricing is None:
        return 0.0
    uncached = max(input_tokens - cached_tokens, 0)
    return (
        uncached * pricing.input
        + cached_tokens * pricing.cached
        + output_tokens * pricing.output
    ) / 1_000_000


def serp_request_cost(provider: str) -> float:
    if provider == "dataforseo":
        return DATAFORSEO_SERP_COST_USD
    return BRIGHTDATA_SERP_COST_USD
