"""Token cost table for embedding and LLM providers."""

from __future__ import annotations

import os
from dataclasses import dataclass

FALLBACK_RATE_PER_TOKEN = 0.00001


@dataclass(slots=True, frozen=True)
class ModelPricing:
    """Per-model input/output pricing in USD per 1K tokens."""

    input_per_1k: float
    output_per_1k: float


TOKEN_COSTS: dict[tuple[str, str], ModelPricing] = {
    ("openai", "text-embedding-3-small"): ModelPricing(0.00002, 0.0),
    ("openai", "text-embedding-3-large"): ModelPricing(0.00013, 0.0),
    ("openai", "gpt-4o"): ModelPricing(0.005, 0.015),
    ("openai", "gpt-4o-mini"): ModelPricing(0.00015, 0.0006),
    ("anthropic", "claude-3-haiku-20240307"): ModelPricing(0.00025, 0.00125),
    ("anthropic", "claude-3-sonnet-20240229"): ModelPricing(0.003, 0.015),
    ("anthropic", "claude-3-opus-20240229"): ModelPricing(0.015, 0.075),
}


def calculate_cost(
    provider: str,
    model: str,
    input_tokens: int,
    output_tokens: int = 0,
) -> float:
    """Cost in USD; unknown models use a flat conservative per-token rate."""

    pricing = lookup_pricing(provider=provider, model=model)
    if pricing is None:
        return (input_tokens + output_tokens) * FALLBACK_RATE_PER_TOKEN
    return (input_tokens / 1000) * pricing.input_per_1k + (
        output_tokens / 1000
    ) * pricing.output_per_1k


def lookup_pricing(*, provider: str, model: str) -> ModelPricing | None:
    key = (provider.strip().lower(), model.strip())
    overrides = _parse_pricing_mapping(os.getenv("FEED_PULSE_AI_PRICING", ""))
    for candidate in (key, (key[0], "*"), ("*", "*")):
        if candidate in overrides:
            return overrides[candidate]
    return TOKEN_COSTS.get(key)


def _parse_pricing_mapping(raw: str) -> dict[tuple[str, str], ModelPricing]:
    """Parse ``FEED_PULSE_AI_PRICING`` overrides.

    Format:
    - `provider:model:input_per_1k:output_per_1k`
    - multiple entries separated by `,`
    - supports wildcards in provider/model (`*`)
    """

    parsed: dict[tuple[str, str], ModelPricing] = {}
    if not raw.strip():
        return parsed

    for entry in raw.split(","):
        value = entry.strip()
        if not value:
            continue
        parts = [part.strip() for part in value.split(":")]
        if len(parts) != 4:
            continue
        provider, model, input_price, output_price = parts
        try:
            pricing = ModelPricing(float(input_price), float(output_price))
        except ValueError:
            continue
        parsed[(provider.lower(), model)] = pricing
    return parsed
