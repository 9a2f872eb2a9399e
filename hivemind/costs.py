"""
Token usage and per-model cost estimation.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal


@dataclass
class ModelPricing:
    """Pricing per million tokens."""

    input_per_million: Decimal
    output_per_million: Decimal

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> Decimal:
        input_cost = (Decimal(input_tokens) / Decimal(1_000_000)) * self.input_per_million
        output_cost = (Decimal(output_tokens) / Decimal(1_000_000)) * self.output_per_million
        return input_cost + output_cost


MODEL_PRICING: dict[str, ModelPricing] = {
    "gpt-4-turbo": ModelPricing(
        input_per_million=Decimal("10.00"),
        output_per_million=Decimal("30.00"),
    ),
    "gpt-4o": ModelPricing(
        input_per_million=Decimal("2.50"),
        output_per_million=Decimal("10.00"),
    ),
    "claude-3-opus": ModelPricing(
        input_per_million=Decimal("15.00"),
        output_per_million=Decimal("75.00"),
    ),
    "claude-3-5-sonnet": ModelPricing(
        input_per_million=Decimal("3.00"),
        output_per_million=Decimal("15.00"),
    ),
    "gemini-pro": ModelPricing(
        input_per_million=Decimal("0.50"),
        output_per_million=Decimal("1.50"),
    ),
}

DEFAULT_PRICING = ModelPricing(
    input_per_million=Decimal("5.00"),
    output_per_million=Decimal("15.00"),
)


def get_pricing(model: str) -> ModelPricing:
    model_lower = model.lower()
    for key, pricing in MODEL_PRICING.items():
        if key in model_lower:
            return pricing
    return DEFAULT_PRICING


@dataclass
class TokenUsage:
    """Token usage from an API call."""

    input_tokens: int
    output_tokens: int
    model: str

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def cost(self) -> Decimal:
        return get_pricing(self.model).calculate_cost(self.input_tokens, self.output_tokens)


def total_cost(usages: Iterable[TokenUsage]) -> Decimal:
    return sum((usage.cost for usage in usages), Decimal("0"))
