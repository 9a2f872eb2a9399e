from decimal import Decimal

from hivemind.costs import DEFAULT_PRICING, MODEL_PRICING, ModelPricing, TokenUsage, get_pricing, total_cost


def test_model_pricing_calculate_cost() -> None:
    pricing = ModelPricing(input_per_million=Decimal("2.00"), output_per_million=Decimal("4.00"))
    cost = pricing.calculate_cost(1000, 2000)
    assert cost == Decimal("0.010")


def test_get_pricing_matches_model_family() -> None:
    assert get_pricing("claude-3-opus-20240229") is MODEL_PRICING["claude-3-opus"]
    assert get_pricing("GPT-4o-mini") is MODEL_PRICING["gpt-4o"]
    assert get_pricing("some-new-model") is DEFAULT_PRICING


def test_total_cost_sums_usages() -> None:
    usages = [
        TokenUsage(input_tokens=1_000_000, output_tokens=0, model="gemini-pro"),
        TokenUsage(input_tokens=0, output_tokens=1_000_000, model="gemini-pro"),
    ]
    assert usages[0].total_tokens == 1_000_000
    assert total_cost(usages) == Decimal("2.00")
    assert total_cost([]) == Decimal("0")
