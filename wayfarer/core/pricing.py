"""
Wayfarer - Pricing Catalog

Static per-provider token rates used for cost estimates in routing
traces. Prices are in USD per 1 million tokens.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from .models import Provider, TokenUsage


@dataclass(frozen=True)
class ProviderPrice:
    """Token pricing for one provider."""
    provider: Provider
    input_per_1m: float
    output_per_1m: float

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        """Calculate total cost in USD for token usage."""
        input_cost = (input_tokens / 1_000_000) * self.input_per_1m
        output_cost = (output_tokens / 1_000_000) * self.output_per_1m
        return input_cost + output_cost


DEFAULT_PRICES: Dict[Provider, ProviderPrice] = {
    Provider.CEREBRAS: ProviderPrice(Provider.CEREBRAS, input_per_1m=1.00, output_per_1m=1.00),
    Provider.GEMINI: ProviderPrice(Provider.GEMINI, input_per_1m=0.50, output_per_1m=1.50),
    Provider.GROQ: ProviderPrice(Provider.GROQ, input_per_1m=0.30, output_per_1m=0.60),
}


class PricingCatalog:
    """
    Lookup of provider token rates.

    Defaults can be overridden per provider from configuration.
    """

    def __init__(self, overrides: Optional[Dict[Provider, ProviderPrice]] = None):
        self._prices: Dict[Provider, ProviderPrice] = dict(DEFAULT_PRICES)
        if overrides:
            self._prices.update(overrides)

    def get_price(self, provider: Provider) -> ProviderPrice:
        return self._prices[provider]

    def calculate_cost(self, provider: Provider, usage: TokenUsage) -> float:
        """Cost of actual usage reported by a provider."""
        return self.get_price(provider).calculate_cost(
            usage.prompt_tokens, usage.completion_tokens
        )

    def estimate_cost(self, provider: Provider, tokens: int) -> float:
        """Pre-flight estimate: all tokens charged at the input rate."""
        return self.get_price(provider).calculate_cost(tokens, 0)
