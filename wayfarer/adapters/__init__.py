"""
Wayfarer Adapters Module

Provider-specific adapters that translate between the uniform
completion format and each provider's native API format.
"""

from typing import Optional

import httpx

from .base import AdapterConfig, BaseAdapter, parse_json_payload
from .cerebras_adapter import CerebrasAdapter
from .gemini_adapter import GeminiAdapter
from .groq_adapter import GroqAdapter
from .openai_compat import OpenAICompatibleAdapter
from .stub_adapter import StubAdapter, StubStep
from ..core.models import Provider

__all__ = [
    "AdapterConfig",
    "BaseAdapter",
    "CerebrasAdapter",
    "GeminiAdapter",
    "GroqAdapter",
    "OpenAICompatibleAdapter",
    "StubAdapter",
    "StubStep",
    "get_adapter",
    "parse_json_payload",
]


ADAPTERS = {
    Provider.CEREBRAS: CerebrasAdapter,
    Provider.GEMINI: GeminiAdapter,
    Provider.GROQ: GroqAdapter,
}


def get_adapter(
    provider: Provider,
    config: AdapterConfig,
    client: Optional[httpx.AsyncClient] = None
) -> BaseAdapter:
    """
    Factory function to get the appropriate adapter for a provider.

    Args:
        provider: Provider identity
        config: Adapter configuration (model, base URL, limits)
        client: Optional preconfigured HTTP client

    Returns:
        Configured adapter instance

    Raises:
        ValueError: If provider is not supported
    """
    adapter_class = ADAPTERS.get(provider)
    if not adapter_class:
        raise ValueError(f"Unsupported provider: {provider}")

    return adapter_class(config, client=client)
