"""
Wayfarer - Cerebras Provider Adapter

Cerebras inference (Llama 3.1 70B). Preferred for high-complexity
itinerary requests.
"""

from .openai_compat import OpenAICompatibleAdapter
from ..core.models import Provider


class CerebrasAdapter(OpenAICompatibleAdapter):
    """Adapter for the Cerebras chat completions API."""

    provider = Provider.CEREBRAS
    DEFAULT_BASE_URL = "https://api.cerebras.ai/v1"
    DEFAULT_MODEL = "llama3.1-70b"
