"""
Wayfarer - Groq Provider Adapter

Groq LPU inference. Fastest and cheapest option, preferred for short
questions.
"""

from .openai_compat import OpenAICompatibleAdapter
from ..core.models import Provider


class GroqAdapter(OpenAICompatibleAdapter):
    """Adapter for Groq's OpenAI-compatible endpoint."""

    provider = Provider.GROQ
    DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"
    DEFAULT_MODEL = "llama-3.1-70b-versatile"
