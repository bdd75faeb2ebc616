"""
Wayfarer - LLM Routing Layer

Routes travel-itinerary completions across Cerebras, Gemini and Groq
by request complexity, with key rotation, health tracking and
deadline-bound fallback.
"""

__version__ = "1.0.0"
__author__ = "Wayfarer"
