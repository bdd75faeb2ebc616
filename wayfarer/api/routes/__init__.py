"""
Wayfarer - API Routes

Route modules for different API endpoints.
"""

from .llm import router as llm_router

__all__ = [
    "llm_router",
]
