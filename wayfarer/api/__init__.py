"""
Wayfarer - API Layer

HTTP surface of the routing service:
- POST /api/llm/route: routed completion
- GET /api/llm/health: per-provider availability
"""

from .models import (
    HealthResponse,
    ProviderHealthInfo,
    RouteMetadata,
    RouteOptions,
    RouteRequest,
    RouteResponse,
    UsageInfo,
)
from .routes import llm_router
from .dependencies import get_request_id, get_router

__all__ = [
    # Request models
    "RouteRequest",
    "RouteOptions",
    # Response models
    "RouteResponse",
    "RouteMetadata",
    "UsageInfo",
    "HealthResponse",
    "ProviderHealthInfo",
    # Routers
    "llm_router",
    # Dependencies
    "get_router",
    "get_request_id",
]
