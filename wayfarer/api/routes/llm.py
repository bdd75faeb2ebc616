"""
Wayfarer - LLM Routing API

Endpoints for routed completions and provider health.
Terminal routing errors propagate to the server's exception handler,
which renders them without provider names or upstream text.
"""

import time
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from ...core.errors import UnknownProviderError
from ...core.models import Provider
from ...routing.router import Router
from ..dependencies import get_request_id, get_router
from ..models import (
    HealthResponse,
    ProviderHealthInfo,
    RouteRequest,
    RouteResponse,
    RoutingSummary,
)


router = APIRouter(prefix="/api/llm", tags=["llm"])


@router.post("/route", response_model=RouteResponse)
async def route_completion(
    body: RouteRequest,
    request: Request,
    llm_router: Router = Depends(get_router),
):
    """Route one completion request through the provider chain."""
    start = time.perf_counter()
    completion_request = body.to_completion_request(get_request_id(request))

    routed = await llm_router.complete(completion_request)

    processing_time_ms = int((time.perf_counter() - start) * 1000)
    return RouteResponse.from_routed(routed, processing_time_ms)


@router.get("/health", response_model=HealthResponse)
async def provider_health(
    provider: Optional[str] = Query(None, description="Limit the report to one provider"),
    detailed: bool = Query(False, description="Include the full per-provider registry view"),
    llm_router: Router = Depends(get_router),
):
    """
    Per-provider availability plus routing totals.

    200 while at least one reported provider can take traffic, 503
    otherwise. An unknown ``provider`` is a 400.
    """
    start = time.perf_counter()
    status = llm_router.health()
    if provider is not None:
        try:
            wanted = Provider.parse(provider).value
        except ValueError:
            raise UnknownProviderError(provider) from None
        status = {wanted: status[wanted]} if wanted in status else {}

    providers = {name: ProviderHealthInfo.from_status(s) for name, s in status.items()}
    available = [name for name, info in providers.items() if info.is_available]

    if not available:
        overall = "unavailable"
    elif len(available) == len(providers):
        overall = "healthy"
    else:
        overall = "degraded"

    body = HealthResponse(
        success=bool(available),
        status=overall,
        available_providers=available,
        providers=providers,
        routing=RoutingSummary(**llm_router.summary()),
        details=status if detailed else None,
        processing_time_ms=int((time.perf_counter() - start) * 1000),
    )
    return JSONResponse(
        status_code=200 if available else 503,
        content=body.model_dump(),
    )
