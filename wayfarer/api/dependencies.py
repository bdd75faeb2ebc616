"""
Wayfarer - API Dependencies

Shared dependencies for FastAPI routes.
"""

from typing import Optional

from fastapi import Request

from ..core.errors import ErrorDetails, ErrorType, WayfarerException
from ..routing.router import Router


def get_router(request: Request) -> Router:
    """
    Get the router instance.

    The server stores it on ``app.state`` when the app is created.
    """
    router = getattr(request.app.state, "router", None)
    if router is None:
        raise WayfarerException(
            ErrorDetails(
                code="service_unavailable",
                message="Router not initialized. Server may be starting up.",
                type=ErrorType.INFRA,
                request_id=get_request_id(request) or "",
                retryable=True,
                retry_after=5
            ),
            status_code=503
        )
    return router


def get_request_id(request: Request) -> Optional[str]:
    """Request id assigned by ObservabilityMiddleware, if any."""
    return getattr(request.state, "request_id", None)
