"""
Wayfarer - Main API Server

FastAPI app exposing the LLM routing layer.

Supports three modes:
- MODE=local: Development; stub adapters when no provider keys are set
- MODE=test: Deterministic runs against stub adapters
- MODE=prod: Real providers only

Endpoints:
- POST /api/llm/route
- GET /api/llm/health
- GET /metrics
"""

import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .api import llm_router
from .api.dependencies import get_request_id
from .bootstrap import build_router
from .config import Settings, load_settings
from .core.errors import WayfarerException
from .observability import (
    MetricsCollector,
    ObservabilityMiddleware,
    get_logger,
    get_metrics,
    metrics_endpoint,
    setup_observability,
)
from .routing.router import Router


# ============================================================
# Lifespan management
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup health check and background probes; clean shutdown."""
    settings: Settings = app.state.settings
    router: Router = app.state.router
    logger = get_logger("wayfarer.server")

    logger.info(f"Wayfarer starting in {settings.mode.value.upper()} mode")

    health = await router.registry.run_health_check()
    for provider, ok in health.items():
        logger.info("Provider health check", provider=provider.value, healthy=ok)

    interval = settings.routing.health_check_interval_seconds
    if interval and interval > 0:
        router.registry.start_background_checks(interval)

    logger.info(
        "Wayfarer server ready",
        mode=settings.mode.value,
        available_providers=[p.value for p, ok in health.items() if ok],
    )

    yield

    await router.close()

    tracing = app.state.observability.get("tracing")
    if tracing is not None:
        tracing.shutdown()

    logger.info("Wayfarer server stopped")


# ============================================================
# FastAPI App
# ============================================================

def create_app(
    settings: Optional[Settings] = None,
    router: Optional[Router] = None,
    metrics: Optional[MetricsCollector] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Loaded settings (default: from the environment)
        router: Prebuilt router (default: built from settings)
        metrics: Metrics collector (default: the process-wide one)
    """
    settings = settings or load_settings()
    metrics = metrics or get_metrics()

    observability = setup_observability(
        service_name="wayfarer",
        service_version=__version__,
        otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )

    app = FastAPI(
        title="Wayfarer LLM Router",
        description="Complexity-aware routing across Cerebras, Gemini and Groq with fallback",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json"
    )
    app.state.settings = settings
    app.state.metrics = metrics
    app.state.observability = observability
    app.state.router = router or build_router(settings, metrics=metrics)

    # Order matters - first added = innermost
    app.add_middleware(ObservabilityMiddleware, metrics=metrics)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins or ["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(llm_router)

    @app.get("/metrics")
    async def prometheus_metrics():
        """Prometheus metrics in text exposition format."""
        return metrics_endpoint(metrics.registry)

    _register_error_handlers(app)
    return app


# ============================================================
# Error handlers
# ============================================================

def _register_error_handlers(app: FastAPI):

    @app.exception_handler(WayfarerException)
    async def wayfarer_exception_handler(request: Request, exc: WayfarerException):
        """
        Render canonical errors.

        Only the code and a generic message go out; provider names,
        failure reasons and upstream text stay in logs and traces.
        """
        if not exc.error.request_id:
            exc.error.request_id = get_request_id(request) or ""

        headers = {
            "X-Error-Type": exc.error.type.value,
            "X-Error-Code": exc.error.code,
        }
        if exc.error.retry_after:
            headers["Retry-After"] = str(exc.error.retry_after)

        content = exc.error.to_dict(public=True)
        content["success"] = False
        return JSONResponse(status_code=exc.status_code, content=content, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "error": {
                    "code": "invalid_request",
                    "message": "Request body failed validation",
                    "type": "invalid_request_error",
                    "request_id": get_request_id(request) or "",
                    "retryable": False,
                    "details": [
                        {"loc": list(e.get("loc", [])), "msg": e.get("msg", "")}
                        for e in exc.errors()
                    ],
                },
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle standard HTTP exceptions."""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "error": {
                    "code": "http_error",
                    "message": exc.detail if isinstance(exc.detail, str) else "Request failed",
                    "type": "invalid_request_error" if exc.status_code < 500 else "infra_error",
                    "request_id": get_request_id(request) or "",
                    "retryable": exc.status_code >= 500,
                }
            },
            headers=getattr(exc, "headers", None),
        )


def main():
    """Run with uvicorn: ``wayfarer-server`` or ``python -m wayfarer.server``."""
    import uvicorn

    uvicorn.run(
        create_app(),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_config=None,
    )


if __name__ == "__main__":
    main()
