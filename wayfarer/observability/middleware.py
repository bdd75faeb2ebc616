"""
Wayfarer - Observability Middleware

Per HTTP request:
- assigns (or accepts) ``X-Request-Id``
- opens the server span, continuing an incoming ``traceparent``
- installs the LogContext the router later enriches with tier/provider
- records HTTP metrics and one access log line

Usage:
    from wayfarer.observability import setup_observability, ObservabilityMiddleware

    setup_observability(service_name="wayfarer")
    app.add_middleware(ObservabilityMiddleware, metrics=metrics)
"""

import os
import time
import uuid
from typing import Any, Dict, Optional

from fastapi import Request, Response
from opentelemetry.trace import Status, StatusCode
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from .logging import LogContext, get_logger, setup_logging
from .metrics import MetricsCollector, get_metrics
from .tracing import TraceContext, get_tracing_manager, setup_tracing

REQUEST_ID_HEADER = "X-Request-Id"
TRACE_ID_HEADER = "X-Trace-Id"


def new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:24]}"


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Request id, server span, log context, HTTP metrics and access log."""

    # Served without span, metrics or access log
    EXCLUDE_PATHS = {"/metrics", "/openapi.json", "/docs", "/redoc"}

    def __init__(
        self,
        app: ASGIApp,
        metrics: Optional[MetricsCollector] = None,
        exclude_paths: Optional[set] = None,
    ):
        super().__init__(app)
        self.metrics = metrics
        self.exclude_paths = exclude_paths or self.EXCLUDE_PATHS
        self.logger = get_logger("wayfarer.http")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if path in self.exclude_paths:
            return await call_next(request)

        metrics = self.metrics or get_metrics()
        request_id = request.headers.get("x-request-id") or new_request_id()
        start = time.perf_counter()

        with get_tracing_manager().start_server_span(
            name=f"{request.method} {path}",
            headers=dict(request.headers),
            attributes={
                "http.method": request.method,
                "http.route": path,
                "wayfarer.request_id": request_id,
            },
        ) as span:
            trace_ctx = TraceContext.from_span(span)
            log_ctx = LogContext(
                request_id=request_id,
                trace_id=trace_ctx.trace_id,
                span_id=trace_ctx.span_id,
                endpoint=path,
            )
            LogContext.set_current(log_ctx)
            request.state.request_id = request_id
            request.state.trace_id = trace_ctx.trace_id

            status_code = 500
            try:
                response = await call_next(request)
                status_code = response.status_code
            except Exception as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, type(e).__name__))
                self.logger.exception("Unhandled error", error_type=type(e).__name__)
                raise
            finally:
                duration = time.perf_counter() - start
                metrics.record_http_request(
                    endpoint=path,
                    method=request.method,
                    status_code=status_code,
                    duration_seconds=duration,
                )
                LogContext.clear()

            span.set_attribute("http.status_code", status_code)
            if log_ctx.tier:
                span.set_attribute("wayfarer.tier", log_ctx.tier)
            if status_code >= 500:
                span.set_status(Status(StatusCode.ERROR, f"HTTP {status_code}"))
            else:
                span.set_status(Status(StatusCode.OK))

            self._log_request(request, status_code, duration * 1000, log_ctx)

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers[TRACE_ID_HEADER] = trace_ctx.trace_id
        return response

    def _log_request(self, request: Request, status_code: int, duration_ms: float, log_ctx: LogContext):
        """Access log line. The context is already cleared, so its fields are passed explicitly."""
        fields = dict(log_ctx.to_dict())
        fields.update(
            method=request.method,
            status_code=status_code,
            duration_ms=round(duration_ms, 2),
        )
        if status_code >= 500:
            self.logger.error("Request completed with server error", **fields)
        elif status_code >= 400:
            self.logger.warning("Request completed with client error", **fields)
        else:
            self.logger.info("Request completed", **fields)


_observability_initialized = False


def setup_observability(
    service_name: str = "wayfarer",
    service_version: str = "1.0.0",
    otlp_endpoint: Optional[str] = None,
    log_level: str = "INFO",
    tracing_enabled: bool = True,
) -> Dict[str, Any]:
    """
    Configure logging and tracing once per process.

    Metrics are not set up here: each app, and each test, brings its
    own MetricsCollector and CollectorRegistry.
    """
    global _observability_initialized

    if otlp_endpoint is None:
        otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")

    setup_logging(
        level=os.getenv("LOG_LEVEL", log_level),
        json_output=os.getenv("LOG_FORMAT", "json").lower() == "json",
    )
    result: Dict[str, Any] = {"logging": True}

    if tracing_enabled:
        result["tracing"] = setup_tracing(
            service_name=service_name,
            service_version=service_version,
            otlp_endpoint=otlp_endpoint,
        )

    if not _observability_initialized:
        get_logger("wayfarer.observability").info(
            "Observability initialized",
            service_name=service_name,
            service_version=service_version,
            tracing_enabled=tracing_enabled,
            otlp_endpoint=otlp_endpoint or "none",
        )
        _observability_initialized = True

    return result
