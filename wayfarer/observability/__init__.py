"""
Wayfarer - Observability Module

- Prometheus metrics (``/metrics``)
- OpenTelemetry spans: HTTP request, routing, provider attempt
- JSON logs carrying request id, trace id, tier and provider
- One recorded event per routing decision

Usage:
    from wayfarer.observability import setup_observability, get_logger

    setup_observability(service_name="wayfarer")
    logger = get_logger(__name__)
"""

from .metrics import (
    CircuitStateValue,
    MetricsCollector,
    get_metrics,
    metrics_endpoint,
)
from .tracing import (
    TraceContext,
    TracingManager,
    route_span,
    setup_tracing,
    trace_provider_call,
)
from .logging import (
    LogContext,
    StructuredLogger,
    get_logger,
    setup_logging,
)
from .middleware import (
    ObservabilityMiddleware,
    setup_observability,
)
from .recorder import ObservabilityRecorder

__all__ = [
    # Metrics
    "CircuitStateValue",
    "MetricsCollector",
    "get_metrics",
    "metrics_endpoint",
    # Tracing
    "TraceContext",
    "TracingManager",
    "route_span",
    "setup_tracing",
    "trace_provider_call",
    # Logging
    "LogContext",
    "StructuredLogger",
    "get_logger",
    "setup_logging",
    # Wiring
    "ObservabilityMiddleware",
    "setup_observability",
    "ObservabilityRecorder",
]
