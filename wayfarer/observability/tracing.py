"""
Wayfarer - OpenTelemetry Tracing

Span layout of one routed request:

    POST /api/llm/route        (server span, ObservabilityMiddleware)
      llm.route                (internal span, Router)
        groq.generate          (client span, one per provider attempt)
        gemini.generate
      + event "llm_routing_decision" (ObservabilityRecorder)

W3C ``traceparent`` headers on incoming requests are continued.
Spans go to an OTLP collector when ``OTEL_EXPORTER_OTLP_ENDPOINT`` is
set and the optional exporter package is installed.

Usage:
    from wayfarer.observability.tracing import setup_tracing, trace_provider_call

    setup_tracing(service_name="wayfarer")

    with trace_provider_call("groq", "llama-3.1-70b-versatile", key_slot="primary") as span:
        ...
"""

import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.propagate import extract, inject, set_global_textmap
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.trace import Span, SpanKind
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

# Optional OTLP exporter (requires opentelemetry-exporter-otlp)
try:
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    OTLP_AVAILABLE = True
except ImportError:
    OTLP_AVAILABLE = False


@dataclass
class TraceContext:
    """Hex ids of a span, as they appear in logs and response headers."""
    trace_id: str
    span_id: str
    trace_flags: int = 1

    @classmethod
    def from_span(cls, span: Span) -> "TraceContext":
        ctx = span.get_span_context()
        return cls(
            trace_id=format(ctx.trace_id, "032x"),
            span_id=format(ctx.span_id, "016x"),
            trace_flags=ctx.trace_flags,
        )

    def to_traceparent(self) -> str:
        """W3C traceparent header value."""
        return f"00-{self.trace_id}-{self.span_id}-{self.trace_flags:02x}"


class TracingManager:
    """
    Owns the tracer provider. One per process.

    OpenTelemetry accepts only the first global provider; later managers
    (e.g. one per test) still get a working tracer from it.
    """

    _instance: Optional["TracingManager"] = None

    def __init__(
        self,
        service_name: str = "wayfarer",
        service_version: str = "1.0.0",
        otlp_endpoint: Optional[str] = None,
        console_export: bool = False,
    ):
        self.service_name = service_name

        self.provider = TracerProvider(resource=Resource.create({
            SERVICE_NAME: service_name,
            SERVICE_VERSION: service_version,
            "deployment.environment": os.getenv("MODE", "prod"),
        }))
        if otlp_endpoint and OTLP_AVAILABLE:
            self.provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
        if console_export:
            self.provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

        trace.set_tracer_provider(self.provider)
        set_global_textmap(TraceContextTextMapPropagator())
        self.tracer = trace.get_tracer(service_name, service_version)

    @classmethod
    def get_instance(cls) -> "TracingManager":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls):
        """Reset singleton (for testing)."""
        cls._instance = None

    def extract_context(self, headers: Dict[str, str]) -> Context:
        """Parent context from incoming headers (keys in any case)."""
        return extract({k.lower(): v for k, v in headers.items()})

    def inject_context(self, headers: Dict[str, str]) -> Dict[str, str]:
        inject(headers)
        return headers

    def start_span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Dict[str, Any]] = None,
        context: Optional[Context] = None,
    ):
        return self.tracer.start_as_current_span(name, kind=kind, attributes=attributes, context=context)

    def start_server_span(self, name: str, headers: Dict[str, str], attributes: Optional[Dict[str, Any]] = None):
        """Span for an incoming HTTP request, continuing the caller's trace."""
        return self.start_span(name, SpanKind.SERVER, attributes, self.extract_context(headers))

    def start_client_span(self, name: str, attributes: Optional[Dict[str, Any]] = None):
        """Span for an outgoing provider call."""
        return self.start_span(name, SpanKind.CLIENT, attributes)

    def shutdown(self):
        """Flush pending spans."""
        self.provider.shutdown()


_tracing_instance: Optional[TracingManager] = None


def setup_tracing(
    service_name: str = "wayfarer",
    service_version: str = "1.0.0",
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
) -> TracingManager:
    """Create the process tracing manager. Env vars fill unset arguments."""
    global _tracing_instance

    if otlp_endpoint is None:
        otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if os.getenv("OTEL_CONSOLE_EXPORT", "").lower() == "true":
        console_export = True

    _tracing_instance = TracingManager(
        service_name=service_name,
        service_version=service_version,
        otlp_endpoint=otlp_endpoint,
        console_export=console_export,
    )
    return _tracing_instance


def get_tracing_manager() -> TracingManager:
    global _tracing_instance
    if _tracing_instance is None:
        _tracing_instance = TracingManager.get_instance()
    return _tracing_instance


@contextmanager
def route_span(request_id: str) -> Iterator[Span]:
    """Internal span around one routed request."""
    with get_tracing_manager().start_span(
        "llm.route",
        attributes={"wayfarer.request_id": request_id},
    ) as span:
        yield span


@contextmanager
def trace_provider_call(
    provider: str,
    model: str,
    operation: str = "generate",
    key_slot: Optional[str] = None,
) -> Iterator[Span]:
    """
    Client span for one provider attempt.

    Usage:
        with trace_provider_call("groq", "llama-3.1-70b-versatile", key_slot="primary") as span:
            response = await adapter.generate(request, api_key)
            span.set_attribute("llm.tokens.total", response.usage.total_tokens)
    """
    attributes = {
        "llm.provider": provider,
        "llm.model": model,
        "llm.operation": operation,
    }
    if key_slot:
        attributes["llm.key_slot"] = key_slot

    with get_tracing_manager().start_client_span(f"{provider}.{operation}", attributes) as span:
        yield span
