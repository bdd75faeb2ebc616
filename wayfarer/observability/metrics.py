"""
Wayfarer - Prometheus Metrics

Counters and histograms behind ``GET /metrics``. Most series are fed by
the ObservabilityRecorder from a finished RoutingDecision; the registry
feeds key rotations, circuit state and probe results as they happen.

    HTTP        wayfarer_http_requests_total{endpoint,method,status}
    routing     wayfarer_routed_requests_total{tier,state,provider}
                wayfarer_fallbacks_total{from_provider,to_provider,reason}
    attempts    wayfarer_provider_attempts_total{provider,outcome,error_kind}
    usage       wayfarer_tokens_total{provider,type}
                wayfarer_cost_usd_total{provider}
    keys        wayfarer_key_rotations_total{provider,from_slot,to_slot,reason}
    health      wayfarer_provider_available{provider}
                wayfarer_circuit_breaker_state{provider}
                wayfarer_health_check_{success,failure}_total{provider}
    recorder    wayfarer_observability_events_dropped_total{sink}

Label values that may be absent (no provider, no error) are reported as
``"none"``.

Tests build ``MetricsCollector(CollectorRegistry())`` so each test
counts from zero.
"""

from enum import Enum
from typing import Optional

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

NO_LABEL = "none"

# Provider calls land between ~100ms (groq) and the routing deadline
LATENCY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 4.0, 8.0, 15.0, 30.0, float("inf"))
PROBE_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)


class CircuitStateValue(Enum):
    """Gauge encoding of a provider's circuit."""
    CLOSED = 0
    HALF_OPEN = 1
    OPEN = 2


def _label(value: Optional[str]) -> str:
    return value or NO_LABEL


class MetricsCollector:
    """Prometheus series of one router process."""

    def __init__(self, registry: CollectorRegistry = REGISTRY, version: str = "1.0.0"):
        self.registry = registry

        build = Info("wayfarer", "Wayfarer LLM router build", registry=registry)
        build.info({"version": version, "service": "wayfarer-llm-router"})

        # HTTP surface
        self.http_requests_total = Counter(
            "wayfarer_http_requests_total",
            "HTTP requests served",
            labelnames=["endpoint", "method", "status"],
            registry=registry,
        )
        self.http_request_duration = Histogram(
            "wayfarer_http_request_duration_seconds",
            "HTTP request latency",
            labelnames=["endpoint", "method"],
            buckets=LATENCY_BUCKETS,
            registry=registry,
        )

        # Routing decisions
        self.routed_requests_total = Counter(
            "wayfarer_routed_requests_total",
            "Routed requests by terminal state",
            labelnames=["tier", "state", "provider"],
            registry=registry,
        )
        self.routing_duration = Histogram(
            "wayfarer_routing_duration_seconds",
            "Time from classification to terminal state",
            labelnames=["tier", "state"],
            buckets=LATENCY_BUCKETS,
            registry=registry,
        )
        self.fallbacks_total = Counter(
            "wayfarer_fallbacks_total",
            "Moves from a failed provider to the next candidate",
            labelnames=["from_provider", "to_provider", "reason"],
            registry=registry,
        )

        # Provider attempts
        self.attempts_total = Counter(
            "wayfarer_provider_attempts_total",
            "Provider attempts by outcome",
            labelnames=["provider", "outcome", "error_kind"],
            registry=registry,
        )
        self.attempt_duration = Histogram(
            "wayfarer_provider_attempt_duration_seconds",
            "Provider attempt latency",
            labelnames=["provider"],
            buckets=LATENCY_BUCKETS,
            registry=registry,
        )
        self.tokens_total = Counter(
            "wayfarer_tokens_total",
            "Tokens billed by providers",
            labelnames=["provider", "type"],
            registry=registry,
        )
        self.cost_total = Counter(
            "wayfarer_cost_usd_total",
            "Estimated spend at static per-token rates",
            labelnames=["provider"],
            registry=registry,
        )

        # Registry state
        self.key_rotations_total = Counter(
            "wayfarer_key_rotations_total",
            "Active key slot changes",
            labelnames=["provider", "from_slot", "to_slot", "reason"],
            registry=registry,
        )
        self.provider_available = Gauge(
            "wayfarer_provider_available",
            "1 when the provider can take requests",
            labelnames=["provider"],
            registry=registry,
        )
        self.circuit_breaker_state = Gauge(
            "wayfarer_circuit_breaker_state",
            "0=closed 1=half-open 2=open",
            labelnames=["provider"],
            registry=registry,
        )
        self.health_check_duration = Histogram(
            "wayfarer_health_check_duration_seconds",
            "Provider probe latency",
            labelnames=["provider"],
            buckets=PROBE_BUCKETS,
            registry=registry,
        )
        self.health_check_success = Counter(
            "wayfarer_health_check_success_total",
            "Successful provider probes",
            labelnames=["provider"],
            registry=registry,
        )
        self.health_check_failure = Counter(
            "wayfarer_health_check_failure_total",
            "Failed provider probes",
            labelnames=["provider"],
            registry=registry,
        )

        self.events_dropped = Counter(
            "wayfarer_observability_events_dropped_total",
            "Routing events a sink failed to accept",
            labelnames=["sink"],
            registry=registry,
        )

    # ---- HTTP -------------------------------------------------------

    def record_http_request(self, endpoint: str, method: str, status_code: int, duration_seconds: float):
        self.http_requests_total.labels(endpoint=endpoint, method=method, status=str(status_code)).inc()
        self.http_request_duration.labels(endpoint=endpoint, method=method).observe(duration_seconds)

    # ---- routing ----------------------------------------------------

    def record_routed_request(self, tier: str, state: str, provider: Optional[str], duration_seconds: float):
        """One call per request, at its terminal state."""
        self.routed_requests_total.labels(tier=tier, state=state, provider=_label(provider)).inc()
        self.routing_duration.labels(tier=tier, state=state).observe(duration_seconds)

    def record_fallback(self, from_provider: str, to_provider: str, reason: str):
        self.fallbacks_total.labels(
            from_provider=from_provider, to_provider=to_provider, reason=reason
        ).inc()

    def record_attempt(self, provider: str, outcome: str, error_kind: Optional[str], duration_seconds: float):
        self.attempts_total.labels(provider=provider, outcome=outcome, error_kind=_label(error_kind)).inc()
        self.attempt_duration.labels(provider=provider).observe(duration_seconds)

    def record_tokens(self, provider: str, input_tokens: int, output_tokens: int):
        self.tokens_total.labels(provider=provider, type="input").inc(input_tokens)
        self.tokens_total.labels(provider=provider, type="output").inc(output_tokens)

    def record_cost(self, provider: str, cost_usd: float):
        self.cost_total.labels(provider=provider).inc(cost_usd)

    # ---- registry ---------------------------------------------------

    def record_key_rotation(self, provider: str, from_slot: str, to_slot: Optional[str], reason: str):
        """``to_slot`` is None when the provider has no usable slot left."""
        self.key_rotations_total.labels(
            provider=provider, from_slot=from_slot, to_slot=_label(to_slot), reason=reason
        ).inc()

    def set_provider_available(self, provider: str, available: bool):
        self.provider_available.labels(provider=provider).set(1 if available else 0)

    def set_circuit_breaker_state(self, provider: str, state: CircuitStateValue):
        self.circuit_breaker_state.labels(provider=provider).set(state.value)

    def record_health_check(self, provider: str, success: bool, duration_seconds: float):
        self.health_check_duration.labels(provider=provider).observe(duration_seconds)
        outcome = self.health_check_success if success else self.health_check_failure
        outcome.labels(provider=provider).inc()

    def record_dropped_event(self, sink: str):
        self.events_dropped.labels(sink=sink).inc()


_metrics_instance: Optional[MetricsCollector] = None


def get_metrics() -> MetricsCollector:
    """Process collector on the default registry, created on first use."""
    global _metrics_instance
    if _metrics_instance is None:
        _metrics_instance = MetricsCollector()
    return _metrics_instance


def metrics_endpoint(registry: Optional[CollectorRegistry] = None) -> Response:
    """Prometheus text exposition of ``registry`` (default: the process collector's)."""
    if registry is None:
        registry = get_metrics().registry
    return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)
