"""
Wayfarer - Routing Decision Recorder

Emits exactly one structured event per routed request, whatever its
terminal state. Sinks:
- "log": one JSON log line
- "span": an event on the current OpenTelemetry span
- "metrics": Prometheus counters and histograms
- any injected callable taking the event dict

Recording is fire-and-forget: a failing sink never affects the request.
Its error is swallowed and counted in ``dropped_events``.
"""

from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Tuple

from opentelemetry import trace

from ..core.models import Provider, RoutingDecision, RoutingState, TokenUsage
from ..core.pricing import PricingCatalog
from .logging import StructuredLogger, get_logger
from .metrics import MetricsCollector

EventSink = Callable[[Dict[str, Any]], None]

EVENT_NAME = "llm_routing_decision"


class ObservabilityRecorder:
    """
    Records completed routing decisions.

    Example:
        recorder = ObservabilityRecorder(metrics=MetricsCollector(CollectorRegistry()))
        recorder.add_sink("audit", events.append)
        recorder.record(decision)
    """

    def __init__(
        self,
        metrics: Optional[MetricsCollector] = None,
        pricing: Optional[PricingCatalog] = None,
        logger: Optional[StructuredLogger] = None,
        sinks: Optional[Dict[str, EventSink]] = None,
        span_events: bool = True,
    ):
        self.metrics = metrics
        self.pricing = pricing or PricingCatalog()
        self.logger = logger or get_logger("wayfarer.routing.events")
        self._sinks: List[Tuple[str, EventSink]] = [("log", self._log_sink)]
        if span_events:
            self._sinks.append(("span", self._span_sink))
        if metrics is not None:
            self._sinks.append(("metrics", self._metrics_sink))
        for name, sink in (sinks or {}).items():
            self._sinks.append((name, sink))

        self._lock = Lock()
        self.recorded_events = 0
        self.dropped_events = 0
        self._succeeded = 0
        self._fallbacks = 0
        self._latency_total_ms = 0

    def add_sink(self, name: str, sink: EventSink):
        self._sinks.append((name, sink))

    def estimate_cost(self, decision: RoutingDecision) -> float:
        """tokens x static per-provider rate, over every attempt that reported usage."""
        total = 0.0
        for attempt in decision.attempts:
            if attempt.usage:
                total += self.pricing.calculate_cost(attempt.provider, attempt.usage)
        return total

    def build_event(self, decision: RoutingDecision) -> Dict[str, Any]:
        event = decision.to_dict()
        event["event"] = EVENT_NAME
        event["failure_reasons"] = decision.failure_reasons
        return event

    def record(self, decision: RoutingDecision) -> None:
        """Emit one event for a terminal decision. Never raises."""
        try:
            decision.cost_usd = self.estimate_cost(decision)
            event = self.build_event(decision)
        except Exception:
            self._drop("build")
            return

        with self._lock:
            self.recorded_events += 1
            self._latency_total_ms += decision.total_latency_ms
            if decision.state == RoutingState.SUCCEEDED:
                self._succeeded += 1
                if _fell_back(decision):
                    self._fallbacks += 1

        for name, sink in self._sinks:
            try:
                sink(event)
            except Exception:
                self._drop(name)

    def summary(self) -> Dict[str, Any]:
        """Aggregate view over every recorded decision."""
        with self._lock:
            total = self.recorded_events
            succeeded = self._succeeded
            fallbacks = self._fallbacks
            latency_total_ms = self._latency_total_ms
        return {
            "total_requests": total,
            "successful_requests": succeeded,
            "success_rate": round(succeeded / total, 4) if total else 0.0,
            "avg_response_time_ms": round(latency_total_ms / total, 2) if total else 0.0,
            "fallback_rate": round(fallbacks / total, 4) if total else 0.0,
        }

    def _drop(self, sink: str):
        with self._lock:
            self.dropped_events += 1
        if self.metrics is None:
            return
        try:
            self.metrics.record_dropped_event(sink)
        except Exception:
            # best effort
            pass

    # ============================================================
    # Built-in sinks
    # ============================================================

    def _log_sink(self, event: Dict[str, Any]):
        fields = {k: v for k, v in event.items() if k != "event"}
        if event["state"] == RoutingState.SUCCEEDED.value:
            self.logger.info(EVENT_NAME, **fields)
        else:
            self.logger.warning(EVENT_NAME, **fields)

    def _span_sink(self, event: Dict[str, Any]):
        span = trace.get_current_span()
        if not span.is_recording():
            return
        span.add_event(
            EVENT_NAME,
            attributes={
                "wayfarer.request_id": event["request_id"],
                "wayfarer.tier": event["tier"],
                "wayfarer.state": event["state"],
                "wayfarer.provider_used": event["provider_used"] or "none",
                "wayfarer.candidates": event["candidates"],
                "wayfarer.fallback_chain": event["fallback_chain"],
                "wayfarer.failure_reasons": event["failure_reasons"],
                "wayfarer.total_latency_ms": event["total_latency_ms"],
                "wayfarer.total_tokens": event["usage"]["total_tokens"],
                "wayfarer.cost_usd": event["cost_usd"],
            },
        )

    def _metrics_sink(self, event: Dict[str, Any]):
        metrics = self.metrics

        metrics.record_routed_request(
            tier=event["tier"],
            state=event["state"],
            provider=event["provider_used"],
            duration_seconds=event["total_latency_ms"] / 1000,
        )

        for attempt in event["attempts"]:
            provider = attempt["provider"]
            metrics.record_attempt(
                provider=provider,
                outcome=attempt["outcome"],
                error_kind=attempt.get("error_kind"),
                duration_seconds=attempt["latency_ms"] / 1000,
            )
            usage = attempt.get("usage")
            if usage:
                metrics.record_tokens(
                    provider=provider,
                    input_tokens=usage["prompt_tokens"],
                    output_tokens=usage["completion_tokens"],
                )
                metrics.record_cost(
                    provider=provider,
                    cost_usd=self.pricing.calculate_cost(
                        Provider(provider),
                        TokenUsage(**usage),
                    ),
                )

        sequential = [a for a in event["attempts"] if not a.get("hedged")]
        for previous, current in zip(sequential, sequential[1:]):
            metrics.record_fallback(
                from_provider=previous["provider"],
                to_provider=current["provider"],
                reason=previous.get("error_kind", "unknown"),
            )


def _fell_back(decision: RoutingDecision) -> bool:
    """Served by a provider other than the first candidate."""
    return bool(decision.candidates) and decision.provider_used != decision.candidates[0]
