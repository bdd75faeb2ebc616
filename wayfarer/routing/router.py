"""
Wayfarer - Router Service

Single entry point for callers that need an LLM completion:
classify -> build candidates -> execute with fallback -> record.

Exactly one routing event is recorded per call, on success and on
every failure path.
"""

import time
from typing import Any, Dict, Optional

from ..core.errors import RoutingError
from ..core.models import CompletionRequest, RoutedCompletion
from ..observability.logging import LogContext, get_logger
from ..observability.recorder import ObservabilityRecorder
from ..observability.tracing import route_span
from .engine import RoutingEngine
from .executor import FallbackExecutor
from .registry import ProviderRegistry

logger = get_logger(__name__)


class Router:
    """
    Routing facade used by the HTTP layer.

    Example:
        router = Router(registry, engine, executor, recorder)
        routed = await router.complete(CompletionRequest(prompt="3 days in Kyoto"))
        routed.response.text, routed.decision.provider_used
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        engine: Optional[RoutingEngine] = None,
        executor: Optional[FallbackExecutor] = None,
        recorder: Optional[ObservabilityRecorder] = None,
        deadline_seconds: Optional[float] = None,
    ):
        self.registry = registry
        self.engine = engine or RoutingEngine(registry)
        self.executor = executor or FallbackExecutor(registry)
        self.recorder = recorder or ObservabilityRecorder()
        self.deadline_seconds = deadline_seconds

    async def complete(self, request: CompletionRequest) -> RoutedCompletion:
        """
        Route a completion request.

        Raises:
            NoAvailableProviderError, AllProvidersExhaustedError,
            DeadlineExceededError: all carry the recorded decision
        """
        start = time.perf_counter()
        decision = None
        with route_span(request.request_id) as span:
            try:
                decision = self.engine.route(request)
                span.set_attribute("wayfarer.tier", decision.tier.value)
                self._annotate_context(tier=decision.tier.value)
                response = await self.executor.execute(decision, request, self.deadline_seconds)
            except RoutingError as e:
                decision = e.decision or decision
                span.set_attribute("wayfarer.error_code", e.error.code)
                raise
            finally:
                if decision is not None:
                    self.recorder.record(decision)
            span.set_attribute("wayfarer.provider_used", response.provider.value)

        self._annotate_context(provider=response.provider.value)
        logger.info(
            "Request routed",
            request_id=request.request_id,
            tier=decision.tier.value,
            provider=response.provider.value,
            attempts=len(decision.attempts),
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return RoutedCompletion(response=response, decision=decision)

    def health(self) -> Dict[str, Any]:
        """Per-provider health snapshot keyed by provider name."""
        return self.registry.get_status()

    def summary(self) -> Dict[str, Any]:
        """Routing totals: requests, success rate, mean latency, fallback rate."""
        return self.recorder.summary()

    async def close(self):
        await self.registry.stop_background_checks()
        for provider in self.registry.providers:
            await self.registry.get_adapter(provider).close()

    @staticmethod
    def _annotate_context(**fields):
        ctx = LogContext.get_current()
        if ctx is not None:
            ctx.update(**fields)
