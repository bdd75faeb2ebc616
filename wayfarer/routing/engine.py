"""
Wayfarer - Routing Engine

Turns a request into a routing decision: classify, then ask the
registry for the ordered candidate list. Nothing is executed here.
"""

from typing import Optional

from ..core.errors import NoAvailableProviderError
from ..core.models import CompletionRequest, RoutingDecision, RoutingState
from ..core.pricing import PricingCatalog
from ..observability.logging import get_logger
from .classifier import ComplexityClassifier, estimate_tokens
from .registry import ProviderRegistry

logger = get_logger(__name__)


class RoutingEngine:
    """Builds RoutingDecisions from the classifier and the registry."""

    def __init__(
        self,
        registry: ProviderRegistry,
        classifier: Optional[ComplexityClassifier] = None,
        pricing: Optional[PricingCatalog] = None,
    ):
        self.registry = registry
        self.classifier = classifier or ComplexityClassifier()
        self.pricing = pricing or PricingCatalog()

    def route(self, request: CompletionRequest) -> RoutingDecision:
        """
        Classify a request and build its candidate list.

        Raises:
            NoAvailableProviderError: no provider passed the availability
                filter. The error carries the decision, already in the
                ``no_provider_available`` state.
        """
        tier = self.classifier.classify(request)
        decision = RoutingDecision(
            request_id=request.request_id,
            tier=tier,
            estimated_tokens=estimate_tokens(request.text),
        )

        decision.candidates = self.registry.get_candidates(tier)
        decision.state = RoutingState.CANDIDATES_BUILT

        if not decision.candidates:
            decision.finish(RoutingState.NO_PROVIDER_AVAILABLE)
            logger.warning(
                "No provider available",
                request_id=request.request_id,
                tier=tier.value,
            )
            raise NoAvailableProviderError(
                tier=tier.value,
                request_id=request.request_id,
                decision=decision,
            )

        # Pre-flight estimate at the first candidate's input rate
        decision.cost_usd = self.pricing.estimate_cost(decision.candidates[0], decision.estimated_tokens)

        logger.debug(
            "Candidates built",
            request_id=request.request_id,
            tier=tier.value,
            candidates=[p.value for p in decision.candidates],
            estimated_tokens=decision.estimated_tokens,
        )
        return decision
