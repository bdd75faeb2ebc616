"""
Wayfarer - Routing Module

Multi-provider LLM routing with:
- Complexity classification into tiers
- Per-tier provider preferences
- Key-slot rotation and circuit breakers per provider
- Deadline-bound fallback execution with optional hedging
"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from .classifier import ClassifierConfig, ComplexityClassifier, estimate_tokens
from .engine import RoutingEngine
from .executor import ExecutorConfig, FallbackExecutor
from .health import LatencyStats, ProviderMetrics, RollingWindow
from .keys import ApiKeySlot, KeyPolicy, KeyRing, KeyRotation
from .preferences import DEFAULT_PREFERENCES, TierPreferences, parse_preference
from .registry import ProviderHealth, ProviderRegistry, RegistryConfig, SlotLease
from .router import Router

__all__ = [
    # Router
    "Router",
    "RoutingEngine",
    "FallbackExecutor",
    "ExecutorConfig",
    # Classification
    "ComplexityClassifier",
    "ClassifierConfig",
    "estimate_tokens",
    # Registry
    "ProviderRegistry",
    "ProviderHealth",
    "RegistryConfig",
    "SlotLease",
    "TierPreferences",
    "DEFAULT_PREFERENCES",
    "parse_preference",
    # Keys
    "KeyRing",
    "ApiKeySlot",
    "KeyPolicy",
    "KeyRotation",
    # Health
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "LatencyStats",
    "ProviderMetrics",
    "RollingWindow",
]
