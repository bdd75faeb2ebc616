"""
Wayfarer - Bootstrap

Builds the routing stack from Settings:
settings -> adapters -> registry -> engine/executor/recorder -> Router
"""

from typing import Dict, Optional

from .adapters import AdapterConfig, BaseAdapter, StubAdapter, get_adapter
from .config import ProviderSettings, Settings
from .core.models import Provider
from .core.pricing import PricingCatalog
from .observability.logging import get_logger
from .observability.metrics import MetricsCollector
from .observability.recorder import ObservabilityRecorder
from .routing import (
    ComplexityClassifier,
    ExecutorConfig,
    FallbackExecutor,
    ProviderRegistry,
    RegistryConfig,
    Router,
    RoutingEngine,
    TierPreferences,
)

logger = get_logger(__name__)


def _adapter_config(settings: ProviderSettings) -> AdapterConfig:
    return AdapterConfig(
        model=settings.model,
        base_url=settings.base_url,
        timeout=settings.timeout,
        max_concurrent=settings.max_concurrent,
        enabled=settings.enabled,
    )


def build_adapters(settings: Settings) -> Dict[Provider, BaseAdapter]:
    """One adapter per provider, each with its own HTTP client; stubs in stub mode."""
    adapters: Dict[Provider, BaseAdapter] = {}
    for provider, provider_settings in settings.providers.items():
        config = _adapter_config(provider_settings)
        if settings.use_stub_adapters:
            adapters[provider] = StubAdapter(provider, config)
        else:
            adapters[provider] = get_adapter(provider, config)
    return adapters


def build_registry(
    settings: Settings,
    adapters: Dict[Provider, BaseAdapter],
    metrics: Optional[MetricsCollector] = None,
    pricing: Optional[PricingCatalog] = None,
) -> ProviderRegistry:
    registry = ProviderRegistry(
        preferences=TierPreferences.from_overrides(settings.routing.preferences),
        config=RegistryConfig(key_policy=settings.routing.key_policy),
        pricing=pricing,
        metrics=metrics,
    )
    for provider, adapter in adapters.items():
        provider_settings = settings.providers[provider]
        registry.register(
            provider,
            adapter,
            provider_settings.api_keys,
            enabled=provider_settings.enabled,
            quota_limit=provider_settings.quota_limit,
            rate_limit_rpm=provider_settings.rate_limit_rpm,
        )
    return registry


def build_router(
    settings: Settings,
    metrics: Optional[MetricsCollector] = None,
    adapters: Optional[Dict[Provider, BaseAdapter]] = None,
) -> Router:
    """Wire the complete routing stack."""
    pricing = PricingCatalog()
    adapters = adapters if adapters is not None else build_adapters(settings)
    registry = build_registry(settings, adapters, metrics=metrics, pricing=pricing)

    routing = settings.routing
    router = Router(
        registry,
        engine=RoutingEngine(registry, ComplexityClassifier(routing.classifier), pricing),
        executor=FallbackExecutor(
            registry,
            ExecutorConfig(
                deadline_seconds=routing.deadline_seconds,
                min_attempt_timeout_seconds=routing.min_attempt_timeout_seconds,
                hedge_delay_seconds=routing.hedge_delay_seconds,
            ),
        ),
        recorder=ObservabilityRecorder(metrics=metrics, pricing=pricing),
    )

    logger.info(
        "Router built",
        mode=settings.mode.value,
        stub_adapters=settings.use_stub_adapters,
        enabled_providers=[p.value for p, s in settings.providers.items() if s.enabled],
        preferences=registry.preferences.to_dict(),
    )
    return router
