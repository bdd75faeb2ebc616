"""
Wayfarer - Pytest Configuration

Configures:
- Integration test markers (skip by default)
- Smoke test handling (skip with SKIP_SMOKE=1)
- Stub providers, a controllable clock and isolated metrics for unit tests
"""

import os
from typing import Dict, Optional

import pytest
from prometheus_client import CollectorRegistry

from wayfarer.adapters import StubAdapter
from wayfarer.core.models import Provider
from wayfarer.observability.metrics import MetricsCollector
from wayfarer.observability.recorder import ObservabilityRecorder
from wayfarer.routing import (
    ExecutorConfig,
    FallbackExecutor,
    ProviderRegistry,
    Router,
    RoutingEngine,
    TierPreferences,
)


# ============================================================
# Environment Configuration
# ============================================================

def _is_truthy(value: Optional[str]) -> bool:
    """Check if environment variable is truthy."""
    if value is None:
        return False
    return value.lower() in ("1", "true", "yes", "on")


RUN_INTEGRATION = _is_truthy(os.getenv("RUN_INTEGRATION"))
SKIP_SMOKE = _is_truthy(os.getenv("SKIP_SMOKE"))


# ============================================================
# Pytest Markers
# ============================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires RUN_INTEGRATION=1)"
    )
    config.addinivalue_line(
        "markers",
        "smoke: mark test as smoke test (skip with SKIP_SMOKE=1)"
    )


def pytest_collection_modifyitems(config, items):
    """
    Modify test collection to handle integration and smoke tests.

    - Integration tests: Skip unless RUN_INTEGRATION=1
    - Smoke tests: Skip if SKIP_SMOKE=1
    """
    skip_integration = pytest.mark.skip(
        reason="Integration test - set RUN_INTEGRATION=1 to run"
    )
    skip_smoke = pytest.mark.skip(
        reason="Smoke test skipped - SKIP_SMOKE=1"
    )

    for item in items:
        if "integration" in item.keywords and not RUN_INTEGRATION:
            item.add_marker(skip_integration)
        if "smoke" in item.keywords and SKIP_SMOKE:
            item.add_marker(skip_smoke)


# ============================================================
# Clock
# ============================================================

class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# ============================================================
# Metrics / recorder
# ============================================================

@pytest.fixture
def fresh_registry():
    """Create a fresh Prometheus registry for each test."""
    return CollectorRegistry()


@pytest.fixture
def metrics(fresh_registry):
    return MetricsCollector(registry=fresh_registry)


@pytest.fixture
def events():
    """Events captured by the recorder's test sink."""
    return []


@pytest.fixture
def recorder(metrics, events):
    return ObservabilityRecorder(metrics=metrics, sinks={"capture": events.append})


# ============================================================
# Stub providers
# ============================================================

@pytest.fixture
def stubs() -> Dict[Provider, StubAdapter]:
    """One scriptable stub adapter per provider."""
    return {provider: StubAdapter(provider) for provider in Provider}


def build_registry(
    stubs: Dict[Provider, StubAdapter],
    metrics: Optional[MetricsCollector] = None,
    clock=None,
    preferences: Optional[TierPreferences] = None,
    keys_per_provider: int = 2,
    **register_kwargs,
) -> ProviderRegistry:
    kwargs = {"clock": clock} if clock is not None else {}
    registry = ProviderRegistry(preferences=preferences, metrics=metrics, **kwargs)
    for provider, adapter in stubs.items():
        keys = [f"{provider.value}-key-{i + 1}" for i in range(keys_per_provider)]
        registry.register(provider, adapter, keys, **register_kwargs)
    return registry


@pytest.fixture
def registry(stubs, metrics):
    return build_registry(stubs, metrics=metrics)


def build_router(
    registry: ProviderRegistry,
    recorder: ObservabilityRecorder,
    deadline_seconds: float = 30.0,
    min_attempt_timeout_seconds: float = 2.0,
    hedge_delay_seconds: Optional[float] = None,
) -> Router:
    executor = FallbackExecutor(
        registry,
        ExecutorConfig(
            deadline_seconds=deadline_seconds,
            min_attempt_timeout_seconds=min_attempt_timeout_seconds,
            hedge_delay_seconds=hedge_delay_seconds,
        ),
    )
    return Router(registry, engine=RoutingEngine(registry), executor=executor, recorder=recorder)


@pytest.fixture
def router(registry, recorder):
    return build_router(registry, recorder)
