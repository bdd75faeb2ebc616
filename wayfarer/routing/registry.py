"""
Wayfarer - Provider Registry

Single writer of per-provider health, quota and key-slot state.

    is_available := is_enabled and is_healthy and has_capacity

- is_enabled: switched on in configuration and the adapter is usable
- is_healthy: the provider's circuit breaker is not open
- has_capacity: an active key slot exists, the per-minute request window
  is not full and the adapter has a free concurrency slot

Only transient and malformed-response outcomes count against health.
Quota and auth outcomes act on key slots (and therefore capacity).

Every provider has its own lock; no lock spans providers.
Registry operations never fail the caller.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from threading import Lock
from typing import TYPE_CHECKING, Callable, Deque, Dict, List, Optional, Sequence

from ..core.errors import classify_http_error
from ..core.models import AttemptRecord, ComplexityTier, ErrorKind, KeySlotRole, Provider
from ..core.pricing import PricingCatalog
from ..observability.logging import get_logger
from ..observability.metrics import CircuitStateValue, MetricsCollector
from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from .health import ProviderMetrics, RollingWindow
from .keys import ApiKeySlot, KeyPolicy, KeyRing, KeyRotation
from .preferences import TierPreferences

if TYPE_CHECKING:
    from ..adapters.base import BaseAdapter

logger = get_logger(__name__)


@dataclass
class RegistryConfig:
    """Registry-wide settings."""
    key_policy: KeyPolicy = field(default_factory=KeyPolicy)
    circuit: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)

    # Length of the request-rate window
    rate_window_seconds: float = 60.0

    # Upper bound for one health probe
    probe_timeout_seconds: float = 5.0


@dataclass
class SlotLease:
    """The key slot handed to the executor for one attempt."""
    provider: Provider
    role: KeySlotRole
    api_key: str = field(repr=False)


@dataclass
class ProviderHealth:
    """Mutable state of one provider. Guarded by ``lock``."""
    provider: Provider
    adapter: "BaseAdapter"
    keys: KeyRing
    breaker: CircuitBreaker
    is_enabled: bool = True
    rate_limit_rpm: Optional[int] = None
    last_health_check: Optional[float] = None
    last_probe_ok: Optional[bool] = None
    metrics: ProviderMetrics = field(default_factory=ProviderMetrics)
    window: RollingWindow = field(default_factory=RollingWindow)
    request_times: Deque[float] = field(default_factory=deque)
    lock: Lock = field(default_factory=Lock, repr=False)

    @property
    def is_healthy(self) -> bool:
        return self.breaker.is_available


class ProviderRegistry:
    """
    In-memory health store for all providers.

    The public operations are the whole contract; an implementation
    backed by an external store could replace this one.

    Example:
        registry = ProviderRegistry()
        registry.register(Provider.GROQ, GroqAdapter(config), ["gsk-1", "gsk-2"])
        candidates = registry.get_candidates(ComplexityTier.LOW)
    """

    def __init__(
        self,
        preferences: Optional[TierPreferences] = None,
        config: Optional[RegistryConfig] = None,
        pricing: Optional[PricingCatalog] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.preferences = preferences or TierPreferences()
        self.config = config or RegistryConfig()
        self.pricing = pricing or PricingCatalog()
        self.metrics = metrics
        self._clock = clock
        self._providers: Dict[Provider, ProviderHealth] = {}
        self._background_task: Optional[asyncio.Task] = None

    # ============================================================
    # Setup
    # ============================================================

    def register(
        self,
        provider: Provider,
        adapter: "BaseAdapter",
        api_keys: Sequence[str],
        enabled: bool = True,
        quota_limit: Optional[int] = None,
        rate_limit_rpm: Optional[int] = None,
    ) -> ProviderHealth:
        """Register a provider with its adapter and ordered API keys."""
        health = ProviderHealth(
            provider=provider,
            adapter=adapter,
            keys=KeyRing(provider, api_keys, quota_limit=quota_limit, policy=self.config.key_policy),
            breaker=CircuitBreaker(provider.value, self.config.circuit, clock=self._clock),
            is_enabled=enabled,
            rate_limit_rpm=rate_limit_rpm,
        )
        self._providers[provider] = health
        logger.info(
            "Provider registered",
            provider=provider.value,
            enabled=enabled,
            key_slots=len(health.keys),
        )
        return health

    @property
    def providers(self) -> List[Provider]:
        return list(self._providers)

    def get_adapter(self, provider: Provider) -> Optional["BaseAdapter"]:
        health = self._providers.get(provider)
        return health.adapter if health else None

    def get_health(self, provider: Provider) -> Optional[ProviderHealth]:
        return self._providers.get(provider)

    def set_enabled(self, provider: Provider, enabled: bool):
        health = self._providers.get(provider)
        if health is None:
            return
        with health.lock:
            health.is_enabled = enabled

    # ============================================================
    # Availability
    # ============================================================

    def _prune_requests(self, health: ProviderHealth, now: float):
        cutoff = now - self.config.rate_window_seconds
        while health.request_times and health.request_times[0] <= cutoff:
            health.request_times.popleft()

    def _rate_window_full(self, health: ProviderHealth, now: float) -> bool:
        if not health.rate_limit_rpm:
            return False
        self._prune_requests(health, now)
        return len(health.request_times) >= health.rate_limit_rpm

    def _refresh(self, health: ProviderHealth, now: float):
        """Lazy self-heal: release key slots whose reset time has passed (must hold lock)."""
        if health.keys.restore(now):
            logger.info(
                "Provider capacity restored",
                provider=health.provider.value,
                key_slot=health.keys.active.role.value,
            )

    def _has_capacity(self, health: ProviderHealth, now: float) -> bool:
        if health.keys.active is None:
            return False
        if self._rate_window_full(health, now):
            return False
        return health.adapter.has_capacity()

    def _is_available(self, health: ProviderHealth, now: float) -> bool:
        if not health.is_enabled or not health.adapter.is_available():
            return False
        return health.is_healthy and self._has_capacity(health, now)

    def is_available(self, provider: Provider) -> bool:
        health = self._providers.get(provider)
        if health is None:
            return False
        with health.lock:
            now = self._clock()
            self._refresh(health, now)
            return self._is_available(health, now)

    def get_candidates(self, tier: ComplexityTier) -> List[Provider]:
        """
        Available providers for a tier, in preference order.

        Ties in preference rank are broken by rolling average latency,
        then by provider name.
        """
        available = []
        latencies: Dict[Provider, int] = {}

        for provider, health in self._providers.items():
            try:
                with health.lock:
                    now = self._clock()
                    self._refresh(health, now)
                    ok = self._is_available(health, now)
                    latencies[provider] = health.window.avg_latency_ms
            except Exception:
                logger.exception("Availability check failed", provider=provider.value)
                ok = False

            if self.metrics is not None:
                self.metrics.set_provider_available(provider.value, ok)
            if ok:
                available.append(provider)

        return self.preferences.order(tier, available, lambda p: latencies[p])

    def acquire_slot(self, provider: Provider) -> Optional[SlotLease]:
        """
        Lease the active key slot for one attempt.

        Counts the attempt against the per-minute request window. Returns
        None when the provider has no usable slot or its window is full.
        """
        health = self._providers.get(provider)
        if health is None:
            return None

        with health.lock:
            now = self._clock()
            self._refresh(health, now)
            slot = health.keys.active
            if slot is None or self._rate_window_full(health, now):
                return None
            health.request_times.append(now)
            return SlotLease(provider, slot.role, slot.api_key)

    # ============================================================
    # Outcomes
    # ============================================================

    def record_outcome(
        self,
        provider: Provider,
        slot_role: Optional[KeySlotRole],
        outcome: AttemptRecord,
        retry_after: Optional[float] = None,
    ):
        """
        Apply one attempt outcome.

        Updates aggregate metrics, the rolling window, the key slot (quota,
        rotation) and, for transient or malformed failures, the circuit
        breaker. Never raises.
        """
        health = self._providers.get(provider)
        if health is None:
            return

        try:
            rotation = self._apply_outcome(health, slot_role, outcome, retry_after)
        except Exception:
            logger.exception("Failed to record outcome", provider=provider.value)
            return

        if rotation is not None:
            self._report_rotation(rotation)

        if self.metrics is not None:
            self.metrics.set_circuit_breaker_state(
                provider.value, _circuit_gauge(health.breaker.state)
            )

    def _apply_outcome(
        self,
        health: ProviderHealth,
        slot_role: Optional[KeySlotRole],
        outcome: AttemptRecord,
        retry_after: Optional[float],
    ) -> Optional[KeyRotation]:
        with health.lock:
            now = self._clock()
            stats = health.metrics
            stats.total_requests += 1

            if outcome.succeeded:
                stats.successful_requests += 1
                stats.last_success_at = now
                health.breaker.record_success()
            else:
                stats.failed_requests += 1
                stats.last_failure_at = now
                stats.last_error = outcome.reason
                if outcome.error_kind in (ErrorKind.TRANSIENT, ErrorKind.MALFORMED_RESPONSE):
                    health.breaker.record_failure()

            if outcome.usage:
                stats.tokens_used += outcome.usage.total_tokens
                stats.total_cost_usd += self.pricing.calculate_cost(health.provider, outcome.usage)

            # Slot-less attempts never reached the provider
            if slot_role is not None:
                health.window.add(outcome.latency_ms, outcome.succeeded)

            return health.keys.record(
                slot_role,
                outcome.succeeded,
                outcome.error_kind,
                outcome.latency_ms,
                now,
                retry_after=retry_after,
            )

    def _report_rotation(self, rotation: KeyRotation):
        if rotation.to_role is None:
            logger.warning(
                "Provider out of key capacity",
                provider=rotation.provider.value,
                from_slot=rotation.from_role.value,
                reason=rotation.reason,
            )
        else:
            logger.info(
                "Key slot rotated",
                provider=rotation.provider.value,
                from_slot=rotation.from_role.value,
                to_slot=rotation.to_role.value,
                reason=rotation.reason,
            )
        if self.metrics is not None:
            self.metrics.record_key_rotation(
                rotation.provider.value,
                rotation.from_role.value,
                rotation.to_role.value if rotation.to_role else None,
                rotation.reason,
            )

    # ============================================================
    # Health checks
    # ============================================================

    async def run_health_check(self) -> Dict[Provider, bool]:
        """
        Restore reset slots and probe every enabled provider concurrently.

        Run at startup and periodically. Never raises; a failed probe
        keeps the provider's circuit open.
        """
        providers = list(self._providers)
        outcomes = await asyncio.gather(
            *(self._check_provider(provider) for provider in providers),
            return_exceptions=True,
        )
        results: Dict[Provider, bool] = {}
        for provider, outcome in zip(providers, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Health check failed",
                    provider=provider.value,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
                results[provider] = False
            else:
                results[provider] = outcome
        return results

    async def _check_provider(self, provider: Provider) -> bool:
        health = self._providers[provider]

        with health.lock:
            now = self._clock()
            self._refresh(health, now)
            health.last_health_check = now
            if not health.is_enabled or not health.adapter.is_available():
                return False
            slot: Optional[ApiKeySlot] = health.keys.active
            if slot is None:
                return False
            role, api_key = slot.role, slot.api_key

        start = time.perf_counter()
        error_kind: Optional[ErrorKind] = None
        retry_after: Optional[float] = None
        try:
            await asyncio.wait_for(
                health.adapter.probe(api_key),
                timeout=self.config.probe_timeout_seconds,
            )
            ok = True
        except Exception as e:
            classified = classify_http_error(provider.value, e)
            error_kind = classified.kind
            retry_after = classified.error.retry_after
            ok = False
        duration = time.perf_counter() - start

        rotation = None
        with health.lock:
            now = self._clock()
            health.last_probe_ok = ok
            if ok:
                health.breaker.probe_passed()
            elif error_kind in (ErrorKind.AUTH, ErrorKind.QUOTA):
                rotation = health.keys.record(
                    role, False, error_kind, int(duration * 1000), now, retry_after=retry_after
                )
            else:
                health.breaker.probe_failed()

        if rotation is not None:
            self._report_rotation(rotation)

        if self.metrics is not None:
            self.metrics.record_health_check(provider.value, ok, duration)

        logger.info(
            "Health check completed",
            provider=provider.value,
            healthy=ok,
            error_kind=error_kind.value if error_kind else None,
            duration_ms=round(duration * 1000, 2),
        )
        return ok

    async def _background_loop(self, interval: float):
        while True:
            await asyncio.sleep(interval)
            await self.run_health_check()

    def start_background_checks(self, interval_seconds: float):
        """Run health checks every ``interval_seconds`` on the running loop."""
        if self._background_task is not None and not self._background_task.done():
            return
        self._background_task = asyncio.get_running_loop().create_task(
            self._background_loop(interval_seconds)
        )

    async def stop_background_checks(self):
        task = self._background_task
        self._background_task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # ============================================================
    # Status
    # ============================================================

    def snapshot(self) -> Dict[Provider, Dict]:
        """Per-provider status. Contains slot roles only, never key material."""
        result = {}
        for provider, health in self._providers.items():
            with health.lock:
                now = self._clock()
                self._refresh(health, now)
                self._prune_requests(health, now)
                active = health.keys.active
                result[provider] = {
                    "is_available": self._is_available(health, now),
                    "is_enabled": health.is_enabled,
                    "is_healthy": health.is_healthy,
                    "has_capacity": self._has_capacity(health, now),
                    "active_key_slot": active.role.value if active else None,
                    "capacity_reset_in_seconds": _seconds_until(health.keys.earliest_reset(), now),
                    "requests_last_window": len(health.request_times),
                    "rate_limit_rpm": health.rate_limit_rpm,
                    "in_flight": health.adapter.in_flight,
                    "seconds_since_health_check": _seconds_since(health.last_health_check, now),
                    "circuit": health.breaker.get_status(),
                    "key_slots": health.keys.to_list(),
                    "latency_ms": health.window.latency_stats().to_dict(),
                    "success_rate": round(health.window.success_rate, 4),
                    "metrics": health.metrics.to_dict(),
                }
        return result

    def get_status(self) -> Dict[str, Dict]:
        """JSON-friendly snapshot keyed by provider name."""
        return {provider.value: status for provider, status in self.snapshot().items()}


def _circuit_gauge(state: CircuitState) -> CircuitStateValue:
    return CircuitStateValue[state.name]


def _seconds_until(when: Optional[float], now: float) -> Optional[float]:
    if when is None:
        return None
    return round(max(0.0, when - now), 2)


def _seconds_since(when: Optional[float], now: float) -> Optional[float]:
    if when is None:
        return None
    return round(now - when, 2)
