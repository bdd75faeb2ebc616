"""
Wayfarer - Key Rotation and Provider Registry Tests

Tests for:
- Key slot rotation (auth, quota, consecutive failures)
- Lazy and health-check driven self-healing
- Candidate ordering and availability filtering
- Circuit breaker integration
"""

import asyncio
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import build_registry

from wayfarer.core.errors import AuthError, TransientError
from wayfarer.core.models import (
    AttemptOutcome,
    AttemptRecord,
    ComplexityTier,
    ErrorKind,
    KeySlotRole,
    Provider,
    TokenUsage,
)
from wayfarer.routing import CircuitState, KeyPolicy, KeyRing, TierPreferences


def success(provider, role=KeySlotRole.PRIMARY, latency_ms=100, usage=None):
    return AttemptRecord(provider, AttemptOutcome.SUCCESS, key_role=role, latency_ms=latency_ms, usage=usage)


def failure(provider, kind, role=KeySlotRole.PRIMARY, latency_ms=100):
    return AttemptRecord(provider, AttemptOutcome.FAILURE, key_role=role, error_kind=kind, latency_ms=latency_ms)


# ============================================================
# KeyRing
# ============================================================

class TestKeyRing:
    """Tests for per-provider key slot rotation."""

    NOW = 1000.0

    def test_first_slot_active(self):
        ring = KeyRing(Provider.GROQ, ["k1", "k2", "k3"])
        assert ring.active.role == KeySlotRole.PRIMARY
        assert [s.role for s in ring.slots] == [
            KeySlotRole.PRIMARY, KeySlotRole.SECONDARY, KeySlotRole.TERTIARY
        ]

    def test_empty_keys_skipped(self):
        ring = KeyRing(Provider.GROQ, ["k1", "", "k3"])
        assert len(ring) == 2
        assert ring.slots[1].api_key == "k3"

    def test_no_keys_means_no_active_slot(self):
        ring = KeyRing(Provider.GROQ, [])
        assert ring.active is None

    def test_auth_error_rotates_and_parks_slot(self):
        ring = KeyRing(Provider.GROQ, ["k1", "k2"])
        rotation = ring.record(KeySlotRole.PRIMARY, False, ErrorKind.AUTH, 50, self.NOW)

        assert rotation.to_role == KeySlotRole.SECONDARY
        assert rotation.reason == "auth"
        assert ring.active.role == KeySlotRole.SECONDARY
        primary = ring.get(KeySlotRole.PRIMARY)
        assert primary.disabled_until == self.NOW + KeyPolicy().auth_cooldown_seconds

    def test_quota_error_uses_retry_after(self):
        ring = KeyRing(Provider.GROQ, ["k1", "k2"])
        ring.record(KeySlotRole.PRIMARY, False, ErrorKind.QUOTA, 50, self.NOW, retry_after=10)

        assert ring.get(KeySlotRole.PRIMARY).disabled_until == self.NOW + 10
        assert ring.active.role == KeySlotRole.SECONDARY

    def test_quota_error_default_cooldown(self):
        ring = KeyRing(Provider.GROQ, ["k1", "k2"])
        ring.record(KeySlotRole.PRIMARY, False, ErrorKind.QUOTA, 50, self.NOW)
        assert ring.get(KeySlotRole.PRIMARY).disabled_until == self.NOW + KeyPolicy().quota_cooldown_seconds

    def test_local_quota_limit_rotates(self):
        ring = KeyRing(Provider.GROQ, ["k1", "k2"], quota_limit=3)
        assert ring.record(KeySlotRole.PRIMARY, True, None, 50, self.NOW) is None
        assert ring.record(KeySlotRole.PRIMARY, True, None, 50, self.NOW) is None

        rotation = ring.record(KeySlotRole.PRIMARY, True, None, 50, self.NOW)

        assert rotation is not None
        assert rotation.reason == "quota"
        assert ring.active.role == KeySlotRole.SECONDARY

    def test_consecutive_failures_rotate(self):
        ring = KeyRing(Provider.GROQ, ["k1", "k2"])
        assert ring.record(KeySlotRole.PRIMARY, False, ErrorKind.TRANSIENT, 50, self.NOW) is None
        assert ring.record(KeySlotRole.PRIMARY, False, ErrorKind.TRANSIENT, 50, self.NOW) is None

        rotation = ring.record(KeySlotRole.PRIMARY, False, ErrorKind.TRANSIENT, 50, self.NOW)

        assert rotation.reason == "failures"
        assert ring.active.role == KeySlotRole.SECONDARY

    def test_success_resets_failure_streak(self):
        ring = KeyRing(Provider.GROQ, ["k1", "k2"])
        ring.record(KeySlotRole.PRIMARY, False, ErrorKind.TRANSIENT, 50, self.NOW)
        ring.record(KeySlotRole.PRIMARY, False, ErrorKind.TRANSIENT, 50, self.NOW)
        ring.record(KeySlotRole.PRIMARY, True, None, 50, self.NOW)
        ring.record(KeySlotRole.PRIMARY, False, ErrorKind.TRANSIENT, 50, self.NOW)

        assert ring.active.role == KeySlotRole.PRIMARY

    def test_rotation_is_round_robin(self):
        ring = KeyRing(Provider.GROQ, ["k1", "k2", "k3"])
        ring.record(KeySlotRole.PRIMARY, False, ErrorKind.QUOTA, 50, self.NOW, retry_after=1)
        ring.record(KeySlotRole.SECONDARY, False, ErrorKind.QUOTA, 50, self.NOW, retry_after=1)
        assert ring.active.role == KeySlotRole.TERTIARY

        # Primary's park has expired by now; rotation wraps around to it
        later = self.NOW + 5
        rotation = ring.record(KeySlotRole.TERTIARY, False, ErrorKind.QUOTA, 50, later)
        assert rotation.to_role == KeySlotRole.PRIMARY

    def test_all_slots_parked(self):
        ring = KeyRing(Provider.GROQ, ["k1"])
        rotation = ring.record(KeySlotRole.PRIMARY, False, ErrorKind.AUTH, 50, self.NOW)

        assert rotation.to_role is None
        assert ring.active is None
        assert ring.earliest_reset() == self.NOW + KeyPolicy().auth_cooldown_seconds

    def test_restore_reactivates_after_reset(self):
        ring = KeyRing(Provider.GROQ, ["k1"])
        ring.record(KeySlotRole.PRIMARY, False, ErrorKind.QUOTA, 50, self.NOW, retry_after=30)

        assert ring.restore(self.NOW + 29) is False
        assert ring.active is None

        assert ring.restore(self.NOW + 30) is True
        assert ring.active.role == KeySlotRole.PRIMARY

    def test_restore_keeps_current_active_slot(self):
        ring = KeyRing(Provider.GROQ, ["k1", "k2"])
        ring.record(KeySlotRole.PRIMARY, False, ErrorKind.QUOTA, 50, self.NOW, retry_after=1)

        assert ring.restore(self.NOW + 10) is False
        assert ring.active.role == KeySlotRole.SECONDARY
        assert ring.get(KeySlotRole.PRIMARY).disabled_until is None

    def test_outcome_for_inactive_slot_never_rotates(self):
        ring = KeyRing(Provider.GROQ, ["k1", "k2"])
        ring.record(KeySlotRole.PRIMARY, False, ErrorKind.AUTH, 50, self.NOW)

        rotation = ring.record(KeySlotRole.PRIMARY, False, ErrorKind.AUTH, 50, self.NOW)

        assert rotation is None
        assert ring.active.role == KeySlotRole.SECONDARY
        assert ring.get(KeySlotRole.PRIMARY).quota_used == 2

    def test_quota_window_rolls_over(self):
        policy = KeyPolicy(quota_window_seconds=100)
        ring = KeyRing(Provider.GROQ, ["k1"], quota_limit=5, policy=policy)
        ring.record(KeySlotRole.PRIMARY, True, None, 50, self.NOW)
        ring.record(KeySlotRole.PRIMARY, True, None, 50, self.NOW + 150)

        assert ring.get(KeySlotRole.PRIMARY).quota_used == 1

    def test_status_has_no_key_material(self):
        ring = KeyRing(Provider.GROQ, ["gsk-secret-1", "gsk-secret-2"])
        assert "gsk-secret" not in str(ring.to_list())
        assert "gsk-secret" not in repr(ring.slots[0])


# ============================================================
# ProviderRegistry: candidates
# ============================================================

class TestCandidates:
    """Tests for candidate ordering and availability filtering."""

    def test_default_order_per_tier(self, registry):
        assert registry.get_candidates(ComplexityTier.LOW) == [Provider.GROQ, Provider.GEMINI, Provider.CEREBRAS]
        assert registry.get_candidates(ComplexityTier.MEDIUM) == [Provider.GEMINI, Provider.GROQ, Provider.CEREBRAS]
        assert registry.get_candidates(ComplexityTier.HIGH) == [Provider.CEREBRAS, Provider.GEMINI, Provider.GROQ]

    def test_disabled_provider_excluded(self, registry):
        registry.set_enabled(Provider.GROQ, False)
        assert registry.get_candidates(ComplexityTier.LOW) == [Provider.GEMINI, Provider.CEREBRAS]

        registry.set_enabled(Provider.GROQ, True)
        assert registry.get_candidates(ComplexityTier.LOW)[0] == Provider.GROQ

    def test_ordering_is_deterministic(self, registry):
        first = registry.get_candidates(ComplexityTier.MEDIUM)
        assert all(registry.get_candidates(ComplexityTier.MEDIUM) == first for _ in range(10))

    def test_unrelated_provider_does_not_reorder(self, registry):
        registry.set_enabled(Provider.CEREBRAS, False)
        assert registry.get_candidates(ComplexityTier.LOW) == [Provider.GROQ, Provider.GEMINI]

    def test_unlisted_providers_ordered_by_latency_then_name(self, stubs):
        prefs = TierPreferences.from_overrides({ComplexityTier.LOW: [Provider.GROQ]})
        registry = build_registry(stubs, preferences=prefs)

        # Equal (zero) latency: name decides
        assert registry.get_candidates(ComplexityTier.LOW) == [Provider.GROQ, Provider.CEREBRAS, Provider.GEMINI]

        registry.record_outcome(Provider.CEREBRAS, KeySlotRole.PRIMARY, success(Provider.CEREBRAS, latency_ms=900))
        registry.record_outcome(Provider.GEMINI, KeySlotRole.PRIMARY, success(Provider.GEMINI, latency_ms=200))

        assert registry.get_candidates(ComplexityTier.LOW) == [Provider.GROQ, Provider.GEMINI, Provider.CEREBRAS]

    def test_adapter_without_capacity_excluded(self, registry, stubs):
        stubs[Provider.GROQ]._in_flight = stubs[Provider.GROQ].config.max_concurrent
        assert Provider.GROQ not in registry.get_candidates(ComplexityTier.LOW)

    def test_availability_gauge(self, registry, fresh_registry):
        registry.set_enabled(Provider.GEMINI, False)
        registry.get_candidates(ComplexityTier.LOW)

        assert fresh_registry.get_sample_value("wayfarer_provider_available", {"provider": "gemini"}) == 0
        assert fresh_registry.get_sample_value("wayfarer_provider_available", {"provider": "groq"}) == 1


# ============================================================
# ProviderRegistry: slots, rate windows and outcomes
# ============================================================

class TestRegistryOutcomes:
    """Tests for slot leasing and outcome recording."""

    def test_acquire_slot_returns_active_key(self, registry):
        lease = registry.acquire_slot(Provider.GROQ)
        assert lease.role == KeySlotRole.PRIMARY
        assert lease.api_key == "groq-key-1"

    def test_acquire_slot_unknown_provider(self, stubs):
        registry = build_registry({Provider.GROQ: stubs[Provider.GROQ]})
        assert registry.acquire_slot(Provider.GEMINI) is None

    def test_rate_window(self, stubs, clock):
        registry = build_registry(stubs, clock=clock, rate_limit_rpm=2)

        assert registry.acquire_slot(Provider.GROQ) is not None
        assert registry.acquire_slot(Provider.GROQ) is not None
        assert registry.acquire_slot(Provider.GROQ) is None
        assert Provider.GROQ not in registry.get_candidates(ComplexityTier.LOW)

        clock.advance(61)
        assert Provider.GROQ in registry.get_candidates(ComplexityTier.LOW)

    def test_auth_failure_rotates_key(self, registry, fresh_registry):
        registry.record_outcome(Provider.GROQ, KeySlotRole.PRIMARY, failure(Provider.GROQ, ErrorKind.AUTH))

        assert registry.acquire_slot(Provider.GROQ).api_key == "groq-key-2"
        assert fresh_registry.get_sample_value(
            "wayfarer_key_rotations_total",
            {"provider": "groq", "from_slot": "primary", "to_slot": "secondary", "reason": "auth"},
        ) == 1

    def test_quota_failure_does_not_touch_circuit(self, registry):
        for _ in range(10):
            registry.record_outcome(Provider.GROQ, None, failure(Provider.GROQ, ErrorKind.QUOTA, role=None))

        assert registry.get_health(Provider.GROQ).breaker.state == CircuitState.CLOSED

    def test_transient_failures_open_circuit(self, registry):
        for role in (KeySlotRole.PRIMARY, KeySlotRole.PRIMARY, KeySlotRole.PRIMARY,
                     KeySlotRole.SECONDARY, KeySlotRole.SECONDARY):
            registry.record_outcome(Provider.GROQ, role, failure(Provider.GROQ, ErrorKind.TRANSIENT, role=role))

        assert registry.get_health(Provider.GROQ).breaker.state == CircuitState.OPEN
        assert not registry.is_available(Provider.GROQ)

    def test_metrics_accumulate(self, registry):
        usage = TokenUsage(prompt_tokens=100, completion_tokens=50)
        registry.record_outcome(Provider.GEMINI, KeySlotRole.PRIMARY, success(Provider.GEMINI, usage=usage))
        registry.record_outcome(Provider.GEMINI, KeySlotRole.PRIMARY, failure(Provider.GEMINI, ErrorKind.TRANSIENT))

        stats = registry.get_health(Provider.GEMINI).metrics
        assert stats.total_requests == 2
        assert stats.successful_requests == 1
        assert stats.failed_requests == 1
        assert stats.tokens_used == 150
        assert stats.total_cost_usd > 0
        assert stats.last_error == "transient@gemini"

    def test_record_outcome_unknown_provider_is_ignored(self, stubs):
        registry = build_registry({Provider.GROQ: stubs[Provider.GROQ]})
        registry.record_outcome(Provider.GEMINI, KeySlotRole.PRIMARY, success(Provider.GEMINI))

    def test_concurrent_leases_and_outcomes(self, stubs):
        """Worker threads hammering one provider never leave it with two active slots."""
        registry = build_registry(stubs, keys_per_provider=3, quota_limit=40)
        health = registry.get_health(Provider.GROQ)
        workers, rounds = 8, 50
        violations = []

        def work(worker: int) -> int:
            recorded = 0
            for i in range(rounds):
                lease = registry.acquire_slot(Provider.GROQ)
                role = lease.role if lease else None
                if lease is None or (worker + i) % 11 == 0:
                    outcome = failure(Provider.GROQ, ErrorKind.QUOTA, role=role)
                elif (worker + i) % 5 == 0:
                    outcome = failure(Provider.GROQ, ErrorKind.TRANSIENT, role=role)
                else:
                    outcome = success(Provider.GROQ, role=role)
                registry.record_outcome(Provider.GROQ, role, outcome)
                recorded += 1
                with health.lock:
                    active = [s for s in health.keys.slots if s.is_active]
                if len(active) > 1:
                    violations.append(len(active))
            return recorded

        with ThreadPoolExecutor(max_workers=workers) as pool:
            recorded = sum(pool.map(work, range(workers)))

        assert violations == []
        assert len([s for s in health.keys.slots if s.is_active]) <= 1
        stats = health.metrics
        assert recorded == workers * rounds
        assert stats.total_requests == recorded
        assert stats.successful_requests + stats.failed_requests == stats.total_requests


# ============================================================
# Self-healing
# ============================================================

class TestSelfHealing:
    """Tests for capacity restoration."""

    def test_lazy_restore_after_quota_reset(self, stubs, clock):
        registry = build_registry(stubs, clock=clock, keys_per_provider=1)
        registry.record_outcome(
            Provider.GROQ, KeySlotRole.PRIMARY, failure(Provider.GROQ, ErrorKind.QUOTA), retry_after=120
        )
        assert Provider.GROQ not in registry.get_candidates(ComplexityTier.LOW)

        clock.advance(119)
        assert Provider.GROQ not in registry.get_candidates(ComplexityTier.LOW)

        clock.advance(1)
        assert registry.get_candidates(ComplexityTier.LOW)[0] == Provider.GROQ

    def test_local_quota_window_restores(self, stubs, clock):
        registry = build_registry(stubs, clock=clock, keys_per_provider=1, quota_limit=1)
        registry.record_outcome(Provider.GROQ, KeySlotRole.PRIMARY, success(Provider.GROQ))
        assert not registry.is_available(Provider.GROQ)

        clock.advance(KeyPolicy().quota_window_seconds)
        assert registry.is_available(Provider.GROQ)

    @pytest.mark.asyncio
    async def test_health_check_restores_and_probes(self, stubs, clock):
        registry = build_registry(stubs, clock=clock, keys_per_provider=1)
        registry.record_outcome(
            Provider.GROQ, KeySlotRole.PRIMARY, failure(Provider.GROQ, ErrorKind.QUOTA), retry_after=30
        )
        clock.advance(30)

        results = await registry.run_health_check()

        assert results[Provider.GROQ] is True
        assert stubs[Provider.GROQ].probe_calls == 1
        assert registry.get_health(Provider.GROQ).keys.active is not None

    @pytest.mark.asyncio
    async def test_failed_probe_opens_circuit(self, registry, stubs):
        stubs[Provider.GEMINI].probe_error = TransientError("gemini", "503")

        results = await registry.run_health_check()

        assert results[Provider.GEMINI] is False
        assert registry.get_health(Provider.GEMINI).breaker.state == CircuitState.OPEN
        assert Provider.GEMINI not in registry.get_candidates(ComplexityTier.MEDIUM)

    @pytest.mark.asyncio
    async def test_auth_probe_rotates_key(self, registry, stubs):
        stubs[Provider.CEREBRAS].probe_error = AuthError("cerebras", "bad key")

        await registry.run_health_check()

        health = registry.get_health(Provider.CEREBRAS)
        assert health.keys.active.role == KeySlotRole.SECONDARY
        assert health.breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_passed_probe_half_opens_circuit(self, registry):
        health = registry.get_health(Provider.GROQ)
        health.breaker.probe_failed()

        await registry.run_health_check()

        assert health.breaker.state == CircuitState.HALF_OPEN
        assert registry.is_available(Provider.GROQ)

    @pytest.mark.asyncio
    async def test_disabled_provider_not_probed(self, registry, stubs):
        registry.set_enabled(Provider.GROQ, False)

        results = await registry.run_health_check()

        assert results[Provider.GROQ] is False
        assert stubs[Provider.GROQ].probe_calls == 0

    @pytest.mark.asyncio
    async def test_providers_checked_concurrently(self, registry, stubs):
        for stub in stubs.values():
            stub.probe_delay = 0.2

        start = time.monotonic()
        results = await registry.run_health_check()
        elapsed = time.monotonic() - start

        assert all(results.values())
        assert elapsed < 0.45

    @pytest.mark.asyncio
    async def test_one_failing_check_does_not_hide_the_others(self, registry, stubs):
        stubs[Provider.GEMINI].probe_error = TransientError("gemini", "503")

        results = await registry.run_health_check()

        assert results == {
            Provider.GROQ: True,
            Provider.GEMINI: False,
            Provider.CEREBRAS: True,
        }

    @pytest.mark.asyncio
    async def test_health_check_metrics(self, registry, fresh_registry):
        await registry.run_health_check()
        assert fresh_registry.get_sample_value(
            "wayfarer_health_check_success_total", {"provider": "groq"}
        ) == 1

    @pytest.mark.asyncio
    async def test_background_checks_probe_until_stopped(self, registry, stubs):
        registry.start_background_checks(0.01)
        registry.start_background_checks(0.01)
        await asyncio.sleep(0.1)
        await registry.stop_background_checks()

        probes = stubs[Provider.GROQ].probe_calls
        assert probes >= 1
        await asyncio.sleep(0.05)
        assert stubs[Provider.GROQ].probe_calls == probes


# ============================================================
# Snapshot
# ============================================================

class TestSnapshot:
    """Tests for the status view."""

    def test_snapshot_fields(self, registry):
        status = registry.get_status()

        assert set(status) == {"cerebras", "gemini", "groq"}
        groq = status["groq"]
        assert groq["is_available"] is True
        assert groq["active_key_slot"] == "primary"
        assert groq["circuit"]["state"] == "closed"

    def test_snapshot_has_no_key_material(self, registry):
        assert "-key-" not in str(registry.get_status())

    def test_capacity_reset_reported(self, stubs, clock):
        registry = build_registry(stubs, clock=clock, keys_per_provider=1)
        registry.record_outcome(
            Provider.GROQ, KeySlotRole.PRIMARY, failure(Provider.GROQ, ErrorKind.QUOTA), retry_after=45
        )
        assert registry.get_status()["groq"]["capacity_reset_in_seconds"] == 45.0
