"""
Wayfarer - API Key Slots

Each provider owns up to three API key slots (primary, secondary,
tertiary). Exactly one slot is active at a time, or none when every
slot is exhausted or disabled.

Rotation is round-robin (primary -> secondary -> tertiary -> primary)
and happens when the active slot:
- hits a quota error, or its counted usage reaches ``quota_limit``
- fails ``max_consecutive_failures`` times in a row
- is rejected by the provider (auth error)

A deactivated slot is parked until ``disabled_until``; ``restore`` brings
it back once that time has passed.

Neither class here is thread-safe. The registry serializes access with
one lock per provider.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..core.models import ErrorKind, KeySlotRole, Provider, KEY_SLOT_ORDER
from .health import RollingWindow


@dataclass(frozen=True)
class KeyPolicy:
    """Rotation and cooldown policy for key slots."""
    max_consecutive_failures: int = 3

    # How long a slot rotated out for repeated failures stays parked
    failure_cooldown_seconds: float = 60.0

    # How long a slot rejected by the provider stays parked
    auth_cooldown_seconds: float = 300.0

    # How long a slot stays parked after the provider reports quota
    # exhaustion without a Retry-After hint
    quota_cooldown_seconds: float = 60.0

    # Length of a quota accounting window
    quota_window_seconds: float = 86400.0


@dataclass(frozen=True)
class KeyRotation:
    """A rotation event, reported back to the registry for logging/metrics."""
    provider: Provider
    from_role: KeySlotRole
    to_role: Optional[KeySlotRole]
    reason: str


@dataclass
class ApiKeySlot:
    """One API key and its usage state."""
    provider: Provider
    role: KeySlotRole
    api_key: str = field(repr=False)
    quota_limit: Optional[int] = None
    quota_used: int = 0
    quota_reset_at: Optional[float] = None
    consecutive_failures: int = 0
    is_active: bool = False
    disabled_until: Optional[float] = None
    disabled_reason: Optional[str] = None
    window: RollingWindow = field(default_factory=RollingWindow, repr=False)

    @property
    def success_rate(self) -> float:
        return self.window.success_rate

    @property
    def avg_latency_ms(self) -> int:
        return self.window.avg_latency_ms

    @property
    def quota_exhausted(self) -> bool:
        return self.quota_limit is not None and self.quota_used >= self.quota_limit

    def is_usable(self, now: float) -> bool:
        """Whether the slot could be activated at ``now``."""
        if self.disabled_until is not None and now < self.disabled_until:
            return False
        return not self.quota_exhausted

    def roll_quota_window(self, now: float, window_seconds: float):
        """Start a fresh quota window when the previous one has elapsed."""
        if self.quota_reset_at is None:
            self.quota_reset_at = now + window_seconds
        elif now >= self.quota_reset_at:
            self.quota_used = 0
            self.quota_reset_at = now + window_seconds

    def disable(self, until: float, reason: str):
        self.is_active = False
        self.disabled_until = until
        self.disabled_reason = reason

    def to_dict(self) -> dict:
        """Status view; never includes key material."""
        return {
            "role": self.role.value,
            "active": self.is_active,
            "quota_used": self.quota_used,
            "quota_limit": self.quota_limit,
            "consecutive_failures": self.consecutive_failures,
            "success_rate": round(self.success_rate, 4),
            "avg_latency_ms": self.avg_latency_ms,
            "disabled_reason": self.disabled_reason,
        }


class KeyRing:
    """
    The ordered key slots of one provider.

    Example:
        ring = KeyRing(Provider.GROQ, ["gsk-1", "gsk-2"], quota_limit=1000)
        slot = ring.active            # primary
        ring.record(KeySlotRole.PRIMARY, False, ErrorKind.QUOTA, 120, now)
        slot = ring.active            # secondary
    """

    def __init__(
        self,
        provider: Provider,
        api_keys: Sequence[str],
        quota_limit: Optional[int] = None,
        policy: Optional[KeyPolicy] = None
    ):
        self.provider = provider
        self.policy = policy or KeyPolicy()
        self.slots: List[ApiKeySlot] = [
            ApiKeySlot(provider=provider, role=role, api_key=key, quota_limit=quota_limit)
            for role, key in zip(KEY_SLOT_ORDER, [k for k in api_keys if k])
        ]
        if self.slots:
            self.slots[0].is_active = True

    def __len__(self) -> int:
        return len(self.slots)

    @property
    def active(self) -> Optional[ApiKeySlot]:
        for slot in self.slots:
            if slot.is_active:
                return slot
        return None

    def get(self, role: KeySlotRole) -> Optional[ApiKeySlot]:
        for slot in self.slots:
            if slot.role == role:
                return slot
        return None

    def earliest_reset(self) -> Optional[float]:
        """Earliest time at which a parked slot becomes usable again."""
        times = []
        for slot in self.slots:
            if slot.disabled_until is not None:
                times.append(slot.disabled_until)
            elif slot.quota_exhausted and slot.quota_reset_at is not None:
                times.append(slot.quota_reset_at)
        return min(times) if times else None

    def record(
        self,
        role: Optional[KeySlotRole],
        succeeded: bool,
        error_kind: Optional[ErrorKind],
        latency_ms: int,
        now: float,
        retry_after: Optional[float] = None
    ) -> Optional[KeyRotation]:
        """
        Apply one attempt outcome to a slot.

        Returns the rotation it triggered, if any. Outcomes for a slot
        that is no longer active (e.g. a late hedged attempt) update the
        slot's stats but never rotate the ring.
        """
        slot = self.get(role) if role else None
        if slot is None:
            return None

        slot.roll_quota_window(now, self.policy.quota_window_seconds)
        slot.quota_used += 1
        slot.window.add(latency_ms, succeeded)

        if succeeded:
            slot.consecutive_failures = 0
        else:
            slot.consecutive_failures += 1

        if not slot.is_active:
            return None

        if error_kind == ErrorKind.AUTH:
            slot.disable(now + self.policy.auth_cooldown_seconds, "auth")
            return self._rotate_from(slot, "auth", now)

        if slot.quota_exhausted:
            slot.disable(slot.quota_reset_at, "quota")
            return self._rotate_from(slot, "quota", now)

        if error_kind == ErrorKind.QUOTA:
            if retry_after is not None:
                until = now + retry_after
            else:
                until = now + self.policy.quota_cooldown_seconds
            slot.disable(until, "quota")
            return self._rotate_from(slot, "quota", now)

        if slot.consecutive_failures >= self.policy.max_consecutive_failures:
            slot.disable(now + self.policy.failure_cooldown_seconds, "failures")
            return self._rotate_from(slot, "failures", now)

        return None

    def _rotate_from(self, slot: ApiKeySlot, reason: str, now: float) -> KeyRotation:
        """Activate the next usable slot after ``slot``, round-robin."""
        start = self.slots.index(slot)
        count = len(self.slots)
        for offset in range(1, count):
            candidate = self.slots[(start + offset) % count]
            if candidate.is_usable(now):
                self._activate(candidate)
                return KeyRotation(self.provider, slot.role, candidate.role, reason)
        return KeyRotation(self.provider, slot.role, None, reason)

    def _activate(self, slot: ApiKeySlot):
        for other in self.slots:
            other.is_active = False
        slot.is_active = True
        slot.consecutive_failures = 0

    def restore(self, now: float) -> bool:
        """
        Release parked slots whose time has passed.

        When no slot is active, the first usable one in rotation order is
        activated. Returns True if the ring went from no active slot to
        one active slot.
        """
        for slot in self.slots:
            if slot.disabled_until is not None and now >= slot.disabled_until:
                slot.disabled_until = None
                slot.disabled_reason = None
                slot.consecutive_failures = 0
            if slot.quota_reset_at is not None and now >= slot.quota_reset_at:
                slot.quota_used = 0
                slot.quota_reset_at = None

        if self.active is not None:
            return False

        for slot in self.slots:
            if slot.is_usable(now):
                self._activate(slot)
                return True
        return False

    def to_list(self) -> List[dict]:
        return [slot.to_dict() for slot in self.slots]
