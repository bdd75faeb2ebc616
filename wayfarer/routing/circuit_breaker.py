"""
Wayfarer - Circuit Breaker

Derives a provider's ``is_healthy`` flag from its recent error rate.

States:
- CLOSED: Normal operation, provider is healthy
- OPEN: Provider is failing, excluded from candidate lists
- HALF_OPEN: Recovery window, the provider is offered again

Transitions:
- CLOSED -> OPEN: recent failures or recent error rate over threshold
- OPEN -> HALF_OPEN: after the recovery timeout, or a passing health probe
- HALF_OPEN -> CLOSED: on enough consecutive successes
- HALF_OPEN -> OPEN: on any failure
"""

import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Callable, Deque, Dict, Optional, Tuple


class CircuitState(str, Enum):
    """Whether a provider is offered as a routing candidate."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Trip and recovery thresholds, shared by all providers."""
    # Failures within the window that trip the breaker
    failure_threshold: int = 5

    # Error rate within the window that trips the breaker
    max_error_rate: float = 0.5

    # Time window for counting outcomes (seconds)
    failure_window_seconds: float = 60.0

    # Time to wait before offering the provider again (seconds)
    recovery_timeout_seconds: float = 30.0

    # Consecutive successes needed to close from HALF_OPEN
    success_threshold: int = 2

    # Minimum outcomes in the window before the error rate is evaluated
    min_requests_for_evaluation: int = 4


class CircuitBreaker:
    """
    Circuit breaker for a single provider.

    Keeps a rolling window of (timestamp, succeeded) outcomes. Time comes
    from an injectable monotonic clock so recovery can be driven in tests.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self.state = CircuitState.CLOSED
        self.state_changed_at = clock()
        self.consecutive_successes = 0
        self._window: Deque[Tuple[float, bool]] = deque()
        self._lock = Lock()

    @property
    def is_available(self) -> bool:
        """Whether the provider may be offered as a candidate."""
        with self._lock:
            return self._check_availability()

    def _check_availability(self) -> bool:
        # Caller holds the lock
        if self.state == CircuitState.OPEN:
            if self._clock() - self.state_changed_at >= self.config.recovery_timeout_seconds:
                self._transition_to(CircuitState.HALF_OPEN)
                return True
            return False
        return True

    def _prune(self, now: float):
        cutoff = now - self.config.failure_window_seconds
        while self._window and self._window[0][0] <= cutoff:
            self._window.popleft()

    def _error_rate(self) -> float:
        if not self._window:
            return 0.0
        failures = sum(1 for _, ok in self._window if not ok)
        return failures / len(self._window)

    def record_success(self):
        """A provider attempt succeeded."""
        with self._lock:
            now = self._clock()
            self._window.append((now, True))
            self._prune(now)
            self.consecutive_successes += 1

            if self.state == CircuitState.HALF_OPEN:
                if self.consecutive_successes >= self.config.success_threshold:
                    self._transition_to(CircuitState.CLOSED)

    def record_failure(self):
        """A transient or malformed failure; key errors are handled by the key ring."""
        with self._lock:
            now = self._clock()
            self._window.append((now, False))
            self._prune(now)
            self.consecutive_successes = 0

            if self.state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
                return

            if self.state == CircuitState.CLOSED and self._should_trip():
                self._transition_to(CircuitState.OPEN)

    def _should_trip(self) -> bool:
        failures = sum(1 for _, ok in self._window if not ok)
        if failures >= self.config.failure_threshold:
            return True
        if len(self._window) < self.config.min_requests_for_evaluation:
            return False
        return self._error_rate() > self.config.max_error_rate

    def probe_passed(self):
        """A health probe succeeded: give an open circuit a recovery chance."""
        with self._lock:
            if self.state == CircuitState.OPEN:
                self._transition_to(CircuitState.HALF_OPEN)

    def probe_failed(self):
        """A health probe failed: keep the provider out of rotation."""
        with self._lock:
            self._transition_to(CircuitState.OPEN)

    def _transition_to(self, new_state: CircuitState):
        """Transition to a new state (must hold lock)."""
        self.state = new_state
        self.state_changed_at = self._clock()
        self.consecutive_successes = 0

        if new_state == CircuitState.CLOSED:
            self._window.clear()

    def get_status(self) -> Dict:
        """Circuit view for the health endpoint."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            return {
                "state": self.state.value,
                "is_available": self._check_availability(),
                "error_rate": round(self._error_rate(), 4),
                "window_size": len(self._window),
                "time_in_current_state": round(now - self.state_changed_at, 2),
            }
