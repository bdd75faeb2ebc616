"""
Wayfarer - Health Tracking

Rolling request statistics shared by key slots and providers:
- Latency tracking (avg, p50, p95, p99) over a sliding window
- Rolling success rate
- Aggregate counters (requests, tokens, cost)
"""

import statistics
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Tuple


@dataclass
class LatencyStats:
    """Latency statistics."""
    avg_ms: int = 0
    min_ms: int = 0
    max_ms: int = 0
    p50_ms: int = 0
    p95_ms: int = 0
    p99_ms: int = 0
    sample_count: int = 0

    def to_dict(self) -> dict:
        return {
            "avg": self.avg_ms,
            "min": self.min_ms,
            "max": self.max_ms,
            "p50": self.p50_ms,
            "p95": self.p95_ms,
            "p99": self.p99_ms,
            "samples": self.sample_count,
        }


def percentile(data: List[int], p: float) -> int:
    """Linear-interpolated percentile of sorted data."""
    if not data:
        return 0
    k = (len(data) - 1) * p / 100
    f = int(k)
    c = f + 1 if f + 1 < len(data) else f
    return int(data[f] + (data[c] - data[f]) * (k - f))


class RollingWindow:
    """
    Sliding window of (latency_ms, succeeded) samples.

    Not thread-safe on its own; callers hold the owning provider's lock.
    """

    WINDOW_SIZE = 100

    def __init__(self, size: int = WINDOW_SIZE):
        self._samples: Deque[Tuple[int, bool]] = deque(maxlen=size)

    def add(self, latency_ms: int, succeeded: bool):
        self._samples.append((max(0, int(latency_ms)), succeeded))

    def __len__(self) -> int:
        return len(self._samples)

    @property
    def success_rate(self) -> float:
        """Fraction of successful samples; 1.0 when there is no data."""
        if not self._samples:
            return 1.0
        return sum(1 for _, ok in self._samples if ok) / len(self._samples)

    @property
    def avg_latency_ms(self) -> int:
        """Average latency of successful samples; 0 when there is no data."""
        latencies = [ms for ms, ok in self._samples if ok]
        if not latencies:
            return 0
        return int(statistics.mean(latencies))

    def latency_stats(self) -> LatencyStats:
        """Calculate latency statistics from the window."""
        latencies = sorted(ms for ms, _ in self._samples)
        if not latencies:
            return LatencyStats()

        return LatencyStats(
            avg_ms=int(statistics.mean(latencies)),
            min_ms=latencies[0],
            max_ms=latencies[-1],
            p50_ms=percentile(latencies, 50),
            p95_ms=percentile(latencies, 95),
            p99_ms=percentile(latencies, 99),
            sample_count=len(latencies)
        )


@dataclass
class ProviderMetrics:
    """Aggregate request metrics for one provider."""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_cost_usd: float = 0.0
    tokens_used: int = 0
    last_error: Optional[str] = None
    last_success_at: Optional[float] = None
    last_failure_at: Optional[float] = None

    @property
    def error_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.failed_requests / self.total_requests

    def to_dict(self) -> dict:
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "error_rate": round(self.error_rate, 4),
            "total_cost_usd": round(self.total_cost_usd, 8),
            "tokens_used": self.tokens_used,
            "last_error": self.last_error,
        }
