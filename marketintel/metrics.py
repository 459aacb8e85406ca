"""Metrics service for tracking engine performance.

Tracks call counts, latency and named event counters (fallbacks,
explorations, cold starts) for the pricing and recommendation engines.
"""

import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterator


class _LatencyStats:
    """Running latency aggregate for a single operation."""

    __slots__ = ("count", "total_ms", "min_ms", "max_ms")

    def __init__(self) -> None:
        self.count = 0
        self.total_ms = 0.0
        self.min_ms = float("inf")
        self.max_ms = 0.0

    def add(self, latency_ms: float) -> None:
        self.count += 1
        self.total_ms += latency_ms
        self.min_ms = min(self.min_ms, latency_ms)
        self.max_ms = max(self.max_ms, latency_ms)

    def as_dict(self) -> Dict[str, float]:
        average = self.total_ms / self.count if self.count else 0.0
        return {
            "count": self.count,
            "average_latency_ms": round(average, 2),
            "min_latency_ms": round(self.min_ms, 2) if self.count else 0.0,
            "max_latency_ms": round(self.max_ms, 2),
        }


class MetricsService:
    """Thread-safe counters and latency tracking.

    Each engine owns its own instance unless one is injected, so separate
    engines (for example in tests) never share counts.
    """

    def __init__(self) -> None:
        """Initialize metrics counters."""
        self._lock = threading.Lock()
        self._operations: Dict[str, _LatencyStats] = {}
        self._counters: Dict[str, int] = {}

    def record_call(self, operation: str, latency_ms: float) -> None:
        """Record a completed call with its latency.

        Args:
            operation: Operation name, e.g. ``optimize_price``
            latency_ms: Latency in milliseconds
        """
        with self._lock:
            stats = self._operations.setdefault(operation, _LatencyStats())
            stats.add(latency_ms)

    def increment(self, counter: str, amount: int = 1) -> None:
        """Increment a named event counter."""
        with self._lock:
            self._counters[counter] = self._counters.get(counter, 0) + amount

    @contextmanager
    def timed(self, operation: str) -> Iterator[None]:
        """Time the enclosed block and record it under ``operation``.

        Only successful calls are recorded; exceptions propagate untouched.
        """
        start_time = time.perf_counter()
        yield
        self.record_call(operation, (time.perf_counter() - start_time) * 1000)

    def get_metrics(self) -> Dict:
        """Get current metrics.

        Returns:
            Dictionary with:
            - operations: per-operation count and latency aggregates
            - counters: named event counters
        """
        with self._lock:
            return {
                "operations": {
                    name: stats.as_dict()
                    for name, stats in self._operations.items()
                },
                "counters": dict(self._counters),
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._operations.clear()
            self._counters.clear()
