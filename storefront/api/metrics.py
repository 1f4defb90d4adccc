"""Metrics service for tracking feed performance.

Singleton service counting recommendation feed requests, degraded
responses and latency per feed.
"""

import threading
from typing import Dict


class _FeedCounters:
    def __init__(self) -> None:
        self.requests = 0
        self.degraded = 0
        self.total_latency_ms = 0.0
        self.min_latency_ms = float("inf")
        self.max_latency_ms = 0.0


class MetricsService:
    """Singleton service for tracking API metrics.

    Thread-safe counters keyed by feed name ("for_you", "similar", ...).
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        """Create singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super(MetricsService, cls).__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._lock = threading.Lock()
        self._feeds: Dict[str, _FeedCounters] = {}
        self._initialized = True

    def record_request(self, feed: str, latency_ms: float, degraded: bool = False) -> None:
        """Record a feed request.

        Args:
            feed: Feed name
            latency_ms: Latency in milliseconds
            degraded: True when a fallback answer was served
        """
        with self._lock:
            counters = self._feeds.setdefault(feed, _FeedCounters())
            counters.requests += 1
            counters.total_latency_ms += latency_ms
            if degraded:
                counters.degraded += 1
            counters.min_latency_ms = min(counters.min_latency_ms, latency_ms)
            counters.max_latency_ms = max(counters.max_latency_ms, latency_ms)

    def get_metrics(self) -> Dict[str, Dict]:
        """Get current metrics per feed.

        Returns:
            Dictionary keyed by feed with requests, degraded,
            average_latency_ms, min_latency_ms and max_latency_ms.
        """
        with self._lock:
            result = {}
            for feed, counters in self._feeds.items():
                avg_latency = (
                    counters.total_latency_ms / counters.requests
                    if counters.requests > 0
                    else 0.0
                )
                result[feed] = {
                    "requests": counters.requests,
                    "degraded": counters.degraded,
                    "average_latency_ms": round(avg_latency, 2),
                    "min_latency_ms": round(counters.min_latency_ms, 2)
                    if counters.min_latency_ms != float("inf")
                    else 0.0,
                    "max_latency_ms": round(counters.max_latency_ms, 2),
                }
            return result

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._feeds = {}


# Global singleton instance
metrics_service = MetricsService()
