"""
Process-wide roster fetch counters.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class FetchMetrics:
    """Monotonic fetch counters, reset only by an explicit operator action."""

    total_requests: int = 0
    successful_fetches: int = 0
    failures: int = 0
    timeouts: int = 0
    cache_hits: int = 0
    fallbacks: int = 0
    slow_queries: int = 0
    average_response_time: float = 0.0  # ms, successful fetches only
    strategies_used: dict[str, int] = field(default_factory=dict)

    def record_success(self, strategy: str, elapsed_ms: float, slow_ms: float) -> None:
        self.successful_fetches += 1
        self.average_response_time += (
            elapsed_ms - self.average_response_time
        ) / self.successful_fetches
        if elapsed_ms > slow_ms:
            self.slow_queries += 1
        self.strategies_used[strategy] = self.strategies_used.get(strategy, 0) + 1

    def copy(self) -> "FetchMetrics":
        return FetchMetrics(
            total_requests=self.total_requests,
            successful_fetches=self.successful_fetches,
            failures=self.failures,
            timeouts=self.timeouts,
            cache_hits=self.cache_hits,
            fallbacks=self.fallbacks,
            slow_queries=self.slow_queries,
            average_response_time=self.average_response_time,
            strategies_used=dict(self.strategies_used),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "successful_fetches": self.successful_fetches,
            "failures": self.failures,
            "timeouts": self.timeouts,
            "cache_hits": self.cache_hits,
            "fallbacks": self.fallbacks,
            "slow_queries": self.slow_queries,
            "average_response_time_ms": round(self.average_response_time, 1),
            "strategies_used": dict(self.strategies_used),
        }
