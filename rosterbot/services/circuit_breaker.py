"""
CircuitBreaker - Stops live roster fetches for a partition whose upstream keeps failing.

States:
- CLOSED: Live strategies run normally
- OPEN: Live strategies are skipped, only the cache is consulted
- HALF_OPEN: Live strategies run again to probe for recovery

Transitions:
- CLOSED → OPEN: When consecutive failures reach failure_threshold
  (each success discounts one failure instead of clearing the count)
- OPEN → HALF_OPEN: On the first access after the cooldown has elapsed
- HALF_OPEN → CLOSED: After success_threshold consecutive successes
- HALF_OPEN → OPEN: On any failure while probing

Transitions are evaluated lazily on access; there is no background timer.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from loguru import logger


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 3  # Consecutive failures before opening
    cooldown: float = 30.0  # Seconds before half-open
    success_threshold: int = 3  # Successes needed to close from half-open


class CircuitBreaker:
    """
    Circuit breaker for a single partition.

    Usage:
        cb = CircuitBreaker("guild-123")

        if cb.is_open():
            return await serve_from_cache()

        try:
            members = await race_strategies()
            cb.record_success()
        except NoStrategySucceeded:
            cb.record_failure()
            raise
    """

    def __init__(
        self,
        partition: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.partition = partition
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._consecutive_successes = 0
        self._last_failure_at: float | None = None

    @property
    def state(self) -> CircuitState:
        """Get current state, checking for the cooldown transition."""
        if self._state == CircuitState.OPEN and self._last_failure_at is not None:
            if self._clock() - self._last_failure_at > self.config.cooldown:
                self._state = CircuitState.HALF_OPEN
                self._consecutive_successes = 0
                logger.info(f"Circuit breaker '{self.partition}' transitioned to HALF_OPEN")
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def consecutive_successes(self) -> int:
        return self._consecutive_successes

    def is_open(self) -> bool:
        """True while live strategies must be skipped."""
        return self.state == CircuitState.OPEN

    def record_success(self) -> None:
        """Record a successful live fetch."""
        if self._state == CircuitState.HALF_OPEN:
            self._consecutive_successes += 1
            if self._consecutive_successes >= self.config.success_threshold:
                self._close()
        elif self._state == CircuitState.CLOSED:
            self._consecutive_failures = max(0, self._consecutive_failures - 1)

    def record_failure(self) -> None:
        """Record a failed live fetch."""
        self._consecutive_failures += 1
        state = self.state
        if state == CircuitState.OPEN:
            # Late failure from a race started before opening; cooldown is not restarted
            return
        self._last_failure_at = self._clock()

        if state == CircuitState.HALF_OPEN:
            self._open()
        elif state == CircuitState.CLOSED:
            if self._consecutive_failures >= self.config.failure_threshold:
                self._open()

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._consecutive_successes = 0
        logger.warning(
            f"Circuit breaker '{self.partition}' OPENED after "
            f"{self._consecutive_failures} failures"
        )

    def _close(self) -> None:
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._consecutive_successes = 0
        logger.info(f"Circuit breaker '{self.partition}' CLOSED (recovered)")

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._consecutive_successes = 0
        self._last_failure_at = None
        logger.info(f"Circuit breaker '{self.partition}' manually reset")

    def get_time_until_half_open(self) -> float | None:
        """Seconds until the next access would move the breaker to half-open."""
        if self._state != CircuitState.OPEN or self._last_failure_at is None:
            return None
        remaining = self._last_failure_at + self.config.cooldown - self._clock()
        return max(0.0, remaining)

    def get_status(self) -> dict[str, Any]:
        return {
            "partition": self.partition,
            "state": self.state.value,
            "consecutive_failures": self._consecutive_failures,
            "consecutive_successes": self._consecutive_successes,
            "failure_threshold": self.config.failure_threshold,
            "time_until_half_open": self.get_time_until_half_open(),
        }


class CircuitBreakerRegistry:
    """
    One breaker per partition, created lazily on the first recorded failure.

    Usage:
        registry = CircuitBreakerRegistry()
        if registry.is_open("guild-123"):
            ...
        registry.record_failure("guild-123")
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._config = config or CircuitBreakerConfig()
        self._clock = clock

    def get(self, partition: str) -> CircuitBreaker | None:
        return self._breakers.get(partition)

    def _get_or_create(self, partition: str) -> CircuitBreaker:
        if partition not in self._breakers:
            self._breakers[partition] = CircuitBreaker(
                partition, self._config, clock=self._clock
            )
        return self._breakers[partition]

    def is_open(self, partition: str) -> bool:
        breaker = self._breakers.get(partition)
        return breaker is not None and breaker.is_open()

    def record_success(self, partition: str) -> None:
        breaker = self._breakers.get(partition)
        if breaker is not None:
            breaker.record_success()

    def record_failure(self, partition: str) -> None:
        self._get_or_create(partition).record_failure()

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        return {partition: cb.get_status() for partition, cb in self._breakers.items()}

    def reset(self, partition: str) -> bool:
        if partition in self._breakers:
            self._breakers[partition].reset()
            return True
        return False

    def get_open_partitions(self) -> list[str]:
        return [p for p, cb in self._breakers.items() if cb.state == CircuitState.OPEN]
