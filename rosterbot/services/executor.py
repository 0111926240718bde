"""
StrategyExecutor - Races every strategy against its own deadline.

All strategies start together and the executor waits until each one has
settled (members, error, or timeout). A strategy that misses its deadline is
cancelled. ResultSelector then picks the largest non-empty member set.
"""

import asyncio
import time
from dataclasses import dataclass

from loguru import logger

from rosterbot.datasource.models import MemberSet
from rosterbot.services.errors import (
    NoStrategySucceeded,
    ServiceError,
    StrategyError,
    StrategyTimeout,
)
from rosterbot.services.strategies import Strategy


@dataclass
class StrategyOutcome:
    """Settled result of one strategy."""

    strategy: str
    members: MemberSet | None = None
    error: ServiceError | None = None
    elapsed: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.members is not None

    @property
    def timed_out(self) -> bool:
        return isinstance(self.error, StrategyTimeout)

    @property
    def size(self) -> int:
        return len(self.members) if self.members is not None else 0


class StrategyExecutor:
    """
    Runs strategies concurrently and collects one outcome per strategy.

    Usage:
        executor = StrategyExecutor()
        outcomes = await executor.run(strategies)
        best = ResultSelector().select(outcomes)
    """

    async def run(self, strategies: list[Strategy]) -> list[StrategyOutcome]:
        return list(await asyncio.gather(*(self._settle(s) for s in strategies)))

    async def _settle(self, strategy: Strategy) -> StrategyOutcome:
        started = time.monotonic()
        logger.debug(f"[Executor] {strategy.name} started ({strategy.timeout}s deadline)")

        try:
            members = await asyncio.wait_for(strategy.run(), timeout=strategy.timeout)
        except asyncio.TimeoutError:
            logger.debug(f"[Executor] {strategy.name} timed out")
            return StrategyOutcome(
                strategy=strategy.name,
                error=StrategyTimeout(strategy.name, strategy.timeout),
                elapsed=time.monotonic() - started,
            )
        except Exception as e:
            logger.debug(f"[Executor] {strategy.name} failed: {e}")
            error = StrategyError(strategy.name, str(e) or type(e).__name__)
            error.__cause__ = e
            return StrategyOutcome(
                strategy=strategy.name,
                error=error,
                elapsed=time.monotonic() - started,
            )

        elapsed = time.monotonic() - started
        logger.debug(f"[Executor] {strategy.name} returned {len(members)} members ({elapsed:.2f}s)")
        return StrategyOutcome(strategy=strategy.name, members=members, elapsed=elapsed)


class ResultSelector:
    """Picks the largest non-empty member set; earlier strategies win ties."""

    def select(
        self,
        outcomes: list[StrategyOutcome],
        partition: str = "",
        filter_name: str | None = None,
    ) -> StrategyOutcome:
        best: StrategyOutcome | None = None
        for outcome in outcomes:
            if not outcome.succeeded or outcome.size == 0:
                continue
            if best is None or outcome.size > best.size:
                best = outcome

        if best is None:
            raise NoStrategySucceeded(partition, filter_name)

        logger.debug(f"[Selector] picked {best.strategy} ({best.size} members)")
        return best
