"""
RosterService - Resilient member roster fetching.

Combines:
- CircuitBreakerRegistry to stop live fetches for a failing partition
- StrategyExecutor + ResultSelector to race all strategies and keep the
  most complete answer
- RosterCache for snapshots and the stale fallback
- RequestDeduplicator so concurrent identical requests share one race
- CacheWarmer for background refresh
"""

import time
from typing import Any, Callable

from loguru import logger

from rosterbot.datasource.base import RosterDirectory
from rosterbot.datasource.models import MemberSet
from rosterbot.services.cache import (
    MemoryTTLStore,
    RedisTTLStore,
    RosterCache,
    RosterCacheConfig,
    TTLStore,
)
from rosterbot.services.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
)
from rosterbot.services.deduplicator import RequestDeduplicator
from rosterbot.services.errors import NoStrategySucceeded
from rosterbot.services.executor import ResultSelector, StrategyExecutor
from rosterbot.services.metrics import FetchMetrics
from rosterbot.services.strategies import (
    FetchConfig,
    FetchRequest,
    StrategyFactory,
    StrategyKind,
)
from rosterbot.services.warmer import CacheWarmer, WarmerConfig
from rosterbot.settings import Settings, global_settings


class RosterService:
    """
    Member roster access with bounded latency and graceful degradation.

    Usage:
        service = RosterService(directory, MemoryTTLStore())

        members = await service.get_members("guild-123", "Raider")
        await service.start_cache_warming("guild-123", ["Raider"])
        ...
        await service.aclose()
    """

    def __init__(
        self,
        directory: RosterDirectory,
        store: TTLStore,
        breaker_config: CircuitBreakerConfig | None = None,
        cache_config: RosterCacheConfig | None = None,
        fetch_config: FetchConfig | None = None,
        warmer_config: WarmerConfig | None = None,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._directory = directory
        self._monotonic = monotonic
        self._metrics = FetchMetrics()

        self._cache = RosterCache(store, cache_config, clock=clock)
        self._breakers = CircuitBreakerRegistry(breaker_config, clock=monotonic)
        self._strategies = StrategyFactory(
            self._cache, directory, fetch_config, on_cache_hit=self._count_cache_hit
        )
        self._executor = StrategyExecutor()
        self._selector = ResultSelector()
        self._deduplicator = RequestDeduplicator()
        self._warmer = CacheWarmer(self._cache, directory, warmer_config)

    @property
    def cache(self) -> RosterCache:
        return self._cache

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    @property
    def warmer(self) -> CacheWarmer:
        return self._warmer

    def _count_cache_hit(self) -> None:
        self._metrics.cache_hits += 1

    async def get_members(
        self,
        partition: str,
        filter_name: str | None = None,
        force_refresh: bool = False,
    ) -> MemberSet:
        """
        Get the members of a partition, optionally only those holding a role.

        Args:
            partition: Partition (guild) id
            filter_name: Role name, None for the whole roster
            force_refresh: Skip the partial fetch strategy

        Returns:
            Member id -> Member, possibly served from a stale snapshot

        Raises:
            NoStrategySucceeded: If no live strategy and no snapshot produced members
            ValueError: If filter_name is an empty string
        """
        if filter_name == "":
            raise ValueError("filter_name must be a role name or None")
        self._metrics.total_requests += 1

        if self._breakers.is_open(partition):
            logger.warning(f"[Roster] circuit open for {partition}, serving from cache only")
            return await self._fallback(partition, filter_name)

        request = FetchRequest(partition, filter_name, force_refresh)
        key = repr((partition, filter_name, force_refresh))
        try:
            return await self._deduplicator.dedupe(key, lambda: self._race(request))
        except NoStrategySucceeded:
            return await self._fallback(partition, filter_name)

    async def _race(self, request: FetchRequest) -> MemberSet:
        started = self._monotonic()
        outcomes = await self._executor.run(self._strategies.build(request))
        self._metrics.timeouts += sum(1 for o in outcomes if o.timed_out)

        try:
            best = self._selector.select(outcomes, request.partition, request.filter_name)
        except NoStrategySucceeded:
            self._metrics.failures += 1
            self._breakers.record_failure(request.partition)
            failed = ", ".join(f"{o.strategy}: {o.error or 'empty'}" for o in outcomes)
            logger.error(f"[Roster] all strategies failed for {request.partition} ({failed})")
            raise

        elapsed_ms = (self._monotonic() - started) * 1000
        if best.strategy != StrategyKind.CACHE.value:
            await self._cache.write(request.partition, request.filter_name, best.members)
        self._breakers.record_success(request.partition)
        self._metrics.record_success(
            best.strategy,
            elapsed_ms,
            self._strategies.config.slow_query_threshold * 1000,
        )
        logger.info(
            f"[Roster] {request.partition}: {best.size} members via {best.strategy} "
            f"({elapsed_ms:.0f}ms)"
        )
        return best.members

    async def _fallback(self, partition: str, filter_name: str | None) -> MemberSet:
        entry = await self._cache.read(partition, filter_name, allow_stale=True)
        if entry is None:
            raise NoStrategySucceeded(partition, filter_name)
        self._metrics.cache_hits += 1
        self._metrics.fallbacks += 1
        logger.warning(f"[Roster] serving cached snapshot for {partition}: {entry.count} members")
        return entry.members

    # Cache warming

    async def start_cache_warming(self, partition: str, filters: list[str]) -> int:
        return await self._warmer.start(partition, filters)

    def stop_cache_warming(self, partition: str) -> bool:
        return self._warmer.stop(partition)

    # Metrics and status

    def get_metrics(self) -> FetchMetrics:
        """Read-only snapshot of the fetch counters."""
        return self._metrics.copy()

    def reset_metrics(self) -> None:
        self._metrics = FetchMetrics()
        logger.info("[Roster] metrics reset")

    def get_breaker_status(self) -> dict[str, dict[str, Any]]:
        return self._breakers.get_all_status()

    def reset_breaker(self, partition: str) -> bool:
        return self._breakers.reset(partition)

    def get_health_status(self) -> dict[str, Any]:
        return {
            "metrics": self._metrics.to_dict(),
            "cache": self._cache.get_stats().to_dict(),
            "circuit_breakers": self._breakers.get_all_status(),
            "open_circuits": self._breakers.get_open_partitions(),
            "deduplicator": self._deduplicator.to_dict(),
            "warming": self._warmer.warming_partitions(),
        }

    def dispose(self) -> None:
        """Stop every warmer. Call at process shutdown."""
        self._warmer.dispose()
        logger.info("[Roster] disposed")

    async def aclose(self) -> None:
        """Dispose and cancel any strategy races still in flight."""
        self.dispose()
        cancelled = await self._deduplicator.cancel_all()
        if cancelled:
            logger.info(f"[Roster] cancelled {cancelled} in-flight requests")


def create_store(settings: Settings | None = None) -> TTLStore:
    settings = settings or global_settings
    if settings.redis_url:
        return RedisTTLStore(settings.redis_url)
    logger.warning("REDIS_URL not set, using in-process roster cache")
    return MemoryTTLStore()


def create_roster_service(
    directory: RosterDirectory,
    settings: Settings | None = None,
    store: TTLStore | None = None,
) -> RosterService:
    """Build a RosterService from settings."""
    s = settings or global_settings
    return RosterService(
        directory,
        store if store is not None else create_store(s),
        breaker_config=CircuitBreakerConfig(
            failure_threshold=s.breaker_failure_threshold,
            cooldown=s.breaker_cooldown_seconds,
            success_threshold=s.breaker_success_threshold,
        ),
        cache_config=RosterCacheConfig(
            full_ttl=s.roster_cache_ttl,
            filtered_ttl=s.roster_filtered_cache_ttl,
            stale_retention=s.roster_stale_retention,
        ),
        fetch_config=FetchConfig(
            timeouts={
                StrategyKind.CACHE: s.roster_cache_timeout,
                StrategyKind.DIRECT_INDEX: s.roster_partial_timeout,
                StrategyKind.PARTIAL_FETCH: s.roster_partial_timeout,
                StrategyKind.FULL_FETCH: s.roster_full_timeout,
            },
            partial_limit=s.roster_partial_limit,
            full_limit=s.roster_full_limit,
            slow_query_threshold=s.roster_slow_query_seconds,
        ),
        warmer_config=WarmerConfig(
            interval=s.warm_interval_seconds,
            chunk_size=s.roster_chunk_size,
            max_chunks=s.roster_max_chunks,
            chunk_delay=s.roster_chunk_delay,
        ),
    )
