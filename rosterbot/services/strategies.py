"""
Roster fetch strategies.

Each strategy is one independently-timed way of producing a member set.
The set for a request is built from a constant kind table plus the request's
parameters, so the timing and selection logic never sees ad hoc closures.
"""

from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Awaitable, Callable

from loguru import logger

from rosterbot.datasource.base import RosterDirectory, paginate
from rosterbot.datasource.models import MemberSet, filter_by_role
from rosterbot.services.cache import RosterCache


class StrategyKind(str, Enum):
    """Strategy kinds in priority order."""

    CACHE = "cache"
    DIRECT_INDEX = "direct_index"
    PARTIAL_FETCH = "partial_fetch"
    FULL_FETCH = "full_fetch"


# seconds
DEFAULT_TIMEOUTS: dict[StrategyKind, float] = {
    StrategyKind.CACHE: 1.0,
    StrategyKind.DIRECT_INDEX: 5.0,
    StrategyKind.PARTIAL_FETCH: 5.0,
    StrategyKind.FULL_FETCH: 8.0,
}


@dataclass
class FetchConfig:
    """Deadlines and member caps for live strategies."""

    timeouts: dict[StrategyKind, float] | None = None
    partial_limit: int = 500
    full_limit: int = 2000
    page_size: int = 1000
    slow_query_threshold: float = 5.0  # seconds

    def timeout_for(self, kind: StrategyKind) -> float:
        if self.timeouts and kind in self.timeouts:
            return self.timeouts[kind]
        return DEFAULT_TIMEOUTS[kind]


@dataclass(frozen=True)
class FetchRequest:
    """Parameters captured by every strategy built for one request."""

    partition: str
    filter_name: str | None = None
    force_refresh: bool = False


@dataclass(frozen=True)
class Strategy:
    """A named unit of work with its own deadline."""

    kind: StrategyKind
    timeout: float
    run: Callable[[], Awaitable[MemberSet]]

    @property
    def name(self) -> str:
        return self.kind.value


class StrategyFactory:
    """
    Builds the per-request strategy list.

    Usage:
        factory = StrategyFactory(cache, directory)
        strategies = factory.build(FetchRequest("guild-123", "Raider"))
    """

    def __init__(
        self,
        cache: RosterCache,
        directory: RosterDirectory,
        config: FetchConfig | None = None,
        on_cache_hit: Callable[[], None] | None = None,
    ):
        self._cache = cache
        self._directory = directory
        self.config = config or FetchConfig()
        self._on_cache_hit = on_cache_hit

    def kinds_for(self, request: FetchRequest) -> list[StrategyKind]:
        kinds = list(StrategyKind)
        if request.force_refresh:
            kinds.remove(StrategyKind.PARTIAL_FETCH)
        return kinds

    def build(self, request: FetchRequest) -> list[Strategy]:
        runners = {
            StrategyKind.CACHE: self._run_cache,
            StrategyKind.DIRECT_INDEX: self._run_direct_index,
            StrategyKind.PARTIAL_FETCH: self._run_partial_fetch,
            StrategyKind.FULL_FETCH: self._run_full_fetch,
        }
        return [
            Strategy(
                kind=kind,
                timeout=self.config.timeout_for(kind),
                run=partial(runners[kind], request),
            )
            for kind in self.kinds_for(request)
        ]

    async def _run_cache(self, request: FetchRequest) -> MemberSet:
        entry = await self._cache.read(request.partition, request.filter_name)
        if entry is None:
            raise LookupError("no fresh snapshot cached")
        if self._on_cache_hit:
            self._on_cache_hit()
        return entry.members

    async def _run_direct_index(self, request: FetchRequest) -> MemberSet:
        members = await self._directory.fetch_by_filter_direct(
            request.partition, request.filter_name
        )
        if not members:
            # Index is cold for this filter, backfill it with one partial walk
            logger.debug(f"[DirectIndex] backfilling index for {request.partition}")
            await paginate(
                self._directory,
                request.partition,
                limit=self.config.partial_limit,
                page_size=self.config.page_size,
            )
            members = await self._directory.fetch_by_filter_direct(
                request.partition, request.filter_name
            )
        if members is None:
            raise LookupError(f"'{request.filter_name}' is not indexed")
        return members

    async def _run_partial_fetch(self, request: FetchRequest) -> MemberSet:
        members = await paginate(
            self._directory,
            request.partition,
            limit=self.config.partial_limit,
            page_size=self.config.page_size,
        )
        return filter_by_role(members, request.filter_name)

    async def _run_full_fetch(self, request: FetchRequest) -> MemberSet:
        members = await paginate(
            self._directory,
            request.partition,
            limit=self.config.full_limit,
            page_size=self.config.page_size,
        )
        return filter_by_role(members, request.filter_name)
