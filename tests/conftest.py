"""Shared fixtures and fakes for the roster fetch tests."""

from __future__ import annotations

import asyncio
import time

import pytest

from rosterbot.datasource.base import RosterDirectory
from rosterbot.datasource.models import Member, MemberSet, filter_by_role
from rosterbot.services.cache import MemoryTTLStore, RosterCache
from rosterbot.services.errors import CacheUnavailable, DirectoryError


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_members(count: int, roles: tuple[str, ...] = ("Raider",), start: int = 0) -> MemberSet:
    """Build members with sortable ids."""
    return {
        f"{i:06d}": Member(id=f"{i:06d}", display_name=f"member-{i}", roles=list(roles))
        for i in range(start, start + count)
    }


class FakeDirectory(RosterDirectory):
    """In-memory roster directory with optional latency and failure injection."""

    def __init__(
        self,
        members: MemberSet | None = None,
        delay: float = 0.0,
        fail: bool = False,
        fail_after_pages: int | None = None,
        index: MemberSet | None = None,
    ) -> None:
        self.members = sorted((members or {}).values(), key=lambda m: m.id)
        self.delay = delay
        self.fail = fail
        self.fail_after_pages = fail_after_pages
        self.index = index
        self.page_calls: list[tuple[str, str | None, int]] = []
        self.direct_calls = 0

    @property
    def service_id(self) -> str:
        return "fake"

    def is_configured(self) -> bool:
        return True

    async def fetch_page(self, partition: str, after: str | None, limit: int) -> list[Member]:
        self.page_calls.append((partition, after, limit))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise DirectoryError("upstream unavailable", self.service_id)
        if self.fail_after_pages is not None and len(self.page_calls) > self.fail_after_pages:
            raise DirectoryError("upstream unavailable", self.service_id)
        remaining = [m for m in self.members if after is None or m.id > after]
        return remaining[:limit]

    async def fetch_by_filter_direct(self, partition: str, filter_name: str | None) -> MemberSet | None:
        self.direct_calls += 1
        if self.index is None:
            return None
        return filter_by_role(self.index, filter_name)


class BrokenStore:
    """TTL store whose every call fails."""

    async def get(self, key: str) -> str | None:
        raise CacheUnavailable("store down")

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        raise CacheUnavailable("store down")


class RecordingStore(MemoryTTLStore):
    """Memory store that remembers the TTLs it was asked to use."""

    def __init__(self, clock=time.time) -> None:
        super().__init__(clock)
        self.ttls: dict[str, int] = {}

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        self.ttls[key] = ttl_seconds
        await super().set_with_ttl(key, value, ttl_seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeClock:
    return FakeClock(now=100.0)


@pytest.fixture
def store(clock: FakeClock) -> MemoryTTLStore:
    return MemoryTTLStore(clock=clock)


@pytest.fixture
def cache(store: MemoryTTLStore, clock: FakeClock) -> RosterCache:
    return RosterCache(store, clock=clock)
