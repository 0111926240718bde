"""
RosterCache - Roster snapshots over an external TTL store.

Features:
- Pluggable TTL store (in-process or Redis)
- Longer TTL for full-roster snapshots than for role-filtered ones
- Staleness computed lazily at read time
- Stale snapshots stay retrievable for the fallback path until the
  store itself expires them (ttl * stale_retention)
- Store failures degrade to cache misses, never abort a request
"""

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import redis.asyncio as aioredis
from loguru import logger
from pydantic import BaseModel, ValidationError
from redis.exceptions import RedisError

from rosterbot.datasource.models import MemberSet
from rosterbot.services.errors import CacheUnavailable


class CacheEntry(BaseModel):
    """Point-in-time roster snapshot stored in the TTL store."""

    members: MemberSet
    captured_at: float  # unix seconds
    count: int
    partition: str
    filter: str | None = None

    def age(self, now: float) -> float:
        return now - self.captured_at


class TTLStore(Protocol):
    """External key-value store with per-key expiry."""

    async def get(self, key: str) -> str | None: ...

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None: ...


class MemoryTTLStore:
    """In-process TTL store. Expired keys are dropped when next read."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._data: dict[str, tuple[str, float]] = {}
        self._clock = clock
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> str | None:
        async with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            value, expires_at = item
            if self._clock() >= expires_at:
                del self._data[key]
                return None
            return value

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        async with self._lock:
            self._data[key] = (value, self._clock() + ttl_seconds)

    def __len__(self) -> int:
        return len(self._data)


class RedisTTLStore:
    """Redis-backed TTL store (GET / SETEX)."""

    def __init__(self, redis_url: str, client: Any | None = None):
        self._client = client or aioredis.Redis.from_url(
            redis_url, decode_responses=True
        )

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(key)
        except RedisError as e:
            raise CacheUnavailable(f"Redis GET {key} failed: {e}") from e

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._client.setex(key, ttl_seconds, value)
        except RedisError as e:
            raise CacheUnavailable(f"Redis SETEX {key} failed: {e}") from e

    async def close(self) -> None:
        await self._client.aclose()


@dataclass
class RosterCacheConfig:
    """TTLs for roster snapshots."""

    full_ttl: int = 1800  # seconds, unfiltered roster
    filtered_ttl: int = 600  # seconds, role-filtered roster
    stale_retention: float = 2.0  # store keeps entries for ttl * this


@dataclass
class RosterCacheStats:
    """Roster cache statistics."""

    hits: int = 0
    misses: int = 0
    stale_hits: int = 0
    writes: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.stale_hits + self.misses
        if total == 0:
            return 0.0
        return (self.hits + self.stale_hits) / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "stale_hits": self.stale_hits,
            "writes": self.writes,
            "errors": self.errors,
            "hit_rate": f"{self.hit_rate:.2%}",
        }


class RosterCache:
    """
    Read/write roster snapshots keyed by partition and optional role filter.

    Usage:
        cache = RosterCache(MemoryTTLStore())

        entry = await cache.read("guild-123", "Raider")
        if entry is None:
            members = await fetch()
            await cache.write("guild-123", "Raider", members)

        # Fallback path only: ignore the TTL
        entry = await cache.read("guild-123", "Raider", allow_stale=True)
    """

    def __init__(
        self,
        store: TTLStore,
        config: RosterCacheConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self.config = config or RosterCacheConfig()
        self._clock = clock
        self._stats = RosterCacheStats()

    @staticmethod
    def key_for(partition: str, filter_name: str | None) -> str:
        if filter_name:
            return f"role_members:{partition}:{filter_name}"
        return f"all_members:{partition}"

    def ttl_for(self, filter_name: str | None) -> int:
        return self.config.filtered_ttl if filter_name else self.config.full_ttl

    async def read(
        self,
        partition: str,
        filter_name: str | None = None,
        allow_stale: bool = False,
    ) -> CacheEntry | None:
        """
        Get a snapshot.

        Returns None on miss, on store failure, on an empty snapshot, and on
        a stale snapshot unless allow_stale is set.
        """
        key = self.key_for(partition, filter_name)
        try:
            raw = await self._store.get(key)
        except CacheUnavailable as e:
            self._stats.errors += 1
            logger.warning(f"[RosterCache] read failed, treating as miss: {e}")
            return None

        if raw is None:
            self._stats.misses += 1
            logger.debug(f"[RosterCache] MISS: {key}")
            return None

        try:
            entry = CacheEntry.model_validate_json(raw)
        except ValidationError as e:
            self._stats.errors += 1
            logger.warning(f"[RosterCache] corrupt entry {key}, ignoring: {e}")
            return None

        if entry.count == 0:
            self._stats.misses += 1
            return None

        age = entry.age(self._clock())
        if age > self.ttl_for(filter_name):
            if not allow_stale:
                self._stats.misses += 1
                logger.debug(f"[RosterCache] EXPIRED: {key} ({age:.0f}s old)")
                return None
            self._stats.stale_hits += 1
            logger.info(
                f"[RosterCache] STALE HIT: {key}, {entry.count} members ({age:.0f}s old)"
            )
            return entry

        self._stats.hits += 1
        logger.debug(f"[RosterCache] HIT: {key}, {entry.count} members ({age:.0f}s old)")
        return entry

    async def write(
        self,
        partition: str,
        filter_name: str | None,
        members: MemberSet,
    ) -> bool:
        """Overwrite the snapshot for (partition, filter). Returns False on failure."""
        key = self.key_for(partition, filter_name)
        ttl = self.ttl_for(filter_name)
        entry = CacheEntry(
            members=members,
            captured_at=self._clock(),
            count=len(members),
            partition=partition,
            filter=filter_name,
        )
        store_ttl = math.ceil(ttl * self.config.stale_retention)

        try:
            await self._store.set_with_ttl(key, entry.model_dump_json(), store_ttl)
        except CacheUnavailable as e:
            self._stats.errors += 1
            logger.warning(f"[RosterCache] write failed for {key}: {e}")
            return False

        self._stats.writes += 1
        logger.debug(f"[RosterCache] SET: {key}, {len(members)} members (TTL: {ttl}s)")
        return True

    def get_stats(self) -> RosterCacheStats:
        return self._stats
