"""
CacheWarmer - Background roster refresh ahead of demand.

A warm pass walks the full roster in small chunks with a pause between
chunks, then republishes the full-roster snapshot and one snapshot per
requested role. Passes repeat on an APScheduler interval job, one job per
partition; starting a partition again replaces its job.
"""

from dataclasses import dataclass

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from rosterbot.datasource.base import RosterDirectory, paginate
from rosterbot.datasource.models import filter_by_role
from rosterbot.services.cache import RosterCache
from rosterbot.utils import safe_func_wrapper


@dataclass
class WarmerConfig:
    """Warm pass pacing."""

    interval: int = 240  # seconds between passes
    chunk_size: int = 100
    max_chunks: int = 20
    chunk_delay: float = 0.2  # seconds between chunks


class CacheWarmer:
    """
    Keeps roster snapshots warm for a set of partitions.

    Usage:
        warmer = CacheWarmer(cache, directory)
        await warmer.start("guild-123", ["Raider", "Officer"])
        ...
        warmer.stop("guild-123")
    """

    def __init__(
        self,
        cache: RosterCache,
        directory: RosterDirectory,
        config: WarmerConfig | None = None,
        scheduler: AsyncIOScheduler | None = None,
    ):
        self._cache = cache
        self._directory = directory
        self.config = config or WarmerConfig()
        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler or AsyncIOScheduler()
        self._filters: dict[str, tuple[str, ...]] = {}
        self._generations: dict[str, int] = {}
        self._generation = 0

    @staticmethod
    def job_id(partition: str) -> str:
        return f"roster_warm:{partition}"

    async def start(self, partition: str, filters: list[str] | tuple[str, ...]) -> int:
        """Run one pass now, then every interval. Returns the first pass's size."""
        self.stop(partition)
        filters = tuple(filters)
        self._generation += 1
        generation = self._generation
        # stop() during the first pass clears this and cancels scheduling
        self._filters[partition] = filters
        self._generations[partition] = generation
        logger.info(f"[CacheWarming] starting for {partition} ({len(filters)} roles)")

        count = await self.warm_pass(partition, filters)

        if self._generations.get(partition) != generation:
            logger.info(f"[CacheWarming] {partition} stopped during first pass, not scheduling")
            return count

        self.scheduler.add_job(
            self._scheduled_pass,
            trigger="interval",
            seconds=self.config.interval,
            args=[partition, filters],
            id=self.job_id(partition),
            name=f"Roster warmer {partition}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        return count

    def stop(self, partition: str) -> bool:
        """Cancel the recurring pass for a partition."""
        self._generations.pop(partition, None)
        if self._filters.pop(partition, None) is None:
            return False
        try:
            self.scheduler.remove_job(self.job_id(partition))
        except JobLookupError:
            pass
        logger.info(f"[CacheWarming] stopped for {partition}")
        return True

    def warming_partitions(self) -> list[str]:
        return list(self._filters)

    def dispose(self) -> None:
        for partition in list(self._filters):
            self.stop(partition)
        if self._owns_scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    @safe_func_wrapper
    async def _scheduled_pass(self, partition: str, filters: tuple[str, ...]) -> int:
        return await self.warm_pass(partition, filters)

    async def warm_pass(self, partition: str, filters: tuple[str, ...] = ()) -> int:
        """Walk the roster and rewrite the snapshots. Returns members gathered."""
        cfg = self.config
        members = await paginate(
            self._directory,
            partition,
            limit=cfg.chunk_size * cfg.max_chunks,
            page_size=cfg.chunk_size,
            delay=cfg.chunk_delay,
            tolerate_errors=True,
        )
        if not members:
            logger.warning(f"[CacheWarming] no members gathered for {partition}, keeping old snapshots")
            return 0

        await self._cache.write(partition, None, members)
        for role in filters:
            role_members = filter_by_role(members, role)
            if role_members:
                await self._cache.write(partition, role, role_members)

        logger.info(
            f"[CacheWarming] {partition}: {len(members)} members, {len(filters)} roles refreshed"
        )
        return len(members)
