"""
RequestDeduplicator - Coalesces concurrent identical roster requests.

While a strategy race for a given key is in flight, later callers with the
same key await that race instead of starting another one against the
upstream directory.
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


class RequestDeduplicator:
    """
    Shares one in-flight task between concurrent callers of the same key.

    Usage:
        dedup = RequestDeduplicator()
        members = await dedup.dedupe("guild-123:Raider", lambda: race())
    """

    def __init__(self) -> None:
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self.started = 0
        self.coalesced = 0

    async def dedupe(self, key: str, request_fn: Callable[[], Awaitable[T]]) -> T:
        task = self._in_flight.get(key)
        if task is None:
            self.started += 1
            task = asyncio.create_task(self._run(key, request_fn))
            self._in_flight[key] = task
        else:
            self.coalesced += 1
            logger.debug(f"[Deduplicator] joining in-flight request: {key}")

        # A cancelled caller must not cancel the race other callers share
        return await asyncio.shield(task)

    async def _run(self, key: str, request_fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await request_fn()
        finally:
            self._in_flight.pop(key, None)

    async def cancel_all(self) -> int:
        tasks = list(self._in_flight.values())
        self._in_flight.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.debug(f"[Deduplicator] cancelled {len(tasks)} in-flight requests")
        return len(tasks)

    def get_in_flight_count(self) -> int:
        return len(self._in_flight)

    def to_dict(self) -> dict[str, Any]:
        return {
            "started": self.started,
            "coalesced": self.coalesced,
            "in_flight": self.get_in_flight_count(),
        }
