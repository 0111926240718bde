"""Tests for request coalescing and the logging wrapper."""

import asyncio

import pytest

from rosterbot.services.deduplicator import RequestDeduplicator
from rosterbot.utils import safe_func_wrapper


class TestRequestDeduplicator:
    """Tests for RequestDeduplicator."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_call(self) -> None:
        dedup = RequestDeduplicator()
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.02)
            return {"count": 3}

        results = await asyncio.gather(*(dedup.dedupe("guild-1", fetch) for _ in range(4)))

        assert calls == 1
        assert all(r is results[0] for r in results)
        assert dedup.to_dict() == {"started": 1, "coalesced": 3, "in_flight": 0}

    @pytest.mark.asyncio
    async def test_distinct_keys_run_separately(self) -> None:
        dedup = RequestDeduplicator()

        async def fetch():
            await asyncio.sleep(0.01)
            return 1

        await asyncio.gather(dedup.dedupe("a", fetch), dedup.dedupe("b", fetch))

        assert dedup.started == 2
        assert dedup.coalesced == 0

    @pytest.mark.asyncio
    async def test_errors_reach_every_waiter(self) -> None:
        dedup = RequestDeduplicator()

        async def fetch():
            await asyncio.sleep(0.01)
            raise LookupError("nothing")

        results = await asyncio.gather(
            dedup.dedupe("guild-1", fetch),
            dedup.dedupe("guild-1", fetch),
            return_exceptions=True,
        )

        assert all(isinstance(r, LookupError) for r in results)
        assert dedup.get_in_flight_count() == 0

    @pytest.mark.asyncio
    async def test_finished_key_starts_fresh(self) -> None:
        dedup = RequestDeduplicator()

        async def fetch():
            return 1

        await dedup.dedupe("guild-1", fetch)
        await dedup.dedupe("guild-1", fetch)

        assert dedup.started == 2

    @pytest.mark.asyncio
    async def test_cancel_all(self) -> None:
        dedup = RequestDeduplicator()

        async def fetch():
            await asyncio.sleep(10)

        waiter = asyncio.create_task(dedup.dedupe("guild-1", fetch))
        await asyncio.sleep(0)

        assert dedup.get_in_flight_count() == 1
        assert await dedup.cancel_all() == 1
        assert dedup.get_in_flight_count() == 0
        with pytest.raises(asyncio.CancelledError):
            await waiter


class TestSafeFuncWrapper:
    """Tests for safe_func_wrapper."""

    def test_sync_passthrough(self) -> None:
        @safe_func_wrapper
        def add(a, b=2):
            return a + b

        assert add(1) == 3
        assert add.__name__ == "add"

    @pytest.mark.asyncio
    async def test_async_reraises(self) -> None:
        @safe_func_wrapper
        async def explode(partition):
            raise RuntimeError(partition)

        with pytest.raises(RuntimeError, match="guild-1"):
            await explode("guild-1")
