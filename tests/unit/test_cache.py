"""Unit tests for the extraction cache and in-flight registry."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from filler_service.orchestration.cache import ExtractionCache
from filler_service.types import Extraction, ExtractionKey, ProviderId, ResultSource

KEY = ExtractionKey.for_file("/tmp/a.pdf")


class CountingWork:
    """Extraction work that blocks on a gate and counts invocations."""

    def __init__(self, document: dict | None = None, error: Exception | None = None) -> None:
        self.calls = 0
        self.gate = asyncio.Event()
        self.started = asyncio.Event()
        self.document = document if document is not None else {"name": "Ann"}
        self.error = error

    async def __call__(self) -> Extraction:
        self.calls += 1
        self.started.set()
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        return Extraction(document=self.document, provider=ProviderId.GEMINI)


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


class TestDedup:
    async def test_concurrent_callers_share_one_extraction(self):
        cache = ExtractionCache()
        work = CountingWork()
        tasks = [asyncio.create_task(cache.get_or_extract(KEY, work)) for _ in range(10)]
        await _settle()
        assert cache.is_inflight(KEY)

        work.gate.set()
        lookups = await asyncio.gather(*tasks)

        assert work.calls == 1
        assert all(lk.entry is lookups[0].entry for lk in lookups)
        assert all(lk.document == {"name": "Ann"} for lk in lookups)
        sources = [lk.source for lk in lookups]
        assert sources.count(ResultSource.FRESH) == 1
        assert sources.count(ResultSource.INFLIGHT) == 9
        assert not cache.is_inflight(KEY)

    async def test_different_keys_run_concurrently(self):
        cache = ExtractionCache()
        a, b = CountingWork({"a": 1}), CountingWork({"b": 2})
        ta = asyncio.create_task(cache.get_or_extract(ExtractionKey.for_file("/tmp/a.pdf"), a))
        tb = asyncio.create_task(cache.get_or_extract(ExtractionKey.for_file("/tmp/b.pdf"), b))
        await asyncio.wait_for(asyncio.gather(a.started.wait(), b.started.wait()), timeout=1)

        a.gate.set()
        b.gate.set()
        assert (await ta).document == {"a": 1}
        assert (await tb).document == {"b": 2}

    async def test_template_is_part_of_the_key(self):
        cache = ExtractionCache()
        plain, templated = CountingWork({"x": 1}), CountingWork({"y": 2})
        plain.gate.set()
        templated.gate.set()
        await cache.get_or_extract(ExtractionKey.for_file("/tmp/a.pdf"), plain)
        await cache.get_or_extract(ExtractionKey.for_file("/tmp/a.pdf", {"name": ""}), templated)
        assert plain.calls == templated.calls == 1


class TestCacheHit:
    async def test_second_call_is_served_from_cache(self):
        cache = ExtractionCache()
        work = CountingWork()
        work.gate.set()
        first = await cache.get_or_extract(KEY, work)
        second = await cache.get_or_extract(KEY, work)

        assert work.calls == 1
        assert first.source is ResultSource.FRESH
        assert second.source is ResultSource.CACHE
        assert second.entry is first.entry
        assert second.entry.produced_by is ProviderId.GEMINI

    async def test_caller_edits_do_not_leak_into_the_cache(self):
        cache = ExtractionCache()
        work = CountingWork({"name": "Ann", "tags": ["a"]})
        work.gate.set()

        first = await cache.get_or_extract(KEY, work)
        document = first.document
        document["name"] = "changed"
        document["tags"].append("b")
        work.document["name"] = "changed by producer"

        second = await cache.get_or_extract(KEY, work)
        assert second.source is ResultSource.CACHE
        assert second.document == {"name": "Ann", "tags": ["a"]}
        assert cache.peek(KEY).result == {"name": "Ann", "tags": ["a"]}

    async def test_equivalent_paths_share_an_entry(self, tmp_path):
        cache = ExtractionCache()
        work = CountingWork()
        work.gate.set()
        await cache.get_or_extract(ExtractionKey.for_file(str(tmp_path / "x" / ".." / "a.pdf")), work)
        lookup = await cache.get_or_extract(ExtractionKey.for_file(str(tmp_path / "a.pdf")), work)
        assert lookup.source is ResultSource.CACHE

    async def test_force_refresh_reruns_and_replaces(self):
        cache = ExtractionCache()
        first_work = CountingWork({"v": 1})
        first_work.gate.set()
        await cache.get_or_extract(KEY, first_work)

        second_work = CountingWork({"v": 2})
        second_work.gate.set()
        lookup = await cache.get_or_extract(KEY, second_work, force_refresh=True)

        assert lookup.source is ResultSource.FRESH
        assert lookup.document == {"v": 2}
        assert cache.peek(KEY).result == {"v": 2}

    async def test_force_refresh_attaches_to_running_work(self):
        cache = ExtractionCache()
        work = CountingWork()
        first = asyncio.create_task(cache.get_or_extract(KEY, work))
        await _settle()
        second = asyncio.create_task(cache.get_or_extract(KEY, work, force_refresh=True))
        await _settle()
        work.gate.set()

        assert (await second).source is ResultSource.INFLIGHT
        await first
        assert work.calls == 1

    async def test_ttl_expires_entries(self):
        now = [datetime(2026, 1, 1, tzinfo=timezone.utc)]
        cache = ExtractionCache(ttl_s=60, clock=lambda: now[0])
        work = CountingWork()
        work.gate.set()
        await cache.get_or_extract(KEY, work)

        now[0] += timedelta(seconds=30)
        assert (await cache.get_or_extract(KEY, work)).source is ResultSource.CACHE
        now[0] += timedelta(seconds=31)
        assert (await cache.get_or_extract(KEY, work)).source is ResultSource.FRESH
        assert work.calls == 2


class TestFailure:
    async def test_failure_reaches_every_waiter_and_is_not_cached(self):
        cache = ExtractionCache()
        work = CountingWork(error=RuntimeError("backend exploded"))
        tasks = [asyncio.create_task(cache.get_or_extract(KEY, work)) for _ in range(3)]
        await _settle()
        work.gate.set()

        results = await asyncio.gather(*tasks, return_exceptions=True)
        assert all(isinstance(r, RuntimeError) for r in results)
        assert results[0] is results[1] is results[2]
        assert cache.peek(KEY) is None
        assert not cache.is_inflight(KEY)

    async def test_next_call_after_failure_starts_fresh(self):
        cache = ExtractionCache()
        bad = CountingWork(error=RuntimeError("boom"))
        bad.gate.set()
        with pytest.raises(RuntimeError):
            await cache.get_or_extract(KEY, bad)

        good = CountingWork()
        good.gate.set()
        lookup = await cache.get_or_extract(KEY, good)
        assert lookup.source is ResultSource.FRESH
        assert good.calls == 1


class TestCancellation:
    async def test_cancelled_waiter_does_not_cancel_shared_work(self):
        cache = ExtractionCache()
        work = CountingWork()
        leaver = asyncio.create_task(cache.get_or_extract(KEY, work))
        stayer = asyncio.create_task(cache.get_or_extract(KEY, work))
        await _settle()

        leaver.cancel()
        with pytest.raises(asyncio.CancelledError):
            await leaver

        work.gate.set()
        lookup = await stayer
        assert lookup.document == {"name": "Ann"}
        assert cache.peek(KEY) is not None

    async def test_work_completes_when_every_caller_leaves(self):
        cache = ExtractionCache()
        work = CountingWork()
        only = asyncio.create_task(cache.get_or_extract(KEY, work))
        await _settle()
        only.cancel()
        with pytest.raises(asyncio.CancelledError):
            await only

        work.gate.set()
        await _settle()
        assert cache.peek(KEY) is not None


class TestMaintenance:
    async def test_invalidate_and_stats(self):
        cache = ExtractionCache()
        for name in ("a", "b"):
            work = CountingWork()
            work.gate.set()
            await cache.get_or_extract(ExtractionKey.for_file(f"/tmp/{name}.pdf"), work)
        assert cache.stats() == {"entries": 2, "inflight": 0}

        assert cache.invalidate(ExtractionKey.for_file("/tmp/a.pdf")) == 1
        assert cache.invalidate(ExtractionKey.for_file("/tmp/a.pdf")) == 0
        assert cache.invalidate() == 1
        assert cache.stats()["entries"] == 0

    async def test_invalidate_path_drops_every_template(self):
        cache = ExtractionCache()
        for template in (None, {"a": ""}, {"b": ""}):
            work = CountingWork()
            work.gate.set()
            await cache.get_or_extract(ExtractionKey.for_file("/tmp/a.pdf", template), work)
        assert cache.invalidate_path("/tmp/a.pdf") == 3
