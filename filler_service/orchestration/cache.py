"""Extraction cache with an in-flight registry.

Guarantees at most one running extraction per ``ExtractionKey``. Concurrent
callers for the same key attach to the running work and receive the same
result or the same exception. Failures are never cached.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from filler_service.types import (
    CacheEntry,
    Document,
    Extraction,
    ExtractionKey,
    InFlightHandle,
    ResultSource,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheLookup:
    entry: CacheEntry
    source: ResultSource

    @property
    def document(self) -> Document:
        """A private copy; editing it never changes the cached entry."""
        return copy.deepcopy(self.entry.result)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExtractionCache:
    def __init__(
        self,
        *,
        ttl_s: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._entries: dict[ExtractionKey, CacheEntry] = {}
        self._inflight: dict[ExtractionKey, InFlightHandle] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._lock = asyncio.Lock()
        self._ttl_s = ttl_s or None
        self._clock = clock

    async def get_or_extract(
        self,
        key: ExtractionKey,
        work: Callable[[], Awaitable[Extraction]],
        *,
        force_refresh: bool = False,
    ) -> CacheLookup:
        """Return the cached result, attach to running work, or start it.

        A caller that is cancelled while waiting does not cancel the shared
        work; the other waiters still get its result.
        """
        async with self._lock:
            if not force_refresh:
                entry = self._fresh_entry(key)
                if entry is not None:
                    logger.debug("Cache hit for %s", key)
                    return CacheLookup(entry, ResultSource.CACHE)

            handle = self._inflight.get(key)
            if handle is not None:
                logger.info("Attaching to in-flight extraction for %s", key)
                source = ResultSource.INFLIGHT
            else:
                handle = InFlightHandle(key, asyncio.get_running_loop().create_future())
                handle.future.add_done_callback(_consume_exception)
                self._inflight[key] = handle
                task = asyncio.create_task(self._run(handle, work))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
                source = ResultSource.FRESH

        entry = await asyncio.shield(handle.future)
        return CacheLookup(entry, source)

    async def _run(self, handle: InFlightHandle, work: Callable[[], Awaitable[Extraction]]) -> None:
        key = handle.key
        try:
            extraction = await work()
        except asyncio.CancelledError:
            self._release(handle)
            handle.future.cancel()
            raise
        except Exception as e:
            logger.warning("Extraction failed for %s: %s", key, e)
            self._release(handle)
            handle.future.set_exception(e)
            return

        entry = CacheEntry(
            result=copy.deepcopy(extraction.document),
            produced_at=self._clock(),
            produced_by=extraction.provider,
        )
        # Publish before resolving so a caller arriving after settlement sees
        # the entry rather than a stale handle.
        self._entries[key] = entry
        self._release(handle)
        handle.future.set_result(entry)
        logger.info("Cached extraction for %s (by %s)", key, extraction.provider.value)

    def _release(self, handle: InFlightHandle) -> None:
        if self._inflight.get(handle.key) is handle:
            del self._inflight[handle.key]

    def _fresh_entry(self, key: ExtractionKey) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._ttl_s is not None:
            age = (self._clock() - entry.produced_at).total_seconds()
            if age > self._ttl_s:
                del self._entries[key]
                return None
        return entry

    def peek(self, key: ExtractionKey) -> CacheEntry | None:
        return self._fresh_entry(key)

    def is_inflight(self, key: ExtractionKey) -> bool:
        return key in self._inflight

    def invalidate(self, key: ExtractionKey | None = None) -> int:
        """Drop one entry (or every entry when ``key`` is None). Running work is untouched."""
        if key is None:
            count = len(self._entries)
            self._entries.clear()
            return count
        return 1 if self._entries.pop(key, None) is not None else 0

    def invalidate_path(self, path: str) -> int:
        """Drop every entry for ``path`` regardless of template."""
        target = ExtractionKey.for_file(path).path
        stale = [k for k in self._entries if k.path == target]
        for k in stale:
            del self._entries[k]
        return len(stale)

    def stats(self) -> dict[str, Any]:
        return {"entries": len(self._entries), "inflight": len(self._inflight)}


def _consume_exception(future: asyncio.Future[CacheEntry]) -> None:
    # Mark the exception retrieved when every waiter has gone away.
    if not future.cancelled():
        future.exception()
