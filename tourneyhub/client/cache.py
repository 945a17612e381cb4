"""Client-side query cache with tagged invalidation and optimistic updates."""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional

from tourneyhub.client.tags import tags_for_key

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], Awaitable[Any]]


@dataclass
class CacheEntry:
    key: str
    tags: frozenset[str]
    data: Any = None
    fetched_at: Optional[float] = None
    stale: bool = True
    error: Optional[BaseException] = None
    version: int = 0


@dataclass
class OptimisticUpdate:
    """Handle returned by ``QueryCache.optimistic``; roll back if the mutation fails."""

    cache: "QueryCache"
    key: str
    previous: Any
    had_entry: bool
    version: int
    done: bool = field(default=False)

    def rollback(self) -> bool:
        """Restore the previous value unless something newer replaced ours."""

        if self.done:
            return False
        self.done = True
        entry = self.cache.entry(self.key)
        if entry is None or entry.version != self.version:
            return False
        if self.had_entry:
            entry.data = self.previous
            entry.version += 1
        else:
            self.cache.remove(self.key)
        return True

    def commit(self) -> None:
        self.done = True


class QueryCache:
    """Keyed store of query results, one per request path.

    Create one per client session and pass it in; there is no shared
    instance. ``invalidate`` only marks entries stale and schedules a refetch
    in the background, so mutations return as soon as the server answers.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        *,
        tagger: Callable[[str], frozenset[str]] = tags_for_key,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetcher = fetcher
        self._tagger = tagger
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()
        self._generation = 0

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def keys(self) -> list[str]:
        return list(self._entries)

    def entry(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def peek(self, key: str) -> Any:
        entry = self._entries.get(key)
        return entry.data if entry else None

    def set(self, key: str, data: Any) -> CacheEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key, tags=self._tagger(key))
            self._entries[key] = entry
        entry.data = data
        entry.fetched_at = self._clock()
        entry.stale = False
        entry.error = None
        entry.version += 1
        return entry

    def remove(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop every entry and abandon requests still in flight.

        Background refetches are cancelled. Results of fetches started before
        the clear are handed to whoever awaited them but never stored, so a
        request that finishes after logout cannot bring the old session's
        data back.
        """

        self._generation += 1
        for task in list(self._background):
            task.cancel()
        self._inflight.clear()
        self._entries.clear()

    async def get(self, key: str, *, force: bool = False) -> Any:
        """Cached data when fresh; otherwise fetch (sharing any request in flight)."""

        entry = self._entries.get(key)
        if entry is not None and not entry.stale and not force:
            return entry.data
        return await self._fetch(key)

    async def _fetch(self, key: str) -> Any:
        generation = self._generation
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetcher(key))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        data = await asyncio.shield(task)
        if generation == self._generation:
            self.set(key, data)
        return data

    def _forget(self, key: str, task: asyncio.Task) -> None:
        # A newer request for the same key may have replaced this one after a clear.
        if self._inflight.get(key) is task:
            del self._inflight[key]

    def invalidate(self, tags: Iterable[str], *, refetch: bool = True) -> list[str]:
        """Mark every entry sharing a tag stale; optionally refetch them in the background."""

        wanted = frozenset(tags)
        marked = []
        for key, entry in self._entries.items():
            if entry.tags & wanted:
                entry.stale = True
                marked.append(key)
        if marked and refetch:
            self._spawn(self.refetch_stale(marked))
        return marked

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def refetch_stale(self, keys: Optional[Iterable[str]] = None) -> dict[str, bool]:
        """Refetch stale entries concurrently.

        Each request is independent: a failure keeps that entry's previous data
        (still marked stale, with the error attached) and is logged.
        """

        targets = [
            key
            for key in (keys if keys is not None else list(self._entries))
            if key in self._entries and self._entries[key].stale
        ]
        if not targets:
            return {}
        results = await asyncio.gather(*(self._fetch(key) for key in targets), return_exceptions=True)
        outcome = {}
        for key, result in zip(targets, results):
            ok = not isinstance(result, BaseException)
            if not ok:
                entry = self._entries.get(key)
                if entry is not None:
                    entry.error = result
                logger.warning("Refetch of %s failed: %s", key, result)
            outcome[key] = ok
        return outcome

    async def settle(self) -> None:
        """Wait for background refetches started by ``invalidate``."""

        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def optimistic(self, key: str, updater: Callable[[Any], Any]) -> OptimisticUpdate:
        """Apply ``updater`` to a copy of the cached value right away."""

        entry = self._entries.get(key)
        had_entry = entry is not None
        previous = copy.deepcopy(entry.data) if entry is not None else None
        updated = updater(copy.deepcopy(previous))
        if entry is None:
            entry = CacheEntry(key=key, tags=self._tagger(key), stale=True)
            self._entries[key] = entry
        entry.data = updated
        entry.version += 1
        return OptimisticUpdate(
            cache=self,
            key=key,
            previous=previous,
            had_entry=had_entry,
            version=entry.version,
        )
