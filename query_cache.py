"""Keyed query cache shared by the dashboard screens.

Keys are tuples whose first element is the resource tag, e.g. ``("doctors",)``
or ``("appointments", doctor_id)``. Concurrent fetches for the same key share
one in-flight future. Stale entries are returned as-is while a background
refresh runs.

Invalidating a tag bumps its generation. A fetch that started under an older
generation still completes for its caller, but its result is never cached.
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

QueryKey = Tuple[Hashable, ...]


@dataclass
class CacheEntry:
    data: Any
    fetched_at: float


class QueryCache:
    def __init__(self, stale_after: float = 30.0, max_workers: int = 4, clock: Callable[[], float] = time.monotonic):
        self.stale_after = stale_after
        self.clock = clock
        self._entries: Dict[QueryKey, CacheEntry] = {}
        self._inflight: Dict[QueryKey, Future] = {}
        self._generations: Dict[Hashable, int] = {}
        self._epoch = 0
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="query")

    def peek(self, key: QueryKey) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def is_stale(self, entry: CacheEntry) -> bool:
        return self.clock() - entry.fetched_at >= self.stale_after

    def _generation(self, key: QueryKey) -> Tuple[int, int]:
        # Caller holds the lock
        return self._epoch, self._generations.get(key[0] if key else None, 0)

    def _store(self, key: QueryKey, data: Any, generation: Tuple[int, int]) -> None:
        # Caller holds the lock
        if self._generation(key) == generation:
            self._entries[key] = CacheEntry(data, self.clock())

    def prefetch(self, key: QueryKey, fetcher: Callable[[], Any]) -> Future:
        """Start a fetch for key, or join the one already running."""
        future, _ = self._start(key, fetcher)
        return future

    def _start(self, key: QueryKey, fetcher: Callable[[], Any]) -> Tuple[Future, Tuple[int, int]]:
        with self._lock:
            generation = self._generation(key)
            future = self._inflight.get(key)
            if future is not None and not future.done():
                return future, generation
            future = self._executor.submit(fetcher)
            self._inflight[key] = future
        future.add_done_callback(lambda f: self._settle(key, f, generation))
        return future, generation

    def _settle(self, key: QueryKey, future: Future, generation: Tuple[int, int]) -> None:
        with self._lock:
            # A superseded fetch must not overwrite newer data
            if self._inflight.get(key) is not future:
                return
            del self._inflight[key]
            if not future.cancelled() and future.exception() is None:
                self._store(key, future.result(), generation)

    def get(self, key: QueryKey, fetcher: Callable[[], Any]) -> Any:
        """Return cached data for key, fetching on a miss.

        Fetch errors propagate to the caller and nothing is cached.
        """
        entry = self.peek(key)
        if entry is not None:
            if self.is_stale(entry):
                self.prefetch(key, fetcher)
            return entry.data
        future, generation = self._start(key, fetcher)
        data = future.result()
        # The done-callback may still be pending on the worker thread
        with self._lock:
            self._store(key, data, generation)
        return data

    def invalidate(self, tag: Hashable) -> int:
        """Drop every entry whose key starts with tag. Returns how many went."""
        with self._lock:
            self._generations[tag] = self._generations.get(tag, 0) + 1
            for k in [k for k in self._inflight if k and k[0] == tag]:
                del self._inflight[k]
            doomed = [k for k in self._entries if k and k[0] == tag]
            for k in doomed:
                del self._entries[k]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._epoch += 1
            self._inflight.clear()
            self._entries.clear()

    def close(self) -> None:
        self._executor.shutdown(wait=True)
