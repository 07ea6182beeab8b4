"""Load-once cache with in-flight de-duplication for on-disk shards."""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, Generic, Hashable, Optional, TypeVar

T = TypeVar("T")


class SingleFlightLoader(Generic[T]):
    """Memoize async loads by key; concurrent first callers share one task.

    Results are kept for the lifetime of the loader and never evicted.
    A load that raises is not cached, so the next caller retries it.
    """

    def __init__(self) -> None:
        self._loaded: Dict[Hashable, T] = {}
        self._inflight: Dict[Hashable, asyncio.Task] = {}

    def peek(self, key: Hashable) -> Optional[T]:
        """Already loaded value, without triggering I/O."""
        return self._loaded.get(key)

    def is_loaded(self, key: Hashable) -> bool:
        return key in self._loaded

    async def get(self, key: Hashable, load: Callable[[], Awaitable[T]]) -> T:
        if key in self._loaded:
            return self._loaded[key]
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run(key, load))
            self._inflight[key] = task
        # Shield so one cancelled waiter does not cancel the shared load.
        return await asyncio.shield(task)

    async def _run(self, key: Hashable, load: Callable[[], Awaitable[T]]) -> T:
        try:
            value = await load()
            self._loaded[key] = value
            return value
        finally:
            self._inflight.pop(key, None)
