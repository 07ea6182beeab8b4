"""Concurrency and rate limiting primitives for outbound fetches.

Both limiters are asyncio-native and must be used from a single event loop.
"""
from __future__ import annotations

import asyncio
import collections
import logging
import time
import urllib.parse
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, TypeVar

from common.logging_utils import extra_context, is_debug_enabled

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DOMAIN = "default"


class ConcurrencyLimiter:
    """Bound the number of in-flight tasks; excess callers wait in FIFO order.

    Usage::

        limiter = ConcurrencyLimiter(8)
        async with limiter:
            await fetch()

        result = await limiter.run(fetch, name)
    """

    def __init__(self, concurrency: int):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._concurrency = concurrency
        self._active = 0
        self._waiters: Deque[asyncio.Future] = collections.deque()

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def active(self) -> int:
        """Number of tasks currently holding a slot."""
        return self._active

    @property
    def waiting(self) -> int:
        """Number of tasks queued for a slot."""
        return sum(1 for fut in self._waiters if not fut.done())

    async def acquire(self) -> None:
        """Take a slot, queueing behind earlier callers when saturated."""
        if self._active < self._concurrency and not self.waiting:
            self._active += 1
            return
        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        try:
            await fut
        except asyncio.CancelledError:
            # A slot handed to us just before cancellation goes to the next waiter.
            if fut.done() and not fut.cancelled():
                self.release()
            raise

    def release(self) -> None:
        """Return a slot, handing it directly to the oldest live waiter."""
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                fut.set_result(None)
                return
        self._active -= 1

    async def run(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run ``fn(*args, **kwargs)`` inside a slot."""
        async with self:
            return await fn(*args, **kwargs)

    async def __aenter__(self) -> "ConcurrencyLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


class RateLimiter:
    """Space dispatches to the same domain by at least ``min_interval_ms``.

    The last-dispatch timestamp of each domain is read and updated under a
    per-domain lock, so concurrent callers for one domain serialize while
    different domains proceed independently.
    """

    def __init__(
        self,
        min_interval_ms: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._interval = max(0, min_interval_ms) / 1000.0
        self._clock = clock
        self._sleep = sleep
        self._last_dispatch: Dict[str, float] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def min_interval_ms(self) -> int:
        return int(self._interval * 1000)

    @staticmethod
    def domain_for(url: str) -> str:
        """Hostname of ``url``; ``default`` when it cannot be parsed."""
        try:
            host = urllib.parse.urlparse(url).hostname
        except ValueError:
            host = None
        return host.lower() if host else DEFAULT_DOMAIN

    def last_dispatch(self, domain: str) -> Optional[float]:
        return self._last_dispatch.get(domain)

    async def acquire(self, domain: str = DEFAULT_DOMAIN) -> float:
        """Wait until ``domain`` may be hit again; returns seconds waited."""
        lock = self._locks.get(domain)
        if lock is None:
            lock = self._locks[domain] = asyncio.Lock()
        async with lock:
            waited = 0.0
            last = self._last_dispatch.get(domain)
            if last is not None:
                elapsed = self._clock() - last
                if elapsed < self._interval:
                    waited = self._interval - elapsed
                    if is_debug_enabled(logger):
                        logger.debug(
                            "Rate limit delay",
                            extra=extra_context(
                                event="rate_limit",
                                component="rate_limiter",
                                target=domain,
                                delay_ms=int(waited * 1000),
                            ),
                        )
                    await self._sleep(waited)
            self._last_dispatch[domain] = self._clock()
            return waited
