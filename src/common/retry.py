"""Exponential backoff with jitter for transient fetch failures."""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from common.logging_utils import extra_context, is_debug_enabled

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


class RetryableError(Exception):
    """Raised by an attempt to request another try (429/5xx, reset, timeout)."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RetriesExhausted(Exception):
    """All attempts failed with retryable errors."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


def is_retryable_status(status: int) -> bool:
    return status == 429 or status >= 500


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff tunables; delays are in milliseconds."""

    max_attempts: int = 5
    initial_delay_ms: int = 1000
    max_delay_ms: int = 10000
    jitter_ms: int = 500

    def delay_ms(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Delay after failed ``attempt`` (1-based): capped exponential plus jitter."""
        base = min(self.initial_delay_ms * (2 ** (attempt - 1)), self.max_delay_ms)
        jitter = (rng or random).uniform(0, self.jitter_ms) if self.jitter_ms > 0 else 0.0
        return base + jitter


async def retry_async(
    attempt_fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    before_retry: Optional[Callable[[], Awaitable[object]]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    context: str = "fetch",
) -> T:
    """Call ``attempt_fn`` until it succeeds or ``policy.max_attempts`` is reached.

    Only ``RetryableError`` triggers another attempt; every other exception
    propagates immediately. ``before_retry`` runs after each backoff sleep
    (the data source re-applies its rate limit there).
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await attempt_fn()
        except RetryableError as exc:
            if attempt >= policy.max_attempts:
                raise RetriesExhausted(attempt, exc) from exc
            delay = policy.delay_ms(attempt)
            if is_debug_enabled(logger):
                logger.debug(
                    "Retrying after transient failure",
                    extra=extra_context(
                        event="retry",
                        component="retry",
                        context=context,
                        attempt=attempt,
                        status_code=exc.status,
                        delay_ms=int(delay),
                    ),
                )
            await sleep(delay / 1000.0)
            if before_retry is not None:
                await before_retry()
