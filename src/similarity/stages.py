"""Stage budgets and bounded concurrent fan-out for the ranking pipeline.

A stage fans a coroutine out over many items with a concurrency cap, a
per-item timeout and a wall-clock budget. Individual failures are counted
and dropped; when the budget runs out the in-flight work is cancelled and
whatever finished is returned.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Iterable, List, Tuple, TypeVar

from common.logging_utils import extra_context, is_debug_enabled
from common.rate_limit import ConcurrencyLimiter
from similarity.errors import DataUnavailable, DepsimError, StageTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

_FAILED = object()


class StageBudget:
    """Wall-clock deadline shared by every batch of one stage."""

    def __init__(self, stage: str, budget_ms: int, clock: Callable[[], float] = time.monotonic):
        self.stage = stage
        self.budget_ms = budget_ms
        self._clock = clock
        self._deadline = clock() + budget_ms / 1000.0

    def remaining(self) -> float:
        """Seconds left, never negative."""
        return max(0.0, self._deadline - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def exceeded(self) -> StageTimeout:
        return StageTimeout(self.stage, self.budget_ms)


@dataclass
class StageResult(Generic[T, R]):
    """Successful ``(item, value)`` pairs in input order."""
    values: List[Tuple[T, R]] = field(default_factory=list)
    failures: int = 0
    timed_out: bool = False

    @property
    def succeeded(self) -> int:
        return len(self.values)


async def run_bounded(
    items: Iterable[T],
    fn: Callable[[T], Awaitable[R]],
    *,
    concurrency: int,
    per_item_timeout_ms: int,
    budget: StageBudget,
) -> StageResult[T, R]:
    """Run ``fn`` over ``items`` under ``budget``; never raises for item failures."""
    items = list(items)
    if not items:
        return StageResult()
    if budget.expired:
        logger.warning("%s; skipping %d items", budget.exceeded(), len(items))
        return StageResult(timed_out=True)

    limiter = ConcurrencyLimiter(max(1, concurrency))
    per_item_timeout = per_item_timeout_ms / 1000.0

    async def guarded(item: T):
        try:
            return await asyncio.wait_for(fn(item), per_item_timeout)
        except asyncio.TimeoutError:
            reason = f"timed out after {per_item_timeout_ms}ms"
        except DepsimError as exc:
            reason = str(exc)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            reason = f"{type(exc).__name__}: {exc}"
        if is_debug_enabled(logger):
            logger.debug(
                "Stage item failed",
                extra=extra_context(
                    event="stage_item",
                    component="stages",
                    action=budget.stage,
                    outcome="failed",
                    item=str(item),
                    reason=reason,
                ),
            )
        return _FAILED

    tasks = [asyncio.ensure_future(limiter.run(guarded, item)) for item in items]
    try:
        done, pending = await asyncio.wait(tasks, timeout=budget.remaining())
    finally:
        stragglers = [t for t in tasks if not t.done()]
        for task in stragglers:
            task.cancel()
        if stragglers:
            await asyncio.gather(*stragglers, return_exceptions=True)

    result: StageResult[T, R] = StageResult(timed_out=bool(pending))
    for item, task in zip(items, tasks):
        if task not in done or task.cancelled():
            continue
        value = task.result()
        if value is _FAILED:
            result.failures += 1
        else:
            result.values.append((item, value))

    if pending:
        logger.warning(
            "%s; continuing with %d of %d results",
            budget.exceeded(), result.succeeded, len(items),
        )
    elif is_debug_enabled(logger):
        logger.debug(
            "Stage batch complete",
            extra=extra_context(
                event="stage_batch",
                component="stages",
                action=budget.stage,
                outcome="success",
                items=len(items),
                failures=result.failures,
            ),
        )
    return result


async def fetch_within(fetch: Awaitable[R], timeout_ms: int, package: str, what: str) -> R:
    """Await a single fetch for the query itself under ``timeout_ms``.

    Raises:
        DataUnavailable: the fetch did not finish in time.
    """
    try:
        return await asyncio.wait_for(fetch, timeout_ms / 1000.0)
    except asyncio.TimeoutError as exc:
        logger.warning("Fetching %s for %s timed out after %dms", what, package, timeout_ms)
        raise DataUnavailable(package, f"{what} timed out after {timeout_ms}ms") from exc
