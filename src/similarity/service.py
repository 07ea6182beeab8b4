"""Lookup service combining cached, precomputed and on-demand rankings."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from constants import Constants
from common.cache import TTLCache
from common.logging_utils import extra_context, is_debug_enabled, Timer
from common.names import normalize_name
from index.precomputed import PrecomputedIndex
from similarity.engine import SimilarityEngine
from similarity.models import QueryOptions, RankedResult, Strategy

logger = logging.getLogger(__name__)


@dataclass
class LookupResult:
    similar: RankedResult
    cooccur: RankedResult

    def to_dict(self) -> Dict[str, Any]:
        return {
            "similar": [item.to_dict() for item in self.similar],
            "cooccur": [item.to_dict() for item in self.cooccur],
        }


class SimilarityService:
    """Answer ``{similar, cooccur}`` for a package as quickly as quality allows.

    Order of preference: in-memory result cache, precomputed index (when it
    passes the quality check), then an on-demand run that is progressively
    widened while it stays within the refinement budget. Co-occurrence is
    computed concurrently with similarity.
    """

    def __init__(
        self,
        engine: SimilarityEngine,
        precomputed: Optional[PrecomputedIndex] = None,
        cache: Optional[TTLCache] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.engine = engine
        self.precomputed = precomputed if precomputed is not None else engine.store.precomputed
        self.cache: TTLCache[LookupResult] = cache or TTLCache(
            max_entries=Constants.RESULT_CACHE_MAX_ENTRIES,
            default_ttl=Constants.RESULT_CACHE_TTL_SEC,
        )
        self._clock = clock

    @staticmethod
    def cache_key(package: str, limit: int) -> str:
        return f"pypi:{normalize_name(package)}::{limit}"

    def quality_ok(self, result: Optional[RankedResult]) -> bool:
        """Enough breadth and a reasonable top score."""
        if not result:
            return False
        quality = self.engine.config.quality
        return (
            len(result) >= quality.min_results_for_quality
            and result.top_score >= quality.min_top_score_for_quality
        )

    async def lookup(
        self,
        package: str,
        limit: int = Constants.DEFAULT_LIMIT,
        use_cache: bool = True,
        options: Optional[QueryOptions] = None,
    ) -> LookupResult:
        """Similar and co-occurring packages for ``package``.

        Raises:
            InvalidInput: propagated from the engine for malformed input.
        """
        SimilarityEngine.validate(package, limit)
        key = self.cache_key(package, limit)
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                if is_debug_enabled(logger):
                    logger.debug(
                        "Result cache hit",
                        extra=extra_context(
                            event="cache", component="service", action="lookup",
                            outcome="hit", package=package,
                        ),
                    )
                return cached

        initial = self.initial_options(options)
        with Timer() as t:
            cooccur_task = asyncio.ensure_future(
                self.engine.compute_cooccurrence(package, limit, initial)
            )
            try:
                similar = await self.similar(package, limit, use_cache, initial)
                cooccur = await cooccur_task
            finally:
                if not cooccur_task.done():
                    cooccur_task.cancel()

        result = LookupResult(similar=similar, cooccur=cooccur)
        logger.info(
            "lookup %s: %d similar (%s), %d co-occurring in %dms",
            normalize_name(package), len(similar), similar.strategy.value, len(cooccur), t.duration_ms(),
        )
        if use_cache:
            self.cache.set(key, result)
        return result

    def initial_options(self, options: Optional[QueryOptions] = None) -> QueryOptions:
        """Caller options with unset scan limits filled from the refinement start point."""
        refinement = self.engine.config.refinement
        options = options or QueryOptions()
        return QueryOptions(
            restrict_to_peer_group=options.restrict_to_peer_group,
            max_dependents_to_scan=options.max_dependents_to_scan
            or refinement.initial_max_dependents_to_scan,
            max_live_candidates=options.max_live_candidates
            or refinement.initial_max_live_candidates,
            top_search_limit=options.top_search_limit,
        )

    async def similar(
        self,
        package: str,
        limit: int,
        use_precomputed: bool = True,
        initial: Optional[QueryOptions] = None,
    ) -> RankedResult:
        """Precomputed list if good enough, else on-demand with progressive refinement."""
        initial = initial or self.initial_options()
        start = self._clock()
        budget_sec = self.engine.config.refinement.budget_ms / 1000.0

        best: Optional[RankedResult] = None
        if use_precomputed and self.precomputed is not None:
            query = normalize_name(package)
            entries = [
                s for s in await self.precomputed.get(package, limit) or ()
                if normalize_name(s.name) != query
            ]
            if entries:
                best = RankedResult(query, entries, Strategy.PRECOMPUTED, 0)

        if not self.quality_ok(best):
            best = await self.engine.compute_similar(package, limit, initial)

        if self.quality_ok(best):
            return best

        for step in self.engine.config.refinement.steps:
            if self._clock() - start > budget_sec:
                break
            step_options = QueryOptions(
                restrict_to_peer_group=initial.restrict_to_peer_group,
                max_dependents_to_scan=step.max_dependents_to_scan,
                max_live_candidates=step.max_live_candidates,
                top_search_limit=initial.top_search_limit,
            )
            candidate = await self.engine.compute_similar(package, limit, step_options)
            if candidate.top_score > best.top_score or len(candidate) > len(best):
                best = candidate
            if self.quality_ok(best):
                break
        return best
