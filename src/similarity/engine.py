"""Similarity and co-occurrence ranking engine.

``compute_similar`` ranks packages whose reverse-dependent sets overlap the
query's (Jaccard), and ``compute_cooccurrence`` ranks packages that the
query's dependents also depend on. Both run under hard candidate and time
caps and degrade to smaller answers instead of failing; only
``InvalidInput`` escapes.
"""
from __future__ import annotations

import logging
from array import array
from typing import Dict, FrozenSet, List, Optional

from common.logging_utils import extra_context, is_debug_enabled, Timer
from common.names import is_valid_name, normalize_all, normalize_name
from index.catalog import UI_FRAMEWORKS, is_ui_framework
from index.store import IndexStore
from registry.pypi.client import PackageDataSource
from similarity.candidates import CandidateGenerator
from similarity.config import EngineConfig, ResolvedOptions
from similarity.cooccurrence import cooccurrence_from_dependents, cooccurrence_from_forward_deps
from similarity.errors import DataUnavailable, InvalidInput
from similarity.jaccard import bitset_jaccard, can_meet_threshold, jaccard, round_score
from similarity.models import (
    Candidate,
    QueryOptions,
    RankedResult,
    ScoreSource,
    SimilarityScore,
    Strategy,
)
from similarity.stages import StageBudget, fetch_within, run_bounded
from similarity.strategies import (
    FallbackContext,
    ForwardDependencyOverlap,
    NameTokenHeuristic,
    RelaxedRescan,
    run_chain,
)
from similarity.topk import BoundedTopKSelector

logger = logging.getLogger(__name__)


class _ScoringPass:
    """Mutable state of one scoring pass over the candidate list."""

    def __init__(self, limit: int, max_live: int):
        self.selector = BoundedTopKSelector(limit)
        self.resolved: Dict[str, FrozenSet[str]] = {}
        self.max_live = max_live
        self.live_fetches = 0
        self.checked = 0


class SimilarityEngine:
    """Ranks related PyPI packages.

    Args:
        store: On-disk indexes, built once at startup.
        data_source: Live registry access for cache misses.
        config: Tunables; defaults when omitted.
    """

    def __init__(
        self,
        store: IndexStore,
        data_source: PackageDataSource,
        config: Optional[EngineConfig] = None,
    ):
        self.store = store
        self.data_source = data_source
        self.config = config or EngineConfig()
        self._candidates = CandidateGenerator(store, data_source, self.config)

    # ----- public operations --------------------------------------------------

    async def compute_similar(
        self, package: str, limit: int, options: Optional[QueryOptions] = None
    ) -> RankedResult:
        """Top ``limit`` packages by reverse-dependent Jaccard similarity.

        Raises:
            InvalidInput: empty or malformed name, or ``limit < 1``.
        """
        query = self.validate(package, limit)
        resolved = self.config.resolve_options(options)
        with Timer() as t:
            base = await self.reverse_dependents(query)
            if not base:
                ctx = self._context(query, limit, base)
                strategy, items = await run_chain(
                    [ForwardDependencyOverlap(), NameTokenHeuristic(use_reverse_hint=True)], ctx
                )
                result = RankedResult(query, items, strategy, 0)
            else:
                result = await self._similar_from_base(query, limit, base, resolved)
        self._log_result("compute_similar", result, t.duration_ms())
        return result

    async def compute_cooccurrence(
        self, package: str, limit: int, options: Optional[QueryOptions] = None
    ) -> RankedResult:
        """Top ``limit`` packages most often depended on alongside the query.

        Raises:
            InvalidInput: empty or malformed name, or ``limit < 1``.
        """
        query = self.validate(package, limit)
        resolved = self.config.resolve_options(options)
        with Timer() as t:
            base = await self.reverse_dependents(query)
            ctx = self._context(query, limit, base)
            if base:
                strategy, items = await cooccurrence_from_dependents(ctx, resolved)
            else:
                strategy, items = await cooccurrence_from_forward_deps(ctx)
            items = [s for s in items if s.name != query][:limit]
            result = RankedResult(query, items, strategy if items else Strategy.NONE, len(base))
        self._log_result("compute_cooccurrence", result, t.duration_ms())
        return result

    async def compute_similar_peer_only(self, package: str, limit: int) -> RankedResult:
        """Score only the curated UI/web/async peer group when the query belongs to it."""
        query = self.validate(package, limit)
        if not is_ui_framework(query):
            return await self.compute_similar(query, limit)
        base = await self.reverse_dependents(query)
        if not base:
            return RankedResult(query, [], Strategy.NONE, 0)
        selector = BoundedTopKSelector(limit)
        for peer in sorted(UI_FRAMEWORKS):
            if peer == query:
                continue
            deps = await self.store.reverse.lookup(peer)
            if not deps:
                continue
            scored = jaccard(base, deps)
            if scored.score > 0:
                selector.push(SimilarityScore(peer, round_score(scored.score), scored.shared))
        items = selector.drain()
        return RankedResult(query, items, Strategy.PEER_GROUP if items else Strategy.NONE, len(base))

    async def reverse_dependents(self, package: str) -> FrozenSet[str]:
        """Index lookup, then a best-effort live fetch; empty when neither has data."""
        query = normalize_name(package)
        found = await self.store.reverse.lookup(query)
        if found:
            return found
        try:
            live = await fetch_within(
                self.data_source.fetch_reverse_dependents(query),
                self.config.timeouts.per_fetch_ms, query, "reverse dependents",
            )
        except DataUnavailable as exc:
            logger.debug("Live reverse dependents unavailable for %s: %s", query, exc)
            return frozenset()
        return frozenset(d for d in normalize_all(live) if d != query)

    # ----- internals -------------------------------------------------------------

    @staticmethod
    def validate(package: str, limit: int) -> str:
        """Return the normalized query or raise ``InvalidInput``."""
        if not isinstance(package, str) or not package.strip():
            raise InvalidInput("package name must be a non-empty string")
        if not is_valid_name(package):
            raise InvalidInput(f"invalid package name: {package!r}")
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise InvalidInput(f"limit must be a positive integer, got {limit!r}")
        return normalize_name(package)

    def _context(self, query: str, limit: int, base: FrozenSet[str], **kwargs) -> FallbackContext:
        return FallbackContext(
            query=query,
            limit=limit,
            base=base,
            config=self.config,
            store=self.store,
            data_source=self.data_source,
            **kwargs,
        )

    async def _similar_from_base(
        self, query: str, limit: int, base: FrozenSet[str], options: ResolvedOptions
    ) -> RankedResult:
        candidates = await self._candidates.generate(query, base, options)
        base_ids = await self.store.bitset.dependent_ids(query)
        state = _ScoringPass(limit, options.max_live_candidates)
        await self._score(query, base, base_ids, candidates, state)

        items = [s for s in state.selector.drain() if s.name != query]
        if items:
            return RankedResult(query, items, Strategy.REVERSE_DEPENDENTS, len(base))

        ctx = self._context(
            query, limit, base,
            candidates=[c.name for c in candidates],
            resolved=state.resolved,
        )
        strategy, items = await run_chain(
            [
                RelaxedRescan(),
                NameTokenHeuristic(
                    max_popular=self.config.limits.max_popular_for_name_based,
                    small_base_only=True,
                ),
            ],
            ctx,
        )
        if not items and candidates:
            logger.warning(
                "No similar packages found for %s despite %d candidates (base size %d)",
                query, len(candidates), len(base),
            )
        return RankedResult(query, items, strategy, len(base))

    async def _score(
        self,
        query: str,
        base: FrozenSet[str],
        base_ids: array,
        candidates: List[Candidate],
        state: _ScoringPass,
    ) -> None:
        config = self.config
        base_size = len(base)
        min_jaccard = config.jaccard_threshold(base_size)
        min_shared = config.shared_threshold(base_size)
        min_bitset = config.bitset_jaccard_threshold(base_size)
        early = config.early_termination
        min_checked = state.selector.capacity * early.min_checked_multiplier
        timeouts = config.timeouts
        budget = StageBudget(
            "candidates_scan",
            config.stage_timeout_ms(
                len(candidates), timeouts.base_candidates_scan_ms, timeouts.max_candidates_scan_ms
            ),
        )

        async def evaluate(candidate: Candidate) -> None:
            name = candidate.name
            if name == query:
                return
            deps = await self.store.reverse.lookup(name)
            if not deps and len(base_ids) > 0:
                cand_ids = await self.store.bitset.dependent_ids(name)
                if len(cand_ids) > 0:
                    score = bitset_jaccard(base_ids, cand_ids)
                    state.checked += 1
                    if score >= min_bitset:
                        state.selector.push(
                            SimilarityScore(name, round_score(score), 0, ScoreSource.BITSET)
                        )
                        return
            if not deps and state.live_fetches < state.max_live:
                state.live_fetches += 1
                live = await self.data_source.fetch_reverse_dependents(name)
                deps = frozenset(d for d in normalize_all(live) if d != name)
            if not deps:
                return
            state.resolved[name] = deps
            if not can_meet_threshold(len(deps), base_size, min_jaccard):
                return
            scored = jaccard(base, deps)
            state.checked += 1
            if scored.score >= min_jaccard and scored.shared >= min_shared:
                state.selector.push(SimilarityScore(name, round_score(scored.score), scored.shared))

        batch_size = max(1, early.batch_size)
        for start in range(0, len(candidates), batch_size):
            result = await run_bounded(
                candidates[start:start + batch_size],
                evaluate,
                concurrency=config.concurrency.candidates_evaluation,
                per_item_timeout_ms=timeouts.per_candidate_ms,
                budget=budget,
            )
            if result.timed_out:
                break
            selector = state.selector
            if (
                state.checked >= min_checked
                and selector.full
                and selector.min_score is not None
                and selector.min_score >= early.min_score_for_early_exit
            ):
                if is_debug_enabled(logger):
                    logger.debug(
                        "Early exit from scoring pass",
                        extra=extra_context(
                            event="stage",
                            component="engine",
                            action="early_exit",
                            package=query,
                            checked=state.checked,
                            min_score=selector.min_score,
                        ),
                    )
                break

    @staticmethod
    def _log_result(operation: str, result: RankedResult, duration_ms: int) -> None:
        logger.info(
            "%s %s: %d results via %s (base %d) in %dms",
            operation, result.query, len(result), result.strategy.value, result.base_size, duration_ms,
        )
        if is_debug_enabled(logger):
            logger.debug(
                "Ranking complete",
                extra=extra_context(
                    event="ranking",
                    component="engine",
                    action=operation,
                    outcome="success" if result else "empty",
                    package=result.query,
                    results=len(result),
                    strategy=result.strategy.value,
                    base_size=result.base_size,
                    duration_ms=duration_ms,
                ),
            )
