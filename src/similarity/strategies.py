"""Fallback strategies tried, in order, when the main pass ranks nothing.

Each strategy is a small object with a ``strategy`` tag and an async
``run(context)`` returning scores (possibly empty). ``run_chain`` returns
the first non-empty answer.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from common.logging_utils import extra_context, is_debug_enabled
from common.names import name_tokens, normalize_all, normalize_name
from index.store import IndexStore
from registry.pypi.client import PackageDataSource
from similarity.config import EngineConfig
from similarity.errors import DataUnavailable
from similarity.jaccard import jaccard, overlap_ratio, round_score
from similarity.models import ScoreSource, SimilarityScore, Strategy
from similarity.stages import StageBudget, fetch_within, run_bounded

logger = logging.getLogger(__name__)


@dataclass
class FallbackContext:
    """Everything a strategy may look at for one query."""
    query: str
    limit: int
    base: FrozenSet[str]
    config: EngineConfig
    store: IndexStore
    data_source: PackageDataSource
    candidates: Sequence[str] = ()
    resolved: Mapping[str, FrozenSet[str]] = field(default_factory=dict)

    @property
    def base_size(self) -> int:
        return len(self.base)


def rank(items: List[SimilarityScore], limit: int) -> List[SimilarityScore]:
    return sorted(items, key=SimilarityScore.sort_key)[:limit]


async def fetch_query_dependencies(ctx: FallbackContext) -> List[str]:
    """Forward dependencies of the query; empty when they cannot be fetched."""
    try:
        deps = await fetch_within(
            ctx.data_source.fetch_forward_dependencies(ctx.query),
            ctx.config.timeouts.per_fetch_ms, ctx.query, "forward dependencies",
        )
    except DataUnavailable as exc:
        logger.debug("Forward dependencies unavailable for %s: %s", ctx.query, exc)
        return []
    return [d for d in normalize_all(deps) if d != ctx.query]


async def forward_overlap_counts(
    ctx: FallbackContext,
    query_deps: FrozenSet[str],
    names: Sequence[str],
    *,
    per_item_timeout_ms: int,
) -> Dict[str, int]:
    """Shared forward-dependency counts between the query and each of ``names``.

    Names sharing nothing are omitted.
    """
    timeouts = ctx.config.timeouts
    budget = StageBudget(
        "forward_deps",
        ctx.config.stage_timeout_ms(len(names), timeouts.base_forward_deps_ms, timeouts.max_forward_deps_ms),
    )
    result = await run_bounded(
        names,
        ctx.data_source.fetch_forward_dependencies,
        concurrency=ctx.config.concurrency.forward_deps_check,
        per_item_timeout_ms=per_item_timeout_ms,
        budget=budget,
    )
    counts: Dict[str, int] = {}
    for name, deps in result.values:
        shared = overlap_ratio(query_deps, frozenset(normalize_all(deps))).shared
        if shared > 0:
            counts[name] = shared
    return counts


class ForwardDependencyOverlap:
    """Empty reverse set: rank catalog packages by shared forward dependencies.

    Score is ``|D(q) & D(c)| / |D(q)|``; asymmetric and tagged as such.
    """

    strategy = Strategy.FORWARD_OVERLAP

    async def run(self, ctx: FallbackContext) -> List[SimilarityScore]:
        deps = await fetch_query_dependencies(ctx)
        if not deps:
            return []
        query_deps = frozenset(deps)
        limits = ctx.config.limits
        to_check = min(
            len(ctx.store.catalog),
            ctx.limit * limits.candidates_multiplier_per_limit,
            limits.max_packages_to_check_forward_deps,
        )
        names = [n for n in ctx.store.catalog.top(to_check) if n != ctx.query]
        counts = await forward_overlap_counts(
            ctx, query_deps, names, per_item_timeout_ms=ctx.config.timeouts.per_fetch_ms
        )
        total = len(query_deps)
        min_ratio = ctx.config.forward_ratio_threshold(total)
        scored = []
        for name, shared in counts.items():
            ratio = round_score(shared / total)
            if shared >= 1 and ratio >= min_ratio:
                scored.append(SimilarityScore(name, ratio, shared, ScoreSource.FORWARD_OVERLAP))
        scored.sort(key=lambda s: (-s.shared_count, -s.jaccard, s.name))
        return scored[:ctx.limit]


class RelaxedRescan:
    """Re-score already resolved candidates against a looser threshold."""

    strategy = Strategy.RELAXED_RESCAN

    async def run(self, ctx: FallbackContext) -> List[SimilarityScore]:
        threshold = ctx.config.relaxed_jaccard_threshold(ctx.base_size)
        cap = ctx.config.limits.max_fallback_candidates
        reverse = ctx.store.reverse
        scored = []
        for name in list(ctx.candidates)[:cap]:
            if name == ctx.query:
                continue
            deps = ctx.resolved.get(name) or reverse.cached(name)
            if not deps:
                continue
            result = jaccard(ctx.base, deps)
            if result.score >= threshold and result.shared > 0:
                scored.append(SimilarityScore(name, round_score(result.score), result.shared))
        return rank(scored, ctx.limit)


class NameTokenHeuristic:
    """Last resort: popular packages whose names share the query's leading token.

    Every match gets the same placeholder score.

    Args:
        max_popular: how many catalog entries to scan (None for all).
        small_base_only: only run when ``0 < |B| < BaseSizeThresholds.small``.
        use_reverse_hint: also accept catalog packages whose indexed
            dependents (all shards merged) include the query.
    """

    strategy = Strategy.NAME_TOKEN

    def __init__(
        self,
        max_popular: Optional[int] = None,
        small_base_only: bool = False,
        use_reverse_hint: bool = False,
    ):
        self.max_popular = max_popular
        self.small_base_only = small_base_only
        self.use_reverse_hint = use_reverse_hint

    @staticmethod
    def matches(query: str, candidate: str) -> bool:
        query_main = (name_tokens(query) or [query])[0]
        cand_main = (name_tokens(candidate) or [candidate])[0]
        return cand_main == query_main or query_main in candidate or cand_main in query

    async def run(self, ctx: FallbackContext) -> List[SimilarityScore]:
        if self.small_base_only and not 0 < ctx.base_size < ctx.config.base_size.small:
            return []
        popular = ctx.store.catalog.names
        if self.max_popular is not None:
            popular = popular[:self.max_popular]
        placeholder = ctx.config.quality.name_based_fallback_score
        query = normalize_name(ctx.query)
        merged = await ctx.store.reverse.load_all() if self.use_reverse_hint else {}
        found: List[str] = []
        for name in popular:
            if name == query or name in found:
                continue
            if self.matches(query, name):
                found.append(name)
            elif self.use_reverse_hint:
                dependents = merged.get(name)
                if dependents and query in dependents:
                    found.append(name)
            if len(found) >= ctx.limit:
                break
        return [SimilarityScore(n, placeholder, 0, ScoreSource.NAME_TOKEN) for n in found[:ctx.limit]]


async def run_chain(strategies, ctx: FallbackContext) -> Tuple[Strategy, List[SimilarityScore]]:
    """First strategy returning a non-empty list wins."""
    for strategy in strategies:
        items = [s for s in await strategy.run(ctx) if s.name != ctx.query]
        if is_debug_enabled(logger):
            logger.debug(
                "Fallback strategy finished",
                extra=extra_context(
                    event="fallback",
                    component="strategies",
                    action=strategy.strategy.value,
                    outcome="hit" if items else "empty",
                    package=ctx.query,
                    results=len(items),
                ),
            )
        if items:
            return strategy.strategy, items
    return Strategy.NONE, []
