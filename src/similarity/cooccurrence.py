"""Co-occurrence ranking: "packages that use X also use ..."."""
from __future__ import annotations

import logging
from collections import Counter
from typing import List, Tuple

from common.logging_utils import extra_context, is_debug_enabled, Timer
from common.names import normalize_all
from similarity.config import ResolvedOptions
from similarity.jaccard import round_score
from similarity.models import ScoreSource, SimilarityScore, Strategy
from similarity.stages import StageBudget, run_bounded
from similarity.strategies import (
    FallbackContext,
    NameTokenHeuristic,
    fetch_query_dependencies,
    forward_overlap_counts,
    rank,
)

logger = logging.getLogger(__name__)


async def cooccurrence_from_dependents(
    ctx: FallbackContext, options: ResolvedOptions
) -> Tuple[Strategy, List[SimilarityScore]]:
    """Tally the forward dependencies of sampled dependents of the query.

    Scores are ``count / successfully sampled dependents``.
    """
    config = ctx.config
    limits = config.limits
    timeouts = config.timeouts
    sample = sorted(ctx.base)[:options.max_dependents_to_scan]
    budget = StageBudget(
        "cooccurrence_scan",
        config.stage_timeout_ms(len(sample), timeouts.base_dependents_scan_ms, timeouts.max_dependents_scan_ms),
    )
    early_exit = ctx.limit * limits.cooccur_early_exit_multiplier
    tally: Counter = Counter()
    successes = 0
    batch_size = max(1, limits.dependents_batch_size)

    with Timer() as t:
        for start in range(0, len(sample), batch_size):
            result = await run_bounded(
                sample[start:start + batch_size],
                ctx.data_source.fetch_forward_dependencies,
                concurrency=config.concurrency.dependents_scan,
                per_item_timeout_ms=timeouts.per_fetch_ms,
                budget=budget,
            )
            for _, deps in result.values:
                successes += 1
                for dep in normalize_all(deps):
                    if dep != ctx.query:
                        tally[dep] += 1
            if len(tally) >= early_exit or result.timed_out:
                break

    success_rate = successes / len(sample) if sample else 0.0
    scanned = successes or len(sample)
    min_shared, min_jaccard = config.cooccur_sample_thresholds(scanned, ctx.base_size, success_rate)

    def score(name: str, count: int) -> SimilarityScore:
        ratio = round_score(count / scanned) if scanned else 0.0
        return SimilarityScore(name, ratio, count, ScoreSource.COOCCURRENCE)

    scored = [score(n, c) for n, c in tally.items()]
    if is_debug_enabled(logger):
        logger.debug(
            "Co-occurrence tally",
            extra=extra_context(
                event="stage",
                component="cooccurrence",
                action="tally",
                package=ctx.query,
                sampled=len(sample),
                successes=successes,
                distinct=len(tally),
                min_shared=min_shared,
                min_jaccard=min_jaccard,
                duration_ms=t.duration_ms(),
            ),
        )

    strict = [s for s in scored if s.shared_count >= min_shared and s.jaccard >= min_jaccard]
    if strict:
        return Strategy.COOCCURRENCE, rank(strict, ctx.limit)

    relaxed_floor = config.quality.relaxed_jaccard_very_small
    relaxed = [s for s in scored if s.shared_count >= 1 and s.jaccard >= relaxed_floor]
    if relaxed:
        return Strategy.COOCCURRENCE_RELAXED, rank(relaxed, ctx.limit)
    return Strategy.NONE, []


async def cooccurrence_from_forward_deps(ctx: FallbackContext) -> Tuple[Strategy, List[SimilarityScore]]:
    """Empty reverse set: catalog packages sharing the query's own dependencies.

    The query's direct dependencies that are in the catalog always come
    first, boosted to at least ``direct_dependency_boost_score``.
    """
    config = ctx.config
    quality = config.quality
    name_fallback = NameTokenHeuristic(max_popular=config.limits.max_popular_for_name_based)

    deps = await fetch_query_dependencies(ctx)
    if not deps:
        return Strategy.NAME_TOKEN, await name_fallback.run(ctx)

    query_deps = frozenset(deps)
    total = len(query_deps)
    catalog = ctx.store.catalog
    counts = {dep: 1 for dep in deps if dep in catalog}
    direct = frozenset(counts)

    to_check = min(
        len(catalog),
        ctx.limit * config.limits.cooccur_multiplier_per_limit,
        config.limits.max_packages_to_check_cooccur,
    )
    names = [n for n in catalog.top(to_check) if n != ctx.query and n not in query_deps]
    overlap = await forward_overlap_counts(
        ctx, query_deps, names, per_item_timeout_ms=config.timeouts.per_package_check_ms
    )
    for name, shared in overlap.items():
        if shared > counts.get(name, 0):
            counts[name] = shared

    min_ratio = config.cooccur_forward_ratio_threshold(total)
    scored: List[SimilarityScore] = []
    for name, shared in counts.items():
        ratio = shared / total
        if name in direct:
            scored.append(SimilarityScore(
                name, round_score(max(ratio, quality.direct_dependency_boost_score)),
                shared, ScoreSource.DIRECT_DEPENDENCY,
            ))
        elif shared >= 1 and round_score(ratio) >= min_ratio:
            scored.append(SimilarityScore(name, round_score(ratio), shared, ScoreSource.FORWARD_OVERLAP))
    if scored:
        scored.sort(key=lambda s: (s.name not in direct, -s.shared_count, -s.jaccard, s.name))
        return Strategy.FORWARD_OVERLAP, scored[:ctx.limit]

    relaxed = [
        SimilarityScore(name, round_score(shared / total), shared, ScoreSource.FORWARD_OVERLAP)
        for name, shared in counts.items()
        if shared >= 1 and shared / total >= quality.relaxed_jaccard_minimum
    ]
    if relaxed:
        relaxed.sort(key=lambda s: (-s.shared_count, -s.jaccard, s.name))
        return Strategy.COOCCURRENCE_RELAXED, relaxed[:ctx.limit]

    return Strategy.NAME_TOKEN, await name_fallback.run(ctx)
