"""Candidate generation and prioritization for ``compute_similar``."""
from __future__ import annotations

import logging
from typing import Dict, FrozenSet, List

from common.logging_utils import extra_context, is_debug_enabled, Timer
from common.names import normalize_all, normalize_name
from index.catalog import peer_group_members
from index.store import IndexStore
from registry.pypi.client import PackageDataSource
from similarity.config import EngineConfig, ResolvedOptions
from similarity.models import Candidate, Priority
from similarity.stages import StageBudget, run_bounded

logger = logging.getLogger(__name__)


class CandidateGenerator:
    """Builds the ordered candidate list the scoring pass walks through.

    Candidates come from the curated catalog (or the query's peer group)
    plus the forward dependencies of a sample of the query's dependents.
    """

    def __init__(self, store: IndexStore, data_source: PackageDataSource, config: EngineConfig):
        self._store = store
        self._source = data_source
        self._config = config

    def curated(self, query: str, options: ResolvedOptions) -> List[str]:
        if options.restrict_to_peer_group:
            peers = peer_group_members(query)
            if peers:
                return peers
        return [n for n in self._store.catalog.top(options.top_search_limit) if n != query]

    def _add(self, pool: Dict[str, Candidate], query: str, name: str, curated: bool = False) -> bool:
        """Add ``name`` unless it is the query or already present; False once full."""
        ceiling = self._config.limits.max_candidates_to_collect
        if len(pool) >= ceiling:
            return False
        if name != query and name not in pool:
            curated = curated or name in self._store.catalog
            priority = Priority.CURATED if curated else Priority.EXPANDED
            pool[name] = Candidate(name=name, priority=priority)
        return len(pool) < ceiling

    async def expand(
        self,
        query: str,
        base: FrozenSet[str],
        options: ResolvedOptions,
        pool: Dict[str, Candidate],
    ) -> int:
        """Add forward dependencies of sampled dependents; returns dependents scanned."""
        limits = self._config.limits
        timeouts = self._config.timeouts
        sample = sorted(base)[:options.max_dependents_to_scan]
        budget = StageBudget(
            "dependents_scan",
            self._config.stage_timeout_ms(
                len(sample), timeouts.base_dependents_scan_ms, timeouts.max_dependents_scan_ms
            ),
        )
        scanned = 0
        batch_size = max(1, limits.dependents_batch_size)
        for start in range(0, len(sample), batch_size):
            batch = sample[start:start + batch_size]
            result = await run_bounded(
                batch,
                self._source.fetch_forward_dependencies,
                concurrency=self._config.concurrency.dependents_scan,
                per_item_timeout_ms=timeouts.per_fetch_ms,
                budget=budget,
            )
            scanned += result.succeeded
            for _, deps in result.values:
                for dep in normalize_all(deps):
                    if not self._add(pool, query, dep):
                        return scanned
            if result.timed_out:
                break
        return scanned

    def prioritize(self, pool: Dict[str, Candidate], base_size: int) -> List[Candidate]:
        """Curated first, then known sizes (closest to the base first) before unknown, then name."""
        reverse = self._store.reverse
        for candidate in pool.values():
            candidate.size_hint = reverse.size_hint(candidate.name)

        def key(candidate: Candidate):
            size = candidate.size_hint
            known = size is not None and size > 0
            return (
                candidate.priority.value,
                0 if known else 1,
                abs(size - base_size) if known else 0,
                candidate.name,
            )

        return sorted(pool.values(), key=key)

    async def generate(
        self, query: str, base: FrozenSet[str], options: ResolvedOptions
    ) -> List[Candidate]:
        """Ordered candidates, capped at ``max_candidates_to_evaluate``."""
        query = normalize_name(query)
        pool: Dict[str, Candidate] = {}
        with Timer() as t:
            for name in self.curated(query, options):
                if not self._add(pool, query, name, curated=True):
                    break
            scanned = 0
            if len(pool) < self._config.limits.max_candidates_to_collect:
                scanned = await self.expand(query, base, options, pool)
            await self._store.reverse.preload(pool.keys())
            ordered = self.prioritize(pool, len(base))
        if is_debug_enabled(logger):
            logger.debug(
                "Collected candidates",
                extra=extra_context(
                    event="stage",
                    component="candidates",
                    action="generate",
                    outcome="success",
                    package=query,
                    candidates=len(ordered),
                    dependents_scanned=scanned,
                    duration_ms=t.duration_ms(),
                ),
            )
        return ordered[:self._config.limits.max_candidates_to_evaluate]
