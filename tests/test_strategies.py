"""Tests for the fallback strategy objects and chain."""
import asyncio

import pytest

from conftest import FakeDataSource, dependents
from similarity.config import EngineConfig
from similarity.models import ScoreSource, SimilarityScore, Strategy
from similarity.strategies import (
    FallbackContext,
    NameTokenHeuristic,
    RelaxedRescan,
    rank,
    run_chain,
)


def _ctx(store, query="alpha", base=frozenset(), limit=10, **kwargs):
    return FallbackContext(
        query=query,
        limit=limit,
        base=frozenset(base),
        config=EngineConfig(),
        store=store,
        data_source=kwargs.pop("data_source", FakeDataSource()),
        **kwargs,
    )


class Fixed:
    """Strategy stub returning a fixed list."""

    def __init__(self, strategy, items):
        self.strategy = strategy
        self.items = items
        self.calls = 0

    async def run(self, ctx):
        self.calls += 1
        return list(self.items)


class TestNameTokenHeuristic:
    @pytest.mark.parametrize("query,candidate,expected", [
        ("flask-cors", "flask", True),
        ("flask", "flask-login", True),
        ("django", "djangorestframework", True),
        ("requests", "urllib3", False),
        ("py", "pytest", True),
    ])
    def test_matches(self, query, candidate, expected):
        assert NameTokenHeuristic.matches(query, candidate) is expected

    def test_placeholder_scores_and_limit(self, make_store):
        store = make_store(popular=["flask-a", "flask-b", "flask-c", "other"])
        items = asyncio.run(NameTokenHeuristic().run(_ctx(store, query="flask", limit=2)))
        assert [i.name for i in items] == ["flask-a", "flask-b"]
        assert {i.jaccard for i in items} == {0.001}
        assert all(i.source is ScoreSource.NAME_TOKEN and i.shared_count == 0 for i in items)

    def test_small_base_only(self, make_store):
        store = make_store(popular=["alpha-x"])
        heuristic = NameTokenHeuristic(small_base_only=True)
        assert asyncio.run(heuristic.run(_ctx(store, base=set()))) == []
        assert asyncio.run(heuristic.run(_ctx(store, base=dependents("u", 20)))) == []
        assert [i.name for i in asyncio.run(heuristic.run(_ctx(store, base=dependents("u", 3))))] == ["alpha-x"]

    def test_max_popular(self, make_store):
        store = make_store(popular=["other", "alpha-x"])
        assert asyncio.run(NameTokenHeuristic(max_popular=1).run(_ctx(store))) == []

    def test_reverse_hint(self, make_store):
        store = make_store(reverse={"wrapper": ["alpha", "zed"]}, popular=["wrapper"])

        async def main():
            await store.reverse.preload(["wrapper"])
            return await NameTokenHeuristic(use_reverse_hint=True).run(_ctx(store))

        assert [i.name for i in asyncio.run(main())] == ["wrapper"]


class TestRelaxedRescan:
    def test_uses_resolved_sets(self, make_store):
        base = dependents("u", 30)
        store = make_store()
        ctx = _ctx(
            store,
            base=base,
            candidates=["alpha", "weak", "none"],
            resolved={"weak": frozenset(base[:1] + dependents("n", 100)), "alpha": frozenset(base)},
        )
        items = asyncio.run(RelaxedRescan().run(ctx))
        assert [i.name for i in items] == ["weak"]
        assert items[0].source is ScoreSource.EXACT


class TestRunChain:
    def test_first_non_empty_wins(self, make_store):
        first = Fixed(Strategy.RELAXED_RESCAN, [])
        second = Fixed(Strategy.NAME_TOKEN, [SimilarityScore("x", 0.1, 0)])
        third = Fixed(Strategy.FORWARD_OVERLAP, [SimilarityScore("y", 0.9, 1)])
        strategy, items = asyncio.run(run_chain([first, second, third], _ctx(make_store())))
        assert strategy is Strategy.NAME_TOKEN
        assert [i.name for i in items] == ["x"]
        assert third.calls == 0

    def test_query_filtered_and_none_when_exhausted(self, make_store):
        only_query = Fixed(Strategy.NAME_TOKEN, [SimilarityScore("alpha", 1.0, 1)])
        strategy, items = asyncio.run(run_chain([only_query], _ctx(make_store())))
        assert strategy is Strategy.NONE
        assert items == []

    def test_rank(self):
        items = [SimilarityScore("b", 0.5, 1), SimilarityScore("a", 0.5, 1), SimilarityScore("c", 0.9, 1)]
        assert [i.name for i in rank(items, 2)] == ["c", "a"]
