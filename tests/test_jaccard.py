"""Tests for the set similarity primitives."""
import random
from array import array

import pytest

from similarity.jaccard import (
    bitset_jaccard,
    can_meet_threshold,
    intersect_count,
    jaccard,
    max_possible_jaccard,
    overlap_ratio,
    round_score,
)


class TestJaccard:
    """Exact Jaccard over name sets."""

    def test_worked_example(self):
        result = jaccard({"a", "b", "c"}, {"b", "c", "d"})
        assert result.shared == 2
        assert result.union_size == 4
        assert result.score == 0.5

    def test_disjoint(self):
        result = jaccard({"a", "b"}, {"c", "d"})
        assert result.score == 0
        assert result.shared == 0

    def test_empty_side_is_zero(self):
        assert jaccard({"a"}, set()).score == 0
        assert jaccard(set(), {"a"}).score == 0
        assert jaccard(set(), set()).score == 0

    def test_identity(self):
        members = {f"pkg-{i}" for i in range(50)}
        result = jaccard(members, frozenset(members))
        assert result.score == 1.0
        assert result.shared == 50

    def test_symmetric_on_both_paths(self):
        rng = random.Random(11)
        universe = [f"p{i}" for i in range(400)]
        for size in (5, 150):
            for _ in range(20):
                a = set(rng.sample(universe, size))
                b = set(rng.sample(universe, rng.randint(1, 300)))
                assert jaccard(a, b) == jaccard(b, a)

    def test_large_sets_match_hash_path(self):
        rng = random.Random(3)
        universe = [f"p{i}" for i in range(2000)]
        a = set(rng.sample(universe, 600))
        b = set(rng.sample(universe, 700))
        expected = len(a & b) / len(a | b)
        assert jaccard(a, b).score == pytest.approx(expected)


class TestSizeBound:
    """The size-only upper bound never prunes a pair that could qualify."""

    def test_max_possible(self):
        assert max_possible_jaccard(10, 40) == 0.25
        assert max_possible_jaccard(0, 40) == 0.0

    def test_bound_is_sound_against_brute_force(self):
        rng = random.Random(2024)
        universe = list(range(120))
        for _ in range(500):
            a = set(rng.sample(universe, rng.randint(1, 60)))
            b = set(rng.sample(universe, rng.randint(1, 60)))
            actual = len(a & b) / len(a | b)
            assert actual <= max_possible_jaccard(len(a), len(b)) + 1e-12
            threshold = rng.random()
            if actual >= threshold:
                assert can_meet_threshold(len(a), len(b), threshold)

    def test_can_meet_threshold_rejects_empty(self):
        assert not can_meet_threshold(0, 10, 0.0)


class TestIdArrays:
    def test_bitset_jaccard_matches_set_jaccard(self):
        rng = random.Random(5)
        for _ in range(50):
            a = sorted(rng.sample(range(1000), rng.randint(1, 200)))
            b = sorted(rng.sample(range(1000), rng.randint(1, 200)))
            expected = len(set(a) & set(b)) / len(set(a) | set(b))
            assert bitset_jaccard(array("I", a), array("I", b)) == pytest.approx(expected)
            assert intersect_count(a, b) == len(set(a) & set(b))

    def test_empty_arrays(self):
        assert bitset_jaccard([], [1, 2]) == 0.0
        assert intersect_count([1], []) == 0


class TestOverlapRatio:
    def test_ratio_is_relative_to_query(self):
        result = overlap_ratio({"a", "b", "c", "d"}, {"a", "b", "x"})
        assert result.score == 0.5
        assert result.shared == 2
        assert result.union_size == 4

    def test_empty_query(self):
        assert overlap_ratio(set(), {"a"}).score == 0.0

    def test_round_score(self):
        assert round_score(1 / 3) == 0.333333
