"""Set similarity primitives."""
from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, Sequence

# Below this size hashing beats sorting both sides.
SORTED_MERGE_THRESHOLD = 100


@dataclass(frozen=True)
class JaccardResult:
    score: float
    shared: int
    union_size: int


def _sorted_intersection_count(a: Sequence, b: Sequence) -> int:
    """Two-pointer merge over two ascending sequences without duplicates."""
    i = j = shared = 0
    len_a, len_b = len(a), len(b)
    while i < len_a and j < len_b:
        va, vb = a[i], b[j]
        if va == vb:
            shared += 1
            i += 1
            j += 1
        elif va < vb:
            i += 1
        else:
            j += 1
    return shared


def jaccard(a: AbstractSet[str], b: AbstractSet[str]) -> JaccardResult:
    """Exact Jaccard index ``|a ∩ b| / |a ∪ b|``; 0 when either side is empty."""
    if not a or not b:
        return JaccardResult(0.0, 0, len(a) + len(b))
    if len(a) < SORTED_MERGE_THRESHOLD and len(b) < SORTED_MERGE_THRESHOLD:
        small, large = (a, b) if len(a) <= len(b) else (b, a)
        shared = sum(1 for x in small if x in large)
    else:
        shared = _sorted_intersection_count(sorted(a), sorted(b))
    union = len(a) + len(b) - shared
    return JaccardResult(shared / union if union else 0.0, shared, union)


def intersect_count(a: Sequence[int], b: Sequence[int]) -> int:
    """Size of the intersection of two sorted integer-ID arrays."""
    if not a or not b:
        return 0
    return _sorted_intersection_count(a, b)


def bitset_jaccard(a: Sequence[int], b: Sequence[int]) -> float:
    """Jaccard over two sorted ID arrays, O(len(a) + len(b)), no hashing."""
    if not a or not b:
        return 0.0
    inter = _sorted_intersection_count(a, b)
    return inter / (len(a) + len(b) - inter)


def max_possible_jaccard(candidate_size: int, base_size: int) -> float:
    """Upper bound on Jaccard from set sizes alone: ``min / max``."""
    if candidate_size <= 0 or base_size <= 0:
        return 0.0
    return min(candidate_size, base_size) / max(candidate_size, base_size)


def can_meet_threshold(candidate_size: int, base_size: int, min_jaccard: float) -> bool:
    """False only when no pair of sets with these sizes could reach ``min_jaccard``."""
    if candidate_size <= 0 or base_size <= 0:
        return False
    return max_possible_jaccard(candidate_size, base_size) >= min_jaccard


def overlap_ratio(query_deps: AbstractSet[str], candidate_deps: AbstractSet[str]) -> JaccardResult:
    """Asymmetric overlap ``|q ∩ c| / |q|`` used by the forward-dependency fallback.

    ``union_size`` carries ``|q|`` (the denominator), not the true union.
    """
    if not query_deps:
        return JaccardResult(0.0, 0, 0)
    shared = sum(1 for dep in query_deps if dep in candidate_deps)
    return JaccardResult(shared / len(query_deps), shared, len(query_deps))


def round_score(score: float) -> float:
    return round(score, 6)
