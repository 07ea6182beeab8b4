"""Data models for similarity and co-occurrence rankings."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterator, List, Optional


class ScoreSource(Enum):
    """How a score was obtained; everything but EXACT is an approximation."""
    EXACT = "exact"
    BITSET = "bitset"
    FORWARD_OVERLAP = "forward_overlap"
    COOCCURRENCE = "cooccurrence"
    DIRECT_DEPENDENCY = "direct_dependency"
    NAME_TOKEN = "name_token"
    PRECOMPUTED = "precomputed"


class Strategy(Enum):
    """Which pipeline branch produced a ranked result."""
    REVERSE_DEPENDENTS = "reverse_dependents"
    RELAXED_RESCAN = "relaxed_rescan"
    FORWARD_OVERLAP = "forward_overlap"
    NAME_TOKEN = "name_token"
    PEER_GROUP = "peer_group"
    COOCCURRENCE = "cooccurrence"
    COOCCURRENCE_RELAXED = "cooccurrence_relaxed"
    PRECOMPUTED = "precomputed"
    NONE = "none"


class Priority(Enum):
    """Candidate evaluation bucket; lower value is evaluated first."""
    CURATED = 0
    EXPANDED = 1


@dataclass(frozen=True)
class SimilarityScore:
    """One ranked entry.

    ``jaccard`` is the ranking score. On the exact path it equals
    ``shared_count / union``; for other sources see ``source``.
    """
    name: str
    jaccard: float
    shared_count: int
    source: ScoreSource = ScoreSource.EXACT

    def sort_key(self):
        """Descending jaccard, then shared count, then name ascending."""
        return (-self.jaccard, -self.shared_count, self.name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "jaccard": self.jaccard,
            "sharedDependents": self.shared_count,
            "source": self.source.value,
        }


@dataclass
class RankedResult:
    """Ordered scores for one query, best first."""
    query: str
    items: List[SimilarityScore] = field(default_factory=list)
    strategy: Strategy = Strategy.NONE
    base_size: int = 0

    def __iter__(self) -> Iterator[SimilarityScore]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __bool__(self) -> bool:
        return bool(self.items)

    @property
    def names(self) -> List[str]:
        return [item.name for item in self.items]

    @property
    def top_score(self) -> float:
        return self.items[0].jaccard if self.items else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "strategy": self.strategy.value,
            "baseSize": self.base_size,
            "results": [item.to_dict() for item in self.items],
        }


@dataclass
class Candidate:
    """A package under evaluation; ``dependents`` is resolved lazily."""
    name: str
    priority: Priority = Priority.EXPANDED
    size_hint: Optional[int] = None
    dependents: Optional[FrozenSet[str]] = None


@dataclass(frozen=True)
class QueryOptions:
    """Latency/breadth knobs for a single query.

    ``None`` (or 0) selects the configured default; values above the
    configured maximum are clamped.
    """
    restrict_to_peer_group: bool = False
    max_dependents_to_scan: Optional[int] = None
    max_live_candidates: Optional[int] = None
    top_search_limit: Optional[int] = None
