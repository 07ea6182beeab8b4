"""Fixed-capacity top-K selection over a binary min-heap."""
from __future__ import annotations

from typing import List, Optional

from similarity.models import SimilarityScore


def _less(a: SimilarityScore, b: SimilarityScore) -> bool:
    """True when ``a`` ranks below ``b`` (the inverse of ``SimilarityScore.sort_key``)."""
    if a.jaccard != b.jaccard:
        return a.jaccard < b.jaccard
    if a.shared_count != b.shared_count:
        return a.shared_count < b.shared_count
    return a.name > b.name


class BoundedTopKSelector:
    """Keep the ``capacity`` best scores seen, in O(log K) per push.

    The root is always the current K-th best. Once full, an incoming score
    replaces the root only when it ranks strictly higher, so the final
    contents do not depend on insertion order.
    """

    def __init__(self, capacity: int):
        self._capacity = max(0, capacity)
        self._heap: List[SimilarityScore] = []

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def full(self) -> bool:
        return self._capacity > 0 and len(self._heap) >= self._capacity

    @property
    def min_score(self) -> Optional[float]:
        """Score of the weakest retained entry, None when empty."""
        return self._heap[0].jaccard if self._heap else None

    def __len__(self) -> int:
        return len(self._heap)

    def push(self, item: SimilarityScore) -> bool:
        """Offer ``item``; returns True if it was retained."""
        if self._capacity <= 0:
            return False
        heap = self._heap
        if len(heap) < self._capacity:
            heap.append(item)
            self._sift_up(len(heap) - 1)
            return True
        if not _less(heap[0], item):
            return False
        heap[0] = item
        self._sift_down(0)
        return True

    def drain(self) -> List[SimilarityScore]:
        """Remove and return everything, best first."""
        items = sorted(self._heap, key=SimilarityScore.sort_key)
        self._heap = []
        return items

    def snapshot(self) -> List[SimilarityScore]:
        """Current contents, best first, without draining."""
        return sorted(self._heap, key=SimilarityScore.sort_key)

    def _sift_up(self, i: int) -> None:
        heap = self._heap
        while i > 0:
            parent = (i - 1) // 2
            if not _less(heap[i], heap[parent]):
                break
            heap[i], heap[parent] = heap[parent], heap[i]
            i = parent

    def _sift_down(self, i: int) -> None:
        heap = self._heap
        n = len(heap)
        while True:
            left = 2 * i + 1
            right = left + 1
            smallest = i
            if left < n and _less(heap[left], heap[smallest]):
                smallest = left
            if right < n and _less(heap[right], heap[smallest]):
                smallest = right
            if smallest == i:
                break
            heap[i], heap[smallest] = heap[smallest], heap[i]
            i = smallest
