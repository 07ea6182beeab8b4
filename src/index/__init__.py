"""On-disk indexes consulted by the ranking engine."""

from .bitset import BitsetIndex, BitsetMeta
from .catalog import PopularCatalog, peer_group_members, peer_group_of, is_ui_framework
from .precomputed import PrecomputedIndex
from .reverse_deps import ReverseDependencyIndex
from .store import IndexStore

__all__ = [
    "BitsetIndex",
    "BitsetMeta",
    "PopularCatalog",
    "peer_group_members",
    "peer_group_of",
    "is_ui_framework",
    "PrecomputedIndex",
    "ReverseDependencyIndex",
    "IndexStore",
]
