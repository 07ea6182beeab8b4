"""The single bundle of on-disk indexes handed to the engine."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from index.bitset import BitsetIndex
from index.catalog import PopularCatalog
from index.precomputed import PrecomputedIndex
from index.reverse_deps import ReverseDependencyIndex

logger = logging.getLogger(__name__)


@dataclass
class IndexStore:
    """Indexes for one data directory. Built once at startup and injected."""
    reverse: ReverseDependencyIndex
    bitset: BitsetIndex
    catalog: PopularCatalog = field(default_factory=PopularCatalog)
    precomputed: Optional[PrecomputedIndex] = None

    @classmethod
    def from_data_dir(
        cls,
        data_dir,
        popular_url: Optional[str] = None,
        refresh_popular: bool = False,
    ) -> "IndexStore":
        path = Path(data_dir)
        if not path.is_dir():
            logger.warning("Data directory %s does not exist; indexes will be empty", path)
        catalog = PopularCatalog.load(path, url=popular_url, refresh=refresh_popular)
        logger.info("Loaded %d popular packages from %s", len(catalog), path)
        return cls(
            reverse=ReverseDependencyIndex(path),
            bitset=BitsetIndex(path),
            catalog=catalog,
            precomputed=PrecomputedIndex(path),
        )
