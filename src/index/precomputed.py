"""Precomputed similar-package lists (``similarIndex.1000.json``)."""
from __future__ import annotations

import asyncio
import json
import logging
import types
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from constants import Constants
from common.names import normalize_name
from index.single_flight import SingleFlightLoader
from similarity.models import ScoreSource, SimilarityScore

logger = logging.getLogger(__name__)


def _parse_entries(rows: Any) -> List[SimilarityScore]:
    out: List[SimilarityScore] = []
    if not isinstance(rows, list):
        return out
    for row in rows:
        if not isinstance(row, dict) or not isinstance(row.get("name"), str):
            continue
        try:
            score = float(row.get("jaccard", 0.0))
            shared = int(row.get("sharedDependents", 0))
        except (TypeError, ValueError):
            continue
        out.append(SimilarityScore(row["name"], score, shared, ScoreSource.PRECOMPUTED))
    return out


class PrecomputedIndex:
    """Read-only ``package -> [SimilarityScore]`` mapping loaded on first use."""

    def __init__(self, data_dir: Path, filename: str = Constants.SIMILAR_INDEX_FILE):
        self._path = Path(data_dir) / filename
        self._loader: SingleFlightLoader[Mapping[str, List[SimilarityScore]]] = SingleFlightLoader()

    def _read(self) -> Mapping[str, List[SimilarityScore]]:
        try:
            with open(self._path, "r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except FileNotFoundError:
            return types.MappingProxyType({})
        except (OSError, ValueError) as exc:
            logger.warning("Failed to load precomputed index %s: %s", self._path, exc)
            return types.MappingProxyType({})
        data: Dict[str, List[SimilarityScore]] = {}
        if isinstance(raw, dict):
            for name, rows in raw.items():
                entries = _parse_entries(rows)
                if isinstance(name, str) and entries:
                    data[normalize_name(name)] = entries
        return types.MappingProxyType(data)

    async def get(self, name: str, limit: int) -> Optional[List[SimilarityScore]]:
        """Up to ``limit`` precomputed entries for ``name``, or None."""
        data = await self._loader.get("index", lambda: asyncio.to_thread(self._read))
        query = normalize_name(name)
        entries = [e for e in data.get(query) or () if normalize_name(e.name) != query]
        if not entries:
            return None
        return entries[:limit]
