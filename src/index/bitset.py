"""Integer-ID dependents index.

Layout under the data directory::

    pkg-id-map.json          {"normalized-name": id, ...}
    meta.json                {"totalEntries" | "totalPackages": n, "bucketSize": b}
    dependents/0000.json     [{"id": id, "dependents": [id, ...]}, ...]

A package's bucket is ``id // bucketSize``. Bucket files load once and are
kept for the lifetime of the index.
"""
from __future__ import annotations

import asyncio
import json
import logging
from array import array
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled, Timer
from common.names import normalize_name
from index.single_flight import SingleFlightLoader

logger = logging.getLogger(__name__)

_EMPTY_IDS = array("I")


@dataclass(frozen=True)
class BitsetMeta:
    total_entries: int = 0
    bucket_size: int = Constants.BITSET_DEFAULT_BUCKET_SIZE

    @classmethod
    def from_json(cls, payload: Any) -> "BitsetMeta":
        if not isinstance(payload, dict):
            return cls()
        total = payload.get("totalEntries", payload.get("totalPackages", 0))
        bucket = payload.get("bucketSize") or Constants.BITSET_DEFAULT_BUCKET_SIZE
        try:
            total, bucket = int(total or 0), int(bucket)
        except (TypeError, ValueError):
            return cls()
        return cls(total_entries=total, bucket_size=bucket if bucket > 0 else Constants.BITSET_DEFAULT_BUCKET_SIZE)


def _read_json(path: Path) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            return json.load(handle)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        logger.warning("Failed to load bitset file %s: %s", path, exc)
        return None


def _sorted_ids(values: Any) -> array:
    ids = sorted({int(v) for v in values if isinstance(v, int) and 0 <= v <= 0xFFFFFFFF})
    return array("I", ids)


class BitsetIndex:
    """Sorted dependent-ID arrays keyed by package name."""

    def __init__(self, data_dir: Path):
        self._data_dir = Path(data_dir)
        self._header: SingleFlightLoader[tuple] = SingleFlightLoader()
        self._buckets: SingleFlightLoader[Mapping[int, array]] = SingleFlightLoader()

    def _read_header(self) -> tuple:
        id_map_raw = _read_json(self._data_dir / Constants.BITSET_ID_MAP_FILE)
        id_map: Dict[str, int] = {}
        if isinstance(id_map_raw, dict):
            for name, pkg_id in id_map_raw.items():
                if isinstance(name, str) and isinstance(pkg_id, int):
                    id_map[normalize_name(name)] = pkg_id
        meta = BitsetMeta.from_json(_read_json(self._data_dir / Constants.BITSET_META_FILE))
        return id_map, meta

    async def _load_header(self) -> tuple:
        return await self._header.get("header", lambda: asyncio.to_thread(self._read_header))

    async def meta(self) -> BitsetMeta:
        _, meta = await self._load_header()
        return meta

    async def id_for(self, name: str) -> Optional[int]:
        id_map, _ = await self._load_header()
        return id_map.get(normalize_name(name))

    def _read_bucket(self, bucket: int) -> Mapping[int, array]:
        path = self._data_dir / Constants.BITSET_DEPENDENTS_DIR / f"{bucket:04d}.json"
        with Timer() as t:
            rows = _read_json(path)
            out: Dict[int, array] = {}
            if isinstance(rows, list):
                for row in rows:
                    if not isinstance(row, dict) or not isinstance(row.get("id"), int):
                        continue
                    deps = row.get("dependents")
                    if isinstance(deps, list):
                        out[row["id"]] = _sorted_ids(deps)
        if is_debug_enabled(logger):
            logger.debug(
                "Loaded bitset bucket",
                extra=extra_context(
                    event="shard_load",
                    component="bitset",
                    action="load",
                    outcome="success" if out else "empty",
                    bucket=bucket,
                    packages=len(out),
                    duration_ms=t.duration_ms(),
                ),
            )
        return out

    async def dependent_ids(self, name: str) -> array:
        """Sorted dependent IDs of ``name``; empty when the package is not indexed."""
        id_map, meta = await self._load_header()
        pkg_id = id_map.get(normalize_name(name))
        if pkg_id is None:
            return _EMPTY_IDS
        bucket = pkg_id // meta.bucket_size
        rows = await self._buckets.get(bucket, lambda: asyncio.to_thread(self._read_bucket, bucket))
        return rows.get(pkg_id, _EMPTY_IDS)
