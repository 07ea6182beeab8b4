"""Sharded on-disk reverse-dependency index.

Layout under the data directory::

    reverseDeps-<shard>.json           {"name": ["dependent", ...], ...}
    reverseDeps-<shard>-<part>.json    optional extra parts of an oversized shard
    reverseDeps.csv.json               legacy single-file index
    reverseDeps.1000.json              older legacy single-file index

``<shard>`` is the first character class of the normalized name (see
``common.names.shard_key``). Shards load lazily and independently; the
legacy files are only consulted when no shard file exists at all.
"""
from __future__ import annotations

import asyncio
import json
import logging
import types
from pathlib import Path
from typing import Dict, FrozenSet, List, Mapping, Optional

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled, Timer
from common.names import all_shard_keys, normalize_all, normalize_name, shard_key
from index.single_flight import SingleFlightLoader

logger = logging.getLogger(__name__)

ShardData = Mapping[str, FrozenSet[str]]

_LEGACY_KEY = "__legacy__"
_EMPTY: ShardData = types.MappingProxyType({})


def read_reverse_deps_file(path: Path) -> Dict[str, FrozenSet[str]]:
    """Parse one reverse-deps JSON file, normalizing keys and dependents.

    Unreadable or malformed files yield an empty mapping and a warning.
    """
    try:
        with open(path, "r", encoding="utf-8") as handle:
            raw = json.load(handle)
    except (OSError, ValueError) as exc:
        logger.warning("Failed to load reverse-deps file %s: %s", path, exc)
        return {}
    if not isinstance(raw, dict):
        logger.warning("Ignoring reverse-deps file %s: top level is not an object", path)
        return {}

    out: Dict[str, FrozenSet[str]] = {}
    for name, dependents in raw.items():
        if not isinstance(name, str) or not isinstance(dependents, list):
            continue
        key = normalize_name(name)
        values = frozenset(d for d in normalize_all(dependents) if d != key)
        if key in out:
            values = out[key] | values
        out[key] = values
    return out


class ReverseDependencyIndex:
    """Lazy, shard-at-a-time view of ``package -> dependents``."""

    def __init__(self, data_dir: Path):
        self._data_dir = Path(data_dir)
        self._shards: SingleFlightLoader[ShardData] = SingleFlightLoader()
        self._uses_shards: Optional[bool] = None
        self._merged: Optional[ShardData] = None

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def shard_files(self, key: str) -> List[Path]:
        """Files backing shard ``key``: the main file first, then split parts."""
        prefix = Constants.REVERSE_DEPS_SHARD_PREFIX
        files = []
        main = self._data_dir / f"{prefix}{key}.json"
        if main.is_file():
            files.append(main)
        files.extend(sorted(self._data_dir.glob(f"{prefix}{key}-*.json")))
        return files

    def _has_shard_files(self) -> bool:
        if self._uses_shards is None:
            prefix = Constants.REVERSE_DEPS_SHARD_PREFIX
            self._uses_shards = self._data_dir.is_dir() and any(
                self._data_dir.glob(f"{prefix}*.json")
            )
        return self._uses_shards

    async def _load_shard(self, key: str) -> ShardData:
        return await self._shards.get(key, lambda: asyncio.to_thread(self._read_shard, key))

    def _read_shard(self, key: str) -> ShardData:
        with Timer() as t:
            if key == _LEGACY_KEY:
                files = [
                    self._data_dir / name
                    for name in Constants.REVERSE_DEPS_LEGACY_FILES
                    if (self._data_dir / name).is_file()
                ][:1]
            else:
                files = self.shard_files(key)
            merged: Dict[str, FrozenSet[str]] = {}
            for path in files:
                for name, dependents in read_reverse_deps_file(path).items():
                    merged[name] = merged[name] | dependents if name in merged else dependents
        if is_debug_enabled(logger):
            logger.debug(
                "Loaded reverse-deps shard",
                extra=extra_context(
                    event="shard_load",
                    component="reverse_deps",
                    action="load",
                    outcome="success" if merged else "empty",
                    shard=key,
                    files=len(files),
                    packages=len(merged),
                    duration_ms=t.duration_ms(),
                ),
            )
        return types.MappingProxyType(merged) if merged else _EMPTY

    def _key_for(self, name: str) -> str:
        return shard_key(name) if self._has_shard_files() else _LEGACY_KEY

    async def lookup(self, name: str) -> Optional[FrozenSet[str]]:
        """Dependents of ``name``, or None when the index has no entry for it."""
        normalized = normalize_name(name)
        shard = await self._load_shard(self._key_for(normalized))
        found = shard.get(normalized)
        return found if found else None

    def cached(self, name: str) -> Optional[FrozenSet[str]]:
        """Like ``lookup`` but only consults shards that are already loaded."""
        normalized = normalize_name(name)
        shard = self._shards.peek(self._key_for(normalized))
        if shard is None:
            return None
        return shard.get(normalized) or None

    def size_hint(self, name: str) -> Optional[int]:
        """Dependent count from an already loaded shard; None when unknown."""
        found = self.cached(name)
        return len(found) if found is not None else None

    async def preload(self, names) -> None:
        """Load the shards covering ``names`` concurrently."""
        keys = sorted({self._key_for(n) for n in names})
        await asyncio.gather(*(self._load_shard(k) for k in keys))

    async def load_all(self) -> ShardData:
        """Every shard merged into one read-only mapping."""
        if self._merged is not None:
            return self._merged
        keys = all_shard_keys() if self._has_shard_files() else [_LEGACY_KEY]
        shards = await asyncio.gather(*(self._load_shard(k) for k in keys))
        merged: Dict[str, FrozenSet[str]] = {}
        for shard in shards:
            merged.update(shard)
        self._merged = types.MappingProxyType(merged)
        return self._merged
