"""Shared fakes for engine-level tests: an in-memory data source and on-disk indexes."""
import json
from collections import defaultdict

import pytest

from common.names import normalize_name, shard_key
from index.store import IndexStore
from similarity.errors import DataUnavailable


class FakeDataSource:
    """PackageDataSource over dictionaries; records every call."""

    def __init__(self, forward=None, reverse=None, fail=()):
        self.forward = {normalize_name(k): list(v) for k, v in (forward or {}).items()}
        self.reverse = {normalize_name(k): list(v) for k, v in (reverse or {}).items()}
        self.fail = {normalize_name(n) for n in fail}
        self.forward_calls = []
        self.reverse_calls = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None

    async def fetch_forward_dependencies(self, name):
        self.forward_calls.append(name)
        if normalize_name(name) in self.fail:
            raise DataUnavailable(name, "simulated failure")
        return list(self.forward.get(normalize_name(name), []))

    async def fetch_reverse_dependents(self, name):
        self.reverse_calls.append(name)
        if normalize_name(name) in self.fail:
            raise DataUnavailable(name, "simulated failure")
        return list(self.reverse.get(normalize_name(name), []))


def write_indexes(data_dir, reverse=None, popular=None, precomputed=None, bitset=None):
    """Lay out index files the way the data directory expects them."""
    data_dir.mkdir(parents=True, exist_ok=True)
    shards = defaultdict(dict)
    for name, dependents in (reverse or {}).items():
        shards[shard_key(name)][name] = sorted(dependents)
    for key, data in shards.items():
        (data_dir / f"reverseDeps-{key}.json").write_text(json.dumps(data), encoding="utf-8")
    if popular is not None:
        (data_dir / "popular.json").write_text(json.dumps(popular), encoding="utf-8")
    if precomputed is not None:
        (data_dir / "similarIndex.1000.json").write_text(json.dumps(precomputed), encoding="utf-8")
    if bitset is not None:
        id_map, rows, bucket_size = bitset
        (data_dir / "pkg-id-map.json").write_text(json.dumps(id_map), encoding="utf-8")
        (data_dir / "meta.json").write_text(
            json.dumps({"totalEntries": len(id_map), "bucketSize": bucket_size}), encoding="utf-8"
        )
        buckets = defaultdict(list)
        for pkg_id, dependents in rows.items():
            buckets[pkg_id // bucket_size].append({"id": pkg_id, "dependents": dependents})
        (data_dir / "dependents").mkdir(exist_ok=True)
        for bucket, entries in buckets.items():
            (data_dir / "dependents" / f"{bucket:04d}.json").write_text(json.dumps(entries), encoding="utf-8")


@pytest.fixture
def make_store(tmp_path):
    """Factory: write the given indexes under a fresh directory and load an IndexStore."""
    counter = {"n": 0}

    def _make(**kwargs):
        counter["n"] += 1
        data_dir = tmp_path / f"data{counter['n']}"
        write_indexes(data_dir, **kwargs)
        return IndexStore.from_data_dir(data_dir)

    return _make


def dependents(prefix, count):
    return [f"{prefix}-{i:03d}" for i in range(count)]
