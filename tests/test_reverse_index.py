"""Tests for the sharded reverse-dependency index."""
import asyncio
import json
from unittest.mock import patch

import pytest

from index.reverse_deps import ReverseDependencyIndex, read_reverse_deps_file
from index.single_flight import SingleFlightLoader


def _write(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")


@pytest.fixture
def sharded_dir(tmp_path):
    _write(tmp_path / "reverseDeps-f.json", {
        "Flask": ["flask-login", "Flask_WTF", "flask"],
        "fastapi": ["fastapi-users"],
    })
    _write(tmp_path / "reverseDeps-f-2.json", {"flask": ["quart-flask-patch"]})
    _write(tmp_path / "reverseDeps-d.json", {"django": ["djangorestframework"]})
    _write(tmp_path / "reverseDeps-0-9.json", {"3to2": ["legacy-tool"]})
    return tmp_path


class TestReadFile:
    def test_normalizes_and_drops_self(self, tmp_path):
        path = tmp_path / "reverseDeps-x.json"
        _write(path, {"X_Pkg": ["Y.Pkg", "x-pkg", "y_pkg"], "bad": "not-a-list"})
        assert read_reverse_deps_file(path) == {"x-pkg": frozenset({"y-pkg"})}

    def test_malformed_file_is_empty(self, tmp_path, caplog):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        assert read_reverse_deps_file(path) == {}
        assert "Failed to load" in caplog.text

    def test_non_object_is_empty(self, tmp_path):
        path = tmp_path / "list.json"
        _write(path, ["a", "b"])
        assert read_reverse_deps_file(path) == {}


class TestReverseDependencyIndex:
    """Lookup, split shards, legacy fallback and caching."""

    def test_lookup_merges_split_parts(self, sharded_dir):
        index = ReverseDependencyIndex(sharded_dir)
        found = asyncio.run(index.lookup("FLASK"))
        assert found == frozenset({"flask-login", "flask-wtf", "quart-flask-patch"})

    def test_shard_files_order(self, sharded_dir):
        index = ReverseDependencyIndex(sharded_dir)
        names = [p.name for p in index.shard_files("f")]
        assert names == ["reverseDeps-f.json", "reverseDeps-f-2.json"]

    def test_missing_entry_is_none(self, sharded_dir):
        index = ReverseDependencyIndex(sharded_dir)
        assert asyncio.run(index.lookup("fabric")) is None
        assert asyncio.run(index.lookup("zzz")) is None

    def test_digit_shard(self, sharded_dir):
        index = ReverseDependencyIndex(sharded_dir)
        assert asyncio.run(index.lookup("3to2")) == frozenset({"legacy-tool"})

    def test_cached_only_after_load(self, sharded_dir):
        index = ReverseDependencyIndex(sharded_dir)
        assert index.cached("django") is None
        assert index.size_hint("django") is None
        asyncio.run(index.preload(["django", "flask"]))
        assert index.cached("django") == frozenset({"djangorestframework"})
        assert index.size_hint("flask") == 3

    def test_shard_read_once_under_concurrency(self, sharded_dir):
        index = ReverseDependencyIndex(sharded_dir)
        real = index._read_shard
        calls = []

        def counting(key):
            calls.append(key)
            return real(key)

        async def main():
            with patch.object(index, "_read_shard", side_effect=counting):
                await asyncio.gather(*(index.lookup("flask") for _ in range(10)))
                await index.lookup("fastapi")

        asyncio.run(main())
        assert calls == ["f"]

    def test_load_all(self, sharded_dir):
        index = ReverseDependencyIndex(sharded_dir)
        merged = asyncio.run(index.load_all())
        assert set(merged) == {"flask", "fastapi", "django", "3to2"}
        with pytest.raises(TypeError):
            merged["new"] = frozenset()

    def test_legacy_file_when_no_shards(self, tmp_path):
        _write(tmp_path / "reverseDeps.csv.json", {"requests": ["httpie", "twine"]})
        _write(tmp_path / "reverseDeps.1000.json", {"requests": ["ignored"]})
        index = ReverseDependencyIndex(tmp_path)
        assert asyncio.run(index.lookup("requests")) == frozenset({"httpie", "twine"})

    def test_missing_directory(self, tmp_path):
        index = ReverseDependencyIndex(tmp_path / "nowhere")
        assert asyncio.run(index.lookup("requests")) is None
        assert dict(asyncio.run(index.load_all())) == {}


class TestSingleFlightLoader:
    def test_concurrent_callers_share_load(self):
        loader = SingleFlightLoader()
        calls = []

        async def load():
            calls.append(1)
            await asyncio.sleep(0.01)
            return "value"

        async def main():
            return await asyncio.gather(*(loader.get("k", load) for _ in range(5)))

        assert asyncio.run(main()) == ["value"] * 5
        assert len(calls) == 1
        assert loader.is_loaded("k")
        assert loader.peek("k") == "value"

    def test_failures_are_retried(self):
        loader = SingleFlightLoader()
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) == 1:
                raise OSError("disk")
            return 42

        async def main():
            with pytest.raises(OSError):
                await loader.get("k", flaky)
            return await loader.get("k", flaky)

        assert asyncio.run(main()) == 42
        assert len(attempts) == 2
