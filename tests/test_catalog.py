"""Tests for the popular catalog, peer groups, precomputed index and store."""
import asyncio
import json
from unittest.mock import patch

from index.catalog import (
    PopularCatalog,
    is_data_science,
    is_ml_framework,
    is_ui_framework,
    is_web_framework,
    peer_group_members,
    peer_group_of,
)
from index.precomputed import PrecomputedIndex
from index.store import IndexStore
from similarity.models import ScoreSource


class TestPeerGroups:
    def test_predicates(self):
        assert is_ui_framework("Flask")
        assert is_ui_framework("aiohttp")
        assert is_web_framework("django")
        assert not is_web_framework("aiohttp")
        assert is_data_science("pandas")
        assert is_ml_framework("scikit_learn")

    def test_group_lookup(self):
        assert peer_group_of("starlette") == "ui"
        assert peer_group_of("pytest") == "testing"
        assert peer_group_of("requests") is None

    def test_members_exclude_query_and_are_sorted(self):
        members = peer_group_members("numpy")
        assert "numpy" not in members
        assert members == sorted(members)
        assert "pandas" in members
        assert peer_group_members("requests") == []


class TestPopularCatalog:
    """Local file, remote download and write-back."""

    def test_order_and_membership(self):
        catalog = PopularCatalog(["Boto3", "urllib3", "boto3", "Requests"])
        assert list(catalog) == ["boto3", "urllib3", "requests"]
        assert "REQUESTS" in catalog
        assert 3 not in catalog
        assert catalog.top(2) == ["boto3", "urllib3"]
        assert catalog.top(-1) == []

    def test_from_file_rows_shape(self, tmp_path):
        path = tmp_path / "popular.json"
        path.write_text(json.dumps({"rows": [{"project": "numpy"}, {"project": "pandas"}]}), encoding="utf-8")
        assert PopularCatalog.from_file(path).names == ("numpy", "pandas")

    def test_from_file_missing_or_bad(self, tmp_path):
        assert len(PopularCatalog.from_file(tmp_path / "absent.json")) == 0
        bad = tmp_path / "bad.json"
        bad.write_text("{", encoding="utf-8")
        assert len(PopularCatalog.from_file(bad)) == 0
        wrong = tmp_path / "wrong.json"
        wrong.write_text(json.dumps({"packages": []}), encoding="utf-8")
        assert len(PopularCatalog.from_file(wrong)) == 0

    def test_load_prefers_local_file(self, tmp_path):
        (tmp_path / "popular.json").write_text(json.dumps(["flask"]), encoding="utf-8")
        with patch("common.http_client.get_json") as get_json:
            catalog = PopularCatalog.load(tmp_path, url="https://example.invalid/top.json")
        get_json.assert_not_called()
        assert list(catalog) == ["flask"]

    def test_load_downloads_and_saves(self, tmp_path):
        payload = {"rows": [{"project": "boto3"}, {"project": "botocore"}]}
        with patch("common.http_client.get_json", return_value=(200, {}, payload)):
            catalog = PopularCatalog.load(tmp_path, url="https://example.invalid/top.json")
        assert list(catalog) == ["boto3", "botocore"]
        saved = json.loads((tmp_path / "popular.json").read_text(encoding="utf-8"))
        assert saved == ["boto3", "botocore"]

    def test_refresh_ignores_local_file(self, tmp_path):
        (tmp_path / "popular.json").write_text(json.dumps(["old"]), encoding="utf-8")
        with patch("common.http_client.get_json", return_value=(200, {}, ["new"])):
            catalog = PopularCatalog.load(tmp_path, url="https://example.invalid/top.json", refresh=True)
        assert list(catalog) == ["new"]

    def test_download_failure_is_empty(self, tmp_path):
        with patch("common.http_client.get_json", return_value=(503, {}, None)):
            catalog = PopularCatalog.load(tmp_path, url="https://example.invalid/top.json")
        assert len(catalog) == 0
        assert not (tmp_path / "popular.json").exists()


class TestPrecomputedIndex:
    def test_get_limits_and_tags(self, tmp_path):
        (tmp_path / "similarIndex.1000.json").write_text(json.dumps({
            "Flask": [
                {"name": "django", "jaccard": 0.3, "sharedDependents": 40},
                {"name": "quart", "jaccard": 0.2, "sharedDependents": 5},
                {"bad": "row"},
            ],
        }), encoding="utf-8")
        index = PrecomputedIndex(tmp_path)
        entries = asyncio.run(index.get("flask", 1))
        assert [e.name for e in entries] == ["django"]
        assert entries[0].source is ScoreSource.PRECOMPUTED
        assert asyncio.run(index.get("unknown", 5)) is None

    def test_query_itself_is_dropped(self, tmp_path):
        (tmp_path / "similarIndex.1000.json").write_text(json.dumps({
            "flask": [
                {"name": "Flask", "jaccard": 1.0, "sharedDependents": 90},
                {"name": "django", "jaccard": 0.3, "sharedDependents": 40},
            ],
            "solo": [{"name": "solo", "jaccard": 1.0, "sharedDependents": 3}],
        }), encoding="utf-8")
        index = PrecomputedIndex(tmp_path)
        assert [e.name for e in asyncio.run(index.get("flask", 1))] == ["django"]
        assert asyncio.run(index.get("solo", 5)) is None

    def test_missing_file(self, tmp_path):
        assert asyncio.run(PrecomputedIndex(tmp_path).get("flask", 5)) is None


class TestIndexStore:
    def test_from_data_dir(self, tmp_path):
        (tmp_path / "popular.json").write_text(json.dumps(["requests", "flask"]), encoding="utf-8")
        store = IndexStore.from_data_dir(tmp_path)
        assert list(store.catalog) == ["requests", "flask"]
        assert store.reverse.data_dir == tmp_path
        assert store.precomputed is not None

    def test_missing_dir_gives_empty_store(self, tmp_path, caplog):
        store = IndexStore.from_data_dir(tmp_path / "nope")
        assert len(store.catalog) == 0
        assert "does not exist" in caplog.text
