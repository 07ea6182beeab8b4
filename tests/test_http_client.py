"""Tests for the blocking HTTP helpers."""
from unittest.mock import MagicMock, patch

import pytest
import requests

from common import http_client


@pytest.fixture(autouse=True)
def _clear_cache():
    http_client.clear_cache()
    yield
    http_client.clear_cache()


def _response(status, text="", headers=None):
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    resp.headers = headers or {}
    return resp


class TestRobustGet:
    @patch("common.http_client.time.sleep")
    @patch("common.http_client.requests.get")
    def test_retries_5xx_then_succeeds(self, mock_get, _sleep):
        mock_get.side_effect = [_response(503), _response(200, "ok")]
        status, _, body = http_client.robust_get("https://example.invalid/x")
        assert (status, body) == (200, "ok")
        assert mock_get.call_count == 2

    @patch("common.http_client.time.sleep")
    @patch("common.http_client.requests.get")
    def test_exhausted_timeouts_return_zero(self, mock_get, _sleep):
        mock_get.side_effect = requests.Timeout()
        status, headers, body = http_client.robust_get("https://example.invalid/x")
        assert status == 0
        assert headers == {}
        assert "timeout" in body

    @patch("common.http_client.requests.get")
    def test_success_is_cached(self, mock_get):
        mock_get.return_value = _response(200, "[]")
        http_client.robust_get("https://example.invalid/y")
        http_client.robust_get("https://example.invalid/y")
        assert mock_get.call_count == 1

    @patch("common.http_client.requests.get")
    def test_user_agent_sent(self, mock_get):
        mock_get.return_value = _response(404)
        http_client.robust_get("https://example.invalid/z")
        assert mock_get.call_args.kwargs["headers"]["User-Agent"].startswith("depsim/")


class TestGetJson:
    @patch("common.http_client.requests.get")
    def test_parses_json(self, mock_get):
        mock_get.return_value = _response(200, '{"rows": []}')
        status, _, data = http_client.get_json("https://example.invalid/top.json")
        assert status == 200
        assert data == {"rows": []}

    @patch("common.http_client.requests.get")
    def test_invalid_json_is_none(self, mock_get):
        mock_get.return_value = _response(200, "<html>")
        assert http_client.get_json("https://example.invalid/a")[2] is None

    @patch("common.http_client.requests.get")
    def test_error_status_is_none(self, mock_get):
        mock_get.return_value = _response(404, "missing")
        status, _, data = http_client.get_json("https://example.invalid/b")
        assert status == 404
        assert data is None
