"""Tests for the asynchronous PyPI data source."""
import asyncio
from unittest.mock import AsyncMock

import pytest

pytest.importorskip("aiohttp")

from common.retry import RetryableError  # noqa: E402
from registry.pypi.client import PyPIDataSource  # noqa: E402
from similarity.config import FetchConfig  # noqa: E402
from similarity.errors import DataUnavailable, TransientFetchFailure  # noqa: E402


def _fast_config(**overrides):
    values = dict(
        max_retry_attempts=3,
        retry_initial_delay_ms=1,
        retry_max_delay_ms=1,
        retry_jitter_ms=0,
        request_delay_ms=0,
    )
    values.update(overrides)
    return FetchConfig(**values)


FLASK_JSON = {
    "info": {
        "name": "Flask",
        "version": "3.0.0",
        "requires_dist": ["Werkzeug>=3.0.0", "Jinja2>=3.1.2", "click>=8.1.3"],
    }
}


class FakeResponse:
    def __init__(self, status, payload=None):
        self.status = status
        self._payload = payload

    async def json(self, content_type=None):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Returns queued responses in order; records requested URLs."""

    def __init__(self, responses):
        self._responses = list(responses)
        self.urls = []

    def get(self, url, headers=None):
        self.urls.append(url)
        return self._responses.pop(0)

    async def close(self):
        return None


class TestForwardDependencies:
    """fetch_forward_dependencies over a patched transport."""

    def test_parses_requires_dist(self):
        source = PyPIDataSource(_fast_config())
        source._request_once = AsyncMock(return_value=FLASK_JSON)
        deps = asyncio.run(source.fetch_forward_dependencies("Flask"))
        assert deps == ["werkzeug", "jinja2", "click"]
        url = source._request_once.call_args[0][0]
        assert url == "https://pypi.org/pypi/flask/json"

    def test_responses_are_cached(self):
        source = PyPIDataSource(_fast_config())
        source._request_once = AsyncMock(return_value=FLASK_JSON)

        async def main():
            await source.fetch_forward_dependencies("flask")
            await source.fetch_forward_dependencies("Flask")
            await asyncio.gather(*(source.fetch_forward_dependencies("flask") for _ in range(5)))

        asyncio.run(main())
        assert source._request_once.await_count == 1

    def test_malformed_payload_is_unavailable(self):
        source = PyPIDataSource(_fast_config())
        source._request_once = AsyncMock(return_value={"unexpected": True})
        with pytest.raises(DataUnavailable):
            asyncio.run(source.fetch_forward_dependencies("broken"))

    def test_transient_failures_are_retried(self):
        source = PyPIDataSource(_fast_config())
        source._request_once = AsyncMock(side_effect=[RetryableError("HTTP 503", status=503), FLASK_JSON])
        deps = asyncio.run(source.fetch_forward_dependencies("flask"))
        assert "werkzeug" in deps
        assert source._request_once.await_count == 2

    def test_retry_exhaustion_raises_transient_failure(self):
        source = PyPIDataSource(_fast_config(max_retry_attempts=2))
        source._request_once = AsyncMock(side_effect=RetryableError("HTTP 429", status=429))
        with pytest.raises(TransientFetchFailure) as info:
            asyncio.run(source.fetch_forward_dependencies("flask"))
        assert info.value.attempts == 2
        assert info.value.status == 429
        assert isinstance(info.value, DataUnavailable)

    def test_failures_are_not_cached(self):
        source = PyPIDataSource(_fast_config(max_retry_attempts=1))
        source._request_once = AsyncMock(side_effect=[DataUnavailable("flask", "HTTP 403"), FLASK_JSON])

        async def main():
            with pytest.raises(DataUnavailable):
                await source.fetch_forward_dependencies("flask")
            return await source.fetch_forward_dependencies("flask")

        assert asyncio.run(main()) == ["werkzeug", "jinja2", "click"]


class TestReverseDependents:
    def test_empty_without_api_key(self):
        source = PyPIDataSource(_fast_config())
        source._request_once = AsyncMock()
        assert asyncio.run(source.fetch_reverse_dependents("flask")) == []
        source._request_once.assert_not_awaited()
        assert not source.has_reverse_lookup

    def test_libraries_io_lookup(self):
        source = PyPIDataSource(_fast_config(libraries_io_api_key="KEY", libraries_io_per_page=50))
        source._request_once = AsyncMock(return_value=[{"name": "Flask-Login"}, {"name": "flask"}, {"name": "Quart"}])
        dependents = asyncio.run(source.fetch_reverse_dependents("Flask"))
        assert dependents == ["flask-login", "quart"]
        url = source._request_once.call_args[0][0]
        assert url.startswith("https://libraries.io/api/pypi/flask/dependents?")
        assert "per_page=50" in url
        assert "api_key=KEY" in url


class TestRequestOnce:
    """Status and transport error mapping."""

    def _source(self, responses):
        source = PyPIDataSource(_fast_config())
        source._session = FakeSession(responses)
        return source

    def test_ok(self):
        source = self._source([FakeResponse(200, {"info": {}})])
        assert asyncio.run(source._request_once("https://pypi.org/pypi/x/json", "x")) == {"info": {}}

    def test_not_found(self):
        source = self._source([FakeResponse(404)])
        with pytest.raises(DataUnavailable) as info:
            asyncio.run(source._request_once("https://pypi.org/pypi/x/json", "x"))
        assert info.value.reason == "not found"

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_retryable_status(self, status):
        source = self._source([FakeResponse(status)])
        with pytest.raises(RetryableError) as info:
            asyncio.run(source._request_once("https://pypi.org/pypi/x/json", "x"))
        assert info.value.status == status

    def test_other_status_is_unavailable(self):
        source = self._source([FakeResponse(403)])
        with pytest.raises(DataUnavailable):
            asyncio.run(source._request_once("https://pypi.org/pypi/x/json", "x"))

    def test_invalid_json(self):
        source = self._source([FakeResponse(200, ValueError("bad json"))])
        with pytest.raises(DataUnavailable):
            asyncio.run(source._request_once("https://pypi.org/pypi/x/json", "x"))

    def test_timeout_is_retryable(self):
        class TimeoutSession(FakeSession):
            def get(self, url, headers=None):
                raise asyncio.TimeoutError()

        source = PyPIDataSource(_fast_config())
        source._session = TimeoutSession([])
        with pytest.raises(RetryableError):
            asyncio.run(source._request_once("https://pypi.org/pypi/x/json", "x"))

    def test_context_manager_closes_session(self):
        async def main():
            async with PyPIDataSource(_fast_config()) as source:
                assert source._session is not None
            return source._session

        assert asyncio.run(main()) is None
