"""Asynchronous PyPI data source: forward dependencies and reverse dependents.

Forward dependencies come from the PyPI JSON API. Reverse dependents come
from Libraries.io when an API key is configured; PyPI itself offers no
reverse lookup, so without a key the live answer is an empty list.

Every request goes through the same gate: response cache, in-flight
de-duplication, a concurrency limiter, a per-domain rate limiter, and
retry with exponential backoff for 429/5xx/timeouts/connection errors.
"""
from __future__ import annotations

import asyncio
import logging
import urllib.parse
from typing import Any, Dict, List, Optional, Protocol

import aiohttp

from constants import Constants
from common.cache import TTLCache
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer
from common.names import normalize_name
from common.rate_limit import ConcurrencyLimiter, RateLimiter
from common.retry import (
    RetriesExhausted,
    RetryableError,
    RetryPolicy,
    is_retryable_status,
    retry_async,
)
from registry.pypi.metadata import MetadataError, PackageMetadata, parse_dependents
from similarity.config import FetchConfig
from similarity.errors import DataUnavailable, TransientFetchFailure

logger = logging.getLogger(__name__)

HEADERS_JSON = {"Accept": "application/json"}


class PackageDataSource(Protocol):
    """What the engine needs from a registry. Both calls return normalized names."""

    async def fetch_forward_dependencies(self, name: str) -> List[str]:
        ...

    async def fetch_reverse_dependents(self, name: str) -> List[str]:
        ...


class PyPIDataSource:
    """PackageDataSource backed by pypi.org (and optionally libraries.io)."""

    def __init__(
        self,
        fetch_config: Optional[FetchConfig] = None,
        *,
        pypi_base: str = Constants.REGISTRY_URL_PYPI,
        libraries_io_base: str = Constants.LIBRARIES_IO_API_BASE,
        rate_limiter: Optional[RateLimiter] = None,
        concurrency: Optional[ConcurrencyLimiter] = None,
    ):
        """Initialize the data source.

        Args:
            fetch_config: Retry, rate limit, timeout and cache tunables.
            pypi_base: Base URL of the PyPI JSON API (trailing slash expected).
            libraries_io_base: Base URL of the Libraries.io API.
            rate_limiter: Shared per-domain rate limiter; one is created if omitted.
            concurrency: Shared in-flight request limiter; one is created if omitted.
        """
        self._config = fetch_config or FetchConfig()
        self._pypi_base = pypi_base if pypi_base.endswith("/") else pypi_base + "/"
        self._libraries_io_base = (
            libraries_io_base if libraries_io_base.endswith("/") else libraries_io_base + "/"
        )
        self._rate_limiter = rate_limiter or RateLimiter(self._config.request_delay_ms)
        self._concurrency = concurrency or ConcurrencyLimiter(self._config.max_concurrent_requests)
        self._retry_policy = RetryPolicy(
            max_attempts=self._config.max_retry_attempts,
            initial_delay_ms=self._config.retry_initial_delay_ms,
            max_delay_ms=self._config.retry_max_delay_ms,
            jitter_ms=self._config.retry_jitter_ms,
        )
        self._timeout = aiohttp.ClientTimeout(total=self._config.fetch_timeout_ms / 1000.0)
        self._cache: TTLCache[Any] = TTLCache(
            max_entries=self._config.cache_max_size,
            default_ttl=self._config.cache_ttl_sec,
        )
        self._inflight: Dict[str, asyncio.Future] = {}
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def has_reverse_lookup(self) -> bool:
        return bool(self._config.libraries_io_api_key)

    async def start(self) -> None:
        """Start the HTTP session."""
        if self._session is None:
            connector = aiohttp.TCPConnector(limit=self._config.max_concurrent_requests)
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                connector=connector,
                headers={"User-Agent": Constants.USER_AGENT},
            )

    async def stop(self) -> None:
        """Stop the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "PyPIDataSource":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.stop()

    # ----- PackageDataSource ------------------------------------------------

    async def fetch_metadata(self, name: str) -> PackageMetadata:
        """Fetch and validate ``/pypi/<name>/json``.

        Raises:
            DataUnavailable: 404, malformed payload, or non-retryable HTTP error.
            TransientFetchFailure: retryable failures outlasted the retry budget.
        """
        normalized = normalize_name(name)
        url = f"{self._pypi_base}{urllib.parse.quote(normalized, safe='')}/json"
        payload = await self._get_json(f"pypi:meta:{normalized}", url, normalized)
        try:
            return PackageMetadata.from_json(payload, normalized)
        except MetadataError as exc:
            raise DataUnavailable(normalized, str(exc)) from exc

    async def fetch_forward_dependencies(self, name: str) -> List[str]:
        """Normalized names the latest release of ``name`` declares."""
        meta = await self.fetch_metadata(name)
        return list(meta.dependencies)

    async def fetch_reverse_dependents(self, name: str) -> List[str]:
        """Normalized dependents of ``name``; empty without a Libraries.io key."""
        if not self.has_reverse_lookup:
            return []
        normalized = normalize_name(name)
        query = urllib.parse.urlencode({
            "per_page": self._config.libraries_io_per_page,
            "api_key": self._config.libraries_io_api_key,
        })
        url = (
            f"{self._libraries_io_base}pypi/{urllib.parse.quote(normalized, safe='')}"
            f"/dependents?{query}"
        )
        payload = await self._get_json(f"librariesio:dependents:{normalized}", url, normalized)
        try:
            return [d for d in parse_dependents(payload) if d != normalized]
        except MetadataError as exc:
            raise DataUnavailable(normalized, str(exc)) from exc

    # ----- transport ----------------------------------------------------------

    async def _get_json(self, cache_key: str, url: str, package: str) -> Any:
        """Cached, de-duplicated, limited, retried JSON GET."""
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        pending = self._inflight.get(cache_key)
        if pending is not None:
            return await asyncio.shield(pending)

        fut = asyncio.get_running_loop().create_future()
        self._inflight[cache_key] = fut
        try:
            payload = await self._concurrency.run(self._fetch_with_retry, url, package)
        except BaseException as exc:
            if not fut.done():
                fut.set_exception(exc)
                # Followers that already awaited get the error; nobody else should log it.
                fut.exception()
            raise
        else:
            self._cache.set(cache_key, payload)
            fut.set_result(payload)
            return payload
        finally:
            self._inflight.pop(cache_key, None)

    async def _fetch_with_retry(self, url: str, package: str) -> Any:
        try:
            return await retry_async(
                lambda: self._request_once(url, package),
                self._retry_policy,
                context=safe_url(url),
            )
        except RetriesExhausted as exc:
            status = getattr(exc.last_error, "status", None)
            logger.warning(
                "Giving up on %s after %s attempts: %s",
                safe_url(url), exc.attempts, exc.last_error,
            )
            raise TransientFetchFailure(package, str(exc.last_error), exc.attempts, status) from exc

    async def _request_once(self, url: str, package: str) -> Any:
        """One rate-limited GET. Maps outcomes onto the retry/error taxonomy."""
        if self._session is None:
            await self.start()
        assert self._session is not None

        await self._rate_limiter.acquire(RateLimiter.domain_for(url))
        target = safe_url(url)
        with Timer() as t:
            if is_debug_enabled(logger):
                logger.debug(
                    "HTTP request",
                    extra=extra_context(
                        event="http_request", component="pypi_client", action="GET", target=target
                    ),
                )
            try:
                async with self._session.get(url, headers=HEADERS_JSON) as response:
                    status = response.status
                    if status == 200:
                        try:
                            payload = await response.json(content_type=None)
                        except ValueError as exc:
                            raise DataUnavailable(package, f"invalid JSON: {exc}") from exc
                        if is_debug_enabled(logger):
                            logger.debug(
                                "HTTP response ok",
                                extra=extra_context(
                                    event="http_response",
                                    component="pypi_client",
                                    action="GET",
                                    outcome="success",
                                    status_code=status,
                                    duration_ms=t.duration_ms(),
                                    target=target,
                                ),
                            )
                        return payload
            except asyncio.TimeoutError as exc:
                raise RetryableError(f"timeout fetching {target}") from exc
            except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError) as exc:
                raise RetryableError(f"connection error fetching {target}: {exc}") from exc

        if is_debug_enabled(logger):
            logger.debug(
                "HTTP non-2xx",
                extra=extra_context(
                    event="http_response",
                    component="pypi_client",
                    action="GET",
                    outcome="http_error",
                    status_code=status,
                    duration_ms=t.duration_ms(),
                    target=target,
                ),
            )
        if status == 404:
            raise DataUnavailable(package, "not found")
        if is_retryable_status(status):
            raise RetryableError(f"HTTP {status}", status=status)
        raise DataUnavailable(package, f"HTTP {status}")
