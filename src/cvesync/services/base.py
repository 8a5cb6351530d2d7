"""Shared request path for rate-limited upstream sources."""

from collections.abc import Mapping
from contextlib import AbstractAsyncContextManager
from typing import Any

import httpx
from loguru import logger

from cvesync.config import RetrySettings
from cvesync.utils.cache import TTLCache
from cvesync.utils.http_client import (
    RateLimiter,
    create_http_client,
    create_retry_decorator,
    handle_response,
)

USER_AGENT = "CVESync/1.0"


class RateLimitedSource:
    """Base class for HTTP sources behind a rate limiter and response cache.

    Every request goes through the same path: cache lookup, then limiter
    admission, then the HTTP call and response classification. Transient
    failures are retried with exponential backoff and each attempt is
    admitted by the limiter separately.
    """

    name = "source"

    def __init__(
        self,
        base_url: str,
        rate_limiter: RateLimiter,
        cache_ttl: float,
        timeout: int = 30,
        headers: Mapping[str, str] | None = None,
        retry_settings: RetrySettings | None = None,
        cache: TTLCache | None = None,
    ):
        """Initialize source.

        Args:
            base_url: Root URL that request paths are appended to.
            rate_limiter: Limiter admitting every outgoing attempt.
            cache_ttl: Lifetime of cached responses in seconds.
            timeout: Request timeout in seconds.
            headers: Extra headers sent with every request.
            retry_settings: Backoff policy for transient failures.
            cache: Response cache; a private one is created when omitted.
        """
        self.base_url = base_url
        self.rate_limiter = rate_limiter
        self.cache_ttl = cache_ttl
        self.cache = cache if cache is not None else TTLCache(cache_ttl, name=self.name)
        self.timeout = timeout
        self.headers: dict[str, str] = {
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
            **(headers or {}),
        }
        self.request_count = 0

        retry_settings = retry_settings or RetrySettings()
        self._send_with_retry = create_retry_decorator(
            max_attempts=retry_settings.max_attempts,
            min_wait=retry_settings.min_wait,
            max_wait=retry_settings.max_wait,
        )(self._send)

    def client(self) -> AbstractAsyncContextManager[httpx.AsyncClient]:
        """Open an HTTP client configured for this source."""
        return create_http_client(timeout=self.timeout, headers=self.headers)

    async def _send(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: dict[str, Any],
    ) -> Any:
        await self.rate_limiter.acquire()
        self.request_count += 1

        logger.debug(f"{self.name} request: {url} {params}")
        response = await client.get(url, params=params)
        return await handle_response(response)

    async def _get_json(
        self,
        client: httpx.AsyncClient,
        path: str = "",
        params: dict[str, Any] | None = None,
        use_cache: bool = True,
    ) -> Any:
        """Fetch JSON from ``base_url + path``, consulting the cache first.

        Args:
            client: HTTP client instance.
            path: Path appended to the base URL.
            params: Query parameters.
            use_cache: Whether a cached response may be returned.

        Returns:
            Parsed JSON response.

        Raises:
            RetryableHTTPError: If transient failures outlast the retry budget.
            NonRetryableHTTPError: On client errors other than 429.
        """
        url = f"{self.base_url}{path}"
        params = dict(params or {})
        key = TTLCache.make_key(url, params)

        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        data = await self._send_with_retry(client, url, params)
        self.cache.set(key, data, self.cache_ttl)
        return data

    def status(self) -> dict[str, Any]:
        """Get rate limit and cache status.

        Returns:
            Dictionary describing the source's current budget usage.
        """
        return {
            "name": self.name,
            "baseUrl": self.base_url,
            "rateLimit": self.rate_limiter.requests_per_window,
            "windowSeconds": self.rate_limiter.window_seconds,
            "requestsInWindow": self.rate_limiter.requests_in_window,
            "requestCount": self.request_count,
            "cache": self.cache.stats(),
        }
