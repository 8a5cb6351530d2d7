"""HTTP client utilities for CVESync source clients."""

import asyncio
from collections import deque
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from loguru import logger
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)


class RateLimiter:
    """Sliding window rate limiter for API requests.

    At most ``requests_per_window`` requests are admitted in any rolling
    window of ``window_seconds``, and consecutive requests are spaced at
    least ``min_interval`` seconds apart.
    """

    def __init__(
        self,
        requests_per_window: int,
        window_seconds: float = 30,
        min_interval: float = 0.0,
    ):
        """Initialize rate limiter.

        Args:
            requests_per_window: Maximum requests allowed per window.
            window_seconds: Window duration in seconds.
            min_interval: Minimum delay between two requests in seconds.
        """
        if requests_per_window < 1:
            raise ValueError("requests_per_window must be at least 1")
        self.requests_per_window = requests_per_window
        self.window_seconds = window_seconds
        self.min_interval = min_interval
        self._request_times: deque[float] = deque()
        self._last_request: float | None = None
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._request_times and now - self._request_times[0] >= self.window_seconds:
            self._request_times.popleft()

    async def acquire(self) -> None:
        """Acquire permission to make a request, waiting if necessary."""
        async with self._lock:
            loop = asyncio.get_running_loop()
            now = loop.time()
            self._prune(now)

            # At the limit: wait until the oldest request leaves the window
            while len(self._request_times) >= self.requests_per_window:
                wait_time = self.window_seconds - (now - self._request_times[0])
                if wait_time > 0:
                    logger.debug(f"Rate limit reached, waiting {wait_time:.2f}s")
                    await asyncio.sleep(wait_time)
                now = loop.time()
                self._prune(now)

            if self._last_request is not None and self.min_interval > 0:
                gap = now - self._last_request
                if gap < self.min_interval:
                    await asyncio.sleep(self.min_interval - gap)
                    now = loop.time()

            self._request_times.append(now)
            self._last_request = now

    @property
    def requests_in_window(self) -> int:
        """Number of requests admitted during the current window."""
        try:
            now = asyncio.get_running_loop().time()
        except RuntimeError:
            return len(self._request_times)
        return sum(1 for t in self._request_times if now - t < self.window_seconds)


class HTTPClientError(Exception):
    """Base exception for HTTP client errors."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RetryableHTTPError(HTTPClientError):
    """HTTP error that can be retried."""


class NonRetryableHTTPError(HTTPClientError):
    """HTTP error that should not be retried."""


@asynccontextmanager
async def create_http_client(
    timeout: int = 30,
    **kwargs: Any,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Create an async HTTP client with sensible defaults.

    Args:
        timeout: Request timeout in seconds.
        **kwargs: Additional arguments passed to httpx.AsyncClient.

    Yields:
        Configured httpx.AsyncClient instance.
    """
    # Remove timeout from kwargs if accidentally passed there too
    kwargs.pop("timeout", None)

    async with httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        follow_redirects=True,
        **kwargs,
    ) as client:
        yield client


def create_retry_decorator(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 30,
) -> Any:
    """Create a tenacity retry decorator for HTTP requests.

    Args:
        max_attempts: Maximum number of attempts, the first one included.
        min_wait: Minimum wait time between retries (seconds).
        max_wait: Maximum wait time between retries (seconds).

    Returns:
        Configured retry decorator.
    """
    return retry(
        retry=retry_if_exception_type(
            (RetryableHTTPError, httpx.TimeoutException, httpx.NetworkError)
        ),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            f"Retrying request (attempt {retry_state.attempt_number}): "
            f"{retry_state.outcome.exception() if retry_state.outcome else 'unknown error'}"
        ),
    )


async def handle_response(response: httpx.Response) -> Any:
    """Handle HTTP response and raise appropriate exceptions.

    Args:
        response: httpx Response object.

    Returns:
        Parsed JSON response data.

    Raises:
        RetryableHTTPError: For 5xx errors and rate limiting.
        NonRetryableHTTPError: For 4xx errors (except 429).
    """
    if response.status_code == 200:
        return response.json()

    error_msg = f"HTTP {response.status_code}: {response.text[:200]}"

    # Rate limiting - retryable
    if response.status_code == 429:
        logger.warning("Rate limited by server")
        raise RetryableHTTPError(error_msg, response.status_code)

    # Server errors - retryable
    if response.status_code >= 500:
        logger.warning(f"Server error: {error_msg}")
        raise RetryableHTTPError(error_msg, response.status_code)

    # Client errors - not retryable
    if response.status_code >= 400:
        logger.debug(f"Client error: {error_msg}")
        raise NonRetryableHTTPError(error_msg, response.status_code)

    return response.json()
