"""Utility functions and helpers for CVESync."""

from cvesync.utils.cache import TTLCache
from cvesync.utils.http_client import (
    HTTPClientError,
    NonRetryableHTTPError,
    RateLimiter,
    RetryableHTTPError,
    create_http_client,
    create_retry_decorator,
    handle_response,
)

__all__ = [
    "HTTPClientError",
    "NonRetryableHTTPError",
    "RateLimiter",
    "RetryableHTTPError",
    "TTLCache",
    "create_http_client",
    "create_retry_decorator",
    "handle_response",
]
