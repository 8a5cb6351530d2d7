"""In-memory response cache with per-entry time-to-live."""

import json
import time
from collections.abc import Callable, Mapping
from typing import Any

from loguru import logger


class TTLCache:
    """Key/value store whose entries expire a fixed time after insertion.

    Reads never extend an entry's lifetime. Expired entries are treated as
    absent and evicted lazily when they are next read.
    """

    def __init__(
        self,
        default_ttl: float = 3600,
        name: str = "cache",
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize cache.

        Args:
            default_ttl: TTL in seconds used when ``set`` is not given one.
            name: Label used in log messages.
            clock: Monotonic time source, injectable for tests.
        """
        self.default_ttl = default_ttl
        self.name = name
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    @staticmethod
    def make_key(endpoint: str, params: Mapping[str, Any] | None = None) -> str:
        """Build a stable key from an endpoint and its query parameters."""
        encoded = json.dumps(dict(params or {}), sort_keys=True, default=str)
        return f"{endpoint}:{encoded}"

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None when absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None

        logger.debug(f"{self.name} cache hit: {key}")
        return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a value that expires ``ttl`` seconds from now."""
        lifetime = self.default_ttl if ttl is None else ttl
        self._entries[key] = (self._clock() + lifetime, value)

    def stats(self) -> dict[str, int]:
        """Get entry counts.

        Returns:
            Dictionary with ``size``, ``activeCount`` and ``expiredCount``.
        """
        now = self._clock()
        expired = sum(1 for expires_at, _ in self._entries.values() if now >= expires_at)
        return {
            "size": len(self._entries),
            "activeCount": len(self._entries) - expired,
            "expiredCount": expired,
        }

    def clear(self) -> int:
        """Remove every entry and return how many were dropped."""
        size = len(self._entries)
        self._entries.clear()
        logger.debug(f"Cleared {size} {self.name} cache entries")
        return size

    def __len__(self) -> int:
        return len(self._entries)
