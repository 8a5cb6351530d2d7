"""EPSS (Exploit Prediction Scoring System) service.

Looks up exploitation probability scores from the FIRST API, which
estimates the likelihood that a CVE will be exploited in the wild.

Data source: https://www.first.org/epss/
"""

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field

import httpx
from loguru import logger

from cvesync.config import Settings
from cvesync.models.cve import is_valid_cve_id
from cvesync.models.epss import EPSSScore
from cvesync.services.base import RateLimitedSource
from cvesync.utils.cache import TTLCache
from cvesync.utils.http_client import RateLimiter


@dataclass
class EPSSLookup:
    """Scores for one lookup plus the IDs whose chunk could not be fetched."""

    scores: dict[str, EPSSScore] = field(default_factory=dict)
    failed_ids: set[str] = field(default_factory=set)


class EPSSService(RateLimitedSource):
    """Service for looking up EPSS scores in chunks of CVE IDs."""

    name = "epss"

    def __init__(self, settings: Settings, cache: TTLCache | None = None):
        """Initialize EPSS service.

        Args:
            settings: Application settings.
            cache: Shared response cache, private when omitted.
        """
        self.settings = settings
        epss = settings.epss
        self.chunk_size = epss.chunk_size

        super().__init__(
            base_url=epss.base_url,
            rate_limiter=RateLimiter(
                requests_per_window=epss.rate_limit,
                window_seconds=epss.window_seconds,
                min_interval=epss.min_interval,
            ),
            cache_ttl=epss.cache_ttl,
            timeout=epss.timeout,
            retry_settings=settings.retry,
            cache=cache,
        )

    async def get_scores(self, cve_ids: Iterable[str]) -> EPSSLookup:
        """Get EPSS scores for a set of CVEs.

        Malformed IDs are dropped with a warning. Chunks that fail are
        logged and skipped, and their IDs are reported in ``failed_ids``
        so callers can tell "no score" apart from "not looked up".

        Args:
            cve_ids: CVE identifiers to look up.

        Returns:
            EPSSLookup with scores for the CVEs EPSS knows about.

        Raises:
            HTTPClientError: If every chunk failed.
        """
        valid_ids: list[str] = []
        seen: set[str] = set()
        for raw_id in cve_ids:
            if not is_valid_cve_id(raw_id):
                logger.warning(f"Skipping invalid CVE ID for EPSS lookup: {raw_id!r}")
                continue
            cve_id = raw_id.strip().upper()
            if cve_id not in seen:
                seen.add(cve_id)
                valid_ids.append(cve_id)

        if not valid_ids:
            return EPSSLookup()

        chunks = [
            valid_ids[i : i + self.chunk_size] for i in range(0, len(valid_ids), self.chunk_size)
        ]

        async with self.client() as client:
            results = await asyncio.gather(
                *(self._fetch_chunk(client, chunk) for chunk in chunks),
                return_exceptions=True,
            )

        lookup = EPSSLookup()
        errors: list[Exception] = []
        for chunk, result in zip(chunks, results, strict=True):
            if isinstance(result, Exception):
                logger.warning(f"EPSS lookup failed for {len(chunk)} CVEs: {result}")
                errors.append(result)
                lookup.failed_ids.update(chunk)
                continue
            if isinstance(result, BaseException):
                raise result
            lookup.scores.update(result)

        if errors and len(errors) == len(chunks):
            raise errors[-1]

        logger.debug(f"Resolved {len(lookup.scores)}/{len(valid_ids)} EPSS scores")
        return lookup

    async def _fetch_chunk(
        self,
        client: httpx.AsyncClient,
        chunk: list[str],
    ) -> dict[str, EPSSScore]:
        data = await self._get_json(
            client,
            params={"cve": ",".join(chunk), "limit": self.chunk_size},
        )

        scores: dict[str, EPSSScore] = {}
        for row in data.get("data", []):
            try:
                score = EPSSScore.from_api(row)
            except (ValueError, TypeError) as e:
                logger.warning(f"Skipping invalid EPSS row {row!r}: {e}")
                continue
            scores[score.cve_id] = score
        return scores
