"""OSV.dev service for open-source advisory lookups.

API Documentation: https://google.github.io/osv.dev/api/
"""

from loguru import logger

from cvesync.config import Settings
from cvesync.models.cve import is_valid_cve_id
from cvesync.models.osv import OSVVulnerability
from cvesync.services.base import RateLimitedSource
from cvesync.utils.cache import TTLCache
from cvesync.utils.http_client import NonRetryableHTTPError, RateLimiter


class OSVService(RateLimitedSource):
    """Service for checking whether a CVE has OSV advisories."""

    name = "osv"

    def __init__(self, settings: Settings, cache: TTLCache | None = None):
        self.settings = settings
        osv = settings.osv

        super().__init__(
            base_url=osv.base_url.rstrip("/"),
            rate_limiter=RateLimiter(
                requests_per_window=osv.rate_limit,
                window_seconds=osv.window_seconds,
                min_interval=osv.min_interval,
            ),
            cache_ttl=osv.cache_ttl,
            timeout=osv.timeout,
            retry_settings=settings.retry,
            cache=cache,
        )

    async def get_vulnerabilities_by_cve(self, cve_id: str) -> list[OSVVulnerability]:
        """Get OSV advisories recorded under a CVE ID.

        Args:
            cve_id: CVE identifier.

        Returns:
            Advisories for the CVE; empty when OSV does not know it.

        Raises:
            ValueError: If the identifier is malformed.
        """
        if not is_valid_cve_id(cve_id):
            raise ValueError(f"Invalid CVE ID format: {cve_id!r}")

        try:
            async with self.client() as client:
                data = await self._get_json(client, f"/vulns/{cve_id.strip().upper()}")
        except NonRetryableHTTPError as e:
            if e.status_code == 404:
                return []
            raise

        try:
            return [OSVVulnerability.from_api(data)]
        except (KeyError, ValueError) as e:
            logger.warning(f"Ignoring malformed OSV advisory for {cve_id}: {e}")
            return []

    async def has_advisory(self, cve_id: str) -> bool:
        """Check whether a non-withdrawn OSV advisory exists for a CVE."""
        advisories = await self.get_vulnerabilities_by_cve(cve_id)
        return any(not advisory.is_withdrawn for advisory in advisories)
