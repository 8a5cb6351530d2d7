"""CISA Known Exploited Vulnerabilities (KEV) service.

Fetches the KEV catalog which contains vulnerabilities that are
actively being exploited in the wild.

Data source: https://www.cisa.gov/known-exploited-vulnerabilities-catalog
"""

from collections.abc import Iterable
from typing import Any

from loguru import logger

from cvesync.config import Settings
from cvesync.models.kev import KEVCatalog, KEVEntry
from cvesync.services.base import RateLimitedSource
from cvesync.services.kev_diff import KEVDiffDetector
from cvesync.utils.cache import TTLCache
from cvesync.utils.http_client import RateLimiter

CATALOG_CACHE_KEY = "kev:catalog"


class KEVService(RateLimitedSource):
    """Service for fetching and processing CISA KEV data.

    The KEV catalog is updated frequently and contains vulnerabilities
    that federal agencies are required to remediate within specific timeframes.
    The parsed catalog is cached; every network fetch is shown to the diff
    detector so subscribers learn about new entries.
    """

    name = "kev"

    def __init__(
        self,
        settings: Settings,
        diff_detector: KEVDiffDetector | None = None,
        cache: TTLCache | None = None,
    ):
        """Initialize KEV service.

        Args:
            settings: Application settings.
            diff_detector: Detector notified of each freshly fetched catalog.
            cache: Shared response cache, private when omitted.
        """
        self.settings = settings
        self.diff_detector = diff_detector
        self._catalog: KEVCatalog | None = None
        kev = settings.kev

        super().__init__(
            base_url=kev.url,
            rate_limiter=RateLimiter(
                requests_per_window=kev.rate_limit,
                window_seconds=kev.window_seconds,
            ),
            cache_ttl=kev.cache_ttl,
            timeout=kev.timeout,
            retry_settings=settings.retry,
            cache=cache,
        )

    @property
    def catalog(self) -> KEVCatalog | None:
        """Get the most recently loaded KEV catalog."""
        return self._catalog

    async def fetch(self, force_refresh: bool = False) -> KEVCatalog:
        """Fetch and parse the KEV catalog.

        Args:
            force_refresh: Bypass the cached catalog.

        Returns:
            KEVCatalog containing all valid entries.
        """
        if not force_refresh:
            cached = self.cache.get(CATALOG_CACHE_KEY)
            if cached is not None:
                self._catalog = cached
                return cached

        logger.info(f"Fetching CISA KEV catalog from {self.base_url}")

        async with self.client() as client:
            data = await self._send_with_retry(client, self.base_url, {})

        catalog = KEVCatalog.from_api(data)
        self.cache.set(CATALOG_CACHE_KEY, catalog, self.cache_ttl)
        self._catalog = catalog
        logger.info(f"Loaded {catalog.total_count} KEV entries")

        if self.diff_detector is not None:
            await self.diff_detector.observe(catalog.entries.values())

        return catalog

    async def lookup(self, cve_ids: Iterable[str]) -> dict[str, KEVEntry]:
        """Find the KEV entries for a set of CVEs.

        Args:
            cve_ids: CVE identifiers to look up.

        Returns:
            Mapping of CVE ID to KEVEntry for the listed CVEs.
        """
        catalog = await self.fetch()
        found: dict[str, KEVEntry] = {}
        for cve_id in cve_ids:
            if entry := catalog.get_entry(cve_id):
                found[entry.cve_id] = entry
        return found

    def get_entry(self, cve_id: str) -> KEVEntry | None:
        """Get KEV entry for a specific CVE.

        Args:
            cve_id: CVE identifier.

        Returns:
            KEVEntry if found and catalog is loaded, None otherwise.
        """
        if self._catalog:
            return self._catalog.get_entry(cve_id)
        return None

    def is_kev(self, cve_id: str) -> bool:
        """Check if a CVE is in the loaded KEV catalog."""
        if self._catalog:
            return self._catalog.is_kev(cve_id)
        return False

    async def get_recent(self, days: int = 30) -> list[KEVEntry]:
        """Get KEV entries added in the last N days.

        Args:
            days: Number of days to look back.

        Returns:
            List of recent KEV entries, newest first.
        """
        catalog = await self.fetch()
        return catalog.recent(days)

    async def get_ransomware_entries(self) -> list[KEVEntry]:
        """Get all CVEs known to be used in ransomware campaigns."""
        catalog = await self.fetch()
        return catalog.ransomware_entries()

    async def get_by_vendor(self, vendor: str) -> list[KEVEntry]:
        """Get KEV entries for a vendor (case-insensitive substring match)."""
        catalog = await self.fetch()
        return catalog.by_vendor(vendor)

    async def get_by_product(self, product: str) -> list[KEVEntry]:
        """Get KEV entries for a product (case-insensitive substring match)."""
        catalog = await self.fetch()
        return catalog.by_product(product)

    async def get_stats(self) -> dict[str, Any]:
        """Get statistics about KEV data.

        Returns:
            Dictionary with statistics.
        """
        catalog = await self.fetch()
        entries = list(catalog.entries.values())

        return {
            "total_count": catalog.total_count,
            "catalog_version": catalog.catalog_version,
            "date_released": (
                catalog.date_released.isoformat() if catalog.date_released else None
            ),
            "ransomware_associated": sum(1 for e in entries if e.known_ransomware_campaign_use),
            "unique_vendors": len({e.vendor_project for e in entries}),
        }
