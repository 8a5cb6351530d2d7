"""NVD 2.0 API service for fetching CVE data.

This service implements the NVD 2.0 API with proper rate limiting,
pagination, and retry logic.

API Documentation: https://nvd.nist.gov/developers/vulnerabilities
"""

from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from loguru import logger

from cvesync.config import Settings
from cvesync.models.cve import VulnerabilityRecord, is_valid_cve_id
from cvesync.services.base import RateLimitedSource
from cvesync.utils.cache import TTLCache
from cvesync.utils.http_client import RateLimiter

NVD_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S.000Z"


@dataclass
class NVDPage:
    """One page of NVD results."""

    records: list[VulnerabilityRecord] = field(default_factory=list)
    start_index: int = 0
    total_results: int = 0
    raw_count: int = 0


def split_date_range(
    start: datetime,
    end: datetime,
    max_days: int = 120,
) -> list[tuple[datetime, datetime]]:
    """Split a window into consecutive slices no longer than ``max_days``.

    Args:
        start: Window start.
        end: Window end.
        max_days: Longest slice NVD accepts.

    Returns:
        Ordered (start, end) pairs covering the window.
    """
    if start > end:
        raise ValueError("start must not be after end")

    slices: list[tuple[datetime, datetime]] = []
    step = timedelta(days=max_days)
    cursor = start
    while True:
        slice_end = min(cursor + step, end)
        slices.append((cursor, slice_end))
        if slice_end >= end:
            return slices
        cursor = slice_end


class NVDService(RateLimitedSource):
    """Service for interacting with the NVD 2.0 API.

    Handles CVE data fetching with:
    - Automatic pagination across 120-day publication windows
    - Rate limiting (5 req/30s without API key, 50 req/30s with)
    - Retry logic with exponential backoff
    """

    name = "nvd"

    def __init__(self, settings: Settings, cache: TTLCache | None = None):
        """Initialize NVD service.

        Args:
            settings: Application settings.
            cache: Shared response cache, private when omitted.
        """
        self.settings = settings
        nvd = settings.nvd

        headers: dict[str, str] = {}
        if nvd.api_key:
            headers["apiKey"] = nvd.api_key.get_secret_value()

        super().__init__(
            base_url=nvd.base_url,
            rate_limiter=RateLimiter(
                requests_per_window=nvd.rate_limit,
                window_seconds=nvd.window_seconds,
                min_interval=nvd.min_interval,
            ),
            cache_ttl=nvd.cache_ttl,
            timeout=nvd.timeout,
            headers=headers,
            retry_settings=settings.retry,
            cache=cache,
        )

    async def iter_pages(
        self,
        start_date: datetime,
        end_date: datetime,
        results_per_page: int | None = None,
    ) -> AsyncGenerator[NVDPage, None]:
        """Fetch CVEs published in a window, one page at a time.

        Args:
            start_date: Publication window start.
            end_date: Publication window end.
            results_per_page: Number of results per API page.

        Yields:
            NVDPage for each response, in fetch order.
        """
        slices = split_date_range(start_date, end_date, self.settings.nvd.max_range_days)

        async with self.client() as client:
            for slice_start, slice_end in slices:
                params = self._build_params(slice_start, slice_end, results_per_page)
                start_index = 0

                while True:
                    params["startIndex"] = start_index
                    data = await self._get_json(client, params=params)

                    total_results = int(data.get("totalResults", 0))
                    vulnerabilities = data.get("vulnerabilities", [])

                    yield NVDPage(
                        records=self._parse_records(vulnerabilities),
                        start_index=start_index,
                        total_results=total_results,
                        raw_count=len(vulnerabilities),
                    )

                    if not vulnerabilities:
                        break

                    start_index += len(vulnerabilities)
                    logger.info(f"Fetched {start_index}/{total_results} CVEs")

                    if start_index >= total_results:
                        break

    async def fetch_cves(
        self,
        start_date: datetime,
        end_date: datetime,
    ) -> AsyncGenerator[VulnerabilityRecord, None]:
        """Fetch CVEs published in a window.

        Yields:
            VulnerabilityRecord instances parsed from API responses.
        """
        async for page in self.iter_pages(start_date, end_date):
            for record in page.records:
                yield record

    async def fetch_cve(self, cve_id: str) -> VulnerabilityRecord:
        """Fetch a single CVE by ID.

        Args:
            cve_id: CVE identifier (e.g., CVE-2024-12345).

        Returns:
            VulnerabilityRecord for the CVE.

        Raises:
            ValueError: If the identifier is malformed.
            LookupError: If NVD has no such CVE.
        """
        if not is_valid_cve_id(cve_id):
            raise ValueError(f"Invalid CVE ID format: {cve_id!r}")

        async with self.client() as client:
            data = await self._get_json(client, params={"cveId": cve_id.strip().upper()})

        vulnerabilities = data.get("vulnerabilities", [])
        if not vulnerabilities:
            raise LookupError(f"{cve_id} not found in NVD")

        return VulnerabilityRecord.from_nvd_api(vulnerabilities[0])

    def _build_params(
        self,
        start_date: datetime,
        end_date: datetime,
        results_per_page: int | None = None,
    ) -> dict[str, Any]:
        """Build query parameters for NVD API request.

        Args:
            start_date: Publication date start.
            end_date: Publication date end.
            results_per_page: Results per page.

        Returns:
            Dictionary of query parameters.
        """
        # NVD API requires ISO 8601 format with timezone (Z suffix for UTC)
        return {
            "resultsPerPage": results_per_page or self.settings.nvd.results_per_page,
            "pubStartDate": start_date.strftime(NVD_DATE_FORMAT),
            "pubEndDate": end_date.strftime(NVD_DATE_FORMAT),
        }

    @staticmethod
    def _parse_records(vulnerabilities: list[dict[str, Any]]) -> list[VulnerabilityRecord]:
        records: list[VulnerabilityRecord] = []
        for vuln in vulnerabilities:
            try:
                records.append(VulnerabilityRecord.from_nvd_api(vuln))
            except Exception as e:
                cve_id_str = vuln.get("cve", {}).get("id", "unknown")
                logger.warning(f"Failed to parse CVE {cve_id_str}: {e}")
        return records
