"""Concurrent EPSS and KEV lookups for a batch of CVEs."""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field

from loguru import logger

from cvesync.models.epss import EPSSScore
from cvesync.models.kev import KEVEntry
from cvesync.services.epss_service import EPSSService
from cvesync.services.kev_service import KEVService


@dataclass
class EnrichmentResult:
    """Enrichment maps for one batch.

    ``epss_ok``/``kev_ok`` are False when the source failed, in which case
    its map is empty because nothing is known, not because nothing matched.
    ``epss_failed`` holds the IDs whose EPSS chunk failed while others succeeded.
    """

    epss: dict[str, EPSSScore] = field(default_factory=dict)
    kev: dict[str, KEVEntry] = field(default_factory=dict)
    epss_ok: bool = True
    kev_ok: bool = True
    epss_failed: set[str] = field(default_factory=set)

    def epss_known(self, cve_id: str) -> bool:
        """Whether the EPSS lookup for ``cve_id`` actually completed."""
        return self.epss_ok and cve_id not in self.epss_failed


class EnrichmentResolver:
    """Resolves EPSS scores and KEV entries for a batch in parallel."""

    def __init__(self, epss_service: EPSSService, kev_service: KEVService):
        self.epss_service = epss_service
        self.kev_service = kev_service

    async def resolve(self, cve_ids: Sequence[str]) -> EnrichmentResult:
        """Look up both sources concurrently.

        A failing source degrades to an empty map and never fails the batch.

        Args:
            cve_ids: CVE identifiers in the batch.

        Returns:
            EnrichmentResult with one map per source.
        """
        if not cve_ids:
            return EnrichmentResult()

        epss_task = asyncio.ensure_future(self.epss_service.get_scores(cve_ids))
        kev_task = asyncio.ensure_future(self.kev_service.lookup(cve_ids))
        epss, kev = await asyncio.gather(epss_task, kev_task, return_exceptions=True)

        result = EnrichmentResult()

        if isinstance(epss, BaseException):
            if not isinstance(epss, Exception):
                raise epss
            logger.warning(f"EPSS enrichment unavailable for batch: {epss}")
            result.epss_ok = False
        else:
            result.epss = epss.scores
            result.epss_failed = epss.failed_ids

        if isinstance(kev, BaseException):
            if not isinstance(kev, Exception):
                raise kev
            logger.warning(f"KEV enrichment unavailable for batch: {kev}")
            result.kev_ok = False
        else:
            result.kev = kev

        return result
