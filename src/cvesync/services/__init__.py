"""Services for CVESync data fetching and persistence."""

from cvesync.services.base import RateLimitedSource
from cvesync.services.elasticsearch_service import ElasticsearchService
from cvesync.services.epss_service import EPSSService
from cvesync.services.kev_diff import KEVDiffDetector
from cvesync.services.kev_service import KEVService
from cvesync.services.nvd_service import NVDPage, NVDService
from cvesync.services.osv_service import OSVService

__all__ = [
    "EPSSService",
    "ElasticsearchService",
    "KEVDiffDetector",
    "KEVService",
    "NVDPage",
    "NVDService",
    "OSVService",
    "RateLimitedSource",
]
