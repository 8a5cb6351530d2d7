"""CVESync - Vulnerability ingestion pipeline.

Sync NVD records enriched with EPSS scores, CISA KEV status and OSV
advisories into Elasticsearch.
"""

__version__ = "1.0.0"

from cvesync.config import Settings

__all__ = ["Settings", "__version__"]
