"""Data models for CVESync."""

from cvesync.models.cve import (
    AffectedProduct,
    CVSSMetrics,
    CVSSVersion,
    KEVRemediation,
    Reference,
    Severity,
    VulnerabilityRecord,
    Weakness,
)
from cvesync.models.epss import EPSSScore
from cvesync.models.kev import KEVCatalog, KEVEntry
from cvesync.models.osv import OSVVulnerability
from cvesync.models.sync import (
    ResumeState,
    SyncOptions,
    SyncResult,
    SyncRunState,
    SyncStatus,
)

__all__ = [
    "AffectedProduct",
    "CVSSMetrics",
    "CVSSVersion",
    "EPSSScore",
    "KEVCatalog",
    "KEVEntry",
    "KEVRemediation",
    "OSVVulnerability",
    "Reference",
    "ResumeState",
    "Severity",
    "SyncOptions",
    "SyncResult",
    "SyncRunState",
    "SyncStatus",
    "VulnerabilityRecord",
    "Weakness",
]
