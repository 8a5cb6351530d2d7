"""Sync pipeline: enrichment, merge, checkpointing and orchestration."""

from cvesync.sync.enrichment import EnrichmentResolver, EnrichmentResult
from cvesync.sync.errors import (
    InvalidSyncOptionsError,
    SyncAbortedError,
    SyncAlreadyRunningError,
    SyncError,
)
from cvesync.sync.merge import merge_record
from cvesync.sync.orchestrator import SyncOrchestrator, format_duration, parse_options
from cvesync.sync.repository import InMemoryRepository, RecordRepository
from cvesync.sync.state_store import ResumeStateStore

__all__ = [
    "EnrichmentResolver",
    "EnrichmentResult",
    "InMemoryRepository",
    "InvalidSyncOptionsError",
    "RecordRepository",
    "ResumeStateStore",
    "SyncAbortedError",
    "SyncAlreadyRunningError",
    "SyncError",
    "SyncOrchestrator",
    "format_duration",
    "merge_record",
    "parse_options",
]
