"""Sync run state, options and result models."""

from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any

from pydantic import Field, field_validator, model_validator

from cvesync.models.base import CamelModel


class SyncStatus(StrEnum):
    """Sync run lifecycle states."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncStatus.COMPLETED, SyncStatus.FAILED, SyncStatus.ABORTED)


class SyncProgress(CamelModel):
    """Record counters for the current run."""

    total: int = 0
    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def percentage(self) -> float:
        if not self.total:
            return 0.0
        return round(self.processed / self.total * 100, 2)


class ApiCallCounts(CamelModel):
    """Upstream requests made during a run, per source."""

    nvd: int = 0
    epss: int = 0
    cisa_kev: int = 0
    osv: int = 0


class SyncStats(CamelModel):
    """Persistence and request statistics."""

    fetched: int = 0
    new: int = 0
    updated: int = 0
    errors: int = 0
    api_calls: ApiCallCounts = Field(default_factory=ApiCallCounts)


class SyncRunState(CamelModel):
    """Mutable state of the active run."""

    sync_id: int = Field(..., description="Run identifier (epoch milliseconds)")
    start_time: int = Field(..., description="Run start (epoch milliseconds)")
    status: SyncStatus = SyncStatus.RUNNING
    progress: SyncProgress = Field(default_factory=SyncProgress)
    stats: SyncStats = Field(default_factory=SyncStats)
    failed_cve_ids: list[str] = Field(default_factory=list)
    processed_cve_ids: set[str] = Field(default_factory=set)
    error: str | None = None
    end_time: int | None = None

    def record_failure(self, cve_id: str) -> None:
        """Count a failed record, keeping the failed list free of duplicates."""
        self.progress.failed += 1
        self.stats.errors += 1
        if cve_id not in self.failed_cve_ids:
            self.failed_cve_ids.append(cve_id)

    def record_recovery(self, cve_id: str) -> None:
        """Undo a failure after a successful retry."""
        if cve_id in self.failed_cve_ids:
            self.failed_cve_ids.remove(cve_id)
        self.progress.failed = max(0, self.progress.failed - 1)
        self.stats.errors = max(0, self.stats.errors - 1)
        self.progress.successful += 1


class ResumeState(CamelModel):
    """Persisted checkpoint of an interrupted run."""

    sync_id: int
    start_time: int
    progress: SyncProgress = Field(default_factory=SyncProgress)
    stats: SyncStats = Field(default_factory=SyncStats)
    failed_cve_ids: list[str] = Field(default_factory=list)
    processed_cve_ids: list[str] = Field(default_factory=list)
    timestamp: int

    @classmethod
    def from_run_state(cls, state: SyncRunState, timestamp: int) -> "ResumeState":
        return cls(
            sync_id=state.sync_id,
            start_time=state.start_time,
            progress=state.progress.model_copy(),
            stats=state.stats.model_copy(deep=True),
            failed_cve_ids=list(state.failed_cve_ids),
            processed_cve_ids=sorted(state.processed_cve_ids),
            timestamp=timestamp,
        )

    def to_run_state(self) -> SyncRunState:
        return SyncRunState(
            sync_id=self.sync_id,
            start_time=self.start_time,
            progress=self.progress.model_copy(),
            stats=self.stats.model_copy(deep=True),
            failed_cve_ids=list(self.failed_cve_ids),
            processed_cve_ids=set(self.processed_cve_ids),
        )


def _to_utc_datetime(v: Any) -> Any:
    if isinstance(v, str):
        v = datetime.fromisoformat(v.replace("Z", "+00:00"))
    if isinstance(v, datetime):
        return v if v.tzinfo else v.replace(tzinfo=UTC)
    if isinstance(v, date):
        return datetime(v.year, v.month, v.day, tzinfo=UTC)
    return v


class DateRange(CamelModel):
    """Publication date window for a run."""

    start_date: datetime
    end_date: datetime

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def parse_bound(cls, v: Any) -> Any:
        """Accept dates or ISO strings, normalized to UTC datetimes."""
        return _to_utc_datetime(v)

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        if self.start_date > self.end_date:
            raise ValueError("startDate must not be after endDate")
        return self


class SyncOptions(CamelModel):
    """Options accepted by a sync run.

    ``full``, ``incremental`` and ``date_range`` select the fetch window and
    are mutually exclusive. Without any of them the last 30 days are synced.
    """

    date_range: DateRange | None = None
    full: bool = False
    incremental: bool = False
    vendors: list[str] = Field(default_factory=list)
    resume: bool = False
    skip_retry: bool = False
    check_secondary_enrichment: bool = False
    batch_size: int | None = Field(default=None, ge=1)

    @field_validator("vendors", mode="before")
    @classmethod
    def split_vendors(cls, v: Any) -> Any:
        """Allow a single vendor or a comma-separated list; blank entries are dropped."""
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        if not isinstance(v, list | tuple):
            return v
        vendors: list[Any] = []
        for item in v:
            if not isinstance(item, str):
                vendors.append(item)
                continue
            vendors.extend(part.strip() for part in item.split(",") if part.strip())
        return vendors

    @model_validator(mode="after")
    def check_exclusive_modes(self) -> "SyncOptions":
        selected = [
            name
            for name, on in (
                ("full", self.full),
                ("incremental", self.incremental),
                ("dateRange", self.date_range is not None),
            )
            if on
        ]
        if len(selected) > 1:
            raise ValueError(f"Options {' and '.join(selected)} are mutually exclusive")
        return self

    @property
    def mode(self) -> str:
        if self.full:
            return "full"
        if self.incremental:
            return "incremental"
        if self.date_range is not None:
            return "dateRange"
        return "default"


class SyncStatistics(CamelModel):
    total: int = 0
    fetched: int = 0
    new: int = 0
    updated: int = 0
    errors: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0


class Elapsed(CamelModel):
    milliseconds: int
    seconds: float
    formatted: str


class SyncResult(CamelModel):
    """Summary of a finished run."""

    sync_id: int
    status: SyncStatus
    statistics: SyncStatistics
    api_calls: ApiCallCounts
    elapsed: Elapsed
    failed_cve_ids: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
