"""Tests for sync option and state models."""

from datetime import UTC, date, datetime

import pytest
from pydantic import ValidationError

from cvesync.models.sync import (
    DateRange,
    ResumeState,
    SyncOptions,
    SyncProgress,
    SyncRunState,
)


class TestSyncOptions:
    """Tests for SyncOptions validation."""

    def test_defaults(self):
        options = SyncOptions()

        assert options.mode == "default"
        assert options.vendors == []
        assert options.skip_retry is False

    def test_accepts_camel_and_snake_case(self):
        camel = SyncOptions.model_validate({"skipRetry": True, "checkSecondaryEnrichment": True})
        snake = SyncOptions.model_validate({"skip_retry": True, "check_secondary_enrichment": True})

        assert camel == snake

    def test_modes_are_mutually_exclusive(self):
        with pytest.raises(ValidationError, match="mutually exclusive"):
            SyncOptions(full=True, incremental=True)

        with pytest.raises(ValidationError, match="mutually exclusive"):
            SyncOptions.model_validate(
                {"full": True, "dateRange": {"startDate": "2024-01-01", "endDate": "2024-02-01"}}
            )

    def test_date_range_requires_both_bounds(self):
        with pytest.raises(ValidationError):
            SyncOptions.model_validate({"dateRange": {"startDate": "2024-01-01"}})

    def test_date_range_order(self):
        with pytest.raises(ValidationError):
            DateRange(start_date="2024-02-01", end_date="2024-01-01")

    def test_date_range_parses_dates_as_utc(self):
        window = DateRange(start_date=date(2024, 1, 1), end_date="2024-01-31T12:00:00Z")

        assert window.start_date == datetime(2024, 1, 1, tzinfo=UTC)
        assert window.end_date == datetime(2024, 1, 31, 12, tzinfo=UTC)

    def test_vendor_string_is_split(self):
        options = SyncOptions(vendors="microsoft, apache")

        assert options.vendors == ["microsoft", "apache"]

    def test_blank_vendor_entries_dropped(self):
        assert SyncOptions(vendors=[""]).vendors == []
        assert SyncOptions(vendors=["  ", "Microsoft ", "apache,,oracle"]).vendors == [
            "Microsoft",
            "apache",
            "oracle",
        ]


class TestRunState:
    """Tests for run state bookkeeping."""

    def test_failure_and_recovery(self):
        state = SyncRunState(sync_id=1, start_time=1)

        state.record_failure("CVE-2024-1")
        state.record_failure("CVE-2024-1")
        assert state.failed_cve_ids == ["CVE-2024-1"]
        assert state.stats.errors == 2

        state.record_recovery("CVE-2024-1")
        assert state.failed_cve_ids == []
        assert state.stats.errors == 1
        assert state.progress.failed == 1
        assert state.progress.successful == 1

    def test_resume_state_file_format(self):
        state = SyncRunState(
            sync_id=1700000000000,
            start_time=1700000000000,
            progress=SyncProgress(total=3, processed=2, successful=2),
            processed_cve_ids={"CVE-2024-2", "CVE-2024-1"},
        )

        doc = ResumeState.from_run_state(state, timestamp=1700000005000).model_dump(by_alias=True)

        assert set(doc) == {
            "syncId",
            "startTime",
            "progress",
            "stats",
            "failedCveIds",
            "processedCveIds",
            "timestamp",
        }
        assert doc["processedCveIds"] == ["CVE-2024-1", "CVE-2024-2"]
        assert doc["stats"]["apiCalls"] == {"nvd": 0, "epss": 0, "cisaKev": 0, "osv": 0}

    def test_resume_state_restores_run_state(self):
        saved = ResumeState(
            sync_id=5,
            start_time=5,
            processed_cve_ids=["CVE-2024-1"],
            failed_cve_ids=["CVE-2024-9"],
            timestamp=6,
        )

        state = saved.to_run_state()

        assert state.sync_id == 5
        assert state.processed_cve_ids == {"CVE-2024-1"}
        assert state.failed_cve_ids == ["CVE-2024-9"]
