"""Tests for enrichment resolution and record merging."""

from datetime import UTC, date, datetime

import pytest
from conftest import build_kev_row

from cvesync.models.epss import EPSSScore
from cvesync.models.kev import KEVEntry
from cvesync.services.epss_service import EPSSLookup
from cvesync.sync.enrichment import EnrichmentResolver, EnrichmentResult
from cvesync.sync.merge import merge_record

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


def epss_map(cve_id: str, score: float = 0.42, percentile: float = 87.5) -> dict[str, EPSSScore]:
    return {
        cve_id: EPSSScore(
            cve_id=cve_id, score=score, percentile=percentile, score_date=date(2024, 2, 29)
        )
    }


def kev_map(cve_id: str) -> dict[str, KEVEntry]:
    return {cve_id: KEVEntry.from_api(build_kev_row(cve_id, knownRansomwareCampaignUse="Known"))}


class StubEPSS:
    def __init__(self, result=None, error: Exception | None = None, failed_ids=()):
        self.result = result or {}
        self.failed_ids = set(failed_ids)
        self.error = error
        self.calls: list[list[str]] = []

    async def get_scores(self, cve_ids):
        self.calls.append(list(cve_ids))
        if self.error:
            raise self.error
        return EPSSLookup(scores=self.result, failed_ids=self.failed_ids)


class StubKEV:
    def __init__(self, result=None, error: Exception | None = None):
        self.result = result or {}
        self.error = error

    async def lookup(self, cve_ids):
        if self.error:
            raise self.error
        return self.result


class TestEnrichmentResolver:
    """Tests for EnrichmentResolver."""

    @pytest.mark.asyncio
    async def test_resolves_both_sources(self):
        resolver = EnrichmentResolver(
            StubEPSS(epss_map("CVE-2024-0001")), StubKEV(kev_map("CVE-2024-0001"))
        )

        result = await resolver.resolve(["CVE-2024-0001"])

        assert result.epss_ok and result.kev_ok
        assert "CVE-2024-0001" in result.epss
        assert "CVE-2024-0001" in result.kev

    @pytest.mark.asyncio
    async def test_failed_source_degrades_to_empty_map(self):
        resolver = EnrichmentResolver(
            StubEPSS(error=RuntimeError("epss down")), StubKEV(kev_map("CVE-2024-0001"))
        )

        result = await resolver.resolve(["CVE-2024-0001"])

        assert result.epss == {}
        assert result.epss_ok is False
        assert result.kev_ok is True
        assert list(result.kev) == ["CVE-2024-0001"]

    @pytest.mark.asyncio
    async def test_both_sources_failing(self):
        resolver = EnrichmentResolver(
            StubEPSS(error=RuntimeError("epss down")), StubKEV(error=RuntimeError("kev down"))
        )

        result = await resolver.resolve(["CVE-2024-0001"])

        assert result == EnrichmentResult(epss_ok=False, kev_ok=False)

    @pytest.mark.asyncio
    async def test_partial_epss_failure_is_reported(self):
        resolver = EnrichmentResolver(
            StubEPSS(epss_map("CVE-2024-0001"), failed_ids={"CVE-2024-0002"}), StubKEV()
        )

        result = await resolver.resolve(["CVE-2024-0001", "CVE-2024-0002"])

        assert result.epss_ok is True
        assert result.epss_failed == {"CVE-2024-0002"}
        assert result.epss_known("CVE-2024-0001")
        assert not result.epss_known("CVE-2024-0002")

    @pytest.mark.asyncio
    async def test_empty_batch_makes_no_calls(self):
        epss = StubEPSS()
        result = await EnrichmentResolver(epss, StubKEV()).resolve([])

        assert result == EnrichmentResult()
        assert epss.calls == []


class TestMergeRecord:
    """Tests for merge_record."""

    def test_enriched_record(self, make_record):
        incoming = make_record("CVE-2024-0001")
        enrichment = EnrichmentResult(epss=epss_map("CVE-2024-0001"), kev=kev_map("CVE-2024-0001"))

        merged = merge_record(incoming, enrichment, now=NOW)

        assert merged.epss_score == 0.42
        assert merged.epss_percentile == 87.5
        assert merged.epss_date == date(2024, 2, 29)
        assert merged.cisa_kev is True
        assert merged.cisa_kev_data.known_ransomware_campaign_use is True
        assert merged.exploit_available is True
        assert merged.created_at == NOW
        assert merged.last_sync_date == NOW
        assert merged.base_score == 9.8

    def test_unenriched_record_has_null_enrichment(self, make_record):
        merged = merge_record(make_record("CVE-2024-0001"), EnrichmentResult(), now=NOW)

        assert merged.epss_score is None
        assert merged.epss_percentile is None
        assert merged.cisa_kev is False
        assert merged.cisa_kev_data is None
        assert merged.exploit_available is False

    def test_kev_only_sets_exploit_available(self, make_record):
        merged = merge_record(
            make_record("CVE-2024-0001"),
            EnrichmentResult(kev=kev_map("CVE-2024-0001")),
            now=NOW,
        )

        assert merged.epss_score is None
        assert merged.cisa_kev is True
        assert merged.exploit_available is True

    def test_osv_advisory_sets_exploit_available(self, make_record):
        merged = merge_record(
            make_record("CVE-2024-0001"), EnrichmentResult(), has_osv_advisory=True, now=NOW
        )

        assert merged.exploit_available is True

    def test_created_at_preserved(self, make_record):
        first = merge_record(make_record("CVE-2024-0001"), EnrichmentResult(), now=NOW)
        later = datetime(2024, 4, 1, tzinfo=UTC)

        second = merge_record(make_record("CVE-2024-0001"), EnrichmentResult(), first, now=later)

        assert second.created_at == NOW
        assert second.last_sync_date == later

    def test_failed_source_keeps_stored_values(self, make_record):
        """A source outage does not wipe what an earlier run stored."""
        stored = merge_record(
            make_record("CVE-2024-0001"),
            EnrichmentResult(epss=epss_map("CVE-2024-0001"), kev=kev_map("CVE-2024-0001")),
            now=NOW,
        )

        merged = merge_record(
            make_record("CVE-2024-0001"),
            EnrichmentResult(epss_ok=False, kev_ok=False),
            stored,
            now=datetime(2024, 4, 1, tzinfo=UTC),
        )

        assert merged.epss_score == 0.42
        assert merged.cisa_kev is True
        assert merged.cisa_kev_data == stored.cisa_kev_data
        assert merged.exploit_available is True

    def test_failed_epss_chunk_keeps_stored_values(self, make_record):
        """Only the CVEs whose chunk failed keep their stored EPSS data."""
        stored = {
            cve_id: merge_record(
                make_record(cve_id),
                EnrichmentResult(epss=epss_map(cve_id, score=0.7)),
                now=NOW,
            )
            for cve_id in ("CVE-2024-0001", "CVE-2024-0002")
        }
        enrichment = EnrichmentResult(
            epss=epss_map("CVE-2024-0001", score=0.3), epss_failed={"CVE-2024-0002"}
        )

        refreshed = merge_record(
            make_record("CVE-2024-0001"), enrichment, stored["CVE-2024-0001"], now=NOW
        )
        kept = merge_record(
            make_record("CVE-2024-0002"), enrichment, stored["CVE-2024-0002"], now=NOW
        )

        assert refreshed.epss_score == 0.3
        assert kept.epss_score == 0.7
        assert kept.epss_percentile == 87.5
        assert kept.exploit_available is True

    def test_successful_source_overwrites_stored_values(self, make_record):
        """A CVE dropped from KEV and EPSS is cleared when both sources answered."""
        stored = merge_record(
            make_record("CVE-2024-0001"),
            EnrichmentResult(epss=epss_map("CVE-2024-0001"), kev=kev_map("CVE-2024-0001")),
            now=NOW,
        )

        merged = merge_record(make_record("CVE-2024-0001"), EnrichmentResult(), stored, now=NOW)

        assert merged.epss_score is None
        assert merged.cisa_kev is False
        assert merged.exploit_available is False

    def test_nvd_fields_come_from_incoming(self, make_record):
        stored = merge_record(make_record("CVE-2024-0001", vendor="old"), EnrichmentResult())

        merged = merge_record(
            make_record("CVE-2024-0001", vendor="new"), EnrichmentResult(), stored, now=NOW
        )

        assert [p.vendor for p in merged.affected_products] == ["new"]
