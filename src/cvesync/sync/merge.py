"""Merge of NVD records with enrichment data and stored state."""

from datetime import UTC, datetime
from typing import Any

from cvesync.models.cve import VulnerabilityRecord
from cvesync.sync.enrichment import EnrichmentResult

EPSS_FIELDS = ("epss_score", "epss_percentile", "epss_date")
KEV_FIELDS = ("cisa_kev", "cisa_kev_data")


def merge_record(
    incoming: VulnerabilityRecord,
    enrichment: EnrichmentResult,
    existing: VulnerabilityRecord | None = None,
    has_osv_advisory: bool = False,
    now: datetime | None = None,
) -> VulnerabilityRecord:
    """Build the record to store for one CVE.

    NVD fields always come from ``incoming``. EPSS and KEV fields come from
    the enrichment maps, except that a source which failed for this CVE
    leaves the stored record's values in place.

    Args:
        incoming: Freshly fetched NVD record.
        enrichment: Enrichment maps for the batch.
        existing: Currently stored record, if any.
        has_osv_advisory: Whether OSV has an advisory for the CVE.
        now: Merge timestamp.

    Returns:
        New validated record.
    """
    now = now or datetime.now(UTC)
    cve_id = incoming.cve_id
    data: dict[str, Any] = incoming.model_dump(exclude={"base_score", "severity"})

    epss_known = enrichment.epss_known(cve_id)
    if not epss_known and existing is not None:
        data.update({name: getattr(existing, name) for name in EPSS_FIELDS})
    elif score := enrichment.epss.get(cve_id):
        data.update(
            epss_score=score.score,
            epss_percentile=score.percentile,
            epss_date=score.score_date,
        )
    else:
        data.update(epss_score=None, epss_percentile=None, epss_date=None)

    if not enrichment.kev_ok and existing is not None:
        data.update(
            cisa_kev=existing.cisa_kev,
            cisa_kev_data=existing.cisa_kev_data.model_dump() if existing.cisa_kev_data else None,
        )
    elif entry := enrichment.kev.get(cve_id):
        data.update(cisa_kev=True, cisa_kev_data=entry.to_remediation().model_dump())
    else:
        data.update(cisa_kev=False, cisa_kev_data=None)

    exploit_available = cve_id in enrichment.epss or cve_id in enrichment.kev or has_osv_advisory
    if existing is not None and (not epss_known or not enrichment.kev_ok):
        exploit_available = exploit_available or existing.exploit_available

    data["exploit_available"] = exploit_available
    data["created_at"] = existing.created_at if existing and existing.created_at else now
    data["last_sync_date"] = now

    return VulnerabilityRecord.model_validate(data)
