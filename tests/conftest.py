"""Pytest configuration and fixtures for CVESync tests."""

from datetime import UTC, datetime

import pytest

from cvesync.config import Settings
from cvesync.models.cve import (
    CVSSMetrics,
    CVSSVersion,
    Severity,
    VulnerabilityRecord,
    Weakness,
)

NVD_URL = "https://services.nvd.nist.gov/rest/json/cves/2.0"
EPSS_URL = "https://api.first.org/data/v1/epss"
KEV_URL = "https://www.cisa.gov/sites/default/files/feeds/known_exploited_vulnerabilities.json"
OSV_URL = "https://api.osv.dev/v1"


def build_nvd_item(
    cve_id: str,
    vendor: str = "example",
    product: str = "widget",
    published: str = "2024-01-15T10:30:00.000",
    last_modified: str = "2024-01-16T14:00:00.000",
) -> dict:
    """Minimal NVD 2.0 vulnerability item."""
    return {
        "cve": {
            "id": cve_id,
            "sourceIdentifier": "security@example.com",
            "published": published,
            "lastModified": last_modified,
            "vulnStatus": "Analyzed",
            "descriptions": [{"lang": "en", "value": f"Vulnerability {cve_id}"}],
            "metrics": {
                "cvssMetricV31": [
                    {
                        "cvssData": {
                            "version": "3.1",
                            "vectorString": "CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H",
                            "baseScore": 9.8,
                            "baseSeverity": "CRITICAL",
                        },
                    }
                ]
            },
            "configurations": [
                {
                    "nodes": [
                        {
                            "cpeMatch": [
                                {
                                    "vulnerable": True,
                                    "criteria": f"cpe:2.3:a:{vendor}:{product}:1.0:*:*:*:*:*:*:*",
                                }
                            ]
                        }
                    ]
                }
            ],
        }
    }


def build_kev_row(cve_id: str, date_added: str = "2024-01-10", **overrides) -> dict:
    """Single CISA KEV catalog row."""
    row = {
        "cveID": cve_id,
        "vendorProject": "Example Corp",
        "product": "Example Software",
        "vulnerabilityName": f"{cve_id} Remote Code Execution",
        "dateAdded": date_added,
        "shortDescription": "Critical RCE vulnerability",
        "requiredAction": "Apply vendor patch",
        "dueDate": "2024-01-31",
        "knownRansomwareCampaignUse": "Unknown",
        "notes": "",
    }
    row.update(overrides)
    return row


def build_kev_catalog(rows: list[dict]) -> dict:
    """CISA KEV catalog document wrapping ``rows``."""
    return {
        "title": "CISA Catalog of Known Exploited Vulnerabilities",
        "catalogVersion": "2024.01.15",
        "dateReleased": "2024-01-15T00:00:00.000Z",
        "count": len(rows),
        "vulnerabilities": rows,
    }


def build_epss_response(scores: dict[str, tuple[float, float]]) -> dict:
    """FIRST EPSS API response for ``{cve_id: (epss, percentile)}``."""
    return {
        "status": "OK",
        "status-code": 200,
        "total": len(scores),
        "data": [
            {
                "cve": cve_id,
                "epss": f"{epss:.9f}",
                "percentile": f"{percentile:.9f}",
                "date": "2024-01-15",
            }
            for cve_id, (epss, percentile) in scores.items()
        ],
    }


@pytest.fixture
def sample_nvd_cve_response():
    """Sample NVD 2.0 API CVE response."""
    return {
        "cve": {
            "id": "CVE-2024-12345",
            "sourceIdentifier": "security@example.com",
            "published": "2024-01-15T10:30:00.000",
            "lastModified": "2024-01-16T14:00:00.000",
            "vulnStatus": "Analyzed",
            "descriptions": [
                {
                    "lang": "en",
                    "value": (
                        "A critical vulnerability in Example Software allows remote code execution."
                    ),
                }
            ],
            "metrics": {
                "cvssMetricV31": [
                    {
                        "source": "nvd@nist.gov",
                        "type": "Primary",
                        "cvssData": {
                            "version": "3.1",
                            "vectorString": "CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H",
                            "attackVector": "NETWORK",
                            "attackComplexity": "LOW",
                            "privilegesRequired": "NONE",
                            "userInteraction": "NONE",
                            "scope": "UNCHANGED",
                            "confidentialityImpact": "HIGH",
                            "integrityImpact": "HIGH",
                            "availabilityImpact": "HIGH",
                            "baseScore": 9.8,
                            "baseSeverity": "CRITICAL",
                        },
                        "exploitabilityScore": 3.9,
                        "impactScore": 5.9,
                    }
                ],
                "cvssMetricV2": [
                    {
                        "source": "nvd@nist.gov",
                        "cvssData": {
                            "version": "2.0",
                            "vectorString": "AV:N/AC:L/Au:N/C:P/I:P/A:P",
                            "baseScore": 7.5,
                        },
                        "baseSeverity": "HIGH",
                        "exploitabilityScore": 10.0,
                        "impactScore": 6.4,
                    }
                ],
            },
            "weaknesses": [
                {
                    "source": "nvd@nist.gov",
                    "type": "Primary",
                    "description": [{"lang": "en", "value": "CWE-79"}],
                }
            ],
            "configurations": [
                {
                    "nodes": [
                        {
                            "operator": "OR",
                            "cpeMatch": [
                                {
                                    "vulnerable": True,
                                    "criteria": "cpe:2.3:a:example:software:2.1:*:*:*:*:*:*:*",
                                    "versionEndExcluding": "2.2",
                                },
                                {"vulnerable": True, "criteria": "not-a-cpe"},
                            ],
                        }
                    ]
                }
            ],
            "references": [
                {
                    "url": "https://example.com/advisory/2024-001",
                    "source": "security@example.com",
                    "tags": ["Vendor Advisory"],
                },
                {"source": "missing-url@example.com"},
            ],
        }
    }


@pytest.fixture
def sample_epss_response():
    """Sample FIRST EPSS API response."""
    return build_epss_response(
        {
            "CVE-2024-12345": (0.95432, 0.99123),
            "CVE-2024-12346": (0.00123, 0.12345),
        }
    )


@pytest.fixture
def sample_kev_response():
    """Sample CISA KEV catalog response."""
    return build_kev_catalog(
        [
            build_kev_row(
                "CVE-2024-12345",
                vendorProject="Example Corp",
                product="Example Software",
                vulnerabilityName="Example Software Remote Code Execution",
                knownRansomwareCampaignUse="Known",
                notes="Actively exploited in the wild",
            ),
            build_kev_row(
                "CVE-2024-12346",
                date_added="2024-01-12",
                vendorProject="Another Vendor",
                product="Another Product",
                vulnerabilityName="Another Product Privilege Escalation",
                dueDate="2024-02-05",
            ),
        ]
    )


@pytest.fixture
def mock_settings(tmp_path):
    """Settings with no backoff or pacing delays and a temporary state file."""
    return Settings(
        log_level="DEBUG",
        elasticsearch={"host": "http://localhost:9200"},
        retry={"max_attempts": 3, "min_wait": 0, "max_wait": 0},
        nvd={"window_seconds": 0.05},
        epss={"min_interval": 0},
        osv={"min_interval": 0},
        sync={"state_file": tmp_path / "sync-state.json"},
    )


@pytest.fixture
def sample_record():
    """Create a sample VulnerabilityRecord instance."""
    return VulnerabilityRecord(
        cve_id="CVE-2024-12345",
        source_identifier="test@example.com",
        published_date=datetime(2024, 1, 15, 10, 30, 0, tzinfo=UTC),
        last_modified_date=datetime(2024, 1, 16, 14, 0, 0, tzinfo=UTC),
        vuln_status="Analyzed",
        description="A test vulnerability for unit testing.",
        cvss_v3=CVSSMetrics(
            version=CVSSVersion.V31,
            vector_string="CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H",
            base_score=9.8,
            base_severity=Severity.CRITICAL,
        ),
        weaknesses=[Weakness(cwe_id="CWE-79", description="XSS")],
    )


@pytest.fixture
def make_record():
    """Factory building records from minimal NVD items."""

    def _make(cve_id: str, **kwargs) -> VulnerabilityRecord:
        return VulnerabilityRecord.from_nvd_api(build_nvd_item(cve_id, **kwargs))

    return _make
