"""Vulnerability record models following the NVD CVE 2.0 API schema."""

import re
from collections.abc import Callable
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any

from loguru import logger
from pydantic import Field, computed_field, field_validator, model_validator

from cvesync.models.base import CamelModel

CVE_ID_PATTERN = re.compile(r"^CVE-\d{4}-\d+$")


def is_valid_cve_id(value: str | None) -> bool:
    """Check whether a string is a well-formed CVE identifier (case-insensitive)."""
    return bool(value) and CVE_ID_PATTERN.match(value.strip().upper()) is not None


class CVSSVersion(StrEnum):
    """CVSS version enumeration."""

    V2 = "2.0"
    V30 = "3.0"
    V31 = "3.1"
    V40 = "4.0"


class Severity(StrEnum):
    """CVSS severity levels."""

    NONE = "NONE"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AttackVector(StrEnum):
    """CVSS Attack Vector values."""

    NETWORK = "NETWORK"
    ADJACENT_NETWORK = "ADJACENT_NETWORK"
    LOCAL = "LOCAL"
    PHYSICAL = "PHYSICAL"


class AttackComplexity(StrEnum):
    """CVSS Attack Complexity values."""

    LOW = "LOW"
    HIGH = "HIGH"


class PrivilegesRequired(StrEnum):
    """CVSS Privileges Required values."""

    NONE = "NONE"
    LOW = "LOW"
    HIGH = "HIGH"


class UserInteraction(StrEnum):
    """CVSS User Interaction values."""

    NONE = "NONE"
    REQUIRED = "REQUIRED"


class Scope(StrEnum):
    """CVSS Scope values."""

    UNCHANGED = "UNCHANGED"
    CHANGED = "CHANGED"


class Impact(StrEnum):
    """CVSS Impact values for CIA triad."""

    NONE = "NONE"
    LOW = "LOW"
    HIGH = "HIGH"


def _enum_or_none(enum_cls: type[StrEnum], value: Any) -> Any:
    """Map a raw value onto an enum member, or None if it is not one."""
    if not value:
        return None
    try:
        return enum_cls(str(value).upper())
    except ValueError:
        return None


def _severity_from_score(score: float) -> Severity:
    """Derive a v2-style severity band from a base score."""
    if score >= 7.0:
        return Severity.HIGH
    if score >= 4.0:
        return Severity.MEDIUM
    return Severity.LOW


class CVSSMetrics(CamelModel):
    """CVSS metrics model supporting v2.0, v3.0, v3.1, and v4.0."""

    version: CVSSVersion
    vector_string: str = Field(default="", description="CVSS vector string")
    base_score: float = Field(..., ge=0, le=10, description="CVSS base score")
    base_severity: Severity = Field(..., description="CVSS severity rating")

    # CVSS v3.x specific metrics
    attack_vector: AttackVector | None = None
    attack_complexity: AttackComplexity | None = None
    privileges_required: PrivilegesRequired | None = None
    user_interaction: UserInteraction | None = None
    scope: Scope | None = None
    confidentiality_impact: Impact | None = None
    integrity_impact: Impact | None = None
    availability_impact: Impact | None = None

    # Derived scores
    exploitability_score: float | None = Field(default=None, ge=0, le=10)
    impact_score: float | None = Field(default=None, ge=0, le=10)

    @field_validator("base_score", mode="before")
    @classmethod
    def round_base_score(cls, v: float) -> float:
        """Round base score to one decimal place."""
        return round(float(v), 1)

    @classmethod
    def from_nvd_v2(cls, data: dict[str, Any]) -> "CVSSMetrics":
        """Create CVSSMetrics from an NVD cvssMetricV2 entry."""
        cvss_data = data.get("cvssData", {})
        base_score = float(cvss_data.get("baseScore", 0.0))
        severity = _enum_or_none(Severity, data.get("baseSeverity"))
        return cls(
            version=CVSSVersion.V2,
            vector_string=cvss_data.get("vectorString", ""),
            base_score=base_score,
            base_severity=severity or _severity_from_score(base_score),
            exploitability_score=data.get("exploitabilityScore"),
            impact_score=data.get("impactScore"),
        )

    @classmethod
    def from_nvd_v3(cls, data: dict[str, Any]) -> "CVSSMetrics":
        """Create CVSSMetrics from NVD API v3.x CVSS data."""
        cvss_data = data.get("cvssData", data)
        return cls(
            version=CVSSVersion(cvss_data.get("version", "3.1")),
            vector_string=cvss_data.get("vectorString", ""),
            base_score=cvss_data.get("baseScore", 0.0),
            base_severity=_enum_or_none(Severity, cvss_data.get("baseSeverity")) or Severity.NONE,
            attack_vector=_enum_or_none(AttackVector, cvss_data.get("attackVector")),
            attack_complexity=_enum_or_none(AttackComplexity, cvss_data.get("attackComplexity")),
            privileges_required=_enum_or_none(
                PrivilegesRequired, cvss_data.get("privilegesRequired")
            ),
            user_interaction=_enum_or_none(UserInteraction, cvss_data.get("userInteraction")),
            scope=_enum_or_none(Scope, cvss_data.get("scope")),
            confidentiality_impact=_enum_or_none(Impact, cvss_data.get("confidentialityImpact")),
            integrity_impact=_enum_or_none(Impact, cvss_data.get("integrityImpact")),
            availability_impact=_enum_or_none(Impact, cvss_data.get("availabilityImpact")),
            exploitability_score=data.get("exploitabilityScore"),
            impact_score=data.get("impactScore"),
        )

    @classmethod
    def from_nvd_v4(cls, data: dict[str, Any]) -> "CVSSMetrics":
        """Create CVSSMetrics from an NVD cvssMetricV40 entry."""
        cvss_data = data.get("cvssData", {})
        return cls(
            version=CVSSVersion.V40,
            vector_string=cvss_data.get("vectorString", ""),
            base_score=cvss_data.get("baseScore", 0.0),
            base_severity=_enum_or_none(Severity, cvss_data.get("baseSeverity")) or Severity.NONE,
        )


class Weakness(CamelModel):
    """CWE weakness information."""

    cwe_id: str = Field(..., description="CWE identifier (e.g., CWE-79)")
    description: str = Field(default="", description="CWE description")

    @field_validator("cwe_id", mode="before")
    @classmethod
    def normalize_cwe_id(cls, v: str) -> str:
        """Normalize CWE ID format."""
        if v and not v.upper().startswith(("CWE-", "NVD-CWE-")):
            return f"CWE-{v}"
        return v.upper() if v else "CWE-UNKNOWN"


class Reference(CamelModel):
    """Reference link with source and tag metadata."""

    url: str = Field(..., min_length=1, description="Reference URL")
    source: str = Field(default="", description="Reference source")
    tags: list[str] = Field(default_factory=list, description="Reference tags")


class AffectedProduct(CamelModel):
    """Vendor/product pair with the version range it is vulnerable in."""

    vendor: str
    product: str
    versions: list[str] = Field(default_factory=list)
    version_start_including: str | None = None
    version_start_excluding: str | None = None
    version_end_including: str | None = None
    version_end_excluding: str | None = None

    @classmethod
    def from_cpe_match(cls, match: dict[str, Any]) -> "AffectedProduct | None":
        """Build from an NVD cpeMatch entry.

        Returns None when the CPE criteria string is malformed.
        """
        criteria = match.get("criteria") or ""
        parts = criteria.split(":")
        if len(parts) < 6 or parts[0] != "cpe" or not parts[3] or not parts[4]:
            return None
        return cls(
            vendor=parts[3],
            product=parts[4],
            versions=[parts[5] or "*"],
            version_start_including=match.get("versionStartIncluding"),
            version_start_excluding=match.get("versionStartExcluding"),
            version_end_including=match.get("versionEndIncluding"),
            version_end_excluding=match.get("versionEndExcluding"),
        )


class KEVRemediation(CamelModel):
    """Remediation metadata attached to a record listed in the KEV catalog."""

    date_added: date | None = None
    due_date: date | None = None
    required_action: str | None = None
    known_ransomware_campaign_use: bool = False
    notes: str | None = None


class VulnerabilityRecord(CamelModel):
    """Canonical merged vulnerability record.

    Base fields come from the NVD; EPSS, KEV and exploit availability are
    filled in by the sync pipeline's merge step.
    """

    # Core identifiers
    cve_id: str = Field(..., description="CVE identifier (e.g., CVE-2024-12345)")
    source_identifier: str = Field(default="", description="Source that identified the CVE")

    description: str = Field(default="No description available")

    # Timestamps
    published_date: datetime = Field(..., description="CVE publication date")
    last_modified_date: datetime = Field(..., description="Last modification date")

    vuln_status: str = Field(default="Awaiting Analysis", description="Vulnerability status")

    # CVSS Metrics
    cvss_v2: CVSSMetrics | None = Field(default=None, description="CVSS v2.0 metrics")
    cvss_v3: CVSSMetrics | None = Field(default=None, description="CVSS v3.x metrics")
    cvss_v4: CVSSMetrics | None = Field(default=None, description="CVSS v4.0 metrics")

    weaknesses: list[Weakness] = Field(default_factory=list)
    references: list[Reference] = Field(default_factory=list)
    affected_products: list[AffectedProduct] = Field(default_factory=list)

    # EPSS enrichment
    epss_score: float | None = Field(default=None, ge=0, le=1)
    epss_percentile: float | None = Field(default=None, ge=0, le=100)
    epss_date: date | None = None

    # KEV enrichment
    cisa_kev: bool = False
    cisa_kev_data: KEVRemediation | None = None

    exploit_available: bool = False

    created_at: datetime | None = None
    last_sync_date: datetime | None = None

    @field_validator("cve_id", mode="before")
    @classmethod
    def normalize_cve_id(cls, v: str) -> str:
        """Uppercase and validate the CVE identifier."""
        normalized = (v or "").strip().upper()
        if not CVE_ID_PATTERN.match(normalized):
            raise ValueError(f"Invalid CVE ID format: {v!r}")
        return normalized

    @field_validator(
        "published_date", "last_modified_date", "created_at", "last_sync_date", mode="after"
    )
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        """NVD timestamps carry no offset; treat naive values as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v

    @model_validator(mode="after")
    def clamp_last_modified(self) -> "VulnerabilityRecord":
        """Last modification can never precede publication."""
        if self.last_modified_date < self.published_date:
            self.last_modified_date = self.published_date
        return self

    @property
    def primary_cvss(self) -> CVSSMetrics | None:
        """Get the primary (highest version) CVSS metrics."""
        return self.cvss_v4 or self.cvss_v3 or self.cvss_v2

    @computed_field(alias="baseScore")  # type: ignore[prop-decorator]
    @property
    def base_score(self) -> float | None:
        """Get the primary CVSS base score."""
        if cvss := self.primary_cvss:
            return cvss.base_score
        return None

    @computed_field(alias="severity")  # type: ignore[prop-decorator]
    @property
    def severity(self) -> str:
        """Get the primary CVSS severity."""
        if cvss := self.primary_cvss:
            return cvss.base_severity.value
        return Severity.NONE.value

    @property
    def primary_cwe(self) -> str:
        """Get the primary CWE ID."""
        if self.weaknesses:
            return self.weaknesses[0].cwe_id
        return "CWE-UNKNOWN"

    def affects_vendor(self, vendors: list[str]) -> bool:
        """Check whether any affected product's vendor contains one of the given substrings."""
        needles = [v.lower() for v in vendors if v]
        return any(
            needle in product.vendor.lower()
            for product in self.affected_products
            for needle in needles
        )

    @staticmethod
    def _extract_description(cve_data: dict[str, Any]) -> str:
        """Extract English description from CVE data."""
        for desc in cve_data.get("descriptions", []):
            if desc.get("lang") == "en" and desc.get("value"):
                return str(desc["value"])
        descriptions = cve_data.get("descriptions", [])
        if descriptions and descriptions[0].get("value"):
            return str(descriptions[0]["value"])
        return "No description available"

    @staticmethod
    def _first_valid_cvss(
        entries: list[dict[str, Any]] | None,
        factory: Callable[[dict[str, Any]], CVSSMetrics],
    ) -> CVSSMetrics | None:
        """Build metrics from the first entry that validates, skipping malformed ones."""
        for entry in entries or []:
            try:
                return factory(entry)
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping malformed CVSS entry: {e}")
        return None

    @staticmethod
    def _extract_cvss_v2(metrics: dict[str, Any]) -> CVSSMetrics | None:
        """Extract CVSS v2 metrics from NVD data."""
        return VulnerabilityRecord._first_valid_cvss(
            metrics.get("cvssMetricV2"), CVSSMetrics.from_nvd_v2
        )

    @staticmethod
    def _extract_cvss_v3(metrics: dict[str, Any]) -> CVSSMetrics | None:
        """Extract CVSS v3.x metrics from NVD data, preferring 3.1 over 3.0."""
        v3_list = (metrics.get("cvssMetricV31") or []) + (metrics.get("cvssMetricV30") or [])
        return VulnerabilityRecord._first_valid_cvss(v3_list, CVSSMetrics.from_nvd_v3)

    @staticmethod
    def _extract_cvss_v4(metrics: dict[str, Any]) -> CVSSMetrics | None:
        """Extract CVSS v4.0 metrics from NVD data."""
        return VulnerabilityRecord._first_valid_cvss(
            metrics.get("cvssMetricV40"), CVSSMetrics.from_nvd_v4
        )

    @staticmethod
    def _extract_weaknesses(cve_data: dict[str, Any]) -> list[Weakness]:
        """Extract CWE weaknesses from CVE data."""
        weaknesses: list[Weakness] = []
        seen: set[str] = set()
        for weakness in cve_data.get("weaknesses", []):
            for desc in weakness.get("description", []):
                if desc.get("lang") == "en" and desc.get("value"):
                    item = Weakness(cwe_id=desc["value"], description=desc["value"])
                    if item.cwe_id not in seen:
                        seen.add(item.cwe_id)
                        weaknesses.append(item)
        return weaknesses

    @staticmethod
    def _extract_references(cve_data: dict[str, Any]) -> list[Reference]:
        """Extract references, skipping entries without a URL or with bad metadata."""
        references: list[Reference] = []
        for ref in cve_data.get("references", []):
            if not ref.get("url"):
                continue
            try:
                references.append(
                    Reference(
                        url=ref["url"],
                        source=ref.get("source") or "",
                        tags=ref.get("tags") or [],
                    )
                )
            except ValueError as e:
                logger.warning(f"Skipping malformed reference {ref.get('url')}: {e}")
        return references

    @staticmethod
    def _extract_affected_products(cve_data: dict[str, Any]) -> list[AffectedProduct]:
        """Extract vendor/product pairs from CPE configurations."""
        products: list[AffectedProduct] = []
        for config in cve_data.get("configurations", []):
            for node in config.get("nodes", []):
                for match in node.get("cpeMatch", []):
                    product = AffectedProduct.from_cpe_match(match)
                    if product is not None:
                        products.append(product)
        return products

    @classmethod
    def from_nvd_api(cls, data: dict[str, Any]) -> "VulnerabilityRecord":
        """Create a record from NVD 2.0 API response data.

        Args:
            data: Single vulnerability item from NVD API response.

        Returns:
            VulnerabilityRecord populated from API data.

        Raises:
            ValueError: If the item lacks a valid identifier or timestamps.
        """
        cve_data = data.get("cve", data)
        metrics = cve_data.get("metrics", {})

        published = cve_data.get("published")
        if not published:
            raise ValueError(f"CVE {cve_data.get('id', 'unknown')} has no published date")

        return cls(
            cve_id=cve_data.get("id", ""),
            source_identifier=cve_data.get("sourceIdentifier", ""),
            published_date=datetime.fromisoformat(published.replace("Z", "+00:00")),
            last_modified_date=datetime.fromisoformat(
                cve_data.get("lastModified", published).replace("Z", "+00:00")
            ),
            vuln_status=cve_data.get("vulnStatus") or "Awaiting Analysis",
            description=cls._extract_description(cve_data),
            cvss_v2=cls._extract_cvss_v2(metrics),
            cvss_v3=cls._extract_cvss_v3(metrics),
            cvss_v4=cls._extract_cvss_v4(metrics),
            weaknesses=cls._extract_weaknesses(cve_data),
            references=cls._extract_references(cve_data),
            affected_products=cls._extract_affected_products(cve_data),
        )

    def to_document(self) -> dict[str, Any]:
        """Convert to the JSON document stored by repositories."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "VulnerabilityRecord":
        """Rebuild a record from a stored document."""
        return cls.model_validate(doc)
