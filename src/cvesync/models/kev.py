"""CISA Known Exploited Vulnerabilities (KEV) data models."""

from datetime import date, datetime, timedelta
from typing import Any

from loguru import logger
from pydantic import Field, field_validator

from cvesync.models.base import CamelModel
from cvesync.models.cve import KEVRemediation, is_valid_cve_id

REQUIRED_FIELDS = (
    "cveID",
    "vendorProject",
    "product",
    "vulnerabilityName",
    "dateAdded",
    "shortDescription",
    "requiredAction",
    "dueDate",
)


class KEVEntry(CamelModel):
    """Single entry in the CISA KEV catalog.

    The KEV catalog contains vulnerabilities that are known to be
    actively exploited in the wild.
    """

    cve_id: str = Field(..., description="CVE identifier")
    vendor_project: str = Field(..., description="Vendor or project name")
    product: str = Field(..., description="Affected product name")
    vulnerability_name: str = Field(..., description="Vulnerability name/title")
    date_added: date = Field(..., description="Date added to KEV catalog")
    short_description: str = Field(..., description="Brief vulnerability description")
    required_action: str = Field(..., description="Required remediation action")
    due_date: date = Field(..., description="Federal agency remediation due date")
    known_ransomware_campaign_use: bool = Field(
        default=False,
        description="Known to be used in ransomware campaigns",
    )
    notes: str = Field(default="", description="Additional notes")

    @field_validator("cve_id", mode="before")
    @classmethod
    def normalize_cve_id(cls, v: str) -> str:
        """Normalize and validate the CVE ID."""
        if not is_valid_cve_id(v):
            raise ValueError(f"Invalid CVE ID format: {v!r}")
        return v.strip().upper()

    @field_validator("date_added", "due_date", mode="before")
    @classmethod
    def parse_date(cls, v: str | date) -> date:
        """Parse date string to date object."""
        if isinstance(v, date):
            return v
        if isinstance(v, str):
            return datetime.strptime(v, "%Y-%m-%d").date()
        raise ValueError(f"Cannot parse date: {v}")

    @field_validator("known_ransomware_campaign_use", mode="before")
    @classmethod
    def parse_ransomware_use(cls, v: str | bool) -> bool:
        """Parse ransomware use field."""
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            return v.lower() == "known"
        return False

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "KEVEntry":
        """Create KEVEntry from CISA API response data.

        Args:
            data: Single vulnerability entry from KEV JSON.

        Returns:
            KEVEntry instance.

        Raises:
            ValueError: If a required field is missing or malformed.
        """
        missing = [field for field in REQUIRED_FIELDS if not data.get(field)]
        if missing:
            raise ValueError(f"KEV entry missing required fields: {', '.join(missing)}")

        return cls(
            cve_id=data["cveID"],
            vendor_project=data["vendorProject"],
            product=data["product"],
            vulnerability_name=data["vulnerabilityName"],
            date_added=data["dateAdded"],
            short_description=data["shortDescription"],
            required_action=data["requiredAction"],
            due_date=data["dueDate"],
            known_ransomware_campaign_use=data.get("knownRansomwareCampaignUse", "Unknown"),
            notes=data.get("notes") or "",
        )

    def to_remediation(self) -> KEVRemediation:
        """Project the entry onto the remediation block stored on records."""
        return KEVRemediation(
            date_added=self.date_added,
            due_date=self.due_date,
            required_action=self.required_action,
            known_ransomware_campaign_use=self.known_ransomware_campaign_use,
            notes=self.notes or None,
        )


class KEVCatalog(CamelModel):
    """CISA KEV catalog container."""

    title: str = Field(default="", description="Catalog title")
    catalog_version: str = Field(default="", description="Catalog version")
    date_released: datetime | None = Field(
        default=None,
        description="Catalog release date",
    )
    entries: dict[str, KEVEntry] = Field(
        default_factory=dict,
        description="CVE ID to KEV entry mapping",
    )
    total_count: int = Field(
        default=0,
        description="Total number of KEV entries",
    )

    @field_validator("date_released", mode="before")
    @classmethod
    def parse_datetime(cls, v: str | datetime | None) -> datetime | None:
        """Parse datetime string."""
        if v is None:
            return None
        if isinstance(v, datetime):
            return v
        if isinstance(v, str):
            return datetime.fromisoformat(v.replace("Z", "+00:00"))
        return None

    def get_entry(self, cve_id: str) -> KEVEntry | None:
        """Get KEV entry for a CVE.

        Args:
            cve_id: CVE identifier.

        Returns:
            KEVEntry if found, None otherwise.
        """
        return self.entries.get(cve_id.strip().upper())

    def is_kev(self, cve_id: str) -> bool:
        """Check if a CVE is in the KEV catalog."""
        return cve_id.strip().upper() in self.entries

    def recent(self, days: int, today: date | None = None) -> list[KEVEntry]:
        """Entries added within the last ``days`` days, newest first."""
        cutoff = (today or date.today()) - timedelta(days=days)
        recent = [e for e in self.entries.values() if e.date_added >= cutoff]
        return sorted(recent, key=lambda e: e.date_added, reverse=True)

    def ransomware_entries(self) -> list[KEVEntry]:
        """Entries known to be used in ransomware campaigns."""
        return [e for e in self.entries.values() if e.known_ransomware_campaign_use]

    def by_vendor(self, vendor: str) -> list[KEVEntry]:
        """Entries whose vendor/project contains ``vendor``, ignoring case."""
        needle = vendor.strip().lower()
        return [e for e in self.entries.values() if needle in e.vendor_project.lower()]

    def by_product(self, product: str) -> list[KEVEntry]:
        """Entries whose product contains ``product``, ignoring case."""
        needle = product.strip().lower()
        return [e for e in self.entries.values() if needle in e.product.lower()]

    @staticmethod
    def validate_document(data: Any) -> None:
        """Check the catalog document shape.

        Raises:
            ValueError: If the document is not a KEV catalog.
        """
        if not isinstance(data, dict):
            raise ValueError("KEV catalog must be a JSON object")
        if not isinstance(data.get("vulnerabilities"), list):
            raise ValueError("KEV catalog has no vulnerabilities list")
        for field in ("catalogVersion", "dateReleased"):
            if not data.get(field):
                raise ValueError(f"KEV catalog missing {field}")

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "KEVCatalog":
        """Create KEVCatalog from CISA API response.

        Invalid entries are dropped with a warning.

        Args:
            data: Full KEV catalog JSON response.

        Returns:
            KEVCatalog instance.

        Raises:
            ValueError: If the document shape is invalid.
        """
        cls.validate_document(data)

        entries: dict[str, KEVEntry] = {}
        dropped = 0
        for vuln in data["vulnerabilities"]:
            try:
                entry = KEVEntry.from_api(vuln)
            except (ValueError, TypeError, AttributeError) as e:
                dropped += 1
                logger.warning(f"Skipping invalid KEV entry {vuln!r:.80}: {e}")
                continue
            entries[entry.cve_id] = entry

        declared = data.get("count")
        if isinstance(declared, int) and declared != len(data["vulnerabilities"]):
            logger.warning(
                f"KEV catalog declares {declared} entries but contains "
                f"{len(data['vulnerabilities'])}"
            )
        if dropped:
            logger.warning(f"Dropped {dropped} invalid KEV entries")

        return cls(
            title=data.get("title", ""),
            catalog_version=data["catalogVersion"],
            date_released=data["dateReleased"],
            entries=entries,
            total_count=len(entries),
        )
