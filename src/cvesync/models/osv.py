"""OSV (Open Source Vulnerabilities) advisory models."""

from datetime import datetime
from typing import Any

from pydantic import Field

from cvesync.models.base import CamelModel


class OSVSeverity(CamelModel):
    """Severity vector attached to an advisory."""

    type: str
    score: str


class OSVAffectedPackage(CamelModel):
    """Package affected by an advisory."""

    ecosystem: str = ""
    name: str = ""
    purl: str | None = None


class OSVVulnerability(CamelModel):
    """A single OSV advisory."""

    id: str
    aliases: list[str] = Field(default_factory=list)
    summary: str = ""
    details: str = ""
    modified: datetime | None = None
    published: datetime | None = None
    withdrawn: datetime | None = None
    severity: list[OSVSeverity] = Field(default_factory=list)
    affected: list[OSVAffectedPackage] = Field(default_factory=list)

    @property
    def cve_aliases(self) -> list[str]:
        """CVE identifiers among the advisory's id and aliases."""
        ids = [self.id, *self.aliases]
        return [i.upper() for i in ids if i.upper().startswith("CVE-")]

    @property
    def is_withdrawn(self) -> bool:
        return self.withdrawn is not None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "OSVVulnerability":
        """Create from an OSV API vulnerability object."""
        affected = [
            OSVAffectedPackage(
                ecosystem=item.get("package", {}).get("ecosystem", ""),
                name=item.get("package", {}).get("name", ""),
                purl=item.get("package", {}).get("purl"),
            )
            for item in data.get("affected", [])
        ]
        return cls(
            id=data["id"],
            aliases=data.get("aliases", []),
            summary=data.get("summary", ""),
            details=data.get("details", ""),
            modified=data.get("modified"),
            published=data.get("published"),
            withdrawn=data.get("withdrawn"),
            severity=[OSVSeverity.model_validate(s) for s in data.get("severity", [])],
            affected=affected,
        )
