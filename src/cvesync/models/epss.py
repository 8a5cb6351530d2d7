"""EPSS (Exploit Prediction Scoring System) data models."""

from datetime import date
from typing import Any

from pydantic import Field, field_validator

from cvesync.models.base import CamelModel


class EPSSScore(CamelModel):
    """EPSS score for a single CVE.

    EPSS provides a probability score (0-1) indicating the likelihood
    that a vulnerability will be exploited in the wild within the next 30 days.
    The percentile is kept as a percentage (0-100).
    """

    cve_id: str = Field(..., description="CVE identifier")
    score: float = Field(
        ...,
        ge=0,
        le=1,
        description="EPSS probability score (0-1)",
    )
    percentile: float = Field(
        ...,
        ge=0,
        le=100,
        description="EPSS percentile ranking (0-100)",
    )
    score_date: date | None = Field(
        default=None,
        description="Date the score was calculated",
    )

    @property
    def score_percentage(self) -> float:
        """Get EPSS score as a percentage (0-100)."""
        return round(self.score * 100, 4)

    @field_validator("cve_id", mode="before")
    @classmethod
    def normalize_cve_id(cls, v: str) -> str:
        """Normalize CVE ID to uppercase."""
        return v.strip().upper() if v else v

    @classmethod
    def from_api(cls, row: dict[str, Any]) -> "EPSSScore":
        """Create EPSSScore from a FIRST API data row.

        Args:
            row: Dictionary with 'cve', 'epss', 'percentile' and 'date' keys.
                The API serializes numbers as strings and the percentile as
                a 0-1 fraction.

        Returns:
            EPSSScore instance.
        """
        return cls(
            cve_id=row.get("cve", ""),
            score=float(row.get("epss", 0)),
            percentile=round(float(row.get("percentile", 0)) * 100, 5),
            score_date=row.get("date") or None,
        )
