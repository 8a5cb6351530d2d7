"""Tests for EPSS data models."""

from datetime import date

import pytest

from cvesync.models.epss import EPSSScore


class TestEPSSScore:
    """Tests for EPSSScore model."""

    def test_create_epss_score(self):
        """Test creating an EPSS score."""
        score = EPSSScore(
            cve_id="CVE-2024-12345",
            score=0.95432,
            percentile=99.123,
        )

        assert score.cve_id == "CVE-2024-12345"
        assert score.score == 0.95432
        assert score.percentile == 99.123

    def test_score_percentage(self):
        """Test score percentage conversion."""
        score = EPSSScore(
            cve_id="CVE-2024-12345",
            score=0.95432,
            percentile=99.1,
        )

        assert score.score_percentage == 95.432

    def test_normalize_cve_id(self):
        """Test CVE ID normalization to uppercase."""
        score = EPSSScore(
            cve_id="cve-2024-12345",
            score=0.5,
            percentile=50,
        )

        assert score.cve_id == "CVE-2024-12345"

    def test_from_api(self):
        """The API's 0-1 percentile becomes a percentage."""
        score = EPSSScore.from_api(
            {
                "cve": "CVE-2024-12345",
                "epss": "0.954320000",
                "percentile": "0.991230000",
                "date": "2024-01-15",
            }
        )

        assert score.score == 0.95432
        assert score.percentile == pytest.approx(99.123)
        assert score.score_date == date(2024, 1, 15)

    def test_score_out_of_range(self):
        with pytest.raises(ValueError):
            EPSSScore.from_api({"cve": "CVE-2024-12345", "epss": "1.7", "percentile": "0.5"})

    def test_dump_uses_camel_case(self):
        score = EPSSScore(
            cve_id="CVE-2024-1", score=0.1, percentile=10, score_date=date(2024, 1, 1)
        )

        assert score.model_dump(by_alias=True)["cveId"] == "CVE-2024-1"
