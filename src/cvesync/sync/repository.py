"""Record persistence interface."""

from typing import Protocol

from cvesync.models.cve import VulnerabilityRecord


class RecordRepository(Protocol):
    """Storage for merged records, keyed by CVE ID."""

    def find_by_id(self, cve_id: str) -> VulnerabilityRecord | None: ...

    def upsert(self, record: VulnerabilityRecord) -> bool:
        """Store a record; return True when it did not exist before."""
        ...

    def count(self) -> int: ...


class InMemoryRepository:
    """Dictionary-backed repository for dry runs and tests."""

    def __init__(self) -> None:
        self.records: dict[str, VulnerabilityRecord] = {}
        self.upsert_calls = 0

    def find_by_id(self, cve_id: str) -> VulnerabilityRecord | None:
        return self.records.get(cve_id.upper())

    def upsert(self, record: VulnerabilityRecord) -> bool:
        self.upsert_calls += 1
        created = record.cve_id not in self.records
        self.records[record.cve_id] = record
        return created

    def count(self) -> int:
        return len(self.records)
