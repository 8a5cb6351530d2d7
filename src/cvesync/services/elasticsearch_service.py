"""Elasticsearch service for CVESync.

Handles all Elasticsearch operations including:
- Connection management with authentication
- Index creation and mapping
- Idempotent record upserts keyed by CVE ID
- Index statistics
"""

from typing import Any

from elasticsearch import Elasticsearch, NotFoundError
from loguru import logger

from cvesync.config import Settings
from cvesync.models.cve import VulnerabilityRecord

_CVSS_MAPPING = {
    "properties": {
        "version": {"type": "keyword"},
        "vectorString": {"type": "keyword"},
        "baseScore": {"type": "float"},
        "baseSeverity": {"type": "keyword"},
        "attackVector": {"type": "keyword"},
        "attackComplexity": {"type": "keyword"},
        "privilegesRequired": {"type": "keyword"},
        "userInteraction": {"type": "keyword"},
        "scope": {"type": "keyword"},
        "confidentialityImpact": {"type": "keyword"},
        "integrityImpact": {"type": "keyword"},
        "availabilityImpact": {"type": "keyword"},
        "exploitabilityScore": {"type": "float"},
        "impactScore": {"type": "float"},
    }
}

# Elasticsearch index mapping for vulnerability records
CVE_INDEX_MAPPING = {
    "mappings": {
        "properties": {
            "cveId": {"type": "keyword"},
            "sourceIdentifier": {"type": "keyword"},
            "publishedDate": {"type": "date"},
            "lastModifiedDate": {"type": "date"},
            "vulnStatus": {"type": "keyword"},
            "description": {"type": "text", "analyzer": "standard"},
            "baseScore": {"type": "float"},
            "severity": {"type": "keyword"},
            "cvssV2": _CVSS_MAPPING,
            "cvssV3": _CVSS_MAPPING,
            "cvssV4": _CVSS_MAPPING,
            "weaknesses": {
                "properties": {
                    "cweId": {"type": "keyword"},
                    "description": {"type": "text"},
                }
            },
            "references": {
                "properties": {
                    "url": {"type": "keyword"},
                    "source": {"type": "keyword"},
                    "tags": {"type": "keyword"},
                }
            },
            "affectedProducts": {
                "type": "nested",
                "properties": {
                    "vendor": {"type": "keyword"},
                    "product": {"type": "keyword"},
                    "versions": {"type": "keyword"},
                    "versionStartIncluding": {"type": "keyword"},
                    "versionStartExcluding": {"type": "keyword"},
                    "versionEndIncluding": {"type": "keyword"},
                    "versionEndExcluding": {"type": "keyword"},
                },
            },
            # EPSS fields
            "epssScore": {"type": "float"},
            "epssPercentile": {"type": "float"},
            "epssDate": {"type": "date"},
            # KEV fields
            "cisaKev": {"type": "boolean"},
            "cisaKevData": {
                "properties": {
                    "dateAdded": {"type": "date"},
                    "dueDate": {"type": "date"},
                    "requiredAction": {"type": "text"},
                    "knownRansomwareCampaignUse": {"type": "boolean"},
                    "notes": {"type": "text"},
                }
            },
            "exploitAvailable": {"type": "boolean"},
            "createdAt": {"type": "date"},
            "lastSyncDate": {"type": "date"},
        }
    },
    "settings": {
        "number_of_shards": 1,
        "number_of_replicas": 0,
        "refresh_interval": "30s",
    },
}


class ElasticsearchService:
    """Record repository backed by Elasticsearch.

    Supports both local and Elastic Cloud deployments with
    various authentication methods.
    """

    def __init__(self, settings: Settings, client: Elasticsearch | None = None):
        """Initialize Elasticsearch service.

        Args:
            settings: Application settings.
            client: Pre-built client, created lazily from settings when omitted.
        """
        self.settings = settings
        self.index_name = settings.elasticsearch.index_name
        self._client = client

    @property
    def client(self) -> Elasticsearch:
        """Get or create Elasticsearch client."""
        if self._client is None:
            self._client = self._create_client()
        return self._client

    def _create_client(self) -> Elasticsearch:
        """Create Elasticsearch client based on settings.

        Returns:
            Configured Elasticsearch client.
        """
        es_settings = self.settings.elasticsearch

        # Elastic Cloud connection
        if es_settings.is_cloud and es_settings.cloud_id:
            logger.info(f"Connecting to Elastic Cloud: {es_settings.cloud_id[:20]}...")

            if es_settings.has_api_key:
                api_key_id = es_settings.api_key_id or ""
                api_key_secret = (
                    es_settings.api_key.get_secret_value() if es_settings.api_key else ""
                )
                return Elasticsearch(
                    cloud_id=es_settings.cloud_id,
                    api_key=(api_key_id, api_key_secret),
                )
            return Elasticsearch(
                cloud_id=es_settings.cloud_id,
                basic_auth=(
                    es_settings.username,
                    es_settings.password.get_secret_value(),
                ),
            )

        # Local/self-hosted connection
        logger.info(f"Connecting to Elasticsearch: {es_settings.host}")

        client_kwargs: dict[str, Any] = {
            "hosts": [es_settings.host],
            "verify_certs": es_settings.verify_certs,
        }

        if es_settings.password.get_secret_value():
            client_kwargs["basic_auth"] = (
                es_settings.username,
                es_settings.password.get_secret_value(),
            )

        if es_settings.ca_certs:
            client_kwargs["ca_certs"] = es_settings.ca_certs

        return Elasticsearch(**client_kwargs)

    def ping(self) -> bool:
        """Check if Elasticsearch is reachable.

        Returns:
            True if connection successful.
        """
        try:
            return bool(self.client.ping())
        except Exception as e:
            logger.error(f"Elasticsearch ping failed: {e}")
            return False

    def ensure_index(self) -> None:
        """Ensure the record index exists with proper mapping."""
        if self.client.indices.exists(index=self.index_name):
            logger.debug(f"Index '{self.index_name}' already exists")
            return

        logger.info(f"Creating index '{self.index_name}' with vulnerability mapping")
        self.client.indices.create(
            index=self.index_name,
            mappings=CVE_INDEX_MAPPING["mappings"],
            settings=CVE_INDEX_MAPPING["settings"],
        )

    def find_by_id(self, cve_id: str) -> VulnerabilityRecord | None:
        """Get a stored record by CVE ID.

        Args:
            cve_id: CVE identifier.

        Returns:
            The stored record, or None if absent.
        """
        try:
            result = self.client.get(index=self.index_name, id=cve_id.upper())
        except NotFoundError:
            return None
        return VulnerabilityRecord.from_document(result["_source"])

    def upsert(self, record: VulnerabilityRecord) -> bool:
        """Insert or replace a record, keyed by its CVE ID.

        Args:
            record: Record to store.

        Returns:
            True if the record was created, False if it replaced an existing one.
        """
        result = self.client.index(
            index=self.index_name,
            id=record.cve_id,
            document=record.to_document(),
        )
        return result["result"] == "created"

    def count(self) -> int:
        """Get document count in index."""
        try:
            result = self.client.count(index=self.index_name)
        except NotFoundError:
            return 0
        return int(result["count"])

    def get_stats(self) -> dict[str, Any]:
        """Get index statistics.

        Returns:
            Dictionary with index statistics.
        """
        try:
            count = self.count()
            stats = self.client.indices.stats(index=self.index_name)
            index_stats = stats["indices"].get(self.index_name, {}).get("primaries", {})

            return {
                "index_name": self.index_name,
                "document_count": count,
                "size_bytes": index_stats.get("store", {}).get("size_in_bytes", 0),
                "indexing_total": index_stats.get("indexing", {}).get("index_total", 0),
            }
        except Exception as e:
            logger.error(f"Failed to get stats: {e}")
            return {"error": str(e)}

    def close(self) -> None:
        """Close the Elasticsearch client."""
        if self._client:
            self._client.close()
            self._client = None
