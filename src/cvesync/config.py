"""Configuration management for CVESync using Pydantic Settings.

Configuration is loaded from environment variables and/or .env files.
Environment variables take precedence over .env file values.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ElasticsearchSettings(BaseSettings):
    """Elasticsearch connection settings."""

    model_config = SettingsConfigDict(env_prefix="ELASTICSEARCH_")

    host: str = Field(
        default="http://localhost:9200",
        description="Elasticsearch host URL",
    )
    username: str = Field(
        default="elastic",
        description="Elasticsearch username",
    )
    password: SecretStr = Field(
        default=SecretStr(""),
        description="Elasticsearch password",
    )
    cloud_id: str | None = Field(
        default=None,
        description="Elastic Cloud deployment ID",
    )
    api_key_id: str | None = Field(
        default=None,
        description="Elasticsearch API key ID",
    )
    api_key: SecretStr | None = Field(
        default=None,
        description="Elasticsearch API key secret",
    )
    index_name: str = Field(
        default="cves",
        description="Name of the Elasticsearch index for vulnerability records",
    )
    verify_certs: bool = Field(
        default=True,
        description="Whether to verify SSL certificates",
    )
    ca_certs: str | None = Field(
        default=None,
        description="Path to CA certificates file",
    )

    @property
    def is_cloud(self) -> bool:
        """Check if using Elastic Cloud."""
        return self.cloud_id is not None

    @property
    def has_api_key(self) -> bool:
        """Check if API key authentication is configured."""
        return self.api_key_id is not None and self.api_key is not None


class RetrySettings(BaseSettings):
    """Retry policy shared by all source clients."""

    model_config = SettingsConfigDict(env_prefix="RETRY_")

    max_attempts: int = Field(default=3, ge=1, le=10)
    min_wait: float = Field(
        default=1.0,
        ge=0,
        description="Initial backoff in seconds",
    )
    max_wait: float = Field(
        default=30.0,
        ge=0,
        le=30,
        description="Backoff cap in seconds",
    )


class NVDSettings(BaseSettings):
    """NVD API settings."""

    model_config = SettingsConfigDict(env_prefix="NVD_")

    api_key: SecretStr | None = Field(
        default=None,
        description="NVD API key for higher rate limits",
    )
    base_url: str = Field(
        default="https://services.nvd.nist.gov/rest/json/cves/2.0",
        description="NVD API base URL",
    )
    window_seconds: float = Field(default=30.0, gt=0)
    results_per_page: int = Field(
        default=2000,
        ge=1,
        le=2000,
        description="Number of results per API page",
    )
    max_range_days: int = Field(
        default=120,
        ge=1,
        le=120,
        description="Longest publication date range NVD accepts in one query",
    )
    timeout: int = Field(
        default=30,
        ge=5,
        le=120,
        description="API request timeout in seconds",
    )
    cache_ttl: int = Field(default=3600, ge=0, description="Response cache TTL in seconds")

    @property
    def rate_limit(self) -> int:
        """Requests per window (5 without API key, 50 with)."""
        return 50 if self.api_key else 5

    @property
    def min_interval(self) -> float:
        """Minimum delay between consecutive requests."""
        return self.window_seconds / self.rate_limit


class EPSSSettings(BaseSettings):
    """EPSS API settings."""

    model_config = SettingsConfigDict(env_prefix="EPSS_")

    base_url: str = Field(
        default="https://api.first.org/data/v1/epss",
        description="FIRST EPSS API endpoint",
    )
    rate_limit: int = Field(default=100, ge=1)
    window_seconds: float = Field(default=60.0, gt=0)
    min_interval: float = Field(default=0.6, ge=0)
    chunk_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="CVE IDs per EPSS request",
    )
    timeout: int = Field(
        default=30,
        ge=5,
        le=300,
        description="API request timeout in seconds",
    )
    cache_ttl: int = Field(default=86400, ge=0)


class KEVSettings(BaseSettings):
    """CISA KEV catalog settings."""

    model_config = SettingsConfigDict(env_prefix="KEV_")

    url: str = Field(
        default="https://www.cisa.gov/sites/default/files/feeds/known_exploited_vulnerabilities.json",
        description="URL for CISA KEV catalog JSON",
    )
    rate_limit: int = Field(default=10, ge=1)
    window_seconds: float = Field(default=60.0, gt=0)
    timeout: int = Field(
        default=60,
        ge=10,
        le=120,
        description="Download timeout in seconds",
    )
    cache_ttl: int = Field(default=43200, ge=0)


class OSVSettings(BaseSettings):
    """OSV.dev API settings."""

    model_config = SettingsConfigDict(env_prefix="OSV_")

    base_url: str = Field(
        default="https://api.osv.dev/v1",
        description="OSV API base URL",
    )
    rate_limit: int = Field(default=60, ge=1)
    window_seconds: float = Field(default=60.0, gt=0)
    min_interval: float = Field(default=1.0, ge=0)
    timeout: int = Field(default=30, ge=5, le=120)
    cache_ttl: int = Field(default=3600, ge=0)


class SyncSettings(BaseSettings):
    """Sync pipeline settings."""

    model_config = SettingsConfigDict(env_prefix="SYNC_")

    batch_size: int = Field(default=100, ge=1, le=1000)
    progress_interval: int = Field(
        default=10,
        ge=1,
        description="Publish a progress event every N processed records",
    )
    checkpoint_interval: int = Field(
        default=50,
        ge=1,
        description="Persist resume state every N processed records",
    )
    state_file: Path = Field(
        default=Path(".sync-state.json"),
        description="Location of the resume state document",
    )
    full_sync_years: int = Field(default=3, ge=1)
    incremental_days: int = Field(default=7, ge=1)
    default_days: int = Field(default=30, ge=1)

    @field_validator("state_file", mode="before")
    @classmethod
    def ensure_path(cls, v: str | Path) -> Path:
        """Ensure state_file is a Path object."""
        return Path(v) if isinstance(v, str) else v


class Settings(BaseSettings):
    """Main application settings.

    All settings can be configured via environment variables.
    Nested settings use double underscores, e.g., SYNC__BATCH_SIZE.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    elasticsearch: ElasticsearchSettings = Field(default_factory=ElasticsearchSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    nvd: NVDSettings = Field(default_factory=NVDSettings)
    epss: EPSSSettings = Field(default_factory=EPSSSettings)
    kev: KEVSettings = Field(default_factory=KEVSettings)
    osv: OSVSettings = Field(default_factory=OSVSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Application settings instance, cached for reuse.
    """
    return Settings()
