"""Configuration management for the hybrid search service.

This module centralizes environment-driven configuration. It builds on
``pydantic_settings.BaseSettings`` so configuration can be provided via
environment variables, ``.env`` files, or defaults.

Highlights
- Strongly-typed settings with sensible defaults
- Field names double as environment variable names (case-insensitive)
- Out-of-range values fail at startup with ``pydantic.ValidationError``

Usage
- Inject the config in your service entrypoint: ``config = SearchConfig()``
- Or select dynamically: ``config = get_config("search")``
"""

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration shared by every entrypoint.

    Notes
    - Add new shared settings here so downstream configs inherit them.
    - Prefer declaring a field over reading ``os.environ`` directly.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    search_env: str = Field(default="local")

    # Logging
    search_log_level: str = Field(default="INFO")
    search_log_format: str = Field(default="json")

    @field_validator("search_log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        if value not in ("json", "console"):
            raise ValueError(f"log format must be 'json' or 'console', got: {value}")
        return value


class SearchConfig(BaseConfig):
    """Configuration for the search service.

    Groups the backend connection, embedding service, fusion and cache
    knobs consumed by ``SearchManager`` and the backend factory.
    """

    search_port: int = Field(default=9007)

    # Backend selection
    search_backend: str = Field(default="solr")

    # Solr
    search_solr_url: str = Field(default="http://localhost:8983/solr/")

    # OpenSearch
    search_opensearch_hosts: str = Field(default="http://localhost:9200")
    search_opensearch_username: Optional[str] = Field(default=None)
    search_opensearch_password: Optional[str] = Field(default=None)
    search_opensearch_verify_certs: bool = Field(default=False)
    search_opensearch_ssl_assert_hostname: bool = Field(default=False)
    search_opensearch_ssl_show_warn: bool = Field(default=False)

    # Backend client timeouts (seconds)
    search_connect_timeout: float = Field(default=10.0, gt=0)
    search_read_timeout: float = Field(default=60.0, gt=0)

    # Embedding service
    search_embedding_service_url: str = Field(default="http://localhost:9006")
    search_embedding_model: str = Field(default="default")
    search_embedding_retry_attempts: int = Field(default=3, ge=1)
    search_embedding_retry_base_delay: float = Field(default=1.0, ge=0)
    search_embedding_retry_max_delay: float = Field(default=10.0, ge=0)
    search_embedding_breaker_threshold: int = Field(default=5, ge=1)
    search_embedding_breaker_recovery: float = Field(default=30.0, ge=0)

    # Fusion and retrieval
    search_rrf_k: int = Field(default=60, gt=0)
    search_hybrid_default_top_k: int = Field(default=100, gt=0)
    search_semantic_default_top_k: int = Field(default=50, gt=0)

    # Collection handle cache
    search_cache_capacity: int = Field(default=100, gt=0)

    # Schema discovery
    search_schema_sample_size: int = Field(default=100, gt=0)

    # Field naming conventions
    search_vector_field: str = Field(default="vector")
    search_text_field: str = Field(default="_text_")
    search_id_field: str = Field(default="id")
    search_content_field: str = Field(default="content")
    search_metadata_prefix: str = Field(default="metadata_")
    search_internal_field_prefix: str = Field(default="_")

    @field_validator("search_backend")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in ("solr", "opensearch"):
            raise ValueError(f"unsupported search backend: {value}")
        return value

    @field_validator("search_solr_url")
    @classmethod
    def _normalize_solr_url(cls, value: str) -> str:
        return normalize_solr_url(value)

    @property
    def opensearch_hosts(self) -> List[str]:
        """OpenSearch hosts as a list (the env var is comma separated)."""
        return [h.strip() for h in self.search_opensearch_hosts.split(",") if h.strip()]


def normalize_solr_url(url: str) -> str:
    """Ensure a Solr base URL ends in ``/solr/``.

    ``http://localhost:8983`` and ``http://localhost:8983/solr`` both become
    ``http://localhost:8983/solr/``.
    """
    url = url.strip()
    if not url.endswith("/"):
        url += "/"
    if not url.endswith("solr/"):
        url += "solr/"
    return url


def get_config(service_name: str) -> BaseConfig:
    """Get configuration for a specific entrypoint.

    Parameters
    - service_name: ``search`` for the search service; anything else yields
      the shared ``BaseConfig``.
    """
    config_map = {
        "search": SearchConfig,
    }

    config_class = config_map.get(service_name, BaseConfig)
    return config_class()
