"""Search backend factory.

Centralizes creation of concrete ``SearchBackend`` implementations so
callers don't depend on engine details. New backends can be added without
changing call sites.
"""

from enum import Enum
from typing import Any, Dict

import structlog

from libs.common.config import SearchConfig
from .base import SearchBackend
from .opensearch import OpenSearchSearchBackend
from .solr import SolrSearchBackend

logger = structlog.get_logger("search_backend.factory")


class SearchBackendType(Enum):
    """Supported search backend types."""
    SOLR = "solr"
    OPENSEARCH = "opensearch"


class SearchBackendFactory:
    """Factory for creating search backend instances."""

    @staticmethod
    def create(
        backend_type: SearchBackendType,
        config: Dict[str, Any],
        **kwargs: Any
    ) -> SearchBackend:
        """Create a search backend instance.

        Parameters
        - backend_type: A ``SearchBackendType`` enum value
        - config: Backend-specific parameters (e.g., ``base_url`` for Solr)
        - kwargs: Additional overrides forwarded to the implementation
        """

        if backend_type == SearchBackendType.SOLR:
            base_url = config.get("base_url")
            if not base_url:
                raise ValueError("Solr requires 'base_url' in config")

            return SolrSearchBackend(
                base_url=base_url,
                vector_field=config.get("vector_field", "vector"),
                text_field=config.get("text_field", "_text_"),
                connect_timeout=config.get("connect_timeout", 10.0),
                read_timeout=config.get("read_timeout", 60.0),
                **kwargs
            )

        elif backend_type == SearchBackendType.OPENSEARCH:
            hosts = config.get("hosts")
            if not hosts:
                raise ValueError("OpenSearch requires 'hosts' in config")

            return OpenSearchSearchBackend(
                hosts=hosts,
                vector_field=config.get("vector_field", "vector"),
                text_field=config.get("text_field", "content"),
                username=config.get("username"),
                password=config.get("password"),
                verify_certs=config.get("verify_certs", False),
                ssl_assert_hostname=config.get("ssl_assert_hostname", False),
                ssl_show_warn=config.get("ssl_show_warn", False),
                timeout=config.get("read_timeout", 60.0),
                **kwargs
            )

        else:
            raise ValueError(f"Unsupported search backend type: {backend_type}")


def create_search_backend(config: SearchConfig) -> SearchBackend:
    """Create the backend selected by ``SearchConfig.search_backend``."""
    try:
        backend_type = SearchBackendType(config.search_backend)
    except ValueError:
        raise ValueError(f"Unsupported search backend: {config.search_backend}")

    if backend_type == SearchBackendType.SOLR:
        backend_config = {
            "base_url": config.search_solr_url,
            "vector_field": config.search_vector_field,
            "text_field": config.search_text_field,
            "connect_timeout": config.search_connect_timeout,
            "read_timeout": config.search_read_timeout,
        }
    else:
        backend_config = {
            "hosts": config.opensearch_hosts,
            "vector_field": config.search_vector_field,
            "text_field": config.search_content_field,
            "username": config.search_opensearch_username,
            "password": config.search_opensearch_password,
            "verify_certs": config.search_opensearch_verify_certs,
            "ssl_assert_hostname": config.search_opensearch_ssl_assert_hostname,
            "ssl_show_warn": config.search_opensearch_ssl_show_warn,
            "read_timeout": config.search_read_timeout,
        }

    logger.info("Creating search backend", backend=backend_type.value)
    return SearchBackendFactory.create(backend_type, backend_config)
