"""Tests for common utilities."""

import pytest
import structlog
from prometheus_client import CollectorRegistry
from pydantic import ValidationError

from libs.common.config import BaseConfig, SearchConfig, get_config, normalize_solr_url
from libs.common.logging import configure_logging, log_performance, search_log_context
from libs.common.metrics import MetricsCollector


def test_config_loading():
    """Test configuration loading."""
    config = BaseConfig()
    assert config.search_env == "local"
    assert config.search_log_level == "INFO"
    assert config.search_log_format == "json"


def test_search_config_defaults():
    """Test search service configuration."""
    config = SearchConfig()
    assert config.search_port == 9007
    assert config.search_backend == "solr"
    assert config.search_rrf_k == 60
    assert config.search_hybrid_default_top_k == 100
    assert config.search_semantic_default_top_k == 50
    assert config.search_cache_capacity == 100
    assert config.search_schema_sample_size == 100


def test_search_config_from_environment(monkeypatch):
    monkeypatch.setenv("SEARCH_BACKEND", "OpenSearch")
    monkeypatch.setenv("SEARCH_SOLR_URL", "http://solr:8983")
    monkeypatch.setenv("SEARCH_OPENSEARCH_HOSTS", "http://a:9200, http://b:9200")
    monkeypatch.setenv("SEARCH_RRF_K", "30")

    config = SearchConfig()

    assert config.search_backend == "opensearch"
    assert config.search_solr_url == "http://solr:8983/solr/"
    assert config.opensearch_hosts == ["http://a:9200", "http://b:9200"]
    assert config.search_rrf_k == 30


@pytest.mark.parametrize("name, value", [
    ("SEARCH_BACKEND", "elasticsearch"),
    ("SEARCH_RRF_K", "0"),
    ("SEARCH_CACHE_CAPACITY", "-1"),
    ("SEARCH_LOG_FORMAT", "xml"),
])
def test_invalid_settings_rejected(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValidationError):
        SearchConfig()


def test_get_config():
    assert isinstance(get_config("search"), SearchConfig)
    assert type(get_config("other")) is BaseConfig


@pytest.mark.parametrize("url", [
    "http://localhost:8983",
    "http://localhost:8983/",
    "http://localhost:8983/solr",
    " http://localhost:8983/solr/ ",
])
def test_normalize_solr_url(url):
    assert normalize_solr_url(url) == "http://localhost:8983/solr/"


def test_logging_configuration():
    """Test logging configuration."""
    # This should not raise an exception
    configure_logging("test-service", "INFO", "json")
    configure_logging("test-service", "debug", "console")
    log_performance("hybrid_search", 12.5, collection="books")


def test_unknown_log_level_rejected():
    with pytest.raises(ValueError):
        configure_logging("test-service", "LOUD", "json")


def test_search_log_context_binds_and_restores():
    configure_logging("test-service", "INFO", "json")

    with search_log_context("books", "hybrid"):
        bound = structlog.contextvars.get_contextvars()
        assert bound["collection"] == "books"
        assert bound["search_mode"] == "hybrid"

    after = structlog.contextvars.get_contextvars()
    assert "collection" not in after
    assert after["service"] == "test-service"


def test_metrics_collector():
    """Test metrics collector."""
    collector = MetricsCollector("test-service", registry=CollectorRegistry())
    assert collector.service_name == "test-service"

    collector.record_http_request("GET", "/test", 200, 0.1)
    collector.record_search("hybrid", 0.05)
    collector.record_fallback_outcome("keyword_only")
    collector.record_backend_error("hybrid")

    registry = collector.registry
    assert registry.get_sample_value("search_requests_total", {"mode": "hybrid"}) == 1.0
    assert registry.get_sample_value(
        "search_fallback_outcomes_total", {"stage": "keyword_only"}
    ) == 1.0
    assert registry.get_sample_value("search_backend_errors_total", {"stage": "hybrid"}) == 1.0

    metrics = collector.get_metrics()
    assert isinstance(metrics, str)
    assert "http_requests_total" in metrics


def test_indexing_metrics():
    collector = MetricsCollector("test-service", registry=CollectorRegistry())

    collector.record_indexing(indexed=3, failed=1)
    collector.record_indexing(indexed=0, failed=2)

    registry = collector.registry
    assert registry.get_sample_value("search_documents_indexed_total", {"status": "indexed"}) == 3.0
    assert registry.get_sample_value("search_documents_indexed_total", {"status": "failed"}) == 3.0


def test_metrics_collectors_are_isolated():
    first = MetricsCollector("a")
    second = MetricsCollector("b")

    first.record_cache_hit("vector_store")

    assert second.registry.get_sample_value(
        "search_cache_hits_total", {"cache_type": "vector_store"}
    ) is None
