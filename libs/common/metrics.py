"""Metrics collection for the search service.

Provides a thin convenience wrapper around ``prometheus_client`` so the
service records HTTP, search, fallback, indexing and cache metrics consistently.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A single registry is kept per collector (can be injected for tests)
- Fallback outcomes are counted per stage so degraded operation stays
  visible even though callers always receive a plain result list
"""

from typing import Optional

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest
import structlog

logger = structlog.get_logger("metrics")


class MetricsCollector:
    """Centralized metrics collection for the search service.

    Parameters
    - service_name: Logical name used for scoping
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.request_count = Counter(
            'http_requests_total',
            'Total HTTP requests',
            ['method', 'endpoint', 'status'],
            registry=self.registry
        )

        self.request_duration = Histogram(
            'http_request_duration_seconds',
            'HTTP request duration',
            ['method', 'endpoint'],
            registry=self.registry
        )

        self.search_requests = Counter(
            'search_requests_total',
            'Total search requests',
            ['mode'],
            registry=self.registry
        )

        self.search_duration = Histogram(
            'search_duration_seconds',
            'Search duration',
            ['mode'],
            registry=self.registry
        )

        self.fallback_outcomes = Counter(
            'search_fallback_outcomes_total',
            'Hybrid searches partitioned by the stage that produced the result',
            ['stage'],
            registry=self.registry
        )

        self.backend_errors = Counter(
            'search_backend_errors_total',
            'Backend failures observed per fallback stage',
            ['stage'],
            registry=self.registry
        )

        self.documents_indexed = Counter(
            'search_documents_indexed_total',
            'Documents submitted for indexing, by outcome',
            ['status'],
            registry=self.registry
        )

        self.cache_hits = Counter(
            'search_cache_hits_total',
            'Total cache hits',
            ['cache_type'],
            registry=self.registry
        )

        self.cache_misses = Counter(
            'search_cache_misses_total',
            'Total cache misses',
            ['cache_type'],
            registry=self.registry
        )

        self.cache_evictions = Counter(
            'search_cache_evictions_total',
            'Entries evicted to respect cache capacity',
            ['cache_type'],
            registry=self.registry
        )

        self.cache_size = Gauge(
            'search_cache_entries',
            'Current number of cached entries',
            ['cache_type'],
            registry=self.registry
        )

    def record_http_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration: float
    ) -> None:
        """Record HTTP request metrics.

        duration is expected in seconds to match Prometheus histogram units.
        """
        self.request_count.labels(method=method, endpoint=endpoint, status=status).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def record_search(self, mode: str, duration: float) -> None:
        """Record search metrics."""
        self.search_requests.labels(mode=mode).inc()
        self.search_duration.labels(mode=mode).observe(duration)

    def record_fallback_outcome(self, stage: str) -> None:
        """Record which fallback stage satisfied a hybrid search."""
        self.fallback_outcomes.labels(stage=stage).inc()

    def record_backend_error(self, stage: str) -> None:
        """Record a failed fallback stage."""
        self.backend_errors.labels(stage=stage).inc()

    def record_indexing(self, indexed: int, failed: int) -> None:
        """Record the outcome of one indexing request."""
        if indexed:
            self.documents_indexed.labels(status="indexed").inc(indexed)
        if failed:
            self.documents_indexed.labels(status="failed").inc(failed)

    def record_cache_hit(self, cache_type: str) -> None:
        """Record cache hit."""
        self.cache_hits.labels(cache_type=cache_type).inc()

    def record_cache_miss(self, cache_type: str) -> None:
        """Record cache miss."""
        self.cache_misses.labels(cache_type=cache_type).inc()

    def record_cache_eviction(self, cache_type: str) -> None:
        """Record a capacity-driven eviction."""
        self.cache_evictions.labels(cache_type=cache_type).inc()

    def set_cache_size(self, cache_type: str, size: int) -> None:
        """Set the current cache size gauge."""
        self.cache_size.labels(cache_type=cache_type).set(size)

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get or create metrics collector for a service.

    Returns a process-wide singleton to avoid duplicate collectors/labels.
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
    return _metrics_collector
