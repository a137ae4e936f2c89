"""Bounded cache of per-collection backend handles.

Handles such as ``CollectionVectorStore`` are cheap to keep and comparatively
expensive to build, so one instance per collection is reused across
requests. The cache is bounded and evicts the least recently used
collection once capacity is exceeded.

Concurrency
- A single lock guards the combined map and recency order.
- Handle construction runs inside that critical section, so any number of
  callers racing on a cold key observe exactly one created handle.
"""

import threading
from collections import OrderedDict
from typing import Callable, Generic, List, Optional, TypeVar

import structlog

from libs.common.metrics import MetricsCollector
from ..errors import CacheCreationError, InvalidParameterError

logger = structlog.get_logger("search_service.cache")

T = TypeVar("T")

DEFAULT_CAPACITY = 100


class CollectionResourceCache(Generic[T]):
    """Thread-safe LRU cache holding at most one handle per collection.

    Parameters
    - factory: Builds the handle for a collection name on first use
    - capacity: Maximum number of cached handles (default 100)
    - cache_type: Label used in logs and metrics
    - metrics: Optional ``MetricsCollector`` for hit/miss/eviction counters
    """

    def __init__(
        self,
        factory: Callable[[str], T],
        capacity: int = DEFAULT_CAPACITY,
        cache_type: str = "collection_handle",
        metrics: Optional[MetricsCollector] = None,
    ):
        if capacity <= 0:
            raise InvalidParameterError(f"Cache capacity must be positive, got: {capacity}")

        self._factory = factory
        self._capacity = capacity
        self._cache_type = cache_type
        self._metrics = metrics
        # Ordered least recently used first
        self._entries: "OrderedDict[str, T]" = OrderedDict()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def for_collection(self, collection: str) -> T:
        """Return the handle for ``collection``, creating it on first use.

        Every call refreshes the collection's recency.

        Raises
        - ``InvalidParameterError`` if ``collection`` is ``None``
        - ``CacheCreationError`` if the factory fails; nothing is cached then
        """
        if collection is None:
            raise InvalidParameterError("Collection name cannot be None")

        evicted: List[str] = []
        with self._lock:
            if collection in self._entries:
                self._entries.move_to_end(collection)
                handle = self._entries[collection]
                if self._metrics:
                    self._metrics.record_cache_hit(self._cache_type)
                return handle

            try:
                handle = self._factory(collection)
            except Exception as e:
                logger.error(
                    "Failed to create collection handle",
                    collection=collection,
                    error=str(e)
                )
                raise CacheCreationError(
                    f"Could not create handle for collection '{collection}': {e}"
                ) from e

            self._entries[collection] = handle
            while len(self._entries) > self._capacity:
                evicted_key, _ = self._entries.popitem(last=False)
                evicted.append(evicted_key)
            size = len(self._entries)

        logger.info("Collection handle created", collection=collection, cache_size=size)
        for evicted_key in evicted:
            logger.info("Collection handle evicted", collection=evicted_key, reason="capacity")

        if self._metrics:
            self._metrics.record_cache_miss(self._cache_type)
            for _ in evicted:
                self._metrics.record_cache_eviction(self._cache_type)
            self._metrics.set_cache_size(self._cache_type, size)

        return handle

    def evict(self, collection: str) -> Optional[T]:
        """Remove one collection's handle; return it, or ``None`` if absent."""
        with self._lock:
            handle = self._entries.pop(collection, None)
            size = len(self._entries)

        if handle is not None:
            logger.info("Collection handle evicted", collection=collection, reason="explicit")
            if self._metrics:
                self._metrics.set_cache_size(self._cache_type, size)
        return handle

    def clear(self) -> None:
        """Drop every cached handle."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()

        logger.info("Collection handle cache cleared", removed=count)
        if self._metrics:
            self._metrics.set_cache_size(self._cache_type, 0)

    def size(self) -> int:
        """Current number of cached handles."""
        with self._lock:
            return len(self._entries)

    def keys(self) -> List[str]:
        """Cached collection names, least recently used first."""
        with self._lock:
            return list(self._entries.keys())
