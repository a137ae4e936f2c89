"""Vector-search handle bound to a single collection.

``CollectionVectorStore`` embeds a free-text query, runs a KNN query
against one collection, and returns documents in the public shape: the
metadata prefix is stripped from field names and the raw vector is never
returned. ``VectorStoreFactory`` keeps one handle per collection in a
bounded LRU cache.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog

from libs.common.metrics import MetricsCollector
from libs.search_backend.base import SearchBackend
from ..embeddings.client import EmbeddingProvider
from ..errors import InvalidParameterError
from ..ranking.fusion import extract_score
from .cache_manager import DEFAULT_CAPACITY, CollectionResourceCache

logger = structlog.get_logger("search_service.vector_store")


@dataclass(frozen=True)
class VectorStoreOptions:
    """Field layout of a vector-enabled collection."""
    id_field: str = "id"
    content_field: str = "content"
    vector_field: str = "vector"
    metadata_prefix: str = "metadata_"


def _first_value(value: Any) -> Any:
    if isinstance(value, list):
        return value[0] if value else None
    return value


class CollectionVectorStore:
    """Similarity search over one collection."""

    def __init__(
        self,
        backend: SearchBackend,
        collection: str,
        embedding_provider: EmbeddingProvider,
        options: Optional[VectorStoreOptions] = None
    ):
        if collection is None or not collection.strip():
            raise InvalidParameterError("Collection name cannot be null or blank")

        self.backend = backend
        self.collection = collection
        self.embedding_provider = embedding_provider
        self.options = options or VectorStoreOptions()

    async def similarity_search(
        self,
        query: str,
        top_k: int,
        similarity_threshold: float = 0.0,
        filter: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Return up to ``top_k`` documents most similar to ``query``.

        Hits whose numeric score is below ``similarity_threshold`` are
        dropped; a negative threshold disables the check. Backend and
        embedding errors propagate.
        """
        if top_k <= 0:
            raise InvalidParameterError(f"top_k must be positive, got: {top_k}")

        embedding = await self.embedding_provider.embed(query)

        opts = self.options
        result = await self.backend.vector_query(
            self.collection,
            embedding,
            top_k,
            filter=filter,
            fields=[opts.id_field, opts.content_field, opts.metadata_prefix + "*"]
        )

        documents = []
        for raw in result.documents:
            score = extract_score(raw)
            if score is not None and similarity_threshold >= 0 and score < similarity_threshold:
                continue
            documents.append(self._to_document(raw))

        logger.debug(
            "Similarity search completed",
            collection=self.collection,
            top_k=top_k,
            threshold=similarity_threshold,
            returned=len(documents),
            retrieved=len(result.documents)
        )
        return documents

    def _to_document(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        opts = self.options
        doc: Dict[str, Any] = {}

        for key, value in raw.items():
            if key == opts.vector_field:
                continue
            if key == opts.id_field:
                doc["id"] = _first_value(value)
            elif key == opts.content_field:
                doc["content"] = _first_value(value)
            elif opts.metadata_prefix and key.startswith(opts.metadata_prefix):
                doc[key[len(opts.metadata_prefix):]] = value
            else:
                doc[key] = value
        return doc


class VectorStoreFactory:
    """Hands out one cached ``CollectionVectorStore`` per collection."""

    def __init__(
        self,
        backend: SearchBackend,
        embedding_provider: EmbeddingProvider,
        options: Optional[VectorStoreOptions] = None,
        capacity: int = DEFAULT_CAPACITY,
        metrics: Optional[MetricsCollector] = None
    ):
        self.backend = backend
        self.embedding_provider = embedding_provider
        self.options = options or VectorStoreOptions()
        self.cache: CollectionResourceCache[CollectionVectorStore] = CollectionResourceCache(
            self._create,
            capacity=capacity,
            cache_type="vector_store",
            metrics=metrics
        )

    def for_collection(self, collection: str) -> CollectionVectorStore:
        return self.cache.for_collection(collection)

    def _create(self, collection: str) -> CollectionVectorStore:
        return CollectionVectorStore(
            self.backend, collection, self.embedding_provider, self.options
        )
