"""Embed-and-write indexing for vector-enabled collections.

A document is stored as a flat field map::

    {id_field: ..., content_field: ..., vector_field: [...],
     "<metadata_prefix><key>": value, ...}

which is the layout ``CollectionVectorStore`` reads back. Per-document
failures (blank content, embedding errors) are counted and reported in the
``IndexResponse``; a failed backend write fails every prepared document.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import structlog

from libs.common.logging import log_performance
from libs.common.metrics import MetricsCollector
from libs.search_backend.base import SearchBackend, SearchBackendError
from ..embeddings.client import EmbeddingError, EmbeddingProvider
from ..errors import InvalidParameterError
from ..retrievers.vector_store import VectorStoreOptions

logger = structlog.get_logger("search_service.indexer")

# Metadata keys that would collide with the stored fields
RESERVED_METADATA_KEYS = ("embedding",)


@dataclass
class IndexRequest:
    """One document to index; ``id`` is generated when omitted."""
    content: str
    id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class IndexResponse:
    """Counts and identifiers of one indexing call."""
    indexed: int
    failed: int
    document_ids: List[str] = field(default_factory=list)
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "indexed": self.indexed,
            "failed": self.failed,
            "documentIds": self.document_ids,
            "message": self.message,
        }


class DocumentIndexer:
    """Embeds document content and writes documents to the search backend.

    Responsibilities
    - Assign identifiers to documents that have none
    - Embed content once per document, concurrently within a batch
    - Prefix metadata keys and write the batch in one backend call
    - Record indexed/failed counts
    """

    def __init__(
        self,
        backend: SearchBackend,
        embedding_provider: EmbeddingProvider,
        options: Optional[VectorStoreOptions] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.backend = backend
        self.embedding_provider = embedding_provider
        self.options = options or VectorStoreOptions()
        self.metrics = metrics

    async def index_document(self, collection: str, request: IndexRequest) -> IndexResponse:
        """Index a single document."""
        self._validate_collection(collection)
        doc_id = request.id or str(uuid.uuid4())

        try:
            embedding = await self.embedding_provider.embed(request.content)
            await self.backend.index_documents(
                collection,
                [self.to_backend_document(doc_id, request, embedding)],
                id_field=self.options.id_field
            )
        except (InvalidParameterError, EmbeddingError, SearchBackendError) as e:
            logger.error(
                "Failed to index document",
                collection=collection,
                document_id=doc_id,
                error=str(e)
            )
            return self._finish(IndexResponse(
                indexed=0,
                failed=1,
                message=f"Failed to index document: {e}"
            ))

        logger.info("Document indexed", collection=collection, document_id=doc_id)
        return self._finish(IndexResponse(
            indexed=1,
            failed=0,
            document_ids=[doc_id],
            message="Successfully indexed document"
        ))

    async def index_documents(
        self,
        collection: str,
        requests: Sequence[IndexRequest]
    ) -> IndexResponse:
        """Index a batch of documents.

        Documents whose content cannot be embedded are skipped and counted
        as failed; the rest are written together.
        """
        self._validate_collection(collection)
        start_time = time.time()

        doc_ids = [request.id or str(uuid.uuid4()) for request in requests]
        embeddings = await asyncio.gather(
            *(self.embedding_provider.embed(request.content) for request in requests),
            return_exceptions=True
        )

        prepared: List[Dict[str, Any]] = []
        indexed_ids: List[str] = []
        failed = 0
        for doc_id, request, embedding in zip(doc_ids, requests, embeddings):
            if isinstance(embedding, (InvalidParameterError, EmbeddingError)):
                failed += 1
                logger.warning(
                    "Failed to prepare document for indexing",
                    collection=collection,
                    document_id=doc_id,
                    error=str(embedding)
                )
                continue
            if isinstance(embedding, BaseException):
                raise embedding
            prepared.append(self.to_backend_document(doc_id, request, embedding))
            indexed_ids.append(doc_id)

        if prepared:
            try:
                await self.backend.index_documents(
                    collection, prepared, id_field=self.options.id_field
                )
            except SearchBackendError as e:
                logger.error(
                    "Batch indexing failed",
                    collection=collection,
                    documents=len(requests),
                    error=str(e)
                )
                return self._finish(IndexResponse(
                    indexed=0,
                    failed=len(requests),
                    message=f"Batch indexing failed: {e}"
                ))

        log_performance(
            "batch_index",
            (time.time() - start_time) * 1000,
            collection=collection,
            documents=len(requests)
        )
        logger.info(
            "Batch indexing completed",
            collection=collection,
            indexed=len(indexed_ids),
            failed=failed
        )
        return self._finish(IndexResponse(
            indexed=len(indexed_ids),
            failed=failed,
            document_ids=indexed_ids,
            message=f"Successfully indexed {len(indexed_ids)} documents, {failed} failed"
        ))

    def to_backend_document(
        self,
        doc_id: str,
        request: IndexRequest,
        embedding: np.ndarray
    ) -> Dict[str, Any]:
        """Build the stored field map for one document."""
        opts = self.options
        document: Dict[str, Any] = {
            opts.id_field: doc_id,
            opts.content_field: request.content,
            opts.vector_field: np.asarray(embedding, dtype=float).tolist(),
        }

        stored = {opts.id_field, opts.content_field, opts.vector_field}
        for key, value in (request.metadata or {}).items():
            if key in stored or key in RESERVED_METADATA_KEYS:
                continue
            document[opts.metadata_prefix + key] = value
        return document

    def _finish(self, response: IndexResponse) -> IndexResponse:
        if self.metrics:
            self.metrics.record_indexing(response.indexed, response.failed)
        return response

    @staticmethod
    def _validate_collection(collection: str) -> None:
        if collection is None or not collection.strip():
            raise InvalidParameterError("Collection name cannot be null or blank")
