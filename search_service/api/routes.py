"""API routes for search service."""

from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
import structlog

from libs.common.logging import search_log_context
from libs.search_backend.base import SearchBackendError
from ..embeddings.client import EmbeddingError
from ..errors import CacheCreationError, InvalidParameterError, MissingIdentifierError
from ..hybrid.search_manager import SearchManager
from ..indexing.indexer import DocumentIndexer, IndexRequest

logger = structlog.get_logger("search_service.api")

router = APIRouter()


class IndexDocumentRequest(BaseModel):
    """Request model for indexing one document."""
    id: Optional[str] = Field(None, description="Document ID; generated when omitted")
    content: str = Field(..., description="Text to embed and store")
    metadata: Optional[Dict[str, Any]] = Field(None, description="Stored as metadata_-prefixed fields")

    def to_index_request(self) -> IndexRequest:
        return IndexRequest(content=self.content, id=self.id, metadata=dict(self.metadata or {}))


class BatchIndexRequest(BaseModel):
    """Request model for batch indexing."""
    documents: List[IndexDocumentRequest] = Field(..., description="Documents to index")


def get_search_manager(request: Request) -> SearchManager:
    """Get search manager from application state."""
    return request.app.state.search_manager


def get_document_indexer(request: Request) -> DocumentIndexer:
    """Get document indexer from application state."""
    return request.app.state.document_indexer


def parse_fields(fields: Optional[str]) -> Optional[List[str]]:
    """Split a comma-separated field list; ``None`` when empty."""
    if fields is None or not fields.strip():
        return None
    return [name.strip() for name in fields.split(",") if name.strip()]


def to_http_error(error: Exception, operation: str, collection: str) -> HTTPException:
    """Map service errors onto HTTP status codes."""
    if isinstance(error, InvalidParameterError):
        return HTTPException(status_code=400, detail=str(error))

    logger.error(f"{operation} failed", collection=collection, error=str(error))
    if isinstance(error, CacheCreationError):
        return HTTPException(status_code=503, detail=f"{operation} failed: {error}")
    return HTTPException(status_code=502, detail=f"{operation} failed: {error}")


@router.get("/search/{collection}")
async def search(
    collection: str,
    query: str = Query(..., description="Free-text query"),
    search_manager: SearchManager = Depends(get_search_manager)
):
    """Keyword search with facets and spellcheck."""
    try:
        with search_log_context(collection, "keyword"):
            response = await search_manager.search(collection, query)
    except (InvalidParameterError, SearchBackendError) as e:
        raise to_http_error(e, "Search", collection)
    return response.to_dict()


@router.get("/search/{collection}/semantic")
async def semantic_search(
    collection: str,
    query: str = Query(..., description="Free-text query"),
    k: Optional[int] = Query(None, description="Number of results (default 50)"),
    min_score: Optional[float] = Query(None, alias="minScore", description="Minimum similarity score"),
    fields: Optional[str] = Query(None, description="Comma-separated fields to return"),
    search_manager: SearchManager = Depends(get_search_manager)
):
    """Vector similarity search."""
    try:
        with search_log_context(collection, "semantic"):
            response = await search_manager.semantic_search(
                collection,
                query,
                k=k,
                min_score=min_score,
                fields=parse_fields(fields)
            )
    except (
        InvalidParameterError,
        CacheCreationError,
        SearchBackendError,
        EmbeddingError,
    ) as e:
        raise to_http_error(e, "Semantic search", collection)
    return response.to_dict()


@router.get("/search/{collection}/hybrid")
async def hybrid_search(
    collection: str,
    query: str = Query(..., description="Free-text query"),
    k: Optional[int] = Query(None, description="Number of results (default 100)"),
    min_score: Optional[float] = Query(None, alias="minScore", description="Minimum relevance score"),
    fields: Optional[str] = Query(None, description="Comma-separated fields to return"),
    filter: Optional[List[str]] = Query(None, description="Backend-native filter expressions"),
    search_manager: SearchManager = Depends(get_search_manager)
):
    """Hybrid keyword + vector search fused with RRF."""
    try:
        with search_log_context(collection, "hybrid"):
            response = await search_manager.hybrid_search(
                collection,
                query,
                k=k,
                min_score=min_score,
                fields=parse_fields(fields),
                filters=filter
            )
    except (InvalidParameterError, MissingIdentifierError) as e:
        raise to_http_error(e, "Hybrid search", collection)
    return response.to_dict()


@router.get("/admin/cache")
async def cache_stats(search_manager: SearchManager = Depends(get_search_manager)):
    """Vector store cache statistics."""
    return search_manager.cache_stats()


@router.delete("/admin/cache/{collection}")
async def evict_collection(
    collection: str,
    search_manager: SearchManager = Depends(get_search_manager)
):
    """Evict one collection's cached vector store."""
    evicted = search_manager.vector_stores.cache.evict(collection) is not None
    logger.info("Cache eviction requested", collection=collection, evicted=evicted)
    return {"collection": collection, "evicted": evicted}


@router.delete("/admin/cache")
async def clear_cache(search_manager: SearchManager = Depends(get_search_manager)):
    """Drop every cached vector store."""
    search_manager.vector_stores.cache.clear()
    return {"status": "success", "message": "Cache cleared"}


@router.post("/index/{collection}")
async def index_document(
    collection: str,
    request: IndexDocumentRequest,
    indexer: DocumentIndexer = Depends(get_document_indexer)
):
    """Embed and index a single document."""
    try:
        with search_log_context(collection, "index"):
            response = await indexer.index_document(collection, request.to_index_request())
    except InvalidParameterError as e:
        raise to_http_error(e, "Indexing", collection)
    return response.to_dict()


@router.post("/index/{collection}/batch")
async def index_documents(
    collection: str,
    request: BatchIndexRequest,
    indexer: DocumentIndexer = Depends(get_document_indexer)
):
    """Embed and index a batch of documents."""
    try:
        with search_log_context(collection, "index", batch_size=len(request.documents)):
            response = await indexer.index_documents(
                collection,
                [document.to_index_request() for document in request.documents]
            )
    except InvalidParameterError as e:
        raise to_http_error(e, "Batch indexing", collection)
    return response.to_dict()
