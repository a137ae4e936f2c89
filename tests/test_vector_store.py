"""Tests for collection-bound vector stores."""

from unittest.mock import AsyncMock

import numpy as np
import pytest

from libs.search_backend.base import BackendQueryError, QueryResult, SearchBackend
from search_service.embeddings.client import EmbeddingError, EmbeddingProvider
from search_service.errors import InvalidParameterError
from search_service.retrievers.vector_store import (
    CollectionVectorStore,
    VectorStoreFactory,
    VectorStoreOptions,
)


@pytest.fixture
def backend():
    mock = AsyncMock(spec=SearchBackend)
    mock.vector_query.return_value = QueryResult(documents=[
        {
            "id": ["doc-1"],
            "content": ["Solar panel efficiency"],
            "metadata_source": "wiki",
            "vector": [0.1, 0.2],
            "score": 0.92,
        },
        {"id": "doc-2", "content": "Wind turbines", "score": 0.41},
        {"id": "doc-3", "content": "No score"},
    ])
    return mock


@pytest.fixture
def embedder():
    mock = AsyncMock(spec=EmbeddingProvider)
    mock.embed.return_value = np.array([0.5, 0.5], dtype=np.float32)
    return mock


@pytest.mark.asyncio
async def test_similarity_search_shapes_documents(backend, embedder):
    store = CollectionVectorStore(backend, "energy", embedder)

    documents = await store.similarity_search("solar", top_k=3)

    embedder.embed.assert_awaited_once_with("solar")
    args, kwargs = backend.vector_query.call_args
    assert args[0] == "energy"
    assert args[2] == 3
    assert kwargs["fields"] == ["id", "content", "metadata_*"]

    assert documents[0] == {
        "id": "doc-1",
        "content": "Solar panel efficiency",
        "source": "wiki",
        "score": 0.92,
    }
    assert [doc["id"] for doc in documents] == ["doc-1", "doc-2", "doc-3"]


@pytest.mark.asyncio
async def test_threshold_drops_low_scores(backend, embedder):
    store = CollectionVectorStore(backend, "energy", embedder)

    documents = await store.similarity_search("solar", top_k=3, similarity_threshold=0.5)

    # Hits without a numeric score are kept
    assert [doc["id"] for doc in documents] == ["doc-1", "doc-3"]


@pytest.mark.asyncio
async def test_negative_threshold_disables_filter(backend, embedder):
    store = CollectionVectorStore(backend, "energy", embedder)

    documents = await store.similarity_search("solar", top_k=3, similarity_threshold=-1.0)

    assert len(documents) == 3


@pytest.mark.asyncio
async def test_filter_passed_through(backend, embedder):
    store = CollectionVectorStore(backend, "energy", embedder)

    await store.similarity_search("solar", top_k=3, filter="source:wiki")

    assert backend.vector_query.call_args.kwargs["filter"] == "source:wiki"


@pytest.mark.asyncio
async def test_custom_field_layout(backend, embedder):
    backend.vector_query.return_value = QueryResult(documents=[
        {"doc_id": "a", "body": "text", "meta.lang": "en", "emb": [1.0]}
    ])
    options = VectorStoreOptions(
        id_field="doc_id", content_field="body", vector_field="emb", metadata_prefix="meta."
    )
    store = CollectionVectorStore(backend, "energy", embedder, options)

    documents = await store.similarity_search("solar", top_k=1)

    assert documents == [{"id": "a", "content": "text", "lang": "en"}]


@pytest.mark.asyncio
async def test_invalid_top_k(backend, embedder):
    store = CollectionVectorStore(backend, "energy", embedder)

    with pytest.raises(InvalidParameterError):
        await store.similarity_search("solar", top_k=0)
    embedder.embed.assert_not_awaited()


@pytest.mark.asyncio
async def test_errors_propagate(backend, embedder):
    store = CollectionVectorStore(backend, "energy", embedder)

    embedder.embed.side_effect = EmbeddingError("embedding service down")
    with pytest.raises(EmbeddingError):
        await store.similarity_search("solar", top_k=3)

    embedder.embed.side_effect = None
    backend.vector_query.side_effect = BackendQueryError("bad request")
    with pytest.raises(BackendQueryError):
        await store.similarity_search("solar", top_k=3)


@pytest.mark.parametrize("collection", [None, "", "  "])
def test_blank_collection_rejected(backend, embedder, collection):
    with pytest.raises(InvalidParameterError):
        CollectionVectorStore(backend, collection, embedder)


def test_factory_caches_per_collection(backend, embedder):
    factory = VectorStoreFactory(backend, embedder, capacity=2)

    first = factory.for_collection("energy")

    assert factory.for_collection("energy") is first
    assert factory.for_collection("climate") is not first
    assert first.collection == "energy"
    assert factory.cache.keys() == ["energy", "climate"]
