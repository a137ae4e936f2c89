"""Tests for the Solr search backend."""

import json
from urllib.parse import parse_qs

import httpx
import numpy as np
import pytest

from libs.search_backend.base import (
    BackendConnectionError,
    BackendQueryError,
    FacetCount,
    FacetRequest,
    SchemaIntrospectionError,
)
from libs.search_backend.solr import SolrSearchBackend, build_knn_query, format_vector


class RecordingTransport:
    """Mock transport handler that records requests and replays canned responses."""

    def __init__(self, responses):
        self.responses = responses
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.responses[request.url.path]
        if isinstance(handler, Exception):
            raise handler
        return handler

    def form(self, index: int = -1):
        return parse_qs(self.requests[index].content.decode())


def make_backend(responses):
    transport = RecordingTransport(responses)
    client = httpx.AsyncClient(transport=httpx.MockTransport(transport))
    return SolrSearchBackend("http://solr:8983", client=client), transport


def select_response(docs, **extra):
    body = {"response": {"numFound": len(docs), "docs": docs}}
    body.update(extra)
    return httpx.Response(200, json=body)


def test_format_vector():
    assert format_vector([0.5, 1, -2.25]) == "[0.5, 1.0, -2.25]"
    assert format_vector(np.array([0.5, 0.25], dtype=np.float32)) == "[0.5, 0.25]"


def test_build_knn_query():
    assert build_knn_query("vector", 10, "[0.1, 0.2]") == "{!knn f=vector topK=10}[0.1, 0.2]"
    with pytest.raises(ValueError):
        build_knn_query("vector", 0, "[0.1]")
    with pytest.raises(ValueError):
        build_knn_query(" ", 5, "[0.1]")


def test_base_url_normalized():
    backend = SolrSearchBackend("http://solr:8983/solr")
    assert backend.base_url == "http://solr:8983/solr/"


@pytest.mark.asyncio
async def test_keyword_query_parameters():
    backend, transport = make_backend({
        "/solr/books/select": select_response(
            [{"id": "1", "title": ["Dune"], "score": 3.2}],
            facet_counts={"facet_fields": {"genre": ["sf", 3, "fantasy", 1]}},
            spellcheck={"collations": ["collation", "dune"]},
        )
    })

    result = await backend.keyword_query(
        "books",
        "dnue",
        filter="year:[1960 TO *]",
        fields=["id", "title"],
        rows=5,
        sort="year desc",
        facet=FacetRequest(fields=["genre"], query="year:[2000 TO *]"),
        spellcheck=True
    )

    form = transport.form()
    assert transport.requests[0].method == "POST"
    assert form["q"] == ["dnue"]
    assert form["defType"] == ["edismax"]
    assert form["qf"] == ["_text_"]
    assert form["fq"] == ["year:[1960 TO *]"]
    assert form["fl"] == ["id,title,score"]
    assert form["rows"] == ["5"]
    assert form["sort"] == ["year desc"]
    assert form["facet.field"] == ["genre"]
    assert form["facet.query"] == ["year:[2000 TO *]"]
    assert form["spellcheck.q"] == ["dnue"]

    assert result.documents == [{"id": "1", "title": ["Dune"], "score": 3.2}]
    assert result.facet_counts == {"genre": [FacetCount("sf", 3), FacetCount("fantasy", 1)]}
    assert result.spellcheck_suggestion.suggestion == "dune"
    assert result.spellcheck_suggestion.original_query == "dnue"


@pytest.mark.asyncio
async def test_wildcard_query_skips_edismax():
    backend, transport = make_backend({"/solr/books/select": select_response([])})

    await backend.keyword_query("books", "*:*")

    form = transport.form()
    assert "defType" not in form
    assert form["fl"] == ["*,score"]


@pytest.mark.asyncio
async def test_spellcheck_same_as_query_is_ignored():
    backend, _ = make_backend({
        "/solr/books/select": select_response(
            [], spellcheck={"collations": [{"collationQuery": "dune"}]}
        )
    })

    result = await backend.keyword_query("books", "dune", spellcheck=True)

    assert result.spellcheck_suggestion is None


@pytest.mark.asyncio
async def test_vector_query_uses_knn_parser():
    backend, transport = make_backend({
        "/solr/books/select": select_response([{"id": "1", "score": 0.93}])
    })

    result = await backend.vector_query("books", np.array([0.5, 0.25]), 20, filter="genre:sf")

    form = transport.form()
    assert form["q"] == ["{!knn f=vector topK=20}[0.5, 0.25]"]
    assert form["rows"] == ["20"]
    assert form["fq"] == ["genre:sf"]
    assert result.documents[0]["score"] == 0.93


@pytest.mark.asyncio
async def test_http_error_status_raises_query_error():
    backend, _ = make_backend({
        "/solr/books/select": httpx.Response(400, text="undefined field foo")
    })

    with pytest.raises(BackendQueryError):
        await backend.keyword_query("books", "foo:bar")


@pytest.mark.asyncio
async def test_transport_error_raises_connection_error():
    backend, _ = make_backend({
        "/solr/books/select": httpx.ConnectError("connection refused")
    })

    with pytest.raises(BackendConnectionError):
        await backend.vector_query("books", np.array([0.1]), 5)


@pytest.mark.asyncio
async def test_schema_introspection():
    backend, _ = make_backend({
        "/solr/books/schema/fields": httpx.Response(
            200, json={"fields": [{"name": "id", "type": "string"}]}
        ),
        "/solr/books/schema/dynamicfields": httpx.Response(
            200, json={"dynamicFields": [{"name": "*_i", "type": "pint"}]}
        ),
    })

    assert await backend.list_explicit_fields("books") == [{"name": "id", "type": "string"}]
    assert await backend.list_dynamic_field_patterns("books") == [{"name": "*_i", "type": "pint"}]


@pytest.mark.asyncio
async def test_schema_failure_raises_introspection_error():
    backend, _ = make_backend({
        "/solr/books/schema/fields": httpx.Response(404, text="not found")
    })

    with pytest.raises(SchemaIntrospectionError):
        await backend.list_explicit_fields("books")


@pytest.mark.asyncio
async def test_sample_field_names():
    backend, transport = make_backend({
        "/solr/books/select": select_response([
            {"id": "1", "title": "Dune"},
            {"id": "2", "metadata_genre": "sf"},
        ])
    })

    names = await backend.sample_field_names("books", 100)

    assert names == {"id", "title", "metadata_genre"}
    form = transport.form()
    assert form["q"] == ["*:*"]
    assert form["rows"] == ["100"]


@pytest.mark.asyncio
async def test_health_check():
    backend, _ = make_backend({
        "/solr/admin/info/system": httpx.Response(200, content=json.dumps({"lucene": {}}))
    })
    assert await backend.health_check() is True

    failing, _ = make_backend({
        "/solr/admin/info/system": httpx.ConnectError("refused")
    })
    assert await failing.health_check() is False


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [["oops"], "oops", {"response": ["oops"]}, {"response": {"docs": ["oops"]}}])
async def test_unexpected_json_shape_raises_query_error(body):
    backend, _ = make_backend({"/solr/books/select": httpx.Response(200, json=body)})

    with pytest.raises(BackendQueryError):
        await backend.keyword_query("books", "dune")


@pytest.mark.asyncio
async def test_non_json_body_raises_query_error():
    backend, _ = make_backend({"/solr/books/select": httpx.Response(200, text="<html>")})

    with pytest.raises(BackendQueryError):
        await backend.vector_query("books", np.array([0.1]), 5)


@pytest.mark.asyncio
async def test_decoding_error_raises_query_error():
    backend, _ = make_backend({
        "/solr/books/select": httpx.DecodingError("invalid gzip stream")
    })

    with pytest.raises(BackendQueryError):
        await backend.keyword_query("books", "dune")


@pytest.mark.asyncio
async def test_schema_list_payload_raises_introspection_error():
    backend, _ = make_backend({
        "/solr/books/schema/fields": httpx.Response(200, json=[{"name": "id"}])
    })

    with pytest.raises(SchemaIntrospectionError):
        await backend.list_explicit_fields("books")


@pytest.mark.asyncio
async def test_index_documents_posts_json_and_commits():
    backend, transport = make_backend({
        "/solr/books/update": httpx.Response(200, json={"responseHeader": {"status": 0}})
    })
    documents = [{"id": "1", "content": "Dune", "vector": [0.1, 0.2], "metadata_genre": "sf"}]

    await backend.index_documents("books", documents)

    request = transport.requests[0]
    assert request.method == "POST"
    assert request.url.params["commit"] == "true"
    assert json.loads(request.content) == documents


@pytest.mark.asyncio
async def test_index_documents_rejected_raises_query_error():
    backend, _ = make_backend({
        "/solr/books/update": httpx.Response(400, text="unknown field 'foo'")
    })

    with pytest.raises(BackendQueryError):
        await backend.index_documents("books", [{"id": "1", "foo": "bar"}])


@pytest.mark.asyncio
async def test_index_documents_unreachable_raises_connection_error():
    backend, _ = make_backend({"/solr/books/update": httpx.ConnectError("refused")})

    with pytest.raises(BackendConnectionError):
        await backend.index_documents("books", [{"id": "1"}])


@pytest.mark.asyncio
async def test_index_documents_skips_empty_batch():
    backend, transport = make_backend({})

    await backend.index_documents("books", [])

    assert transport.requests == []
