"""OpenSearch search backend implementation."""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

import numpy as np
import structlog
from opensearchpy import OpenSearch, exceptions

from .base import (
    BackendConnectionError,
    BackendQueryError,
    FacetCount,
    FacetRequest,
    QueryResult,
    SchemaIntrospectionError,
    SearchBackend,
    SpellCheckSuggestion,
)

logger = structlog.get_logger("search_backend.opensearch")

WILDCARD_QUERY = "*:*"

# Field types that carry doc values by default in OpenSearch mappings
_DOC_VALUE_TYPES = {
    "keyword", "long", "integer", "short", "byte", "double", "float",
    "half_float", "scaled_float", "date", "boolean", "ip",
}


class OpenSearchSearchBackend(SearchBackend):
    """OpenSearch-based search backend.

    Each collection maps to one index. The synchronous ``opensearch-py``
    client runs in worker threads so keyword and vector sub-queries can
    overlap.
    """

    def __init__(
        self,
        hosts: List[str],
        vector_field: str = "vector",
        text_field: str = "content",
        username: Optional[str] = None,
        password: Optional[str] = None,
        verify_certs: bool = False,
        ssl_assert_hostname: bool = False,
        ssl_show_warn: bool = False,
        timeout: float = 60.0,
        client: Optional[OpenSearch] = None,
    ):
        """Initialize OpenSearch backend.

        Args:
            hosts: List of OpenSearch host URLs
            vector_field: ``knn_vector`` field used for vector queries
            text_field: Field used for spelling suggestions
            username: OpenSearch username
            password: OpenSearch password
            verify_certs: Whether to verify SSL certificates
            ssl_assert_hostname: Whether to assert hostname
            ssl_show_warn: Whether to show SSL warnings
            timeout: Request timeout in seconds
            client: Optional preconfigured client
        """
        self.hosts = hosts
        self.vector_field = vector_field
        self.text_field = text_field

        self.client = client or OpenSearch(
            hosts=hosts,
            http_auth=(username, password) if username and password else None,
            verify_certs=verify_certs,
            ssl_assert_hostname=ssl_assert_hostname,
            ssl_show_warn=ssl_show_warn,
            use_ssl=True if hosts[0].startswith('https') else False,
            timeout=timeout,
        )

    async def keyword_query(
        self,
        collection: str,
        text: str,
        filter: Optional[str] = None,
        fields: Optional[Sequence[str]] = None,
        rows: int = 10,
        sort: Optional[str] = None,
        facet: Optional[FacetRequest] = None,
        spellcheck: bool = False
    ) -> QueryResult:
        """Run a lexical query across all text fields."""
        if text == WILDCARD_QUERY:
            text_clause: Dict[str, Any] = {"match_all": {}}
        else:
            text_clause = {"simple_query_string": {"query": text}}

        body = self._build_body(text_clause, filter, fields, rows)

        if sort:
            body["sort"] = self._translate_sort(sort)

        if facet is not None and facet.fields:
            body["aggs"] = {
                field_name: {"terms": {"field": field_name}}
                for field_name in facet.fields
            }

        if spellcheck and text != WILDCARD_QUERY:
            body["suggest"] = {
                "spellcheck": {"text": text, "term": {"field": self.text_field}}
            }

        response = await self._call(self.client.search, index=collection, body=body)

        result = QueryResult(
            documents=self._extract_documents(response),
            facet_counts=self._extract_facets(response),
            spellcheck_suggestion=self._extract_spellcheck(response, text) if spellcheck else None,
        )

        logger.debug(
            "OpenSearch keyword query completed",
            collection=collection,
            results_count=len(result.documents)
        )
        return result

    async def vector_query(
        self,
        collection: str,
        embedding: np.ndarray,
        top_k: int,
        filter: Optional[str] = None,
        fields: Optional[Sequence[str]] = None,
        rows: Optional[int] = None
    ) -> QueryResult:
        """Search for similar vectors using kNN."""
        knn_clause = {
            "knn": {
                self.vector_field: {
                    "vector": np.asarray(embedding, dtype=float).tolist(),
                    "k": top_k
                }
            }
        }
        body = self._build_body(knn_clause, filter, fields, rows or top_k)

        response = await self._call(self.client.search, index=collection, body=body)
        documents = self._extract_documents(response)

        logger.debug(
            "OpenSearch similarity search completed",
            collection=collection,
            top_k=top_k,
            results_count=len(documents)
        )
        return QueryResult(documents=documents)

    async def list_explicit_fields(self, collection: str) -> List[Dict[str, Any]]:
        """Flatten the index mapping into field declarations."""
        mappings = await self._mappings(collection)
        declared: List[Dict[str, Any]] = []
        self._flatten_properties(mappings.get("properties", {}), "", declared)
        return declared

    async def list_dynamic_field_patterns(self, collection: str) -> List[Dict[str, Any]]:
        """Expose ``dynamic_templates`` match patterns as wildcard declarations."""
        mappings = await self._mappings(collection)
        patterns = []
        for template in mappings.get("dynamic_templates", []):
            for spec in template.values():
                pattern = spec.get("match") or spec.get("path_match")
                if not pattern:
                    continue
                mapping = spec.get("mapping", {})
                patterns.append(self._describe(pattern, mapping))
        return patterns

    async def sample_field_names(self, collection: str, sample_size: int) -> Set[str]:
        """Collect the field names used by a sample of documents."""
        body = {
            "size": sample_size,
            "query": {"match_all": {}},
            "_source": {"excludes": [self.vector_field]},
        }
        response = await self._call(self.client.search, index=collection, body=body)

        used_fields: Set[str] = set()
        for hit in response.get("hits", {}).get("hits", []):
            used_fields.add("id")
            used_fields.update(hit.get("_source", {}).keys())
        return used_fields

    async def index_documents(
        self,
        collection: str,
        documents: Sequence[Dict[str, Any]],
        id_field: str = "id"
    ) -> None:
        """Write documents with the bulk API and refresh the index."""
        if not documents:
            return

        actions: List[Dict[str, Any]] = []
        for doc in documents:
            actions.append({"index": {"_index": collection, "_id": str(doc[id_field])}})
            actions.append(dict(doc))

        response = await self._call(self.client.bulk, body=actions, refresh=True)

        if response.get("errors"):
            failed = [
                item["index"] for item in response.get("items", [])
                if "index" in item and item["index"].get("error")
            ]
            first = failed[0] if failed else {}
            raise BackendQueryError(
                f"OpenSearch rejected {len(failed)} of {len(documents)} documents "
                f"in '{collection}': {first.get('error')}"
            )

        logger.debug("OpenSearch documents indexed", collection=collection, count=len(documents))

    async def health_check(self) -> bool:
        """Ping the cluster."""
        try:
            return bool(await asyncio.to_thread(self.client.ping))
        except exceptions.OpenSearchException as e:
            logger.error("OpenSearch health check failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the OpenSearch client connection."""
        await asyncio.to_thread(self.client.close)
        logger.info("OpenSearch client connection closed")

    def _build_body(
        self,
        clause: Dict[str, Any],
        filter: Optional[str],
        fields: Optional[Sequence[str]],
        size: int
    ) -> Dict[str, Any]:
        query: Dict[str, Any] = {"bool": {"must": [clause]}}
        if filter:
            query["bool"]["filter"] = [{"query_string": {"query": filter}}]

        body: Dict[str, Any] = {"size": size, "query": query}
        if fields:
            body["_source"] = [f for f in fields if f not in ("id", "score")]
        else:
            body["_source"] = {"excludes": [self.vector_field]}
        return body

    async def _call(self, func: Callable[..., Dict[str, Any]], **kwargs: Any) -> Dict[str, Any]:
        try:
            return await asyncio.to_thread(func, **kwargs)
        except exceptions.ConnectionError as e:
            raise BackendConnectionError(f"OpenSearch unreachable: {e}") from e
        except exceptions.OpenSearchException as e:
            raise BackendQueryError(f"OpenSearch query failed: {e}") from e

    async def _mappings(self, collection: str) -> Dict[str, Any]:
        try:
            response = await asyncio.to_thread(self.client.indices.get_mapping, index=collection)
        except exceptions.OpenSearchException as e:
            raise SchemaIntrospectionError(f"Failed to read mapping for '{collection}': {e}") from e

        # Aliases resolve to the concrete index name, so take the first entry
        for index_mapping in response.values():
            return index_mapping.get("mappings", {})
        return {}

    def _flatten_properties(
        self,
        properties: Dict[str, Any],
        prefix: str,
        declared: List[Dict[str, Any]]
    ) -> None:
        for name, mapping in properties.items():
            full_name = f"{prefix}{name}"
            if "properties" in mapping:
                self._flatten_properties(mapping["properties"], f"{full_name}.", declared)
                continue
            declared.append(self._describe(full_name, mapping))

    @staticmethod
    def _describe(name: str, mapping: Dict[str, Any]) -> Dict[str, Any]:
        field_type = mapping.get("type", "object")
        return {
            "name": name,
            "type": field_type,
            "multiValued": False,
            "stored": True,
            "docValues": mapping.get("doc_values", field_type in _DOC_VALUE_TYPES),
            "indexed": mapping.get("index", True),
        }

    @staticmethod
    def _translate_sort(sort: str) -> List[Dict[str, Any]]:
        """Convert ``"year desc, title asc"`` into OpenSearch sort clauses."""
        clauses = []
        for part in sort.split(","):
            tokens = part.split()
            if not tokens:
                continue
            order = tokens[1].lower() if len(tokens) > 1 else "asc"
            clauses.append({tokens[0]: {"order": order}})
        return clauses

    @staticmethod
    def _extract_documents(response: Dict[str, Any]) -> List[Dict[str, Any]]:
        documents = []
        for hit in response.get("hits", {}).get("hits", []):
            doc = dict(hit.get("_source", {}))
            doc.setdefault("id", hit.get("_id"))
            if hit.get("_score") is not None:
                doc["score"] = float(hit["_score"])
            documents.append(doc)
        return documents

    @staticmethod
    def _extract_facets(response: Dict[str, Any]) -> Dict[str, List[FacetCount]]:
        facets: Dict[str, List[FacetCount]] = {}
        for field_name, agg in response.get("aggregations", {}).items():
            facets[field_name] = [
                FacetCount(value=str(bucket["key"]), count=int(bucket["doc_count"]))
                for bucket in agg.get("buckets", [])
            ]
        return facets

    @staticmethod
    def _extract_spellcheck(response: Dict[str, Any], original_query: str) -> Optional[SpellCheckSuggestion]:
        entries = response.get("suggest", {}).get("spellcheck", [])
        if not entries:
            return None

        corrected = []
        for entry in entries:
            options = entry.get("options", [])
            corrected.append(options[0]["text"] if options else entry.get("text", ""))

        collation = " ".join(token for token in corrected if token)
        if collation and collation != original_query:
            return SpellCheckSuggestion(suggestion=collation, original_query=original_query)
        return None
