"""Apache Solr search backend over the HTTP JSON API."""

from typing import Any, Dict, List, Optional, Sequence, Set

import httpx
import numpy as np
import structlog

from libs.common.config import normalize_solr_url
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

logger = structlog.get_logger("search_backend.solr")

WILDCARD_QUERY = "*:*"
SCORE_FIELD = "score"


def format_vector(embedding: Sequence[float]) -> str:
    """Render a vector the way Solr's KNN parser expects: ``[0.1, 0.2, ...]``."""
    return "[" + ", ".join(str(float(x)) for x in embedding) + "]"


def build_knn_query(vector_field: str, top_k: int, vector: str) -> str:
    """Build a ``{!knn f=<field> topK=<n>}[...]`` query string."""
    if not vector_field or not vector_field.strip():
        raise ValueError("Vector field name cannot be empty")
    if top_k <= 0:
        raise ValueError("topK must be greater than 0")
    return f"{{!knn f={vector_field} topK={top_k}}}{vector}"


class SolrSearchBackend(SearchBackend):
    """Solr-based search backend.

    Queries are sent as form-encoded POSTs to ``/select`` so that large
    query vectors never hit URI length limits.
    """

    def __init__(
        self,
        base_url: str,
        vector_field: str = "vector",
        text_field: str = "_text_",
        connect_timeout: float = 10.0,
        read_timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the Solr backend.

        Args:
            base_url: Solr base URL; normalized to end in ``/solr/``
            vector_field: Dense vector field used for KNN queries
            text_field: Catch-all text field used as edismax ``qf``
            connect_timeout: Connection timeout in seconds
            read_timeout: Read timeout in seconds
            client: Optional preconfigured ``httpx.AsyncClient``
        """
        self.base_url = normalize_solr_url(base_url)
        self.vector_field = vector_field
        self.text_field = text_field
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(read_timeout, connect=connect_timeout)
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
        """Run an edismax query over the catch-all text field."""
        params: Dict[str, Any] = {"q": text}
        if text != WILDCARD_QUERY:
            params["defType"] = "edismax"
            params["qf"] = self.text_field

        self._configure_common(params, filter, fields, rows)

        if sort:
            params["sort"] = sort

        if facet is not None and facet.fields:
            params["facet"] = "true"
            params["facet.field"] = list(facet.fields)
            if facet.query:
                params["facet.query"] = facet.query

        if spellcheck:
            params["spellcheck"] = "true"
            params["spellcheck.q"] = text
            params["spellcheck.collate"] = "true"

        payload = await self._select(collection, params)
        result = QueryResult(
            documents=self._extract_documents(payload),
            facet_counts=self._extract_facets(payload),
            spellcheck_suggestion=self._extract_spellcheck(payload, text) if spellcheck else None,
        )

        logger.debug(
            "Solr keyword query completed",
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
        """Run a KNN query against the configured vector field."""
        params: Dict[str, Any] = {
            "q": build_knn_query(self.vector_field, top_k, format_vector(embedding)),
        }
        self._configure_common(params, filter, fields, rows or top_k)

        payload = await self._select(collection, params)
        documents = self._extract_documents(payload)

        logger.debug(
            "Solr vector query completed",
            collection=collection,
            top_k=top_k,
            results_count=len(documents)
        )
        return QueryResult(documents=documents)

    async def list_explicit_fields(self, collection: str) -> List[Dict[str, Any]]:
        """Fetch explicit field declarations from the Schema API."""
        payload = await self._schema(collection, "fields")
        return list(payload.get("fields", []))

    async def list_dynamic_field_patterns(self, collection: str) -> List[Dict[str, Any]]:
        """Fetch dynamic field declarations from the Schema API."""
        payload = await self._schema(collection, "dynamicfields")
        return list(payload.get("dynamicFields", []))

    async def sample_field_names(self, collection: str, sample_size: int) -> Set[str]:
        """Collect the field names used by a sample of documents."""
        params = {"q": WILDCARD_QUERY, "rows": sample_size, "fl": "*", "wt": "json"}
        payload = await self._select(collection, params)

        used_fields: Set[str] = set()
        for doc in self._extract_documents(payload):
            used_fields.update(doc.keys())
        return used_fields

    async def index_documents(
        self,
        collection: str,
        documents: Sequence[Dict[str, Any]],
        id_field: str = "id"
    ) -> None:
        """Send documents to the JSON update handler and commit."""
        if not documents:
            return

        url = f"{self.base_url}{collection}/update"
        try:
            response = await self.client.post(
                url, params={"commit": "true", "wt": "json"}, json=list(documents)
            )
        except httpx.TransportError as e:
            raise BackendConnectionError(f"Solr unreachable at {url}: {e}") from e
        except httpx.HTTPError as e:
            raise BackendQueryError(f"Solr update request to {url} failed: {e}") from e

        if response.status_code != 200:
            raise BackendQueryError(
                f"Solr update on '{collection}' failed with status {response.status_code}: "
                f"{response.text[:200]}"
            )

        logger.debug("Solr documents indexed", collection=collection, count=len(documents))

    async def health_check(self) -> bool:
        """Check that Solr answers the system info endpoint."""
        try:
            response = await self.client.get(
                f"{self.base_url}admin/info/system", params={"wt": "json"}
            )
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.error("Solr health check failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the underlying HTTP client if this backend created it."""
        if self._owns_client:
            await self.client.aclose()
            logger.info("Solr client connection closed")

    def _configure_common(
        self,
        params: Dict[str, Any],
        filter: Optional[str],
        fields: Optional[Sequence[str]],
        rows: int
    ) -> None:
        if filter:
            params["fq"] = filter
        if fields:
            params["fl"] = ",".join(fields) + "," + SCORE_FIELD
        else:
            params["fl"] = "*," + SCORE_FIELD
        params["rows"] = rows
        params["wt"] = "json"

    async def _select(self, collection: str, params: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{collection}/select"
        try:
            response = await self.client.post(url, data=params)
        except httpx.TransportError as e:
            raise BackendConnectionError(f"Solr unreachable at {url}: {e}") from e
        except httpx.HTTPError as e:
            raise BackendQueryError(f"Solr request to {url} failed: {e}") from e

        if response.status_code != 200:
            raise BackendQueryError(
                f"Solr query on '{collection}' failed with status {response.status_code}: "
                f"{response.text[:200]}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise BackendQueryError(f"Solr returned a non-JSON body for '{collection}'") from e

        if not isinstance(payload, dict) or not isinstance(payload.get("response", {}), dict):
            raise BackendQueryError(f"Solr returned an unexpected response shape for '{collection}'")
        return payload

    async def _schema(self, collection: str, resource: str) -> Dict[str, Any]:
        url = f"{self.base_url}{collection}/schema/{resource}"
        try:
            response = await self.client.get(url, params={"wt": "json"})
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SchemaIntrospectionError(
                f"Failed to read schema {resource} for '{collection}': {e}"
            ) from e

        if not isinstance(payload, dict):
            raise SchemaIntrospectionError(f"Unexpected schema {resource} payload for '{collection}'")
        return payload

    @staticmethod
    def _extract_documents(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
        docs = payload.get("response", {}).get("docs", [])
        if not isinstance(docs, list) or not all(isinstance(doc, dict) for doc in docs):
            raise BackendQueryError("Solr returned documents that are not field maps")
        return [dict(doc) for doc in docs]

    @staticmethod
    def _extract_facets(payload: Dict[str, Any]) -> Dict[str, List[FacetCount]]:
        facet_fields = payload.get("facet_counts", {}).get("facet_fields", {})
        facets: Dict[str, List[FacetCount]] = {}
        for field_name, flat in facet_fields.items():
            # Solr's default json.nl=flat layout: [value1, count1, value2, count2, ...]
            facets[field_name] = [
                FacetCount(value=str(flat[i]), count=int(flat[i + 1]))
                for i in range(0, len(flat) - 1, 2)
            ]
        return facets

    @staticmethod
    def _extract_spellcheck(payload: Dict[str, Any], original_query: str) -> Optional[SpellCheckSuggestion]:
        collations = payload.get("spellcheck", {}).get("collations") or []
        collation: Optional[str] = None
        for i, entry in enumerate(collations):
            if entry == "collation" and i + 1 < len(collations):
                candidate = collations[i + 1]
                collation = candidate.get("collationQuery") if isinstance(candidate, dict) else candidate
                break
            if isinstance(entry, dict) and "collationQuery" in entry:
                collation = entry["collationQuery"]
                break

        if collation and collation != original_query:
            return SpellCheckSuggestion(suggestion=collation, original_query=original_query)
        return None
