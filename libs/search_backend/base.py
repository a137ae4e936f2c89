"""Base search backend interface.

Defines the abstract contract the search service depends on, independent
of the backing engine (Solr, OpenSearch, ...). A backend answers lexical
queries, vector (KNN) queries, and schema introspection requests for a
named collection.

All query methods are asynchronous to support concurrent sub-queries.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set

import numpy as np


@dataclass(frozen=True)
class FacetCount:
    """One bucket of a field facet."""
    value: str
    count: int


@dataclass(frozen=True)
class SpellCheckSuggestion:
    """A collated spelling correction that differs from the original query."""
    suggestion: str
    original_query: str


@dataclass(frozen=True)
class FacetRequest:
    """Facet parameters for a keyword query."""
    fields: List[str] = field(default_factory=list)
    query: Optional[str] = None


@dataclass
class QueryResult:
    """Documents and auxiliary data returned by one backend query.

    ``documents`` are plain field maps in backend rank order. The backend
    includes a ``score`` entry whenever the engine reports one.
    """
    documents: List[Dict[str, Any]] = field(default_factory=list)
    facet_counts: Dict[str, List[FacetCount]] = field(default_factory=dict)
    spellcheck_suggestion: Optional[SpellCheckSuggestion] = None


class SearchBackend(ABC):
    """Abstract base class for search backends.

    Implementations should return documents in rank order, never mutate
    caller-provided inputs, and wrap transport or engine failures in
    ``SearchBackendError`` subclasses.
    """

    @abstractmethod
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
        """Run a lexical query.

        ``filter`` is an opaque engine-native filter expression passed
        through unchanged.
        """
        pass

    @abstractmethod
    async def vector_query(
        self,
        collection: str,
        embedding: np.ndarray,
        top_k: int,
        filter: Optional[str] = None,
        fields: Optional[Sequence[str]] = None,
        rows: Optional[int] = None
    ) -> QueryResult:
        """Run a k-nearest-neighbor query against the vector field.

        ``rows`` defaults to ``top_k``.
        """
        pass

    @abstractmethod
    async def list_explicit_fields(self, collection: str) -> List[Dict[str, Any]]:
        """List explicitly declared fields.

        Returns dicts with ``name`` and ``type`` plus optional ``multiValued``,
        ``stored``, ``docValues`` and ``indexed`` flags.
        """
        pass

    @abstractmethod
    async def list_dynamic_field_patterns(self, collection: str) -> List[Dict[str, Any]]:
        """List wildcard field declarations (e.g. ``*_s``, ``metadata_*``).

        Same dict shape as ``list_explicit_fields`` with the pattern as ``name``.
        """
        pass

    @abstractmethod
    async def sample_field_names(self, collection: str, sample_size: int) -> Set[str]:
        """Union of field names present in up to ``sample_size`` documents."""
        pass

    @abstractmethod
    async def index_documents(
        self,
        collection: str,
        documents: Sequence[Dict[str, Any]],
        id_field: str = "id"
    ) -> None:
        """Add or replace documents and make them visible to queries.

        Each document is a flat field map holding ``id_field``; vectors are
        plain float lists. The write is all-or-nothing from the caller's
        point of view: any rejected document raises ``BackendQueryError``.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the backend is reachable."""
        pass

    async def close(self) -> None:
        """Release client resources."""
        return None


class SearchBackendError(Exception):
    """Base exception for search backend operations."""
    pass


class BackendConnectionError(SearchBackendError):
    """The backend could not be reached."""
    pass


class BackendQueryError(SearchBackendError):
    """A query was rejected or failed inside the backend."""
    pass


class SchemaIntrospectionError(SearchBackendError):
    """Schema metadata could not be retrieved."""
    pass
