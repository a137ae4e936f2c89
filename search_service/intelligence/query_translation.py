"""Translation of free-text queries into backend query plans.

A ``QueryTranslator`` turns the user's text into a ``QueryPlan``: the
backend query string plus filters, sort, field list and facets. A
model-backed translator would use the collection's field descriptors to
build field-aware filters; ``PassthroughQueryTranslator`` uses the text
as-is.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from libs.search_backend.base import FacetRequest
from ..schema.field_resolver import FieldDescriptor


@dataclass
class QueryPlan:
    """Structured backend query derived from free text."""
    q: str
    fq: List[str] = field(default_factory=list)
    sort: Optional[str] = None
    fl: Optional[str] = None
    facet_fields: List[str] = field(default_factory=list)
    facet_query: Optional[str] = None

    @property
    def field_list(self) -> Optional[List[str]]:
        if not self.fl or not self.fl.strip():
            return None
        return [f.strip() for f in self.fl.split(",") if f.strip()]

    @property
    def facet(self) -> Optional[FacetRequest]:
        if not self.facet_fields and not self.facet_query:
            return None
        return FacetRequest(fields=list(self.facet_fields), query=self.facet_query)


class QueryTranslator(ABC):
    """Turns a free-text query into a ``QueryPlan``."""

    # Whether ``translate`` needs the collection's field descriptors
    requires_schema: bool = True

    @abstractmethod
    async def translate(self, query: str, fields: Sequence[FieldDescriptor]) -> QueryPlan:
        pass


class PassthroughQueryTranslator(QueryTranslator):
    """Uses the free text unchanged as the backend query."""

    requires_schema = False

    async def translate(self, query: str, fields: Sequence[FieldDescriptor]) -> QueryPlan:
        return QueryPlan(q=query)


def build_filter_expression(filter_queries: Optional[Sequence[str]]) -> Optional[str]:
    """Join filter clauses with ``AND``; ``None`` when there are none."""
    clauses = [fq.strip() for fq in filter_queries or [] if fq and fq.strip()]
    if not clauses:
        return None
    return " AND ".join(clauses)
