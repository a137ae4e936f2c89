"""Resolve the fields a collection actually uses against its schema.

The resolver samples documents to learn which field names are in use,
then describes each one from the schema: an explicit declaration when one
exists, otherwise the most specific dynamic pattern (``metadata_*``,
``*_txt``...). The result feeds query translation, which needs to know
field names and types but not the full declared schema.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set

import structlog

from libs.search_backend.base import SearchBackend, SearchBackendError

logger = structlog.get_logger("search_service.schema")

DEFAULT_SAMPLE_SIZE = 100
UNKNOWN_TYPE = "unknown"
WILDCARD = "*"


@dataclass(frozen=True)
class FieldDescriptor:
    """One resolved field and its schema attributes."""
    name: str
    type: str
    multi_valued: bool = False
    stored: bool = True
    has_doc_values: bool = False
    indexed: bool = True

    @classmethod
    def from_declaration(cls, name: str, declaration: Dict[str, Any]) -> "FieldDescriptor":
        """Build a descriptor; ``stored``/``indexed`` default to true, the rest to false."""
        return cls(
            name=name,
            type=str(declaration.get("type") or UNKNOWN_TYPE),
            multi_valued=declaration.get("multiValued") is True,
            stored=declaration.get("stored") is not False,
            has_doc_values=declaration.get("docValues") is True,
            indexed=declaration.get("indexed") is not False,
        )

    @classmethod
    def unknown(cls, name: str) -> "FieldDescriptor":
        return cls(name=name, type=UNKNOWN_TYPE)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "multiValued": self.multi_valued,
            "stored": self.stored,
            "docValues": self.has_doc_values,
            "indexed": self.indexed,
        }


class DynamicFieldMatcher:
    """Ranks dynamic field patterns by how specifically they match a name.

    A pattern carries one wildcard, either leading (``*_s``) or trailing
    (``attr_*``). Its specificity is the length of the fixed part. A
    pattern without a wildcard only matches its exact name and outranks
    every wildcard pattern.
    """

    def __init__(self, declarations: Iterable[Dict[str, Any]]):
        self._declarations = [d for d in declarations if d.get("name")]

    @staticmethod
    def specificity(field_name: str, pattern: str) -> Optional[float]:
        """Return the match score, or ``None`` if ``pattern`` does not match."""
        if pattern == field_name:
            return float("inf")
        if pattern.endswith(WILDCARD):
            prefix = pattern[:-1]
            return len(prefix) if field_name.startswith(prefix) else None
        if pattern.startswith(WILDCARD):
            suffix = pattern[1:]
            return len(suffix) if field_name.endswith(suffix) else None
        return None

    def best_match(self, field_name: str) -> Optional[Dict[str, Any]]:
        """Most specific matching declaration; the first one declared wins ties."""
        best: Optional[Dict[str, Any]] = None
        best_score = -1.0
        for declaration in self._declarations:
            score = self.specificity(field_name, declaration["name"])
            if score is not None and score > best_score:
                best, best_score = declaration, score
        return best


class FieldSchemaResolver:
    """Describes the fields in use in a collection.

    Stateless apart from its configuration; safe to share between requests.
    """

    def __init__(
        self,
        backend: SearchBackend,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
        internal_prefix: str = "_"
    ):
        if sample_size <= 0:
            raise ValueError("sample_size must be positive")

        self.backend = backend
        self.sample_size = sample_size
        self.internal_prefix = internal_prefix

    async def describe_used_fields(self, collection: str) -> List[FieldDescriptor]:
        """Return descriptors for every used, non-internal field.

        Used fields without an explicit or dynamic declaration are skipped.
        If the schema cannot be read, every used field is reported with
        type ``unknown`` instead of failing the call.
        """
        used_fields = sorted(self._public(await self._used_fields(collection)))

        try:
            explicit = await self.backend.list_explicit_fields(collection)
            dynamic = await self.backend.list_dynamic_field_patterns(collection)
        except SearchBackendError as e:
            logger.error(
                "Error fetching field schema, falling back to untyped fields",
                collection=collection,
                error=str(e)
            )
            return [FieldDescriptor.unknown(name) for name in used_fields]

        explicit_by_name = {d["name"]: d for d in explicit if d.get("name")}
        matcher = DynamicFieldMatcher(dynamic)

        descriptors = []
        for name in used_fields:
            declaration = explicit_by_name.get(name) or matcher.best_match(name)
            if declaration is None:
                continue
            descriptors.append(FieldDescriptor.from_declaration(name, declaration))

        logger.debug(
            "Resolved used fields with schema",
            collection=collection,
            used=len(used_fields),
            resolved=len(descriptors)
        )
        return descriptors

    async def _used_fields(self, collection: str) -> Set[str]:
        try:
            return await self.backend.sample_field_names(collection, self.sample_size)
        except SearchBackendError as e:
            logger.error("Error analyzing fields", collection=collection, error=str(e))
            return set()

    def _public(self, names: Iterable[str]) -> Set[str]:
        return {
            name for name in names
            if name and not (self.internal_prefix and name.startswith(self.internal_prefix))
        }
