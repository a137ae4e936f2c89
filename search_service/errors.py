"""Exceptions raised by the search service core.

Backend failures live in ``libs.search_backend.base``; they are recovered
inside the hybrid fallback chain and never reach callers of
``SearchManager.hybrid_search``.
"""


class SearchServiceError(Exception):
    """Base exception for search service operations."""
    pass


class InvalidParameterError(SearchServiceError, ValueError):
    """A request or construction parameter is out of range or blank."""
    pass


class MissingIdentifierError(SearchServiceError, ValueError):
    """A document reached rank fusion without an ``id`` field."""
    pass


class CacheCreationError(SearchServiceError, RuntimeError):
    """A per-collection handle could not be constructed."""
    pass
