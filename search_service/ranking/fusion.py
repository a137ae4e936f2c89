"""Reciprocal Rank Fusion for hybrid search.

RRF combines keyword and vector result lists by rank rather than raw score,
so the two engines' incomparable scoring scales never have to be
normalized against each other::

    rrf_score(d) = sum(1 / (k + rank_i(d)))

where ``rank_i`` is the 1-indexed position of ``d`` in list ``i`` and
``k`` (default 60) flattens the influence of the very top ranks. A
document at rank 3 in the keyword list and rank 5 in the vector list scores
``1/63 + 1/65 ~= 0.0313``.
"""

from typing import Any, Dict, List, Optional, Sequence

import structlog

from ..errors import InvalidParameterError, MissingIdentifierError

logger = structlog.get_logger("search_service.fusion")

DEFAULT_K = 60

ID_FIELD = "id"
SCORE_FIELD = "score"
RRF_SCORE_FIELD = "rrf_score"
KEYWORD_SCORE_FIELD = "keyword_score"
VECTOR_SCORE_FIELD = "vector_score"
KEYWORD_RANK_FIELD = "keyword_rank"
VECTOR_RANK_FIELD = "vector_rank"


def extract_score(document: Dict[str, Any]) -> Optional[float]:
    """Return the document's numeric ``score`` or ``None`` when absent or non-numeric."""
    score = document.get(SCORE_FIELD)
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        return None
    return float(score)


class _MergedDocument:
    """Accumulates one document's fields and RRF contributions."""

    def __init__(self, doc_id: str, source: Dict[str, Any]):
        self.id = doc_id
        self.fields = dict(source)
        self.rrf_score = 0.0
        self.keyword_score: Optional[float] = None
        self.vector_score: Optional[float] = None
        self.keyword_rank: Optional[int] = None
        self.vector_rank: Optional[int] = None

    def add_keyword(self, contribution: float, rank: int, score: Optional[float]) -> None:
        self.rrf_score += contribution
        self.keyword_rank = rank
        self.keyword_score = score

    def add_vector(self, contribution: float, rank: int, score: Optional[float]) -> None:
        self.rrf_score += contribution
        self.vector_rank = rank
        self.vector_score = score

    def merge_vector_fields(self, vector_doc: Dict[str, Any]) -> None:
        # Vector values win on conflict; id is never overwritten and score
        # is replaced by the fused score
        for key, value in vector_doc.items():
            if key in (ID_FIELD, SCORE_FIELD):
                continue
            self.fields[key] = value

    def to_document(self) -> Dict[str, Any]:
        doc = dict(self.fields)
        doc[RRF_SCORE_FIELD] = self.rrf_score
        doc[SCORE_FIELD] = self.rrf_score

        if self.keyword_score is not None:
            doc[KEYWORD_SCORE_FIELD] = self.keyword_score
        if self.vector_score is not None:
            doc[VECTOR_SCORE_FIELD] = self.vector_score
        if self.keyword_rank is not None:
            doc[KEYWORD_RANK_FIELD] = self.keyword_rank
        if self.vector_rank is not None:
            doc[VECTOR_RANK_FIELD] = self.vector_rank
        return doc


class ReciprocalRankFusion:
    """Merges keyword and vector result lists with Reciprocal Rank Fusion.

    Instances are immutable after construction and hold no per-call state,
    so one merger can serve concurrent requests.

    Output documents carry the source fields plus:
    - ``rrf_score`` and ``score``: the fused score
    - ``keyword_score`` / ``vector_score``: the numeric source score, when present
    - ``keyword_rank`` / ``vector_rank``: 1-indexed source rank, when present
    """

    def __init__(self, k: int = DEFAULT_K):
        if isinstance(k, bool) or not isinstance(k, int) or k <= 0:
            raise InvalidParameterError(f"k parameter must be a positive integer, got: {k!r}")
        self.k = k

    def merge(
        self,
        keyword_results: Optional[Sequence[Dict[str, Any]]],
        vector_results: Optional[Sequence[Dict[str, Any]]],
    ) -> List[Dict[str, Any]]:
        """Fuse two ranked lists into one list sorted by ``rrf_score`` descending.

        ``None`` is treated as an empty list. Documents are deduplicated by
        ``id`` (compared as strings). Ties keep first-seen order, keyword
        documents first.

        Raises
        - ``MissingIdentifierError`` if any document lacks an ``id``
        """
        safe_keyword = keyword_results or []
        safe_vector = vector_results or []

        logger.debug(
            "Merging results with RRF",
            keyword_count=len(safe_keyword),
            vector_count=len(safe_vector),
            k=self.k
        )

        if not safe_keyword and not safe_vector:
            return []

        # dict preserves insertion order, which the stable sort below relies on
        merged: Dict[str, _MergedDocument] = {}

        for rank, doc in enumerate(safe_keyword, start=1):
            doc_id = self._extract_id(doc)
            entry = merged.get(doc_id)
            if entry is None:
                entry = merged[doc_id] = _MergedDocument(doc_id, doc)
            entry.add_keyword(1.0 / (self.k + rank), rank, extract_score(doc))

        for rank, doc in enumerate(safe_vector, start=1):
            doc_id = self._extract_id(doc)
            entry = merged.get(doc_id)
            if entry is None:
                entry = merged[doc_id] = _MergedDocument(doc_id, doc)
            else:
                entry.merge_vector_fields(doc)
            entry.add_vector(1.0 / (self.k + rank), rank, extract_score(doc))

        results = [entry.to_document() for entry in merged.values()]
        results.sort(key=lambda d: d[RRF_SCORE_FIELD], reverse=True)

        logger.debug("RRF merge completed", fused_count=len(results))
        return results

    @staticmethod
    def _extract_id(document: Dict[str, Any]) -> str:
        doc_id = document.get(ID_FIELD)
        if doc_id is None:
            raise MissingIdentifierError(
                f"Document missing required 'id' field: {sorted(document.keys())}"
            )
        return str(doc_id)
