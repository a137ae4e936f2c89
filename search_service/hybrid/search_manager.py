"""Search manager for keyword, semantic and hybrid search.

Hybrid search runs a keyword and a vector sub-query concurrently and
merges them with Reciprocal Rank Fusion. When a signal is unavailable the
manager degrades through a fixed chain of stages::

    HYBRID -> KEYWORD_ONLY -> VECTOR_ONLY -> EMPTY

A stage that fails or yields no documents (after ``min_score`` filtering)
hands over to the next one. Each attempt produces a tagged ``StageResult``,
so an outage and a genuine no-match stay distinguishable in logs and
metrics even though callers see the same empty response for both.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import numpy as np
import structlog

from libs.common.config import SearchConfig
from libs.common.logging import log_performance
from libs.common.metrics import MetricsCollector
from libs.search_backend.base import (
    FacetCount,
    SearchBackend,
    SearchBackendError,
    SpellCheckSuggestion,
)
from ..embeddings.client import EmbeddingError, EmbeddingProvider
from ..errors import InvalidParameterError
from ..intelligence.query_translation import (
    PassthroughQueryTranslator,
    QueryPlan,
    QueryTranslator,
    build_filter_expression,
)
from ..ranking.fusion import (
    KEYWORD_SCORE_FIELD,
    VECTOR_SCORE_FIELD,
    ReciprocalRankFusion,
    extract_score,
)
from ..retrievers.vector_store import VectorStoreFactory, VectorStoreOptions
from ..schema.field_resolver import FieldSchemaResolver

logger = structlog.get_logger("search_service.search_manager")

# Failures that move the fallback chain to its next stage
RECOVERABLE_ERRORS = (SearchBackendError, EmbeddingError)


class SearchStage(Enum):
    """Fallback stages, in order of preference."""
    HYBRID = "hybrid"
    KEYWORD_ONLY = "keyword_only"
    VECTOR_ONLY = "vector_only"
    EMPTY = "empty"


@dataclass
class StageResult:
    """Outcome of one fallback stage: documents, or the error that stopped it."""
    stage: SearchStage
    documents: List[Dict[str, Any]] = field(default_factory=list)
    spellcheck_suggestion: Optional[SpellCheckSuggestion] = None
    error: Optional[Exception] = None

    @property
    def satisfied(self) -> bool:
        return self.error is None and bool(self.documents)


@dataclass
class FallbackOutcome:
    """Result of the hybrid fallback chain.

    ``stage`` is the stage that produced ``documents``, or ``EMPTY``.
    ``failures`` maps each stage that raised to its error message.
    """
    stage: SearchStage
    documents: List[Dict[str, Any]] = field(default_factory=list)
    spellcheck_suggestion: Optional[SpellCheckSuggestion] = None
    failures: Dict[SearchStage, str] = field(default_factory=dict)

    @property
    def degraded(self) -> bool:
        return self.stage != SearchStage.HYBRID

    @property
    def all_failed(self) -> bool:
        """True when every attempted stage raised rather than matching nothing."""
        return self.stage == SearchStage.EMPTY and len(self.failures) == 3


@dataclass
class SearchResponse:
    """Documents plus optional facet counts and spelling suggestion."""
    documents: List[Dict[str, Any]] = field(default_factory=list)
    facet_counts: Dict[str, List[FacetCount]] = field(default_factory=dict)
    spellcheck_suggestion: Optional[SpellCheckSuggestion] = None

    def to_dict(self) -> Dict[str, Any]:
        suggestion = None
        if self.spellcheck_suggestion is not None:
            suggestion = {
                "suggestion": self.spellcheck_suggestion.suggestion,
                "originalQuery": self.spellcheck_suggestion.original_query,
            }
        return {
            "documents": self.documents,
            "facetCounts": {
                name: [{"value": c.value, "count": c.count} for c in counts]
                for name, counts in self.facet_counts.items()
            },
            "spellCheckSuggestion": suggestion,
        }


def flatten_document(document: Dict[str, Any]) -> Dict[str, Any]:
    """Copy ``document`` keeping only the first value of multi-valued fields.

    Empty lists drop the field entirely.
    """
    flat: Dict[str, Any] = {}
    for name, value in document.items():
        if isinstance(value, list):
            if value:
                flat[name] = value[0]
        else:
            flat[name] = value
    return flat


def passes_min_score(score: Optional[float], min_score: Optional[float]) -> bool:
    """Hits without a numeric score always pass."""
    if min_score is None or score is None:
        return True
    return score >= min_score


def fused_relevance(document: Dict[str, Any]) -> Optional[float]:
    """Score a fused hit is thresholded on: its vector score, else its keyword score."""
    for name in (VECTOR_SCORE_FIELD, KEYWORD_SCORE_FIELD):
        value = document.get(name)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    return None


class SearchManager:
    """Coordinates query translation, retrieval and fusion.

    Responsibilities
    - Plain keyword search with facets and spellcheck
    - Semantic search through cached per-collection vector stores
    - Hybrid search with RRF and the keyword/vector fallback chain
    """

    def __init__(
        self,
        config: SearchConfig,
        backend: SearchBackend,
        embedding_provider: EmbeddingProvider,
        translator: Optional[QueryTranslator] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        """Construct a search manager.

        Parameters
        - config: ``SearchConfig`` with fusion, cache and field settings
        - backend: Search backend answering keyword and vector queries
        - embedding_provider: Embeds query text for vector queries
        - translator: Query translator; passthrough when omitted
        - metrics: Optional metrics collector
        """
        self.config = config
        self.backend = backend
        self.embedding_provider = embedding_provider
        self.translator = translator or PassthroughQueryTranslator()
        self.metrics = metrics

        self.fusion = ReciprocalRankFusion(k=config.search_rrf_k)
        self.schema_resolver = FieldSchemaResolver(
            backend,
            sample_size=config.search_schema_sample_size,
            internal_prefix=config.search_internal_field_prefix
        )
        self.vector_stores = VectorStoreFactory(
            backend,
            embedding_provider,
            options=VectorStoreOptions(
                id_field=config.search_id_field,
                content_field=config.search_content_field,
                vector_field=config.search_vector_field,
                metadata_prefix=config.search_metadata_prefix
            ),
            capacity=config.search_cache_capacity,
            metrics=metrics
        )

    async def search(self, collection: str, query: str) -> SearchResponse:
        """Plain keyword search driven by the translated query plan.

        Backend errors propagate; there is no fallback on this path.
        """
        self._validate_inputs(collection, query)
        start_time = time.time()

        plan = await self._translate(collection, query)
        result = await self.backend.keyword_query(
            collection,
            plan.q,
            filter=build_filter_expression(plan.fq),
            fields=plan.field_list,
            sort=plan.sort,
            facet=plan.facet,
            spellcheck=True
        )

        self._record_search("keyword", start_time, collection)
        logger.info(
            "Keyword search completed",
            collection=collection,
            results_count=len(result.documents)
        )
        return SearchResponse(
            documents=[dict(doc) for doc in result.documents],
            facet_counts=result.facet_counts,
            spellcheck_suggestion=result.spellcheck_suggestion
        )

    async def semantic_search(
        self,
        collection: str,
        query: str,
        k: Optional[int] = None,
        min_score: Optional[float] = None,
        fields: Optional[Sequence[str]] = None
    ) -> SearchResponse:
        """Vector-only search through the collection's cached vector store.

        ``fields`` restricts the returned keys; ``id`` is always kept.
        """
        self._validate_inputs(collection, query)
        start_time = time.time()

        top_k = k if k is not None and k > 0 else self.config.search_semantic_default_top_k
        threshold = min_score if min_score is not None else 0.0

        store = self.vector_stores.for_collection(collection)
        documents = await store.similarity_search(query, top_k, similarity_threshold=threshold)

        if fields:
            wanted = set(fields)
            documents = [
                {name: value for name, value in doc.items() if name == "id" or name in wanted}
                for doc in documents
            ]

        self._record_search("semantic", start_time, collection)
        logger.info(
            "Semantic search completed",
            collection=collection,
            top_k=top_k,
            results_count=len(documents)
        )
        return SearchResponse(documents=documents)

    async def hybrid_search(
        self,
        collection: str,
        query: str,
        k: Optional[int] = None,
        min_score: Optional[float] = None,
        fields: Optional[Sequence[str]] = None,
        filters: Optional[Sequence[str]] = None
    ) -> SearchResponse:
        """Hybrid RRF search with graceful degradation.

        Caller filters and translated plan filters are combined into one
        expression. Backend failures never surface here; when every stage
        fails or matches nothing the response is empty.
        """
        self._validate_inputs(collection, query)
        start_time = time.time()

        top_k = k if k is not None and k > 0 else self.config.search_hybrid_default_top_k
        plan = await self._translate(collection, query)
        filter_expression = build_filter_expression(list(filters or []) + list(plan.fq))

        outcome = await self.execute_hybrid(
            collection,
            plan.q,
            top_k,
            filter=filter_expression,
            fields=fields,
            min_score=min_score
        )

        self._record_search("hybrid", start_time, collection)
        return SearchResponse(
            documents=outcome.documents,
            spellcheck_suggestion=outcome.spellcheck_suggestion
        )

    async def execute_hybrid(
        self,
        collection: str,
        query: str,
        top_k: int,
        filter: Optional[str] = None,
        fields: Optional[Sequence[str]] = None,
        min_score: Optional[float] = None
    ) -> FallbackOutcome:
        """Run the fallback chain and report which stage answered."""
        if top_k <= 0:
            raise InvalidParameterError(f"top_k must be positive, got: {top_k}")

        request_fields = self._with_id(fields)
        # The query embedding is computed at most once and shared by the stages
        embedding_holder: Dict[str, np.ndarray] = {}

        async def query_embedding() -> np.ndarray:
            if "vector" not in embedding_holder:
                embedding_holder["vector"] = await self.embedding_provider.embed(query)
            return embedding_holder["vector"]

        stages: List[Callable[[], Awaitable[StageResult]]] = [
            lambda: self._hybrid_stage(
                collection, query, query_embedding, top_k, filter, request_fields, min_score
            ),
            lambda: self._keyword_stage(
                collection, query, top_k, filter, request_fields, min_score
            ),
            lambda: self._vector_stage(
                collection, query_embedding, top_k, filter, request_fields, min_score
            ),
        ]

        failures: Dict[SearchStage, str] = {}
        for stage_name, run_stage in zip(
            (SearchStage.HYBRID, SearchStage.KEYWORD_ONLY, SearchStage.VECTOR_ONLY), stages
        ):
            result = await self._attempt(stage_name, run_stage)

            if result.error is not None:
                failures[stage_name] = str(result.error)
                if self.metrics:
                    self.metrics.record_backend_error(stage_name.value)
                logger.warning(
                    "Search stage failed, falling back",
                    stage=stage_name.value,
                    collection=collection,
                    error=str(result.error)
                )
                continue

            if not result.satisfied:
                logger.warning(
                    "Search stage returned no results, falling back",
                    stage=stage_name.value,
                    collection=collection
                )
                continue

            return self._finish(
                collection,
                FallbackOutcome(
                    stage=stage_name,
                    documents=result.documents,
                    spellcheck_suggestion=result.spellcheck_suggestion,
                    failures=failures
                )
            )

        return self._finish(collection, FallbackOutcome(stage=SearchStage.EMPTY, failures=failures))

    async def health_check(self) -> bool:
        """Check that the search backend is reachable."""
        return await self.backend.health_check()

    def cache_stats(self) -> Dict[str, Any]:
        """Size, capacity and cached collection names of the vector store cache."""
        cache = self.vector_stores.cache
        return {
            "size": cache.size(),
            "capacity": cache.capacity,
            "collections": cache.keys(),
        }

    async def close(self) -> None:
        """Release backend and embedding client resources."""
        await self.embedding_provider.close()
        await self.backend.close()
        logger.info("Search manager closed")

    async def _attempt(
        self,
        stage: SearchStage,
        run_stage: Callable[[], Awaitable[StageResult]]
    ) -> StageResult:
        try:
            return await run_stage()
        except RECOVERABLE_ERRORS as e:
            return StageResult(stage=stage, error=e)

    async def _hybrid_stage(
        self,
        collection: str,
        query: str,
        query_embedding: Callable[[], Awaitable[np.ndarray]],
        top_k: int,
        filter: Optional[str],
        fields: Optional[List[str]],
        min_score: Optional[float]
    ) -> StageResult:
        embedding = await query_embedding()
        # Over-fetch so fusion still has top_k candidates after deduplication
        fetch_size = top_k * 2

        keyword_result, vector_result = await asyncio.gather(
            self.backend.keyword_query(
                collection, query, filter=filter, fields=fields, rows=fetch_size, spellcheck=True
            ),
            self.backend.vector_query(
                collection, embedding, fetch_size, filter=filter, fields=fields
            ),
            return_exceptions=True
        )

        # Fusing a single signal is not supported: either failure fails the stage
        for outcome in (keyword_result, vector_result):
            if isinstance(outcome, BaseException):
                raise outcome

        fused = self.fusion.merge(
            [flatten_document(d) for d in keyword_result.documents],
            [flatten_document(d) for d in vector_result.documents]
        )
        documents = [d for d in fused if passes_min_score(fused_relevance(d), min_score)]

        logger.debug(
            "Hybrid stage fused results",
            collection=collection,
            keyword_count=len(keyword_result.documents),
            vector_count=len(vector_result.documents),
            fused_count=len(fused),
            kept=len(documents)
        )
        return StageResult(
            stage=SearchStage.HYBRID,
            documents=documents[:top_k],
            spellcheck_suggestion=keyword_result.spellcheck_suggestion
        )

    async def _keyword_stage(
        self,
        collection: str,
        query: str,
        top_k: int,
        filter: Optional[str],
        fields: Optional[List[str]],
        min_score: Optional[float]
    ) -> StageResult:
        result = await self.backend.keyword_query(
            collection, query, filter=filter, fields=fields, rows=top_k
        )
        return StageResult(
            stage=SearchStage.KEYWORD_ONLY,
            documents=self._threshold(result.documents, min_score, top_k)
        )

    async def _vector_stage(
        self,
        collection: str,
        query_embedding: Callable[[], Awaitable[np.ndarray]],
        top_k: int,
        filter: Optional[str],
        fields: Optional[List[str]],
        min_score: Optional[float]
    ) -> StageResult:
        embedding = await query_embedding()
        result = await self.backend.vector_query(
            collection, embedding, top_k, filter=filter, fields=fields
        )
        return StageResult(
            stage=SearchStage.VECTOR_ONLY,
            documents=self._threshold(result.documents, min_score, top_k)
        )

    @staticmethod
    def _threshold(
        documents: List[Dict[str, Any]],
        min_score: Optional[float],
        top_k: int
    ) -> List[Dict[str, Any]]:
        kept = [
            flatten_document(doc) for doc in documents
            if passes_min_score(extract_score(doc), min_score)
        ]
        return kept[:top_k]

    def _finish(self, collection: str, outcome: FallbackOutcome) -> FallbackOutcome:
        if self.metrics:
            self.metrics.record_fallback_outcome(outcome.stage.value)

        failed_stages = [stage.value for stage in outcome.failures]
        if outcome.all_failed:
            logger.error(
                "All search strategies failed",
                collection=collection,
                failures={stage.value: error for stage, error in outcome.failures.items()}
            )
        elif outcome.stage == SearchStage.EMPTY:
            logger.info(
                "No search strategy found matching documents",
                collection=collection,
                failed_stages=failed_stages
            )
        else:
            logger.info(
                "Hybrid search completed",
                collection=collection,
                stage=outcome.stage.value,
                degraded=outcome.degraded,
                failed_stages=failed_stages,
                results_count=len(outcome.documents)
            )
        return outcome

    async def _translate(self, collection: str, query: str) -> QueryPlan:
        fields = []
        if self.translator.requires_schema:
            fields = await self.schema_resolver.describe_used_fields(collection)
        plan = await self.translator.translate(query, fields)
        logger.debug("Query translated", collection=collection, plan=plan)
        return plan

    def _with_id(self, fields: Optional[Sequence[str]]) -> Optional[List[str]]:
        # Fusion needs the identifier even when the caller narrows the field list
        if not fields:
            return None
        requested = list(fields)
        if self.config.search_id_field not in requested:
            requested.insert(0, self.config.search_id_field)
        return requested

    def _record_search(self, mode: str, start_time: float, collection: str) -> None:
        duration = time.time() - start_time
        if self.metrics:
            self.metrics.record_search(mode, duration)
        log_performance(f"{mode}_search", duration * 1000, collection=collection)

    @staticmethod
    def _validate_inputs(collection: str, query: str) -> None:
        if collection is None or not collection.strip():
            raise InvalidParameterError("Collection name cannot be null or blank")
        if query is None or not query.strip():
            raise InvalidParameterError("Query cannot be null or blank")
