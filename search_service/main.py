"""Search service main application."""

import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from libs.common.config import SearchConfig
from libs.common.logging import configure_logging
from libs.common.metrics import get_metrics_collector
from libs.search_backend.factory import create_search_backend
from .adapters.circuit_breaker import CircuitBreaker
from .api.routes import router as api_router
from .embeddings.client import HttpEmbeddingProvider
from .hybrid.search_manager import SearchManager
from .indexing.indexer import DocumentIndexer

logger = structlog.get_logger("search_service")

SERVICE_NAME = "search-service"
API_PREFIX = "/api/v1"


def build_search_manager(config: SearchConfig, metrics_collector=None) -> SearchManager:
    """Wire the backend, embedding client and search manager from configuration."""
    backend = create_search_backend(config)
    embedding_provider = HttpEmbeddingProvider(
        service_url=config.search_embedding_service_url,
        model=config.search_embedding_model,
        retry_attempts=config.search_embedding_retry_attempts,
        retry_base_delay=config.search_embedding_retry_base_delay,
        retry_max_delay=config.search_embedding_retry_max_delay,
        breaker=CircuitBreaker(
            name="embedding_service",
            failure_threshold=config.search_embedding_breaker_threshold,
            recovery_timeout=config.search_embedding_breaker_recovery
        ),
        timeout=config.search_read_timeout
    )
    return SearchManager(config, backend, embedding_provider, metrics=metrics_collector)


def build_document_indexer(search_manager: SearchManager, metrics_collector=None) -> DocumentIndexer:
    """Indexer sharing the search manager's backend, embedding client and field layout."""
    return DocumentIndexer(
        search_manager.backend,
        search_manager.embedding_provider,
        options=search_manager.vector_stores.options,
        metrics=metrics_collector
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    config = SearchConfig()
    configure_logging(SERVICE_NAME, config.search_log_level, config.search_log_format)

    logger.info("Starting search service", backend=config.search_backend)

    app.state.metrics_collector = get_metrics_collector(SERVICE_NAME)
    app.state.search_manager = build_search_manager(config, app.state.metrics_collector)
    app.state.document_indexer = build_document_indexer(
        app.state.search_manager, app.state.metrics_collector
    )

    logger.info("Search service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down search service")
    if hasattr(app.state, "search_manager"):
        await app.state.search_manager.close()
    logger.info("Search service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Search Service",
    description="Hybrid keyword and vector search with reciprocal rank fusion",
    version="0.1.0",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router, prefix=API_PREFIX)


def endpoint_label(request: Request) -> str:
    """Route template for metric labels, so collection names never become label values.

    Depending on the FastAPI release, the matched route of an included router
    carries either the full path or the path relative to the router, so the
    API prefix is restored when it is missing.
    """
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    if template is None:
        return "unmatched"
    if request.url.path.startswith(API_PREFIX + "/") and not template.startswith(API_PREFIX + "/"):
        return API_PREFIX + template
    return template


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Time each request and record HTTP metrics."""
    start_time = time.time()

    try:
        response = await call_next(request)
        status_code = response.status_code
    except Exception as e:
        logger.error("Unhandled request error", path=request.url.path, error=str(e))
        status_code = 500
        response = JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "detail": str(e)}
        )

    duration = time.time() - start_time
    response.headers["X-Process-Time"] = str(duration)

    if hasattr(app.state, "metrics_collector"):
        app.state.metrics_collector.record_http_request(
            method=request.method,
            endpoint=endpoint_label(request),
            status=status_code,
            duration=duration
        )

    return response


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    if not hasattr(app.state, "search_manager"):
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "service": SERVICE_NAME}
        )

    if await app.state.search_manager.health_check():
        return {"status": "healthy", "service": SERVICE_NAME}
    return JSONResponse(
        status_code=503,
        content={"status": "unhealthy", "service": SERVICE_NAME}
    )


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    if hasattr(app.state, "metrics_collector"):
        metrics_data = app.state.metrics_collector.get_metrics()
        return Response(content=metrics_data, media_type="text/plain")
    return Response(content="# No metrics available\n", media_type="text/plain")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": SERVICE_NAME,
        "version": "0.1.0",
        "status": "running",
        "endpoints": {
            "health": "/health",
            "metrics": "/metrics",
            "search": "/api/v1/search/{collection}",
            "semantic": "/api/v1/search/{collection}/semantic",
            "hybrid": "/api/v1/search/{collection}/hybrid",
            "index": "/api/v1/index/{collection}",
            "batch_index": "/api/v1/index/{collection}/batch",
            "cache": "/api/v1/admin/cache"
        }
    }


if __name__ == "__main__":
    config = SearchConfig()
    uvicorn.run(
        "search_service.main:app",
        host="0.0.0.0",
        port=config.search_port,
        log_level="info"
    )
