"""Query embedding client.

``HttpEmbeddingProvider`` calls the embedding service's ``/api/v1/embed``
endpoint. Calls are wrapped in a circuit breaker and retried with
exponential backoff; an open breaker aborts the retry loop immediately.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import httpx
import numpy as np
import structlog

from ..adapters.circuit_breaker import CircuitBreaker, CircuitBreakerError
from ..errors import InvalidParameterError, SearchServiceError

logger = structlog.get_logger("search_service.embeddings")


class EmbeddingError(SearchServiceError):
    """The embedding service did not return a usable vector."""
    pass


class EmbeddingProvider(ABC):
    """Produces a fixed-length vector for a piece of free text."""

    @abstractmethod
    async def embed(self, text: str) -> np.ndarray:
        """Embed ``text``; raises ``EmbeddingError`` when no vector is available."""
        pass

    async def close(self) -> None:
        """Release client resources."""
        return None


class HttpEmbeddingProvider(EmbeddingProvider):
    """Embedding provider backed by the embedding service HTTP API."""

    def __init__(
        self,
        service_url: str,
        model: str = "default",
        retry_attempts: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 10.0,
        breaker: Optional[CircuitBreaker] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """Initialize the provider.

        Args:
            service_url: Base URL of the embedding service
            model: Model name sent with each request
            retry_attempts: Total attempts per ``embed`` call
            retry_base_delay: First backoff delay in seconds
            retry_max_delay: Upper bound for a single backoff delay
            breaker: Circuit breaker; a default one is created when omitted
            timeout: HTTP timeout in seconds
            client: Optional preconfigured ``httpx.AsyncClient``
            sleep: Awaitable used between retries (injectable for tests)
        """
        if retry_attempts <= 0:
            raise InvalidParameterError("retry_attempts must be positive")

        self.service_url = service_url.rstrip("/")
        self.model = model
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.breaker = breaker or CircuitBreaker(name="embedding_service")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._sleep = sleep

    async def embed(self, text: str) -> np.ndarray:
        if text is None or not text.strip():
            raise InvalidParameterError("Text to embed cannot be null or blank")

        try:
            return await self._call_with_retry(
                lambda: self.breaker.call(self._request_embedding, text),
                operation_name="embedding_service_request"
            )
        except EmbeddingError:
            raise
        except (CircuitBreakerError, httpx.HTTPError) as e:
            raise EmbeddingError(f"Embedding service call failed: {e}") from e

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _request_embedding(self, text: str) -> np.ndarray:
        """POST to the embedding service to obtain one query vector."""
        response = await self.client.post(
            f"{self.service_url}/api/v1/embed",
            json={
                "items": [{"text": text}],
                "model": self.model
            }
        )

        if response.status_code != 200:
            raise EmbeddingError(f"Embedding service returned status {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise EmbeddingError("Embedding service returned a non-JSON body") from e

        if not isinstance(body, dict):
            raise EmbeddingError("Embedding service returned an unexpected response shape")

        vectors = body.get("vectors") or []
        if not isinstance(vectors, list) or not vectors or not vectors[0]:
            raise EmbeddingError("Embedding service returned no vector")

        try:
            vector = np.asarray(vectors[0], dtype=np.float32)
        except (ValueError, TypeError) as e:
            raise EmbeddingError(f"Embedding service returned a non-numeric vector: {e}") from e

        if vector.ndim != 1:
            raise EmbeddingError(f"Embedding service returned a vector of shape {vector.shape}")
        return vector

    async def _call_with_retry(
        self,
        func: Callable[[], Awaitable[Any]],
        operation_name: str
    ) -> Any:
        """Execute a coroutine-returning callable with retry and backoff."""
        for attempt in range(1, self.retry_attempts + 1):
            try:
                return await func()
            except CircuitBreakerError as cb_error:
                logger.error(
                    "Circuit breaker open, aborting retries",
                    operation=operation_name,
                    error=str(cb_error)
                )
                raise
            except (EmbeddingError, httpx.HTTPError) as exc:
                if attempt == self.retry_attempts:
                    logger.error(
                        "Operation failed after retries",
                        operation=operation_name,
                        attempts=attempt,
                        error=str(exc)
                    )
                    raise

                delay = min(self.retry_base_delay * (2 ** (attempt - 1)), self.retry_max_delay)
                logger.warning(
                    "Operation failed, retrying",
                    operation=operation_name,
                    attempt=attempt,
                    max_attempts=self.retry_attempts,
                    delay_seconds=delay,
                    error=str(exc)
                )
                await self._sleep(delay)

        raise EmbeddingError(f"{operation_name} made no attempts")
