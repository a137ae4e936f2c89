"""Structured logging for the search service.

Log lines are rendered by ``structlog`` as JSON in deployed environments and
as a colored console format locally. The service name is bound once at
startup; each search binds its collection and mode for the duration of the
request so fallback warnings can be traced back to the call that caused them.

Typical usage
- Call ``configure_logging(service_name, log_level, log_format)`` at startup
- Acquire loggers via ``structlog.get_logger(name)``
- Wrap a request in ``with search_log_context(collection, mode):``
"""

import logging
import sys
from typing import Any, ContextManager, Iterable, Mapping

import structlog
from structlog.stdlib import LoggerFactory, add_logger_name

# Client libraries that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "opensearch", "urllib3")


def configure_logging(
    service_name: str,
    log_level: str = "INFO",
    log_format: str = "json",
    quiet_loggers: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Configure structured logging for the process.

    Parameters
    - service_name: Logical service identifier bound to each log line
    - log_level: ``DEBUG``, ``INFO``, ``WARNING``, ``ERROR`` (case-insensitive)
    - log_format: ``json`` for production; ``console`` for local dev
    - quiet_loggers: stdlib loggers capped at ``WARNING``
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )
    for name in quiet_loggers:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_logger_name,
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service_name)


def search_log_context(collection: str, mode: str, **extra: Any) -> ContextManager[Mapping[str, Any]]:
    """Bind ``collection`` and ``search_mode`` to every log line inside the block."""
    return structlog.contextvars.bound_contextvars(
        collection=collection,
        search_mode=mode,
        **extra
    )


def log_performance(operation: str, duration_ms: float, **kwargs: Any) -> None:
    """Log the latency of one unit of work.

    Parameters
    - operation: A stable identifier for the measured unit of work
    - duration_ms: Elapsed time in milliseconds
    - kwargs: Additional dimensions (e.g., collection, stage)
    """
    logger = structlog.get_logger("performance")
    logger.info(
        f"Operation {operation} completed",
        operation=operation,
        duration_ms=round(duration_ms, 3),
        **kwargs
    )
