"""Structured logging configuration for campusgraph.

Provides JSON-formatted logs for production and human-readable
logs for development.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

from .config import get_settings

# Attributes present on every LogRecord; anything else came in via ``extra``
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_data[key] = value

        if record.funcName:
            log_data["function"] = record.funcName
        if record.lineno:
            log_data["line"] = record.lineno

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable log formatter for development."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def setup_logging(stream: TextIO | None = None) -> None:
    """Configure logging based on settings.

    Args:
        stream: Output stream (stdout by default; the CLI logs to stderr)
    """
    settings = get_settings()

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(stream or sys.stdout)

    if settings.log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(TextFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    for noisy in ("asyncpg", "sqlalchemy.engine", "redis", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = get_logger(__name__)
    logger.info(
        "Logging initialized",
        extra={
            "environment": settings.environment,
            "log_level": settings.log_level,
            "log_format": settings.log_format,
        },
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds context to all log messages."""

    def process(
        self, msg: str, kwargs: dict[str, Any]
    ) -> tuple[str, dict[str, Any]]:
        """Process the logging message and add extra context."""
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def get_context_logger(name: str, **context: Any) -> LoggerAdapter:
    """Get a logger with additional context.

    Args:
        name: Logger name
        **context: Context fields to add to all log messages

    Returns:
        Logger adapter with context

    Usage:
        logger = get_context_logger(__name__, component="resolver")
        logger.info("Resolving query")  # Includes component
    """
    return LoggerAdapter(get_logger(name), context)


# =========================
# Convenience functions
# =========================


def log_resolution_event(
    strategy: str,
    query: str,
    entity_type: str,
    matched_entity: str | None,
    confidence: float,
    cached: bool = False,
) -> None:
    """Log an entity resolution event.

    Args:
        strategy: Resolution strategy that produced the result
        query: Raw query being resolved
        entity_type: Entity kind searched
        matched_entity: Matched entity ID (if found)
        confidence: Match confidence score
        cached: Whether the result was served from cache
    """
    logger = get_logger("campusgraph.resolution")
    logger.debug(
        f"Resolution {strategy}: {query!r} -> {matched_entity or 'no match'}",
        extra={
            "strategy": strategy,
            "query": query,
            "entity_type": entity_type,
            "matched_entity": matched_entity,
            "confidence": confidence,
            "cached": cached,
            "event": "entity_resolution",
        },
    )


def log_graph_operation(
    operation: str,
    root_id: str | None = None,
    node_count: int | None = None,
    edge_count: int | None = None,
    duration_ms: float | None = None,
) -> None:
    """Log a graph traversal operation.

    Args:
        operation: Operation type (build, path)
        root_id: Root entity of the traversal
        node_count: Number of nodes in the result
        edge_count: Number of edges in the result
        duration_ms: Operation duration in milliseconds
    """
    logger = get_logger("campusgraph.graph")
    logger.debug(
        f"Graph operation: {operation}",
        extra={
            "operation": operation,
            "root_id": root_id,
            "node_count": node_count,
            "edge_count": edge_count,
            "duration_ms": duration_ms,
            "event": "graph_operation",
        },
    )


def log_recommendation(
    source_id: str,
    source_type: str,
    candidate_count: int,
    returned: int,
    sources: dict[str, int] | None = None,
) -> None:
    """Log a recommendation merge.

    Args:
        source_id: Entity recommendations were computed for
        source_type: Kind of the source entity
        candidate_count: Distinct candidates after merging
        returned: Candidates returned after truncation
        sources: Candidate count per signal source
    """
    logger = get_logger("campusgraph.recommendation")
    logger.info(
        f"Recommendations for {source_type} {source_id}: {returned} returned",
        extra={
            "source_id": source_id,
            "source_type": source_type,
            "candidate_count": candidate_count,
            "returned": returned,
            "sources": sources,
            "event": "recommendation",
        },
    )


def log_integrity_check(
    total_issues: int,
    health_score: int,
    by_severity: dict[str, int],
    duration_ms: float | None = None,
) -> None:
    """Log the outcome of an integrity sweep.

    Args:
        total_issues: Number of issues found
        health_score: Aggregate health score (0-100)
        by_severity: Issue counts per severity
        duration_ms: Sweep duration in milliseconds
    """
    logger = get_logger("campusgraph.quality")
    level = logging.INFO if total_issues == 0 else logging.WARNING
    logger.log(
        level,
        f"Integrity check: {total_issues} issues, health {health_score}",
        extra={
            "total_issues": total_issues,
            "health_score": health_score,
            "by_severity": by_severity,
            "duration_ms": duration_ms,
            "event": "integrity_check",
        },
    )


def log_api_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    request_id: str | None = None,
) -> None:
    """Log an API request.

    Args:
        method: HTTP method
        path: Request path
        status_code: Response status code
        duration_ms: Request duration in milliseconds
        request_id: Request correlation ID
    """
    logger = get_logger("campusgraph.api")
    logger.info(
        f"{method} {path} - {status_code}",
        extra={
            "method": method,
            "path": path,
            "status_code": status_code,
            "duration_ms": duration_ms,
            "request_id": request_id,
            "event": "api_request",
        },
    )
