"""FastAPI routes for campusgraph.

Provides the error response model, exception handlers and the
dependency that hands each request the shared catalog engine.
"""

from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..errors import (
    CampusGraphError,
    EntityNotFoundError,
    InvalidQueryError,
    RecordValidationError,
    StoreUnavailableError,
)
from ..logging import get_logger


# =========================
# Response Models
# =========================


class ErrorResponse(BaseModel):
    """Standard error response."""

    success: bool = False
    error: str
    error_code: str
    details: dict[str, Any] | None = None


# Status code per domain error; unknown subclasses map to 500
ERROR_STATUS: dict[type[CampusGraphError], int] = {
    InvalidQueryError: 400,
    EntityNotFoundError: 404,
    StoreUnavailableError: 503,
    RecordValidationError: 500,
}


def status_for(exc: CampusGraphError) -> int:
    for error_type in type(exc).__mro__:
        if error_type in ERROR_STATUS:
            return ERROR_STATUS[error_type]
    return 500


# =========================
# Dependencies
# =========================


def get_catalog_engine(request: Request):
    """FastAPI dependency returning the app's catalog engine.

    Built from settings on first use when the app was created without one.
    """
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        from ..services import CatalogEngine

        engine = CatalogEngine.build()
        request.app.state.engine = engine
    return engine


# =========================
# Exception Handlers
# =========================


async def campusgraph_error_handler(request: Request, exc: CampusGraphError) -> JSONResponse:
    """Map domain errors onto HTTP status codes."""
    status_code = status_for(exc)
    if status_code >= 500:
        get_logger(__name__).error(
            f"{exc.error_code}: {exc.message}",
            extra={"path": request.url.path, "error_code": exc.error_code},
        )
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=exc.message,
            error_code=exc.error_code,
            details=exc.details or None,
        ).model_dump(),
        headers={"X-Error-Code": exc.error_code},
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle generic HTTPException."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=str(exc.detail),
            error_code="HTTP_ERROR",
        ).model_dump(),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger = get_logger(__name__)
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="An unexpected error occurred",
            error_code="INTERNAL_ERROR",
        ).model_dump(),
    )


def register_exception_handlers(app):
    """Register exception handlers with the FastAPI app."""
    app.add_exception_handler(CampusGraphError, campusgraph_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
