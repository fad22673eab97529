"""Entity resolution API endpoints."""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..models import EntityKind
from ..resolution import ResolutionResult, Suggestion
from . import get_catalog_engine

router = APIRouter()


# =========================
# Request/Response Models
# =========================


class ResolveResponse(BaseModel):
    """Single resolution response."""

    success: bool = True
    result: ResolutionResult


class BatchResolveOptions(BaseModel):
    fuzzy_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    use_cache: bool = True


class BatchResolveRequest(BaseModel):
    """Batch resolution request."""

    identifiers: list[str] = Field(..., min_length=1)
    type: EntityKind
    options: BatchResolveOptions = Field(default_factory=BatchResolveOptions)


class BatchStats(BaseModel):
    total: int
    resolved: int
    not_found: int


class BatchResolveResponse(BaseModel):
    """Batch resolution response keyed by the submitted identifier."""

    success: bool = True
    results: dict[str, ResolutionResult]
    stats: BatchStats


class SuggestionsResponse(BaseModel):
    success: bool = True
    query: str
    suggestions: list[Suggestion]


# =========================
# Endpoints
# =========================


@router.get("/resolve", response_model=ResolveResponse)
async def resolve_identifier(
    identifier: str = Query(..., min_length=1),
    type: EntityKind = Query(...),
    fuzzy_threshold: float | None = Query(None, alias="fuzzyThreshold", ge=0.0, le=1.0),
    engine=Depends(get_catalog_engine),
):
    """Resolve one identifier or name to a canonical entity."""
    result = await engine.resolver.resolve(identifier, type, fuzzy_threshold=fuzzy_threshold)
    return ResolveResponse(result=result)


@router.post("/resolve", response_model=BatchResolveResponse)
async def resolve_batch(
    request: BatchResolveRequest,
    engine=Depends(get_catalog_engine),
):
    """Resolve up to 100 identifiers in one call."""
    results = await engine.resolver.resolve_batch(
        request.identifiers,
        request.type,
        fuzzy_threshold=request.options.fuzzy_threshold,
        use_cache=request.options.use_cache,
    )
    resolved = sum(1 for r in results.values() if r.resolved)
    return BatchResolveResponse(
        results=results,
        stats=BatchStats(
            total=len(results),
            resolved=resolved,
            not_found=len(results) - resolved,
        ),
    )


@router.get("/resolve/suggestions", response_model=SuggestionsResponse)
async def resolve_suggestions(
    query: str = Query(..., min_length=1, alias="q"),
    type: EntityKind = Query(...),
    limit: int = Query(5, ge=1, le=20),
    engine=Depends(get_catalog_engine),
):
    """Near matches for a name that may not resolve ("did you mean")."""
    suggestions = await engine.resolver.suggest(query, type, limit=limit)
    return SuggestionsResponse(query=query, suggestions=suggestions)
