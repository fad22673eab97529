"""Recommendation API endpoints."""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..models import EntityKind
from ..recommendation import ScoredCandidate
from . import get_catalog_engine

router = APIRouter(prefix="/recommendations")


class RecommendationsResponse(BaseModel):
    success: bool = True
    source_id: str
    source_type: str
    recommendations: list[ScoredCandidate]
    count: int


# Registered before the generic route so "users" is not taken as an entity type
@router.get("/users/{user_id}", response_model=RecommendationsResponse)
async def recommend_for_user(
    user_id: str,
    limit: int = Query(20, ge=1, le=50),
    engine=Depends(get_catalog_engine),
):
    """Recommendations built from a user's selections."""
    results = await engine.recommendations.recommend_for_user(user_id, limit=limit)
    return RecommendationsResponse(
        source_id=user_id,
        source_type="user",
        recommendations=results,
        count=len(results),
    )


@router.get("/{entity_type}/{entity_id}", response_model=RecommendationsResponse)
async def recommend(
    entity_type: EntityKind,
    entity_id: str,
    user_id: str | None = Query(None, alias="userId"),
    limit: int = Query(10, ge=1, le=50),
    include_reasons: bool = Query(True, alias="includeReasons"),
    engine=Depends(get_catalog_engine),
):
    """Entities similar to a college or course."""
    results = await engine.recommendations.recommend(
        entity_id,
        entity_type,
        user_id=user_id,
        limit=limit,
        include_reasons=include_reasons,
    )
    return RecommendationsResponse(
        source_id=entity_id,
        source_type=entity_type.value,
        recommendations=results,
        count=len(results),
    )
