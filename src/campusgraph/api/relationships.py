"""Relationship graph and cross-reference API endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, Query

from ..models import CrossReferenceFilters, EntityKind
from ..resolution import coerce_kind
from . import get_catalog_engine

router = APIRouter()


def _parse_filter_types(value: str | None) -> list[EntityKind] | None:
    """Parse a comma-separated list of entity kinds."""
    if not value:
        return None
    return [coerce_kind(part.strip()) for part in value.split(",") if part.strip()]


@router.get("/relationships/path")
async def find_path(
    from_id: str = Query(..., alias="fromId"),
    from_type: EntityKind = Query(..., alias="fromType"),
    to_id: str = Query(..., alias="toId"),
    to_type: EntityKind = Query(..., alias="toType"),
    engine=Depends(get_catalog_engine),
) -> dict[str, Any]:
    """Find the shortest path between two entities."""
    path = await engine.graph.find_path(from_id, from_type, to_id, to_type)
    return {
        "success": True,
        "found": path is not None,
        "hops": len(path) - 1 if path else None,
        "path": [node.model_dump(mode="json") for node in path] if path else [],
    }


@router.get("/relationships/{entity_type}/{entity_id}")
async def get_relationships(
    entity_type: EntityKind,
    entity_id: str,
    max_depth: int | None = Query(None, alias="maxDepth", ge=0),
    include_metadata: bool = Query(True, alias="includeMetadata"),
    filter_types: str | None = Query(None, alias="filterTypes"),
    engine=Depends(get_catalog_engine),
) -> dict[str, Any]:
    """Build the relationship graph around an entity.

    Depths above the configured maximum are rejected with 400.
    """
    graph = await engine.graph.build_graph(
        entity_id,
        entity_type,
        max_depth=max_depth,
        include_metadata=include_metadata,
        filter_types=_parse_filter_types(filter_types),
    )
    return {
        "success": True,
        "graph": graph.model_dump(mode="json", by_alias=True),
        "stats": graph.stats(),
    }


@router.get("/graph-query")
async def graph_query(
    region_id: str | None = Query(None, alias="regionId"),
    course_id: str | None = Query(None, alias="courseId"),
    college_id: str | None = Query(None, alias="collegeId"),
    stream: str | None = Query(None),
    engine=Depends(get_catalog_engine),
) -> dict[str, Any]:
    """Flat cross-reference query over the region/course/college links."""
    filters = CrossReferenceFilters(
        region_id=region_id,
        course_id=course_id,
        college_id=college_id,
        stream=stream,
    )
    result = await engine.cross_reference.query(filters)
    return {
        "success": True,
        "results": result.model_dump(mode="json", by_alias=True),
        "stats": result.stats(),
        "query": filters.model_dump(exclude_none=True),
    }
