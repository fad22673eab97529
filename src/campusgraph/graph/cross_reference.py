"""Flat cross-reference queries over the region/course/college link table.

Answers "list every X matching filter combination Y" with a single
filtered scan followed by one batch fetch per entity kind. There is no
traversal here; see :mod:`campusgraph.graph.traversal` for that.
"""

from typing import Any

from pydantic import BaseModel, Field

from ..errors import InvalidQueryError
from ..logging import get_context_logger
from ..models import College, Course, CrossReferenceFilters, EntityKind, Region
from ..store.base import CatalogStore

logger = get_context_logger(__name__)


class CrossReferenceResult(BaseModel):
    """Entities surfaced by a cross-reference query."""

    colleges: list[College] = Field(default_factory=list)
    courses: list[Course] = Field(default_factory=list)
    regions: list[Region] = Field(default_factory=list)

    def stats(self) -> dict[str, int]:
        return {
            "colleges": len(self.colleges),
            "courses": len(self.courses),
            "regions": len(self.regions),
        }


class CrossReferenceEngine:
    """Filtered lookups over the denormalized link table."""

    def __init__(self, store: CatalogStore):
        self.store = store

    async def query(
        self, filters: CrossReferenceFilters | None = None, **kwargs: Any
    ) -> CrossReferenceResult:
        """Run a cross-reference query.

        Filters may be passed as a model or as keyword arguments
        (``region_id``, ``course_id``, ``college_id``, ``stream``).

        Raises:
            InvalidQueryError: No filter carries a value
        """
        filters = filters or CrossReferenceFilters(**kwargs)
        if filters.is_empty():
            raise InvalidQueryError(
                "At least one of region_id, course_id, college_id or stream is required"
            )

        links = await self.store.course_links(
            college_id=filters.college_id,
            course_id=filters.course_id,
            region_id=filters.region_id,
            stream=filters.stream,
        )
        if not links:
            return CrossReferenceResult()

        college_ids = sorted({link.college_id for link in links})
        course_ids = sorted({link.course_id for link in links})
        region_ids = sorted({link.region_id for link in links})

        result = CrossReferenceResult(
            colleges=await self.store.get_entities(EntityKind.COLLEGE, college_ids),
            courses=await self.store.get_entities(EntityKind.COURSE, course_ids),
            regions=await self.store.get_entities(EntityKind.REGION, region_ids),
        )
        logger.debug(
            f"Cross-reference matched {len(links)} link rows",
            extra={"filters": filters.model_dump(exclude_none=True), **result.stats()},
        )
        return result

    async def colleges_offering_course(
        self,
        course_id: str,
        region_id: str | None = None,
        include_details: bool = True,
    ) -> list[College] | list[str]:
        """Colleges linked to a course, optionally within one region.

        Returns college ids instead of full records when
        ``include_details`` is False.
        """
        links = await self.store.course_links(course_id=course_id, region_id=region_id)
        college_ids = sorted({link.college_id for link in links})
        if not include_details:
            return college_ids
        return await self.store.get_entities(EntityKind.COLLEGE, college_ids)

    async def courses_in_region(
        self, region_id: str, stream: str | None = None
    ) -> list[Course]:
        """Courses available in a region, optionally for one stream."""
        links = await self.store.course_links(region_id=region_id, stream=stream)
        course_ids = sorted({link.course_id for link in links})
        return await self.store.get_entities(EntityKind.COURSE, course_ids)
