"""Backing-store interface for the catalog.

The engines only talk to the store through these two abstract classes:
:class:`CatalogStore` for entity and link-table lookups and
:class:`InteractionStore` for user selections and preferences.

Adapters must raise :class:`~campusgraph.errors.StoreUnavailableError` on
timeouts and connection failures, and return empty results (never raise)
when rows are simply absent.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from pydantic import BaseModel, Field

from ..models import (
    College,
    Course,
    CutoffRecord,
    Entity,
    EntityKind,
    RegionCollegeLink,
    RegionCourseCollegeLink,
    UserPreferences,
)

# Tokens shorter than this are too unselective for the name prefilter
MIN_PREFILTER_TOKEN_LENGTH = 3


class LinkOrphan(BaseModel):
    """A link-table row that references a missing entity."""

    table: str
    college_id: str | None = None
    course_id: str | None = None
    region_id: str | None = None
    missing: list[str] = Field(default_factory=list)


class CutoffOrphan(BaseModel):
    """A cutoff row whose college or course no longer exists."""

    cutoff: CutoffRecord
    missing: list[str] = Field(default_factory=list)


class CatalogStore(ABC):
    """Read access (plus narrow repair writes) to catalog entities."""

    # =========================
    # Entity lookups
    # =========================

    @abstractmethod
    async def get_entity(self, kind: EntityKind, entity_id: str) -> Entity | None:
        """Fetch one entity by canonical id, or None."""
        ...

    @abstractmethod
    async def get_entities(self, kind: EntityKind, entity_ids: list[str]) -> list[Entity]:
        """Batch-fetch entities; unknown ids are skipped. Ordered by id."""
        ...

    @abstractmethod
    async def find_by_normalized_name(
        self, kind: EntityKind, normalized_name: str
    ) -> list[Entity]:
        """Entities whose normalized display name equals ``normalized_name``.

        Ordered by id so the lowest id comes first.
        """
        ...

    @abstractmethod
    async def find_name_candidates(
        self,
        kind: EntityKind,
        tokens: list[str],
        limit: int,
        normalized_query: str = "",
    ) -> list[Entity]:
        """Prefilter for fuzzy matching.

        Returns entities whose display name contains at least one of the
        tokens (case-insensitive), or whose normalized name, or one of its
        tokens of at least ``MIN_PREFILTER_TOKEN_LENGTH`` characters, occurs
        inside ``normalized_query``. Ordered by id, at most ``limit`` rows.
        """
        ...

    @abstractmethod
    async def find_college_by_link_key(self, pattern_tokens: list[str]) -> str | None:
        """College id whose composite link key contains the tokens in order."""
        ...

    @abstractmethod
    async def find_course_by_link_name(self, pattern_tokens: list[str]) -> str | None:
        """Course id whose "course name + college name" contains the tokens in order."""
        ...

    # =========================
    # Relationship lookups
    # =========================

    @abstractmethod
    async def courses_for_college(self, college_id: str) -> list[Course]:
        """Courses referencing the college through their foreign key."""
        ...

    @abstractmethod
    async def cutoffs_for(
        self, college_id: str | None = None, course_id: str | None = None
    ) -> list[CutoffRecord]:
        """Cutoff records of a college and/or course."""
        ...

    @abstractmethod
    async def college_region_links(
        self, college_id: str | None = None, region_id: str | None = None
    ) -> list[RegionCollegeLink]:
        """Rows of the region/college link table matching the filters."""
        ...

    @abstractmethod
    async def course_links(
        self,
        college_id: str | None = None,
        course_id: str | None = None,
        region_id: str | None = None,
        stream: str | None = None,
        limit: int | None = None,
    ) -> list[RegionCourseCollegeLink]:
        """Rows of the region/course/college link table matching all filters."""
        ...

    # =========================
    # Recommendation candidates
    # =========================

    @abstractmethod
    async def similar_colleges(self, college: College, limit: int) -> list[College]:
        """Colleges sharing region, locality or category with ``college``,
        or ranked within 50 places of it. Excludes the college itself."""
        ...

    @abstractmethod
    async def colleges_matching_preferences(
        self, preferences: UserPreferences, limit: int
    ) -> list[College]:
        """Colleges matching any stored preference."""
        ...

    @abstractmethod
    async def find_courses(
        self,
        branch: str | None = None,
        stream: str | None = None,
        college_id: str | None = None,
        limit: int = 50,
    ) -> list[Course]:
        """Courses matching all given attribute filters."""
        ...

    @abstractmethod
    async def popular_courses(self, limit: int, stream: str | None = None) -> list[Course]:
        """Courses ordered by seat count, largest first."""
        ...

    # =========================
    # Integrity queries
    # =========================

    @abstractmethod
    async def course_college_name_mismatches(
        self, limit: int
    ) -> list[tuple[Course, College]]:
        """Courses whose denormalized college name differs from the college's."""
        ...

    @abstractmethod
    async def orphaned_courses(self, limit: int) -> list[Course]:
        """Courses referencing a college id that does not exist."""
        ...

    @abstractmethod
    async def orphaned_cutoffs(self, limit: int) -> list[CutoffOrphan]:
        """Cutoffs referencing a missing college or course."""
        ...

    @abstractmethod
    async def orphaned_links(self, limit: int) -> list[LinkOrphan]:
        """Link-table rows referencing missing colleges, courses or regions."""
        ...

    @abstractmethod
    async def duplicate_colleges(self, limit: int) -> list[list[College]]:
        """Groups of colleges sharing a normalized name and region."""
        ...

    @abstractmethod
    async def duplicate_courses(self, limit: int) -> list[list[Course]]:
        """Groups of courses sharing a normalized name and college."""
        ...

    @abstractmethod
    async def update_course_college_name(self, course_id: str, college_name: str) -> bool:
        """Overwrite a course's denormalized college name. True if a row changed."""
        ...

    async def ping(self) -> bool:
        """Health probe; adapters override when they hold connections."""
        return True


class InteractionStore(ABC):
    """User interaction data feeding collaborative and trending signals."""

    @abstractmethod
    async def co_selected_counts(self, college_id: str, limit: int) -> dict[str, int]:
        """Other colleges selected by users who selected ``college_id``,
        with the number of such users."""
        ...

    @abstractmethod
    async def recent_selections(
        self, since: datetime, limit: int
    ) -> list[tuple[str, datetime]]:
        """``(college_id, selected_at)`` pairs newer than ``since``."""
        ...

    @abstractmethod
    async def user_selections(self, user_id: str, limit: int) -> list[str]:
        """College ids the user selected, most recent first."""
        ...

    @abstractmethod
    async def get_user_preferences(self, user_id: str) -> UserPreferences | None:
        """Stored preferences, or None when the user has none."""
        ...
