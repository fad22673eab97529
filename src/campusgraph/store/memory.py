"""In-memory catalog store for tests and local development.

Implements both store interfaces over plain dictionaries. Data can be
loaded from a JSON seed file shaped like::

    {
        "colleges": [{"id": "MED0001", "name": "...", "region": "KA"}],
        "courses": [...],
        "cutoffs": [...],
        "regions": [...],
        "region_college_links": [...],
        "region_course_college_links": [...],
        "favorites": [{"user_id": "u1", "college_id": "MED0001",
                       "created_at": "2026-01-01T00:00:00+00:00"}],
        "user_profiles": [{"user_id": "u1", "preferred_regions": ["KA"]}]
    }
"""

import json
from collections import Counter, defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any

from ..logging import get_context_logger
from ..models import (
    College,
    Course,
    CutoffRecord,
    Entity,
    EntityKind,
    RegionCollegeLink,
    RegionCourseCollegeLink,
    UserPreferences,
    parse_entity,
)
from ..resolution.similarity import normalize_name
from .base import (
    MIN_PREFILTER_TOKEN_LENGTH,
    CatalogStore,
    CutoffOrphan,
    InteractionStore,
    LinkOrphan,
)

logger = get_context_logger(__name__)

_SEED_SECTIONS = {
    "colleges": EntityKind.COLLEGE,
    "courses": EntityKind.COURSE,
    "cutoffs": EntityKind.CUTOFF,
    "regions": EntityKind.REGION,
}


def _contains_in_order(text: str, tokens: list[str]) -> bool:
    """Equivalent of ``text LIKE '%tok1%tok2%...%'``."""
    position = 0
    for token in tokens:
        found = text.find(token, position)
        if found < 0:
            return False
        position = found + len(token)
    return True


def _inside_query(name: str, normalized_query: str) -> bool:
    """Whether a normalized name, or one of its longer tokens, occurs in the query."""
    if not normalized_query:
        return False
    if name in normalized_query:
        return True
    return any(
        token in normalized_query
        for token in name.split(" ")
        if len(token) >= MIN_PREFILTER_TOKEN_LENGTH
    )


class InMemoryCatalogStore(CatalogStore, InteractionStore):
    """Dictionary-backed implementation of both store interfaces."""

    def __init__(self):
        self._entities: dict[EntityKind, dict[str, Entity]] = {
            kind: {} for kind in EntityKind
        }
        self.region_college_links: list[RegionCollegeLink] = []
        self.course_college_links: list[RegionCourseCollegeLink] = []
        self.favorites: list[tuple[str, str, datetime]] = []
        self.preferences: dict[str, UserPreferences] = {}

    # =========================
    # Loading
    # =========================

    def add(self, entity: Entity) -> Entity:
        """Insert or replace an entity."""
        self._entities[entity.entity_type][entity.id] = entity
        return entity

    def remove(self, kind: EntityKind, entity_id: str) -> None:
        self._entities[kind].pop(entity_id, None)

    def add_favorite(self, user_id: str, college_id: str, created_at: datetime) -> None:
        self.favorites.append((user_id, college_id, created_at))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InMemoryCatalogStore":
        """Build a store from seed data (see module docstring)."""
        store = cls()
        for section, kind in _SEED_SECTIONS.items():
            for row in data.get(section, []):
                store.add(parse_entity(kind, row))

        store.region_college_links = [
            RegionCollegeLink.model_validate(row)
            for row in data.get("region_college_links", [])
        ]
        store.course_college_links = [
            RegionCourseCollegeLink.model_validate(row)
            for row in data.get("region_course_college_links", [])
        ]
        for row in data.get("favorites", []):
            created_at = row["created_at"]
            if isinstance(created_at, str):
                created_at = datetime.fromisoformat(created_at)
            store.add_favorite(row["user_id"], row["college_id"], created_at)
        for row in data.get("user_profiles", []):
            store.preferences[row["user_id"]] = UserPreferences.model_validate(row)

        logger.info(
            "Loaded in-memory catalog",
            extra={kind.value: len(store._entities[kind]) for kind in EntityKind},
        )
        return store

    @classmethod
    def from_file(cls, path: str | Path) -> "InMemoryCatalogStore":
        """Load a JSON seed file."""
        with open(path, encoding="utf-8") as f:
            return cls.from_dict(json.load(f))

    def _all(self, kind: EntityKind) -> list[Any]:
        return [self._entities[kind][k] for k in sorted(self._entities[kind])]

    def _exists(self, kind: EntityKind, entity_id: str | None) -> bool:
        return entity_id is not None and entity_id in self._entities[kind]

    # =========================
    # Entity lookups
    # =========================

    async def get_entity(self, kind: EntityKind, entity_id: str) -> Entity | None:
        return self._entities[kind].get(entity_id)

    async def get_entities(self, kind: EntityKind, entity_ids: list[str]) -> list[Entity]:
        wanted = set(entity_ids)
        return [e for e in self._all(kind) if e.id in wanted]

    async def find_by_normalized_name(
        self, kind: EntityKind, normalized_name: str
    ) -> list[Entity]:
        if kind == EntityKind.CUTOFF:
            return []
        return [
            e for e in self._all(kind)
            if normalize_name(e.display_name) == normalized_name
        ]

    async def find_name_candidates(
        self,
        kind: EntityKind,
        tokens: list[str],
        limit: int,
        normalized_query: str = "",
    ) -> list[Entity]:
        if kind == EntityKind.CUTOFF or not (tokens or normalized_query):
            return []
        matches = []
        for entity in self._all(kind):
            name = normalize_name(entity.display_name)
            if not name:
                continue
            if any(token in name for token in tokens) or _inside_query(name, normalized_query):
                matches.append(entity)
        return matches[:limit]

    async def find_college_by_link_key(self, pattern_tokens: list[str]) -> str | None:
        ids = sorted(
            link.college_id
            for link in self.region_college_links
            if link.composite_college_key
            and _contains_in_order(normalize_name(link.composite_college_key), pattern_tokens)
        )
        return ids[0] if ids else None

    async def find_course_by_link_name(self, pattern_tokens: list[str]) -> str | None:
        ids = []
        for link in self.course_college_links:
            course = self._entities[EntityKind.COURSE].get(link.course_id)
            college = self._entities[EntityKind.COLLEGE].get(link.college_id)
            if course is None or college is None:
                continue
            combined = normalize_name(f"{course.display_name} {college.display_name}")
            if _contains_in_order(combined, pattern_tokens):
                ids.append(course.id)
        return min(ids) if ids else None

    # =========================
    # Relationship lookups
    # =========================

    async def courses_for_college(self, college_id: str) -> list[Course]:
        return [c for c in self._all(EntityKind.COURSE) if c.college_id == college_id]

    async def cutoffs_for(
        self, college_id: str | None = None, course_id: str | None = None
    ) -> list[CutoffRecord]:
        return [
            c for c in self._all(EntityKind.CUTOFF)
            if (college_id is None or c.college_id == college_id)
            and (course_id is None or c.course_id == course_id)
        ]

    async def college_region_links(
        self, college_id: str | None = None, region_id: str | None = None
    ) -> list[RegionCollegeLink]:
        return [
            link for link in self.region_college_links
            if (college_id is None or link.college_id == college_id)
            and (region_id is None or link.region_id == region_id)
        ]

    async def course_links(
        self,
        college_id: str | None = None,
        course_id: str | None = None,
        region_id: str | None = None,
        stream: str | None = None,
        limit: int | None = None,
    ) -> list[RegionCourseCollegeLink]:
        rows = [
            link for link in self.course_college_links
            if (college_id is None or link.college_id == college_id)
            and (course_id is None or link.course_id == course_id)
            and (region_id is None or link.region_id == region_id)
            and (stream is None or (link.stream or "").lower() == stream.lower())
        ]
        return rows[:limit] if limit else rows

    # =========================
    # Recommendation candidates
    # =========================

    async def similar_colleges(self, college: College, limit: int) -> list[College]:
        found = []
        for other in self._all(EntityKind.COLLEGE):
            if other.id == college.id:
                continue
            rank_close = (
                college.rank is not None
                and other.rank is not None
                and abs(college.rank - other.rank) <= 50
            )
            if (
                (college.region and other.region == college.region)
                or (college.locality and other.locality == college.locality)
                or (college.category and other.category == college.category)
                or rank_close
            ):
                found.append(other)
        return found[:limit]

    async def colleges_matching_preferences(
        self, preferences: UserPreferences, limit: int
    ) -> list[College]:
        regions = set(preferences.preferred_regions)
        streams = {s.lower() for s in preferences.preferred_streams}
        categories = set(preferences.preferred_categories)
        found = [
            c for c in self._all(EntityKind.COLLEGE)
            if c.region in regions
            or (c.stream or "").lower() in streams
            or c.category in categories
        ]
        return found[:limit]

    async def find_courses(
        self,
        branch: str | None = None,
        stream: str | None = None,
        college_id: str | None = None,
        limit: int = 50,
    ) -> list[Course]:
        found = [
            c for c in self._all(EntityKind.COURSE)
            if (branch is None or (c.branch or "").lower() == branch.lower())
            and (stream is None or (c.stream or "").lower() == stream.lower())
            and (college_id is None or c.college_id == college_id)
        ]
        return found[:limit]

    async def popular_courses(self, limit: int, stream: str | None = None) -> list[Course]:
        found = [
            c for c in self._all(EntityKind.COURSE)
            if c.seats and (stream is None or (c.stream or "").lower() == stream.lower())
        ]
        found.sort(key=lambda c: c.seats, reverse=True)
        return found[:limit]

    # =========================
    # Integrity queries
    # =========================

    async def course_college_name_mismatches(
        self, limit: int
    ) -> list[tuple[Course, College]]:
        pairs = []
        for course in self._all(EntityKind.COURSE):
            college = self._entities[EntityKind.COLLEGE].get(course.college_id or "")
            if (
                college is not None
                and course.college_name
                and course.college_name != college.display_name
            ):
                pairs.append((course, college))
        return pairs[:limit]

    async def orphaned_courses(self, limit: int) -> list[Course]:
        return [
            c for c in self._all(EntityKind.COURSE)
            if c.college_id and not self._exists(EntityKind.COLLEGE, c.college_id)
        ][:limit]

    async def orphaned_cutoffs(self, limit: int) -> list[CutoffOrphan]:
        orphans = []
        for cutoff in self._all(EntityKind.CUTOFF):
            missing = []
            if cutoff.college_id and not self._exists(EntityKind.COLLEGE, cutoff.college_id):
                missing.append("college")
            if cutoff.course_id and not self._exists(EntityKind.COURSE, cutoff.course_id):
                missing.append("course")
            if missing:
                orphans.append(CutoffOrphan(cutoff=cutoff, missing=missing))
        return orphans[:limit]

    async def orphaned_links(self, limit: int) -> list[LinkOrphan]:
        orphans = []
        for link in self.region_college_links:
            missing = []
            if not self._exists(EntityKind.COLLEGE, link.college_id):
                missing.append("college")
            if not self._exists(EntityKind.REGION, link.region_id):
                missing.append("region")
            if missing:
                orphans.append(LinkOrphan(
                    table="region_college_link",
                    college_id=link.college_id,
                    region_id=link.region_id,
                    missing=missing,
                ))
        for link in self.course_college_links:
            missing = []
            if not self._exists(EntityKind.COLLEGE, link.college_id):
                missing.append("college")
            if not self._exists(EntityKind.COURSE, link.course_id):
                missing.append("course")
            if not self._exists(EntityKind.REGION, link.region_id):
                missing.append("region")
            if missing:
                orphans.append(LinkOrphan(
                    table="region_course_college_link",
                    college_id=link.college_id,
                    course_id=link.course_id,
                    region_id=link.region_id,
                    missing=missing,
                ))
        return orphans[:limit]

    async def duplicate_colleges(self, limit: int) -> list[list[College]]:
        groups: dict[tuple[str, str], list[College]] = defaultdict(list)
        for college in self._all(EntityKind.COLLEGE):
            groups[(normalize_name(college.display_name), college.region or "")].append(college)
        return [g for g in groups.values() if len(g) > 1][:limit]

    async def duplicate_courses(self, limit: int) -> list[list[Course]]:
        groups: dict[tuple[str, str], list[Course]] = defaultdict(list)
        for course in self._all(EntityKind.COURSE):
            groups[(normalize_name(course.display_name), course.college_id or "")].append(course)
        return [g for g in groups.values() if len(g) > 1][:limit]

    async def update_course_college_name(self, course_id: str, college_name: str) -> bool:
        course = self._entities[EntityKind.COURSE].get(course_id)
        if course is None:
            return False
        self.add(course.model_copy(update={"college_name": college_name}))
        return True

    # =========================
    # Interactions
    # =========================

    async def co_selected_counts(self, college_id: str, limit: int) -> dict[str, int]:
        users = {user for user, college, _ in self.favorites if college == college_id}
        counts: Counter[str] = Counter()
        for user in users:
            # One vote per user even if they selected a college twice
            others = {
                college for u, college, _ in self.favorites
                if u == user and college != college_id
            }
            counts.update(others)
        return dict(counts.most_common(limit))

    async def recent_selections(
        self, since: datetime, limit: int
    ) -> list[tuple[str, datetime]]:
        rows = [(college, at) for _, college, at in self.favorites if at > since]
        rows.sort(key=lambda row: row[1], reverse=True)
        return rows[:limit]

    async def user_selections(self, user_id: str, limit: int) -> list[str]:
        rows = sorted(
            (row for row in self.favorites if row[0] == user_id),
            key=lambda row: row[2],
            reverse=True,
        )
        return list(dict.fromkeys(college for _, college, _ in rows))[:limit]

    async def get_user_preferences(self, user_id: str) -> UserPreferences | None:
        return self.preferences.get(user_id)
