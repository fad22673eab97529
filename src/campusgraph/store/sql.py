"""PostgreSQL catalog store.

Raw SQL over SQLAlchemy async sessions (asyncpg driver). Every call opens
its own session, so concurrent traversal fetches never share one, and
every statement is bounded by ``store_timeout_seconds``.

Tables:
    colleges(id, name, region, locality, category, rank, stream)
    courses(id, college_id, college_name, name, stream, branch, seats)
    cutoff_records(id, college_id, course_id, year, category,
                   opening_rank, closing_rank)
    regions(id, code, name)
    region_college_link(college_id, region_id, composite_college_key)
    region_course_college_link(college_id, course_id, region_id, stream)
    favorites(user_id, college_id, created_at)
    user_profiles(user_id, preferences jsonb)
"""

import asyncio
import json
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..config import get_settings
from ..db import get_db_session
from ..errors import StoreUnavailableError
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
from .base import (
    MIN_PREFILTER_TOKEN_LENGTH,
    CatalogStore,
    CutoffOrphan,
    InteractionStore,
    LinkOrphan,
)

logger = get_context_logger(__name__)

TABLES = {
    EntityKind.COLLEGE: "colleges",
    EntityKind.COURSE: "courses",
    EntityKind.CUTOFF: "cutoff_records",
    EntityKind.REGION: "regions",
}

# Same normalization as resolution.similarity.normalize_name
NORMALIZED_NAME = r"lower(regexp_replace(trim({column}), '\s+', ' ', 'g'))"

_COLLEGE_COLUMNS = ("id", "name", "region", "locality", "category", "rank", "stream")


def like_escape(value: str) -> str:
    """Escape LIKE wildcards in user input."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def like_pattern(tokens: list[str]) -> str:
    """``%tok1%tok2%`` pattern matching the tokens in order."""
    return "%" + "%".join(like_escape(t) for t in tokens) + "%"


class SqlStoreBase:
    """Session handling shared by the SQL stores."""

    def __init__(self, session_factory=None, timeout: float | None = None):
        self._session_factory = session_factory
        self._timeout = (
            timeout if timeout is not None else get_settings().store_timeout_seconds
        )

    async def _fetch(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Run a query and return its rows as dictionaries.

        Raises:
            StoreUnavailableError: On timeout or connection/database failure.
        """
        try:
            async with get_db_session(self._session_factory) as session:
                result = await asyncio.wait_for(
                    session.execute(text(sql), params or {}),
                    timeout=self._timeout,
                )
                return [dict(row) for row in result.mappings().all()]
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Store query failed: {e}", extra={"error_type": type(e).__name__})
            raise StoreUnavailableError(f"Catalog store query failed: {e}") from e

    async def _execute(self, sql: str, params: dict[str, Any] | None = None) -> int:
        """Run a write statement and return the affected row count."""
        try:
            async with get_db_session(self._session_factory) as session:
                result = await asyncio.wait_for(
                    session.execute(text(sql), params or {}),
                    timeout=self._timeout,
                )
                return result.rowcount or 0
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Store write failed: {e}", extra={"error_type": type(e).__name__})
            raise StoreUnavailableError(f"Catalog store write failed: {e}") from e

    async def ping(self) -> bool:
        await self._fetch("SELECT 1 AS ok")
        return True


def _where(conditions: list[str]) -> str:
    return f"WHERE {' AND '.join(conditions)}" if conditions else ""


class SqlCatalogStore(SqlStoreBase, CatalogStore):
    """Catalog store over the PostgreSQL tables listed in the module docstring."""

    def _parse(self, kind: EntityKind, rows: list[dict[str, Any]]) -> list[Any]:
        return [parse_entity(kind, row) for row in rows]

    # =========================
    # Entity lookups
    # =========================

    async def get_entity(self, kind: EntityKind, entity_id: str) -> Entity | None:
        rows = await self._fetch(
            f"SELECT * FROM {TABLES[kind]} WHERE id = :id",
            {"id": entity_id},
        )
        return parse_entity(kind, rows[0]) if rows else None

    async def get_entities(self, kind: EntityKind, entity_ids: list[str]) -> list[Entity]:
        if not entity_ids:
            return []
        rows = await self._fetch(
            f"SELECT * FROM {TABLES[kind]} WHERE id = ANY(:ids) ORDER BY id",
            {"ids": list(entity_ids)},
        )
        return self._parse(kind, rows)

    async def find_by_normalized_name(
        self, kind: EntityKind, normalized_name: str
    ) -> list[Entity]:
        if kind == EntityKind.CUTOFF:
            # Cutoff rows carry no name column
            return []
        rows = await self._fetch(
            f"""
            SELECT * FROM {TABLES[kind]}
            WHERE {NORMALIZED_NAME.format(column="name")} = :normalized
            ORDER BY id
            """,
            {"normalized": normalized_name},
        )
        return self._parse(kind, rows)

    async def find_name_candidates(
        self,
        kind: EntityKind,
        tokens: list[str],
        limit: int,
        normalized_query: str = "",
    ) -> list[Entity]:
        if kind == EntityKind.CUTOFF or not (tokens or normalized_query):
            return []
        normalized = NORMALIZED_NAME.format(column="name")
        rows = await self._fetch(
            f"""
            SELECT * FROM {TABLES[kind]}
            WHERE name ILIKE ANY(:patterns)
               OR (:query <> '' AND {normalized} <> '' AND (
                    strpos(:query, {normalized}) > 0
                    OR EXISTS (
                        SELECT 1 FROM unnest(string_to_array({normalized}, ' ')) AS t(token)
                        WHERE length(t.token) >= :min_token_length
                          AND strpos(:query, t.token) > 0
                    )
               ))
            ORDER BY id
            LIMIT :limit
            """,
            {
                "patterns": [f"%{like_escape(t)}%" for t in tokens],
                "query": normalized_query,
                "min_token_length": MIN_PREFILTER_TOKEN_LENGTH,
                "limit": limit,
            },
        )
        return self._parse(kind, rows)

    async def find_college_by_link_key(self, pattern_tokens: list[str]) -> str | None:
        rows = await self._fetch(
            f"""
            SELECT college_id FROM region_college_link
            WHERE {NORMALIZED_NAME.format(column="composite_college_key")} LIKE :pattern
            ORDER BY college_id
            LIMIT 1
            """,
            {"pattern": like_pattern(pattern_tokens)},
        )
        return rows[0]["college_id"] if rows else None

    async def find_course_by_link_name(self, pattern_tokens: list[str]) -> str | None:
        rows = await self._fetch(
            f"""
            SELECT c.id FROM region_course_college_link l
            JOIN courses c ON c.id = l.course_id
            JOIN colleges g ON g.id = l.college_id
            WHERE {NORMALIZED_NAME.format(column="c.name || ' ' || g.name")} LIKE :pattern
            ORDER BY c.id
            LIMIT 1
            """,
            {"pattern": like_pattern(pattern_tokens)},
        )
        return rows[0]["id"] if rows else None

    # =========================
    # Relationship lookups
    # =========================

    async def courses_for_college(self, college_id: str) -> list[Course]:
        rows = await self._fetch(
            "SELECT * FROM courses WHERE college_id = :college_id ORDER BY id",
            {"college_id": college_id},
        )
        return self._parse(EntityKind.COURSE, rows)

    async def cutoffs_for(
        self, college_id: str | None = None, course_id: str | None = None
    ) -> list[CutoffRecord]:
        conditions = []
        params: dict[str, Any] = {}
        if college_id is not None:
            conditions.append("college_id = :college_id")
            params["college_id"] = college_id
        if course_id is not None:
            conditions.append("course_id = :course_id")
            params["course_id"] = course_id
        rows = await self._fetch(
            f"SELECT * FROM cutoff_records {_where(conditions)} ORDER BY id",
            params,
        )
        return self._parse(EntityKind.CUTOFF, rows)

    async def college_region_links(
        self, college_id: str | None = None, region_id: str | None = None
    ) -> list[RegionCollegeLink]:
        conditions = []
        params: dict[str, Any] = {}
        if college_id is not None:
            conditions.append("college_id = :college_id")
            params["college_id"] = college_id
        if region_id is not None:
            conditions.append("region_id = :region_id")
            params["region_id"] = region_id
        rows = await self._fetch(
            f"""
            SELECT college_id, region_id, composite_college_key
            FROM region_college_link {_where(conditions)}
            ORDER BY college_id, region_id
            """,
            params,
        )
        return [RegionCollegeLink.model_validate(row) for row in rows]

    async def course_links(
        self,
        college_id: str | None = None,
        course_id: str | None = None,
        region_id: str | None = None,
        stream: str | None = None,
        limit: int | None = None,
    ) -> list[RegionCourseCollegeLink]:
        conditions = []
        params: dict[str, Any] = {}
        for column, value in (
            ("college_id", college_id),
            ("course_id", course_id),
            ("region_id", region_id),
        ):
            if value is not None:
                conditions.append(f"{column} = :{column}")
                params[column] = value
        if stream is not None:
            conditions.append("lower(stream) = lower(:stream)")
            params["stream"] = stream

        sql = f"""
            SELECT DISTINCT college_id, course_id, region_id, stream
            FROM region_course_college_link {_where(conditions)}
            ORDER BY college_id, course_id, region_id
        """
        if limit:
            sql += " LIMIT :limit"
            params["limit"] = limit
        rows = await self._fetch(sql, params)
        return [RegionCourseCollegeLink.model_validate(row) for row in rows]

    # =========================
    # Recommendation candidates
    # =========================

    async def similar_colleges(self, college: College, limit: int) -> list[College]:
        rows = await self._fetch(
            """
            SELECT * FROM colleges
            WHERE id <> :id
              AND (
                region = :region
                OR locality = :locality
                OR category = :category
                OR rank BETWEEN CAST(:rank AS integer) - 50 AND CAST(:rank AS integer) + 50
              )
            ORDER BY id
            LIMIT :limit
            """,
            {
                "id": college.id,
                "region": college.region,
                "locality": college.locality,
                "category": college.category,
                "rank": college.rank,
                "limit": limit,
            },
        )
        return self._parse(EntityKind.COLLEGE, rows)

    async def colleges_matching_preferences(
        self, preferences: UserPreferences, limit: int
    ) -> list[College]:
        rows = await self._fetch(
            """
            SELECT * FROM colleges
            WHERE region = ANY(:regions)
               OR lower(stream) = ANY(:streams)
               OR category = ANY(:categories)
            ORDER BY id
            LIMIT :limit
            """,
            {
                "regions": preferences.preferred_regions,
                "streams": [s.lower() for s in preferences.preferred_streams],
                "categories": preferences.preferred_categories,
                "limit": limit,
            },
        )
        return self._parse(EntityKind.COLLEGE, rows)

    async def find_courses(
        self,
        branch: str | None = None,
        stream: str | None = None,
        college_id: str | None = None,
        limit: int = 50,
    ) -> list[Course]:
        conditions = []
        params: dict[str, Any] = {"limit": limit}
        if branch is not None:
            conditions.append("lower(branch) = lower(:branch)")
            params["branch"] = branch
        if stream is not None:
            conditions.append("lower(stream) = lower(:stream)")
            params["stream"] = stream
        if college_id is not None:
            conditions.append("college_id = :college_id")
            params["college_id"] = college_id
        rows = await self._fetch(
            f"SELECT * FROM courses {_where(conditions)} ORDER BY id LIMIT :limit",
            params,
        )
        return self._parse(EntityKind.COURSE, rows)

    async def popular_courses(self, limit: int, stream: str | None = None) -> list[Course]:
        conditions = ["seats > 0"]
        params: dict[str, Any] = {"limit": limit}
        if stream is not None:
            conditions.append("lower(stream) = lower(:stream)")
            params["stream"] = stream
        rows = await self._fetch(
            f"SELECT * FROM courses {_where(conditions)} ORDER BY seats DESC, id LIMIT :limit",
            params,
        )
        return self._parse(EntityKind.COURSE, rows)

    # =========================
    # Integrity queries
    # =========================

    async def course_college_name_mismatches(
        self, limit: int
    ) -> list[tuple[Course, College]]:
        college_select = ", ".join(f"g.{col} AS g_{col}" for col in _COLLEGE_COLUMNS)
        rows = await self._fetch(
            f"""
            SELECT c.*, {college_select}
            FROM courses c
            JOIN colleges g ON g.id = c.college_id
            WHERE c.college_name IS NOT NULL
              AND c.college_name <> g.name
            ORDER BY c.id
            LIMIT :limit
            """,
            {"limit": limit},
        )
        pairs = []
        for row in rows:
            college_row = {col: row.pop(f"g_{col}") for col in _COLLEGE_COLUMNS}
            pairs.append((
                parse_entity(EntityKind.COURSE, row),
                parse_entity(EntityKind.COLLEGE, college_row),
            ))
        return pairs

    async def orphaned_courses(self, limit: int) -> list[Course]:
        rows = await self._fetch(
            """
            SELECT c.* FROM courses c
            LEFT JOIN colleges g ON g.id = c.college_id
            WHERE c.college_id IS NOT NULL AND g.id IS NULL
            ORDER BY c.id
            LIMIT :limit
            """,
            {"limit": limit},
        )
        return self._parse(EntityKind.COURSE, rows)

    async def orphaned_cutoffs(self, limit: int) -> list[CutoffOrphan]:
        rows = await self._fetch(
            """
            SELECT r.*,
                   (r.college_id IS NOT NULL AND g.id IS NULL) AS missing_college,
                   (r.course_id IS NOT NULL AND c.id IS NULL) AS missing_course
            FROM cutoff_records r
            LEFT JOIN colleges g ON g.id = r.college_id
            LEFT JOIN courses c ON c.id = r.course_id
            WHERE (r.college_id IS NOT NULL AND g.id IS NULL)
               OR (r.course_id IS NOT NULL AND c.id IS NULL)
            ORDER BY r.id
            LIMIT :limit
            """,
            {"limit": limit},
        )
        orphans = []
        for row in rows:
            missing = []
            if row.pop("missing_college"):
                missing.append("college")
            if row.pop("missing_course"):
                missing.append("course")
            orphans.append(CutoffOrphan(
                cutoff=parse_entity(EntityKind.CUTOFF, row),
                missing=missing,
            ))
        return orphans

    async def orphaned_links(self, limit: int) -> list[LinkOrphan]:
        college_rows = await self._fetch(
            """
            SELECT l.college_id, l.region_id,
                   g.id IS NULL AS missing_college,
                   r.id IS NULL AS missing_region
            FROM region_college_link l
            LEFT JOIN colleges g ON g.id = l.college_id
            LEFT JOIN regions r ON r.id = l.region_id
            WHERE g.id IS NULL OR r.id IS NULL
            ORDER BY l.college_id, l.region_id
            LIMIT :limit
            """,
            {"limit": limit},
        )
        course_rows = await self._fetch(
            """
            SELECT l.college_id, l.course_id, l.region_id,
                   g.id IS NULL AS missing_college,
                   c.id IS NULL AS missing_course,
                   r.id IS NULL AS missing_region
            FROM region_course_college_link l
            LEFT JOIN colleges g ON g.id = l.college_id
            LEFT JOIN courses c ON c.id = l.course_id
            LEFT JOIN regions r ON r.id = l.region_id
            WHERE g.id IS NULL OR c.id IS NULL OR r.id IS NULL
            ORDER BY l.college_id, l.course_id, l.region_id
            LIMIT :limit
            """,
            {"limit": limit},
        )

        orphans = []
        for table, rows in (
            ("region_college_link", college_rows),
            ("region_course_college_link", course_rows),
        ):
            for row in rows:
                missing = [
                    name
                    for name in ("college", "course", "region")
                    if row.get(f"missing_{name}")
                ]
                orphans.append(LinkOrphan(
                    table=table,
                    college_id=row.get("college_id"),
                    course_id=row.get("course_id"),
                    region_id=row.get("region_id"),
                    missing=missing,
                ))
        return orphans[:limit]

    async def _duplicate_groups(
        self, kind: EntityKind, group_column: str, limit: int
    ) -> list[list[Any]]:
        rows = await self._fetch(
            f"""
            SELECT array_agg(id ORDER BY id) AS ids
            FROM {TABLES[kind]}
            GROUP BY {NORMALIZED_NAME.format(column="name")}, coalesce({group_column}, '')
            HAVING count(*) > 1
            ORDER BY min(id)
            LIMIT :limit
            """,
            {"limit": limit},
        )
        groups = [list(row["ids"]) for row in rows]
        entities = await self.get_entities(kind, [i for group in groups for i in group])
        by_id = {e.id: e for e in entities}
        return [[by_id[i] for i in group if i in by_id] for group in groups]

    async def duplicate_colleges(self, limit: int) -> list[list[College]]:
        return await self._duplicate_groups(EntityKind.COLLEGE, "region", limit)

    async def duplicate_courses(self, limit: int) -> list[list[Course]]:
        return await self._duplicate_groups(EntityKind.COURSE, "college_id", limit)

    async def update_course_college_name(self, course_id: str, college_name: str) -> bool:
        changed = await self._execute(
            "UPDATE courses SET college_name = :college_name WHERE id = :id",
            {"id": course_id, "college_name": college_name},
        )
        return changed > 0


class SqlInteractionStore(SqlStoreBase, InteractionStore):
    """Favorites and user profiles."""

    async def co_selected_counts(self, college_id: str, limit: int) -> dict[str, int]:
        rows = await self._fetch(
            """
            SELECT f2.college_id, count(DISTINCT f2.user_id) AS selections
            FROM favorites f1
            JOIN favorites f2
              ON f2.user_id = f1.user_id AND f2.college_id <> f1.college_id
            WHERE f1.college_id = :college_id
            GROUP BY f2.college_id
            ORDER BY selections DESC, f2.college_id
            LIMIT :limit
            """,
            {"college_id": college_id, "limit": limit},
        )
        return {row["college_id"]: int(row["selections"]) for row in rows}

    async def recent_selections(
        self, since: datetime, limit: int
    ) -> list[tuple[str, datetime]]:
        rows = await self._fetch(
            """
            SELECT college_id, created_at FROM favorites
            WHERE created_at > :since
            ORDER BY created_at DESC
            LIMIT :limit
            """,
            {"since": since, "limit": limit},
        )
        return [(row["college_id"], row["created_at"]) for row in rows]

    async def user_selections(self, user_id: str, limit: int) -> list[str]:
        rows = await self._fetch(
            """
            SELECT college_id, max(created_at) AS last_selected
            FROM favorites
            WHERE user_id = :user_id
            GROUP BY college_id
            ORDER BY last_selected DESC
            LIMIT :limit
            """,
            {"user_id": user_id, "limit": limit},
        )
        return [row["college_id"] for row in rows]

    async def get_user_preferences(self, user_id: str) -> UserPreferences | None:
        rows = await self._fetch(
            "SELECT preferences FROM user_profiles WHERE user_id = :user_id",
            {"user_id": user_id},
        )
        if not rows or not rows[0]["preferences"]:
            return None
        preferences = rows[0]["preferences"]
        if isinstance(preferences, str):
            preferences = json.loads(preferences)
        return UserPreferences.model_validate(preferences)
