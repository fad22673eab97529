"""Unit tests for the PostgreSQL store adapters.

Sessions are mocked; these tests check row mapping, parameter binding
and error translation without a database.

Run with: pytest tests/unit/test_sql_store.py -v
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from campusgraph.errors import RecordValidationError, StoreUnavailableError
from campusgraph.models import College, Course, EntityKind
from campusgraph.store import SqlCatalogStore, SqlInteractionStore
from campusgraph.store.sql import like_escape, like_pattern


def make_session_factory(*row_sets, rowcount: int = 0):
    """Session factory whose sessions return the given row sets in order."""
    session = MagicMock()
    results = []
    for rows in row_sets or ([],):
        result = MagicMock()
        result.mappings.return_value.all.return_value = rows
        result.rowcount = rowcount
        results.append(result)
    session.execute = AsyncMock(side_effect=results)
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    return MagicMock(return_value=session), session


def executed_sql(session, call: int = 0) -> str:
    return str(session.execute.call_args_list[call].args[0])


def executed_params(session, call: int = 0) -> dict:
    return session.execute.call_args_list[call].args[1]


class TestLikePatterns:
    """Tests for LIKE pattern helpers."""

    def test_escape_wildcards(self):
        assert like_escape("100%_a\\b") == "100\\%\\_a\\\\b"

    def test_pattern_keeps_token_order(self):
        assert like_pattern(["rv", "bangalore"]) == "%rv%bangalore%"


class TestSqlCatalogStore:
    """Tests for the catalog adapter."""

    @pytest.mark.asyncio
    async def test_get_entity(self):
        factory, session = make_session_factory(
            [{"id": "ENG0001", "name": "RV College of Engineering", "region": "KA", "rank": 10}]
        )
        store = SqlCatalogStore(factory, timeout=1.0)

        college = await store.get_entity(EntityKind.COLLEGE, "ENG0001")

        assert isinstance(college, College)
        assert college.display_name == "RV College of Engineering"
        assert "FROM colleges" in executed_sql(session)
        assert executed_params(session) == {"id": "ENG0001"}
        session.commit.assert_awaited_once()
        session.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_entity_missing(self):
        factory, _ = make_session_factory([])
        store = SqlCatalogStore(factory, timeout=1.0)

        assert await store.get_entity(EntityKind.COURSE, "CRS0000") is None

    @pytest.mark.asyncio
    async def test_get_entities_skips_query_for_no_ids(self):
        factory, session = make_session_factory()
        store = SqlCatalogStore(factory, timeout=1.0)

        assert await store.get_entities(EntityKind.COLLEGE, []) == []
        session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_name_candidates_escape_tokens(self):
        factory, session = make_session_factory([])
        store = SqlCatalogStore(factory, timeout=1.0)

        await store.find_name_candidates(EntityKind.COLLEGE, ["100%", "engineering"], 25)

        params = executed_params(session)
        assert params["patterns"] == ["%100\\%%", "%engineering%"]
        assert params["limit"] == 25

    @pytest.mark.asyncio
    async def test_name_candidates_match_names_inside_query(self):
        factory, session = make_session_factory([])
        store = SqlCatalogStore(factory, timeout=1.0)

        await store.find_name_candidates(
            EntityKind.COLLEGE, ["nimhans-bengaluru"], 25, normalized_query="nimhans-bengaluru"
        )

        sql = executed_sql(session)
        params = executed_params(session)
        assert "strpos(:query" in sql
        assert "unnest(string_to_array(" in sql
        assert params["query"] == "nimhans-bengaluru"
        assert params["min_token_length"] == 3

    @pytest.mark.asyncio
    async def test_cutoffs_have_no_name_lookups(self):
        factory, session = make_session_factory()
        store = SqlCatalogStore(factory, timeout=1.0)

        assert await store.find_by_normalized_name(EntityKind.CUTOFF, "x") == []
        assert await store.find_name_candidates(EntityKind.CUTOFF, ["x"], 10) == []
        session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_link_key_lookup(self):
        factory, session = make_session_factory([{"college_id": "ENG0001"}])
        store = SqlCatalogStore(factory, timeout=1.0)

        college_id = await store.find_college_by_link_key(["rv", "bangalore"])

        assert college_id == "ENG0001"
        assert executed_params(session) == {"pattern": "%rv%bangalore%"}

    @pytest.mark.asyncio
    async def test_course_links_bind_only_given_filters(self):
        factory, session = make_session_factory([
            {"college_id": "ENG0001", "course_id": "CRS0101", "region_id": "KA", "stream": "Engineering"}
        ])
        store = SqlCatalogStore(factory, timeout=1.0)

        links = await store.course_links(region_id="KA", stream="engineering")

        assert links[0].course_id == "CRS0101"
        assert executed_params(session) == {"region_id": "KA", "stream": "engineering"}
        assert "lower(stream) = lower(:stream)" in executed_sql(session)

    @pytest.mark.asyncio
    async def test_mismatch_rows_split_into_pairs(self):
        factory, _ = make_session_factory([{
            "id": "CRS0102",
            "name": "Mechanical Engineering",
            "college_id": "ENG0001",
            "college_name": "R V College of Engg",
            "stream": "Engineering",
            "branch": "MECH",
            "seats": 60,
            "g_id": "ENG0001",
            "g_name": "RV College of Engineering",
            "g_region": "KA",
            "g_locality": "Bangalore",
            "g_category": "Private",
            "g_rank": 10,
            "g_stream": "Engineering",
        }])
        store = SqlCatalogStore(factory, timeout=1.0)

        [(course, college)] = await store.course_college_name_mismatches(10)

        assert isinstance(course, Course)
        assert course.college_name == "R V College of Engg"
        assert college.display_name == "RV College of Engineering"
        assert college.region == "KA"

    @pytest.mark.asyncio
    async def test_orphaned_cutoffs_report_missing_parents(self):
        factory, _ = make_session_factory([{
            "id": "CUT0099",
            "college_id": "ENG0001",
            "course_id": "CRS9999",
            "year": 2024,
            "category": "GM",
            "missing_college": False,
            "missing_course": True,
        }])
        store = SqlCatalogStore(factory, timeout=1.0)

        [orphan] = await store.orphaned_cutoffs(10)

        assert orphan.cutoff.id == "CUT0099"
        assert orphan.missing == ["course"]

    @pytest.mark.asyncio
    async def test_duplicate_groups_fetch_entities(self):
        factory, _ = make_session_factory(
            [{"ids": ["ENG0004", "ENG0005"]}],
            [
                {"id": "ENG0004", "name": "Government Engineering College", "region": "KA"},
                {"id": "ENG0005", "name": "Government Engineering College", "region": "KA"},
            ],
        )
        store = SqlCatalogStore(factory, timeout=1.0)

        groups = await store.duplicate_colleges(10)

        assert [[c.id for c in group] for group in groups] == [["ENG0004", "ENG0005"]]

    @pytest.mark.asyncio
    async def test_update_course_college_name(self):
        factory, session = make_session_factory([], rowcount=1)
        store = SqlCatalogStore(factory, timeout=1.0)

        assert await store.update_course_college_name("CRS0102", "RV College of Engineering")
        assert executed_params(session) == {
            "id": "CRS0102",
            "college_name": "RV College of Engineering",
        }
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_database_error_becomes_store_unavailable(self):
        factory, session = make_session_factory()
        session.execute = AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("down")))
        store = SqlCatalogStore(factory, timeout=1.0)

        with pytest.raises(StoreUnavailableError):
            await store.get_entity(EntityKind.COLLEGE, "ENG0001")
        session.rollback.assert_awaited_once()
        session.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connection_error_becomes_store_unavailable(self):
        factory, session = make_session_factory()
        session.execute = AsyncMock(side_effect=ConnectionRefusedError("refused"))
        store = SqlCatalogStore(factory, timeout=1.0)

        with pytest.raises(StoreUnavailableError):
            await store.ping()

    @pytest.mark.asyncio
    async def test_invalid_row_raises_record_validation(self):
        factory, _ = make_session_factory([{"id": "ENG0001", "name": ""}])
        store = SqlCatalogStore(factory, timeout=1.0)

        with pytest.raises(RecordValidationError):
            await store.get_entity(EntityKind.COLLEGE, "ENG0001")


class TestSqlInteractionStore:
    """Tests for the favorites and profile adapter."""

    @pytest.mark.asyncio
    async def test_co_selected_counts(self):
        factory, session = make_session_factory([
            {"college_id": "ENG0002", "selections": 2},
            {"college_id": "ENG0003", "selections": 1},
        ])
        store = SqlInteractionStore(factory, timeout=1.0)

        counts = await store.co_selected_counts("ENG0001", 50)

        assert counts == {"ENG0002": 2, "ENG0003": 1}
        assert executed_params(session) == {"college_id": "ENG0001", "limit": 50}

    @pytest.mark.asyncio
    async def test_user_selections(self):
        factory, _ = make_session_factory([
            {"college_id": "ENG0002", "last_selected": None},
            {"college_id": "ENG0001", "last_selected": None},
        ])
        store = SqlInteractionStore(factory, timeout=1.0)

        assert await store.user_selections("u1", 5) == ["ENG0002", "ENG0001"]

    @pytest.mark.asyncio
    async def test_preferences_from_json_text(self):
        factory, _ = make_session_factory(
            [{"preferences": '{"preferred_regions": ["TN"], "preferred_streams": ["Engineering"]}'}]
        )
        store = SqlInteractionStore(factory, timeout=1.0)

        preferences = await store.get_user_preferences("u2")

        assert preferences.preferred_regions == ["TN"]
        assert preferences.preferred_streams == ["Engineering"]

    @pytest.mark.asyncio
    async def test_no_profile(self):
        factory, _ = make_session_factory([])
        store = SqlInteractionStore(factory, timeout=1.0)

        assert await store.get_user_preferences("nobody") is None
