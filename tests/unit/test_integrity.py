"""Unit tests for integrity checks, repairs and entity health.

Run with: pytest tests/unit/test_integrity.py -v
"""

from unittest.mock import AsyncMock, patch

import pytest

from campusgraph.errors import InvalidQueryError, StoreUnavailableError
from campusgraph.models import EntityKind
from campusgraph.quality import (
    IntegrityIssue,
    IssueEntity,
    IssueKind,
    Severity,
    health_score,
)
from campusgraph.quality.integrity import ENTITY_PENALTIES
from campusgraph.services import CatalogEngine
from campusgraph.store import InMemoryCatalogStore


def _issue(severity: Severity, **overrides) -> IntegrityIssue:
    data = {
        "kind": IssueKind.MISMATCH,
        "severity": severity,
        "entity_type": IssueEntity.COURSE,
        "entity_id": "CRS0102",
        "message": "mismatch",
        "details": {"expected": "RV College of Engineering"},
    }
    data.update(overrides)
    return IntegrityIssue(**data)


class TestHealthScore:
    """Tests for the severity-weighted health score."""

    def test_no_issues(self):
        assert health_score([]) == 100

    def test_catalog_penalties(self):
        issues = [
            _issue(Severity.CRITICAL),
            _issue(Severity.HIGH),
            _issue(Severity.MEDIUM),
            _issue(Severity.LOW),
        ]

        assert health_score(issues) == 100 - 20 - 10 - 5 - 2

    def test_floored_at_zero(self):
        assert health_score([_issue(Severity.CRITICAL)] * 6) == 0

    def test_entity_penalties(self):
        assert health_score([_issue(Severity.HIGH)], ENTITY_PENALTIES) == 85


class TestCheck:
    """Tests for the integrity sweep over the seeded catalog."""

    @pytest.mark.asyncio
    async def test_full_sweep(self, engine):
        report = await engine.integrity.check()

        assert report.counts == {"critical": 0, "high": 2, "medium": 3, "low": 0}
        assert report.health_score == 100 - 2 * 10 - 3 * 5

    @pytest.mark.asyncio
    async def test_mismatch(self, engine):
        report = await engine.integrity.check(
            check_orphans=False, check_duplicates=False, check_links=False
        )

        assert len(report.issues) == 1
        issue = report.issues[0]
        assert issue.kind == IssueKind.MISMATCH
        assert issue.entity_id == "CRS0102"
        assert issue.details["expected"] == "RV College of Engineering"
        assert issue.details["actual"] == "R V College of Engg"

    @pytest.mark.asyncio
    async def test_orphans_suggest_a_college(self, engine):
        report = await engine.integrity.check(
            check_mismatches=False, check_duplicates=False, check_links=False
        )

        by_id = {issue.entity_id: issue for issue in report.issues}
        assert set(by_id) == {"CRS0901", "CUT0099"}
        assert by_id["CRS0901"].severity == Severity.HIGH
        assert by_id["CRS0901"].details["suggested_college_id"] == "ENG0002"
        assert by_id["CUT0099"].details["missing"] == ["course"]

    @pytest.mark.asyncio
    async def test_link_orphans(self, engine):
        report = await engine.integrity.check(
            check_mismatches=False, check_orphans=False, check_duplicates=False
        )

        assert [issue.entity_id for issue in report.issues] == [
            "region_college_link:ENG7777/KA"
        ]
        assert report.issues[0].entity_type == IssueEntity.LINK

    @pytest.mark.asyncio
    async def test_duplicates(self, engine):
        report = await engine.integrity.check(
            check_mismatches=False, check_orphans=False, check_links=False
        )

        assert len(report.issues) == 1
        assert report.issues[0].details["ids"] == ["ENG0004", "ENG0005"]
        assert report.issues[0].severity == Severity.MEDIUM

    @pytest.mark.asyncio
    async def test_sample_size_bounds_each_check(self, engine, store):
        stale = await store.get_entity(EntityKind.COURSE, "CRS0102")
        store.add(stale.model_copy(update={"id": "CRS0103", "display_name": "Civil Engineering"}))

        report = await engine.integrity.check(
            sample_size=1, check_orphans=False, check_duplicates=False, check_links=False
        )

        assert len(report.issues) == 1

    @pytest.mark.asyncio
    async def test_consistent_catalog_is_fully_healthy(self, clock):
        store = InMemoryCatalogStore.from_dict({
            "regions": [{"id": "KA", "code": "KA", "name": "Karnataka"}],
            "colleges": [{"id": "ENG0001", "name": "RV College of Engineering", "region": "KA"}],
            "courses": [{
                "id": "CRS0101",
                "college_id": "ENG0001",
                "college_name": "RV College of Engineering",
                "name": "Computer Science Engineering",
            }],
            "cutoffs": [{
                "id": "CUT0001",
                "college_id": "ENG0001",
                "course_id": "CRS0101",
                "year": 2025,
                "category": "GM",
            }],
            "region_college_links": [{"college_id": "ENG0001", "region_id": "KA"}],
            "region_course_college_links": [
                {"college_id": "ENG0001", "course_id": "CRS0101", "region_id": "KA"}
            ],
        })
        engine = CatalogEngine.build(store=store, clock=clock)

        report = await engine.integrity.check()

        assert report.issues == []
        assert report.health_score == 100
        assert report.counts == {"critical": 0, "high": 0, "medium": 0, "low": 0}

    @pytest.mark.asyncio
    async def test_zero_sample_size_examines_nothing(self, engine):
        report = await engine.integrity.check(sample_size=0)

        assert report.issues == []

    @pytest.mark.asyncio
    async def test_negative_sample_size_rejected(self, engine):
        with pytest.raises(InvalidQueryError):
            await engine.integrity.check(sample_size=-1)


class TestRepair:
    """Tests for auto-repair."""

    @pytest.mark.asyncio
    async def test_dry_run_changes_nothing(self, engine, store):
        report = await engine.integrity.check()

        result = await engine.integrity.repair(report.issues)

        assert result.dry_run is True
        assert result.repaired == 1
        assert result.skipped == 4
        assert result.failed == 0
        assert any(log.startswith("Would repair") for log in result.logs)
        course = await store.get_entity(EntityKind.COURSE, "CRS0102")
        assert course.college_name == "R V College of Engg"

    @pytest.mark.asyncio
    async def test_apply_repairs_mismatch(self, engine, store):
        report = await engine.integrity.check()

        result = await engine.integrity.repair(report.issues, dry_run=False)

        assert result.repaired == 1
        course = await store.get_entity(EntityKind.COURSE, "CRS0102")
        assert course.college_name == "RV College of Engineering"
        after = await engine.integrity.check(
            check_orphans=False, check_duplicates=False, check_links=False
        )
        assert after.issues == []

    @pytest.mark.asyncio
    async def test_apply_invalidates_course_resolutions(self, engine):
        issues = [_issue(Severity.MEDIUM)]

        with patch.object(engine.resolver, "invalidate", new=AsyncMock(return_value=0)) as invalidate:
            await engine.integrity.repair(issues, dry_run=False)

        invalidate.assert_awaited_once_with(EntityKind.COURSE)

    @pytest.mark.asyncio
    async def test_high_severity_is_skipped(self, engine):
        result = await engine.integrity.repair([_issue(Severity.HIGH)], dry_run=False)

        assert result.skipped == 1
        assert result.repaired == 0

    @pytest.mark.asyncio
    async def test_issue_without_expected_value_is_skipped(self, engine):
        result = await engine.integrity.repair(
            [_issue(Severity.LOW, details={})], dry_run=False
        )

        assert result.skipped == 1

    @pytest.mark.asyncio
    async def test_store_failure_counts_as_failed(self, engine, store):
        store.update_course_college_name = AsyncMock(
            side_effect=StoreUnavailableError("timeout")
        )

        result = await engine.integrity.repair([_issue(Severity.MEDIUM)], dry_run=False)

        assert result.failed == 1
        assert result.repaired == 0

    @pytest.mark.asyncio
    async def test_missing_row_counts_as_failed(self, engine):
        result = await engine.integrity.repair(
            [_issue(Severity.MEDIUM, entity_id="CRS4040")], dry_run=False
        )

        assert result.failed == 1


class TestValidateEntity:
    """Tests for per-entity validation and health."""

    @pytest.mark.asyncio
    async def test_missing_entity_is_critical(self, engine):
        issues = await engine.integrity.validate_entity("NOPE0000", "college")

        assert [(i.kind, i.severity) for i in issues] == [(IssueKind.MISSING, Severity.CRITICAL)]
        assert await engine.integrity.entity_health_score("NOPE0000", "college") == 70

    @pytest.mark.asyncio
    async def test_college_with_stale_course_names(self, engine):
        issues = await engine.integrity.validate_entity("ENG0001", "college")

        assert [i.entity_id for i in issues] == ["CRS0102"]
        assert await engine.integrity.entity_health_score("ENG0001", "college") == 93

    @pytest.mark.asyncio
    async def test_orphaned_course(self, engine):
        issues = await engine.integrity.validate_entity("CRS0901", EntityKind.COURSE)

        assert issues[0].kind == IssueKind.ORPHAN
        assert await engine.integrity.entity_health_score("CRS0901", "course") == 85

    @pytest.mark.asyncio
    async def test_orphaned_cutoff(self, engine):
        issues = await engine.integrity.validate_entity("CUT0099", "cutoff")

        assert issues[0].details["missing"] == ["course"]

    @pytest.mark.asyncio
    async def test_healthy_entity(self, engine):
        assert await engine.integrity.validate_entity("MED0001", "college") == []
        assert await engine.integrity.entity_health_score("MED0001", "college") == 100
