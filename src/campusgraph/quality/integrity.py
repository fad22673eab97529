"""Data integrity checks for the catalog.

Sweeps a bounded sample of the catalog for:
- Mismatch: a course's denormalized college name differs from the college
- Orphan: courses and cutoffs referencing missing rows
- Link orphans: link-table rows referencing missing entities
- Duplicate: entities sharing a normalized name within the same parent

Health score = max(0, 100 - 20*critical - 10*high - 5*medium - 2*low).

Only medium/low mismatches are ever repaired automatically; critical and
high issues are reported for manual action.
"""

import time
from collections import Counter
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ..config import get_settings
from ..errors import InvalidQueryError, StoreUnavailableError
from ..logging import get_context_logger, log_integrity_check
from ..models import EntityKind
from ..resolution.resolver import EntityResolver, coerce_kind
from ..resolution.similarity import normalize_name
from ..store.base import CatalogStore

logger = get_context_logger(__name__)


class IssueKind(str, Enum):
    """Kinds of integrity issues."""

    MISMATCH = "mismatch"
    MISSING = "missing"
    ORPHAN = "orphan"
    DUPLICATE = "duplicate"


class Severity(str, Enum):
    """Issue severity."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class IssueEntity(str, Enum):
    """Entity an issue is attached to."""

    COLLEGE = "college"
    COURSE = "course"
    CUTOFF = "cutoff"
    REGION = "region"
    LINK = "link"


# Penalty per issue for the catalog-wide score
CATALOG_PENALTIES = {
    Severity.CRITICAL: 20,
    Severity.HIGH: 10,
    Severity.MEDIUM: 5,
    Severity.LOW: 2,
}

# Penalty per issue for a single entity's score
ENTITY_PENALTIES = {
    Severity.CRITICAL: 30,
    Severity.HIGH: 15,
    Severity.MEDIUM: 7,
    Severity.LOW: 3,
}


class IntegrityIssue(BaseModel):
    """A single integrity problem."""

    kind: IssueKind
    severity: Severity
    entity_type: IssueEntity
    entity_id: str
    message: str
    suggested_fix: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class IntegrityReport(BaseModel):
    """Outcome of an integrity sweep."""

    issues: list[IntegrityIssue] = Field(default_factory=list)
    health_score: int
    counts: dict[str, int] = Field(default_factory=dict)
    checked_at: datetime


class RepairReport(BaseModel):
    """Outcome of an auto-repair run."""

    dry_run: bool
    repaired: int = 0
    failed: int = 0
    skipped: int = 0
    logs: list[str] = Field(default_factory=list)


def severity_counts(issues: list[IntegrityIssue]) -> dict[str, int]:
    """Issue count per severity, including zero counts."""
    counts = Counter(issue.severity for issue in issues)
    return {severity.value: counts.get(severity, 0) for severity in Severity}


def health_score(
    issues: list[IntegrityIssue],
    penalties: dict[Severity, int] = CATALOG_PENALTIES,
) -> int:
    """100 minus the severity penalties, floored at 0."""
    penalty = sum(penalties[issue.severity] for issue in issues)
    return max(0, 100 - penalty)


def _mismatch_issue(course_id: str, college_id: str, expected: str, actual: str) -> IntegrityIssue:
    return IntegrityIssue(
        kind=IssueKind.MISMATCH,
        severity=Severity.MEDIUM,
        entity_type=IssueEntity.COURSE,
        entity_id=course_id,
        message=f"Course {course_id} has college name {actual!r}, expected {expected!r}",
        suggested_fix=f"Set college_name of course {course_id} to {expected!r}",
        details={
            "course_id": course_id,
            "college_id": college_id,
            "expected": expected,
            "actual": actual,
        },
    )


class IntegrityChecker:
    """Runs integrity sweeps and applies safe repairs."""

    def __init__(self, store: CatalogStore, resolver: EntityResolver):
        self.store = store
        self.resolver = resolver

    async def check(
        self,
        sample_size: int | None = None,
        check_mismatches: bool = True,
        check_orphans: bool = True,
        check_duplicates: bool = True,
        check_links: bool = True,
    ) -> IntegrityReport:
        """Run an integrity sweep.

        Args:
            sample_size: Maximum rows examined per check
            check_mismatches: Compare denormalized college names
            check_orphans: Look for courses and cutoffs with missing parents
            check_duplicates: Group entities by normalized name
            check_links: Look for link rows pointing at missing entities

        Returns:
            Report with issues and the aggregate health score
        """
        start = time.perf_counter()
        limit = get_settings().integrity_sample_size if sample_size is None else sample_size
        if limit < 0:
            raise InvalidQueryError(
                f"sample_size must not be negative, got {limit}",
                details={"sample_size": limit},
            )
        issues: list[IntegrityIssue] = []

        if check_mismatches:
            issues.extend(await self._check_mismatches(limit))
        if check_orphans:
            issues.extend(await self._check_orphans(limit))
        if check_links:
            issues.extend(await self._check_links(limit))
        if check_duplicates:
            issues.extend(await self._check_duplicates(limit))

        report = IntegrityReport(
            issues=issues,
            health_score=health_score(issues),
            counts=severity_counts(issues),
            checked_at=datetime.now(timezone.utc),
        )
        log_integrity_check(
            total_issues=len(issues),
            health_score=report.health_score,
            by_severity=report.counts,
            duration_ms=(time.perf_counter() - start) * 1000,
        )
        return report

    async def _check_mismatches(self, limit: int) -> list[IntegrityIssue]:
        return [
            _mismatch_issue(course.id, college.id, college.display_name, course.college_name)
            for course, college in await self.store.course_college_name_mismatches(limit)
        ]

    async def _check_orphans(self, limit: int) -> list[IntegrityIssue]:
        issues = []
        for course in await self.store.orphaned_courses(limit):
            details: dict[str, Any] = {
                "course_id": course.id,
                "invalid_college_id": course.college_id,
            }
            suggested_fix = f"Restore college {course.college_id} or delete course {course.id}"
            if course.college_name:
                match = await self.resolver.resolve(course.college_name, EntityKind.COLLEGE)
                if match.resolved:
                    details["suggested_college_id"] = match.id
                    details["match_confidence"] = match.confidence
                    suggested_fix = (
                        f"Set college_id of course {course.id} to {match.id} "
                        f"({match.display_name})"
                    )
            issues.append(IntegrityIssue(
                kind=IssueKind.ORPHAN,
                severity=Severity.HIGH,
                entity_type=IssueEntity.COURSE,
                entity_id=course.id,
                message=f"Course {course.id} references missing college {course.college_id}",
                suggested_fix=suggested_fix,
                details=details,
            ))

        for orphan in await self.store.orphaned_cutoffs(limit):
            cutoff = orphan.cutoff
            issues.append(IntegrityIssue(
                kind=IssueKind.ORPHAN,
                severity=Severity.HIGH,
                entity_type=IssueEntity.CUTOFF,
                entity_id=cutoff.id,
                message=f"Cutoff {cutoff.id} references missing {' and '.join(orphan.missing)}",
                suggested_fix=f"Delete cutoff {cutoff.id} or restore its references",
                details={
                    "college_id": cutoff.college_id,
                    "course_id": cutoff.course_id,
                    "missing": orphan.missing,
                },
            ))
        return issues

    async def _check_links(self, limit: int) -> list[IntegrityIssue]:
        issues = []
        for orphan in await self.store.orphaned_links(limit):
            link_id = "/".join(
                part for part in (orphan.college_id, orphan.course_id, orphan.region_id) if part
            )
            issues.append(IntegrityIssue(
                kind=IssueKind.ORPHAN,
                severity=Severity.MEDIUM,
                entity_type=IssueEntity.LINK,
                entity_id=f"{orphan.table}:{link_id}",
                message=f"{orphan.table} row {link_id} references missing {', '.join(orphan.missing)}",
                suggested_fix=f"Delete the {orphan.table} row",
                details=orphan.model_dump(),
            ))
        return issues

    async def _check_duplicates(self, limit: int) -> list[IntegrityIssue]:
        issues = []
        for group in await self.store.duplicate_colleges(limit):
            ids = [c.id for c in group]
            issues.append(IntegrityIssue(
                kind=IssueKind.DUPLICATE,
                severity=Severity.MEDIUM,
                entity_type=IssueEntity.COLLEGE,
                entity_id=ids[0],
                message=(
                    f"{len(ids)} colleges named {group[0].display_name!r} "
                    f"in region {group[0].region}"
                ),
                suggested_fix=f"Merge colleges {', '.join(ids)}",
                details={
                    "ids": ids,
                    "normalized_name": normalize_name(group[0].display_name),
                    "region": group[0].region,
                },
            ))
        for group in await self.store.duplicate_courses(limit):
            ids = [c.id for c in group]
            issues.append(IntegrityIssue(
                kind=IssueKind.DUPLICATE,
                severity=Severity.MEDIUM,
                entity_type=IssueEntity.COURSE,
                entity_id=ids[0],
                message=(
                    f"{len(ids)} courses named {group[0].display_name!r} "
                    f"at college {group[0].college_id}"
                ),
                suggested_fix=f"Merge courses {', '.join(ids)}",
                details={
                    "ids": ids,
                    "normalized_name": normalize_name(group[0].display_name),
                    "college_id": group[0].college_id,
                },
            ))
        return issues

    # =========================
    # Repair
    # =========================

    async def repair(
        self, issues: list[IntegrityIssue], dry_run: bool = True
    ) -> RepairReport:
        """Apply safe repairs.

        Only medium/low course-name mismatches are repaired. In dry-run
        mode nothing is written and repairable issues are counted as
        repaired with a "Would repair" log line.
        """
        report = RepairReport(dry_run=dry_run)

        for issue in issues:
            if issue.severity in (Severity.CRITICAL, Severity.HIGH):
                report.skipped += 1
                report.logs.append(f"Skipped {issue.severity.value} severity issue: {issue.message}")
                continue

            expected = issue.details.get("expected")
            if (
                issue.kind != IssueKind.MISMATCH
                or issue.entity_type != IssueEntity.COURSE
                or not expected
            ):
                report.skipped += 1
                report.logs.append(f"Skipped (no auto-repair): {issue.message}")
                continue

            if dry_run:
                report.repaired += 1
                report.logs.append(f"Would repair: {issue.message}")
                continue

            try:
                changed = await self.store.update_course_college_name(issue.entity_id, expected)
            except StoreUnavailableError as e:
                logger.error(
                    f"Repair failed for course {issue.entity_id}: {e}",
                    extra={"entity_id": issue.entity_id},
                )
                report.failed += 1
                report.logs.append(f"Failed to repair: {issue.message} ({e.message})")
                continue

            if changed:
                report.repaired += 1
                report.logs.append(f"Repaired: {issue.message}")
            else:
                report.failed += 1
                report.logs.append(f"Failed to repair (row not found): {issue.message}")

        if report.repaired and not dry_run:
            await self.resolver.invalidate(EntityKind.COURSE)

        logger.info(
            f"Repair run: {report.repaired} repaired, {report.failed} failed, "
            f"{report.skipped} skipped",
            extra={"dry_run": dry_run, "repaired": report.repaired,
                   "failed": report.failed, "skipped": report.skipped},
        )
        return report

    # =========================
    # Per-entity validation
    # =========================

    async def validate_entity(
        self, entity_id: str, kind: EntityKind | str
    ) -> list[IntegrityIssue]:
        """Integrity issues concerning one entity.

        A missing entity yields a single critical ``missing`` issue.
        """
        kind = coerce_kind(kind)
        entity = await self.store.get_entity(kind, entity_id)
        if entity is None:
            return [IntegrityIssue(
                kind=IssueKind.MISSING,
                severity=Severity.CRITICAL,
                entity_type=IssueEntity(kind.value),
                entity_id=entity_id,
                message=f"{kind.value.capitalize()} {entity_id} not found",
                details={"id": entity_id},
            )]

        issues: list[IntegrityIssue] = []
        if kind == EntityKind.COLLEGE:
            for course in await self.store.courses_for_college(entity.id):
                if course.college_name and course.college_name != entity.display_name:
                    issues.append(_mismatch_issue(
                        course.id, entity.id, entity.display_name, course.college_name
                    ))

        elif kind == EntityKind.COURSE and entity.college_id:
            college = await self.store.get_entity(EntityKind.COLLEGE, entity.college_id)
            if college is None:
                issues.append(IntegrityIssue(
                    kind=IssueKind.ORPHAN,
                    severity=Severity.HIGH,
                    entity_type=IssueEntity.COURSE,
                    entity_id=entity.id,
                    message=f"Course {entity.id} references missing college {entity.college_id}",
                    details={"course_id": entity.id, "invalid_college_id": entity.college_id},
                ))
            elif entity.college_name and entity.college_name != college.display_name:
                issues.append(_mismatch_issue(
                    entity.id, college.id, college.display_name, entity.college_name
                ))

        elif kind == EntityKind.CUTOFF:
            missing = []
            if entity.college_id and await self.store.get_entity(
                EntityKind.COLLEGE, entity.college_id
            ) is None:
                missing.append("college")
            if entity.course_id and await self.store.get_entity(
                EntityKind.COURSE, entity.course_id
            ) is None:
                missing.append("course")
            if missing:
                issues.append(IntegrityIssue(
                    kind=IssueKind.ORPHAN,
                    severity=Severity.HIGH,
                    entity_type=IssueEntity.CUTOFF,
                    entity_id=entity.id,
                    message=f"Cutoff {entity.id} references missing {' and '.join(missing)}",
                    details={
                        "college_id": entity.college_id,
                        "course_id": entity.course_id,
                        "missing": missing,
                    },
                ))

        return issues

    async def entity_health_score(self, entity_id: str, kind: EntityKind | str) -> int:
        """0-100 health of one entity (penalties 30/15/7/3)."""
        issues = await self.validate_entity(entity_id, kind)
        return health_score(issues, ENTITY_PENALTIES)
