"""Data integrity checks and repairs."""

from .integrity import (
    IntegrityChecker,
    IntegrityIssue,
    IntegrityReport,
    IssueEntity,
    IssueKind,
    RepairReport,
    Severity,
    health_score,
)

__all__ = [
    "IntegrityChecker",
    "IntegrityIssue",
    "IntegrityReport",
    "IssueEntity",
    "IssueKind",
    "RepairReport",
    "Severity",
    "health_score",
]
