"""Recommendation merge engine and candidate sources."""

from .engine import (
    COLLEGE_WEIGHTS,
    COURSE_WEIGHTS,
    RecommendationEngine,
    ScoredCandidate,
    merge_candidates,
)
from .sources import CandidateSources, SourceCandidate

__all__ = [
    "COLLEGE_WEIGHTS",
    "COURSE_WEIGHTS",
    "CandidateSources",
    "RecommendationEngine",
    "ScoredCandidate",
    "SourceCandidate",
    "merge_candidates",
]
