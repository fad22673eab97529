"""Candidate sources feeding the recommendation merge.

Every source returns candidates already normalized to a 0-100 score.
Sources never see each other's output; weighting and merging happen in
:mod:`campusgraph.recommendation.engine`.
"""

from collections import defaultdict
from datetime import timedelta
from typing import Any

from pydantic import BaseModel, Field

from ..cache import Clock
from ..config import get_settings
from ..logging import get_context_logger
from ..models import College, Course, EntityKind
from ..store.base import CatalogStore, InteractionStore

logger = get_context_logger(__name__)

# Pool sizes requested from the store per source
CANDIDATE_POOL = 50
TRENDING_POOL = 1000

CONTENT_BASE_SCORE = 50
SAME_REGION_BONUS = 20
SAME_LOCALITY_BONUS = 15
SAME_CATEGORY_BONUS = 10
SIMILAR_RANK_BONUS = 5
SIMILAR_RANK_WINDOW = 50

PERSONALIZATION_SCORE = 75
SAME_BRANCH_SCORE = 85
SAME_STREAM_SCORE = 70
SAME_COLLEGE_SCORE = 80


class SourceCandidate(BaseModel):
    """One candidate proposed by one source."""

    id: str
    display_name: str
    entity_type: EntityKind
    score: float = Field(ge=0.0, le=100.0)
    reasons: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


def _candidate(entity: College | Course, score: float, reasons: list[str]) -> SourceCandidate:
    return SourceCandidate(
        id=entity.id,
        display_name=entity.display_name,
        entity_type=entity.entity_type,
        score=score,
        reasons=reasons,
        metadata={k: v for k, v in entity.attributes().items() if v is not None},
    )


def _ratio_score(value: float, maximum: float) -> int:
    """Scale ``value`` against the pool maximum onto 0-100."""
    if maximum <= 0:
        return 0
    return round(value / maximum * 100)


class CandidateSources:
    """Store-backed candidate sources for colleges and courses."""

    def __init__(
        self,
        store: CatalogStore,
        interactions: InteractionStore | None,
        graph,
        clock: Clock | None = None,
        trending_window_days: int | None = None,
    ):
        self.store = store
        self.interactions = interactions
        self.graph = graph
        self.clock = clock or Clock()
        self.trending_window_days = (
            trending_window_days or get_settings().recommendation_trending_window_days
        )

    # =========================
    # College sources
    # =========================

    async def graph_similarity(self, college: College) -> list[SourceCandidate]:
        """Colleges sharing neighbors with the source in its depth-2 graph."""
        graph = await self.graph.build_graph(
            college.id, EntityKind.COLLEGE, max_depth=2, include_metadata=False
        )
        source_neighbors = graph.neighbors(EntityKind.COLLEGE, college.id)

        overlaps: dict[str, tuple[int, int]] = {}
        for node in graph.nodes:
            if node.entity_type != EntityKind.COLLEGE or node.id == college.id:
                continue
            shared = graph.neighbors(EntityKind.COLLEGE, node.id) & source_neighbors
            if shared:
                shared_courses = sum(1 for kind, _ in shared if kind == EntityKind.COURSE)
                overlaps[node.id] = (len(shared), shared_courses)
        if not overlaps:
            return []

        max_overlap = max(count for count, _ in overlaps.values())
        colleges = await self.store.get_entities(EntityKind.COLLEGE, list(overlaps))
        candidates = []
        for other in colleges:
            count, shared_courses = overlaps[other.id]
            reason = (
                f"{shared_courses} courses in common"
                if shared_courses
                else f"{count} connections in common"
            )
            candidates.append(_candidate(other, _ratio_score(count, max_overlap), [reason]))
        candidates.sort(key=lambda c: c.score, reverse=True)
        return candidates

    async def collaborative(self, college: College) -> list[SourceCandidate]:
        """Colleges co-selected by users who selected the source."""
        if self.interactions is None:
            return []
        counts = await self.interactions.co_selected_counts(college.id, CANDIDATE_POOL)
        if not counts:
            return []

        max_count = max(counts.values())
        colleges = await self.store.get_entities(EntityKind.COLLEGE, list(counts))
        candidates = [
            _candidate(
                other,
                _ratio_score(counts[other.id], max_count),
                [f"{counts[other.id]} users also selected this"],
            )
            for other in colleges
        ]
        candidates.sort(key=lambda c: c.score, reverse=True)
        return candidates

    async def content(self, college: College) -> list[SourceCandidate]:
        """Attribute overlap with the source college."""
        candidates = []
        for other in await self.store.similar_colleges(college, CANDIDATE_POOL):
            score = CONTENT_BASE_SCORE
            reasons = []
            if college.region and other.region == college.region:
                score += SAME_REGION_BONUS
                reasons.append(f"Same region ({other.region})")
            if college.locality and other.locality == college.locality:
                score += SAME_LOCALITY_BONUS
                reasons.append(f"Same locality ({other.locality})")
            if college.category and other.category == college.category:
                score += SAME_CATEGORY_BONUS
                reasons.append(f"Same category ({other.category})")
            if (
                college.rank is not None
                and other.rank is not None
                and abs(college.rank - other.rank) <= SIMILAR_RANK_WINDOW
            ):
                score += SIMILAR_RANK_BONUS
                reasons.append("Similar ranking")
            candidates.append(_candidate(other, min(100, score), reasons))
        return candidates

    async def trending(self, region: str | None = None) -> list[SourceCandidate]:
        """Recency-weighted selections within the trending window.

        Each selection counts 1.0 when made now, decaying linearly to 0 at
        the edge of the window.
        """
        if self.interactions is None:
            return []
        now = self.clock.now()
        window = timedelta(days=self.trending_window_days)
        selections = await self.interactions.recent_selections(now - window, TRENDING_POOL)

        weights: dict[str, float] = defaultdict(float)
        counts: dict[str, int] = defaultdict(int)
        for college_id, selected_at in selections:
            age = now - selected_at
            weight = max(0.0, 1.0 - age / window)
            if weight > 0:
                weights[college_id] += weight
                counts[college_id] += 1
        if not weights:
            return []

        colleges = await self.store.get_entities(EntityKind.COLLEGE, list(weights))
        if region is not None:
            colleges = [c for c in colleges if c.region == region]
        if not colleges:
            return []

        max_weight = max(weights[c.id] for c in colleges)
        candidates = [
            _candidate(
                c,
                _ratio_score(weights[c.id], max_weight),
                [f"Trending with {counts[c.id]} recent selections"],
            )
            for c in colleges
        ]
        candidates.sort(key=lambda c: c.score, reverse=True)
        return candidates

    async def personalization(self, user_id: str | None) -> list[SourceCandidate]:
        """Flat bonus for colleges matching the user's stored preferences."""
        if user_id is None or self.interactions is None:
            return []
        preferences = await self.interactions.get_user_preferences(user_id)
        if preferences is None or preferences.is_empty():
            return []
        colleges = await self.store.colleges_matching_preferences(preferences, CANDIDATE_POOL)
        return [
            _candidate(c, PERSONALIZATION_SCORE, ["Matches your preferences"])
            for c in colleges
        ]

    # =========================
    # Course sources
    # =========================

    async def same_branch(self, course: Course) -> list[SourceCandidate]:
        if not course.branch:
            return []
        courses = await self.store.find_courses(branch=course.branch, limit=CANDIDATE_POOL)
        return [
            _candidate(c, SAME_BRANCH_SCORE, [f"Same branch: {course.branch}"])
            for c in courses
        ]

    async def same_stream(self, course: Course) -> list[SourceCandidate]:
        if not course.stream:
            return []
        courses = await self.store.find_courses(stream=course.stream, limit=CANDIDATE_POOL)
        return [
            _candidate(c, SAME_STREAM_SCORE, [f"Same stream: {course.stream}"])
            for c in courses
        ]

    async def same_college(self, course: Course) -> list[SourceCandidate]:
        if not course.college_id:
            return []
        courses = await self.store.find_courses(
            college_id=course.college_id, limit=CANDIDATE_POOL
        )
        return [_candidate(c, SAME_COLLEGE_SCORE, ["Same college"]) for c in courses]

    async def popular(self, course: Course) -> list[SourceCandidate]:
        courses = await self.store.popular_courses(CANDIDATE_POOL, stream=course.stream)
        if not courses:
            return []
        max_seats = max(c.seats or 0 for c in courses)
        return [
            _candidate(c, _ratio_score(c.seats or 0, max_seats), [f"{c.seats} seats available"])
            for c in courses
        ]
