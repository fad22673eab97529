"""Recommendation merge engine.

Merges several weak candidate signals into one ranked list.

College weights:
- graph similarity: 0.30
- collaborative: 0.25
- content: 0.20
- trending: 0.15
- personalization: 0.10

Course weights:
- same branch: 0.35
- same stream: 0.25
- same college: 0.20
- popular: 0.20

Final scores are the plain sum of weighted contributions. Capping them
at 100 is opt-in through ``recommendation_clamp_scores``.
"""

from typing import Any, Awaitable, Callable

from pydantic import BaseModel, Field

from ..config import get_settings
from ..errors import InvalidQueryError
from ..logging import get_context_logger, log_recommendation
from ..models import College, Course, EntityKind
from ..resolution.resolver import coerce_kind
from .sources import CandidateSources, SourceCandidate

logger = get_context_logger(__name__)

COLLEGE_WEIGHTS: dict[str, float] = {
    "graph": 0.30,
    "collaborative": 0.25,
    "content": 0.20,
    "trending": 0.15,
    "personalization": 0.10,
}

COURSE_WEIGHTS: dict[str, float] = {
    "same_branch": 0.35,
    "same_stream": 0.25,
    "same_college": 0.20,
    "popular": 0.20,
}

MAX_REASONS = 3
# Favorites considered by per-user recommendations
USER_SOURCE_LIMIT = 5
PER_FAVORITE_LIMIT = 10
REPEAT_BOOST = 0.2


class ScoredCandidate(BaseModel):
    """A merged recommendation."""

    id: str
    display_name: str
    entity_type: EntityKind
    score: float
    reasons: list[str] = Field(default_factory=list)
    # Weighted contribution per source
    source_weights: dict[str, float] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict, exclude=True)


def check_limit(limit: int) -> int:
    """Reject negative limits; zero is a valid, empty request."""
    if limit < 0:
        raise InvalidQueryError(
            f"limit must not be negative, got {limit}", details={"limit": limit}
        )
    return limit


def finalize_reasons(reasons: list[str], metadata: dict[str, Any]) -> list[str]:
    """Deduplicate reasons, add context from the candidate, keep the top 3."""
    ordered = list(dict.fromkeys(reasons))
    if metadata.get("region"):
        ordered.insert(0, f"Located in {metadata['region']}")
    if metadata.get("category"):
        ordered.append(f"{metadata['category']} institution")
    if metadata.get("rank"):
        ordered.append(f"Rank {metadata['rank']}")
    return list(dict.fromkeys(ordered))[:MAX_REASONS]


def merge_candidates(
    weighted_sources: list[tuple[str, float, list[SourceCandidate]]],
    exclude_id: str | None = None,
    limit: int = 10,
    include_reasons: bool = True,
    clamp: bool = False,
) -> list[ScoredCandidate]:
    """Merge per-source candidates into one ranked list.

    Candidates keep the position at which they were first inserted, so
    earlier sources win ties under the stable sort.

    Args:
        weighted_sources: ``(name, weight, candidates)`` in priority order
        exclude_id: Id to drop from the results (the source entity)
        limit: Maximum results
        include_reasons: Attach reasons to results
        clamp: Cap final scores at 100

    Returns:
        Candidates sorted by descending score
    """
    merged: dict[str, ScoredCandidate] = {}
    for name, weight, candidates in weighted_sources:
        for candidate in candidates:
            contribution = candidate.score * weight
            existing = merged.get(candidate.id)
            if existing is None:
                existing = merged[candidate.id] = ScoredCandidate(
                    id=candidate.id,
                    display_name=candidate.display_name,
                    entity_type=candidate.entity_type,
                    score=0.0,
                    metadata=candidate.metadata,
                )
            existing.score += contribution
            existing.source_weights[name] = existing.source_weights.get(name, 0.0) + contribution
            existing.reasons.extend(candidate.reasons)

    results = [c for c in merged.values() if c.id != exclude_id]
    results.sort(key=lambda c: c.score, reverse=True)
    results = results[:limit]

    for result in results:
        if clamp:
            result.score = min(100.0, result.score)
        result.reasons = (
            finalize_reasons(result.reasons, result.metadata) if include_reasons else []
        )
    return results


class RecommendationEngine:
    """Produces merged recommendations for colleges, courses and users."""

    def __init__(self, sources: CandidateSources, clamp_scores: bool | None = None):
        settings = get_settings()
        self.sources = sources
        self.clamp_scores = (
            clamp_scores if clamp_scores is not None else settings.recommendation_clamp_scores
        )
        self.default_limit = settings.recommendation_default_limit

    async def recommend(
        self,
        source_id: str,
        source_type: EntityKind | str,
        user_id: str | None = None,
        limit: int | None = None,
        include_reasons: bool = True,
    ) -> list[ScoredCandidate]:
        """Recommend entities similar to a source entity.

        Args:
            source_id: Canonical id of the source entity
            source_type: Kind of the source (college or course)
            user_id: Enables the personalization signal
            limit: Maximum recommendations
            include_reasons: Attach human-readable reasons

        Returns:
            Ranked candidates; empty when the source does not exist
        """
        limit = check_limit(self.default_limit if limit is None else limit)
        kind = coerce_kind(source_type)
        source = await self.sources.store.get_entity(kind, source_id)
        if source is None:
            logger.info(
                f"Recommendation source not found: {kind.value} {source_id}",
                extra={"source_id": source_id, "source_type": kind.value},
            )
            return []

        if isinstance(source, College):
            weighted = await self._college_sources(source, user_id)
        elif isinstance(source, Course):
            weighted = await self._course_sources(source)
        else:
            return []

        results = merge_candidates(
            weighted,
            exclude_id=source.id,
            limit=limit,
            include_reasons=include_reasons,
            clamp=self.clamp_scores,
        )
        log_recommendation(
            source_id=source.id,
            source_type=kind.value,
            candidate_count=len({c.id for _, _, cs in weighted for c in cs}),
            returned=len(results),
            sources={name: len(cs) for name, _, cs in weighted},
        )
        return results

    async def _gather_sources(
        self,
        weights: dict[str, float],
        calls: dict[str, Callable[[], Awaitable[list[SourceCandidate]]]],
    ) -> list[tuple[str, float, list[SourceCandidate]]]:
        # Sources run in weight order; the order also sets tie-break priority
        return [(name, weights[name], await calls[name]()) for name in weights]

    async def _college_sources(
        self, college: College, user_id: str | None
    ) -> list[tuple[str, float, list[SourceCandidate]]]:
        s = self.sources
        return await self._gather_sources(COLLEGE_WEIGHTS, {
            "graph": lambda: s.graph_similarity(college),
            "collaborative": lambda: s.collaborative(college),
            "content": lambda: s.content(college),
            "trending": lambda: s.trending(region=college.region),
            "personalization": lambda: s.personalization(user_id),
        })

    async def _course_sources(
        self, course: Course
    ) -> list[tuple[str, float, list[SourceCandidate]]]:
        s = self.sources
        return await self._gather_sources(COURSE_WEIGHTS, {
            "same_branch": lambda: s.same_branch(course),
            "same_stream": lambda: s.same_stream(course),
            "same_college": lambda: s.same_college(course),
            "popular": lambda: s.popular(course),
        })

    async def recommend_for_user(
        self, user_id: str, limit: int = 20
    ) -> list[ScoredCandidate]:
        """Recommendations built from a user's recent selections.

        Candidates recommended for several selections get 20% of each
        repeat score added, capped at 100. Users without selections get
        trending colleges instead.
        """
        check_limit(limit)
        interactions = self.sources.interactions
        selections = (
            await interactions.user_selections(user_id, USER_SOURCE_LIMIT)
            if interactions is not None
            else []
        )
        if not selections:
            trending = await self.sources.trending()
            return merge_candidates(
                [("trending", 1.0, trending)],
                limit=limit,
                clamp=self.clamp_scores,
            )

        merged: dict[str, ScoredCandidate] = {}
        for college_id in selections:
            for rec in await self.recommend(
                college_id,
                EntityKind.COLLEGE,
                user_id=user_id,
                limit=PER_FAVORITE_LIMIT,
                include_reasons=False,
            ):
                existing = merged.get(rec.id)
                if existing is None:
                    merged[rec.id] = rec
                else:
                    existing.score = min(100.0, existing.score + rec.score * REPEAT_BOOST)

        already_selected = set(selections)
        results = [r for r in merged.values() if r.id not in already_selected]
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:limit]
