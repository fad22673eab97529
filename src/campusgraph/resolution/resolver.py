"""Entity resolver combining multiple matching strategies.

Maps a user-supplied identifier (canonical id, typed name, or a
typo-laden fragment) onto a canonical catalog entity.

Resolution flow (first success wins):
1. Direct match on canonical id → confidence: 1.0
2. Composite key (exact normalized name) → confidence: 0.95
3. Fuzzy name match above threshold → confidence: 0.7-0.99
4. Link-table fallback (colleges and courses only) → confidence: 0.75
5. Miss → id None, confidence 0.0

Misses are results, not errors. Store failures propagate unchanged.
"""

import asyncio
from enum import Enum

from pydantic import BaseModel, Field
from rapidfuzz import fuzz, process

from ..cache import ResolutionCache
from ..config import get_settings
from ..errors import InvalidQueryError
from ..logging import get_context_logger, log_resolution_event
from ..models import Entity, EntityKind
from ..store.base import MIN_PREFILTER_TOKEN_LENGTH, CatalogStore
from .similarity import fuzzy_confidence, normalize_name, similarity_score, tokenize

logger = get_context_logger(__name__)

DIRECT_CONFIDENCE = 1.0
COMPOSITE_CONFIDENCE = 0.95
LINK_TABLE_CONFIDENCE = 0.75


class ResolutionMethod(str, Enum):
    """Strategy that produced a resolution."""

    DIRECT = "direct"
    COMPOSITE = "composite"
    FUZZY = "fuzzy"
    LINK_TABLE = "link_table"


class ResolutionResult(BaseModel):
    """Result of resolving one query."""

    id: str | None = None
    display_name: str
    entity_type: EntityKind
    confidence: float = Field(ge=0.0, le=1.0)
    method: ResolutionMethod
    # Set only on batch items that failed
    error: str | None = None

    @property
    def resolved(self) -> bool:
        return self.id is not None


class Suggestion(BaseModel):
    """Ranked "did you mean" candidate."""

    id: str
    display_name: str
    confidence: float


def coerce_kind(kind: EntityKind | str) -> EntityKind:
    """Accept an EntityKind or its string value."""
    if isinstance(kind, EntityKind):
        return kind
    try:
        return EntityKind(str(kind).lower())
    except ValueError:
        valid = ", ".join(k.value for k in EntityKind)
        raise InvalidQueryError(
            f"Unknown entity type {kind!r}; expected one of: {valid}",
            details={"entity_type": kind},
        ) from None


def prefilter_tokens(normalized_query: str) -> list[str]:
    """Tokens sent to the store-side name prefilter."""
    tokens = tokenize(normalized_query)
    selective = [t for t in tokens if len(t) >= MIN_PREFILTER_TOKEN_LENGTH]
    return selective or tokens


class EntityResolver:
    """Resolves raw identifiers against one catalog store.

    Each instance owns its cache; nothing is shared between resolvers.
    """

    def __init__(
        self,
        store: CatalogStore,
        cache: ResolutionCache | None = None,
        fuzzy_threshold: float | None = None,
        batch_limit: int | None = None,
        batch_concurrency: int | None = None,
        prefilter_limit: int | None = None,
        candidate_pool: int | None = None,
    ):
        """Initialize the resolver.

        Args:
            store: Catalog store to resolve against
            cache: Resolution cache (a private in-memory cache if omitted)
            fuzzy_threshold: Default minimum similarity for fuzzy matches
            batch_limit: Maximum queries per batch
            batch_concurrency: Concurrent resolutions within a batch
            prefilter_limit: Rows requested from the store prefilter
            candidate_pool: Candidates scored exactly after the rapidfuzz shortlist
        """
        settings = get_settings()
        self.store = store
        self.cache = cache or ResolutionCache()
        self.fuzzy_threshold = (
            fuzzy_threshold
            if fuzzy_threshold is not None
            else settings.resolution_fuzzy_threshold
        )
        self.batch_limit = batch_limit or settings.resolution_batch_limit
        self.batch_concurrency = batch_concurrency or settings.resolution_batch_concurrency
        self.prefilter_limit = prefilter_limit or settings.resolution_prefilter_limit
        self.candidate_pool = candidate_pool or settings.resolution_fuzzy_candidate_pool

    def _threshold(self, fuzzy_threshold: float | None) -> float:
        threshold = self.fuzzy_threshold if fuzzy_threshold is None else fuzzy_threshold
        if not 0.0 <= threshold <= 1.0:
            raise InvalidQueryError(
                f"fuzzy_threshold must be between 0 and 1, got {threshold}",
                details={"fuzzy_threshold": threshold},
            )
        return threshold

    async def resolve(
        self,
        query: str,
        kind: EntityKind | str,
        fuzzy_threshold: float | None = None,
        use_cache: bool = True,
    ) -> ResolutionResult:
        """Resolve a query to a canonical entity.

        Args:
            query: Raw identifier or name
            kind: Entity kind to search
            fuzzy_threshold: Override of the default fuzzy threshold
            use_cache: Read and write the resolution cache

        Returns:
            Resolution result; a miss has ``id`` None and confidence 0

        Raises:
            InvalidQueryError: Empty query, unknown kind or bad threshold
            StoreUnavailableError: The store failed
        """
        kind = coerce_kind(kind)
        threshold = self._threshold(fuzzy_threshold)
        normalized = normalize_name(query)
        if not normalized:
            raise InvalidQueryError("Identifier must not be empty")

        if use_cache:
            cached = await self.cache.get(normalized, kind.value, threshold)
            if cached is not None:
                result = ResolutionResult.model_validate(cached)
                log_resolution_event(
                    result.method.value, query, kind.value, result.id,
                    result.confidence, cached=True,
                )
                return result

        result = await self._resolve_uncached(query, normalized, kind, threshold)

        if use_cache:
            await self.cache.set(
                normalized, kind.value, threshold, result.model_dump(mode="json")
            )

        log_resolution_event(
            result.method.value if result.resolved else "miss",
            query, kind.value, result.id, result.confidence,
        )
        return result

    async def _resolve_uncached(
        self,
        query: str,
        normalized: str,
        kind: EntityKind,
        threshold: float,
    ) -> ResolutionResult:
        # 1. Direct
        entity = await self.store.get_entity(kind, query.strip())
        if entity is not None:
            return self._result(entity, DIRECT_CONFIDENCE, ResolutionMethod.DIRECT)

        # 2. Composite key
        matches = await self.store.find_by_normalized_name(kind, normalized)
        if matches:
            if len(matches) > 1:
                logger.debug(
                    f"Composite key {normalized!r} matched {len(matches)} rows",
                    extra={"entity_type": kind.value, "ids": [m.id for m in matches]},
                )
            best = min(matches, key=lambda e: e.id)
            return self._result(best, COMPOSITE_CONFIDENCE, ResolutionMethod.COMPOSITE)

        # 3. Fuzzy
        scored = await self._best_fuzzy_match(kind, normalized)
        if scored is not None:
            candidate, score = scored
            if score >= threshold:
                return self._result(
                    candidate,
                    fuzzy_confidence(score, threshold),
                    ResolutionMethod.FUZZY,
                )

        # 4. Link-table fallback
        linked = await self._link_table_match(kind, normalized)
        if linked is not None:
            return self._result(linked, LINK_TABLE_CONFIDENCE, ResolutionMethod.LINK_TABLE)

        # 5. Miss
        return ResolutionResult(
            id=None,
            display_name=query,
            entity_type=kind,
            confidence=0.0,
            method=ResolutionMethod.FUZZY,
        )

    def _result(
        self, entity: Entity, confidence: float, method: ResolutionMethod
    ) -> ResolutionResult:
        return ResolutionResult(
            id=entity.id,
            display_name=entity.display_name,
            entity_type=entity.entity_type,
            confidence=confidence,
            method=method,
        )

    async def _fuzzy_candidates(self, kind: EntityKind, normalized: str) -> list[Entity]:
        """Prefiltered candidates, shortlisted with rapidfuzz when the pool is large.

        Shortlisted candidates keep their store order so ties stay
        deterministic.
        """
        candidates = await self.store.find_name_candidates(
            kind,
            prefilter_tokens(normalized),
            self.prefilter_limit,
            normalized_query=normalized,
        )
        if len(candidates) <= self.candidate_pool:
            return candidates

        names = [normalize_name(c.display_name) for c in candidates]
        shortlisted = process.extract(
            normalized,
            names,
            scorer=fuzz.token_set_ratio,
            limit=self.candidate_pool,
        )
        indices = sorted(idx for _, _, idx in shortlisted)
        return [candidates[i] for i in indices]

    async def _best_fuzzy_match(
        self, kind: EntityKind, normalized: str
    ) -> tuple[Entity, float] | None:
        best: Entity | None = None
        best_score = 0.0
        for candidate in await self._fuzzy_candidates(kind, normalized):
            score = similarity_score(normalized, candidate.display_name)
            # Strict comparison: the first candidate wins ties
            if score > best_score:
                best, best_score = candidate, score
        if best is None:
            return None
        return best, best_score

    async def _link_table_match(self, kind: EntityKind, normalized: str) -> Entity | None:
        tokens = tokenize(normalized)
        if kind == EntityKind.COLLEGE:
            entity_id = await self.store.find_college_by_link_key(tokens)
        elif kind == EntityKind.COURSE:
            entity_id = await self.store.find_course_by_link_name(tokens)
        else:
            return None

        if entity_id is None:
            return None
        # A link row pointing at a deleted entity is not a match
        return await self.store.get_entity(kind, entity_id)

    # =========================
    # Batch and suggestions
    # =========================

    async def resolve_batch(
        self,
        queries: list[str],
        kind: EntityKind | str,
        fuzzy_threshold: float | None = None,
        use_cache: bool = True,
    ) -> dict[str, ResolutionResult]:
        """Resolve many queries concurrently.

        Duplicate queries are resolved once. A failing item yields a
        zero-confidence result carrying ``error``; it never fails the batch.

        Raises:
            InvalidQueryError: More queries than the batch limit, unknown
                kind or bad threshold
        """
        if len(queries) > self.batch_limit:
            raise InvalidQueryError(
                f"Batch size {len(queries)} exceeds limit of {self.batch_limit}",
                details={"limit": self.batch_limit, "received": len(queries)},
            )
        kind = coerce_kind(kind)
        threshold = self._threshold(fuzzy_threshold)

        distinct = list(dict.fromkeys(queries))
        semaphore = asyncio.Semaphore(self.batch_concurrency)

        async def run(query: str) -> ResolutionResult:
            async with semaphore:
                return await self.resolve(query, kind, threshold, use_cache)

        outcomes = await asyncio.gather(
            *(run(query) for query in distinct),
            return_exceptions=True,
        )

        results: dict[str, ResolutionResult] = {}
        for query, outcome in zip(distinct, outcomes):
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                # Cancellation and interpreter exits are not per-item failures
                raise outcome
            if isinstance(outcome, Exception):
                logger.warning(
                    f"Batch resolution failed for {query!r}: {outcome}",
                    extra={"entity_type": kind.value, "error_type": type(outcome).__name__},
                )
                results[query] = ResolutionResult(
                    id=None,
                    display_name=query,
                    entity_type=kind,
                    confidence=0.0,
                    method=ResolutionMethod.FUZZY,
                    error=str(outcome),
                )
            else:
                results[query] = outcome

        resolved = sum(1 for r in results.values() if r.resolved)
        logger.info(
            f"Resolved {resolved}/{len(results)} batch queries",
            extra={"entity_type": kind.value, "total": len(results), "resolved": resolved},
        )
        return results

    async def suggest(
        self,
        query: str,
        kind: EntityKind | str,
        limit: int = 5,
        min_score: float = 0.5,
    ) -> list[Suggestion]:
        """Ranked near matches for a query that may not resolve.

        Args:
            query: Raw name fragment
            kind: Entity kind to search
            limit: Maximum suggestions
            min_score: Minimum similarity score to include

        Returns:
            Suggestions, best first
        """
        kind = coerce_kind(kind)
        normalized = normalize_name(query)
        if not normalized:
            return []

        scored = [
            (candidate, similarity_score(normalized, candidate.display_name))
            for candidate in await self._fuzzy_candidates(kind, normalized)
        ]
        scored = [(c, s) for c, s in scored if s >= min_score]
        scored.sort(key=lambda pair: pair[1], reverse=True)

        return [
            Suggestion(id=c.id, display_name=c.display_name, confidence=round(s, 3))
            for c, s in scored[:limit]
        ]

    async def invalidate(self, kind: EntityKind | str | None = None) -> int:
        """Evict cached resolutions after entities of ``kind`` were renamed."""
        return await self.cache.invalidate(coerce_kind(kind).value if kind else None)
