"""Unit tests for EntityResolver.

Covers the strategy order, the resolution cache, batch behavior and
suggestions against the seeded in-memory catalog.

Run with: pytest tests/unit/test_resolver.py -v
"""

import pytest

from campusgraph.cache import InMemoryCache, ResolutionCache
from campusgraph.errors import InvalidQueryError, StoreUnavailableError
from campusgraph.models import College, EntityKind
from campusgraph.resolution import EntityResolver, ResolutionMethod
from campusgraph.resolution.resolver import coerce_kind, prefilter_tokens
from campusgraph.store import InMemoryCatalogStore


@pytest.fixture
def resolver(store, clock) -> EntityResolver:
    cache = ResolutionCache(InMemoryCache(clock), ttl=900, negative_ttl=120)
    return EntityResolver(store, cache, fuzzy_threshold=0.7)


class TestHelpers:
    """Tests for kind coercion and prefilter token selection."""

    def test_coerce_kind_accepts_strings(self):
        assert coerce_kind("College") == EntityKind.COLLEGE
        assert coerce_kind(EntityKind.REGION) == EntityKind.REGION

    def test_coerce_kind_rejects_unknown(self):
        with pytest.raises(InvalidQueryError):
            coerce_kind("university")

    def test_prefilter_drops_short_tokens(self):
        assert prefilter_tokens("a j institute") == ["institute"]

    def test_prefilter_keeps_short_tokens_when_nothing_else(self):
        assert prefilter_tokens("a j") == ["a", "j"]


class TestStrategies:
    """Tests for the direct, composite, fuzzy and link-table strategies."""

    @pytest.mark.asyncio
    async def test_direct_id(self, resolver):
        result = await resolver.resolve("MED0001", EntityKind.COLLEGE)

        assert result.id == "MED0001"
        assert result.confidence == 1.0
        assert result.method == ResolutionMethod.DIRECT
        assert result.display_name == "A J INSTITUTE OF MEDICAL SCIENCES"

    @pytest.mark.asyncio
    async def test_composite_name(self, resolver):
        result = await resolver.resolve("  a j institute   of medical SCIENCES", "college")

        assert result.id == "MED0001"
        assert result.confidence == 0.95
        assert result.method == ResolutionMethod.COMPOSITE

    @pytest.mark.asyncio
    async def test_composite_picks_lowest_id(self, resolver):
        # ENG0004 and ENG0005 normalize to the same name
        result = await resolver.resolve("Government Engineering College", "college")

        assert result.id == "ENG0004"
        assert result.method == ResolutionMethod.COMPOSITE

    @pytest.mark.asyncio
    async def test_fuzzy_match(self, resolver):
        result = await resolver.resolve("Institute of Medical Sciences", "college")

        assert result.id == "MED0001"
        assert result.method == ResolutionMethod.FUZZY
        # similarity 0.9 at threshold 0.7
        assert result.confidence == pytest.approx(0.7 + 0.29 * 0.2 / 0.3)

    @pytest.mark.asyncio
    async def test_fuzzy_short_prefix(self, resolver):
        result = await resolver.resolve("A J Institute", "college")

        assert result.id == "MED0001"
        assert result.method == ResolutionMethod.FUZZY
        assert result.confidence >= 0.85

    @pytest.mark.asyncio
    async def test_fuzzy_candidate_inside_query(self):
        # No query token occurs in the name; the name occurs in the query
        store = InMemoryCatalogStore()
        store.add(College(id="MED0100", display_name="NIMHANS", region="KA"))
        resolver = EntityResolver(store, fuzzy_threshold=0.7)

        result = await resolver.resolve("NIMHANS-Bengaluru", "college")

        assert result.id == "MED0100"
        assert result.method == ResolutionMethod.FUZZY
        assert result.confidence == pytest.approx(0.7 + 0.29 * 0.15 / 0.3)

    @pytest.mark.asyncio
    async def test_fuzzy_candidate_token_inside_query_token(self):
        store = InMemoryCatalogStore()
        store.add(College(id="ENG0100", display_name="Manipal Technology", region="KA"))
        resolver = EntityResolver(store, fuzzy_threshold=0.7)

        result = await resolver.resolve("manipal-institute technology-campus", "college")

        assert result.id == "ENG0100"

    @pytest.mark.asyncio
    async def test_fuzzy_tie_keeps_first_candidate(self, resolver):
        # Contained in both RV (ENG0001) and BMS (ENG0002) names
        result = await resolver.resolve("College of Engineering", "college")

        assert result.id == "ENG0001"
        assert result.method == ResolutionMethod.FUZZY

    @pytest.mark.asyncio
    async def test_fuzzy_threshold_override(self, resolver):
        result = await resolver.resolve(
            "Institute of Medical Sciences", "college", fuzzy_threshold=0.95
        )

        assert result.id is None
        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_college_link_table(self, resolver):
        result = await resolver.resolve("RV Bangalore Karnataka", "college")

        assert result.id == "ENG0001"
        assert result.confidence == 0.75
        assert result.method == ResolutionMethod.LINK_TABLE

    @pytest.mark.asyncio
    async def test_course_link_table(self, resolver):
        result = await resolver.resolve("science bms", "course")

        assert result.id == "CRS0101"
        assert result.method == ResolutionMethod.LINK_TABLE

    @pytest.mark.asyncio
    async def test_link_to_missing_entity_is_a_miss(self, resolver):
        # The only matching link row points at ENG7777, which does not exist
        result = await resolver.resolve("Ghost College", "college")

        assert result.resolved is False

    @pytest.mark.asyncio
    async def test_miss(self, resolver):
        result = await resolver.resolve("Xyzzy Quux", "college")

        assert result.id is None
        assert result.confidence == 0.0
        assert result.method == ResolutionMethod.FUZZY
        assert result.display_name == "Xyzzy Quux"

    @pytest.mark.asyncio
    async def test_cutoff_resolves_only_by_id(self, resolver):
        assert (await resolver.resolve("CUT0001", "cutoff")).id == "CUT0001"
        assert (await resolver.resolve("2025 GM cutoff", "cutoff")).id is None

    @pytest.mark.asyncio
    async def test_empty_query_rejected(self, resolver):
        with pytest.raises(InvalidQueryError):
            await resolver.resolve("   ", "college")

    @pytest.mark.asyncio
    async def test_bad_threshold_rejected(self, resolver):
        with pytest.raises(InvalidQueryError):
            await resolver.resolve("MED0001", "college", fuzzy_threshold=1.5)


class TestCaching:
    """Tests for cache reads, negative caching and invalidation."""

    @pytest.mark.asyncio
    async def test_cached_result_survives_store_change(self, resolver, store):
        first = await resolver.resolve("BMS College of Engineering", "college")
        store.remove(EntityKind.COLLEGE, "ENG0002")

        second = await resolver.resolve("BMS College of Engineering", "college")

        assert second == first

    @pytest.mark.asyncio
    async def test_use_cache_false_bypasses_cache(self, resolver, store):
        await resolver.resolve("BMS College of Engineering", "college")
        store.remove(EntityKind.COLLEGE, "ENG0002")

        result = await resolver.resolve("BMS College of Engineering", "college", use_cache=False)

        assert result.id != "ENG0002"

    @pytest.mark.asyncio
    async def test_negative_result_expires_sooner(self, resolver, store, clock):
        assert (await resolver.resolve("New Dental College", "college")).id is None
        store.add(College(id="DEN0001", display_name="New Dental College", region="KA"))

        assert (await resolver.resolve("New Dental College", "college")).id is None

        clock.advance(121)
        assert (await resolver.resolve("New Dental College", "college")).id == "DEN0001"

    @pytest.mark.asyncio
    async def test_invalidate_kind(self, resolver, store):
        await resolver.resolve("BMS College of Engineering", "college")
        store.remove(EntityKind.COLLEGE, "ENG0002")

        await resolver.invalidate(EntityKind.COLLEGE)
        result = await resolver.resolve("BMS College of Engineering", "college")

        assert result.id != "ENG0002"

    @pytest.mark.asyncio
    async def test_threshold_is_part_of_the_key(self, resolver):
        strict = await resolver.resolve(
            "Institute of Medical Sciences", "college", fuzzy_threshold=0.95
        )
        lenient = await resolver.resolve("Institute of Medical Sciences", "college")

        assert strict.id is None
        assert lenient.id == "MED0001"

    @pytest.mark.asyncio
    async def test_resolvers_do_not_share_caches(self, store, clock):
        first = EntityResolver(store, ResolutionCache(InMemoryCache(clock)))
        second = EntityResolver(store, ResolutionCache(InMemoryCache(clock)))

        await first.resolve("MED0001", "college")

        assert len(first.cache.backend) == 1
        assert len(second.cache.backend) == 0


class FailingStore(InMemoryCatalogStore):
    """Store whose id lookup fails for one identifier."""

    async def get_entity(self, kind, entity_id):
        if entity_id == "BOOM":
            raise StoreUnavailableError("connection reset")
        return await super().get_entity(kind, entity_id)


class TestBatch:
    """Tests for batch resolution."""

    @pytest.mark.asyncio
    async def test_batch_resolves_each_distinct_query(self, resolver):
        results = await resolver.resolve_batch(
            ["MED0001", "RV College of Engineering", "MED0001", "Xyzzy"],
            "college",
        )

        assert list(results) == ["MED0001", "RV College of Engineering", "Xyzzy"]
        assert results["MED0001"].method == ResolutionMethod.DIRECT
        assert results["RV College of Engineering"].id == "ENG0001"
        assert results["Xyzzy"].resolved is False

    @pytest.mark.asyncio
    async def test_batch_limit(self, store):
        resolver = EntityResolver(store, batch_limit=3)

        with pytest.raises(InvalidQueryError):
            await resolver.resolve_batch(["a", "b", "c", "d"], "college")

    @pytest.mark.asyncio
    async def test_failed_item_does_not_fail_batch(self):
        store = FailingStore()
        store.add(College(id="ENG0001", display_name="RV College of Engineering"))
        resolver = EntityResolver(store)

        results = await resolver.resolve_batch(["ENG0001", "BOOM"], "college")

        assert results["ENG0001"].id == "ENG0001"
        assert results["BOOM"].id is None
        assert results["BOOM"].confidence == 0.0
        assert "connection reset" in results["BOOM"].error

    @pytest.mark.asyncio
    async def test_single_resolve_propagates_store_errors(self):
        resolver = EntityResolver(FailingStore())

        with pytest.raises(StoreUnavailableError):
            await resolver.resolve("BOOM", "college")


class TestSuggestions:
    """Tests for "did you mean" suggestions."""

    @pytest.mark.asyncio
    async def test_suggestions_ranked(self, resolver):
        suggestions = await resolver.suggest("College of Engineering", "college")

        ids = [s.id for s in suggestions]
        assert ids[:2] == ["ENG0001", "ENG0002"]
        assert suggestions[0].confidence == 0.9
        assert all(s.confidence >= 0.5 for s in suggestions)

    @pytest.mark.asyncio
    async def test_suggestions_limit(self, resolver):
        suggestions = await resolver.suggest("engineering college", "college", limit=1)

        assert len(suggestions) == 1

    @pytest.mark.asyncio
    async def test_empty_query_has_no_suggestions(self, resolver):
        assert await resolver.suggest("  ", "college") == []
