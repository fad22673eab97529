"""Engine wiring for campusgraph.

Builds the store, cache, resolver and the engines on top of them from
settings, so the API and CLI share one construction path.
"""

from dataclasses import dataclass

from .cache import Clock, ResolutionCache, create_cache_backend
from .config import Settings, get_settings
from .graph import CrossReferenceEngine, GraphTraversalEngine
from .logging import get_context_logger
from .quality import IntegrityChecker
from .recommendation import CandidateSources, RecommendationEngine
from .resolution import EntityResolver
from .store import CatalogStore, InteractionStore, create_stores

logger = get_context_logger(__name__)


@dataclass
class CatalogEngine:
    """All engines bound to one store and one resolution cache."""

    store: CatalogStore
    interactions: InteractionStore | None
    resolver: EntityResolver
    graph: GraphTraversalEngine
    cross_reference: CrossReferenceEngine
    recommendations: RecommendationEngine
    integrity: IntegrityChecker

    @classmethod
    def build(
        cls,
        settings: Settings | None = None,
        store: CatalogStore | None = None,
        interactions: InteractionStore | None = None,
        clock: Clock | None = None,
    ) -> "CatalogEngine":
        """Wire the engines.

        Args:
            settings: Settings (defaults to the cached settings)
            store: Catalog store; built from settings when omitted
            interactions: Interaction store; defaults to ``store`` when it
                implements both interfaces
            clock: Clock shared by the cache and the trending signal
        """
        settings = settings or get_settings()
        clock = clock or Clock()

        if store is None:
            store, interactions = create_stores(settings)
        elif interactions is None and isinstance(store, InteractionStore):
            interactions = store

        cache = ResolutionCache(
            create_cache_backend(settings, clock=clock),
            ttl=settings.resolution_cache_ttl_seconds,
            negative_ttl=settings.resolution_negative_cache_ttl_seconds,
        )
        resolver = EntityResolver(store, cache, fuzzy_threshold=settings.resolution_fuzzy_threshold)
        graph = GraphTraversalEngine(
            store,
            resolver,
            max_depth=settings.graph_max_depth,
            level_concurrency=settings.graph_level_concurrency,
            max_path_hops=settings.graph_max_path_hops,
        )
        sources = CandidateSources(
            store,
            interactions,
            graph,
            clock=clock,
            trending_window_days=settings.recommendation_trending_window_days,
        )

        logger.info(
            "Catalog engine ready",
            extra={
                "store_backend": type(store).__name__,
                "cache_backend": settings.cache_backend,
            },
        )
        return cls(
            store=store,
            interactions=interactions,
            resolver=resolver,
            graph=graph,
            cross_reference=CrossReferenceEngine(store),
            recommendations=RecommendationEngine(
                sources, clamp_scores=settings.recommendation_clamp_scores
            ),
            integrity=IntegrityChecker(store, resolver),
        )

    async def close(self) -> None:
        await self.resolver.cache.backend.close()
