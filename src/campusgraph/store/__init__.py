"""Backing-store interface and adapters."""

from ..config import Settings, get_settings
from ..logging import get_context_logger
from .base import CatalogStore, CutoffOrphan, InteractionStore, LinkOrphan
from .memory import InMemoryCatalogStore
from .sql import SqlCatalogStore, SqlInteractionStore

logger = get_context_logger(__name__)


def create_stores(
    settings: Settings | None = None,
) -> tuple[CatalogStore, InteractionStore]:
    """Build the catalog and interaction stores for the configured backend."""
    settings = settings or get_settings()

    if settings.store_backend == "memory":
        if settings.memory_seed_file:
            store = InMemoryCatalogStore.from_file(settings.memory_seed_file)
        else:
            logger.warning("In-memory store started without seed data")
            store = InMemoryCatalogStore()
        return store, store

    return (
        SqlCatalogStore(timeout=settings.store_timeout_seconds),
        SqlInteractionStore(timeout=settings.store_timeout_seconds),
    )


__all__ = [
    "CatalogStore",
    "CutoffOrphan",
    "InMemoryCatalogStore",
    "InteractionStore",
    "LinkOrphan",
    "SqlCatalogStore",
    "SqlInteractionStore",
    "create_stores",
]
