"""Relationship graph models.

Edges are derived from foreign keys and link tables, never stored; every
edge points in the canonical direction for its relation.
"""

from collections import Counter
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .base import EntityKind


class RelationType(str, Enum):
    """Types of relationships between entities."""

    OFFERS = "offers"  # college -> course
    HAS_CUTOFF = "has_cutoff"  # college/course -> cutoff
    LOCATED_IN = "located_in"  # college -> region
    AVAILABLE_IN = "available_in"  # course -> region


class GraphNode(BaseModel):
    """Entity node in a relationship graph."""

    id: str
    entity_type: EntityKind
    display_name: str
    metadata: dict[str, Any] | None = None

    @property
    def key(self) -> tuple[EntityKind, str]:
        return (self.entity_type, self.id)


class GraphEdge(BaseModel):
    """Typed edge between two graph nodes."""

    source_type: EntityKind = Field(exclude=True)
    source_id: str = Field(..., alias="from")
    target_type: EntityKind = Field(exclude=True)
    target_id: str = Field(..., alias="to")
    relation: RelationType
    metadata: dict[str, Any] | None = None

    model_config = ConfigDict(populate_by_name=True)

    @property
    def key(self) -> tuple[str, str, RelationType]:
        """Deduplication key."""
        return (self.source_id, self.target_id, self.relation)

    @property
    def source_key(self) -> tuple[EntityKind, str]:
        return (self.source_type, self.source_id)

    @property
    def target_key(self) -> tuple[EntityKind, str]:
        return (self.target_type, self.target_id)


class RelationshipGraph(BaseModel):
    """Bounded-depth graph built around a root entity."""

    root_id: str
    root_type: EntityKind
    depth: int
    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)

    def stats(self) -> dict[str, Any]:
        """Summary counts for API responses."""
        by_type = Counter(node.entity_type.value for node in self.nodes)
        return {
            "totalNodes": len(self.nodes),
            "totalEdges": len(self.edges),
            "nodesByType": dict(by_type),
        }

    def neighbors(self, entity_type: EntityKind, entity_id: str) -> set[tuple[EntityKind, str]]:
        """Keys of nodes adjacent to the given node, ignoring direction."""
        key = (entity_type, entity_id)
        found: set[tuple[EntityKind, str]] = set()
        for edge in self.edges:
            if edge.source_key == key:
                found.add(edge.target_key)
            elif edge.target_key == key:
                found.add(edge.source_key)
        return found
