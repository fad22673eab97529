"""Relationship graph traversal.

Builds bounded-depth graphs around a root entity with a level-synchronous
breadth-first search. Edges are not stored anywhere; each one is derived
from a foreign key or a link-table row, and every edge points in the
canonical direction for its relation:

    college -> course    offers        (courses.college_id, course link table)
    college -> cutoff    has_cutoff    (cutoff_records.college_id)
    course  -> cutoff    has_cutoff    (cutoff_records.course_id)
    college -> region    located_in    (region_college_link)
    course  -> region    available_in  (region_course_college_link)

Fetches within one level run concurrently; levels run one after another.
"""

import asyncio
import time
from typing import Any

from ..config import get_settings
from ..errors import EntityNotFoundError, InvalidQueryError
from ..logging import get_context_logger, log_graph_operation
from ..models import (
    College,
    Course,
    CutoffRecord,
    Entity,
    EntityKind,
    GraphEdge,
    GraphNode,
    Region,
    RelationshipGraph,
    RelationType,
)
from ..resolution.resolver import EntityResolver, coerce_kind
from ..store.base import CatalogStore

logger = get_context_logger(__name__)

NodeKey = tuple[EntityKind, str]

FOREIGN_KEY = {"source": "foreign_key"}
LINK_TABLE = {"source": "link_table"}


def _edge(
    source: NodeKey,
    target: NodeKey,
    relation: RelationType,
    metadata: dict[str, Any] | None = None,
) -> GraphEdge:
    return GraphEdge(
        source_type=source[0],
        source_id=source[1],
        target_type=target[0],
        target_id=target[1],
        relation=relation,
        metadata=metadata,
    )


def to_graph_node(entity: Entity, include_metadata: bool = True) -> GraphNode:
    """Convert an entity into a graph node."""
    metadata = None
    if include_metadata:
        metadata = {k: v for k, v in entity.attributes().items() if v is not None}
    return GraphNode(
        id=entity.id,
        entity_type=entity.entity_type,
        display_name=entity.display_name,
        metadata=metadata,
    )


class Expansion:
    """An entity and the edges discovered around it.

    ``neighbors`` holds entities that came back with the lookups, so the
    next level does not fetch them again.
    """

    def __init__(self, entity: Entity | None):
        self.entity = entity
        self.edges: list[tuple[NodeKey, GraphEdge]] = []
        self.neighbors: dict[NodeKey, Entity] = {}

    def add(
        self,
        neighbor: NodeKey,
        edge: GraphEdge,
        entity: Entity | None = None,
    ) -> None:
        self.edges.append((neighbor, edge))
        if entity is not None:
            self.neighbors[neighbor] = entity


class GraphTraversalEngine:
    """Breadth-first traversal over catalog relationships."""

    def __init__(
        self,
        store: CatalogStore,
        resolver: EntityResolver,
        max_depth: int | None = None,
        level_concurrency: int | None = None,
        max_path_hops: int | None = None,
    ):
        settings = get_settings()
        self.store = store
        self.resolver = resolver
        self.max_depth = max_depth if max_depth is not None else settings.graph_max_depth
        self.level_concurrency = level_concurrency or settings.graph_level_concurrency
        self.max_path_hops = max_path_hops or settings.graph_max_path_hops

    # =========================
    # Neighbor lookups
    # =========================

    async def expand(self, key: NodeKey, entity: Entity | None = None) -> Expansion:
        """Fetch an entity (unless given) and its typed edges."""
        kind, entity_id = key
        if entity is None:
            entity = await self.store.get_entity(kind, entity_id)
        expansion = Expansion(entity)
        if entity is None:
            return expansion

        if isinstance(entity, College):
            await self._expand_college(entity, expansion)
        elif isinstance(entity, Course):
            await self._expand_course(entity, expansion)
        elif isinstance(entity, CutoffRecord):
            self._expand_cutoff(entity, expansion)
        elif isinstance(entity, Region):
            await self._expand_region(entity, expansion)
        return expansion

    async def _expand_college(self, college: College, expansion: Expansion) -> None:
        me = college.key
        for course in await self.store.courses_for_college(college.id):
            expansion.add(course.key, _edge(me, course.key, RelationType.OFFERS, FOREIGN_KEY), course)
        for link in await self.store.course_links(college_id=college.id):
            target = (EntityKind.COURSE, link.course_id)
            expansion.add(target, _edge(me, target, RelationType.OFFERS, LINK_TABLE))
        for cutoff in await self.store.cutoffs_for(college_id=college.id):
            expansion.add(cutoff.key, _edge(me, cutoff.key, RelationType.HAS_CUTOFF, FOREIGN_KEY), cutoff)
        for link in await self.store.college_region_links(college_id=college.id):
            target = (EntityKind.REGION, link.region_id)
            expansion.add(target, _edge(me, target, RelationType.LOCATED_IN, LINK_TABLE))

    async def _expand_course(self, course: Course, expansion: Expansion) -> None:
        me = course.key
        if course.college_id:
            owner = (EntityKind.COLLEGE, course.college_id)
            expansion.add(owner, _edge(owner, me, RelationType.OFFERS, FOREIGN_KEY))
        for link in await self.store.course_links(course_id=course.id):
            owner = (EntityKind.COLLEGE, link.college_id)
            expansion.add(owner, _edge(owner, me, RelationType.OFFERS, LINK_TABLE))
            region = (EntityKind.REGION, link.region_id)
            expansion.add(region, _edge(me, region, RelationType.AVAILABLE_IN, LINK_TABLE))
        for cutoff in await self.store.cutoffs_for(course_id=course.id):
            expansion.add(cutoff.key, _edge(me, cutoff.key, RelationType.HAS_CUTOFF, FOREIGN_KEY), cutoff)

    def _expand_cutoff(self, cutoff: CutoffRecord, expansion: Expansion) -> None:
        me = cutoff.key
        if cutoff.college_id:
            owner = (EntityKind.COLLEGE, cutoff.college_id)
            expansion.add(owner, _edge(owner, me, RelationType.HAS_CUTOFF, FOREIGN_KEY))
        if cutoff.course_id:
            owner = (EntityKind.COURSE, cutoff.course_id)
            expansion.add(owner, _edge(owner, me, RelationType.HAS_CUTOFF, FOREIGN_KEY))

    async def _expand_region(self, region: Region, expansion: Expansion) -> None:
        me = region.key
        for link in await self.store.college_region_links(region_id=region.id):
            source = (EntityKind.COLLEGE, link.college_id)
            expansion.add(source, _edge(source, me, RelationType.LOCATED_IN, LINK_TABLE))
        for link in await self.store.course_links(region_id=region.id):
            source = (EntityKind.COURSE, link.course_id)
            expansion.add(source, _edge(source, me, RelationType.AVAILABLE_IN, LINK_TABLE))

    async def _expand_level(
        self,
        frontier: list[NodeKey],
        known: dict[NodeKey, Entity],
    ) -> list[Expansion]:
        semaphore = asyncio.Semaphore(self.level_concurrency)

        async def bounded(key: NodeKey) -> Expansion:
            async with semaphore:
                return await self.expand(key, known.get(key))

        return await asyncio.gather(*(bounded(key) for key in frontier))

    async def _resolve_root(self, entity_id: str, kind: EntityKind | str) -> Entity:
        kind = coerce_kind(kind)
        result = await self.resolver.resolve(entity_id, kind)
        if not result.resolved:
            raise EntityNotFoundError(kind.value, entity_id)
        entity = await self.store.get_entity(kind, result.id)
        if entity is None:
            raise EntityNotFoundError(kind.value, entity_id)
        return entity

    # =========================
    # Graph building
    # =========================

    async def build_graph(
        self,
        root_id: str,
        root_type: EntityKind | str,
        max_depth: int | None = None,
        include_metadata: bool = True,
        filter_types: list[EntityKind] | None = None,
    ) -> RelationshipGraph:
        """Build the relationship graph around a root entity.

        Args:
            root_id: Canonical id or name of the root
            root_type: Kind of the root entity
            max_depth: Levels to traverse (0 returns only the root)
            include_metadata: Attach entity attributes to nodes and edges
            filter_types: Entity kinds to keep as nodes; the root is always kept

        Returns:
            Relationship graph in which every edge endpoint is a node

        Raises:
            InvalidQueryError: Depth out of range
            EntityNotFoundError: The root does not resolve
        """
        depth_limit = get_settings().graph_default_depth if max_depth is None else max_depth
        if depth_limit < 0 or depth_limit > self.max_depth:
            raise InvalidQueryError(
                f"max_depth must be between 0 and {self.max_depth}, got {depth_limit}",
                details={"max_depth": depth_limit},
            )
        start = time.perf_counter()
        root = await self._resolve_root(root_id, root_type)
        allowed = {coerce_kind(k) for k in filter_types} if filter_types else None

        known: dict[NodeKey, Entity] = {root.key: root}
        visited: set[NodeKey] = {root.key}
        frontier: list[NodeKey] = [root.key]
        nodes: dict[NodeKey, GraphNode] = {}
        edges: dict[tuple, GraphEdge] = {}
        depth = 0

        while frontier:
            expansions = await self._expand_level(frontier, known)
            next_frontier: list[NodeKey] = []

            for key, expansion in zip(frontier, expansions):
                if expansion.entity is None:
                    # Dangling reference; it never becomes a node
                    continue
                if key == root.key or allowed is None or key[0] in allowed:
                    nodes[key] = to_graph_node(expansion.entity, include_metadata)
                known.update(expansion.neighbors)

                for neighbor, edge in expansion.edges:
                    if edge.key not in edges:
                        if not include_metadata:
                            edge = edge.model_copy(update={"metadata": None})
                        edges[edge.key] = edge
                    if depth < depth_limit and neighbor not in visited:
                        visited.add(neighbor)
                        next_frontier.append(neighbor)

            frontier = next_frontier
            depth += 1

        graph = RelationshipGraph(
            root_id=root.id,
            root_type=root.entity_type,
            depth=depth_limit,
            nodes=list(nodes.values()),
            edges=[
                edge for edge in edges.values()
                if edge.source_key in nodes and edge.target_key in nodes
            ],
        )
        log_graph_operation(
            "build",
            root_id=root.id,
            node_count=len(graph.nodes),
            edge_count=len(graph.edges),
            duration_ms=(time.perf_counter() - start) * 1000,
        )
        return graph

    # =========================
    # Path finding
    # =========================

    async def find_path(
        self,
        from_id: str,
        from_type: EntityKind | str,
        to_id: str,
        to_type: EntityKind | str,
    ) -> list[GraphNode] | None:
        """Shortest path between two entities, ignoring edge direction.

        Returns:
            Nodes from source to target, or None when no path exists
            within the hop limit
        """
        start = time.perf_counter()
        source = await self._resolve_root(from_id, from_type)
        target = await self._resolve_root(to_id, to_type)

        known: dict[NodeKey, Entity] = {source.key: source, target.key: target}
        parents: dict[NodeKey, NodeKey | None] = {source.key: None}
        frontier = [source.key]
        hops = 0

        while frontier and target.key not in parents and hops < self.max_path_hops:
            expansions = await self._expand_level(frontier, known)
            next_frontier: list[NodeKey] = []
            for key, expansion in zip(frontier, expansions):
                known.update(expansion.neighbors)
                for neighbor, _ in expansion.edges:
                    if neighbor not in parents:
                        parents[neighbor] = key
                        next_frontier.append(neighbor)
            frontier = next_frontier
            hops += 1

        if target.key not in parents:
            log_graph_operation(
                "path", root_id=source.id, node_count=0,
                duration_ms=(time.perf_counter() - start) * 1000,
            )
            return None

        keys: list[NodeKey] = []
        current: NodeKey | None = target.key
        while current is not None:
            keys.append(current)
            current = parents[current]
        keys.reverse()

        path = []
        for key in keys:
            entity = known.get(key) or await self.store.get_entity(*key)
            if entity is None:
                # A dangling link on the path; it cannot be shown as a node
                return None
            path.append(to_graph_node(entity))

        log_graph_operation(
            "path",
            root_id=source.id,
            node_count=len(path),
            edge_count=len(path) - 1,
            duration_ms=(time.perf_counter() - start) * 1000,
        )
        return path
