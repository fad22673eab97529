"""Data models for campusgraph."""

from .base import EntityBase, EntityKind
from .entities import (
    ENTITY_CLASSES,
    College,
    Course,
    CrossReferenceFilters,
    CutoffRecord,
    Entity,
    Region,
    RegionCollegeLink,
    RegionCourseCollegeLink,
    UserPreferences,
    parse_entity,
)
from .relationships import GraphEdge, GraphNode, RelationshipGraph, RelationType

__all__ = [
    "ENTITY_CLASSES",
    "College",
    "Course",
    "CrossReferenceFilters",
    "CutoffRecord",
    "Entity",
    "EntityBase",
    "EntityKind",
    "GraphEdge",
    "GraphNode",
    "Region",
    "RegionCollegeLink",
    "RegionCourseCollegeLink",
    "RelationType",
    "RelationshipGraph",
    "UserPreferences",
    "parse_entity",
]
