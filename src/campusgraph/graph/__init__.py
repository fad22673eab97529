"""Relationship graph traversal and cross-reference queries."""

from .cross_reference import CrossReferenceEngine, CrossReferenceResult
from .traversal import GraphTraversalEngine, to_graph_node

__all__ = [
    "CrossReferenceEngine",
    "CrossReferenceResult",
    "GraphTraversalEngine",
    "to_graph_node",
]
