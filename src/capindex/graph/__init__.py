"""
Relationship graph: edge bookkeeping, discovery and traversal.
"""

from capindex.graph.edges import insert_edge, remove_edge, remove_edges_where
from capindex.graph.relationships import (
    RelationshipManager,
    RelationshipPattern,
    DEFAULT_PATTERNS,
)

__all__ = [
    "insert_edge",
    "remove_edge",
    "remove_edges_where",
    "RelationshipManager",
    "RelationshipPattern",
    "DEFAULT_PATTERNS",
]
