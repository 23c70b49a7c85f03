"""
Edge insertion and removal with mirrored writes.

Edges are stored once per direction on the owning entry. Inserting an edge
whose type declares an inverse also writes the inverse edge on the target,
so traversal never has to scan incoming edges.
"""

from typing import Callable, Optional

from capindex.core.exceptions import NotFoundError
from capindex.index.schema import SchemaRegistry
from capindex.models.element import ElementEntry, RelationshipEdge
from capindex.models.index import CapabilityIndex


def _entry_or_raise(index: CapabilityIndex, ref: str) -> ElementEntry:
    entry = index.get_entry(ref)
    if entry is None:
        raise NotFoundError(f"Element not found: {ref}", context={"ref": ref})
    return entry


def insert_edge(
    index: CapabilityIndex, registry: SchemaRegistry, source: str, edge: RelationshipEdge
) -> int:
    """
    Insert an edge and its mirror; returns the number of edges written (0-2).

    Raises:
        UnknownRelationshipTypeError: type not in the registry
        NotFoundError: source or target missing
    """
    registry.ensure_known(edge.type)
    if source == edge.target:
        return 0

    entry = _entry_or_raise(index, source)
    target_entry = _entry_or_raise(index, edge.target)

    written = 0
    forward = entry.find_edge(edge.type, edge.target)
    if forward is None:
        entry.relationships.append(edge)
        forward = edge
        written += 1

    inverse = registry.inverse_of(edge.type)
    if inverse and not target_entry.has_edge(inverse, source):
        mirror = RelationshipEdge(
            type=inverse,
            target=source,
            strength=forward.strength,
            metadata=forward.metadata.model_copy(update={"inverse": True}, deep=True),
        )
        target_entry.relationships.append(mirror)
        written += 1

    if written:
        index.mark_modified()
    return written


def remove_edge(
    index: CapabilityIndex, registry: SchemaRegistry, source: str, edge_type: str, target: str
) -> int:
    """Remove an edge and its mirror; returns the number of edges removed."""
    removed = 0
    entry = index.get_entry(source)
    if entry is not None:
        before = len(entry.relationships)
        entry.relationships = [e for e in entry.relationships if not e.same_as(edge_type, target)]
        removed += before - len(entry.relationships)

    inverse = registry.inverse_of(edge_type) if registry.is_known(edge_type) else None
    target_entry = index.get_entry(target)
    if inverse and target_entry is not None:
        before = len(target_entry.relationships)
        target_entry.relationships = [
            e for e in target_entry.relationships if not e.same_as(inverse, source)
        ]
        removed += before - len(target_entry.relationships)

    if removed:
        index.mark_modified()
    return removed


def remove_edges_where(
    index: CapabilityIndex,
    registry: SchemaRegistry,
    source: str,
    predicate: Callable[[RelationshipEdge], bool],
) -> int:
    """Remove every outgoing edge of `source` matching predicate, with mirrors."""
    entry: Optional[ElementEntry] = index.get_entry(source)
    if entry is None:
        return 0
    doomed = [(e.type, e.target) for e in entry.relationships if predicate(e)]
    return sum(remove_edge(index, registry, source, t, target) for t, target in doomed)
