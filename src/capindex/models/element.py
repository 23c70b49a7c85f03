"""
Element entries and the derived data attached to them.

An element is identified by a qualified reference "<type>:<id>", because ids
are only unique within their element type.
"""

from typing import Any, Dict, Iterator, List, Optional, Tuple

from pydantic import Field, field_validator

from capindex.models.base import DocumentModel

REF_SEPARATOR = ":"


def format_element_ref(element_type: str, element_id: str) -> str:
    """Build the qualified reference used in edges and query results."""
    return f"{element_type}{REF_SEPARATOR}{element_id}"


def parse_element_ref(ref: str) -> Tuple[str, str]:
    """
    Split a qualified reference into (type, id).

    Raises:
        ValueError: ref has no type prefix
    """
    element_type, sep, element_id = ref.partition(REF_SEPARATOR)
    if not sep or not element_type or not element_id:
        raise ValueError(f"Invalid element reference: {ref!r} (expected 'type:id')")
    return element_type, element_id


class TokenCache(DocumentModel):
    """
    Cached similarity inputs for one element.

    Valid while `digest` matches the digest of the element's descriptive text.
    """

    digest: str
    tokens: List[str] = Field(default_factory=list)
    frequencies: Dict[str, int] = Field(default_factory=dict)
    entropy: float = 0.0


class ActionTrigger(DocumentModel):
    """Verb-to-element mapping with a confidence tier."""

    verb: str
    tier: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    derived_from: Optional[str] = Field(None, description="Parent tier for synonym-derived triggers")
    source_verb: Optional[str] = Field(None, description="Verb a synonym was derived from")


class EdgeMetadata(DocumentModel):
    """
    How an edge was discovered.

    Evidence keys (pattern, jaccard, entropy_delta, verb, category,
    interpretation) are stored as extras so that new kinds of evidence need
    no model change.
    """

    discovery_method: str = "manual"
    inverse: bool = False


class RelationshipEdge(DocumentModel):
    """Outgoing typed edge; the source is the entry that owns it."""

    type: str
    target: str
    strength: float = Field(..., ge=0.0, le=1.0)
    metadata: EdgeMetadata = Field(default_factory=EdgeMetadata)

    @field_validator("type", "target")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be blank")
        return v

    def same_as(self, edge_type: str, target: str) -> bool:
        """Structural equality for a fixed source: (type, target)."""
        return self.type == edge_type and self.target == target


class ElementEntry(DocumentModel):
    """Indexed view of one element: descriptive fields plus derived data."""

    id: str
    name: str = ""
    description: str = ""
    keywords: List[str] = Field(default_factory=list)
    declared_verbs: List[str] = Field(default_factory=list)
    custom: Dict[str, Any] = Field(default_factory=dict)
    actions: List[ActionTrigger] = Field(default_factory=list)
    relationships: List[RelationshipEdge] = Field(default_factory=list)
    cache: Optional[TokenCache] = None

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def find_edge(self, edge_type: str, target: str) -> Optional[RelationshipEdge]:
        for edge in self.relationships:
            if edge.same_as(edge_type, target):
                return edge
        return None

    def has_edge(self, edge_type: str, target: str) -> bool:
        return self.find_edge(edge_type, target) is not None

    def custom_text(self) -> List[str]:
        """All string leaves of the custom bag, depth first."""
        return list(_string_leaves(self.custom))

    def descriptive_text(self) -> str:
        """Text used for similarity scoring and pattern discovery."""
        parts = [self.display_name, self.description, " ".join(self.keywords)]
        parts.extend(self.custom_text())
        return "\n".join(p for p in parts if p)


def _string_leaves(value: Any) -> Iterator[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _string_leaves(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _string_leaves(item)
