"""
Types for the semantic and graph modules.

Plain dataclasses: these are computed on the fly and never persisted.
"""

from dataclasses import dataclass, field
from typing import List, Literal, Optional

ResolutionPath = Literal["direct", "conjugation", "phrase", "canonical", "custom"]


@dataclass(frozen=True)
class ResolvedVerb:
    """A verb extracted from text and mapped onto the taxonomy."""

    verb: str  # canonical form
    surface: str  # text as it appeared
    via: ResolutionPath
    category: Optional[str] = None

    @property
    def phrase_derived(self) -> bool:
        return self.via == "phrase"


@dataclass
class VerbCandidate:
    """Element reached from a query verb."""

    ref: str
    score: float
    verb: str
    tier: str
    via: ResolutionPath


@dataclass(frozen=True)
class SimilarityScore:
    """Combined Jaccard and entropy score for one pair."""

    score: float
    jaccard: float
    entropy_a: float
    entropy_b: float
    interpretation: str

    @property
    def entropy_delta(self) -> float:
        return abs(self.entropy_a - self.entropy_b)


@dataclass
class SimilarMatch:
    ref: str
    score: SimilarityScore


@dataclass
class RescoreResult:
    """Outcome of a similarity pass."""

    pairs_scored: int = 0
    edges_added: int = 0
    edges_removed: int = 0
    cancelled: bool = False


@dataclass(frozen=True)
class PathStep:
    """One hop of a path: source --type--> target."""

    source: str
    type: str
    target: str
    strength: float
    reversed: bool = False  # walked against the stored direction


@dataclass
class PathResult:
    """Shortest path between two elements, or a not-found result."""

    source: str
    target: str
    found: bool
    steps: List[PathStep] = field(default_factory=list)
    max_hops: int = 6
    explored: int = 0

    @property
    def hops(self) -> int:
        return len(self.steps)

    @property
    def strength(self) -> float:
        """Product of step strengths (1.0 for the empty path)."""
        total = 1.0
        for step in self.steps:
            total *= step.strength
        return total


@dataclass
class ConnectedElement:
    """Element reachable from a start element."""

    ref: str
    depth: int
    path_strength: float
    via_type: str
    parent: str


@dataclass
class RankedElement:
    """Query result entry."""

    ref: str
    score: float
    source: Literal["verb", "expansion"]
    verb: Optional[str] = None
    via_ref: Optional[str] = None
    relationship: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
