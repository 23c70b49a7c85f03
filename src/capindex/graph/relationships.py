"""
Relationship discovery and graph traversal.

Discovery runs two independent methods per element:

- pattern: phrases such as "uses X" or "prerequisite for X" in the
  element's text, resolved to another element by name
- verb: elements sharing a verb get an edge typed by the verb's category

Each element and each method is isolated: a failure is recorded in the
DiscoveryReport and the batch continues. Traversal is breadth-first with a
visited set, so cycles always terminate.
"""

import asyncio
import re
from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Pattern, Sequence, Set, Tuple

from capindex.core.exceptions import DiscoveryFailure, UnknownRelationshipTypeError, ValidationError
from capindex.core.gate import ReadinessGate
from capindex.core.logging import logger
from capindex.core.secure_config import Settings
from capindex.core.tracing import MetricsCollector, tracer
from capindex.graph.edges import insert_edge, remove_edges_where
from capindex.index.schema import SchemaRegistry
from capindex.models.element import EdgeMetadata, ElementEntry, RelationshipEdge
from capindex.models.index import CapabilityIndex
from capindex.models.reports import DiscoveryReport, RelationshipStats, RelationshipTypeStats
from capindex.models.semantic_types import ConnectedElement, PathResult, PathStep
from capindex.semantic.verbs import VerbTriggerManager

# Up to four words after the trigger phrase
_TARGET = r"(?P<target>[\w-]+(?:\s+[\w-]+){0,3})"
_TARGET_LAZY = r"(?P<target>[\w-]+(?:\s+[\w-]+){0,3}?)"
_LEADING_ARTICLES = frozenset({"the", "a", "an", "this", "that"})

VERB_CATEGORY_EDGES: Dict[str, str] = {
    "debugging": "helps_debug",
    "creation": "complements",
    "explanation": "supports",
    "analysis": "complements",
}
DEFAULT_VERB_EDGE = "similar_to"

DISCOVERED_METHODS = ("pattern", "verb")


@dataclass(frozen=True)
class RelationshipPattern:
    """Text pattern producing an edge of `type` to the captured target."""

    type: str
    regex: Pattern[str]
    confidence: float

    @classmethod
    def compile(cls, rel_type: str, pattern: str, confidence: float) -> "RelationshipPattern":
        return cls(rel_type, re.compile(pattern, re.IGNORECASE), confidence)


DEFAULT_PATTERNS: Tuple[RelationshipPattern, ...] = (
    RelationshipPattern.compile("uses", rf"\buses?\s+{_TARGET}", 0.8),
    RelationshipPattern.compile("requires", rf"\brequires?\s+{_TARGET}", 0.7),
    RelationshipPattern.compile("depends_on", rf"\bdepends?\s+on\s+{_TARGET}", 0.7),
    RelationshipPattern.compile("prerequisite_for", rf"\bprerequisite\s+for\s+{_TARGET}", 0.9),
    RelationshipPattern.compile("depends_on", rf"\bafter\s+{_TARGET}", 0.6),
    RelationshipPattern.compile("helps_debug", rf"\bdebug(?:s|ging)?\s+{_TARGET}", 0.7),
    RelationshipPattern.compile("helps_debug", rf"\btroubleshoot(?:s|ing)?\s+{_TARGET}", 0.7),
    RelationshipPattern.compile("supports", rf"\bsupports?\s+{_TARGET}", 0.8),
    RelationshipPattern.compile("complements", rf"\bcomplements?\s+{_TARGET}", 0.8),
    RelationshipPattern.compile("contradicts", rf"\bcontradicts?\s+{_TARGET}", 0.9),
    RelationshipPattern.compile("example_of", rf"\bexample\s+of\s+{_TARGET}", 0.9),
    RelationshipPattern.compile("has_example", rf"\bsee\s+{_TARGET_LAZY}\s+for\s+example", 0.7),
)


def normalize_name(value: str) -> str:
    """Lower-case with '-', '_' and whitespace removed."""
    return re.sub(r"[-_\s]+", "", value.lower())


def compile_custom_patterns(raw_patterns: Iterable[Mapping[str, Any]]) -> List[RelationshipPattern]:
    """
    Compile configured patterns ({type, pattern, confidence}).

    Invalid entries are logged and skipped.
    """
    compiled = []
    for raw in raw_patterns:
        try:
            if not isinstance(raw, Mapping):
                raise ValidationError("custom pattern must be a mapping")
            rel_type = str(raw["type"])
            confidence = float(raw.get("confidence", 0.7))
            if not 0.0 <= confidence <= 1.0:
                raise ValidationError(f"confidence {confidence} out of range")
            pattern = RelationshipPattern.compile(rel_type, str(raw["pattern"]), confidence)
            if pattern.regex.groups < 1:
                raise ValidationError("pattern needs a capture group for the target")
            compiled.append(pattern)
        except (KeyError, TypeError, ValueError, re.error, ValidationError) as e:
            logger.warning("Invalid custom relationship pattern skipped", pattern=repr(raw), error=str(e))
    return compiled


Candidate = Tuple[str, RelationshipEdge]  # (method, edge)


class RelationshipManager:
    """
    Discovers typed relationships and answers graph queries.

    Edge writes go through insert_edge(), which checks the type registry,
    refuses structural duplicates and writes the mirrored inverse edge.
    """

    def __init__(
        self,
        registry: SchemaRegistry,
        verb_triggers: Optional[VerbTriggerManager] = None,
        gate: Optional[ReadinessGate] = None,
        min_confidence: float = 0.5,
        max_relationships_per_element: int = 20,
        verb_strength_factor: float = 0.7,
        max_hops: int = 6,
        custom_patterns: Iterable[Mapping[str, Any]] = (),
        gate_timeout: Optional[float] = 30.0,
    ) -> None:
        self.registry = registry
        self.verb_triggers = verb_triggers
        self.gate = gate
        self.gate_timeout = gate_timeout
        self.min_confidence = min_confidence
        self.max_relationships_per_element = max_relationships_per_element
        self.verb_strength_factor = verb_strength_factor
        self.max_hops = max_hops
        self.patterns: List[RelationshipPattern] = list(DEFAULT_PATTERNS) + compile_custom_patterns(
            custom_patterns
        )
        self.metrics = MetricsCollector()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        registry: SchemaRegistry,
        verb_triggers: Optional[VerbTriggerManager] = None,
        gate: Optional[ReadinessGate] = None,
    ) -> "RelationshipManager":
        return cls(
            registry=registry,
            verb_triggers=verb_triggers,
            gate=gate,
            min_confidence=settings.get("relationships.min_confidence", 0.5),
            max_relationships_per_element=settings.get("relationships.max_relationships_per_element", 20),
            verb_strength_factor=settings.get("relationships.verb_strength_factor", 0.7),
            max_hops=settings.get("relationships.max_hops", 6),
            custom_patterns=settings.get("relationships.custom_patterns") or (),
            gate_timeout=settings.get("gate.timeout_seconds", 30.0),
        )

    # ------------------------------------------------------------------ #
    # Edge writes
    # ------------------------------------------------------------------ #

    def add_edge(self, index: CapabilityIndex, source: str, edge: RelationshipEdge) -> int:
        """
        Insert an edge plus its mirror; returns edges written.

        Raises:
            UnknownRelationshipTypeError: type not registered
            NotFoundError: source or target missing
        """
        written = insert_edge(index, self.registry, source, edge)
        if written:
            self.metrics.increment("graph.edges.added", written)
        return written

    def remove_edges_to(self, index: CapabilityIndex, ref: str) -> int:
        """Drop every edge pointing at `ref` and every edge it owns."""
        removed = 0
        for other_ref, entry in index.iter_entries():
            before = len(entry.relationships)
            if other_ref == ref:
                entry.relationships = []
            else:
                entry.relationships = [e for e in entry.relationships if e.target != ref]
            removed += before - len(entry.relationships)
        if removed:
            index.mark_modified()
            self.metrics.increment("graph.edges.removed", removed)
        return removed

    def clear_discovered(self, index: CapabilityIndex, ref: str) -> int:
        """Remove pattern and verb edges that `ref`'s own text produced."""
        return remove_edges_where(
            index,
            self.registry,
            ref,
            lambda e: e.metadata.discovery_method in DISCOVERED_METHODS and not e.metadata.inverse,
        )

    def clear_discovered_towards(self, index: CapabilityIndex, ref: str) -> List[str]:
        """
        Remove pattern and verb edges other elements hold towards `ref`.

        Returns the refs that lost an edge; their discovery must be run again
        to restore the edges that still hold.
        """
        affected = []
        for source, entry in index.iter_entries():
            if source == ref or not any(e.target == ref for e in entry.relationships):
                continue
            removed = remove_edges_where(
                index,
                self.registry,
                source,
                lambda e: e.target == ref
                and e.metadata.discovery_method in DISCOVERED_METHODS
                and not e.metadata.inverse,
            )
            if removed:
                affected.append(source)
        return affected

    # ------------------------------------------------------------------ #
    # Discovery
    # ------------------------------------------------------------------ #

    async def discover(
        self, index: CapabilityIndex, refs: Optional[Sequence[str]] = None
    ) -> DiscoveryReport:
        """
        Discover relationships for `refs` (default: every element).

        Waits for the readiness gate first; edges found while configuration
        is half loaded would depend on timing.

        Raises:
            ConfigurationError: gate not open within gate_timeout
        """
        if self.gate is not None:
            await self.gate.wait(self.gate_timeout)

        targets = list(refs) if refs is not None else index.refs()
        report = DiscoveryReport()
        name_map = self._name_map(index)

        with tracer.span("graph.discovery", {"elements": len(targets)}, self.metrics):
            for position, ref in enumerate(targets, start=1):
                self._discover_one(index, ref, name_map, report)
                if position % 50 == 0:
                    await asyncio.sleep(0)

        self.metrics.increment("graph.edges.added", report.edges_added)
        logger.info(
            "Relationship discovery completed",
            elements=report.elements_processed,
            edges_added=report.edges_added,
            failures=len(report.failures),
        )
        return report

    def _discover_one(
        self,
        index: CapabilityIndex,
        ref: str,
        name_map: Dict[str, str],
        report: DiscoveryReport,
    ) -> None:
        entry = index.get_entry(ref)
        if entry is None:
            report.failures.append(
                DiscoveryFailure(
                    element=ref, method="lookup", error_type="NotFoundError", message="element not in index"
                )
            )
            return

        report.elements_processed += 1
        candidates: List[Candidate] = []

        try:
            candidates.extend(("pattern", e) for e in self.pattern_candidates(ref, entry, name_map))
        except Exception as e:
            report.failures.append(DiscoveryFailure.from_exception(ref, "pattern", e))
            logger.warning("Pattern discovery failed", element=ref, error=str(e))

        try:
            candidates.extend(("verb", e) for e in self.verb_candidates(index, ref))
        except Exception as e:
            report.failures.append(DiscoveryFailure.from_exception(ref, "verb", e))
            logger.warning("Verb discovery failed", element=ref, error=str(e))

        for method, edge in self._select(candidates):
            try:
                written = insert_edge(index, self.registry, ref, edge)
            except UnknownRelationshipTypeError as e:
                report.skipped_unknown_types += 1
                logger.warning("Edge skipped", element=ref, type=edge.type, error=e.message)
                continue
            report.count(method, written)

    def _select(self, candidates: List[Candidate]) -> List[Candidate]:
        """Confidence filter, one edge per (type, target), strongest first, capped."""
        best: Dict[Tuple[str, str], Candidate] = {}
        for method, edge in candidates:
            if edge.strength < self.min_confidence:
                continue
            key = (edge.type, edge.target)
            current = best.get(key)
            if current is None or edge.strength > current[1].strength:
                best[key] = (method, edge)

        ranked = sorted(best.values(), key=lambda c: (-c[1].strength, c[1].type, c[1].target))
        return ranked[: self.max_relationships_per_element]

    def _name_map(self, index: CapabilityIndex) -> Dict[str, str]:
        """Normalized id and display name -> ref; ids win over names."""
        by_id: Dict[str, str] = {}
        by_name: Dict[str, str] = {}
        for ref in sorted(index.refs()):
            entry = index.get_entry(ref)
            if entry is None:
                continue
            by_id.setdefault(normalize_name(entry.id), ref)
            if entry.name:
                by_name.setdefault(normalize_name(entry.name), ref)
        return {**by_name, **by_id}

    def resolve_target(self, phrase: str, name_map: Mapping[str, str]) -> Optional[str]:
        """Longest prefix of the captured phrase that names an element."""
        words = phrase.split()
        while words and words[0].lower() in _LEADING_ARTICLES:
            words = words[1:]
        for size in range(len(words), 0, -1):
            ref = name_map.get(normalize_name("".join(words[:size])))
            if ref:
                return ref
        return None

    def pattern_candidates(
        self, ref: str, entry: ElementEntry, name_map: Mapping[str, str]
    ) -> List[RelationshipEdge]:
        text = entry.descriptive_text()
        edges = []
        for pattern in self.patterns:
            for match in pattern.regex.finditer(text):
                phrase = match.group("target") if "target" in pattern.regex.groupindex else match.group(1)
                target = self.resolve_target(phrase or "", name_map)
                if target is None or target == ref:
                    continue
                edges.append(
                    RelationshipEdge(
                        type=pattern.type,
                        target=target,
                        strength=pattern.confidence,
                        metadata=EdgeMetadata(
                            discovery_method="pattern",
                            pattern=pattern.regex.pattern,
                            matched=match.group(0),
                        ),
                    )
                )
        return edges

    def verb_candidates(self, index: CapabilityIndex, ref: str) -> List[RelationshipEdge]:
        if self.verb_triggers is None:
            return []

        edges = []
        for trigger in self.verb_triggers.triggers_for(index, ref):
            category = self.verb_triggers.verb_category(trigger.verb)
            rel_type = VERB_CATEGORY_EDGES.get(category or "", DEFAULT_VERB_EDGE)
            for candidate in self.verb_triggers.elements_for_verb(index, trigger.verb):
                if candidate.ref == ref:
                    continue
                edges.append(
                    RelationshipEdge(
                        type=rel_type,
                        target=candidate.ref,
                        strength=round(candidate.score * self.verb_strength_factor, 4),
                        metadata=EdgeMetadata(
                            discovery_method="verb", verb=trigger.verb, category=category
                        ),
                    )
                )
        return edges

    # ------------------------------------------------------------------ #
    # Traversal
    # ------------------------------------------------------------------ #

    def _adjacency(
        self,
        index: CapabilityIndex,
        bidirectional: bool,
        relationship_types: Optional[Iterable[str]],
        min_strength: float,
    ) -> Dict[str, List[PathStep]]:
        allowed = set(relationship_types) if relationship_types else None
        adjacency: Dict[str, List[PathStep]] = {}
        for ref, entry in index.iter_entries():
            for edge in entry.relationships:
                if allowed is not None and edge.type not in allowed:
                    continue
                if edge.strength < min_strength or not index.has_entry(edge.target):
                    continue
                adjacency.setdefault(ref, []).append(
                    PathStep(source=ref, type=edge.type, target=edge.target, strength=edge.strength)
                )
                if bidirectional:
                    adjacency.setdefault(edge.target, []).append(
                        PathStep(
                            source=edge.target,
                            type=edge.type,
                            target=ref,
                            strength=edge.strength,
                            reversed=True,
                        )
                    )
        return adjacency

    def find_path(
        self,
        index: CapabilityIndex,
        from_ref: str,
        to_ref: str,
        max_hops: Optional[int] = None,
        bidirectional: bool = False,
        relationship_types: Optional[Iterable[str]] = None,
        min_strength: float = 0.0,
    ) -> PathResult:
        """
        Shortest path as an ordered list of steps.

        Unreachable within max_hops (default 6) gives found=False, never an
        exception.
        """
        hops = self.max_hops if max_hops is None else max_hops
        result = PathResult(source=from_ref, target=to_ref, found=False, max_hops=hops)

        if not index.has_entry(from_ref) or not index.has_entry(to_ref):
            return result
        if from_ref == to_ref:
            result.found = True
            return result

        adjacency = self._adjacency(index, bidirectional, relationship_types, min_strength)
        parents: Dict[str, PathStep] = {}
        depth: Dict[str, int] = {from_ref: 0}
        queue = deque([from_ref])

        while queue:
            current = queue.popleft()
            if depth[current] >= hops:
                continue
            for step in adjacency.get(current, []):
                if step.target in depth:
                    continue
                depth[step.target] = depth[current] + 1
                parents[step.target] = step
                if step.target == to_ref:
                    result.found = True
                    result.steps = self._unwind(parents, from_ref, to_ref)
                    result.explored = len(depth)
                    return result
                queue.append(step.target)

        result.explored = len(depth)
        logger.debug("No path found", source=from_ref, target=to_ref, max_hops=hops, explored=len(depth))
        return result

    @staticmethod
    def _unwind(parents: Dict[str, PathStep], start: str, end: str) -> List[PathStep]:
        steps = []
        node = end
        while node != start:
            step = parents[node]
            steps.append(step)
            node = step.source
        steps.reverse()
        return steps

    def connected_elements(
        self,
        index: CapabilityIndex,
        ref: str,
        max_depth: int = 2,
        min_strength: float = 0.0,
        relationship_types: Optional[Iterable[str]] = None,
        bidirectional: bool = False,
    ) -> List[ConnectedElement]:
        """
        Elements reachable within max_depth.

        Ordered by depth ascending, then path strength descending, then ref.
        Path strength is the product of edge strengths along the best path.
        """
        if not index.has_entry(ref) or max_depth < 1:
            return []

        adjacency = self._adjacency(index, bidirectional, relationship_types, min_strength)
        visited: Set[str] = {ref}
        frontier: Dict[str, float] = {ref: 1.0}
        found: List[ConnectedElement] = []

        for level in range(1, max_depth + 1):
            reached: Dict[str, ConnectedElement] = {}
            for node, strength in frontier.items():
                for step in adjacency.get(node, []):
                    if step.target in visited:
                        continue
                    path_strength = strength * step.strength
                    current = reached.get(step.target)
                    if current is None or path_strength > current.path_strength:
                        reached[step.target] = ConnectedElement(
                            ref=step.target,
                            depth=level,
                            path_strength=path_strength,
                            via_type=step.type,
                            parent=node,
                        )
            if not reached:
                break
            visited.update(reached)
            found.extend(reached.values())
            frontier = {target: item.path_strength for target, item in reached.items()}

        found.sort(key=lambda c: (c.depth, -c.path_strength, c.ref))
        return found

    def element_relationships(self, index: CapabilityIndex, ref: str) -> List[RelationshipEdge]:
        """Outgoing edges of an element, strongest first. Raises NotFoundError."""
        entry = index.require_entry(ref)
        return sorted(entry.relationships, key=lambda e: (-e.strength, e.type, e.target))

    # ------------------------------------------------------------------ #
    # Stats
    # ------------------------------------------------------------------ #

    def relationship_stats(self, index: CapabilityIndex) -> RelationshipStats:
        stats = RelationshipStats()
        sums: Dict[str, float] = {}

        for _, entry in index.iter_entries():
            if entry.relationships:
                stats.elements_with_relationships += 1
            for edge in entry.relationships:
                stats.total_relationships += 1
                type_stats = stats.by_type.setdefault(edge.type, RelationshipTypeStats())
                type_stats.count += 1
                sums[edge.type] = sums.get(edge.type, 0.0) + edge.strength
                method = edge.metadata.discovery_method
                stats.by_method[method] = stats.by_method.get(method, 0) + 1

        for rel_type, type_stats in stats.by_type.items():
            type_stats.mean_strength = round(sums[rel_type] / type_stats.count, 4)

        stats.by_type = dict(sorted(stats.by_type.items()))
        return stats
