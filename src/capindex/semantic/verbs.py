"""
Verb triggers: natural-language intent to ranked element candidates.

Verbs carry intent better than nouns ("debug this" vs "bug"), so each
element gets a set of ActionTriggers with a confidence tier, and queries are
answered by resolving the verbs in the query text against those triggers.
"""

import re
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from capindex.core.logging import logger
from capindex.core.secure_config import Settings
from capindex.core.tracing import MetricsCollector
from capindex.models.element import ActionTrigger, ElementEntry, format_element_ref
from capindex.models.index import CapabilityIndex
from capindex.models.semantic_types import ResolutionPath, ResolvedVerb, VerbCandidate
from capindex.semantic.taxonomy import VerbTaxonomy, normalize_verb

TIER_EXPLICIT = "explicit"
TIER_NAME = "name-based"
TIER_DESCRIPTION = "description-based"
TIER_SYNONYM = "synonym-derived"

DEFAULT_TIERS = {"explicit": 0.9, "name_based": 0.6, "description_based": 0.4}

_WORD_RE = re.compile(r"[a-z][a-z-]*")
_NAME_SPLIT_RE = re.compile(r"[^a-z]+")
_CAMEL_RE = re.compile(r"(?<=[a-z])(?=[A-Z])")

# Lower rank wins when one verb is reached several ways
_VIA_RANK: Dict[str, int] = {"direct": 0, "custom": 0, "conjugation": 1, "canonical": 2, "phrase": 3}

VerbIndex = Dict[str, List[Tuple[str, ActionTrigger]]]


def _name_words(*names: str) -> List[str]:
    words: List[str] = []
    for name in names:
        if not name:
            continue
        split = _CAMEL_RE.sub(" ", name).lower()
        words.extend(w for w in _NAME_SPLIT_RE.split(split) if w)
    return words


class VerbTriggerManager:
    """
    Builds ActionTriggers for entries and answers verb queries.

    Tier weights and the synonym multiplier come from configuration; the
    built-in values (0.9 / 0.6 / 0.4, 0.8x) are only defaults.
    """

    def __init__(
        self,
        taxonomy: VerbTaxonomy,
        tiers: Optional[Mapping[str, float]] = None,
        synonym_multiplier: float = 0.8,
        include_synonyms: bool = True,
        confidence_threshold: float = 0.3,
        max_results: int = 10,
        max_triggers_per_element: int = 50,
    ) -> None:
        self.taxonomy = taxonomy
        self.tiers = {**DEFAULT_TIERS, **(tiers or {})}
        self.synonym_multiplier = synonym_multiplier
        self.include_synonyms = include_synonyms
        self.confidence_threshold = confidence_threshold
        self.max_results = max_results
        self.max_triggers_per_element = max_triggers_per_element
        self.metrics = MetricsCollector()

        self._index_key: Optional[Tuple[int, int]] = None
        self._verb_index: VerbIndex = {}
        self._reverse_index: Dict[str, List[ActionTrigger]] = {}

    @classmethod
    def from_settings(cls, settings: Settings, taxonomy: VerbTaxonomy) -> "VerbTriggerManager":
        return cls(
            taxonomy=taxonomy,
            tiers=settings.get("verbs.tiers"),
            synonym_multiplier=settings.get("verbs.synonym_multiplier", 0.8),
            include_synonyms=settings.get("verbs.include_synonyms", True),
            confidence_threshold=settings.get("verbs.confidence_threshold", 0.3),
            max_results=settings.get("verbs.max_results", 10),
            max_triggers_per_element=settings.get("verbs.max_triggers_per_element", 50),
        )

    # ------------------------------------------------------------------ #
    # Verb extraction
    # ------------------------------------------------------------------ #

    def resolve_word(self, word: str) -> Optional[ResolvedVerb]:
        """Direct match first, then conjugation."""
        word = word.lower()
        if self.taxonomy.is_known(word):
            via: ResolutionPath = "custom" if word in self.taxonomy.custom_verbs else "direct"
            return ResolvedVerb(word, word, via, self.taxonomy.category_of(word))
        base = self.taxonomy.base_form(word)
        if base:
            return ResolvedVerb(base, word, "conjugation", self.taxonomy.category_of(base))
        return None

    def extract_verbs(self, text: str) -> List[ResolvedVerb]:
        """
        Verbs in `text`, each mapped onto the taxonomy.

        Every resolved verb also yields its category's canonical verb, so
        "troubleshoot" reaches triggers declared for "debug". A canonical
        verb reached from a phrase stays phrase-derived.
        """
        normalized = " ".join((text or "").lower().split())
        found: Dict[str, ResolvedVerb] = {}

        def offer(candidate: ResolvedVerb) -> None:
            current = found.get(candidate.verb)
            if current is None or _VIA_RANK[candidate.via] < _VIA_RANK[current.via]:
                found[candidate.verb] = candidate

        for token in _WORD_RE.findall(normalized):
            resolved = self.resolve_word(token.strip("-"))
            if resolved:
                offer(resolved)

        for phrase, verb in self.taxonomy.find_phrases(normalized):
            offer(ResolvedVerb(verb, phrase, "phrase", self.taxonomy.category_of(verb)))

        for resolved in list(found.values()):
            canonical = self.taxonomy.canonical(resolved.verb)
            if canonical and canonical != resolved.verb:
                via: ResolutionPath = "phrase" if resolved.phrase_derived else "canonical"
                offer(ResolvedVerb(canonical, resolved.surface, via, resolved.category))

        verbs = list(found.values())
        logger.debug("Extracted verbs", text=normalized[:80], verbs=[v.verb for v in verbs])
        return verbs

    def verb_category(self, verb: str) -> Optional[str]:
        verb = verb.lower()
        return self.taxonomy.category_of(self.taxonomy.base_form(verb) or verb)

    # ------------------------------------------------------------------ #
    # Trigger generation
    # ------------------------------------------------------------------ #

    def build_triggers(self, element_type: str, entry: ElementEntry) -> List[ActionTrigger]:
        """
        Derive the ActionTriggers of one entry.

        - explicit: declared verbs
        - name-based: verbs in the id or name, verb-like keywords
        - description-based: verbs in the description
        - synonym-derived: category siblings of explicit and name-based verbs

        One trigger per verb (highest confidence wins), capped at
        max_triggers_per_element.
        """
        found: Dict[str, ActionTrigger] = {}

        def offer(
            verb: str,
            tier: str,
            confidence: float,
            derived_from: Optional[str] = None,
            source_verb: Optional[str] = None,
        ) -> None:
            confidence = round(confidence, 4)
            current = found.get(verb)
            if current is not None and current.confidence >= confidence:
                return
            found[verb] = ActionTrigger(
                verb=verb,
                tier=tier,
                confidence=confidence,
                derived_from=derived_from,
                source_verb=source_verb,
            )

        for declared in entry.declared_verbs:
            verb = normalize_verb(declared)
            if verb:
                offer(self.taxonomy.base_form(verb) or verb, TIER_EXPLICIT, self.tiers["explicit"])

        for word in _name_words(entry.id, entry.name):
            base = self.taxonomy.base_form(word)
            if base:
                offer(base, TIER_NAME, self.tiers["name_based"])

        for keyword in entry.keywords:
            verb = normalize_verb(keyword)
            if verb and self.taxonomy.looks_like_verb(verb):
                offer(self.taxonomy.base_form(verb) or verb, TIER_NAME, self.tiers["name_based"])

        for word in _WORD_RE.findall(entry.description.lower()):
            base = self.taxonomy.base_form(word.strip("-"))
            if base:
                offer(base, TIER_DESCRIPTION, self.tiers["description_based"])

        if self.include_synonyms:
            parents = [t for t in found.values() if t.tier in (TIER_EXPLICIT, TIER_NAME)]
            for parent in parents:
                for sibling in self.taxonomy.siblings(parent.verb):
                    offer(
                        sibling,
                        TIER_SYNONYM,
                        parent.confidence * self.synonym_multiplier,
                        derived_from=parent.tier,
                        source_verb=parent.verb,
                    )

        triggers = sorted(found.values(), key=lambda t: (-t.confidence, t.verb))
        if len(triggers) > self.max_triggers_per_element:
            logger.warning(
                "Trigger limit exceeded for element",
                element=f"{element_type}:{entry.id}",
                found=len(triggers),
                limit=self.max_triggers_per_element,
            )
            triggers = triggers[: self.max_triggers_per_element]
        return triggers

    def apply_triggers(self, index: CapabilityIndex, element_type: str, entry: ElementEntry) -> bool:
        """Regenerate an entry's triggers in place; True when they changed."""
        triggers = self.build_triggers(element_type, entry)
        old = [t.to_document() for t in entry.actions]
        new = [t.to_document() for t in triggers]
        if old == new:
            return False
        entry.actions = triggers
        index.touch()
        return True

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #

    def _ensure_index(self, index: CapabilityIndex) -> None:
        key = (id(index), index.revision)
        if key == self._index_key:
            return

        verb_index: VerbIndex = {}
        reverse: Dict[str, List[ActionTrigger]] = {}
        for ref, entry in index.iter_entries():
            reverse[ref] = list(entry.actions)
            for trigger in entry.actions:
                verb_index.setdefault(trigger.verb, []).append((ref, trigger))

        self._verb_index = verb_index
        self._reverse_index = reverse
        self._index_key = key
        logger.debug("Verb index rebuilt", verbs=len(verb_index), revision=index.revision)

    def query(self, index: CapabilityIndex, text: str, limit: Optional[int] = None) -> List[VerbCandidate]:
        """
        Rank elements for a natural-language query.

        score = trigger confidence x (synonym_multiplier if phrase-derived else 1.0);
        an element reached through several verbs keeps its best score.
        """
        self._ensure_index(index)
        self.metrics.increment("semantic.verbs.queries")

        best: Dict[str, VerbCandidate] = {}
        for resolved in self.extract_verbs(text):
            multiplier = self.synonym_multiplier if resolved.phrase_derived else 1.0
            for ref, trigger in self._verb_index.get(resolved.verb, []):
                score = round(trigger.confidence * multiplier, 6)
                current = best.get(ref)
                if current is None or score > current.score:
                    best[ref] = VerbCandidate(
                        ref=ref, score=score, verb=resolved.verb, tier=trigger.tier, via=resolved.via
                    )

        ranked = [c for c in best.values() if c.score >= self.confidence_threshold]
        ranked.sort(key=lambda c: (-c.score, c.ref))
        return ranked[: limit or self.max_results]

    def elements_for_verb(self, index: CapabilityIndex, verb: str) -> List[VerbCandidate]:
        """Every element with a trigger for `verb` (conjugations accepted)."""
        self._ensure_index(index)
        resolved = self.resolve_word(verb)
        canonical = resolved.verb if resolved else verb.lower()
        via: ResolutionPath = resolved.via if resolved else "direct"
        candidates = [
            VerbCandidate(ref=ref, score=trigger.confidence, verb=canonical, tier=trigger.tier, via=via)
            for ref, trigger in self._verb_index.get(canonical, [])
        ]
        candidates.sort(key=lambda c: (-c.score, c.ref))
        return candidates

    def triggers_for(self, index: CapabilityIndex, ref: str) -> List[ActionTrigger]:
        self._ensure_index(index)
        return list(self._reverse_index.get(ref, []))

    def reverse_lookup(self, index: CapabilityIndex, ref: str) -> List[str]:
        """Every verb mapped to an element, strongest first."""
        return [t.verb for t in self.triggers_for(index, ref)]

    def all_verbs(self, index: CapabilityIndex) -> List[str]:
        self._ensure_index(index)
        return sorted(self._verb_index)

    def trigger_count(self, index: CapabilityIndex) -> int:
        return sum(len(entry.actions) for _, entry in index.iter_entries())

    def rebuild_all(self, index: CapabilityIndex, refs: Optional[Iterable[str]] = None) -> int:
        """Regenerate triggers for `refs` (default: every element); returns changed count."""
        targets = set(refs) if refs is not None else None
        changed = 0
        for element_type, bucket in index.elements.items():
            for element_id, entry in bucket.items():
                if targets is not None and format_element_ref(element_type, element_id) not in targets:
                    continue
                if self.apply_triggers(index, element_type, entry):
                    changed += 1
        return changed
