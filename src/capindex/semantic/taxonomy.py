"""
Verb taxonomy.

Built once by top-level wiring from the built-in vocabulary plus
configuration, then passed by reference to every component that resolves
verbs. Frozen after construction.
"""

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Pattern, Tuple

from capindex.core.logging import logger
from capindex.core.secure_config import Settings

# Category -> verbs. The first verb of each category is its canonical form.
VERB_CATEGORIES: Dict[str, Tuple[str, ...]] = {
    "debugging": ("debug", "fix", "troubleshoot", "diagnose", "solve", "resolve", "repair"),
    "creation": ("create", "write", "generate", "make", "build", "construct", "compose"),
    "explanation": ("explain", "teach", "clarify", "describe", "simplify", "elaborate", "define"),
    "analysis": ("analyze", "investigate", "examine", "inspect", "review", "assess", "evaluate"),
    "recall": ("remember", "recall", "retrieve", "find", "locate", "search", "lookup"),
    "execution": ("run", "execute", "start", "launch", "activate", "trigger", "invoke"),
    "testing": ("test", "verify", "validate", "check", "confirm", "ensure", "prove"),
    "configuration": ("configure", "setup", "install", "initialize", "prepare", "arrange"),
    "security": ("secure", "protect", "audit", "scan", "encrypt", "authenticate", "authorize"),
    "optimization": ("optimize", "improve", "enhance", "refactor", "streamline", "accelerate"),
    "documentation": ("document", "annotate", "comment", "record", "note", "log"),
    "collaboration": ("share", "collaborate", "sync", "merge", "integrate", "combine"),
}

PHRASES: Dict[str, str] = {
    "figure out": "solve",
    "work out": "solve",
    "sort out": "fix",
    "find out": "discover",
    "set up": "configure",
    "clean up": "refactor",
    "follow up": "track",
    "break down": "analyze",
    "write down": "document",
    "track down": "find",
}

# (suffix, replacement), tried in order
CONJUGATION_RULES: Tuple[Tuple[str, str], ...] = (
    ("ying", "y"),
    ("ing", ""),
    ("ied", "y"),
    ("ted", "t"),
    ("ed", ""),
    ("ses", "s"),
    ("zes", "ze"),
    ("ves", "ve"),
    ("ies", "y"),
    ("es", ""),
    ("s", ""),
)

VERB_PREFIXES: Tuple[str, ...] = (
    "create", "build", "make", "generate", "produce", "write", "compose",
    "analyze", "review", "examine", "investigate", "inspect", "evaluate", "assess",
    "debug", "fix", "troubleshoot", "solve", "resolve", "repair", "patch",
    "run", "execute", "start", "stop", "deploy", "configure", "install",
    "update", "modify", "change", "edit", "alter", "transform", "refactor",
    "delete", "remove", "clear", "clean", "purge", "destroy", "eliminate",
    "explain", "describe", "document", "search", "find", "check", "validate",
    "optimize", "improve", "enhance", "streamline", "accelerate",
    "test", "verify", "confirm", "assert", "ensure",
)  # fmt: skip

VERB_SUFFIXES: Tuple[str, ...] = ("ify", "ize", "ate", "en", "fy")

NOUN_SUFFIXES: Tuple[str, ...] = (
    "tion", "sion", "ment", "ness", "ance", "ence", "ity", "ism", "ship", "hood", "dom", "ery", "ing",
)  # fmt: skip

VERB_TOKEN_RE = re.compile(r"^[a-z][a-z-]*$")
MAX_VERB_LENGTH = 50


def _alternation(words: Iterable[str]) -> str:
    # Longest first so "troubleshoot" wins over "trouble"
    return "|".join(re.escape(w) for w in sorted(set(words), key=len, reverse=True))


@dataclass(frozen=True, eq=False)
class VerbTaxonomy:
    """
    Verb categories, conjugation rules, phrase table and verb-likeness heuristics.

    Use VerbTaxonomy.build() or VerbTaxonomy.from_settings(); the default
    constructor gives the built-in vocabulary only.
    """

    categories: Mapping[str, Tuple[str, ...]] = field(
        default_factory=lambda: MappingProxyType(dict(VERB_CATEGORIES))
    )
    phrases: Mapping[str, str] = field(default_factory=lambda: MappingProxyType(dict(PHRASES)))
    conjugation_rules: Tuple[Tuple[str, str], ...] = CONJUGATION_RULES
    verb_prefixes: Tuple[str, ...] = VERB_PREFIXES
    verb_suffixes: Tuple[str, ...] = VERB_SUFFIXES
    noun_suffixes: Tuple[str, ...] = NOUN_SUFFIXES
    custom_verbs: frozenset = frozenset()

    _lookup: Mapping[str, str] = field(init=False, repr=False, compare=False)
    _prefix_re: Pattern[str] = field(init=False, repr=False, compare=False)
    _suffix_re: Pattern[str] = field(init=False, repr=False, compare=False)
    _noun_re: Pattern[str] = field(init=False, repr=False, compare=False)
    _phrase_re: Optional[Pattern[str]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        lookup: Dict[str, str] = {}
        for category, verbs in self.categories.items():
            for verb in verbs:
                # First category wins for verbs listed twice
                lookup.setdefault(verb, category)

        object.__setattr__(self, "_lookup", MappingProxyType(lookup))
        object.__setattr__(self, "_prefix_re", re.compile(f"^(?:{_alternation(self.verb_prefixes)})"))
        object.__setattr__(self, "_suffix_re", re.compile(f"(?:{_alternation(self.verb_suffixes)})$"))
        object.__setattr__(self, "_noun_re", re.compile(f"(?:{_alternation(self.noun_suffixes)})$"))
        phrase_re = (
            re.compile(rf"\b(?:{_alternation(self.phrases)})\b") if self.phrases else None
        )
        object.__setattr__(self, "_phrase_re", phrase_re)

    # ------------------------------------------------------------------ #
    # Construction
    # ------------------------------------------------------------------ #

    @classmethod
    def build(
        cls,
        custom_verbs: Optional[Mapping[str, Iterable[str]]] = None,
        custom_phrases: Optional[Mapping[str, str]] = None,
        custom_prefixes: Iterable[str] = (),
        custom_suffixes: Iterable[str] = (),
        excluded_nouns: Iterable[str] = (),
    ) -> "VerbTaxonomy":
        """
        Built-in vocabulary extended with custom entries.

        Args:
            custom_verbs: category -> verbs; new categories are allowed
            custom_phrases: phrase -> verb
            custom_prefixes: extra verb prefixes for keyword heuristics
            custom_suffixes: extra verb suffixes for keyword heuristics
            excluded_nouns: words or suffixes never treated as verbs
        """
        categories: Dict[str, List[str]] = {k: list(v) for k, v in VERB_CATEGORIES.items()}
        added = set()
        for category, verbs in (custom_verbs or {}).items():
            bucket = categories.setdefault(str(category).lower(), [])
            if isinstance(verbs, str):
                verbs = [verbs]
            for raw in verbs:
                verb = normalize_verb(raw)
                if verb and verb not in bucket:
                    bucket.append(verb)
                    added.add(verb)

        phrases = dict(PHRASES)
        for phrase, verb in (custom_phrases or {}).items():
            normalized = normalize_verb(verb)
            if normalized:
                phrases[" ".join(str(phrase).lower().split())] = normalized

        return cls(
            categories=MappingProxyType({k: tuple(v) for k, v in categories.items()}),
            phrases=MappingProxyType(phrases),
            verb_prefixes=VERB_PREFIXES + tuple(p.lower() for p in custom_prefixes if p),
            verb_suffixes=VERB_SUFFIXES + tuple(s.lower() for s in custom_suffixes if s),
            noun_suffixes=NOUN_SUFFIXES + tuple(n.lower() for n in excluded_nouns if n),
            custom_verbs=frozenset(added),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "VerbTaxonomy":
        verbs_config: Dict[str, Any] = settings.get("verbs", {}) or {}
        taxonomy = cls.build(
            custom_verbs=verbs_config.get("custom_verbs") or {},
            custom_phrases=verbs_config.get("custom_phrases") or {},
            custom_prefixes=verbs_config.get("custom_prefixes") or (),
            custom_suffixes=verbs_config.get("custom_suffixes") or (),
            excluded_nouns=verbs_config.get("excluded_nouns") or (),
        )
        logger.info(
            "Verb taxonomy loaded",
            categories=len(taxonomy.categories),
            verbs=len(taxonomy.all_verbs()),
            custom_verbs=len(taxonomy.custom_verbs),
        )
        return taxonomy

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #

    def is_known(self, verb: str) -> bool:
        return verb in self._lookup

    def category_of(self, verb: str) -> Optional[str]:
        return self._lookup.get(verb)

    def canonical(self, verb: str) -> Optional[str]:
        """Canonical verb of the category, e.g. troubleshoot -> debug."""
        category = self._lookup.get(verb)
        if category is None:
            return None
        return self.categories[category][0]

    def siblings(self, verb: str) -> Tuple[str, ...]:
        """Other verbs of the same category."""
        category = self._lookup.get(verb)
        if category is None:
            return ()
        return tuple(v for v in self.categories[category] if v != verb)

    def all_verbs(self) -> List[str]:
        return sorted(self._lookup)

    def base_form(self, word: str) -> Optional[str]:
        """
        Known verb behind a conjugated word, or None.

        debugging -> debug, creating -> create, simplified -> simplify,
        analyzes -> analyze, fixes -> fix
        """
        if word in self._lookup:
            return word
        for suffix, replacement in self.conjugation_rules:
            if not word.endswith(suffix) or len(word) <= len(suffix) + 1:
                continue
            stem = word[: -len(suffix)] + replacement
            for candidate in (stem, stem + "e", stem[:-1] if _doubled(stem) else None):
                if candidate and candidate in self._lookup:
                    return candidate
        return None

    def find_phrases(self, text: str) -> List[Tuple[str, str]]:
        """(phrase, verb) pairs found in lower-cased, whitespace-normalized text."""
        if self._phrase_re is None:
            return []
        return [(m.group(0), self.phrases[m.group(0)]) for m in self._phrase_re.finditer(text)]

    def looks_like_verb(self, word: str) -> bool:
        """Keyword heuristic: verb prefix or suffix, and no noun suffix."""
        word = word.lower()
        if self._noun_re.search(word):
            return False
        return bool(self._prefix_re.match(word) or self._suffix_re.search(word))


def _doubled(stem: str) -> bool:
    return len(stem) > 2 and stem[-1] == stem[-2] and stem[-1] not in "aeiou"


def normalize_verb(value: Any) -> Optional[str]:
    """Lower-cased verb, or None when it is not a plausible single verb."""
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    if not normalized or len(normalized) > MAX_VERB_LENGTH or not VERB_TOKEN_RE.match(normalized):
        return None
    return normalized


