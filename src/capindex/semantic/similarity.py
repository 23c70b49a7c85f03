"""
Pairwise similarity between elements.

Combines Jaccard overlap of token sets with the Shannon entropy of each
side's token-frequency distribution:

- high overlap, rich vocabulary on both sides: same domain, strong edge
- high overlap, near-zero entropy on one side: stop-word pollution, penalized
- moderate overlap, decent entropy: related concepts
- low overlap: little or no relationship

Pairs scoring at or above the threshold become `similar_to` edges carrying
the raw Jaccard value and entropy delta as evidence.
"""

import asyncio
import math
import re
import unicodedata
from collections import Counter
from dataclasses import replace
from itertools import combinations
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from capindex.core.cache import LRUCache, text_key
from capindex.core.exceptions import UnknownRelationshipTypeError
from capindex.core.logging import PerformanceLogger, logger
from capindex.core.secure_config import Settings
from capindex.core.tracing import MetricsCollector
from capindex.graph.edges import insert_edge, remove_edges_where
from capindex.index.schema import SchemaRegistry
from capindex.models.element import EdgeMetadata, ElementEntry, RelationshipEdge, TokenCache
from capindex.models.index import CapabilityIndex
from capindex.models.semantic_types import RescoreResult, SimilarityScore, SimilarMatch

SIMILAR_TO = "similar_to"
DISCOVERY_METHOD = "similarity"

STOP_WORDS = frozenset(
    """
    a about above after again all also am an and any are as at be because been before being
    below between both but by can could did do does doing down during each either else etc
    few for from further had has have having he her here hers him his how if in into is it its
    itself just me more most my no nor not now of off on once only or other our ours out over
    own same she should so some such than that the their theirs them then there these they this
    those through to too under until up upon us very via was we were what when where which while
    who whom why will with within without would you your yours
    """.split()
)

_NON_TOKEN_RE = re.compile(r"[^\w\s-]", re.UNICODE)

ProgressCallback = Callable[[int, int], None]


class SimilarityEngine:
    """
    Jaccard plus entropy scoring with incremental and chunked full passes.

    Token profiles are cached on each entry (TokenCache, keyed by a digest of
    the descriptive text) and in a bounded LRU; pair scores are cached in a
    second LRU keyed by the two digests.
    """

    def __init__(
        self,
        registry: Optional[SchemaRegistry] = None,
        threshold: float = 0.5,
        min_token_length: int = 2,
        batch_size: int = 50,
        pollution_entropy: float = 2.0,
        entropy_bands: Optional[Mapping[str, float]] = None,
        jaccard_thresholds: Optional[Mapping[str, float]] = None,
        extra_stop_words: Iterable[str] = (),
        cache_size: int = 500,
    ) -> None:
        self.registry = registry or SchemaRegistry()
        self.threshold = threshold
        self.min_token_length = min_token_length
        self.batch_size = batch_size
        self.pollution_entropy = pollution_entropy
        self.entropy_bands = dict(entropy_bands or {"low": 3.0, "moderate": 4.5, "high": 6.0})
        self.jaccard_thresholds = dict(jaccard_thresholds or {"low": 0.2, "moderate": 0.4, "high": 0.6})
        self.stop_words = STOP_WORDS | {w.lower() for w in extra_stop_words}

        self._profiles: LRUCache[Tuple[Tuple[str, ...], Dict[str, int], float]] = LRUCache(
            "similarity.profiles", max_size=cache_size
        )
        self._scores: LRUCache[SimilarityScore] = LRUCache("similarity.scores", max_size=cache_size)
        self.metrics = MetricsCollector()
        self.perf = PerformanceLogger()

    @classmethod
    def from_settings(
        cls, settings: Settings, registry: Optional[SchemaRegistry] = None
    ) -> "SimilarityEngine":
        return cls(
            registry=registry,
            threshold=settings.get("similarity.threshold", 0.5),
            min_token_length=settings.get("similarity.min_token_length", 2),
            batch_size=settings.get("similarity.batch_size", 50),
            pollution_entropy=settings.get("similarity.pollution_entropy", 2.0),
            entropy_bands=settings.get("similarity.entropy_bands"),
            jaccard_thresholds=settings.get("similarity.jaccard_thresholds"),
            extra_stop_words=settings.get("similarity.stop_words_extra") or (),
            cache_size=settings.get("cache.max_size", 500),
        )

    # ------------------------------------------------------------------ #
    # Text metrics
    # ------------------------------------------------------------------ #

    def tokenize(self, text: str) -> List[str]:
        """Normalized tokens in text order, repeats kept."""
        normalized = unicodedata.normalize("NFKC", text or "").lower()
        tokens = []
        for raw in _NON_TOKEN_RE.sub(" ", normalized).split():
            token = raw.strip("-_")
            if len(token) >= self.min_token_length and token not in self.stop_words:
                tokens.append(token)
        return tokens

    @staticmethod
    def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
        """|A ∩ B| / |A ∪ B|; 0.0 when either side is empty."""
        set_a, set_b = set(a), set(b)
        if not set_a or not set_b:
            return 0.0
        return len(set_a & set_b) / len(set_a | set_b)

    @staticmethod
    def entropy(frequencies: Mapping[str, int]) -> float:
        """Shannon entropy in bits: H = -sum p log2 p."""
        total = sum(frequencies.values())
        if total <= 0:
            return 0.0
        h = 0.0
        for count in frequencies.values():
            if count > 0:
                p = count / total
                h -= p * math.log2(p)
        return h

    def _profile_text(self, text: str) -> Tuple[str, Tuple[Tuple[str, ...], Dict[str, int], float]]:
        digest = text_key(text)

        def compute() -> Tuple[Tuple[str, ...], Dict[str, int], float]:
            frequencies = dict(Counter(self.tokenize(text)))
            return tuple(sorted(frequencies)), frequencies, self.entropy(frequencies)

        return digest, self._profiles.get_or_compute(digest, compute)

    def profile(self, entry: ElementEntry) -> TokenCache:
        """
        Token profile of an entry, refreshing entry.cache when the text changed.
        """
        text = entry.descriptive_text()
        digest = text_key(text)
        if entry.cache is not None and entry.cache.digest == digest:
            return entry.cache

        _, (tokens, frequencies, entropy) = self._profile_text(text)
        entry.cache = TokenCache(
            digest=digest,
            tokens=list(tokens),
            frequencies=dict(frequencies),
            entropy=round(entropy, 6),
        )
        self.metrics.increment("semantic.similarity.profiles_computed")
        return entry.cache

    # ------------------------------------------------------------------ #
    # Scoring
    # ------------------------------------------------------------------ #

    def combine(self, jaccard: float, entropy_a: float, entropy_b: float) -> SimilarityScore:
        """Combined score for a Jaccard value and the two entropies."""
        jt = self.jaccard_thresholds
        bands = self.entropy_bands
        mean = (entropy_a + entropy_b) / 2
        lowest = min(entropy_a, entropy_b)

        if jaccard >= jt["high"] and lowest < self.pollution_entropy:
            score = 0.3 + 0.2 * jaccard
            interpretation = "superficial overlap, mostly common words"
        elif jaccard >= jt["high"] and mean >= bands["low"]:
            quality = min(1.0, (mean - 2.0) / 4.0)
            score = 0.7 + 0.5 * (jaccard - jt["high"]) + 0.2 * quality
            if mean >= bands["moderate"]:
                interpretation = "same domain, rich vocabulary"
            else:
                interpretation = "high overlap, simpler vocabulary"
        elif jaccard >= jt["moderate"] and mean >= bands["low"]:
            score = 0.4 + 0.4 * jaccard + 0.02 * mean
            interpretation = "related concepts"
        elif jaccard < jt["low"] and abs(entropy_a - entropy_b) < 1.0:
            score = 0.5 * jaccard
            interpretation = "different domains, similar complexity"
        else:
            score = 0.3 * jaccard
            interpretation = "low relevance"

        return SimilarityScore(
            score=max(0.0, min(1.0, score)),
            jaccard=jaccard,
            entropy_a=entropy_a,
            entropy_b=entropy_b,
            interpretation=interpretation,
        )

    def score(self, text_a: str, text_b: str) -> SimilarityScore:
        """Score two free texts. score(a, b).score == score(b, a).score."""
        digest_a, (tokens_a, _, entropy_a) = self._profile_text(text_a)
        digest_b, (tokens_b, _, entropy_b) = self._profile_text(text_b)
        return self._cached_pair(digest_a, tokens_a, entropy_a, digest_b, tokens_b, entropy_b)

    def score_entries(self, a: ElementEntry, b: ElementEntry) -> SimilarityScore:
        pa, pb = self.profile(a), self.profile(b)
        return self._cached_pair(pa.digest, pa.tokens, pa.entropy, pb.digest, pb.tokens, pb.entropy)

    def _cached_pair(
        self,
        digest_a: str,
        tokens_a: Iterable[str],
        entropy_a: float,
        digest_b: str,
        tokens_b: Iterable[str],
        entropy_b: float,
    ) -> SimilarityScore:
        # Cache under the ordered digest pair so (a, b) and (b, a) share one entry
        swapped = digest_b < digest_a
        key = (digest_b, digest_a) if swapped else (digest_a, digest_b)

        cached = self._scores.get(key)
        if cached is None:
            if swapped:
                cached = self.combine(self.jaccard(tokens_b, tokens_a), entropy_b, entropy_a)
            else:
                cached = self.combine(self.jaccard(tokens_a, tokens_b), entropy_a, entropy_b)
            self._scores.set(key, cached)

        if swapped:
            return replace(cached, entropy_a=cached.entropy_b, entropy_b=cached.entropy_a)
        return cached

    def key_terms(self, text: str, top_k: int = 10) -> List[str]:
        """Tokens ranked by their contribution to the text's entropy."""
        frequencies = Counter(self.tokenize(text))
        total = sum(frequencies.values())
        if not total:
            return []
        contributions = [
            (-(count / total) * math.log2(count / total), token)
            for token, count in frequencies.items()
        ]
        contributions.sort(key=lambda item: (-item[0], item[1]))
        return [token for _, token in contributions[:top_k]]

    def find_similar(
        self, index: CapabilityIndex, ref: str, top_k: int = 5, min_score: float = 0.0
    ) -> List[SimilarMatch]:
        """Most similar elements to `ref`, best first (ties by ref)."""
        entry = index.require_entry(ref)
        matches = []
        for other_ref, other in index.iter_entries():
            if other_ref == ref:
                continue
            result = self.score_entries(entry, other)
            if result.score >= min_score:
                matches.append(SimilarMatch(ref=other_ref, score=result))
        matches.sort(key=lambda m: (-m.score.score, m.ref))
        return matches[:top_k]

    # ------------------------------------------------------------------ #
    # Edge maintenance
    # ------------------------------------------------------------------ #

    def _is_similarity_edge(self, edge: RelationshipEdge) -> bool:
        return edge.type == SIMILAR_TO and edge.metadata.discovery_method == DISCOVERY_METHOD

    def _apply_pair(
        self, index: CapabilityIndex, ref_a: str, ref_b: str, result: RescoreResult
    ) -> None:
        entry_a, entry_b = index.get_entry(ref_a), index.get_entry(ref_b)
        if entry_a is None or entry_b is None:
            return
        similarity = self.score_entries(entry_a, entry_b)
        result.pairs_scored += 1
        if similarity.score < self.threshold:
            return

        # Stored direction is fixed by ref order so reruns never flip it
        source, target = sorted((ref_a, ref_b))
        edge = RelationshipEdge(
            type=SIMILAR_TO,
            target=target,
            strength=round(similarity.score, 4),
            metadata=EdgeMetadata(
                discovery_method=DISCOVERY_METHOD,
                jaccard=round(similarity.jaccard, 4),
                entropy_delta=round(similarity.entropy_delta, 4),
                interpretation=similarity.interpretation,
            ),
        )
        try:
            result.edges_added += insert_edge(index, self.registry, source, edge)
        except UnknownRelationshipTypeError as e:
            logger.warning("Similarity edge skipped", source=source, error=e.message)

    def _clear(self, index: CapabilityIndex, refs: Iterable[str]) -> int:
        return sum(
            remove_edges_where(index, self.registry, ref, self._is_similarity_edge) for ref in refs
        )

    def rescore(self, index: CapabilityIndex, changed_refs: Iterable[str]) -> RescoreResult:
        """
        Incremental pass: only pairs touching a changed element are rescored.

        Stale similarity edges of changed elements are removed first, so a
        pair that no longer passes the threshold loses its edge.
        """
        changed = [ref for ref in dict.fromkeys(changed_refs) if index.has_entry(ref)]
        result = RescoreResult()
        if not changed:
            return result

        with self.perf.measure("similarity_rescore", changed=len(changed)):
            result.edges_removed = self._clear(index, changed)
            all_refs = index.refs()
            seen: Set[Tuple[str, str]] = set()
            for ref in changed:
                for other in all_refs:
                    if other == ref:
                        continue
                    pair = (ref, other) if ref < other else (other, ref)
                    if pair in seen:
                        continue
                    seen.add(pair)
                    self._apply_pair(index, ref, other, result)

        self.metrics.increment("semantic.similarity.pairs_scored", result.pairs_scored)
        logger.info(
            "Similarity rescored",
            changed=len(changed),
            pairs=result.pairs_scored,
            added=result.edges_added,
            removed=result.edges_removed,
        )
        return result

    async def rescore_all(
        self, index: CapabilityIndex, progress: Optional[ProgressCallback] = None
    ) -> RescoreResult:
        """
        Full O(n^2) pass in chunks of `batch_size` pairs.

        Control returns to the event loop between chunks, so a caller can
        cancel the task; a cancelled pass leaves the in-memory index partially
        rescored and must not be saved.
        """
        refs = index.refs()
        total = len(refs) * (len(refs) - 1) // 2
        result = RescoreResult()

        with self.perf.measure("similarity_rescore_all", elements=len(refs), pairs=total):
            result.edges_removed = self._clear(index, refs)
            done = 0
            try:
                for ref_a, ref_b in combinations(refs, 2):
                    self._apply_pair(index, ref_a, ref_b, result)
                    done += 1
                    if done % self.batch_size == 0:
                        if progress:
                            progress(done, total)
                        await asyncio.sleep(0)
            except asyncio.CancelledError:
                result.cancelled = True
                logger.warning("Similarity pass cancelled", done=done, total=total)
                raise

        if progress:
            progress(total, total)
        self.metrics.increment("semantic.similarity.pairs_scored", result.pairs_scored)
        logger.info(
            "Similarity full pass completed",
            elements=len(refs),
            pairs=result.pairs_scored,
            added=result.edges_added,
        )
        return result

    def cache_stats(self) -> Dict[str, object]:
        return {"profiles": self._profiles.get_stats(), "scores": self._scores.get_stats()}
