"""
Semantic Module - verb understanding and text similarity without ML.

Taxonomy lookups, verb extraction and trigger generation, and a
Jaccard plus entropy similarity engine.
"""

# similarity imports graph.edges; keep it last
from capindex.semantic.taxonomy import VerbTaxonomy, normalize_verb
from capindex.semantic.verbs import VerbTriggerManager
from capindex.semantic.similarity import SimilarityEngine

__all__ = [
    "VerbTaxonomy",
    "normalize_verb",
    "VerbTriggerManager",
    "SimilarityEngine",
]
