"""
capindex Models module.
Exports the persisted document models and the computed result types.
"""

# Base
from .base import DocumentModel, PRESERVE_ORDER

# Persisted document
from capindex.models.element import (
    ActionTrigger,
    EdgeMetadata,
    ElementEntry,
    RelationshipEdge,
    TokenCache,
    format_element_ref,
    parse_element_ref,
)
from capindex.models.index import SCHEMA_VERSION, CapabilityIndex

# Catalog input
from capindex.models.catalog import ElementRecord

# Reports
from capindex.models.reports import (
    DiscoveryReport,
    IndexStats,
    MaintenanceReport,
    RelationshipStats,
    RelationshipTypeStats,
    SaveResult,
)

# Computed types
from capindex.models.semantic_types import (
    ConnectedElement,
    PathResult,
    PathStep,
    RankedElement,
    RescoreResult,
    ResolvedVerb,
    SimilarityScore,
    SimilarMatch,
    VerbCandidate,
)

__all__ = [
    "DocumentModel",
    "PRESERVE_ORDER",
    "ActionTrigger",
    "EdgeMetadata",
    "ElementEntry",
    "RelationshipEdge",
    "TokenCache",
    "format_element_ref",
    "parse_element_ref",
    "SCHEMA_VERSION",
    "CapabilityIndex",
    "ElementRecord",
    "DiscoveryReport",
    "IndexStats",
    "MaintenanceReport",
    "RelationshipStats",
    "RelationshipTypeStats",
    "SaveResult",
    "ConnectedElement",
    "PathResult",
    "PathStep",
    "RankedElement",
    "RescoreResult",
    "ResolvedVerb",
    "SimilarityScore",
    "SimilarMatch",
    "VerbCandidate",
]
