"""
capindex - Capability index for tool ecosystems.

Indexes elements (personas, tools, templates...) by the verbs that invoke
them, the keywords that describe them and the relationships between them,
so a client can find the right element without loading them all.
"""

from capindex._version import __version__, __version_info__

# Core components
from capindex.core import (
    logger,
    Settings,
    CapIndexError,
    ConfigurationError,
    CorruptIndexError,
    NotFoundError,
    UnknownRelationshipTypeError,
    ValidationError,
)

# Models
from capindex.models import (
    CapabilityIndex,
    ElementEntry,
    ElementRecord,
    RelationshipEdge,
    ActionTrigger,
    MaintenanceReport,
    IndexStats,
    RankedElement,
    PathResult,
)

# Components
from capindex.index import IndexStore, SchemaRegistry, load_catalog
from capindex.semantic import VerbTaxonomy, VerbTriggerManager, SimilarityEngine
from capindex.graph import RelationshipManager

# Main service
from capindex.services import CapabilityIndexService

__all__ = [
    "__version__",
    "__version_info__",
    "logger",
    "Settings",
    "CapIndexError",
    "ConfigurationError",
    "CorruptIndexError",
    "NotFoundError",
    "UnknownRelationshipTypeError",
    "ValidationError",
    "CapabilityIndex",
    "ElementEntry",
    "ElementRecord",
    "RelationshipEdge",
    "ActionTrigger",
    "MaintenanceReport",
    "IndexStats",
    "RankedElement",
    "PathResult",
    "IndexStore",
    "SchemaRegistry",
    "load_catalog",
    "VerbTaxonomy",
    "VerbTriggerManager",
    "SimilarityEngine",
    "RelationshipManager",
    "CapabilityIndexService",
]
