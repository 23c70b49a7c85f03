"""
Index persistence: schema registry, YAML store and catalog reader.
"""

from capindex.index.schema import SchemaRegistry, BUILTIN_RELATIONSHIP_TYPES
from capindex.index.store import IndexStore, QUARANTINE_MARKER
from capindex.index.catalog import load_catalog, parse_catalog

__all__ = [
    "SchemaRegistry",
    "BUILTIN_RELATIONSHIP_TYPES",
    "IndexStore",
    "QUARANTINE_MARKER",
    "load_catalog",
    "parse_catalog",
]
