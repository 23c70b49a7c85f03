"""
capindex Core module.

Exports the fundamental system components.
"""

# Configuration
from capindex.core.secure_config import Settings, ConfigValidator, get_default_config

# Exceptions and errors
from capindex.core.exceptions import (
    CapIndexError,
    CorruptIndexError,
    UnknownRelationshipTypeError,
    ThresholdConfigError,
    ConfigurationError,
    ValidationError,
    NotFoundError,
    DiscoveryFailure,
)

# Logging
from capindex.core.logging import (
    AsyncLogger,
    PerformanceLogger,
    logger,  # Pre-configured global logger
)

# Observability
from capindex.core.tracing import LocalTracer, MetricsCollector, merge_metrics, tracer

# Startup
from capindex.core.gate import ReadinessGate

# Caching
from capindex.core.cache import LRUCache, text_key

# IDs
from capindex.core.id_generator import generate_id, is_valid_id

__all__ = [
    # Configuration
    "Settings",
    "ConfigValidator",
    "get_default_config",
    # Exceptions
    "CapIndexError",
    "CorruptIndexError",
    "UnknownRelationshipTypeError",
    "ThresholdConfigError",
    "ConfigurationError",
    "ValidationError",
    "NotFoundError",
    "DiscoveryFailure",
    # Logging
    "AsyncLogger",
    "PerformanceLogger",
    "logger",
    # Observability
    "LocalTracer",
    "MetricsCollector",
    "merge_metrics",
    "tracer",
    # Startup
    "ReadinessGate",
    # Caching
    "LRUCache",
    "text_key",
    # IDs
    "generate_id",
    "is_valid_id",
]
