"""
capindex Services module.

Business logic that coordinates the index components.
"""

from capindex.services.capability_service import CapabilityIndexService

__all__ = [
    "CapabilityIndexService",
]
