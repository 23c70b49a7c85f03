"""
Unified exception hierarchy for capindex.
Single source of exceptions for the whole system.

Most of these are recovered locally by the component that detects them
(quarantine, skip, fall back to defaults); they exist as types so the
recovery can be logged, recorded and tested precisely.
"""

from typing import Dict, Any, Optional, List
from datetime import datetime
from pydantic import BaseModel, Field

from capindex.core.id_generator import generate_id
from capindex.core.utils.datetime_utils import utc_now, format_iso


class CapIndexError(Exception):
    """
    Base error of the capindex system.

    Features:
    1. Structured serialization
    2. Rich context
    3. Resolution suggestions
    4. Unique ID for tracking
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        self.id: str = generate_id()
        self.timestamp: datetime = utc_now()
        self.message: str = message
        self.code: str = code or self.__class__.__name__
        self.context: Dict[str, Any] = context or {}
        self.cause: Optional[Exception] = cause
        self.suggestions: List[str] = []
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize for CLI output and failure reports.

        Returns:
            {
                "error_id": "hex32chars",
                "code": "CorruptIndexError",
                "message": "Index file is not valid YAML",
                "timestamp": "2024-01-20T10:30:00Z",
                "context": {...}
            }
        """
        result: Dict[str, Any] = {
            "error_id": self.id,
            "code": self.code,
            "message": self.message,
            "timestamp": format_iso(self.timestamp),
            "context": self.context,
        }

        if self.cause:
            result["cause"] = {"type": type(self.cause).__name__, "message": str(self.cause)}

        if self.suggestions:
            result["suggestions"] = self.suggestions

        return result

    def add_suggestion(self, suggestion: str) -> None:
        """
        Add a resolution hint.

        Duplicates and empty strings are ignored.
        """
        if not suggestion or not isinstance(suggestion, str):
            return

        if suggestion not in self.suggestions:
            self.suggestions.append(suggestion)


class CorruptIndexError(CapIndexError):
    """Persisted index could not be parsed or validated.

    Never propagated out of IndexStore.load(): the file is quarantined and an
    empty index is returned instead.
    """


class UnknownRelationshipTypeError(CapIndexError):
    """Edge type is neither built in nor declared by a registered extension."""


class ThresholdConfigError(CapIndexError):
    """A numeric setting is out of range; the default is used instead."""


class ConfigurationError(CapIndexError):
    """Configuration could not be read, or was not ready in time."""


class ValidationError(CapIndexError):
    """Input data (catalog record, extension fragment) is malformed."""


class NotFoundError(CapIndexError):
    """Referenced element does not exist in the index."""


class DiscoveryFailure(BaseModel):
    """
    A single element whose relationship discovery failed.

    Collected into DiscoveryReport.failures instead of being raised, so one
    bad element never aborts discovery for the rest of the batch.
    """

    element: str = Field(..., description="Qualified element ref (type:id)")
    method: str = Field(..., description="Discovery method: pattern, verb or similarity")
    error_type: str = Field(..., description="Exception class name")
    message: str = Field(..., description="Exception message")

    @classmethod
    def from_exception(cls, element: str, method: str, exc: Exception) -> "DiscoveryFailure":
        message = exc.message if isinstance(exc, CapIndexError) else str(exc)
        return cls(
            element=element, method=method, error_type=type(exc).__name__, message=message
        )


__all__ = [
    "CapIndexError",
    "CorruptIndexError",
    "UnknownRelationshipTypeError",
    "ThresholdConfigError",
    "ConfigurationError",
    "ValidationError",
    "NotFoundError",
    "DiscoveryFailure",
]
