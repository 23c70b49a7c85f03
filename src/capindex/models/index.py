"""
Root document of the capability index.
"""

from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from pydantic import Field, PrivateAttr, field_validator

from capindex.core.exceptions import NotFoundError
from capindex.core.utils.datetime_utils import format_iso, utc_now_iso
from capindex.models.base import DocumentModel
from capindex.models.element import ElementEntry, format_element_ref, parse_element_ref

SCHEMA_VERSION = "2.0.0"


class CapabilityIndex(DocumentModel):
    """
    Persisted index: element type -> element id -> entry.

    Element types are open strings. `revision` is in-memory only and is bumped
    by every mutation made through this class, so derived caches can tell
    when they are stale.
    """

    schema_version: str = SCHEMA_VERSION
    generated_at: str = Field(default_factory=utc_now_iso)
    extensions: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    elements: Dict[str, Dict[str, ElementEntry]] = Field(default_factory=dict)

    _revision: int = PrivateAttr(default=0)

    @field_validator("generated_at", mode="before")
    @classmethod
    def _normalize_timestamp(cls, v: Any) -> Any:
        if isinstance(v, datetime):
            return format_iso(v)
        return v

    @field_validator("extensions", mode="before")
    @classmethod
    def _none_extensions(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("elements", mode="before")
    @classmethod
    def _normalize_buckets(cls, v: Any) -> Any:
        """Empty buckets may be written as null; entries may omit their id."""
        if v is None:
            return {}
        if not isinstance(v, dict):
            return v

        normalized: Dict[str, Any] = {}
        for type_name, bucket in v.items():
            if bucket is None:
                normalized[str(type_name)] = {}
                continue
            if not isinstance(bucket, dict):
                normalized[str(type_name)] = bucket
                continue
            entries: Dict[str, Any] = {}
            for element_id, raw in bucket.items():
                key = str(element_id)
                if isinstance(raw, dict):
                    raw_id = raw.get("id")
                    if raw_id is None:
                        raw = {**raw, "id": key}
                    elif str(raw_id) != key:
                        raise ValueError(
                            f"Entry {type_name}/{key} declares mismatching id {raw_id!r}"
                        )
                entries[key] = raw
            normalized[str(type_name)] = entries
        return normalized

    @property
    def revision(self) -> int:
        return self._revision

    def touch(self) -> None:
        """Mark entries or triggers as changed; invalidates derived lookups."""
        self._revision += 1
        self.generated_at = utc_now_iso()

    def mark_modified(self) -> None:
        """Edge-only change: new timestamp, same revision."""
        self.generated_at = utc_now_iso()

    # ------------------------------------------------------------------ #
    # Entry access
    # ------------------------------------------------------------------ #

    def iter_entries(self) -> Iterator[Tuple[str, ElementEntry]]:
        """Yield (ref, entry) in type then insertion order."""
        for element_type, bucket in self.elements.items():
            for element_id, entry in bucket.items():
                yield format_element_ref(element_type, element_id), entry

    def refs(self) -> List[str]:
        return [ref for ref, _ in self.iter_entries()]

    def get_entry(self, ref: str) -> Optional[ElementEntry]:
        try:
            element_type, element_id = parse_element_ref(ref)
        except ValueError:
            return None
        return self.elements.get(element_type, {}).get(element_id)

    def require_entry(self, ref: str) -> ElementEntry:
        entry = self.get_entry(ref)
        if entry is None:
            error = NotFoundError(f"Element not found: {ref}", context={"ref": ref})
            error.add_suggestion("Use 'type:id' references, e.g. 'persona:debugger'")
            raise error
        return entry

    def has_entry(self, ref: str) -> bool:
        return self.get_entry(ref) is not None

    def put_entry(self, element_type: str, entry: ElementEntry) -> str:
        """Insert or replace an entry and return its ref."""
        self.elements.setdefault(element_type, {})[entry.id] = entry
        self.touch()
        return format_element_ref(element_type, entry.id)

    def remove_entry(self, ref: str) -> Optional[ElementEntry]:
        """Remove an entry; empty type buckets are dropped too."""
        element_type, element_id = parse_element_ref(ref)
        bucket = self.elements.get(element_type)
        if bucket is None or element_id not in bucket:
            return None
        entry = bucket.pop(element_id)
        if not bucket:
            del self.elements[element_type]
        self.touch()
        return entry

    # ------------------------------------------------------------------ #
    # Counts
    # ------------------------------------------------------------------ #

    @property
    def element_count(self) -> int:
        return sum(len(bucket) for bucket in self.elements.values())

    @property
    def relationship_count(self) -> int:
        return sum(len(entry.relationships) for _, entry in self.iter_entries())

    def counts_by_type(self) -> Dict[str, int]:
        return {element_type: len(bucket) for element_type, bucket in self.elements.items()}
