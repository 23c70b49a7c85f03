"""
Element catalog records supplied by whatever owns element storage.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from capindex.models.element import ElementEntry, format_element_ref


class ElementRecord(BaseModel):
    """
    One element as described by the external catalog.

    Only the descriptive fields needed for indexing; content, storage
    location and execution details stay with the catalog owner.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    type: str = Field(..., min_length=1, description="Element type, open string (persona, skill, ...)")
    id: str = Field(..., min_length=1, description="Unique within its type")
    name: Optional[str] = None
    description: str = ""
    keywords: List[str] = Field(default_factory=list)
    verbs: List[str] = Field(default_factory=list, description="Explicitly declared verbs")
    custom: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("type")
    @classmethod
    def _type_lower(cls, v: str) -> str:
        return v.lower()

    @field_validator("id", mode="before")
    @classmethod
    def _id_str(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @field_validator("keywords", "verbs", mode="before")
    @classmethod
    def _listify(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v

    @property
    def ref(self) -> str:
        return format_element_ref(self.type, self.id)

    def to_entry(self, existing: Optional[ElementEntry] = None) -> ElementEntry:
        """
        Build the index entry for this record.

        Unknown keys and derived data of an existing entry are kept; the
        maintenance pipeline regenerates whatever the new text invalidates.
        """
        if existing is None:
            return ElementEntry(
                id=self.id,
                name=self.name or self.id,
                description=self.description,
                keywords=list(self.keywords),
                declared_verbs=[v.lower() for v in self.verbs],
                custom=dict(self.custom),
            )

        entry = existing.model_copy(deep=True)
        entry.name = self.name or self.id
        entry.description = self.description
        entry.keywords = list(self.keywords)
        entry.declared_verbs = [v.lower() for v in self.verbs]
        entry.custom = dict(self.custom)
        return entry
