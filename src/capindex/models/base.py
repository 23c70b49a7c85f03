"""
Base models for the persisted index.

Every persisted model is forward compatible: keys it does not know are kept
as extras, and the original key order of a loaded document is remembered so
that saving writes the keys back where they were.
"""

from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, PrivateAttr, ValidationInfo, model_validator

# Validation context flag set by IndexStore when reading a file
PRESERVE_ORDER = "preserve_order"


def _to_plain(value: Any) -> Any:
    """Convert a model tree into plain YAML-safe Python values."""
    if isinstance(value, DocumentModel):
        return value.to_document()
    if isinstance(value, BaseModel):
        return value.model_dump(mode="python")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_plain(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_to_plain(v) for v in value)
    return value


class DocumentModel(BaseModel):
    """
    Base model for everything written to the index file.

    - extra="allow": unknown keys survive load/save
    - source key order is tracked when validated with the preserve_order context
    - to_document() re-emits keys in source order, then new keys in field order
    """

    model_config = ConfigDict(
        extra="allow",
        validate_assignment=False,
        populate_by_name=True,
        use_enum_values=True,
    )

    _key_order: List[str] = PrivateAttr(default_factory=list)

    @model_validator(mode="wrap")
    @classmethod
    def _remember_key_order(cls, data: Any, handler: Any, info: ValidationInfo) -> Any:
        instance = handler(data)
        if isinstance(data, dict) and info.context and info.context.get(PRESERVE_ORDER):
            instance._key_order = [k for k in data.keys() if isinstance(k, str)]
        return instance

    @property
    def extras(self) -> Dict[str, Any]:
        """Keys present in the source document that no field declares."""
        return dict(self.__pydantic_extra__ or {})

    def to_document(self) -> Dict[str, Any]:
        """
        Plain dict ready for YAML.

        None values are omitted unless the source document carried the key.
        """
        values: Dict[str, Any] = {}
        for name, field in type(self).model_fields.items():
            values[field.alias or name] = getattr(self, name)
        values.update(self.__pydantic_extra__ or {})

        known = [k for k in self._key_order if k in values]
        ordered = known + [k for k in values if k not in known]

        document: Dict[str, Any] = {}
        for key in ordered:
            value = values[key]
            if value is None and key not in self._key_order:
                continue
            document[key] = _to_plain(value)
        return document
