"""
Schema extension registry.

Relationship and element types are open strings. Anything beyond the
built-in relationship taxonomy is declared at runtime by an extension
fragment, so adding a type never needs a change to the validators here.

Fragment format:

    relationship_types:
      mentions: mentioned_by     # name -> inverse
      sibling_of: sibling_of     # symmetric
      tagged: null               # no inverse, no mirrored edge
    element_types:
      workflow:
        required_custom: [steps]
"""

from typing import Any, Dict, List, Optional

from capindex.core.exceptions import UnknownRelationshipTypeError, ValidationError
from capindex.core.logging import logger
from capindex.models.element import ElementEntry

# name -> inverse; both directions listed
BUILTIN_RELATIONSHIP_TYPES: Dict[str, Optional[str]] = {
    "similar_to": "similar_to",
    "uses": "used_by",
    "used_by": "uses",
    "prerequisite_for": "depends_on",
    "depends_on": "prerequisite_for",
    "requires": "required_by",
    "required_by": "requires",
    "helps_debug": "debugged_by",
    "debugged_by": "helps_debug",
    "supports": "supported_by",
    "supported_by": "supports",
    "contradicts": "contradicts",
    "complements": "complements",
    "parent_of": "child_of",
    "child_of": "parent_of",
    "contains": "contained_by",
    "contained_by": "contains",
    "follows": "preceded_by",
    "preceded_by": "follows",
    "example_of": "has_example",
    "has_example": "example_of",
}


class SchemaRegistry:
    """Known relationship types and per-element-type requirements."""

    def __init__(self, relationship_types: Optional[Dict[str, Optional[str]]] = None) -> None:
        self._relationship_types: Dict[str, Optional[str]] = dict(BUILTIN_RELATIONSHIP_TYPES)
        self._element_types: Dict[str, Dict[str, Any]] = {}
        self._extensions: Dict[str, Dict[str, Any]] = {}
        if relationship_types:
            self._add_relationship_types(relationship_types, source="configuration")

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #

    def register_extension(self, name: str, fragment: Dict[str, Any]) -> None:
        """
        Register a schema fragment.

        Types are added or updated, never removed.

        Raises:
            ValidationError: fragment is not a mapping or has malformed sections
        """
        if not name or not isinstance(name, str):
            raise ValidationError("Extension name must be a non-empty string")
        if not isinstance(fragment, dict):
            raise ValidationError(
                f"Extension '{name}' must be a mapping", context={"extension": name}
            )

        relationship_types = fragment.get("relationship_types") or {}
        if isinstance(relationship_types, list):
            relationship_types = {t: None for t in relationship_types}
        if not isinstance(relationship_types, dict):
            raise ValidationError(
                f"Extension '{name}': relationship_types must be a mapping",
                context={"extension": name},
            )

        element_types = fragment.get("element_types") or {}
        if not isinstance(element_types, dict):
            raise ValidationError(
                f"Extension '{name}': element_types must be a mapping",
                context={"extension": name},
            )

        self._add_relationship_types(relationship_types, source=name)
        for element_type, rules in element_types.items():
            rules = rules or {}
            if not isinstance(rules, dict):
                raise ValidationError(
                    f"Extension '{name}': rules for '{element_type}' must be a mapping",
                    context={"extension": name, "element_type": element_type},
                )
            self._element_types[str(element_type).lower()] = dict(rules)

        self._extensions[name] = dict(fragment)
        logger.info(
            "Schema extension registered",
            extension=name,
            relationship_types=len(relationship_types),
            element_types=len(element_types),
        )

    def _add_relationship_types(self, types: Dict[str, Optional[str]], source: str) -> None:
        for rel_type, inverse in types.items():
            if not isinstance(rel_type, str) or not rel_type:
                raise ValidationError(
                    f"Invalid relationship type name in {source}: {rel_type!r}",
                    context={"source": source},
                )
            if inverse is not None and not isinstance(inverse, str):
                raise ValidationError(
                    f"Inverse of '{rel_type}' must be a string or null",
                    context={"source": source, "type": rel_type},
                )
            self._relationship_types[rel_type] = inverse
            if inverse and inverse not in self._relationship_types:
                self._relationship_types[inverse] = rel_type

    def load_extensions(self, extensions: Dict[str, Dict[str, Any]]) -> List[str]:
        """
        Register fragments found in a loaded index.

        Malformed fragments are logged and skipped; their names are returned.
        """
        rejected = []
        for name, fragment in extensions.items():
            try:
                self.register_extension(name, fragment)
            except ValidationError as e:
                logger.warning("Skipping malformed extension", extension=name, error=e.message)
                rejected.append(name)
        return rejected

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def is_known(self, rel_type: str) -> bool:
        return rel_type in self._relationship_types

    def ensure_known(self, rel_type: str) -> None:
        if not self.is_known(rel_type):
            error = UnknownRelationshipTypeError(
                f"Unknown relationship type: {rel_type}", context={"type": rel_type}
            )
            error.add_suggestion("Declare it with register_extension(name, {'relationship_types': {...}})")
            raise error

    def inverse_of(self, rel_type: str) -> Optional[str]:
        self.ensure_known(rel_type)
        return self._relationship_types[rel_type]

    def is_symmetric(self, rel_type: str) -> bool:
        return self._relationship_types.get(rel_type) == rel_type

    @property
    def relationship_types(self) -> List[str]:
        return sorted(self._relationship_types)

    @property
    def extensions(self) -> Dict[str, Dict[str, Any]]:
        return dict(self._extensions)

    def validate_entry(self, element_type: str, entry: ElementEntry) -> List[str]:
        """Problems with an entry against its element type's declared rules."""
        rules = self._element_types.get(element_type.lower())
        if not rules:
            return []
        required = rules.get("required_custom") or []
        return [f"missing custom field '{key}'" for key in required if key not in entry.custom]
