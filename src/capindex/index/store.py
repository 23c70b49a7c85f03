"""
Durable storage of the capability index.

The index is a single YAML document. Writes go to a temporary file in the
same directory and are moved into place with os.replace(), so a reader
only ever sees the previous or the new version. Files that cannot be read
back are renamed aside and replaced by an empty index.
"""

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import yaml
from pydantic import ValidationError as PydanticValidationError

from capindex.core.exceptions import CorruptIndexError
from capindex.core.logging import logger
from capindex.core.secure_config import Settings
from capindex.core.tracing import MetricsCollector
from capindex.core.utils.datetime_utils import file_timestamp
from capindex.index.schema import SchemaRegistry
from capindex.models.base import PRESERVE_ORDER
from capindex.models.element import format_element_ref
from capindex.models.index import SCHEMA_VERSION, CapabilityIndex
from capindex.models.reports import SaveResult

QUARANTINE_MARKER = ".corrupt-"


class IndexLoader(yaml.SafeLoader):
    """SafeLoader that keeps timestamps as plain strings."""


IndexLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def load_yaml(text: str) -> Any:
    return yaml.load(text, Loader=IndexLoader)


def dump_yaml(document: Dict[str, Any]) -> str:
    """Block style, keys in document order."""
    return yaml.safe_dump(
        document,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=120,
    )


class IndexStore:
    """
    Load, save and schema-extend one index file.

    Attributes:
        path: Index file location
        max_entries_per_type: Capacity cap applied on save
        registry: Relationship and element type registry
        last_error: CorruptIndexError from the most recent load, if any
    """

    def __init__(
        self,
        path: Path,
        max_entries_per_type: int = 10000,
        registry: Optional[SchemaRegistry] = None,
    ) -> None:
        self.path = Path(path)
        self.max_entries_per_type = max_entries_per_type
        self.registry = registry or SchemaRegistry()
        self.last_error: Optional[CorruptIndexError] = None
        self.metrics = MetricsCollector()

    @classmethod
    def from_settings(cls, settings: Settings, registry: Optional[SchemaRegistry] = None) -> "IndexStore":
        return cls(
            path=Path(settings.get("index.path")),
            max_entries_per_type=settings.get("index.max_entries_per_type", 10000),
            registry=registry or SchemaRegistry(settings.get("relationships.types") or None),
        )

    # ------------------------------------------------------------------ #
    # Load
    # ------------------------------------------------------------------ #

    def load(self) -> CapabilityIndex:
        """
        Return the persisted index, or an empty one.

        A file that is not UTF-8, not valid YAML, not a mapping, or not a valid index is
        quarantined; the error is kept on `last_error` and never raised.
        """
        self.last_error = None

        if not self.path.exists():
            logger.debug("No index file, starting empty", path=str(self.path))
            return CapabilityIndex()

        try:
            text = self.path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            return self._quarantine("index file is not valid UTF-8", e)

        try:
            data = load_yaml(text)
        except yaml.YAMLError as e:
            return self._quarantine("index file is not valid YAML", e)

        if not isinstance(data, dict):
            return self._quarantine(
                f"index root must be a mapping, got {type(data).__name__}", None
            )

        try:
            index = CapabilityIndex.model_validate(data, context={PRESERVE_ORDER: True})
        except PydanticValidationError as e:
            return self._quarantine(f"index failed validation ({e.error_count()} errors)", e)

        if index.schema_version.split(".")[0] != SCHEMA_VERSION.split(".")[0]:
            logger.warning(
                "Index written by a different schema major version",
                found=index.schema_version,
                current=SCHEMA_VERSION,
            )

        self.registry.load_extensions(index.extensions)
        self.metrics.increment("index.store.loads")
        logger.info(
            "Index loaded",
            path=str(self.path),
            elements=index.element_count,
            relationships=index.relationship_count,
        )
        return index

    def _quarantine(self, reason: str, cause: Optional[Exception]) -> CapabilityIndex:
        target = self.path.with_name(f"{self.path.name}{QUARANTINE_MARKER}{file_timestamp()}")
        os.replace(self.path, target)

        error = CorruptIndexError(
            f"Corrupt index quarantined: {reason}",
            context={"path": str(self.path), "quarantined_as": str(target)},
            cause=cause,
        )
        error.add_suggestion(f"Inspect or delete {target.name}; the index will be rebuilt")
        self.last_error = error
        self.metrics.increment("index.store.quarantined")
        logger.error(
            "Corrupt index quarantined",
            path=str(self.path),
            quarantined_as=str(target),
            reason=reason,
        )
        return CapabilityIndex()

    def quarantined_files(self) -> List[Path]:
        """Quarantined copies of this index, oldest first."""
        pattern = f"{self.path.name}{QUARANTINE_MARKER}*"
        return sorted(self.path.parent.glob(pattern))

    # ------------------------------------------------------------------ #
    # Save
    # ------------------------------------------------------------------ #

    def save(self, index: CapabilityIndex) -> SaveResult:
        """
        Atomically write the index.

        Types above `max_entries_per_type` lose their most recently inserted
        entries (and every edge pointing at them); the save still succeeds.
        """
        result = SaveResult(path=str(self.path))
        self._enforce_capacity(index, result)

        text = dump_yaml(index.to_document())
        self._atomic_write(text)

        result.element_count = index.element_count
        self.metrics.increment("index.store.saves")
        logger.info(
            "Index saved",
            path=str(self.path),
            elements=result.element_count,
            dropped=result.dropped_count,
        )
        return result

    def _enforce_capacity(self, index: CapabilityIndex, result: SaveResult) -> None:
        dropped_refs: Set[str] = set()

        for element_type in list(index.elements):
            bucket = index.elements[element_type]
            surplus = len(bucket) - self.max_entries_per_type
            if surplus <= 0:
                continue

            dropped_ids = list(bucket)[-surplus:]
            for element_id in dropped_ids:
                index.remove_entry(format_element_ref(element_type, element_id))
                dropped_refs.add(format_element_ref(element_type, element_id))

            result.dropped[element_type] = dropped_ids
            warning = (
                f"{element_type}: {surplus} entries over the limit of "
                f"{self.max_entries_per_type} were dropped"
            )
            result.warnings.append(warning)
            logger.warning(
                "Capacity exceeded, entries dropped",
                element_type=element_type,
                dropped=surplus,
                limit=self.max_entries_per_type,
            )

        if dropped_refs:
            for _, entry in index.iter_entries():
                entry.relationships = [e for e in entry.relationships if e.target not in dropped_refs]
            self.metrics.increment("index.store.dropped", len(dropped_refs))

    def _atomic_write(self, text: str) -> None:
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

        self._fsync_directory(directory)

    @staticmethod
    def _fsync_directory(directory: Path) -> None:
        if not hasattr(os, "O_DIRECTORY"):
            return
        dir_fd = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)

    # ------------------------------------------------------------------ #
    # Schema extension
    # ------------------------------------------------------------------ #

    def register_extension(
        self, index: CapabilityIndex, name: str, schema_fragment: Dict[str, Any]
    ) -> None:
        """Declare new relationship or element types, recorded in the index."""
        self.registry.register_extension(name, schema_fragment)
        if index.extensions.get(name) != schema_fragment:
            index.extensions[name] = dict(schema_fragment)
            index.touch()

    # ------------------------------------------------------------------ #
    # Async wrappers
    # ------------------------------------------------------------------ #

    async def load_async(self) -> CapabilityIndex:
        return await asyncio.to_thread(self.load)

    async def save_async(self, index: CapabilityIndex) -> SaveResult:
        return await asyncio.to_thread(self.save, index)
