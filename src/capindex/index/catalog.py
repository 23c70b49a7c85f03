"""
Reading element catalogs.

Three layouts are accepted:

    # flat list
    - {type: persona, id: debug-detective, description: ...}

    # wrapped list
    elements:
      - {type: persona, id: debug-detective}

    # grouped by type
    persona:
      - {id: debug-detective}
"""

from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import ValidationError as PydanticValidationError

from capindex.core.exceptions import ValidationError
from capindex.core.logging import logger
from capindex.models.catalog import ElementRecord


def parse_catalog(data: Any) -> List[ElementRecord]:
    """
    Turn parsed YAML into records.

    Raises:
        ValidationError: unknown layout or invalid record
    """
    raw_records: List[Dict[str, Any]] = []

    if isinstance(data, dict) and isinstance(data.get("elements"), list):
        data = data["elements"]

    if isinstance(data, list):
        raw_records = list(data)
    elif isinstance(data, dict):
        for element_type, items in data.items():
            if not isinstance(items, list):
                raise ValidationError(
                    f"Catalog section '{element_type}' must be a list",
                    context={"section": str(element_type)},
                )
            for item in items:
                if isinstance(item, dict):
                    raw_records.append({"type": element_type, **item})
                else:
                    raw_records.append(item)
    elif data is not None:
        raise ValidationError("Catalog must be a list or a mapping")

    records = []
    for position, raw in enumerate(raw_records):
        try:
            records.append(ElementRecord.model_validate(raw))
        except PydanticValidationError as e:
            error = ValidationError(
                f"Invalid catalog record #{position}: {e.errors()[0]['msg']}",
                context={"position": position, "record": repr(raw)[:200]},
                cause=e,
            )
            error.add_suggestion("Every record needs at least 'type' and 'id'")
            raise error from e
    return records


def load_catalog(path: Path) -> List[ElementRecord]:
    """Read a catalog YAML file."""
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.error("Cannot read catalog", path=str(path), error=str(e))
        raise ValidationError(
            f"Cannot read catalog {path}: {e}", context={"path": str(path)}, cause=e
        ) from e

    records = parse_catalog(data)
    logger.info("Catalog loaded", path=str(path), records=len(records))
    return records
