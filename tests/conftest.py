"""
Shared fixtures for capindex tests.
"""

from pathlib import Path
from typing import Any, Dict, List

import pytest
import pytest_asyncio
import yaml

from capindex.core.secure_config import Settings
from capindex.core.utils.datetime_utils import set_mock_time
from capindex.index.schema import SchemaRegistry
from capindex.index.store import IndexStore
from capindex.models.element import ElementEntry
from capindex.models.index import CapabilityIndex
from capindex.semantic.taxonomy import VerbTaxonomy
from capindex.semantic.verbs import VerbTriggerManager
from capindex.services.capability_service import CapabilityIndexService


SAMPLE_CATALOG: List[Dict[str, Any]] = [
    {
        "type": "persona",
        "id": "debug-detective",
        "name": "Debug Detective",
        "description": "Finds the root cause of failing tests and crashes. Uses log-reader.",
        "keywords": ["debugging", "stack traces", "errors"],
        "verbs": ["debug"],
    },
    {
        "type": "skill",
        "id": "log-reader",
        "name": "Log Reader",
        "description": "Reads application logs and extracts error messages.",
        "keywords": ["logs", "errors"],
        "verbs": ["analyze"],
    },
    {
        "type": "template",
        "id": "bug-report",
        "name": "Bug Report",
        "description": "Template to document a bug. Requires debug-detective.",
        "keywords": ["bugs", "reports"],
        "verbs": ["document"],
    },
    {
        "type": "persona",
        "id": "test-writer",
        "name": "Test Writer",
        "description": "Writes unit tests and verifies fixes.",
        "keywords": ["testing"],
        "verbs": ["test", "write"],
    },
]


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    """Keep ./.capindex.yaml lookups and env overrides away from the real environment."""
    monkeypatch.chdir(tmp_path)
    for key in (
        "CAPINDEX_CONFIG",
        "CAPINDEX_INDEX_PATH",
        "CAPINDEX_LOG_LEVEL",
        "CAPINDEX_SIMILARITY_THRESHOLD",
    ):
        monkeypatch.delenv(key, raising=False)
    yield tmp_path
    set_mock_time(None)


@pytest.fixture
def index_path(tmp_path) -> Path:
    return tmp_path / "data" / "capability-index.yaml"


@pytest.fixture
def settings(index_path) -> Settings:
    return Settings(overrides={"index": {"path": str(index_path)}}, load_environment=False)


@pytest.fixture
def registry() -> SchemaRegistry:
    return SchemaRegistry()


@pytest.fixture
def store(index_path, registry) -> IndexStore:
    return IndexStore(index_path, registry=registry)


@pytest.fixture
def taxonomy() -> VerbTaxonomy:
    return VerbTaxonomy.build()


@pytest.fixture
def verbs(taxonomy) -> VerbTriggerManager:
    return VerbTriggerManager(taxonomy)


@pytest.fixture
def sample_catalog() -> List[Dict[str, Any]]:
    return [dict(record) for record in SAMPLE_CATALOG]


@pytest.fixture
def catalog_file(tmp_path, sample_catalog) -> Path:
    path = tmp_path / "catalog.yaml"
    path.write_text(yaml.safe_dump({"elements": sample_catalog}, sort_keys=False), encoding="utf-8")
    return path


def _make_index(entries: Dict[str, Dict[str, Any]]) -> CapabilityIndex:
    index = CapabilityIndex()
    for ref, fields in entries.items():
        element_type, element_id = ref.split(":", 1)
        index.put_entry(element_type, ElementEntry(id=element_id, **fields))
    return index


@pytest.fixture
def make_index():
    """Build an index from {"type:id": {entry fields}}."""
    return _make_index


@pytest_asyncio.fixture
async def service(settings) -> CapabilityIndexService:
    svc = CapabilityIndexService(settings=settings)
    await svc.start()
    return svc


@pytest_asyncio.fixture
async def loaded_service(service, sample_catalog) -> CapabilityIndexService:
    await service.upsert_elements(sample_catalog)
    return service
