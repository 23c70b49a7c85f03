"""
Reports returned by maintenance operations and stats queries.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from capindex.core.exceptions import DiscoveryFailure


class SaveResult(BaseModel):
    """Outcome of IndexStore.save()."""

    path: str
    element_count: int = 0
    dropped: Dict[str, List[str]] = Field(
        default_factory=dict, description="Element type -> ids dropped by the capacity cap"
    )
    warnings: List[str] = Field(default_factory=list)

    @property
    def dropped_count(self) -> int:
        return sum(len(ids) for ids in self.dropped.values())


class DiscoveryReport(BaseModel):
    """
    Result of one relationship discovery batch.

    Failures are accumulated here instead of being raised, so one element's
    error never aborts discovery for the rest.
    """

    elements_processed: int = 0
    edges_added: int = 0
    edges_by_method: Dict[str, int] = Field(default_factory=dict)
    skipped_unknown_types: int = 0
    failures: List[DiscoveryFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def count(self, method: str, added: int) -> None:
        self.edges_added += added
        self.edges_by_method[method] = self.edges_by_method.get(method, 0) + added


class RelationshipTypeStats(BaseModel):
    count: int = 0
    mean_strength: float = 0.0


class RelationshipStats(BaseModel):
    """Aggregate counts per relationship type."""

    total_relationships: int = 0
    elements_with_relationships: int = 0
    by_type: Dict[str, RelationshipTypeStats] = Field(default_factory=dict)
    by_method: Dict[str, int] = Field(default_factory=dict)


class IndexStats(BaseModel):
    """Summary exposed by CapabilityIndexService.stats()."""

    schema_version: str
    generated_at: str
    element_count: int
    relationship_count: int
    counts_by_type: Dict[str, int] = Field(default_factory=dict)
    trigger_count: int = 0
    relationship_types: Dict[str, RelationshipTypeStats] = Field(default_factory=dict)
    extensions: List[str] = Field(default_factory=list)
    metrics: Dict[str, float] = Field(
        default_factory=dict, description="counters of this service instance since start"
    )


class MaintenanceReport(BaseModel):
    """Outcome of one maintenance unit (load, mutate, save)."""

    upserted: List[str] = Field(default_factory=list)
    unchanged: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)
    rejected: Dict[str, List[str]] = Field(
        default_factory=dict, description="ref -> problems for entries refused by schema rules"
    )
    triggers_changed: int = 0
    similarity_pairs: int = 0
    similarity_edges_added: int = 0
    similarity_edges_removed: int = 0
    discovery: Optional[DiscoveryReport] = None
    save: Optional[SaveResult] = None

    @property
    def warnings(self) -> List[str]:
        problems = [f"{ref}: {'; '.join(items)}" for ref, items in self.rejected.items()]
        return problems + (self.save.warnings if self.save else [])
