"""
Capability Index Service - discovery entry point and maintenance pipeline.

Query flow:
    verb triggers -> ranked candidates -> optional expansion along
    relationship edges -> merged, deduplicated ranking

Maintenance flow (one unit, under a lock):
    load -> upsert/remove -> triggers -> similarity -> discovery -> atomic save
"""

import asyncio
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from capindex.core.exceptions import ConfigurationError
from capindex.core.gate import ReadinessGate
from capindex.core.logging import AsyncLogger, logger
from capindex.core.secure_config import Settings
from capindex.core.tracing import MetricsCollector, merge_metrics
from capindex.graph.relationships import RelationshipManager, normalize_name
from capindex.index.schema import SchemaRegistry
from capindex.index.store import IndexStore
from capindex.models.catalog import ElementRecord
from capindex.models.index import CapabilityIndex
from capindex.models.reports import IndexStats, MaintenanceReport
from capindex.models.semantic_types import PathResult, RankedElement, SimilarMatch
from capindex.semantic.similarity import ProgressCallback, SimilarityEngine
from capindex.semantic.taxonomy import VerbTaxonomy
from capindex.semantic.verbs import VerbTriggerManager

RecordInput = Union[ElementRecord, Mapping[str, Any]]


class CapabilityIndexService:
    """
    Wires the index components and exposes query and maintenance operations.

    Configuration and the verb taxonomy load behind a ReadinessGate in
    start(); relationship discovery waits on the same gate.

    Readers (query, explain_relationship, stats) use the last loaded or saved
    version of the index. A maintenance unit works on a fresh load and only
    becomes visible once its atomic save completes.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        config_path: Optional[Path] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._settings = settings
        self._config_path = config_path
        self._overrides = overrides

        self.gate = ReadinessGate("configuration")
        self.metrics = MetricsCollector()
        self._lock = asyncio.Lock()
        self._index: Optional[CapabilityIndex] = None

        self.taxonomy: Optional[VerbTaxonomy] = None
        self.registry: Optional[SchemaRegistry] = None
        self.store: Optional[IndexStore] = None
        self.similarity: Optional[SimilarityEngine] = None
        self.verbs: Optional[VerbTriggerManager] = None
        self.relationships: Optional[RelationshipManager] = None

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    @property
    def started(self) -> bool:
        return self._index is not None

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            raise ConfigurationError("Service not started: settings not loaded")
        return self._settings

    async def start(self) -> None:
        """Load configuration and taxonomy (gated), wire components, load the index."""
        if self.started:
            return

        def load_configuration() -> Tuple[Settings, VerbTaxonomy]:
            settings = self._settings or Settings(
                config_path=self._config_path, overrides=self._overrides
            )
            return settings, VerbTaxonomy.from_settings(settings)

        self._settings, self.taxonomy = await self.gate.resolve(load_configuration)
        settings = self._settings

        log_file = settings.get("logging.file")
        if log_file:
            AsyncLogger.configure_file_sink(Path(log_file), settings.get("logging.level", "INFO"))

        self.registry = SchemaRegistry(settings.get("relationships.types") or None)
        self.store = IndexStore.from_settings(settings, registry=self.registry)
        self.similarity = SimilarityEngine.from_settings(settings, registry=self.registry)
        self.verbs = VerbTriggerManager.from_settings(settings, self.taxonomy)
        self.relationships = RelationshipManager.from_settings(
            settings, self.registry, verb_triggers=self.verbs, gate=self.gate
        )

        self._index = await self.store.load_async()
        if self.store.last_error is not None:
            self.metrics.increment("services.capability.recovered_corruption")
        logger.info(
            "CapabilityIndexService started",
            index=str(self.store.path),
            elements=self._index.element_count,
        )

    async def refresh(self) -> CapabilityIndex:
        """Re-read the index from disk for readers."""
        store = self._require_store()
        async with self._lock:
            self._index = await store.load_async()
        return self._index

    @property
    def index(self) -> CapabilityIndex:
        if self._index is None:
            raise ConfigurationError("Service not started: call start() first")
        return self._index

    def _require_store(self) -> IndexStore:
        if self.store is None:
            raise ConfigurationError("Service not started: call start() first")
        return self.store

    def _components(
        self,
    ) -> Tuple[IndexStore, SimilarityEngine, VerbTriggerManager, RelationshipManager]:
        if not (self.store and self.similarity and self.verbs and self.relationships):
            raise ConfigurationError("Service not started: call start() first")
        return self.store, self.similarity, self.verbs, self.relationships

    # ------------------------------------------------------------------ #
    # Maintenance
    # ------------------------------------------------------------------ #

    async def upsert_elements(self, records: Iterable[RecordInput]) -> MaintenanceReport:
        """
        Insert or update elements and refresh their derived data.

        Unchanged records are skipped. Records violating registered element
        type rules are rejected and reported.
        """
        store, similarity, verbs, relationships = self._components()
        parsed = [r if isinstance(r, ElementRecord) else ElementRecord.model_validate(r) for r in records]
        report = MaintenanceReport()

        async with self._lock:
            index = await store.load_async()
            added: List[str] = []

            for record in parsed:
                existing = index.get_entry(record.ref)
                entry = record.to_entry(existing)
                problems = store.registry.validate_entry(record.type, entry)
                if problems:
                    report.rejected[record.ref] = problems
                    logger.warning("Element rejected", element=record.ref, problems=problems)
                    continue
                if existing is not None and entry.to_document() == existing.to_document():
                    report.unchanged.append(record.ref)
                    continue
                index.put_entry(record.type, entry)
                report.upserted.append(record.ref)
                if existing is None:
                    added.append(record.ref)

            if report.upserted:
                stale_sources: List[str] = []
                for ref in report.upserted:
                    relationships.clear_discovered(index, ref)
                    stale_sources.extend(relationships.clear_discovered_towards(index, ref))
                report.triggers_changed = verbs.rebuild_all(index, report.upserted)

                rescore = similarity.rescore(index, report.upserted)
                report.similarity_pairs = rescore.pairs_scored
                report.similarity_edges_added = rescore.edges_added
                report.similarity_edges_removed = rescore.edges_removed

                targets = self._discovery_targets(index, report.upserted, added)
                targets.extend(dict.fromkeys(r for r in stale_sources if r not in targets))
                report.discovery = await relationships.discover(index, targets)

            if report.upserted or store.last_error is not None:
                report.save = await store.save_async(index)
            self._index = index

        self.metrics.increment("services.capability.upserts", len(report.upserted))
        logger.info(
            "Elements upserted",
            upserted=len(report.upserted),
            unchanged=len(report.unchanged),
            rejected=len(report.rejected),
        )
        return report

    def _discovery_targets(
        self, index: CapabilityIndex, changed: Sequence[str], added: Sequence[str]
    ) -> List[str]:
        """Changed elements, plus elements whose text may mention a new one."""
        targets: List[str] = list(changed)
        if not added:
            return targets

        names: Set[str] = set()
        for ref in added:
            entry = index.get_entry(ref)
            if entry is not None:
                names.add(normalize_name(entry.id))
                if entry.name:
                    names.add(normalize_name(entry.name))

        seen = set(targets)
        for ref, entry in index.iter_entries():
            if ref in seen:
                continue
            text = normalize_name(entry.descriptive_text())
            if any(name and name in text for name in names):
                targets.append(ref)
                seen.add(ref)
        return targets

    async def remove_elements(self, refs: Iterable[str]) -> MaintenanceReport:
        """Remove elements and every edge touching them."""
        store, _, _, relationships = self._components()
        report = MaintenanceReport()

        async with self._lock:
            index = await store.load_async()
            for ref in refs:
                if not index.has_entry(ref):
                    logger.debug("Remove skipped, element not indexed", element=ref)
                    continue
                relationships.remove_edges_to(index, ref)
                index.remove_entry(ref)
                report.removed.append(ref)

            if report.removed:
                report.save = await store.save_async(index)
            self._index = index

        self.metrics.increment("services.capability.removals", len(report.removed))
        logger.info("Elements removed", removed=len(report.removed))
        return report

    async def rebuild(self, progress: Optional[ProgressCallback] = None) -> MaintenanceReport:
        """
        Regenerate every derived artifact: triggers, similarity, discovered edges.

        Manual edges are kept.
        """
        store, similarity, verbs, relationships = self._components()
        report = MaintenanceReport()

        async with self._lock:
            index = await store.load_async()
            for _, entry in index.iter_entries():
                entry.relationships = [
                    e for e in entry.relationships if e.metadata.discovery_method == "manual"
                ]
            index.mark_modified()

            report.triggers_changed = verbs.rebuild_all(index)
            rescore = await similarity.rescore_all(index, progress=progress)
            report.similarity_pairs = rescore.pairs_scored
            report.similarity_edges_added = rescore.edges_added
            report.discovery = await relationships.discover(index)
            report.save = await store.save_async(index)
            self._index = index

        self.metrics.increment("services.capability.rebuilds")
        logger.info(
            "Index rebuilt",
            elements=index.element_count,
            relationships=index.relationship_count,
        )
        return report

    async def register_extension(self, name: str, schema_fragment: Dict[str, Any]) -> None:
        """Declare new relationship or element types and persist the declaration."""
        store = self._require_store()
        async with self._lock:
            index = await store.load_async()
            store.register_extension(index, name, schema_fragment)
            await store.save_async(index)
            self._index = index

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def query(
        self,
        text: str,
        expand: bool = True,
        max_depth: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[RankedElement]:
        """
        Ranked elements for a natural-language request.

        Expansion adds neighbours of verb matches with
        score = parent score x path strength x decay^depth; an element reached
        several ways keeps its best score.
        """
        _, _, verbs, relationships = self._components()
        index = self.index
        depth = self.settings.get("query.expansion_depth", 1) if max_depth is None else max_depth
        decay = self.settings.get("query.expansion_decay", 0.5)
        limit = limit or verbs.max_results

        ranked: Dict[str, RankedElement] = {}
        candidates = verbs.query(index, text, limit=limit)
        for candidate in candidates:
            ranked[candidate.ref] = RankedElement(
                ref=candidate.ref, score=candidate.score, source="verb", verb=candidate.verb
            )

        if expand and depth > 0:
            for candidate in candidates:
                for connected in relationships.connected_elements(index, candidate.ref, max_depth=depth):
                    score = round(candidate.score * connected.path_strength * decay**connected.depth, 6)
                    current = ranked.get(connected.ref)
                    if current is not None and current.score >= score:
                        continue
                    ranked[connected.ref] = RankedElement(
                        ref=connected.ref,
                        score=score,
                        source="expansion",
                        via_ref=candidate.ref,
                        relationship=connected.via_type,
                    )

        results = sorted(ranked.values(), key=lambda r: (-r.score, r.ref))[:limit]
        for result in results:
            entry = index.get_entry(result.ref)
            if entry is not None:
                result.name = entry.display_name
                result.description = entry.description

        self.metrics.increment("services.capability.queries")
        logger.debug("Query answered", text=text[:80], results=len(results))
        return results

    def explain_relationship(
        self, from_ref: str, to_ref: str, bidirectional: bool = False, max_hops: Optional[int] = None
    ) -> PathResult:
        """
        Shortest relationship path between two elements.

        Raises:
            NotFoundError: either element is not indexed
        """
        _, _, _, relationships = self._components()
        index = self.index
        index.require_entry(from_ref)
        index.require_entry(to_ref)
        return relationships.find_path(
            index, from_ref, to_ref, max_hops=max_hops, bidirectional=bidirectional
        )

    def similar(self, ref: str, top_k: int = 5) -> List[SimilarMatch]:
        _, similarity, _, _ = self._components()
        return similarity.find_similar(self.index, ref, top_k=top_k)

    def stats(self) -> IndexStats:
        store, similarity, verbs, relationships = self._components()
        index = self.index
        rel_stats = relationships.relationship_stats(index)
        return IndexStats(
            schema_version=index.schema_version,
            generated_at=index.generated_at,
            element_count=index.element_count,
            relationship_count=index.relationship_count,
            counts_by_type=index.counts_by_type(),
            trigger_count=verbs.trigger_count(index),
            relationship_types=rel_stats.by_type,
            extensions=sorted(index.extensions),
            metrics=merge_metrics(
                [self.metrics, store.metrics, similarity.metrics, verbs.metrics, relationships.metrics]
            ),
        )
