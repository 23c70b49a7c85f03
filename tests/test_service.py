"""
Tests for CapabilityIndexService: maintenance units and queries end to end.
"""

import pytest

from capindex.core.exceptions import ConfigurationError, NotFoundError
from capindex.index.store import IndexStore
from capindex.models.element import EdgeMetadata, RelationshipEdge
from capindex.services.capability_service import CapabilityIndexService


class TestLifecycle:
    async def test_not_started(self, settings):
        service = CapabilityIndexService(settings=settings)

        with pytest.raises(ConfigurationError):
            service.query("debug this")
        with pytest.raises(ConfigurationError):
            service.stats()
        with pytest.raises(ConfigurationError):
            await service.upsert_elements([])

    async def test_start_on_missing_file(self, service, index_path):
        assert service.started
        assert service.gate.is_open
        assert service.index.element_count == 0
        assert not index_path.exists()

    async def test_start_twice_is_noop(self, service):
        index = service.index

        await service.start()

        assert service.index is index

    async def test_corrupt_file_recovered_on_next_save(self, settings, index_path, sample_catalog):
        index_path.parent.mkdir(parents=True)
        index_path.write_text("elements: [unclosed\n", encoding="utf-8")
        service = CapabilityIndexService(settings=settings)

        await service.start()

        assert service.store.last_error is not None
        assert service.index.element_count == 0
        assert len(list(index_path.parent.glob("*.corrupt-*"))) == 1

        await service.upsert_elements(sample_catalog)
        assert IndexStore(index_path).load().element_count == 4


class TestUpsert:
    async def test_first_upsert(self, service, sample_catalog, index_path):
        report = await service.upsert_elements(sample_catalog)

        assert sorted(report.upserted) == sorted(f"{r['type']}:{r['id']}" for r in sample_catalog)
        assert report.triggers_changed == 4
        assert report.similarity_pairs > 0
        assert report.discovery is not None and report.discovery.ok
        assert report.save is not None and report.save.element_count == 4
        assert IndexStore(index_path).load().element_count == 4

    async def test_relationships_and_triggers_are_derived(self, loaded_service):
        index = loaded_service.index
        detective = index.get_entry("persona:debug-detective")

        assert detective.has_edge("uses", "skill:log-reader")
        assert index.get_entry("skill:log-reader").has_edge("used_by", "persona:debug-detective")
        assert index.get_entry("template:bug-report").has_edge("requires", "persona:debug-detective")
        assert ("debug", 0.9) in [(t.verb, t.confidence) for t in detective.actions]

    async def test_unchanged_records_are_skipped(self, loaded_service, sample_catalog):
        report = await loaded_service.upsert_elements(sample_catalog)

        assert report.upserted == []
        assert len(report.unchanged) == 4
        assert report.save is None

    async def test_changed_record_is_reprocessed(self, loaded_service, sample_catalog):
        record = dict(sample_catalog[1], description="Parses application logs.")

        report = await loaded_service.upsert_elements([record])

        assert report.upserted == ["skill:log-reader"]
        assert loaded_service.index.get_entry("skill:log-reader").description == "Parses application logs."
        # The pattern edge belongs to the unchanged element and survives
        assert loaded_service.index.get_entry("persona:debug-detective").has_edge("uses", "skill:log-reader")

    async def test_new_element_is_linked_from_existing_text(self, service, sample_catalog):
        without_reader = [r for r in sample_catalog if r["id"] != "log-reader"]
        await service.upsert_elements(without_reader)
        assert not service.index.get_entry("persona:debug-detective").has_edge("uses", "skill:log-reader")

        report = await service.upsert_elements([r for r in sample_catalog if r["id"] == "log-reader"])

        assert report.discovery.elements_processed >= 2
        assert service.index.get_entry("persona:debug-detective").has_edge("uses", "skill:log-reader")

    async def test_changed_verbs_drop_edges_held_by_others(self, service):
        def discovered(index):
            return sorted(
                (ref, edge.type, edge.target)
                for ref, entry in index.iter_entries()
                for edge in entry.relationships
                if edge.metadata.discovery_method in ("pattern", "verb")
            )

        await service.upsert_elements(
            [
                {"type": "persona", "id": "alpha", "description": "First persona.", "verbs": ["debug"]},
                {"type": "persona", "id": "beta", "description": "Second persona.", "verbs": ["debug"]},
            ]
        )
        assert service.index.get_entry("persona:beta").has_edge("helps_debug", "persona:alpha")

        await service.upsert_elements(
            [{"type": "persona", "id": "alpha", "description": "First persona.", "verbs": ["document"]}]
        )
        incremental = discovered(service.index)
        await service.rebuild()

        assert incremental == discovered(service.index)
        assert not service.index.get_entry("persona:beta").has_edge("helps_debug", "persona:alpha")
        assert not service.index.get_entry("persona:alpha").has_edge("debugged_by", "persona:beta")

    async def test_rejected_by_element_type_rules(self, service):
        await service.register_extension(
            "workflows", {"element_types": {"workflow": {"required_custom": ["steps"]}}}
        )

        report = await service.upsert_elements(
            [
                {"type": "workflow", "id": "release"},
                {"type": "workflow", "id": "hotfix", "custom": {"steps": ["patch", "ship"]}},
            ]
        )

        assert list(report.rejected) == ["workflow:release"]
        assert report.upserted == ["workflow:hotfix"]
        assert report.warnings == ["workflow:release: missing custom field 'steps'"]
        assert not service.index.has_entry("workflow:release")


class TestRemove:
    async def test_remove_drops_element_and_incident_edges(self, loaded_service):
        report = await loaded_service.remove_elements(["skill:log-reader", "skill:ghost"])

        index = loaded_service.index
        assert report.removed == ["skill:log-reader"]
        assert not index.has_entry("skill:log-reader")
        for _, entry in index.iter_entries():
            assert all(edge.target != "skill:log-reader" for edge in entry.relationships)

    async def test_remove_nothing_does_not_save(self, loaded_service):
        report = await loaded_service.remove_elements(["skill:ghost"])

        assert report.removed == []
        assert report.save is None


class TestRebuild:
    async def test_rebuild_keeps_manual_edges(self, loaded_service):
        manual = RelationshipEdge(
            type="supports", target="persona:test-writer", strength=0.95, metadata=EdgeMetadata()
        )
        loaded_service.relationships.add_edge(loaded_service.index, "skill:log-reader", manual)
        await loaded_service.store.save_async(loaded_service.index)
        calls = []

        report = await loaded_service.rebuild(progress=lambda done, total: calls.append((done, total)))

        index = loaded_service.index
        assert index.get_entry("skill:log-reader").has_edge("supports", "persona:test-writer")
        assert index.get_entry("persona:test-writer").has_edge("supported_by", "skill:log-reader")
        assert index.get_entry("persona:debug-detective").has_edge("uses", "skill:log-reader")
        assert report.similarity_pairs == 6
        assert calls[-1] == (6, 6)
        assert report.save is not None

    async def test_rebuild_is_stable(self, loaded_service):
        before = loaded_service.index.relationship_count

        await loaded_service.rebuild()

        assert loaded_service.index.relationship_count == before


class TestExtensions:
    async def test_register_extension_persists(self, service, settings):
        await service.register_extension("notes", {"relationship_types": {"mentions": "mentioned_by"}})

        assert service.registry.is_known("mentioned_by")
        assert service.stats().extensions == ["notes"]

        fresh = CapabilityIndexService(settings=settings)
        await fresh.start()
        assert fresh.registry.inverse_of("mentions") == "mentioned_by"


class TestQueries:
    async def test_query_ranks_verb_matches_first(self, loaded_service):
        results = loaded_service.query("help me troubleshoot this crash")

        top = results[0]
        assert top.ref == "persona:debug-detective"
        assert top.score == 0.9
        assert top.source == "verb"
        assert top.verb == "debug"
        assert top.name == "Debug Detective"

    async def test_query_expands_along_edges(self, loaded_service):
        results = {r.ref: r for r in loaded_service.query("help me troubleshoot this crash")}

        reader = results["skill:log-reader"]
        assert reader.source == "expansion"
        assert reader.via_ref == "persona:debug-detective"
        assert reader.score < results["persona:debug-detective"].score

    async def test_query_without_expansion(self, loaded_service):
        results = loaded_service.query("help me troubleshoot this crash", expand=False)

        assert all(r.source == "verb" for r in results)
        assert "skill:log-reader" not in [r.ref for r in results]

    async def test_query_limit_and_no_match(self, loaded_service):
        assert len(loaded_service.query("help me troubleshoot this crash", limit=1)) == 1
        assert loaded_service.query("banana bread") == []

    async def test_explain_relationship(self, loaded_service):
        path = loaded_service.explain_relationship("template:bug-report", "skill:log-reader")

        assert path.found
        assert path.steps[0].source == "template:bug-report"
        assert path.steps[-1].target == "skill:log-reader"
        assert path.hops <= 2

    async def test_explain_missing_element(self, loaded_service):
        with pytest.raises(NotFoundError):
            loaded_service.explain_relationship("template:bug-report", "skill:ghost")

    async def test_similar(self, loaded_service):
        matches = loaded_service.similar("persona:debug-detective", top_k=2)

        assert len(matches) == 2
        assert "persona:debug-detective" not in [m.ref for m in matches]
        assert matches[0].score.score >= matches[1].score.score
        with pytest.raises(NotFoundError):
            loaded_service.similar("persona:ghost")

    async def test_stats(self, loaded_service):
        stats = loaded_service.stats()

        assert stats.element_count == 4
        assert stats.counts_by_type == {"persona": 2, "skill": 1, "template": 1}
        assert stats.relationship_count == loaded_service.index.relationship_count > 0
        assert stats.trigger_count > 0
        assert "uses" in stats.relationship_types
        assert stats.metrics["index.store.saves"] >= 1
        assert stats.metrics["services.capability.upserts"] == 4
        assert stats.metrics["graph.discovery.count"] >= 1
        assert stats.metrics["graph.discovery.total_ms"] >= 0

    async def test_refresh_reads_latest_save(self, loaded_service, settings):
        other = CapabilityIndexService(settings=settings)
        await other.start()
        await other.remove_elements(["persona:test-writer"])

        assert loaded_service.index.has_entry("persona:test-writer")
        index = await loaded_service.refresh()
        assert not index.has_entry("persona:test-writer")
