"""
Tests for RelationshipManager: discovery, edge bookkeeping and traversal.
"""

import pytest

from capindex.core.exceptions import ConfigurationError, NotFoundError, UnknownRelationshipTypeError
from capindex.core.gate import ReadinessGate
from capindex.graph.relationships import RelationshipManager, compile_custom_patterns, normalize_name
from capindex.models.element import EdgeMetadata, RelationshipEdge


def _edge(rel_type, target, strength=0.9, method="manual"):
    return RelationshipEdge(
        type=rel_type, target=target, strength=strength, metadata=EdgeMetadata(discovery_method=method)
    )


def _assert_mirrored(index, registry):
    for ref, entry in index.iter_entries():
        for edge in entry.relationships:
            inverse = registry.inverse_of(edge.type)
            if inverse:
                target = index.get_entry(edge.target)
                mirror = target.find_edge(inverse, ref)
                assert mirror is not None, f"{ref} -{edge.type}-> {edge.target} has no mirror"
                assert mirror.strength == edge.strength


@pytest.fixture
def manager(registry):
    return RelationshipManager(registry)


@pytest.fixture
def tool_index(make_index):
    return make_index(
        {
            "persona:debug-detective": {
                "name": "Debug Detective",
                "description": "Uses log-reader to find errors. Requires the Bug Report template.",
            },
            "skill:log-reader": {"name": "Log Reader", "description": "Reads logs."},
            "template:bug-report": {"name": "Bug Report", "description": "Structured bug write-up."},
            "persona:reviewer": {"name": "Reviewer", "description": "Prerequisite for debug-detective."},
        }
    )


@pytest.fixture
def chain(make_index, registry):
    registry.register_extension("tags", {"relationship_types": {"tagged": None}})
    index = make_index({f"node:n{i}": {} for i in range(8)})
    manager = RelationshipManager(registry)
    for i in range(7):
        manager.add_edge(index, f"node:n{i}", _edge("tagged", f"node:n{i + 1}", strength=0.9))
    return index, manager


class TestPatternDiscovery:
    async def test_discovers_and_mirrors(self, manager, tool_index, registry):
        report = await manager.discover(tool_index)

        detective = tool_index.get_entry("persona:debug-detective")
        uses = detective.find_edge("uses", "skill:log-reader")
        assert uses is not None
        assert uses.strength == 0.8
        assert uses.metadata.discovery_method == "pattern"
        assert uses.metadata.extras["matched"].lower().startswith("uses log-reader")
        assert detective.has_edge("requires", "template:bug-report")
        assert tool_index.get_entry("persona:reviewer").has_edge("prerequisite_for", "persona:debug-detective")
        assert detective.has_edge("depends_on", "persona:reviewer")

        assert report.elements_processed == 4
        assert report.ok
        assert report.edges_by_method["pattern"] == report.edges_added == 6
        _assert_mirrored(tool_index, registry)

    async def test_discovery_is_idempotent(self, manager, tool_index):
        await manager.discover(tool_index)
        count = tool_index.relationship_count

        again = await manager.discover(tool_index)

        assert again.edges_added == 0
        assert tool_index.relationship_count == count

    async def test_only_requested_refs(self, manager, tool_index):
        report = await manager.discover(tool_index, ["skill:log-reader"])

        assert report.elements_processed == 1
        assert tool_index.relationship_count == 0

    async def test_min_confidence_filters(self, registry, make_index):
        index = make_index({"skill:deploy": {"description": "Run after build-step."}, "skill:build-step": {}})

        strict = RelationshipManager(registry, min_confidence=0.65)
        await strict.discover(index)
        assert index.relationship_count == 0

        lenient = RelationshipManager(registry, min_confidence=0.5)
        await lenient.discover(index)
        assert index.get_entry("skill:deploy").has_edge("depends_on", "skill:build-step")

    async def test_cap_per_element(self, registry, make_index):
        targets = {f"skill:t{i}": {} for i in range(5)}
        text = " ".join(f"Uses t{i}." for i in range(5))
        index = make_index({"persona:hub": {"description": text}, **targets})

        report = await RelationshipManager(registry, max_relationships_per_element=2).discover(
            index, ["persona:hub"]
        )

        assert len(index.get_entry("persona:hub").relationships) == 2
        assert report.edges_added == 4

    def test_resolve_target_prefers_longest_prefix(self, manager):
        name_map = {"log": "skill:log", "logreader": "skill:log-reader"}

        assert manager.resolve_target("the Log Reader tool", name_map) == "skill:log-reader"
        assert manager.resolve_target("log files", name_map) == "skill:log"
        assert manager.resolve_target("nothing here", name_map) is None

    def test_normalize_name(self):
        assert normalize_name("Log_Reader -v2") == "logreaderv2"


class TestVerbDiscovery:
    async def test_shared_verb_creates_category_edge(self, registry, verbs, make_index):
        index = make_index(
            {"persona:a": {"declared_verbs": ["debug"]}, "persona:b": {"declared_verbs": ["debug"]}}
        )
        verbs.rebuild_all(index)
        manager = RelationshipManager(registry, verb_triggers=verbs)

        report = await manager.discover(index)

        edge = index.get_entry("persona:a").find_edge("helps_debug", "persona:b")
        assert edge is not None
        assert edge.strength == pytest.approx(0.63)
        assert edge.metadata.extras["verb"] == "debug"
        assert edge.metadata.extras["category"] == "debugging"
        assert index.get_entry("persona:b").has_edge("debugged_by", "persona:a")
        assert report.edges_by_method["verb"] == 4
        _assert_mirrored(index, registry)

    async def test_uncategorized_verbs_fall_back_to_similar_to(self, registry, verbs, make_index):
        index = make_index(
            {"skill:a": {"declared_verbs": ["test"]}, "skill:b": {"declared_verbs": ["test"]}}
        )
        verbs.rebuild_all(index)

        await RelationshipManager(registry, verb_triggers=verbs).discover(index)

        assert index.get_entry("skill:a").has_edge("similar_to", "skill:b")


class TestFailureIsolation:
    async def test_one_failing_element_does_not_stop_the_batch(self, manager, tool_index, monkeypatch):
        original = manager.pattern_candidates

        def flaky(ref, entry, name_map):
            if ref == "persona:reviewer":
                raise RuntimeError("boom")
            return original(ref, entry, name_map)

        monkeypatch.setattr(manager, "pattern_candidates", flaky)

        report = await manager.discover(tool_index)

        assert not report.ok
        assert len(report.failures) == 1
        failure = report.failures[0]
        assert (failure.element, failure.method, failure.error_type, failure.message) == (
            "persona:reviewer",
            "pattern",
            "RuntimeError",
            "boom",
        )
        assert report.elements_processed == 4
        assert tool_index.get_entry("persona:debug-detective").has_edge("uses", "skill:log-reader")

    async def test_missing_ref_is_reported(self, manager, tool_index):
        report = await manager.discover(tool_index, ["persona:ghost", "skill:log-reader"])

        assert [f.element for f in report.failures] == ["persona:ghost"]
        assert report.elements_processed == 1

    async def test_unknown_type_is_skipped_until_registered(self, registry, make_index):
        index = make_index({"note:a": {"description": "mentions b-note"}, "note:b-note": {}})
        manager = RelationshipManager(
            registry,
            custom_patterns=[{"type": "mentions", "pattern": r"\bmentions\s+(?P<target>[\w-]+)", "confidence": 0.9}],
        )

        report = await manager.discover(index)

        assert report.skipped_unknown_types == 1
        assert index.relationship_count == 0

        registry.register_extension("notes", {"relationship_types": {"mentions": "mentioned_by"}})
        report = await manager.discover(index)

        assert report.edges_added == 2
        assert index.get_entry("note:b-note").has_edge("mentioned_by", "note:a")

    def test_invalid_custom_patterns_are_skipped(self):
        compiled = compile_custom_patterns(
            [
                {"type": "x"},
                {"type": "x", "pattern": "("},
                {"type": "x", "pattern": "no group"},
                {"type": "x", "pattern": "(a)", "confidence": 2},
                "not a mapping",
                {"type": "x", "pattern": r"\bwith\s+(\w+)"},
            ]
        )

        assert [p.regex.pattern for p in compiled] == [r"\bwith\s+(\w+)"]


class TestGate:
    async def test_discovery_waits_for_configuration(self, registry, tool_index):
        gate = ReadinessGate()
        manager = RelationshipManager(registry, gate=gate, gate_timeout=0.01)

        with pytest.raises(ConfigurationError):
            await manager.discover(tool_index)
        assert tool_index.relationship_count == 0

        gate.open()
        report = await manager.discover(tool_index)
        assert report.edges_added > 0


class TestEdgeWrites:
    def test_add_edge_rejects_unknown_type(self, manager, tool_index):
        with pytest.raises(UnknownRelationshipTypeError):
            manager.add_edge(tool_index, "skill:log-reader", _edge("befriends", "template:bug-report"))

    def test_add_edge_missing_target(self, manager, tool_index):
        with pytest.raises(NotFoundError):
            manager.add_edge(tool_index, "skill:log-reader", _edge("uses", "skill:ghost"))

    def test_self_edges_are_ignored(self, manager, tool_index):
        assert manager.add_edge(tool_index, "skill:log-reader", _edge("uses", "skill:log-reader")) == 0

    def test_structural_duplicates_are_refused(self, manager, tool_index):
        assert manager.add_edge(tool_index, "skill:log-reader", _edge("uses", "template:bug-report")) == 2
        assert manager.add_edge(tool_index, "skill:log-reader", _edge("uses", "template:bug-report", 0.2)) == 0
        assert len(tool_index.get_entry("skill:log-reader").relationships) == 1

    def test_symmetric_type_mirrors_same_type(self, manager, tool_index):
        manager.add_edge(tool_index, "skill:log-reader", _edge("complements", "template:bug-report"))

        assert tool_index.get_entry("template:bug-report").has_edge("complements", "skill:log-reader")

    def test_remove_edges_to(self, manager, tool_index):
        manager.add_edge(tool_index, "skill:log-reader", _edge("uses", "template:bug-report"))
        manager.add_edge(tool_index, "persona:reviewer", _edge("uses", "skill:log-reader"))

        removed = manager.remove_edges_to(tool_index, "skill:log-reader")

        assert removed == 4
        assert tool_index.relationship_count == 0

    async def test_clear_discovered_keeps_manual_edges(self, manager, tool_index):
        manager.add_edge(tool_index, "persona:debug-detective", _edge("supports", "persona:reviewer"))
        await manager.discover(tool_index)

        manager.clear_discovered(tool_index, "persona:debug-detective")

        detective = tool_index.get_entry("persona:debug-detective")
        assert detective.has_edge("supports", "persona:reviewer")
        assert not detective.has_edge("uses", "skill:log-reader")
        assert not tool_index.get_entry("skill:log-reader").has_edge("used_by", "persona:debug-detective")

    async def test_clear_discovered_towards_returns_sources(self, manager, tool_index):
        manager.add_edge(tool_index, "persona:reviewer", _edge("supports", "skill:log-reader"))
        await manager.discover(tool_index)

        affected = manager.clear_discovered_towards(tool_index, "skill:log-reader")

        assert affected == ["persona:debug-detective"]
        assert not tool_index.get_entry("persona:debug-detective").has_edge("uses", "skill:log-reader")
        assert not tool_index.get_entry("skill:log-reader").has_edge("used_by", "persona:debug-detective")
        assert tool_index.get_entry("persona:reviewer").has_edge("supports", "skill:log-reader")

    def test_element_relationships_sorted(self, manager, tool_index):
        manager.add_edge(tool_index, "skill:log-reader", _edge("uses", "template:bug-report", 0.5))
        manager.add_edge(tool_index, "skill:log-reader", _edge("supports", "persona:reviewer", 0.9))

        edges = manager.element_relationships(tool_index, "skill:log-reader")

        assert [e.strength for e in edges] == [0.9, 0.5]
        with pytest.raises(NotFoundError):
            manager.element_relationships(tool_index, "skill:ghost")


class TestTraversal:
    def test_find_path_returns_ordered_steps(self, chain):
        index, manager = chain

        path = manager.find_path(index, "node:n0", "node:n3")

        assert path.found
        assert [s.target for s in path.steps] == ["node:n1", "node:n2", "node:n3"]
        assert path.hops == 3
        assert path.strength == pytest.approx(0.9**3)

    def test_unreachable_within_six_hops(self, chain):
        index, manager = chain

        assert manager.find_path(index, "node:n0", "node:n6").found
        path = manager.find_path(index, "node:n0", "node:n7")

        assert not path.found
        assert path.steps == []
        assert path.max_hops == 6
        assert manager.find_path(index, "node:n0", "node:n7", max_hops=7).found

    def test_direction_and_bidirectional_walk(self, chain):
        index, manager = chain

        assert not manager.find_path(index, "node:n3", "node:n1").found
        path = manager.find_path(index, "node:n3", "node:n1", bidirectional=True)

        assert path.found
        assert all(step.reversed for step in path.steps)

    def test_inverse_edges_make_reverse_paths(self, manager, tool_index):
        manager.add_edge(tool_index, "persona:reviewer", _edge("uses", "skill:log-reader"))

        path = manager.find_path(tool_index, "skill:log-reader", "persona:reviewer")

        assert [s.type for s in path.steps] == ["used_by"]

    def test_cycles_terminate(self, registry, make_index):
        index = make_index({"skill:a": {}, "skill:b": {}, "skill:c": {}, "skill:z": {}})
        manager = RelationshipManager(registry)
        manager.add_edge(index, "skill:a", _edge("follows", "skill:b"))
        manager.add_edge(index, "skill:b", _edge("follows", "skill:c"))
        manager.add_edge(index, "skill:c", _edge("follows", "skill:a"))

        path = manager.find_path(index, "skill:a", "skill:z", bidirectional=True)
        connected = manager.connected_elements(index, "skill:a", max_depth=10)

        assert not path.found
        assert path.explored == 3
        assert sorted(c.ref for c in connected) == ["skill:b", "skill:c"]

    def test_same_and_missing_refs(self, chain):
        index, manager = chain

        same = manager.find_path(index, "node:n2", "node:n2")
        missing = manager.find_path(index, "node:n2", "node:ghost")

        assert same.found and same.steps == []
        assert not missing.found

    def test_type_and_strength_filters(self, manager, tool_index):
        manager.add_edge(tool_index, "persona:reviewer", _edge("uses", "skill:log-reader", 0.3))

        assert not manager.find_path(
            tool_index, "persona:reviewer", "skill:log-reader", min_strength=0.5
        ).found
        assert not manager.find_path(
            tool_index, "persona:reviewer", "skill:log-reader", relationship_types=["supports"]
        ).found

    def test_connected_elements_ordering(self, registry, make_index):
        index = make_index({f"skill:{n}": {} for n in "abcde"})
        manager = RelationshipManager(registry)
        registry.register_extension("tags", {"relationship_types": {"tagged": None}})
        manager.add_edge(index, "skill:a", _edge("tagged", "skill:c", 0.6))
        manager.add_edge(index, "skill:a", _edge("tagged", "skill:b", 0.9))
        manager.add_edge(index, "skill:a", _edge("tagged", "skill:d", 0.9))
        manager.add_edge(index, "skill:b", _edge("tagged", "skill:e", 0.5))
        manager.add_edge(index, "skill:c", _edge("tagged", "skill:e", 0.9))

        connected = manager.connected_elements(index, "skill:a", max_depth=2)

        assert [(c.ref, c.depth) for c in connected] == [
            ("skill:b", 1),
            ("skill:d", 1),
            ("skill:c", 1),
            ("skill:e", 2),
        ]
        assert connected[-1].path_strength == pytest.approx(0.54)
        assert connected[-1].parent == "skill:c"
        assert [c.ref for c in manager.connected_elements(index, "skill:a", max_depth=1)] == [
            "skill:b",
            "skill:d",
            "skill:c",
        ]
        assert manager.connected_elements(index, "skill:ghost") == []


class TestStats:
    def test_relationship_stats(self, manager, tool_index):
        manager.add_edge(tool_index, "skill:log-reader", _edge("uses", "template:bug-report", 0.8))
        manager.add_edge(tool_index, "persona:reviewer", _edge("uses", "template:bug-report", 0.6))

        stats = manager.relationship_stats(tool_index)

        assert stats.total_relationships == 4
        assert stats.elements_with_relationships == 3
        assert stats.by_type["uses"].count == 2
        assert stats.by_type["uses"].mean_strength == pytest.approx(0.7)
        assert stats.by_type["used_by"].count == 2
        assert stats.by_method == {"manual": 4}
        assert list(stats.by_type) == ["used_by", "uses"]
