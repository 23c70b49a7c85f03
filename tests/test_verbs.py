"""
Tests for the verb taxonomy and VerbTriggerManager.
"""

import pytest

from capindex.core.secure_config import Settings
from capindex.models.element import ActionTrigger, ElementEntry
from capindex.semantic.taxonomy import VerbTaxonomy, normalize_verb
from capindex.semantic.verbs import (
    TIER_DESCRIPTION,
    TIER_EXPLICIT,
    TIER_NAME,
    TIER_SYNONYM,
    VerbTriggerManager,
)


class TestTaxonomy:
    @pytest.mark.parametrize(
        "word, expected",
        [
            ("debugging", "debug"),
            ("debugged", "debug"),
            ("creating", "create"),
            ("simplified", "simplify"),
            ("analyzes", "analyze"),
            ("fixes", "fix"),
            ("running", "run"),
            ("tested", "test"),
            ("validates", "validate"),
            ("debug", "debug"),
            ("banana", None),
        ],
    )
    def test_base_form(self, taxonomy, word, expected):
        assert taxonomy.base_form(word) == expected

    def test_canonical_and_siblings(self, taxonomy):
        assert taxonomy.canonical("troubleshoot") == "debug"
        assert taxonomy.category_of("troubleshoot") == "debugging"
        assert "fix" in taxonomy.siblings("debug")
        assert "debug" not in taxonomy.siblings("debug")
        assert taxonomy.canonical("banana") is None

    def test_phrases(self, taxonomy):
        assert taxonomy.find_phrases("help me figure out this and set up ci") == [
            ("figure out", "solve"),
            ("set up", "configure"),
        ]

    def test_looks_like_verb(self, taxonomy):
        assert taxonomy.looks_like_verb("refactoring-helper") is True
        assert taxonomy.looks_like_verb("optimize")
        assert taxonomy.looks_like_verb("simplify")
        assert not taxonomy.looks_like_verb("documentation")
        assert not taxonomy.looks_like_verb("banana")

    def test_custom_vocabulary(self):
        taxonomy = VerbTaxonomy.build(
            custom_verbs={"debugging": ["bisect"], "deployment": "ship"},
            custom_phrases={"Roll  Back": "revert"},
            excluded_nouns=["ize"],
        )

        assert taxonomy.canonical("bisect") == "debug"
        assert taxonomy.canonical("ship") == "ship"
        assert taxonomy.custom_verbs == frozenset({"bisect", "ship"})
        assert taxonomy.find_phrases("please roll back now") == [("roll back", "revert")]
        assert not taxonomy.looks_like_verb("optimize")

    def test_frozen(self, taxonomy):
        with pytest.raises(Exception):
            taxonomy.custom_verbs = frozenset({"x"})

    def test_from_settings(self):
        settings = Settings(
            overrides={"verbs": {"custom_verbs": {"testing": ["fuzz"]}}}, load_environment=False
        )

        taxonomy = VerbTaxonomy.from_settings(settings)

        assert taxonomy.category_of("fuzz") == "testing"

    @pytest.mark.parametrize("value", [None, 3, "", "two words", "x" * 60, "9lives"])
    def test_normalize_verb_rejects(self, value):
        assert normalize_verb(value) is None


class TestExtractVerbs:
    def test_direct_and_canonical(self, verbs):
        resolved = {v.verb: v for v in verbs.extract_verbs("help me troubleshoot this")}

        assert resolved["troubleshoot"].via == "direct"
        assert resolved["debug"].via == "canonical"
        assert resolved["debug"].surface == "troubleshoot"

    def test_conjugation(self, verbs):
        resolved = {v.verb: v for v in verbs.extract_verbs("I was debugging all night")}

        assert resolved["debug"].via == "conjugation"
        assert resolved["debug"].surface == "debugging"

    def test_phrase_and_its_canonical_stay_phrase_derived(self, verbs):
        resolved = {v.verb: v for v in verbs.extract_verbs("can you figure out the crash")}

        assert resolved["solve"].via == "phrase"
        assert resolved["debug"].via == "phrase"
        assert resolved["debug"].phrase_derived

    def test_direct_beats_phrase(self, verbs):
        resolved = {v.verb: v for v in verbs.extract_verbs("debug it, or figure out why")}

        assert resolved["debug"].via == "direct"

    def test_custom_verbs_are_marked(self):
        manager = VerbTriggerManager(VerbTaxonomy.build(custom_verbs={"debugging": ["bisect"]}))

        resolved = {v.verb: v for v in manager.extract_verbs("bisect the history")}

        assert resolved["bisect"].via == "custom"

    def test_no_verbs(self, verbs):
        assert verbs.extract_verbs("") == []
        assert verbs.extract_verbs("banana bread") == []

    def test_verb_category(self, verbs):
        assert verbs.verb_category("Debugging") == "debugging"
        assert verbs.verb_category("banana") is None


class TestBuildTriggers:
    def test_tiers(self, verbs):
        entry = ElementEntry(
            id="code-reviewer",
            name="Code Reviewer",
            description="Explains code and suggests improvements",
            keywords=["refactor"],
            declared_verbs=["analyze"],
        )

        triggers = {t.verb: t for t in verbs.build_triggers("persona", entry)}

        assert (triggers["analyze"].tier, triggers["analyze"].confidence) == (TIER_EXPLICIT, 0.9)
        assert (triggers["refactor"].tier, triggers["refactor"].confidence) == (TIER_NAME, 0.6)
        assert (triggers["explain"].tier, triggers["explain"].confidence) == (TIER_DESCRIPTION, 0.4)

    def test_synonyms_derive_from_parent_tier(self, verbs):
        entry = ElementEntry(id="x", declared_verbs=["debug"])

        triggers = {t.verb: t for t in verbs.build_triggers("persona", entry)}

        fix = triggers["fix"]
        assert fix.tier == TIER_SYNONYM
        assert fix.confidence == pytest.approx(0.72)
        assert fix.derived_from == TIER_EXPLICIT
        assert fix.source_verb == "debug"

    def test_one_trigger_per_verb_highest_wins(self, verbs):
        entry = ElementEntry(id="debugger", description="debug anything", declared_verbs=["debug"])

        triggers = verbs.build_triggers("persona", entry)

        debug = [t for t in triggers if t.verb == "debug"]
        assert len(debug) == 1
        assert debug[0].confidence == 0.9

    def test_sorted_and_capped(self, taxonomy):
        manager = VerbTriggerManager(taxonomy, max_triggers_per_element=3)
        entry = ElementEntry(id="x", declared_verbs=["debug", "create"])

        triggers = manager.build_triggers("persona", entry)

        assert len(triggers) == 3
        assert [t.confidence for t in triggers] == sorted((t.confidence for t in triggers), reverse=True)
        assert [t.verb for t in triggers[:2]] == ["create", "debug"]

    def test_configured_weights(self, taxonomy):
        manager = VerbTriggerManager(
            taxonomy, tiers={"explicit": 1.0}, synonym_multiplier=0.5, include_synonyms=True
        )
        entry = ElementEntry(id="x", declared_verbs=["debug"])

        triggers = {t.verb: t for t in manager.build_triggers("persona", entry)}

        assert triggers["debug"].confidence == 1.0
        assert triggers["fix"].confidence == 0.5

    def test_synonyms_can_be_disabled(self, taxonomy):
        manager = VerbTriggerManager(taxonomy, include_synonyms=False)

        triggers = manager.build_triggers("persona", ElementEntry(id="x", declared_verbs=["debug"]))

        assert [t.verb for t in triggers] == ["debug"]

    def test_apply_triggers_touches_only_on_change(self, verbs, make_index):
        index = make_index({"persona:x": {"declared_verbs": ["debug"]}})
        entry = index.get_entry("persona:x")

        assert verbs.apply_triggers(index, "persona", entry) is True
        revision = index.revision
        assert verbs.apply_triggers(index, "persona", entry) is False
        assert index.revision == revision


class TestQuery:
    def test_troubleshoot_reaches_explicit_debug_trigger(self, verbs, make_index):
        index = make_index(
            {
                "persona:persona-A": {
                    "actions": [
                        ActionTrigger(verb="debug", tier=TIER_EXPLICIT, confidence=0.9),
                        ActionTrigger(verb="troubleshoot", tier=TIER_NAME, confidence=0.6),
                    ]
                }
            }
        )

        results = verbs.query(index, "help me troubleshoot this")

        assert len(results) == 1
        assert results[0].ref == "persona:persona-A"
        assert results[0].score == 0.9
        assert results[0].verb == "debug"
        assert results[0].tier == TIER_EXPLICIT

    def test_phrase_derived_scores_are_discounted(self, verbs, make_index):
        index = make_index(
            {"persona:solver": {"actions": [ActionTrigger(verb="solve", tier=TIER_EXPLICIT, confidence=0.9)]}}
        )

        results = verbs.query(index, "figure out why")

        assert results[0].score == pytest.approx(0.72)
        assert results[0].via == "phrase"

    def test_threshold_and_ordering(self, verbs, make_index):
        index = make_index(
            {
                "skill:b": {"actions": [ActionTrigger(verb="test", tier=TIER_NAME, confidence=0.6)]},
                "skill:a": {"actions": [ActionTrigger(verb="test", tier=TIER_NAME, confidence=0.6)]},
                "skill:weak": {"actions": [ActionTrigger(verb="test", tier="description-based", confidence=0.2)]},
                "skill:top": {"actions": [ActionTrigger(verb="test", tier=TIER_EXPLICIT, confidence=0.9)]},
            }
        )

        results = verbs.query(index, "test it")

        assert [r.ref for r in results] == ["skill:top", "skill:a", "skill:b"]

    def test_limit(self, verbs, make_index):
        index = make_index(
            {f"skill:s{i}": {"actions": [ActionTrigger(verb="run", tier=TIER_NAME, confidence=0.6)]} for i in range(5)}
        )

        assert len(verbs.query(index, "run", limit=2)) == 2

    def test_verb_index_follows_revisions(self, verbs, make_index):
        index = make_index({"persona:x": {"declared_verbs": ["debug"]}})
        assert verbs.query(index, "debug") == []

        verbs.rebuild_all(index)

        assert [r.ref for r in verbs.query(index, "debug")] == ["persona:x"]

    def test_reverse_lookup_and_elements_for_verb(self, verbs, make_index):
        index = make_index({"persona:x": {"declared_verbs": ["debug"]}, "skill:y": {"name": "Fixer"}})
        verbs.rebuild_all(index)

        assert verbs.reverse_lookup(index, "persona:x")[0] == "debug"
        refs = [c.ref for c in verbs.elements_for_verb(index, "debugging")]
        assert refs == ["persona:x"]
        assert "debug" in verbs.all_verbs(index)
        assert verbs.triggers_for(index, "persona:missing") == []
