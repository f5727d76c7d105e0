"""Suggestion store, ranking, rendering and the agent status file."""

import pytest

from shellwatch.agent.pipeline import AnalysisSuggestion, Provenance
from shellwatch.agent.status import AgentStatus, format_status, load_status, update_status
from shellwatch.agent.suggestions import (
    SuggestionStore,
    format_suggestion_compact,
    format_suggestions_for_cli,
)


def _sugg(sid, priority="medium", confidence=0.5, ts=1000, title=None, snippet=None, type="tip"):
    return AnalysisSuggestion(
        id=sid,
        type=type,
        priority=priority,
        title=title or f"title {sid}",
        description=f"description {sid}",
        confidence=confidence,
        actionable_snippet=snippet,
        provenance=Provenance(analyzer="test", layer=1, timestamp=ts),
        timestamp=ts,
    )


class TestSuggestionStore:

    @pytest.fixture(autouse=True)
    def _store(self, home):
        self.store = SuggestionStore()

    def test_add_persists_and_skips_duplicates(self):
        assert self.store.add([_sugg("a"), _sugg("b")], command="nix build") == 2
        assert self.store.add([_sugg("a")]) == 0
        reloaded = SuggestionStore()
        assert len(reloaded) == 2
        assert reloaded.get("a").command == "nix build"

    def test_top_ranks_priority_then_confidence_then_recency(self):
        self.store.add([
            _sugg("low-sure", priority="low", confidence=0.99),
            _sugg("high-old", priority="high", confidence=0.8, ts=1),
            _sugg("high-new", priority="high", confidence=0.8, ts=2),
            _sugg("high-best", priority="high", confidence=0.9),
            _sugg("medium", priority="medium", confidence=0.9),
        ])
        assert [s.id for s in self.store.get_top(4)] == ["high-best", "high-new", "high-old", "medium"]

    def test_dismissed_are_hidden(self):
        self.store.add([_sugg("a"), _sugg("b")])
        assert self.store.dismiss("a") is True
        assert self.store.dismiss("missing") is False
        assert [s.id for s in self.store.get_all()] == ["b"]
        assert len(self.store.get_all(include_dismissed=True)) == 2
        assert SuggestionStore().get("a").dismissed is True

    def test_apply_only_marks(self):
        self.store.add([_sugg("a", snippet="rm -rf result")])
        assert self.store.apply("a") is True
        assert self.store.get("a").applied is True
        assert self.store.get("a").dismissed is False

    def test_capacity_keeps_newest(self):
        store = SuggestionStore(max_suggestions=3)
        store.add([_sugg(f"s{i}", ts=i) for i in range(5)])
        assert {s.id for s in store.get_all()} == {"s2", "s3", "s4"}

    def test_filters(self):
        self.store.add([_sugg("a", priority="high", type="warning")], command="git push")
        self.store.add([_sugg("b")], command="make")
        assert [s.id for s in self.store.get_by_priority("high")] == ["a"]
        assert [s.id for s in self.store.get_by_type("warning")] == ["a"]
        assert [s.id for s in self.store.get_for_command("make")] == ["b"]

    def test_clear(self):
        self.store.add([_sugg("a")])
        self.store.clear()
        assert len(SuggestionStore()) == 0

    def test_unreadable_file_starts_empty(self, home):
        home.mkdir(parents=True, exist_ok=True)
        self.store.path.write_text("[[[")
        assert len(SuggestionStore()) == 0


class TestRendering:

    def test_empty(self):
        assert format_suggestions_for_cli([]) == "No suggestions available."

    def test_groups_by_priority(self):
        text = format_suggestions_for_cli([
            _sugg("a", priority="low", title="Low one"),
            _sugg("b", priority="high", title="High one", snippet="export X=1"),
        ])
        assert text.index("HIGH PRIORITY:") < text.index("LOW PRIORITY:")
        assert "MEDIUM PRIORITY:" not in text
        assert "    export X=1" in text
        assert "id: b" in text

    def test_compact(self):
        assert format_suggestion_compact(_sugg("a", priority="high", title="Boom")) == "⚠ Boom"
        assert format_suggestion_compact(None) == ""


class TestStatus:

    def test_defaults_when_missing(self):
        assert load_status().status == "idle"

    def test_update_round_trips(self):
        update_status(status="analyzing", last_command="nix")
        status = update_status(status="issues_found", high_priority_count=2)
        assert status.last_command == "nix"
        assert load_status().high_priority_count == 2
        assert status.last_updated > 0

    def test_format(self):
        assert format_status(AgentStatus()) == "● idle"
        assert format_status(AgentStatus(status="analyzing")) == "⟳ analyzing"
        assert format_status(AgentStatus(status="issues_found", high_priority_count=1)) == "⚠ 1 issue"
        assert format_status(AgentStatus(status="issues_found", high_priority_count=3)) == "⚠ 3 issues"
