"""Tests for reference resolution."""

import pytest

from src.core.errors import AmbiguousReferenceError, NoMatchError, OutOfRangeError
from src.history import IterationHistory, IterationResult

from .lib import MatchType, resolve_reference


@pytest.fixture
def history():
    """History with three distinct prompts."""
    history = IterationHistory("session-test")
    for prompt in ("A red fox", "a red fox at dusk", "A blue whale"):
        history.push(prompt, IterationResult())
    return history


class TestResolveReference:
    """Tests for resolve_reference."""

    @pytest.mark.unit
    def test_numeric_string(self, history):
        """Integer strings resolve to that index."""
        resolved = resolve_reference(history, "1")
        assert resolved.index == 1
        assert resolved.match_type == MatchType.INDEX
        assert resolved.iteration.prompt == "a red fox at dusk"

    @pytest.mark.unit
    def test_int_reference(self, history):
        """Plain ints resolve too."""
        assert resolve_reference(history, 0).index == 0

    @pytest.mark.unit
    def test_numeric_out_of_range(self, history):
        """Indices outside the timeline raise OutOfRangeError."""
        with pytest.raises(OutOfRangeError):
            resolve_reference(history, "3")
        with pytest.raises(OutOfRangeError):
            resolve_reference(history, "-1")

    @pytest.mark.unit
    def test_latest_equals_last_index(self, history):
        """'latest' resolves like the last index."""
        latest = resolve_reference(history, "LATEST")
        assert latest.match_type == MatchType.LATEST
        assert latest.index == resolve_reference(history, str(history.size() - 1)).index

    @pytest.mark.unit
    def test_first(self, history):
        """'first' resolves to index 0."""
        assert resolve_reference(history, "First").index == 0

    @pytest.mark.unit
    def test_keywords_on_empty_history(self):
        """Keywords on an empty timeline raise OutOfRangeError."""
        empty = IterationHistory("empty")
        with pytest.raises(OutOfRangeError):
            resolve_reference(empty, "latest")
        with pytest.raises(OutOfRangeError):
            resolve_reference(empty, "first")

    @pytest.mark.unit
    def test_unique_substring(self, history):
        """A unique case-insensitive substring resolves."""
        resolved = resolve_reference(history, "WHALE")
        assert resolved.index == 2
        assert resolved.match_type == MatchType.PROMPT

    @pytest.mark.unit
    def test_no_match(self, history):
        """Unknown text raises NoMatchError."""
        with pytest.raises(NoMatchError, match="zzz-no-match"):
            resolve_reference(history, "zzz-no-match")

    @pytest.mark.unit
    def test_ambiguous_lists_candidates(self, history):
        """Several matches raise with every candidate."""
        with pytest.raises(AmbiguousReferenceError) as exc_info:
            resolve_reference(history, "red fox")
        assert exc_info.value.candidates == [
            (0, "A red fox"),
            (1, "a red fox at dusk"),
        ]
        assert 'Iteration 1: "a red fox at dusk"' in str(exc_info.value)

    @pytest.mark.unit
    def test_blank_reference(self, history):
        """Blank references are rejected."""
        with pytest.raises(ValueError):
            resolve_reference(history, "   ")

    @pytest.mark.unit
    def test_archived_iterations_searched(self, history):
        """Prompt search reaches iterations orphaned by a rollback."""
        history.rollback(0)
        resolved = resolve_reference(history, "whale")
        assert resolved.index == 2
        assert resolved.archived is True
        assert resolved.iteration.prompt == "A blue whale"

    @pytest.mark.unit
    def test_archived_and_active_matches_are_ambiguous(self, history):
        """An archived match competes with an active one."""
        history.rollback(0)
        with pytest.raises(AmbiguousReferenceError) as exc_info:
            resolve_reference(history, "red fox")
        assert [index for index, _ in exc_info.value.candidates] == [0, 1]

    @pytest.mark.unit
    def test_keywords_ignore_archived(self, history):
        """latest addresses the active timeline after a rollback."""
        history.rollback(0)
        resolved = resolve_reference(history, "latest")
        assert resolved.index == 0
        assert resolved.archived is False

    @pytest.mark.unit
    def test_to_dict(self, history):
        """Serialized form carries the index and prompt."""
        data = resolve_reference(history, "whale").to_dict()
        assert data["resolved"] is True
        assert data["iteration_index"] == 2
        assert data["match_type"] == "prompt"
        assert data["archived"] is False
        assert data["branch"] == 0
        assert data["prompt"] == "A blue whale"
