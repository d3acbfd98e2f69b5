"""Tests for iteration history.

Tests cover:
- UndoStack push/undo/redo semantics and depth bound
- Snapshot isolation for mutable values
- IterationHistory push, undo/redo, rollback and branching
- Materialization from a persisted iteration record
- Model serialization
"""

import copy

import pytest

from src.core.errors import InvariantViolation, OutOfRangeError

from .lib import IterationHistory, UndoStack
from .models import GenerationMetadata, Iteration, IterationResult, as_mapping

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def sample_result():
    """Create a sample engine result."""
    return IterationResult(
        metadata=GenerationMetadata(
            prompt="a lighthouse at night",
            width=512,
            height=512,
            steps=20,
            guidance_scale=7.5,
            seed=42,
            latency_ms=1800,
            engine_name="mlx",
            model_name="sdxl-turbo",
        ),
        image_base64="aGVsbG8=",
    )


@pytest.fixture
def history():
    """Create an empty IterationHistory."""
    return IterationHistory("session-test")


def _push_prompts(history: IterationHistory, *prompts: str) -> list[Iteration]:
    return [history.push(prompt, IterationResult()) for prompt in prompts]


# =============================================================================
# UndoStack Tests
# =============================================================================


class TestUndoStack:
    """Tests for the generic bounded stack."""

    @pytest.mark.unit
    def test_empty_stack(self):
        """Empty stack has nothing to undo or redo."""
        stack = UndoStack[int]()
        assert stack.present is None
        assert stack.undo() is None
        assert stack.redo() is None
        assert not stack.can_undo()
        assert not stack.can_redo()

    @pytest.mark.unit
    def test_push_moves_present_to_past(self):
        """Push archives the previous present."""
        stack = UndoStack[int]()
        stack.push(1)
        stack.push(2)
        assert stack.past == [1]
        assert stack.present == 2

    @pytest.mark.unit
    def test_push_clears_future(self):
        """Any push yields an empty future."""
        stack = UndoStack[int]()
        for value in range(5):
            stack.push(value)
        stack.undo()
        stack.undo()
        assert stack.future == [3, 4]

        stack.push(99)
        assert stack.future == []
        assert not stack.can_redo()

    @pytest.mark.unit
    def test_undo_prepends_to_future(self):
        """Undo puts the present at the front of the future."""
        stack = UndoStack[str]()
        for value in "abc":
            stack.push(value)
        assert stack.undo() == "b"
        assert stack.undo() == "a"
        assert stack.future == ["b", "c"]

    @pytest.mark.unit
    @pytest.mark.parametrize("depth", [1, 7, 50])
    def test_undo_then_redo_restores_present(self, depth):
        """Undo followed by redo restores the prior present at any depth."""
        stack = UndoStack[int]()
        for value in range(60):
            stack.push(value)

        for _ in range(depth):
            stack.undo()
        for _ in range(depth):
            stack.redo()

        assert stack.present == 59
        assert stack.future == []

    @pytest.mark.unit
    def test_past_is_bounded(self):
        """Past never exceeds the depth limit; oldest entries drop first."""
        stack = UndoStack[int](max_depth=50)
        for value in range(200):
            stack.push(value)
            assert stack.undo_depth <= 50
        assert stack.past[0] == 149
        assert stack.past[-1] == 198

    @pytest.mark.unit
    def test_default_depth_from_environment(self, monkeypatch):
        """Depth limit defaults to ASSET_HISTORY_MAX_DEPTH."""
        monkeypatch.setenv("ASSET_HISTORY_MAX_DEPTH", "3")
        stack = UndoStack[int]()
        for value in range(10):
            stack.push(value)
        assert stack.max_depth == 3
        assert stack.past == [6, 7, 8]

    @pytest.mark.unit
    def test_snapshot_isolates_values(self):
        """A deep-copy snapshot keeps entries independent of callers."""
        stack = UndoStack[dict](snapshot=copy.deepcopy)
        state = {"items": [1]}
        stack.push(state)
        state["items"].append(2)
        stack.push(state)

        restored = stack.undo()
        assert restored == {"items": [1]}

        restored["items"].append(99)
        assert stack.present == {"items": [1]}
        assert stack.future == [{"items": [1, 2]}]

    @pytest.mark.unit
    def test_reset_keeps_newest_past(self):
        """Reset trims past to the newest entries and clears future."""
        stack = UndoStack[int](max_depth=2)
        stack.push(1)
        stack.push(2)
        stack.undo()
        stack.reset(past=[10, 11, 12], present=13)
        assert stack.past == [11, 12]
        assert stack.present == 13
        assert stack.future == []

    @pytest.mark.unit
    def test_invariant_violation_detected(self):
        """Corrupted internal state fails loudly."""
        stack = UndoStack[int]()
        stack.push(1)
        stack._future.append(5)
        with pytest.raises(InvariantViolation):
            stack.check_invariants(after_push=True)


# =============================================================================
# IterationHistory Tests
# =============================================================================


class TestIterationHistoryPush:
    """Tests for recording iterations."""

    @pytest.mark.unit
    def test_push_assigns_sequential_indices(self, history, sample_result):
        """New index equals the prior timeline length."""
        for expected in range(5):
            before = history.size()
            iteration = history.push(f"prompt {expected}", sample_result)
            assert iteration.index == before == expected
            assert history.size() == before + 1

    @pytest.mark.unit
    def test_push_makes_present(self, history):
        """The pushed iteration becomes current."""
        _push_prompts(history, "A", "B")
        assert history.current.prompt == "B"
        assert history.current_index == 1

    @pytest.mark.unit
    def test_push_clears_future(self, history):
        """Push after undo discards redo entries."""
        _push_prompts(history, "A", "B", "C")
        history.undo()
        assert history.can_redo()
        history.push("D", IterationResult())
        assert history.future == []
        assert not history.can_redo()

    @pytest.mark.unit
    def test_push_appends_to_shared_record(self):
        """History writes into the list it was given."""
        record: list[Iteration] = []
        history = IterationHistory("s", record)
        history.push("A", IterationResult())
        assert [it.prompt for it in record] == ["A"]

    @pytest.mark.unit
    def test_past_bounded_by_depth(self, history):
        """Past never exceeds 50 regardless of push count."""
        for i in range(120):
            history.push(f"p{i}", IterationResult())
        assert len(history.past) == 50
        assert history.size() == 120


class TestIterationHistoryUndoRedo:
    """Tests for undo and redo."""

    @pytest.mark.unit
    def test_undo_on_empty_returns_none(self, history):
        """Nothing to undo on an empty history."""
        assert history.undo() is None
        assert history.redo() is None
        assert history.current is None
        assert history.current_index == -1

    @pytest.mark.unit
    def test_undo_single_iteration_returns_none(self, history):
        """A single iteration has no past."""
        _push_prompts(history, "A")
        assert not history.can_undo()
        assert history.undo() is None
        assert history.current.prompt == "A"

    @pytest.mark.unit
    def test_undo_redo_cycle(self, history):
        """Undo then redo restores the exact prior present."""
        _push_prompts(history, "A", "B", "C")
        before = history.current

        undone = history.undo()
        assert undone.prompt == "B"
        assert history.can_redo()

        redone = history.redo()
        assert redone is before
        assert not history.can_redo()

    @pytest.mark.unit
    def test_undo_does_not_touch_record(self, history):
        """Undo only moves the cursor."""
        _push_prompts(history, "A", "B", "C")
        history.undo()
        history.undo()
        assert history.size() == 3
        assert all(it.active for it in history.get_all_iterations())


class TestIterationHistoryRollback:
    """Tests for rollback and branching."""

    @pytest.mark.unit
    def test_rollback_marks_target(self, history):
        """Target iteration is flagged and becomes present."""
        _push_prompts(history, "A", "B", "C")
        target = history.rollback(1)
        assert target.prompt == "B"
        assert target.rolled_back_to is True
        assert history.current is target

    @pytest.mark.unit
    def test_rollback_clears_future(self, history):
        """Rollback leaves nothing to redo."""
        _push_prompts(history, "A", "B", "C")
        history.undo()
        history.rollback(0)
        assert history.future == []
        assert not history.can_redo()
        assert not history.can_undo()

    @pytest.mark.unit
    def test_rollback_archives_later_iterations(self, history):
        """Later iterations are inactive but still retrievable."""
        _push_prompts(history, "A", "B", "C")
        history.rollback(0)

        assert history.size() == 1
        assert history.get_iteration(1).prompt == "B"
        assert history.get_iteration(2).prompt == "C"
        assert history.get_iteration(1).active is False
        assert len(history.get_all_iterations()) == 3

    @pytest.mark.unit
    def test_push_after_rollback_starts_branch(self, history):
        """The next push lands right after the rollback target."""
        _push_prompts(history, "A", "B", "C")
        history.rollback(0)
        new = history.push("D", IterationResult())

        assert new.index == 1
        assert new.branch == 1
        assert history.get_iteration(1) is new
        assert history.get_iteration(2).prompt == "C"
        assert [it.prompt for it in history.get_active_iterations()] == ["A", "D"]
        assert len(history.get_all_iterations()) == 4

    @pytest.mark.unit
    def test_rollback_to_tip_keeps_branch(self, history):
        """Rolling back to the last iteration orphans nothing."""
        _push_prompts(history, "A", "B")
        history.rollback(1)
        new = history.push("C", IterationResult())
        assert new.index == 2
        assert new.branch == 0

    @pytest.mark.unit
    @pytest.mark.parametrize("index", [-1, 3, 100])
    def test_rollback_out_of_range(self, history, index):
        """Out-of-range targets raise OutOfRangeError."""
        _push_prompts(history, "A", "B", "C")
        with pytest.raises(OutOfRangeError) as exc_info:
            history.rollback(index)
        assert exc_info.value.size == 3

    @pytest.mark.unit
    def test_rollback_on_empty_history(self, history):
        """Empty history has no valid rollback target."""
        with pytest.raises(OutOfRangeError):
            history.rollback(0)


class TestIterationHistoryReads:
    """Tests for read-only accessors."""

    @pytest.mark.unit
    def test_get_iteration_out_of_range(self, history):
        """Out-of-range lookups return None."""
        _push_prompts(history, "A")
        assert history.get_iteration(-1) is None
        assert history.get_iteration(5) is None

    @pytest.mark.unit
    def test_get_all_iterations_is_copy(self, history):
        """Mutating the returned list does not affect the history."""
        _push_prompts(history, "A", "B")
        listing = history.get_all_iterations()
        listing.clear()
        assert history.size() == 2

    @pytest.mark.unit
    def test_get_last_n(self, history):
        """Last n of the timeline."""
        _push_prompts(history, "A", "B", "C")
        assert [it.prompt for it in history.get_last_n(2)] == ["B", "C"]
        assert history.get_last_n(0) == []
        assert len(history.get_last_n(10)) == 3


class TestMaterialization:
    """Tests for rebuilding a history from a persisted record."""

    @pytest.mark.unit
    def test_rebuild_from_record(self):
        """Present is the last active iteration, past the ones before it."""
        record = [Iteration(index=i, prompt=p) for i, p in enumerate("ABC")]
        history = IterationHistory("s", record)
        assert history.current.prompt == "C"
        assert [it.prompt for it in history.past] == ["A", "B"]
        assert history.future == []

    @pytest.mark.unit
    def test_rebuild_after_rollback_opens_new_branch(self):
        """A persisted rollback with orphans leads to a new branch on push."""
        record = [
            Iteration(index=0, prompt="A", rolled_back_to=True),
            Iteration(index=1, prompt="B", active=False),
        ]
        history = IterationHistory("s", record)
        assert history.current.prompt == "A"

        new = history.push("C", IterationResult())
        assert new.index == 1
        assert new.branch == 1

    @pytest.mark.unit
    def test_rebuild_rejects_broken_timeline(self):
        """A timeline with a gap is an invariant violation."""
        record = [Iteration(index=0, prompt="A"), Iteration(index=2, prompt="C")]
        with pytest.raises(InvariantViolation):
            IterationHistory("s", record)


# =============================================================================
# Model Tests
# =============================================================================


class TestModels:
    """Tests for iteration models."""

    @pytest.mark.unit
    def test_iteration_round_trip(self, sample_result):
        """to_dict/from_dict preserve fields."""
        iteration = Iteration(index=3, prompt="p", result=sample_result, branch=2)
        restored = Iteration.from_dict(iteration.to_dict())
        assert restored.index == 3
        assert restored.branch == 2
        assert restored.result.metadata.seed == 42
        assert restored.result.image_base64 == "aGVsbG8="
        assert restored.timestamp == iteration.timestamp

    @pytest.mark.unit
    def test_image_base64_omitted_when_persisted(self):
        """Only the image reference is serialized once the payload is gone."""
        result = IterationResult(image_path="s/images/0.png")
        data = result.to_dict()
        assert "image_base64" not in data
        assert data["image_path"] == "s/images/0.png"

    @pytest.mark.unit
    def test_iteration_from_dict_validates(self):
        """Invalid records are rejected."""
        with pytest.raises(KeyError):
            Iteration.from_dict({"prompt": "no index"})
        with pytest.raises(ValueError):
            Iteration.from_dict({"index": -1, "prompt": "p"})
        with pytest.raises(ValueError):
            Iteration.from_dict({"index": 0, "prompt": 5})

    @pytest.mark.unit
    def test_naive_timestamp_assumed_utc(self):
        """Timestamps without offset are read as UTC."""
        metadata = GenerationMetadata.from_dict({"timestamp": "2024-01-01T10:00:00"})
        assert metadata.timestamp.utcoffset().total_seconds() == 0

    @pytest.mark.unit
    def test_mistyped_nested_records_rejected(self):
        """Nested values of the wrong JSON type raise ValueError."""
        with pytest.raises(ValueError, match="iteration must be an object"):
            Iteration.from_dict("x")
        with pytest.raises(ValueError, match="iteration result"):
            Iteration.from_dict({"index": 0, "prompt": "p", "result": "x"})
        with pytest.raises(ValueError, match="generation metadata"):
            IterationResult.from_dict({"metadata": [1, 2]})
        with pytest.raises(ValueError, match="Invalid timestamp"):
            Iteration.from_dict({"index": 0, "prompt": "p", "timestamp": 123})

    @pytest.mark.unit
    def test_missing_nested_records_default(self):
        """Absent or null nested records fall back to defaults."""
        iteration = Iteration.from_dict({"index": 0, "prompt": "p", "result": None})
        assert iteration.result.metadata.prompt == ""
        assert as_mapping(None, "anything") == {}
