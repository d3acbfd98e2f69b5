"""Tests for the error taxonomy."""

import pytest

from .lib import (
    AmbiguousReferenceError,
    CorruptRecordError,
    InvariantViolation,
    NoMatchError,
    OutOfRangeError,
    StateError,
    StorageError,
)


class TestErrors:
    """Hierarchy and message contents."""

    @pytest.mark.unit
    def test_out_of_range_is_index_error(self):
        """OutOfRangeError can be caught as a plain IndexError."""
        error = OutOfRangeError(5, 3)
        assert isinstance(error, IndexError)
        assert isinstance(error, StateError)
        assert error.index == 5
        assert error.size == 3
        assert "[0, 3)" in str(error)

    @pytest.mark.unit
    def test_ambiguous_lists_all_candidates(self):
        """Every candidate appears in the message."""
        error = AmbiguousReferenceError("blue", [(0, "blue sky"), (2, "blue sea")])
        assert error.candidates == [(0, "blue sky"), (2, "blue sea")]
        assert 'Iteration 0: "blue sky"' in str(error)
        assert 'Iteration 2: "blue sea"' in str(error)
        assert error.reference == "blue"

    @pytest.mark.unit
    def test_no_match_keeps_reference(self):
        """NoMatchError records the reference that failed."""
        error = NoMatchError("zzz")
        assert error.reference == "zzz"
        assert "zzz" in str(error)

    @pytest.mark.unit
    def test_corrupt_record_is_storage_error(self):
        """Corruption is a storage failure."""
        error = CorruptRecordError("bad json", key="abc")
        assert isinstance(error, StorageError)
        assert error.key == "abc"

    @pytest.mark.unit
    def test_invariant_violation_is_assertion(self):
        """InvariantViolation fails loudly under pytest."""
        with pytest.raises(AssertionError):
            raise InvariantViolation("future not empty after push")
