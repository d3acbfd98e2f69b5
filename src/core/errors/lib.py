"""Exception classes for the asset-timeline state engine."""

from typing import Any


class StateError(Exception):
    """Base exception for state engine errors."""


class OutOfRangeError(StateError, IndexError):
    """Raised when an iteration index falls outside the timeline.

    Attributes:
        index: The requested index.
        size: Number of iterations in the timeline at the time of the call.
    """

    def __init__(self, index: int, size: int, message: str | None = None):
        super().__init__(
            message or f"Iteration index {index} out of range [0, {size})"
        )
        self.index = index
        self.size = size


class ReferenceResolutionError(StateError):
    """Base class for failures to map a symbolic reference to an index."""

    def __init__(self, message: str, reference: str):
        super().__init__(message)
        self.reference = reference


class NoMatchError(ReferenceResolutionError):
    """Raised when no iteration prompt matches a text reference."""

    def __init__(self, reference: str):
        super().__init__(f'No iterations found matching "{reference}"', reference)


class AmbiguousReferenceError(ReferenceResolutionError):
    """Raised when a text reference matches more than one iteration.

    Attributes:
        candidates: (index, prompt) pairs of every matching iteration.
    """

    def __init__(self, reference: str, candidates: list[tuple[int, str]]):
        listing = "\n".join(
            f'- Iteration {index}: "{prompt}"' for index, prompt in candidates
        )
        super().__init__(
            f'Multiple matches found for "{reference}":\n{listing}',
            reference,
        )
        self.candidates = candidates


class StorageError(StateError):
    """Raised when the persistence medium fails to read or write.

    Attributes:
        key: Storage key (session id, wireframe id...) involved, if any.
    """

    def __init__(self, message: str, key: Any = None):
        super().__init__(message)
        self.key = key


class CorruptRecordError(StorageError):
    """Raised when a stored record exists but cannot be decoded."""


class InvariantViolation(StateError, AssertionError):
    """Raised when an internal history invariant no longer holds."""


__all__ = [
    "StateError",
    "OutOfRangeError",
    "ReferenceResolutionError",
    "NoMatchError",
    "AmbiguousReferenceError",
    "StorageError",
    "CorruptRecordError",
    "InvariantViolation",
]
