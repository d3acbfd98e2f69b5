"""Error taxonomy shared by the state engine components.

NotFound outcomes are never raised: lookups return ``None``. Everything
else a caller may need to translate into user-facing text is a subclass
of :class:`StateError`.
"""

from .lib import (
    AmbiguousReferenceError,
    CorruptRecordError,
    InvariantViolation,
    NoMatchError,
    OutOfRangeError,
    ReferenceResolutionError,
    StateError,
    StorageError,
)

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
