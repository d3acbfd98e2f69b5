"""Iteration history for asset-timeline.

This module provides the bounded undo/redo stack shared by both timeline
kinds and the per-session image iteration history.

Example:
    >>> from src.history import IterationHistory, IterationResult
    >>> history = IterationHistory("session-1")
    >>> _ = history.push("a red fox", IterationResult())
    >>> _ = history.push("a red fox at dusk", IterationResult())
    >>> history.undo().prompt
    'a red fox'

Features:
    - Past/present/future stack with a 50 entry past (configurable)
    - Append-only iteration record; rollback archives instead of deleting
    - Branch numbering so (branch, index) is never reused
"""

from .lib import IterationHistory, UndoStack
from .models import (
    GenerationMetadata,
    Iteration,
    IterationResult,
    as_mapping,
    parse_timestamp,
    utc_now,
)

__all__ = [
    # History
    "UndoStack",
    "IterationHistory",
    # Models
    "GenerationMetadata",
    "Iteration",
    "IterationResult",
    "as_mapping",
    "parse_timestamp",
    "utc_now",
]
