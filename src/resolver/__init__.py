"""Reference resolver for asset-timeline.

Example:
    >>> from src.history import IterationHistory
    >>> from src.resolver import resolve_reference
    >>> history = IterationHistory("session-1")
    >>> _ = history.push("a red fox", None)
    >>> _ = history.push("a blue whale", None)
    >>> resolve_reference(history, "whale").index
    1
"""

from .lib import MatchType, ResolvedReference, resolve_reference

__all__ = [
    "MatchType",
    "ResolvedReference",
    "resolve_reference",
]
