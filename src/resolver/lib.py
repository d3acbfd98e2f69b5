"""Symbolic iteration reference resolution.

Maps what a user says ("2", "latest", "the one with the red fox") to an
iteration index. Indexes and keywords address the active timeline; prompt
text is searched across every recorded iteration, archived ones included.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from src.core.errors import AmbiguousReferenceError, NoMatchError, OutOfRangeError
from src.history import Iteration, IterationHistory

logger = logging.getLogger(__name__)

_INTEGER = re.compile(r"^[+-]?\d+$")


class MatchType(str, Enum):
    """How a reference was resolved."""

    INDEX = "index"
    LATEST = "latest"
    FIRST = "first"
    PROMPT = "prompt"


@dataclass
class ResolvedReference:
    """Outcome of a successful resolution.

    Attributes:
        index: Index the iteration was recorded at.
        match_type: Rule that produced the match.
        iteration: The matched iteration.
    """

    index: int
    match_type: MatchType
    iteration: Iteration

    @property
    def archived(self) -> bool:
        """True when the match was orphaned by a rollback."""
        return not self.iteration.active

    def to_dict(self) -> dict[str, Any]:
        return {
            "resolved": True,
            "iteration_index": self.index,
            "match_type": self.match_type.value,
            "branch": self.iteration.branch,
            "archived": self.archived,
            "prompt": self.iteration.prompt,
            "timestamp": self.iteration.timestamp.isoformat(),
        }


def _at(history: IterationHistory, index: int, match_type: MatchType) -> ResolvedReference:
    timeline = history.get_active_iterations()
    if not 0 <= index < len(timeline):
        raise OutOfRangeError(index, len(timeline))
    return ResolvedReference(index=index, match_type=match_type, iteration=timeline[index])


def resolve_reference(history: IterationHistory, reference: str | int) -> ResolvedReference:
    """Resolve a reference to an iteration.

    Resolution order:
        1. An integer (or integer string) is a bounds-checked index.
        2. ``latest`` / ``first`` (any case) name the ends of the timeline.
        3. Anything else is a case-insensitive substring of a prompt,
           searched over every recorded iteration, archived ones included.

    Args:
        history: Iteration history to search.
        reference: Index, keyword, or prompt fragment.

    Returns:
        The resolved reference.

    Raises:
        ValueError: If the reference is blank.
        OutOfRangeError: If an index is outside the timeline, or a keyword
            is used on an empty timeline.
        NoMatchError: If no prompt contains the text.
        AmbiguousReferenceError: If several prompts contain the text.
    """
    if isinstance(reference, int):
        return _at(history, reference, MatchType.INDEX)

    text = reference.strip()
    if not text:
        raise ValueError("Reference must not be empty")

    if _INTEGER.match(text):
        return _at(history, int(text), MatchType.INDEX)

    keyword = text.lower()
    if keyword == "latest":
        return _at(history, history.size() - 1, MatchType.LATEST)
    if keyword == "first":
        return _at(history, 0, MatchType.FIRST)

    matches = [
        iteration
        for iteration in history.get_all_iterations()
        if keyword in iteration.prompt.lower()
    ]
    if not matches:
        raise NoMatchError(text)
    if len(matches) > 1:
        raise AmbiguousReferenceError(
            text, [(iteration.index, iteration.prompt) for iteration in matches]
        )

    match = matches[0]
    logger.debug(
        f"Resolved '{text}' to iteration {match.index} (branch {match.branch})"
    )
    return ResolvedReference(index=match.index, match_type=MatchType.PROMPT, iteration=match)


__all__ = [
    "MatchType",
    "ResolvedReference",
    "resolve_reference",
]
