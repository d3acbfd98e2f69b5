"""Wireframe component-tree operations and undo/redo history.

The history here is the same bounded past/present/future machine as the
iteration history, but every snapshot is a deep structural copy so no
history entry and no caller ever share a component tree.
"""

import logging
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from src.history import UndoStack

from .models import Dimensions, Position, Wireframe, WireframeComponent

logger = logging.getLogger(__name__)


# =============================================================================
# Component Tree Operations
# =============================================================================


@dataclass
class ComponentIssue:
    """Represents a structural problem in a component tree.

    Attributes:
        component_id: ID of the offending component.
        message: Human-readable description.
        issue_type: Machine-readable classification.
    """

    component_id: str
    message: str
    issue_type: str


def iter_components(
    components: list[WireframeComponent],
) -> Iterator[WireframeComponent]:
    """Yield every component of a forest, depth-first, parents first."""
    for component in components:
        yield component
        yield from iter_components(component.children)


def find_component(wireframe: Wireframe, component_id: str) -> WireframeComponent | None:
    """Find a component by id anywhere in the tree.

    Returns:
        The component (not a copy), or None if absent.
    """
    for component in iter_components(wireframe.components):
        if component.id == component_id:
            return component
    return None


def _apply_changes(
    component: WireframeComponent,
    properties: dict[str, Any] | None,
    position: dict[str, float] | None,
    dimensions: dict[str, float] | None,
) -> None:
    if properties:
        component.properties = {**component.properties, **properties}
    if position:
        base = component.position or Position()
        component.position = Position.model_validate({**base.model_dump(), **position})
    if dimensions:
        base = component.dimensions or Dimensions()
        component.dimensions = Dimensions.model_validate(
            {**base.model_dump(), **dimensions}
        )


def update_component(
    wireframe: Wireframe,
    component_id: str,
    properties: dict[str, Any] | None = None,
    position: dict[str, float] | None = None,
    dimensions: dict[str, float] | None = None,
) -> WireframeComponent | None:
    """Merge changes into one component, in place.

    Properties are merged key by key; position and dimensions are merged
    field by field onto their current values (zero when unset).

    Args:
        wireframe: Wireframe to modify. Pass a snapshot to keep the
            original intact.
        component_id: Component to change.
        properties: Property keys to set.
        position: ``x``/``y`` values to set.
        dimensions: ``width``/``height`` values to set.

    Returns:
        The updated component, or None if no component has that id.
    """
    component = find_component(wireframe, component_id)
    if component is None:
        return None

    _apply_changes(component, properties, position, dimensions)
    wireframe.touch()
    return component


def update_components_by_type(
    wireframe: Wireframe,
    component_type: str,
    properties: dict[str, Any] | None = None,
    dimensions: dict[str, float] | None = None,
) -> int:
    """Merge changes into every component of a type, in place.

    Returns:
        Number of components updated.
    """
    count = 0
    for component in iter_components(wireframe.components):
        if component.type == component_type:
            _apply_changes(component, properties, None, dimensions)
            count += 1
    if count:
        wireframe.touch()
    return count


def replace_component(wireframe: Wireframe, replacement: WireframeComponent) -> bool:
    """Swap the component with ``replacement.id`` for a copy of replacement.

    Returns:
        True if a component was replaced, False if none has that id.
    """

    def _replace(components: list[WireframeComponent]) -> bool:
        for position, component in enumerate(components):
            if component.id == replacement.id:
                components[position] = replacement.model_copy(deep=True)
                return True
            if _replace(component.children):
                return True
        return False

    if not _replace(wireframe.components):
        return False
    wireframe.touch()
    return True


def validate_component_tree(wireframe: Wireframe) -> list[ComponentIssue]:
    """Check a wireframe for structural issues.

    Performs the following checks:
        - Unique component IDs across the whole forest
        - Non-empty component IDs

    Returns:
        List of issues (empty if valid).
    """
    issues: list[ComponentIssue] = []
    id_counts: dict[str, int] = {}

    for component in iter_components(wireframe.components):
        if not component.id.strip():
            issues.append(
                ComponentIssue(
                    component_id=component.id,
                    message="Component ID must not be empty",
                    issue_type="empty_id",
                )
            )
        id_counts[component.id] = id_counts.get(component.id, 0) + 1

    for component_id, count in id_counts.items():
        if count > 1:
            issues.append(
                ComponentIssue(
                    component_id=component_id,
                    message=f"Duplicate ID '{component_id}' appears {count} times",
                    issue_type="duplicate_id",
                )
            )

    return issues


# =============================================================================
# Wireframe History
# =============================================================================


class WireframeHistory:
    """Undo/redo history of one wireframe.

    Every push stores a deep copy, and every value handed back is a deep
    copy, so mutating a returned tree never corrupts the history.

    Args:
        wireframe_id: Wireframe this history tracks.
        max_depth: Undo depth limit (default ASSET_HISTORY_MAX_DEPTH).
    """

    def __init__(self, wireframe_id: str, max_depth: int | None = None):
        self.wireframe_id = wireframe_id
        self._stack: UndoStack[Wireframe] = UndoStack(
            max_depth=max_depth,
            snapshot=Wireframe.snapshot,
        )

    def push(self, wireframe: Wireframe) -> None:
        """Record a new state; clears redo history."""
        if wireframe.id != self.wireframe_id:
            raise ValueError(
                f"Wireframe {wireframe.id} pushed onto history of {self.wireframe_id}"
            )
        self._stack.push(wireframe)

    def undo(self) -> Wireframe | None:
        """Restore the previous state. None when nothing to undo."""
        return self._stack.undo()

    def redo(self) -> Wireframe | None:
        """Re-apply the next state. None when nothing to redo."""
        return self._stack.redo()

    @property
    def present(self) -> Wireframe | None:
        return self._stack.present

    @property
    def past(self) -> list[Wireframe]:
        return self._stack.past

    @property
    def future(self) -> list[Wireframe]:
        return self._stack.future

    def can_undo(self) -> bool:
        return self._stack.can_undo()

    def can_redo(self) -> bool:
        return self._stack.can_redo()

    def status(self) -> dict[str, Any]:
        """Undo/redo availability and stack depths."""
        return {
            "wireframe_id": self.wireframe_id,
            "can_undo": self._stack.can_undo(),
            "can_redo": self._stack.can_redo(),
            "undo_depth": self._stack.undo_depth,
            "redo_depth": self._stack.redo_depth,
        }


class WireframeHistoryRegistry:
    """Wireframe histories keyed by (session_id, wireframe_id).

    Owned by a SessionStore instance; two stores never share histories.
    Insertion and lookup are lock-guarded so different sessions can be used
    from different threads.

    Args:
        max_depth: Undo depth limit applied to every history.
    """

    def __init__(self, max_depth: int | None = None):
        self._max_depth = max_depth
        self._histories: dict[tuple[str, str], WireframeHistory] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._histories)

    def get(self, session_id: str, wireframe_id: str) -> WireframeHistory | None:
        """Get a history if one exists."""
        with self._lock:
            return self._histories.get((session_id, wireframe_id))

    def initialize_history(self, session_id: str, wireframe: Wireframe) -> WireframeHistory:
        """Seed a history from the wireframe's current state, once.

        Calling again for the same wireframe leaves the history untouched.
        """
        key = (session_id, wireframe.id)
        with self._lock:
            history = self._histories.get(key)
            if history is None:
                history = WireframeHistory(wireframe.id, max_depth=self._max_depth)
                history.push(wireframe)
                self._histories[key] = history
                logger.debug(f"Initialized wireframe history {session_id}/{wireframe.id}")
            return history

    def push_history(self, session_id: str, wireframe: Wireframe) -> WireframeHistory:
        """Record a new wireframe state, creating the history on first use."""
        key = (session_id, wireframe.id)
        with self._lock:
            history = self._histories.get(key)
            if history is None:
                history = WireframeHistory(wireframe.id, max_depth=self._max_depth)
                self._histories[key] = history
        history.push(wireframe)
        return history

    def undo(self, session_id: str, wireframe_id: str) -> Wireframe | None:
        """Undo on one wireframe. None if no history or nothing to undo."""
        history = self.get(session_id, wireframe_id)
        return history.undo() if history else None

    def redo(self, session_id: str, wireframe_id: str) -> Wireframe | None:
        """Redo on one wireframe. None if no history or nothing to redo."""
        history = self.get(session_id, wireframe_id)
        return history.redo() if history else None

    def remove(self, session_id: str, wireframe_id: str) -> bool:
        """Drop one wireframe's history."""
        with self._lock:
            return self._histories.pop((session_id, wireframe_id), None) is not None

    def clear_session(self, session_id: str) -> int:
        """Drop every history of one session.

        Returns:
            Number of histories removed.
        """
        with self._lock:
            keys = [key for key in self._histories if key[0] == session_id]
            for key in keys:
                del self._histories[key]
        return len(keys)


__all__ = [
    "ComponentIssue",
    "iter_components",
    "find_component",
    "update_component",
    "update_components_by_type",
    "replace_component",
    "validate_component_tree",
    "WireframeHistory",
    "WireframeHistoryRegistry",
]
