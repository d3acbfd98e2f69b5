"""Wireframe layouts and their undo/redo history.

This module provides the pydantic component-tree model, tree editing
helpers, and per-wireframe undo/redo histories backed by deep-copied
snapshots.

Example:
    >>> from src.wireframe import Wireframe, WireframeComponent, WireframeHistory
    >>> wireframe = Wireframe.create("session-1", "dashboard", [
    ...     WireframeComponent(id="nav", type="sidebar"),
    ... ])
    >>> history = WireframeHistory(wireframe.id)
    >>> history.push(wireframe)
    >>> history.can_undo()
    False

Features:
    - Recursive component trees (sidebar, header, grid, card, ...)
    - Field-wise component updates by id or by type
    - Duplicate id detection
    - Per-component version history with restore
    - Snapshot-isolated undo/redo keyed per (session, wireframe)
"""

from .lib import (
    ComponentIssue,
    WireframeHistory,
    WireframeHistoryRegistry,
    find_component,
    iter_components,
    replace_component,
    update_component,
    update_components_by_type,
    validate_component_tree,
)
from .models import (
    ChangeType,
    ComponentType,
    ComponentVersion,
    Dimensions,
    Position,
    VersionHistory,
    Wireframe,
    WireframeComponent,
    WireframeMetadata,
)

__all__ = [
    # Models
    "ComponentType",
    "Position",
    "Dimensions",
    "WireframeComponent",
    "WireframeMetadata",
    "Wireframe",
    # Component versions
    "ChangeType",
    "ComponentVersion",
    "VersionHistory",
    # Tree operations
    "ComponentIssue",
    "iter_components",
    "find_component",
    "update_component",
    "update_components_by_type",
    "replace_component",
    "validate_component_tree",
    # History
    "WireframeHistory",
    "WireframeHistoryRegistry",
]
