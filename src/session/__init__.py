"""Session management for asset-timeline.

This module provides the SessionStore, the single writer of persisted
state, together with the session data model and its storage backends.

Example:
    >>> from src.session import SessionStore
    >>> from src.history import IterationResult
    >>> store = SessionStore(storage_dir="data/sessions")
    >>> session = store.create_session()
    >>> _ = store.add_iteration_to_session(session.id, "a red fox", IterationResult())
    >>> _ = store.add_iteration_to_session(session.id, "a red fox at dusk", IterationResult())
    >>> store.undo(session.id).prompt
    'a red fox'

Features:
    - Session lifecycle with atomic JSON or SQLite persistence
    - Iteration undo/redo/rollback with archived branches kept
    - Asset variant selection, refinement and per-session cache
    - Wireframe persistence with snapshot-isolated undo/redo
    - Operation timing reported to a metrics sink
"""

from .lib import ActiveSession, SessionStore, create_storage, image_key
from .models import (
    AssetSession,
    AssetType,
    Refinement,
    Session,
    SessionMetadata,
    Variant,
    VariantMetadata,
)
from .storage import FileStorage, SessionStorage, SQLiteStorage, sanitize_id

__all__ = [
    # Store
    "SessionStore",
    "ActiveSession",
    "create_storage",
    "image_key",
    # Models
    "Session",
    "SessionMetadata",
    "AssetType",
    "AssetSession",
    "Variant",
    "VariantMetadata",
    "Refinement",
    # Storage
    "SessionStorage",
    "FileStorage",
    "SQLiteStorage",
    "sanitize_id",
]
