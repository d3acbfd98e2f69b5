"""Storage backends for session persistence.

Available backends:
- FileStorage: JSON file tree, one directory per session (default)
- SQLiteStorage: Single SQLite database file
"""

from .file import FileStorage, sanitize_id
from .protocol import SessionStorage
from .sqlite import SQLiteStorage

__all__ = [
    "SessionStorage",
    "FileStorage",
    "SQLiteStorage",
    "sanitize_id",
]
