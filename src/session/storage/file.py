"""JSON file-tree storage backend for sessions.

Layout under the storage root::

    <root>/<session_id>/session.json
    <root>/<session_id>/images/<key>.png
    <root>/<session_id>/wireframes/wireframe-<wireframe_id>.json
    <root>/<session_id>/versions/<wireframe_id>/<component_id>.json

Every write goes to a sibling temp file first and is moved into place with
``os.replace`` so a reader never observes a partial record.
"""

import json
import logging
import os
import re
import shutil
from pathlib import Path
from typing import Any

from src.core.errors import CorruptRecordError, StorageError

logger = logging.getLogger(__name__)

SESSION_FILE = "session.json"
IMAGE_DIR = "images"
WIREFRAME_DIR = "wireframes"
WIREFRAME_PREFIX = "wireframe-"
VERSION_DIR = "versions"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def sanitize_id(value: str) -> str:
    """Strip everything but letters, digits, ``-`` and ``_``."""
    return _UNSAFE_CHARS.sub("", value)


def _write_atomic(path: Path, payload: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    try:
        tmp.write_bytes(payload)
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


def _read_json(path: Path, key: str) -> dict[str, Any] | None:
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        raise StorageError(f"Failed to read {path}: {e}", key=key) from e

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise CorruptRecordError(f"Invalid JSON in {path}: {e}", key=key) from e
    if not isinstance(data, dict):
        raise CorruptRecordError(f"Expected a JSON object in {path}", key=key)
    return data


class FileStorage:
    """Session storage as a tree of JSON and PNG files.

    Args:
        root: Storage root directory.
    """

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def initialize(self) -> None:
        """Create the storage root."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create storage root {self.root}: {e}") from e
        logger.info(f"Initialized file storage at {self.root}")

    def close(self) -> None:
        """Nothing to release for the file backend."""

    # =========================================================================
    # Paths
    # =========================================================================

    def _session_dir(self, session_id: str) -> Path | None:
        safe = sanitize_id(session_id)
        if not safe:
            return None
        return self.root / safe

    def _require_session_dir(self, session_id: str) -> Path:
        session_dir = self._session_dir(session_id)
        if session_dir is None:
            raise StorageError(f"Invalid session id: {session_id!r}", key=session_id)
        return session_dir

    def _image_path(self, session_id: str, key: str) -> Path | None:
        session_dir = self._session_dir(session_id)
        safe_key = sanitize_id(key)
        if session_dir is None or not safe_key:
            return None
        return session_dir / IMAGE_DIR / f"{safe_key}.png"

    def _wireframe_path(self, session_id: str, wireframe_id: str) -> Path | None:
        session_dir = self._session_dir(session_id)
        safe_id = sanitize_id(wireframe_id)
        if session_dir is None or not safe_id:
            return None
        return session_dir / WIREFRAME_DIR / f"{WIREFRAME_PREFIX}{safe_id}.json"

    def _version_path(
        self, session_id: str, wireframe_id: str, component_id: str
    ) -> Path | None:
        session_dir = self._session_dir(session_id)
        safe_wireframe = sanitize_id(wireframe_id)
        safe_component = sanitize_id(component_id)
        if session_dir is None or not safe_wireframe or not safe_component:
            return None
        return session_dir / VERSION_DIR / safe_wireframe / f"{safe_component}.json"

    # =========================================================================
    # Session Records
    # =========================================================================

    def read_session(self, session_id: str) -> dict[str, Any] | None:
        session_dir = self._session_dir(session_id)
        if session_dir is None:
            return None
        return _read_json(session_dir / SESSION_FILE, session_id)

    def write_session(self, session_id: str, record: dict[str, Any]) -> None:
        path = self._require_session_dir(session_id) / SESSION_FILE
        try:
            _write_atomic(path, json.dumps(record, indent=2).encode("utf-8"))
        except OSError as e:
            raise StorageError(f"Failed to write session {session_id}: {e}", key=session_id) from e

    def list_session_ids(self) -> list[str]:
        if not self.root.exists():
            return []
        try:
            return [
                entry.name
                for entry in self.root.iterdir()
                if entry.is_dir() and (entry / SESSION_FILE).exists()
            ]
        except OSError as e:
            raise StorageError(f"Failed to list sessions in {self.root}: {e}") from e

    def delete_session(self, session_id: str) -> bool:
        session_dir = self._session_dir(session_id)
        if session_dir is None or not session_dir.exists():
            return False
        try:
            shutil.rmtree(session_dir)
        except OSError as e:
            raise StorageError(f"Failed to delete session {session_id}: {e}", key=session_id) from e
        return True

    # =========================================================================
    # Images
    # =========================================================================

    def write_image(self, session_id: str, key: str, data: bytes) -> str:
        path = self._image_path(session_id, key)
        if path is None:
            raise StorageError(f"Invalid image key {key!r} for session {session_id!r}", key=key)
        try:
            _write_atomic(path, data)
        except OSError as e:
            raise StorageError(f"Failed to write image {path}: {e}", key=key) from e
        return str(path)

    def read_image(self, session_id: str, key: str) -> bytes | None:
        path = self._image_path(session_id, key)
        if path is None:
            return None
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read image {path}: {e}", key=key) from e

    # =========================================================================
    # Wireframes
    # =========================================================================

    def write_wireframe(
        self, session_id: str, wireframe_id: str, record: dict[str, Any]
    ) -> None:
        path = self._wireframe_path(session_id, wireframe_id)
        if path is None:
            raise StorageError(f"Invalid wireframe id: {wireframe_id!r}", key=wireframe_id)
        try:
            _write_atomic(path, json.dumps(record, indent=2).encode("utf-8"))
        except OSError as e:
            raise StorageError(f"Failed to write wireframe {wireframe_id}: {e}", key=wireframe_id) from e

    def read_wireframe(self, session_id: str, wireframe_id: str) -> dict[str, Any] | None:
        path = self._wireframe_path(session_id, wireframe_id)
        if path is None:
            return None
        return _read_json(path, wireframe_id)

    def list_wireframe_ids(self, session_id: str) -> list[str]:
        session_dir = self._session_dir(session_id)
        if session_dir is None:
            return []
        wireframe_dir = session_dir / WIREFRAME_DIR
        if not wireframe_dir.exists():
            return []
        return sorted(
            path.stem[len(WIREFRAME_PREFIX) :]
            for path in wireframe_dir.glob(f"{WIREFRAME_PREFIX}*.json")
        )

    def delete_wireframe(self, session_id: str, wireframe_id: str) -> bool:
        path = self._wireframe_path(session_id, wireframe_id)
        if path is None or not path.exists():
            return False
        try:
            path.unlink()
        except OSError as e:
            raise StorageError(f"Failed to delete wireframe {wireframe_id}: {e}", key=wireframe_id) from e
        return True

    # =========================================================================
    # Component Versions
    # =========================================================================

    def write_component_versions(
        self,
        session_id: str,
        wireframe_id: str,
        component_id: str,
        record: dict[str, Any],
    ) -> None:
        path = self._version_path(session_id, wireframe_id, component_id)
        if path is None:
            raise StorageError(f"Invalid component id: {component_id!r}", key=component_id)
        try:
            _write_atomic(path, json.dumps(record, indent=2).encode("utf-8"))
        except OSError as e:
            raise StorageError(
                f"Failed to write versions of {component_id}: {e}", key=component_id
            ) from e

    def read_component_versions(
        self, session_id: str, wireframe_id: str, component_id: str
    ) -> dict[str, Any] | None:
        path = self._version_path(session_id, wireframe_id, component_id)
        if path is None:
            return None
        return _read_json(path, component_id)


__all__ = [
    "FileStorage",
    "sanitize_id",
]
