"""Storage protocol for session persistence.

Defines the interface that all storage backends must implement. Backends
deal in JSON-ready dicts and raw image bytes; decoding into model objects
is the SessionStore's job.
"""

from typing import Any, Protocol


class SessionStorage(Protocol):
    """Protocol defining the storage interface for session persistence.

    All storage backends (JSON file tree, SQLite) must implement this
    interface to be compatible with SessionStore.

    Every write either completes or leaves the previous record in place.
    I/O failures are raised as ``StorageError``; records that exist but
    cannot be decoded are raised as ``CorruptRecordError``.
    """

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def initialize(self) -> None:
        """Initialize storage (create directories, tables, etc.)."""
        ...

    def close(self) -> None:
        """Close storage connections and clean up resources."""
        ...

    # =========================================================================
    # Session Records
    # =========================================================================

    def read_session(self, session_id: str) -> dict[str, Any] | None:
        """Read a session record.

        Returns:
            The decoded record, or None if absent.

        Raises:
            CorruptRecordError: If the record exists but is not valid JSON.
        """
        ...

    def write_session(self, session_id: str, record: dict[str, Any]) -> None:
        """Overwrite a session record atomically."""
        ...

    def list_session_ids(self) -> list[str]:
        """IDs of every persisted session, in no particular order."""
        ...

    def delete_session(self, session_id: str) -> bool:
        """Delete a session with its images, wireframes and component versions.

        Returns:
            True if deleted, False if not found.
        """
        ...

    # =========================================================================
    # Images
    # =========================================================================

    def write_image(self, session_id: str, key: str, data: bytes) -> str:
        """Store an image payload.

        Args:
            session_id: Owning session.
            key: Image key, unique within the session.
            data: Raw image bytes.

        Returns:
            Reference to the stored image (path or URI).
        """
        ...

    def read_image(self, session_id: str, key: str) -> bytes | None:
        """Read an image payload, or None if absent."""
        ...

    # =========================================================================
    # Wireframes
    # =========================================================================

    def write_wireframe(
        self, session_id: str, wireframe_id: str, record: dict[str, Any]
    ) -> None:
        """Overwrite a wireframe record atomically."""
        ...

    def read_wireframe(self, session_id: str, wireframe_id: str) -> dict[str, Any] | None:
        """Read a wireframe record, or None if absent."""
        ...

    def list_wireframe_ids(self, session_id: str) -> list[str]:
        """IDs of every wireframe stored for a session."""
        ...

    def delete_wireframe(self, session_id: str, wireframe_id: str) -> bool:
        """Delete a wireframe record.

        Returns:
            True if deleted, False if not found.
        """
        ...

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
        """Overwrite the version history record of one component."""
        ...

    def read_component_versions(
        self, session_id: str, wireframe_id: str, component_id: str
    ) -> dict[str, Any] | None:
        """Read the version history record of one component, or None if absent."""
        ...
