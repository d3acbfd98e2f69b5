"""Session Store for asset-timeline.

The SessionStore is the single writer of persisted state. It keeps an
instance-scoped registry of active sessions (record + materialized
iteration history), the wireframe histories and the variant cache, and
funnels every mutation through a History object before persisting.
"""

import base64
import binascii
import copy
import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from src.cache import VariantCache, build_variant_cache_key
from src.config import get_history_max_depth, get_storage_backend, get_storage_dir
from src.core.errors import CorruptRecordError, InvariantViolation, StorageError
from src.history import Iteration, IterationHistory, IterationResult, utc_now
from src.metrics import MetricsCollector, MetricsSink
from src.resolver import ResolvedReference, resolve_reference
from src.wireframe import (
    ChangeType,
    ComponentVersion,
    VersionHistory,
    Wireframe,
    WireframeComponent,
    WireframeHistoryRegistry,
    find_component,
    replace_component,
    update_component,
    validate_component_tree,
)

from .models import AssetSession, AssetType, Refinement, Session, Variant
from .storage import FileStorage, SessionStorage, SQLiteStorage

logger = logging.getLogger(__name__)

SQLITE_FILENAME = "sessions.db"


def create_storage(
    backend: str | None = None,
    storage_dir: Path | str | None = None,
) -> SessionStorage:
    """Build the configured storage backend.

    Args:
        backend: "file" or "sqlite" (default ASSET_STORAGE_BACKEND).
        storage_dir: Storage root (default ASSET_STORAGE_DIR).
    """
    root = get_storage_dir(storage_dir)
    if get_storage_backend(backend) == "sqlite":
        return SQLiteStorage(root / SQLITE_FILENAME)
    return FileStorage(root)


def image_key(iteration: Iteration) -> str:
    """Storage key of an iteration image, qualified by branch after the first."""
    if iteration.branch == 0:
        return str(iteration.index)
    return f"b{iteration.branch}-{iteration.index}"


@dataclass
class ActiveSession:
    """Registry entry: a loaded session and its materialized history."""

    session: Session
    history: IterationHistory

    def checkpoint(self) -> "ActiveSession":
        """Deep copy of the record and its history."""
        return copy.deepcopy(self)

    def restore(self, checkpoint: "ActiveSession") -> None:
        """Return to the state captured by ``checkpoint``.

        The Session object keeps its identity; the history is replaced by
        the checkpoint's, which shares its iteration list with the record.
        """
        for f in fields(Session):
            setattr(self.session, f.name, getattr(checkpoint.session, f.name))
        self.history = checkpoint.history


class SessionStore:
    """Manager for sessions and their timelines.

    Provides a high-level interface for:
    - Session lifecycle (create, load, save, list, delete)
    - Image iteration history (add, undo, redo, rollback, resolve)
    - Asset variant exploration (start, select, refine) and its cache
    - Wireframe persistence with per-wireframe undo/redo
    - Per-component version history with restore

    Example:
        >>> store = SessionStore(storage_dir="data/sessions")
        >>> session = store.create_session()
        >>> iteration = store.add_iteration_to_session(
        ...     session.id, "a red fox", IterationResult()
        ... )
        >>> iteration.index
        0

    Args:
        storage: Storage backend to use. If None, built from configuration.
        storage_dir: Storage root (only used if storage is None).
        backend: Backend name (only used if storage is None).
        metrics: Metrics sink. If None, a MetricsCollector is created.
        max_depth: Undo depth limit for every history.
    """

    def __init__(
        self,
        storage: SessionStorage | None = None,
        storage_dir: Path | str | None = None,
        backend: str | None = None,
        metrics: MetricsSink | None = None,
        max_depth: int | None = None,
    ):
        self._storage = storage or create_storage(backend, storage_dir)
        self._storage.initialize()
        self._metrics: MetricsSink = metrics if metrics is not None else MetricsCollector()
        self._max_depth = get_history_max_depth(max_depth)

        self._active: dict[str, ActiveSession] = {}
        self._lock = threading.Lock()
        self._wireframes = WireframeHistoryRegistry(max_depth=self._max_depth)
        self._variant_cache = VariantCache()

    @property
    def storage(self) -> SessionStorage:
        return self._storage

    @property
    def metrics(self) -> MetricsSink:
        return self._metrics

    def close(self) -> None:
        """Close storage connections."""
        self._storage.close()

    # =========================================================================
    # Metrics
    # =========================================================================

    def record_metric(
        self,
        name: str,
        duration_ms: float,
        success: bool = True,
        error_type: str | None = None,
        session_id: str | None = None,
    ) -> None:
        """Forward a measurement to the sink. Sink failures are logged only."""
        try:
            self._metrics.record_operation(
                name, duration_ms, success, error_type=error_type, session_id=session_id
            )
        except Exception as e:
            logger.warning(f"Metrics sink failed on {name}: {e}")

    def _notify_sink(self, callback: Callable[[str], None], session_id: str) -> None:
        try:
            callback(session_id)
        except Exception as e:
            logger.warning(f"Metrics sink failed on {callback.__name__}: {e}")

    @contextmanager
    def _timed(self, name: str, session_id: str | None = None) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        except Exception as e:
            elapsed_ms = (time.perf_counter() - start) * 1000
            self.record_metric(name, elapsed_ms, False, type(e).__name__, session_id)
            raise
        elapsed_ms = (time.perf_counter() - start) * 1000
        self.record_metric(name, elapsed_ms, True, session_id=session_id)

    @contextmanager
    def _guarded(self, entry: ActiveSession) -> Iterator[None]:
        """Discard the in-memory changes of a mutation that fails to persist."""
        checkpoint = entry.checkpoint()
        try:
            yield
        except Exception as e:
            entry.restore(checkpoint)
            logger.warning(
                f"Session {entry.session.id}: changes discarded after {type(e).__name__}"
            )
            raise

    # =========================================================================
    # Session Lifecycle
    # =========================================================================

    def create_session(self) -> Session:
        """Create, persist and activate a new empty session."""
        with self._timed("create_session"):
            session = Session.create()
            self.save_session(session)
            self._register(session)

        self._notify_sink(self._metrics.record_session_created, session.id)
        logger.info(f"Session created: {session.id}")
        return session

    def load_session(self, session_id: str) -> Session | None:
        """Get an active session or load it from storage.

        Returns:
            The session, or None if it does not exist or its record is
            corrupted.
        """
        with self._lock:
            entry = self._active.get(session_id)
        if entry is not None:
            return entry.session

        with self._timed("load_session", session_id):
            session = self._read_session(session_id)
            if session is None:
                return None
            try:
                entry = self._register(session)
            except InvariantViolation as e:
                logger.error(f"Session {session_id} has an inconsistent timeline: {e}")
                return None

            if any(it.result.image_base64 and not it.result.image_path for it in session.iterations):
                logger.info(f"Moving inline images of session {session_id} into storage")
                self.save_session(entry.session)

        logger.info(f"Session loaded: {session_id}")
        return entry.session

    def save_session(self, session: Session) -> None:
        """Persist a session, moving transient images into storage first.

        Raises:
            StorageError: If the image or record write fails.
            ValueError: If a transient image is not valid base64.
        """
        with self._timed("save_session", session.id):
            now = utc_now()
            try:
                self._persist_images(session)
                record = session.to_dict()
                record["updated_at"] = now.isoformat()
                self._storage.write_session(session.id, record)
            except StorageError as e:
                logger.error(f"Failed to save session {session.id}: {e}")
                raise
            session.updated_at = now

        logger.debug(f"Session saved: {session.id}")

    def list_sessions(self) -> list[Session]:
        """All persisted sessions, newest first. Corrupted records are skipped."""
        sessions: list[Session] = []
        for session_id in self._storage.list_session_ids():
            session = self.get_active_session(session_id) or self._read_session(session_id)
            if session is not None:
                sessions.append(session)
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        return sessions

    def delete_session(self, session_id: str) -> bool:
        """Delete a session with its images, wireframes, histories and cache.

        Returns:
            True if anything was removed.
        """
        with self._timed("delete_session", session_id):
            removed = self._storage.delete_session(session_id)
            with self._lock:
                entry = self._active.pop(session_id, None)
            self._wireframes.clear_session(session_id)
            self._variant_cache.clear(session_id)

        if not removed and entry is None:
            logger.warning(f"Session not found for delete: {session_id}")
            return False

        self._notify_sink(self._metrics.record_session_closed, session_id)
        logger.info(f"Session deleted: {session_id}")
        return True

    def get_active_session(self, session_id: str) -> Session | None:
        """In-memory lookup only."""
        with self._lock:
            entry = self._active.get(session_id)
        return entry.session if entry else None

    def get_active_history(self, session_id: str) -> IterationHistory | None:
        """Iteration history of a session, loading the session on first access."""
        entry = self._entry(session_id)
        return entry.history if entry else None

    # =========================================================================
    # Iteration Timeline
    # =========================================================================

    def add_iteration_to_session(
        self,
        session_id: str,
        prompt: str,
        result: IterationResult | None = None,
    ) -> Iteration | None:
        """Record a generation step and persist.

        If the save fails, the iteration is discarded from memory too.

        Returns:
            The new iteration, or None if the session does not exist.

        Raises:
            StorageError: If the session cannot be saved.
        """
        with self._timed("add_iteration", session_id):
            entry = self._entry(session_id)
            if entry is None:
                return None

            with self._guarded(entry):
                iteration = entry.history.push(prompt, result)
                entry.session.metadata.total_iterations = len(entry.session.iterations)
                entry.session.metadata.last_prompt = prompt
                self.save_session(entry.session)

        logger.debug(f"Session {session_id}: added iteration {iteration.index}")
        return iteration

    def undo(self, session_id: str) -> Iteration | None:
        """Step back. None if the session is absent or nothing to undo."""
        with self._timed("undo", session_id):
            entry = self._entry(session_id)
            if entry is None:
                return None
            with self._guarded(entry):
                iteration = entry.history.undo()
                if iteration is not None:
                    self.save_session(entry.session)
        return iteration

    def redo(self, session_id: str) -> Iteration | None:
        """Step forward. None if the session is absent or nothing to redo."""
        with self._timed("redo", session_id):
            entry = self._entry(session_id)
            if entry is None:
                return None
            with self._guarded(entry):
                iteration = entry.history.redo()
                if iteration is not None:
                    self.save_session(entry.session)
        return iteration

    def rollback(self, session_id: str, target_index: int) -> Iteration | None:
        """Make an earlier iteration the tip and persist.

        Returns:
            The target iteration, or None if the session does not exist.

        Raises:
            OutOfRangeError: If target_index is outside the timeline.
        """
        with self._timed("rollback", session_id):
            entry = self._entry(session_id)
            if entry is None:
                return None
            with self._guarded(entry):
                target = entry.history.rollback(target_index)
                self.save_session(entry.session)
        return target

    def get_iteration(self, session_id: str, index: int) -> Iteration | None:
        """Preview an iteration, archived ones included."""
        entry = self._entry(session_id)
        return entry.history.get_iteration(index) if entry else None

    def list_iterations(
        self, session_id: str, include_archived: bool = True
    ) -> list[Iteration] | None:
        """Iterations of a session; None if the session does not exist."""
        entry = self._entry(session_id)
        if entry is None:
            return None
        if include_archived:
            return entry.history.get_all_iterations()
        return entry.history.get_active_iterations()

    def resolve_reference(
        self, session_id: str, reference: str | int
    ) -> ResolvedReference | None:
        """Resolve a symbolic reference to one of a session's iterations.

        Prompt text also matches iterations archived by a rollback.

        Returns:
            The resolution, or None if the session does not exist.

        Raises:
            ValueError: If the reference is blank.
            OutOfRangeError: If an index reference is outside the timeline.
            NoMatchError: If no prompt matches.
            AmbiguousReferenceError: If several prompts match.
        """
        with self._timed("resolve_reference", session_id):
            entry = self._entry(session_id)
            if entry is None:
                return None
            return resolve_reference(entry.history, reference)

    def load_iteration_image(self, session_id: str, index: int) -> str | None:
        """Base64 image of an iteration, from memory or storage."""
        iteration = self.get_iteration(session_id, index)
        if iteration is None:
            return None
        if iteration.result.image_base64:
            return iteration.result.image_base64
        data = self._storage.read_image(session_id, image_key(iteration))
        if data is None:
            return None
        return base64.b64encode(data).decode("ascii")

    # =========================================================================
    # Asset Variants
    # =========================================================================

    def start_asset_session(
        self,
        session_id: str,
        asset_type: AssetType | str,
        variants: list[Variant],
    ) -> AssetSession | None:
        """Begin a new variant exploration, replacing the previous one."""
        entry = self._entry(session_id)
        if entry is None:
            return None

        asset = AssetSession(asset_type=AssetType(asset_type), all_variants=list(variants))
        with self._guarded(entry):
            entry.session.current_asset = asset
            self.save_session(entry.session)
        logger.info(
            f"Session {session_id}: started {asset.asset_type.value} asset "
            f"with {len(asset.all_variants)} variants"
        )
        return asset

    def select_variant(self, session_id: str, variant_id: str) -> Variant | None:
        """Select one variant of the current asset.

        Returns:
            The selected variant, or None if the session, asset or variant
            does not exist.
        """
        entry = self._entry(session_id)
        if entry is None or entry.session.current_asset is None:
            return None

        asset = entry.session.current_asset
        variant = asset.get_variant(variant_id)
        if variant is None:
            available = ", ".join(v.id for v in asset.all_variants)
            logger.warning(f"Variant {variant_id} not found. Available variants: {available}")
            return None

        with self._guarded(entry):
            asset.selected_variant_id = variant_id
            self.save_session(entry.session)
        return variant

    def add_refinement(
        self,
        session_id: str,
        base_variant_id: str,
        refined_variant: Variant,
        refinement_prompt: str,
    ) -> Refinement | None:
        """Record a refined variant derived from a base variant and select it.

        Returns:
            The refinement link, or None if the session, asset or base
            variant does not exist.
        """
        entry = self._entry(session_id)
        if entry is None or entry.session.current_asset is None:
            return None

        asset = entry.session.current_asset
        if asset.get_variant(base_variant_id) is None:
            logger.warning(f"Base variant {base_variant_id} not found in session {session_id}")
            return None

        refinement = Refinement(
            variant_id=refined_variant.id,
            base_variant_id=base_variant_id,
            refinement_prompt=refinement_prompt,
        )
        with self._guarded(entry):
            asset.all_variants.append(refined_variant)
            asset.refinements.append(refinement)
            asset.selected_variant_id = refined_variant.id
            self.save_session(entry.session)
        return refinement

    # =========================================================================
    # Variant Cache
    # =========================================================================

    @staticmethod
    def build_variant_cache_key(
        asset_type: str, description: str, width: int, height: int
    ) -> str:
        return build_variant_cache_key(asset_type, description, width, height)

    def get_variant_cache(self, session_id: str, key: str) -> list[Variant] | None:
        return self._variant_cache.get(session_id, key)

    def set_variant_cache(self, session_id: str, key: str, variants: list[Variant]) -> None:
        self._variant_cache.set(session_id, key, variants)

    def clear_variant_cache(self, session_id: str) -> int:
        return self._variant_cache.clear(session_id)

    # =========================================================================
    # Wireframes
    # =========================================================================

    def save_wireframe(self, session_id: str, wireframe: Wireframe) -> Wireframe | None:
        """Persist a wireframe, make it current and seed its history.

        Returns:
            The wireframe, or None if the session does not exist.

        Raises:
            ValueError: If the wireframe belongs to another session or its
                component tree has duplicate or empty ids.
        """
        if wireframe.session_id != session_id:
            raise ValueError(
                f"Wireframe {wireframe.id} belongs to session {wireframe.session_id}"
            )
        self._check_tree(wireframe)
        with self._timed("save_wireframe", session_id):
            entry = self._entry(session_id)
            if entry is None:
                return None

            self._storage.write_wireframe(
                session_id, wireframe.id, wireframe.model_dump(mode="json")
            )
            self._wireframes.initialize_history(session_id, wireframe)
            if entry.session.current_wireframe_id != wireframe.id:
                with self._guarded(entry):
                    entry.session.current_wireframe_id = wireframe.id
                    self.save_session(entry.session)
        return wireframe

    def load_wireframe(self, session_id: str, wireframe_id: str) -> Wireframe | None:
        """Load a stored wireframe and seed its history if needed.

        Returns:
            The wireframe, or None if absent or corrupted.
        """
        try:
            record = self._storage.read_wireframe(session_id, wireframe_id)
        except CorruptRecordError as e:
            logger.error(f"Failed to load wireframe {wireframe_id}: {e}")
            return None
        if record is None:
            return None

        try:
            wireframe = Wireframe.model_validate(record)
        except ValidationError as e:
            logger.error(f"Invalid wireframe record {wireframe_id}: {e}")
            return None

        self._wireframes.initialize_history(session_id, wireframe)
        return wireframe

    def list_wireframes(self, session_id: str) -> list[str]:
        """IDs of every wireframe stored for a session."""
        return self._storage.list_wireframe_ids(session_id)

    def delete_wireframe(self, session_id: str, wireframe_id: str) -> bool:
        """Delete a stored wireframe and drop its history."""
        removed = self._storage.delete_wireframe(session_id, wireframe_id)
        self._wireframes.remove(session_id, wireframe_id)

        with self._lock:
            entry = self._active.get(session_id)
        if entry is not None and entry.session.current_wireframe_id == wireframe_id:
            with self._guarded(entry):
                entry.session.current_wireframe_id = None
                self.save_session(entry.session)
        return removed

    def record_wireframe_change(
        self, session_id: str, wireframe: Wireframe
    ) -> Wireframe | None:
        """Persist a new wireframe state and push it onto its history.

        Raises:
            ValueError: If the component tree has duplicate or empty ids.
            StorageError: If the write fails; the history is left unchanged.
        """
        self._check_tree(wireframe)
        with self._timed("record_wireframe_change", session_id):
            if self._entry(session_id) is None:
                return None
            self._storage.write_wireframe(
                session_id, wireframe.id, wireframe.model_dump(mode="json")
            )
            self._wireframes.push_history(session_id, wireframe)
        return wireframe

    def update_component(
        self,
        session_id: str,
        wireframe_id: str,
        component_id: str,
        properties: dict[str, Any] | None = None,
        position: dict[str, float] | None = None,
        dimensions: dict[str, float] | None = None,
    ) -> Wireframe | None:
        """Change one component, record the result as a new state and
        record an ``updated`` version of the component.

        Returns:
            The updated wireframe, or None if the session, wireframe or
            component does not exist.

        Raises:
            pydantic.ValidationError: If position or dimensions hold unknown
                keys or invalid values.
        """
        if self._entry(session_id) is None:
            return None
        current = self.load_wireframe(session_id, wireframe_id)
        if current is None:
            return None

        updated = current.snapshot()
        component = update_component(updated, component_id, properties, position, dimensions)
        if component is None:
            logger.warning(f"Component {component_id} not found in wireframe {wireframe_id}")
            return None

        self.record_wireframe_change(session_id, updated)
        changed = [
            name
            for name, value in (
                ("properties", properties),
                ("position", position),
                ("dimensions", dimensions),
            )
            if value
        ]
        self.record_component_version(
            session_id,
            wireframe_id,
            component,
            ChangeType.UPDATED,
            f"Updated {', '.join(changed)}" if changed else "Updated",
        )
        return updated

    def undo_wireframe(self, session_id: str, wireframe_id: str) -> Wireframe | None:
        """Restore the previous wireframe state and persist it.

        A failed write steps the history forward again before re-raising.
        """
        with self._timed("undo_wireframe", session_id):
            restored = self._wireframes.undo(session_id, wireframe_id)
            if restored is not None:
                try:
                    self._storage.write_wireframe(
                        session_id, wireframe_id, restored.model_dump(mode="json")
                    )
                except StorageError:
                    self._wireframes.redo(session_id, wireframe_id)
                    raise
        return restored

    def redo_wireframe(self, session_id: str, wireframe_id: str) -> Wireframe | None:
        """Re-apply the next wireframe state and persist it.

        A failed write steps the history back again before re-raising.
        """
        with self._timed("redo_wireframe", session_id):
            restored = self._wireframes.redo(session_id, wireframe_id)
            if restored is not None:
                try:
                    self._storage.write_wireframe(
                        session_id, wireframe_id, restored.model_dump(mode="json")
                    )
                except StorageError:
                    self._wireframes.undo(session_id, wireframe_id)
                    raise
        return restored

    def wireframe_history_status(
        self, session_id: str, wireframe_id: str
    ) -> dict[str, Any] | None:
        """Undo/redo availability of a wireframe, or None without history."""
        history = self._wireframes.get(session_id, wireframe_id)
        return history.status() if history else None

    # =========================================================================
    # Component Versions
    # =========================================================================

    def record_component_version(
        self,
        session_id: str,
        wireframe_id: str,
        component: WireframeComponent,
        change_type: ChangeType | str = ChangeType.UPDATED,
        change_description: str = "",
        previous_version_id: str | None = None,
    ) -> ComponentVersion | None:
        """Append a snapshot of a component to its version history.

        Args:
            session_id: Owning session.
            wireframe_id: Wireframe holding the component.
            component: Component state to record (copied).
            change_type: Kind of change.
            change_description: Human-readable summary.
            previous_version_id: Version this one follows. Defaults to the
                component's current version.

        Returns:
            The new version, or None if the session does not exist.
        """
        with self._timed("record_component_version", session_id):
            if self._entry(session_id) is None:
                return None

            history = self.get_component_history(session_id, wireframe_id, component.id)
            if history is None:
                history = VersionHistory(wireframe_id=wireframe_id, component_id=component.id)
            version = ComponentVersion.create(
                wireframe_id,
                component,
                ChangeType(change_type),
                change_description,
                previous_version_id or history.current_version_id,
            )
            history.append(version)
            self._storage.write_component_versions(
                session_id, wireframe_id, component.id, history.model_dump(mode="json")
            )

        logger.debug(
            f"Recorded {version.change_type} version {version.version_id} "
            f"of component {component.id}"
        )
        return version

    def get_component_history(
        self, session_id: str, wireframe_id: str, component_id: str
    ) -> VersionHistory | None:
        """Version history of one component, or None if absent or corrupted."""
        try:
            record = self._storage.read_component_versions(
                session_id, wireframe_id, component_id
            )
        except CorruptRecordError as e:
            logger.error(f"Failed to load versions of component {component_id}: {e}")
            return None
        if record is None:
            return None

        try:
            return VersionHistory.model_validate(record)
        except ValidationError as e:
            logger.error(f"Invalid version record for component {component_id}: {e}")
            return None

    def get_component_version(
        self, session_id: str, wireframe_id: str, component_id: str, version_id: str
    ) -> ComponentVersion | None:
        """One recorded version of a component."""
        history = self.get_component_history(session_id, wireframe_id, component_id)
        return history.get(version_id) if history else None

    def list_component_versions(
        self, session_id: str, wireframe_id: str, component_id: str
    ) -> list[dict[str, Any]]:
        """Summaries of every version of a component, oldest first."""
        history = self.get_component_history(session_id, wireframe_id, component_id)
        if history is None:
            return []
        return [version.summary() for version in history.versions]

    def restore_component_version(
        self, session_id: str, wireframe_id: str, component_id: str, version_id: str
    ) -> ComponentVersion | None:
        """Bring a component back to a recorded version.

        The stored component state replaces the component in the wireframe
        (recorded as a new wireframe state, so it can be undone) when both
        still exist, and a ``restored`` version pointing at ``version_id``
        is appended.

        Returns:
            The new ``restored`` version, or None if the session or version
            does not exist.

        Raises:
            ValueError: If restoring would leave duplicate component ids.
        """
        target = self.get_component_version(session_id, wireframe_id, component_id, version_id)
        if target is None:
            logger.warning(f"Version {version_id} of component {component_id} not found")
            return None

        current = self.load_wireframe(session_id, wireframe_id)
        if current is not None and find_component(current, component_id) is not None:
            restored = current.snapshot()
            replace_component(restored, target.component_state)
            self.record_wireframe_change(session_id, restored)

        return self.record_component_version(
            session_id,
            wireframe_id,
            target.component_state,
            ChangeType.RESTORED,
            f"Restored from version {version_id}",
            previous_version_id=target.version_id,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _check_tree(wireframe: Wireframe) -> None:
        issues = validate_component_tree(wireframe)
        if issues:
            details = "; ".join(issue.message for issue in issues)
            raise ValueError(f"Invalid component tree in wireframe {wireframe.id}: {details}")

    def _register(self, session: Session) -> ActiveSession:
        history = IterationHistory(session.id, session.iterations, max_depth=self._max_depth)
        with self._lock:
            return self._active.setdefault(session.id, ActiveSession(session, history))

    def _entry(self, session_id: str) -> ActiveSession | None:
        with self._lock:
            entry = self._active.get(session_id)
        if entry is not None:
            return entry
        if self.load_session(session_id) is None:
            return None
        with self._lock:
            return self._active.get(session_id)

    def _read_session(self, session_id: str) -> Session | None:
        try:
            record = self._storage.read_session(session_id)
        except CorruptRecordError as e:
            logger.error(f"Failed to load session {session_id}: {e}")
            return None
        if record is None:
            logger.warning(f"Session not found: {session_id}")
            return None

        try:
            return Session.from_dict(record)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Invalid session record {session_id}: {e!r}")
            return None

    def _persist_images(self, session: Session) -> None:
        pending: list[tuple[Iteration, bytes]] = []
        for iteration in session.iterations:
            if iteration.result.image_base64:
                try:
                    data = base64.b64decode(iteration.result.image_base64, validate=True)
                except binascii.Error as e:
                    raise ValueError(
                        f"Iteration {iteration.index} of session {session.id} "
                        f"has an invalid base64 image"
                    ) from e
                pending.append((iteration, data))

        for iteration, data in pending:
            path = self._storage.write_image(session.id, image_key(iteration), data)
            iteration.result.image_path = path
            iteration.result.image_base64 = None


__all__ = [
    "ActiveSession",
    "SessionStore",
    "create_storage",
    "image_key",
]
