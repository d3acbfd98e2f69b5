"""Tests for session management module.

Tests cover:
- Session/variant models and serialization
- FileStorage and SQLiteStorage record, image and wireframe operations
- SessionStore lifecycle on both backends
- Iteration timeline operations and persistence across reloads
- Asset variant selection, refinement and cache
- Wireframe persistence and undo/redo
- Per-component version history and restore
- Failure semantics (corrupted records, storage errors, failing sinks)
"""

import base64
import json
import tempfile
from pathlib import Path

import pytest
from pydantic import ValidationError

from src.core.errors import (
    CorruptRecordError,
    NoMatchError,
    OutOfRangeError,
    StorageError,
)
from src.history import GenerationMetadata, Iteration, IterationResult
from src.metrics import MetricsCollector
from src.wireframe import ComponentType, Wireframe, WireframeComponent, find_component

from .lib import SessionStore, image_key
from .models import AssetSession, AssetType, Session, Variant, VariantMetadata
from .storage import FileStorage, SQLiteStorage, sanitize_id

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test storage."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(params=["file", "sqlite"])
def backend(request):
    """Storage backend name."""
    return request.param


@pytest.fixture
def metrics():
    """Create a metrics collector."""
    return MetricsCollector(max_operations=1000)


@pytest.fixture
def store(temp_dir, backend, metrics):
    """Create a SessionStore on the parametrized backend."""
    s = SessionStore(storage_dir=temp_dir, backend=backend, metrics=metrics)
    yield s
    s.close()


@pytest.fixture
def file_storage(temp_dir):
    """Create an initialized FileStorage."""
    storage = FileStorage(temp_dir)
    storage.initialize()
    return storage


@pytest.fixture
def sqlite_storage(temp_dir):
    """Create an initialized SQLiteStorage."""
    storage = SQLiteStorage(temp_dir / "sessions.db")
    storage.initialize()
    yield storage
    storage.close()


def _reopen(store: SessionStore, temp_dir: Path, backend: str) -> SessionStore:
    store.close()
    return SessionStore(storage_dir=temp_dir, backend=backend)


def _png(payload: bytes = b"\x89PNG fake") -> str:
    return base64.b64encode(payload).decode("ascii")


def _result(prompt: str, image: str | None = None) -> IterationResult:
    return IterationResult(
        metadata=GenerationMetadata(prompt=prompt, width=512, height=512, steps=4),
        image_base64=image,
    )


def _add(store: SessionStore, session_id: str, *prompts: str) -> list[Iteration]:
    return [store.add_iteration_to_session(session_id, p, _result(p)) for p in prompts]


def _dashboard(session_id: str) -> Wireframe:
    return Wireframe.create(
        session_id=session_id,
        description="dashboard",
        components=[
            WireframeComponent(id="nav", type=ComponentType.SIDEBAR),
            WireframeComponent(
                id="cards",
                type=ComponentType.GRID,
                properties={"columns": 3},
                children=[WireframeComponent(id="card-1", type=ComponentType.CARD)],
            ),
        ],
    )


# =============================================================================
# Model Tests
# =============================================================================


class TestModels:
    """Tests for session data models."""

    @pytest.mark.unit
    def test_session_roundtrip(self):
        """Session survives to_dict/from_dict."""
        session = Session.create()
        session.iterations.append(Iteration(index=0, prompt="fox"))
        session.metadata.total_iterations = 1
        session.current_asset = AssetSession(
            asset_type=AssetType.ICON,
            all_variants=[Variant.create(seed=1, prompt="fox")],
        )
        restored = Session.from_dict(json.loads(json.dumps(session.to_dict())))
        assert restored.id == session.id
        assert restored.created_at == session.created_at
        assert restored.iterations[0].prompt == "fox"
        assert restored.current_asset.asset_type == AssetType.ICON
        assert restored.current_asset.all_variants == session.current_asset.all_variants

    @pytest.mark.unit
    def test_nested_fields_must_be_objects(self):
        """Nested records of the wrong type raise ValueError."""
        base = {"id": "abc", "created_at": "2024-01-01T00:00:00Z", "iterations": []}
        with pytest.raises(ValueError, match="session metadata"):
            Session.from_dict({**base, "metadata": "oops"})
        with pytest.raises(ValueError, match="Invalid timestamp"):
            Session.from_dict({**base, "created_at": 123})
        with pytest.raises(ValueError, match="iteration result"):
            Session.from_dict({**base, "iterations": [{"index": 0, "prompt": "a", "result": "x"}]})
        with pytest.raises(ValueError, match="all_variants"):
            Session.from_dict(
                {**base, "current_asset": {"asset_type": "icon", "all_variants": "abc"}}
            )

    @pytest.mark.unit
    def test_session_missing_field(self):
        """Records without iterations are rejected."""
        with pytest.raises(KeyError):
            Session.from_dict({"id": "abc", "created_at": "2024-01-01T00:00:00Z"})

    @pytest.mark.unit
    def test_session_bad_iterations(self):
        """Iterations must be a list."""
        with pytest.raises(ValueError):
            Session.from_dict(
                {"id": "abc", "created_at": "2024-01-01T00:00:00Z", "iterations": {}}
            )

    @pytest.mark.unit
    def test_variant_is_frozen(self):
        """Variants cannot be modified."""
        variant = Variant.create(seed=7, prompt="banner", metadata=VariantMetadata(width=1200))
        with pytest.raises(AttributeError):
            variant.seed = 8

    @pytest.mark.unit
    def test_image_key(self):
        """Images of later branches get a qualified key."""
        assert image_key(Iteration(index=3, prompt="x")) == "3"
        assert image_key(Iteration(index=3, prompt="x", branch=2)) == "b2-3"


# =============================================================================
# Storage Tests
# =============================================================================


class TestFileStorage:
    """Tests for the JSON file-tree backend."""

    @pytest.mark.unit
    def test_sanitize_id(self):
        """Path separators and dots are stripped."""
        assert sanitize_id("../etc/passwd") == "etcpasswd"
        assert sanitize_id("abc-123_x") == "abc-123_x"

    @pytest.mark.unit
    def test_layout(self, file_storage, temp_dir):
        """Records land at the documented paths."""
        file_storage.write_session("s1", {"id": "s1"})
        file_storage.write_image("s1", "0", b"png")
        file_storage.write_wireframe("s1", "w1", {"id": "w1"})
        file_storage.write_component_versions("s1", "w1", "nav", {"versions": []})
        assert (temp_dir / "s1" / "session.json").exists()
        assert (temp_dir / "s1" / "images" / "0.png").read_bytes() == b"png"
        assert (temp_dir / "s1" / "wireframes" / "wireframe-w1.json").exists()
        assert (temp_dir / "s1" / "versions" / "w1" / "nav.json").exists()
        assert not list(temp_dir.rglob("*.tmp"))

    @pytest.mark.unit
    def test_missing_returns_none(self, file_storage):
        """Absent records read as None."""
        assert file_storage.read_session("nope") is None
        assert file_storage.read_image("nope", "0") is None
        assert file_storage.read_wireframe("nope", "w") is None
        assert file_storage.read_session("///") is None

    @pytest.mark.unit
    def test_corrupt_json(self, file_storage, temp_dir):
        """Undecodable records raise CorruptRecordError."""
        (temp_dir / "bad").mkdir()
        (temp_dir / "bad" / "session.json").write_text("{not json")
        with pytest.raises(CorruptRecordError):
            file_storage.read_session("bad")

    @pytest.mark.unit
    def test_write_invalid_id(self, file_storage):
        """Ids with no safe characters cannot be written."""
        with pytest.raises(StorageError):
            file_storage.write_session("../", {})

    @pytest.mark.unit
    def test_delete_session_removes_tree(self, file_storage, temp_dir):
        """Deleting a session removes its images and wireframes."""
        file_storage.write_session("s1", {"id": "s1"})
        file_storage.write_image("s1", "0", b"png")
        assert file_storage.delete_session("s1") is True
        assert not (temp_dir / "s1").exists()
        assert file_storage.delete_session("s1") is False

    @pytest.mark.unit
    def test_list_ids(self, file_storage, temp_dir):
        """Only directories holding a session record are listed."""
        file_storage.write_session("a", {"id": "a"})
        (temp_dir / "stray").mkdir()
        assert file_storage.list_session_ids() == ["a"]

    @pytest.mark.unit
    def test_wireframe_ids(self, file_storage):
        """Wireframe ids are listed per session."""
        file_storage.write_wireframe("s1", "w2", {})
        file_storage.write_wireframe("s1", "w1", {})
        assert file_storage.list_wireframe_ids("s1") == ["w1", "w2"]
        assert file_storage.delete_wireframe("s1", "w1") is True
        assert file_storage.list_wireframe_ids("s1") == ["w2"]


class TestSQLiteStorage:
    """Tests for the SQLite backend."""

    @pytest.mark.unit
    def test_requires_initialize(self, temp_dir):
        """Using storage before initialize() fails."""
        storage = SQLiteStorage(temp_dir / "x.db")
        with pytest.raises(RuntimeError, match="not initialized"):
            storage.read_session("s")

    @pytest.mark.unit
    def test_session_upsert(self, sqlite_storage):
        """Writing twice replaces the record."""
        sqlite_storage.write_session("s1", {"id": "s1", "v": 1})
        sqlite_storage.write_session("s1", {"id": "s1", "v": 2})
        assert sqlite_storage.read_session("s1")["v"] == 2
        assert sqlite_storage.list_session_ids() == ["s1"]

    @pytest.mark.unit
    def test_image_roundtrip(self, sqlite_storage):
        """Image bytes come back unchanged."""
        sqlite_storage.write_session("s1", {"id": "s1"})
        ref = sqlite_storage.write_image("s1", "b1-2", b"\x00\x01png")
        assert ref == "sqlite://s1/b1-2"
        assert sqlite_storage.read_image("s1", "b1-2") == b"\x00\x01png"

    @pytest.mark.unit
    def test_cascade_delete(self, sqlite_storage):
        """Deleting a session removes its images, wireframes and versions."""
        sqlite_storage.write_session("s1", {"id": "s1"})
        sqlite_storage.write_image("s1", "0", b"png")
        sqlite_storage.write_wireframe("s1", "w1", {"id": "w1"})
        sqlite_storage.write_component_versions("s1", "w1", "nav", {"versions": []})
        assert sqlite_storage.delete_session("s1") is True
        assert sqlite_storage.read_component_versions("s1", "w1", "nav") is None
        assert sqlite_storage.read_image("s1", "0") is None
        assert sqlite_storage.list_wireframe_ids("s1") == []
        assert sqlite_storage.delete_session("s1") is False

    @pytest.mark.unit
    def test_orphan_image_rejected(self, sqlite_storage):
        """Images of unknown sessions violate the foreign key."""
        with pytest.raises(StorageError):
            sqlite_storage.write_image("ghost", "0", b"png")

    @pytest.mark.unit
    def test_corrupt_record(self, sqlite_storage):
        """Undecodable records raise CorruptRecordError."""
        sqlite_storage.write_session("s1", {"id": "s1"})
        conn = sqlite_storage._get_conn()
        conn.execute("UPDATE sessions SET record = '{bad' WHERE id = 's1'")
        conn.commit()
        with pytest.raises(CorruptRecordError):
            sqlite_storage.read_session("s1")


# =============================================================================
# SessionStore Lifecycle Tests
# =============================================================================


class TestSessionLifecycle:
    """Tests for create/load/list/delete."""

    @pytest.mark.unit
    def test_create_session(self, store, metrics):
        """New session is persisted, active and counted."""
        session = store.create_session()
        assert store.get_active_session(session.id) is session
        assert store.storage.read_session(session.id)["id"] == session.id
        assert metrics.get_snapshot().sessions_created == 1
        assert metrics.get_operation_metrics("create_session").total == 1

    @pytest.mark.unit
    def test_load_missing(self, store):
        """Unknown sessions load as None."""
        assert store.load_session("does-not-exist") is None
        assert store.get_active_history("does-not-exist") is None

    @pytest.mark.unit
    def test_load_from_storage(self, store, temp_dir, backend):
        """A fresh store loads sessions persisted by another."""
        session = store.create_session()
        _add(store, session.id, "a", "b")
        reopened = _reopen(store, temp_dir, backend)
        try:
            loaded = reopened.load_session(session.id)
            assert loaded.id == session.id
            assert loaded.metadata.total_iterations == 2
            assert loaded.metadata.last_prompt == "b"
            assert reopened.load_session(session.id) is loaded
        finally:
            reopened.close()

    @pytest.mark.unit
    def test_list_sessions_newest_first(self, store):
        """Listing is ordered by creation time, newest first."""
        first = store.create_session()
        second = store.create_session()
        ids = [s.id for s in store.list_sessions()]
        assert ids.index(second.id) < ids.index(first.id)

    @pytest.mark.unit
    def test_delete_session(self, store, metrics):
        """Delete drops record, registry entry, cache and histories."""
        session = store.create_session()
        key = store.build_variant_cache_key("icon", "fox", 64, 64)
        store.set_variant_cache(session.id, key, [Variant.create(seed=1, prompt="fox")])
        store.save_wireframe(session.id, _dashboard(session.id))

        assert store.delete_session(session.id) is True
        assert store.get_active_session(session.id) is None
        assert store.load_session(session.id) is None
        assert store.get_variant_cache(session.id, key) is None
        assert metrics.get_snapshot().sessions_closed == 1
        assert store.delete_session(session.id) is False

    @pytest.mark.unit
    def test_updated_at_stamped(self, store):
        """Saving moves updated_at forward."""
        session = store.create_session()
        before = session.updated_at
        _add(store, session.id, "a")
        assert session.updated_at >= before


class TestCorruptedRecords:
    """Tests for load behaviour on bad records (file backend)."""

    @pytest.mark.unit
    def test_invalid_json_loads_as_none(self, temp_dir, caplog):
        """Undecodable JSON is logged and treated as absent."""
        (temp_dir / "broken").mkdir()
        (temp_dir / "broken" / "session.json").write_text("{oops")
        store = SessionStore(storage_dir=temp_dir, backend="file")
        assert store.load_session("broken") is None
        assert "Failed to load session broken" in caplog.text

    @pytest.mark.unit
    def test_missing_fields_load_as_none(self, temp_dir):
        """Records without required fields are treated as absent."""
        (temp_dir / "partial").mkdir()
        (temp_dir / "partial" / "session.json").write_text(json.dumps({"id": "partial"}))
        store = SessionStore(storage_dir=temp_dir, backend="file")
        assert store.load_session("partial") is None

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "overrides",
        [
            {"metadata": "oops"},
            {"created_at": 123},
            {"iterations": [{"index": 0, "prompt": "a", "result": "x"}]},
            {"iterations": [{"index": 0, "prompt": "a", "result": {"metadata": []}}]},
            {"iterations": ["x"]},
            {"current_asset": "icon"},
            {"current_asset": {"asset_type": "icon", "all_variants": "abc"}},
        ],
    )
    def test_wrong_field_types_load_as_none(self, temp_dir, overrides, caplog):
        """Well-formed JSON with mistyped fields is logged and treated as absent."""
        record = Session.create().to_dict()
        record["id"] = "bad"
        record.update(overrides)
        (temp_dir / "bad").mkdir()
        (temp_dir / "bad" / "session.json").write_text(json.dumps(record))

        store = SessionStore(storage_dir=temp_dir, backend="file")
        assert store.load_session("bad") is None
        assert store.list_sessions() == []
        assert "Invalid session record bad" in caplog.text

    @pytest.mark.unit
    def test_list_skips_corrupted(self, temp_dir):
        """Listing skips corrupted records."""
        store = SessionStore(storage_dir=temp_dir, backend="file")
        good = store.create_session()
        (temp_dir / "broken").mkdir()
        (temp_dir / "broken" / "session.json").write_text("[]")
        assert [s.id for s in store.list_sessions()] == [good.id]


# =============================================================================
# Iteration Timeline Tests
# =============================================================================


class TestIterationTimeline:
    """Tests for add/undo/redo/rollback through the store."""

    @pytest.mark.unit
    def test_add_to_missing_session(self, store):
        """Adding to an unknown session returns None."""
        assert store.add_iteration_to_session("ghost", "a", _result("a")) is None

    @pytest.mark.unit
    def test_indices_grow_by_one(self, store):
        """Each add appends at the prior count."""
        session = store.create_session()
        iterations = _add(store, session.id, "a", "b", "c")
        assert [it.index for it in iterations] == [0, 1, 2]
        assert len(session.iterations) == 3
        assert session.metadata.total_iterations == 3

    @pytest.mark.unit
    def test_undo_redo(self, store):
        """Undo and redo move the present."""
        session = store.create_session()
        _add(store, session.id, "a", "b")
        assert store.undo(session.id).prompt == "a"
        assert store.undo(session.id) is None
        assert store.redo(session.id).prompt == "b"
        assert store.redo(session.id) is None

    @pytest.mark.unit
    def test_rollback_then_add(self, store):
        """After rollback(0) the next iteration lands at index 1."""
        session = store.create_session()
        _add(store, session.id, "A", "B", "C")
        assert store.rollback(session.id, 0).prompt == "A"
        (d,) = _add(store, session.id, "D")
        assert d.index == 1
        assert d.branch == 1
        assert store.get_iteration(session.id, 1).prompt == "D"
        archived = store.get_iteration(session.id, 2)
        assert archived.prompt == "C"
        assert archived.active is False

    @pytest.mark.unit
    def test_rollback_out_of_range(self, store, metrics):
        """Out-of-range rollback raises and is reported as a failure."""
        session = store.create_session()
        _add(store, session.id, "a")
        with pytest.raises(OutOfRangeError):
            store.rollback(session.id, 5)
        assert metrics.get_operation_metrics("rollback").errors_by_type == {
            "OutOfRangeError": 1
        }

    @pytest.mark.unit
    def test_rollback_missing_session(self, store):
        """Rollback on an unknown session returns None."""
        assert store.rollback("ghost", 0) is None

    @pytest.mark.unit
    def test_list_iterations(self, store):
        """Archived iterations are listed unless excluded."""
        session = store.create_session()
        _add(store, session.id, "a", "b", "c")
        store.rollback(session.id, 0)
        assert len(store.list_iterations(session.id)) == 3
        assert [it.prompt for it in store.list_iterations(session.id, include_archived=False)] == ["a"]
        assert store.list_iterations("ghost") is None

    @pytest.mark.unit
    def test_resolve_reference(self, store):
        """References resolve against the active timeline."""
        session = store.create_session()
        _add(store, session.id, "red fox", "blue whale")
        assert store.resolve_reference(session.id, "latest").index == 1
        assert store.resolve_reference(session.id, "fox").index == 0
        assert store.resolve_reference("ghost", "fox") is None
        with pytest.raises(NoMatchError):
            store.resolve_reference(session.id, "zzz-no-match")

    @pytest.mark.unit
    def test_resolve_archived_prompt(self, store):
        """Prompts orphaned by a rollback can still be found by text."""
        session = store.create_session()
        _add(store, session.id, "red fox", "blue bird")
        store.rollback(session.id, 0)
        assert store.get_iteration(session.id, 1).prompt == "blue bird"

        resolved = store.resolve_reference(session.id, "blue")
        assert resolved.index == 1
        assert resolved.archived is True
        assert resolved.iteration.prompt == "blue bird"

    @pytest.mark.unit
    def test_images_moved_to_storage(self, store):
        """Transient images are replaced with a storage reference on save."""
        session = store.create_session()
        payload = _png(b"first image")
        iteration = store.add_iteration_to_session(session.id, "a", _result("a", payload))
        assert iteration.result.image_base64 is None
        assert iteration.result.image_path is not None
        assert store.load_iteration_image(session.id, 0) == payload
        assert store.load_iteration_image(session.id, 5) is None

    @pytest.mark.unit
    def test_invalid_image_payload(self, store):
        """Non-base64 payloads are rejected before anything is written."""
        session = store.create_session()
        with pytest.raises(ValueError, match="invalid base64"):
            store.add_iteration_to_session(session.id, "a", _result("a", "not base64!!"))
        assert session.iterations == []
        assert store.get_active_history(session.id).size() == 0

    @pytest.mark.unit
    def test_timeline_survives_reload(self, store, temp_dir, backend):
        """Reloading restores the timeline, branch and images."""
        session = store.create_session()
        _add(store, session.id, "A", "B", "C")
        store.rollback(session.id, 0)
        store.add_iteration_to_session(session.id, "D", _result("D", _png(b"d")))

        reopened = _reopen(store, temp_dir, backend)
        try:
            history = reopened.get_active_history(session.id)
            assert [it.prompt for it in history.get_active_iterations()] == ["A", "D"]
            assert history.current.prompt == "D"
            assert history.branch == 1
            assert reopened.get_iteration(session.id, 2).prompt == "C"
            assert reopened.load_iteration_image(session.id, 1) == _png(b"d")
            assert reopened.undo(session.id).prompt == "A"
        finally:
            reopened.close()

    @pytest.mark.unit
    def test_pending_branch_survives_reload(self, store, temp_dir, backend):
        """A rollback persisted before the next add still opens a branch."""
        session = store.create_session()
        _add(store, session.id, "A", "B")
        store.rollback(session.id, 0)

        reopened = _reopen(store, temp_dir, backend)
        try:
            (c,) = _add(reopened, session.id, "C")
            assert c.index == 1
            assert c.branch == 1
        finally:
            reopened.close()


# =============================================================================
# Asset Variant Tests
# =============================================================================


class TestAssetVariants:
    """Tests for variant selection, refinement and cache."""

    @pytest.fixture
    def variants(self):
        return [Variant.create(seed=seed, prompt="bird icon", image_base64=_png()) for seed in (1, 2)]

    @pytest.mark.unit
    def test_start_and_select(self, store, variants):
        """Selecting a known variant persists the choice."""
        session = store.create_session()
        asset = store.start_asset_session(session.id, "icon", variants)
        assert asset.asset_type == AssetType.ICON
        assert store.select_variant(session.id, variants[1].id) == variants[1]
        stored = store.storage.read_session(session.id)
        assert stored["current_asset"]["selected_variant_id"] == variants[1].id

    @pytest.mark.unit
    def test_select_unknown_variant(self, store, variants):
        """Unknown variants and missing assets return None."""
        session = store.create_session()
        assert store.select_variant(session.id, "v") is None
        store.start_asset_session(session.id, AssetType.BANNER, variants)
        assert store.select_variant(session.id, "missing") is None

    @pytest.mark.unit
    def test_add_refinement(self, store, variants):
        """Refinement appends, links and selects the refined variant."""
        session = store.create_session()
        store.start_asset_session(session.id, "icon", variants)
        refined = Variant.create(seed=3, prompt="bird icon, flat")
        refinement = store.add_refinement(session.id, variants[0].id, refined, "make it flat")

        asset = session.current_asset
        assert refinement.base_variant_id == variants[0].id
        assert refinement.variant_id == refined.id
        assert asset.selected_variant == refined
        assert len(asset.all_variants) == 3

    @pytest.mark.unit
    def test_refinement_unknown_base(self, store, variants):
        """Refining an unknown base returns None."""
        session = store.create_session()
        store.start_asset_session(session.id, "icon", variants)
        refined = Variant.create(seed=3, prompt="x")
        assert store.add_refinement(session.id, "nope", refined, "x") is None

    @pytest.mark.unit
    def test_variant_cache(self, store, variants):
        """Cache entries are scoped per session."""
        first = store.create_session()
        second = store.create_session()
        key = store.build_variant_cache_key("icon", "Bird  Icon", 512, 512)
        assert key == "icon:bird icon:512x512"

        store.set_variant_cache(first.id, key, variants)
        store.set_variant_cache(second.id, key, variants[:1])
        assert store.get_variant_cache(first.id, key) == variants
        assert store.clear_variant_cache(first.id) == 1
        assert store.get_variant_cache(first.id, key) is None
        assert store.get_variant_cache(second.id, key) == variants[:1]


# =============================================================================
# Wireframe Tests
# =============================================================================


class TestWireframes:
    """Tests for wireframe persistence and history through the store."""

    @pytest.mark.unit
    def test_save_and_load(self, store):
        """Saved wireframes load back and become current."""
        session = store.create_session()
        wireframe = _dashboard(session.id)
        store.save_wireframe(session.id, wireframe)
        assert session.current_wireframe_id == wireframe.id
        assert store.list_wireframes(session.id) == [wireframe.id]
        assert store.load_wireframe(session.id, wireframe.id) == wireframe

    @pytest.mark.unit
    def test_save_foreign_wireframe(self, store):
        """A wireframe of another session is rejected."""
        session = store.create_session()
        with pytest.raises(ValueError):
            store.save_wireframe(session.id, _dashboard("other"))

    @pytest.mark.unit
    def test_update_then_undo(self, store):
        """Undo restores the tree from before the update."""
        session = store.create_session()
        wireframe = _dashboard(session.id)
        store.save_wireframe(session.id, wireframe)

        updated = store.update_component(
            session.id, wireframe.id, "cards", properties={"columns": 4}
        )
        assert find_component(updated, "cards").properties["columns"] == 4

        restored = store.undo_wireframe(session.id, wireframe.id)
        assert find_component(restored, "cards").properties["columns"] == 3
        stored = store.load_wireframe(session.id, wireframe.id)
        assert find_component(stored, "cards").properties["columns"] == 3

        redone = store.redo_wireframe(session.id, wireframe.id)
        assert find_component(redone, "cards").properties["columns"] == 4

    @pytest.mark.unit
    def test_returned_wireframe_isolated(self, store):
        """Mutating an undo result never alters stored snapshots."""
        session = store.create_session()
        wireframe = _dashboard(session.id)
        store.save_wireframe(session.id, wireframe)
        store.update_component(session.id, wireframe.id, "nav", dimensions={"width": 200})

        restored = store.undo_wireframe(session.id, wireframe.id)
        restored.components.clear()

        store.redo_wireframe(session.id, wireframe.id)
        again = store.undo_wireframe(session.id, wireframe.id)
        assert len(again.components) == 2

    @pytest.mark.unit
    def test_update_unknown_component(self, store):
        """Unknown components leave the history untouched."""
        session = store.create_session()
        wireframe = _dashboard(session.id)
        store.save_wireframe(session.id, wireframe)
        assert store.update_component(session.id, wireframe.id, "ghost", properties={}) is None
        assert store.wireframe_history_status(session.id, wireframe.id)["can_undo"] is False

    @pytest.mark.unit
    def test_history_status(self, store):
        """Status reflects the undo stack."""
        session = store.create_session()
        wireframe = _dashboard(session.id)
        assert store.wireframe_history_status(session.id, wireframe.id) is None
        store.save_wireframe(session.id, wireframe)
        store.update_component(session.id, wireframe.id, "card-1", position={"x": 10})
        status = store.wireframe_history_status(session.id, wireframe.id)
        assert status["can_undo"] is True
        assert status["undo_depth"] == 1

    @pytest.mark.unit
    def test_delete_wireframe(self, store):
        """Deleting clears the current pointer and history."""
        session = store.create_session()
        wireframe = _dashboard(session.id)
        store.save_wireframe(session.id, wireframe)
        assert store.delete_wireframe(session.id, wireframe.id) is True
        assert session.current_wireframe_id is None
        assert store.load_wireframe(session.id, wireframe.id) is None
        assert store.wireframe_history_status(session.id, wireframe.id) is None

    @pytest.mark.unit
    def test_undo_without_history(self, store):
        """Undo on an unknown wireframe returns None."""
        session = store.create_session()
        assert store.undo_wireframe(session.id, "nope") is None

    @pytest.mark.unit
    def test_save_rejects_duplicate_ids(self, store):
        """Trees with duplicate component ids are neither stored nor tracked."""
        session = store.create_session()
        wireframe = Wireframe.create(
            session_id=session.id,
            description="broken",
            components=[
                WireframeComponent(id="x", type=ComponentType.CARD),
                WireframeComponent(id="x", type=ComponentType.CARD),
            ],
        )
        with pytest.raises(ValueError, match="Duplicate ID 'x'"):
            store.save_wireframe(session.id, wireframe)
        assert store.list_wireframes(session.id) == []
        assert store.wireframe_history_status(session.id, wireframe.id) is None
        assert session.current_wireframe_id is None

    @pytest.mark.unit
    def test_change_rejects_duplicate_ids(self, store):
        """A change introducing a duplicate id leaves the history untouched."""
        session = store.create_session()
        wireframe = _dashboard(session.id)
        store.save_wireframe(session.id, wireframe)

        broken = wireframe.snapshot()
        broken.components[1].children.append(
            WireframeComponent(id="nav", type=ComponentType.CARD)
        )
        with pytest.raises(ValueError, match="Duplicate ID 'nav'"):
            store.record_wireframe_change(session.id, broken)
        assert store.wireframe_history_status(session.id, wireframe.id)["can_undo"] is False
        assert store.load_wireframe(session.id, wireframe.id) == wireframe

    @pytest.mark.unit
    def test_update_rejects_unknown_position_keys(self, store):
        """Position updates are validated."""
        session = store.create_session()
        wireframe = _dashboard(session.id)
        store.save_wireframe(session.id, wireframe)
        with pytest.raises(ValidationError):
            store.update_component(session.id, wireframe.id, "nav", position={"z": 1})
        assert store.wireframe_history_status(session.id, wireframe.id)["can_undo"] is False

    @pytest.mark.unit
    def test_failed_write_keeps_history(self, store, monkeypatch):
        """A change whose write fails is not pushed onto the history."""
        session = store.create_session()
        wireframe = _dashboard(session.id)
        store.save_wireframe(session.id, wireframe)

        def fail(*args, **kwargs):
            raise StorageError("disk full")

        monkeypatch.setattr(store.storage, "write_wireframe", fail)
        with pytest.raises(StorageError):
            store.update_component(session.id, wireframe.id, "cards", properties={"columns": 5})
        monkeypatch.undo()
        assert store.wireframe_history_status(session.id, wireframe.id)["can_undo"] is False


class TestComponentVersions:
    """Tests for per-component version history."""

    @pytest.mark.unit
    def test_update_records_version(self, store):
        """Updating a component records an updated version of it."""
        session = store.create_session()
        wireframe = _dashboard(session.id)
        store.save_wireframe(session.id, wireframe)
        store.update_component(session.id, wireframe.id, "cards", properties={"columns": 4})

        versions = store.list_component_versions(session.id, wireframe.id, "cards")
        assert len(versions) == 1
        assert versions[0]["change_type"] == "updated"
        assert versions[0]["change_description"] == "Updated properties"

        version = store.get_component_version(
            session.id, wireframe.id, "cards", versions[0]["version_id"]
        )
        assert version.component_state.properties["columns"] == 4
        assert version.previous_version_id is None

    @pytest.mark.unit
    def test_versions_chain(self, store):
        """Each version points at the one before it."""
        session = store.create_session()
        component = WireframeComponent(id="nav", type=ComponentType.SIDEBAR)
        first = store.record_component_version(session.id, "w1", component, "created")
        second = store.record_component_version(session.id, "w1", component, "updated")
        assert second.previous_version_id == first.version_id

        history = store.get_component_history(session.id, "w1", "nav")
        assert history.current_version_id == second.version_id
        assert [v.version_id for v in history.versions] == [first.version_id, second.version_id]

    @pytest.mark.unit
    def test_missing(self, store):
        """Unknown sessions, components and versions read as empty."""
        session = store.create_session()
        component = WireframeComponent(id="nav", type=ComponentType.SIDEBAR)
        assert store.record_component_version("ghost", "w1", component) is None
        assert store.get_component_history(session.id, "w1", "nav") is None
        assert store.list_component_versions(session.id, "w1", "nav") == []
        assert store.get_component_version(session.id, "w1", "nav", "v-1") is None
        assert store.restore_component_version(session.id, "w1", "nav", "v-1") is None

    @pytest.mark.unit
    def test_restore_applies_state(self, store):
        """Restoring puts the old state back in the wireframe and records it."""
        session = store.create_session()
        wireframe = _dashboard(session.id)
        store.save_wireframe(session.id, wireframe)
        store.update_component(session.id, wireframe.id, "cards", properties={"columns": 4})
        first_id = store.list_component_versions(session.id, wireframe.id, "cards")[0]["version_id"]
        store.update_component(session.id, wireframe.id, "cards", properties={"columns": 6})

        restored = store.restore_component_version(session.id, wireframe.id, "cards", first_id)
        assert restored.change_type == "restored"
        assert restored.previous_version_id == first_id
        assert restored.change_description == f"Restored from version {first_id}"

        current = store.load_wireframe(session.id, wireframe.id)
        assert find_component(current, "cards").properties["columns"] == 4
        assert len(store.list_component_versions(session.id, wireframe.id, "cards")) == 3

        undone = store.undo_wireframe(session.id, wireframe.id)
        assert find_component(undone, "cards").properties["columns"] == 6

    @pytest.mark.unit
    def test_versions_survive_reload(self, store, temp_dir, backend):
        """Version histories are persisted by both backends."""
        session = store.create_session()
        component = WireframeComponent(id="nav", type=ComponentType.SIDEBAR)
        version = store.record_component_version(session.id, "w1", component, "created")

        reopened = _reopen(store, temp_dir, backend)
        try:
            loaded = reopened.get_component_version(session.id, "w1", "nav", version.version_id)
            assert loaded == version
        finally:
            reopened.close()

    @pytest.mark.unit
    def test_delete_session_drops_versions(self, store):
        """Deleting a session removes its version histories."""
        session = store.create_session()
        component = WireframeComponent(id="nav", type=ComponentType.SIDEBAR)
        store.record_component_version(session.id, "w1", component)
        store.delete_session(session.id)
        assert store.storage.read_component_versions(session.id, "w1", "nav") is None


# =============================================================================
# Failure Semantics Tests
# =============================================================================


class ExplodingSink:
    """Metrics sink that fails on every call."""

    def record_operation(self, *args, **kwargs):
        raise RuntimeError("sink down")

    def record_session_created(self, session_id):
        raise RuntimeError("sink down")

    def record_session_closed(self, session_id):
        raise RuntimeError("sink down")


class TestFailures:
    """Tests for storage and sink failures."""

    @pytest.mark.unit
    def test_failing_sink_is_swallowed(self, temp_dir, caplog):
        """A failing sink never breaks store operations."""
        store = SessionStore(storage_dir=temp_dir, backend="file", metrics=ExplodingSink())
        session = store.create_session()
        _add(store, session.id, "a", "b")
        assert store.undo(session.id).prompt == "a"
        assert store.delete_session(session.id) is True
        assert "Metrics sink failed" in caplog.text

    @pytest.mark.unit
    def test_storage_error_propagates(self, store, metrics, monkeypatch):
        """Write failures surface as StorageError and keep updated_at."""
        session = store.create_session()
        before = session.updated_at

        def fail(*args, **kwargs):
            raise StorageError("disk full", key=session.id)

        monkeypatch.setattr(store.storage, "write_session", fail)
        with pytest.raises(StorageError, match="disk full"):
            store.save_session(session)
        assert session.updated_at == before
        assert metrics.get_operation_metrics("save_session").errors_by_type == {
            "StorageError": 1
        }

    @pytest.mark.unit
    def test_failed_add_is_discarded(self, store, monkeypatch, caplog):
        """An iteration whose save fails never joins the timeline."""
        session = store.create_session()

        def fail(*args, **kwargs):
            raise StorageError("disk full", key=session.id)

        monkeypatch.setattr(store.storage, "write_session", fail)
        with pytest.raises(StorageError):
            store.add_iteration_to_session(session.id, "lost", _result("lost"))
        monkeypatch.undo()

        assert session.iterations == []
        assert session.metadata.total_iterations == 0
        assert "changes discarded after StorageError" in caplog.text

        (second,) = _add(store, session.id, "second")
        assert second.index == 0
        assert [it.prompt for it in session.iterations] == ["second"]
        assert store.get_active_history(session.id).past == []
        assert [it["prompt"] for it in store.storage.read_session(session.id)["iterations"]] == [
            "second"
        ]

    @pytest.mark.unit
    def test_failed_rollback_is_discarded(self, store, monkeypatch):
        """A rollback whose save fails leaves the timeline as it was."""
        session = store.create_session()
        _add(store, session.id, "a", "b")

        def fail(*args, **kwargs):
            raise StorageError("disk full", key=session.id)

        monkeypatch.setattr(store.storage, "write_session", fail)
        with pytest.raises(StorageError):
            store.rollback(session.id, 0)
        monkeypatch.undo()

        history = store.get_active_history(session.id)
        assert [it.prompt for it in history.get_active_iterations()] == ["a", "b"]
        assert history.current.prompt == "b"
        assert all(it.active and not it.rolled_back_to for it in session.iterations)
        (c,) = _add(store, session.id, "c")
        assert (c.branch, c.index) == (0, 2)

    @pytest.mark.unit
    def test_failed_undo_is_discarded(self, store, monkeypatch):
        """An undo whose save fails keeps the present."""
        session = store.create_session()
        _add(store, session.id, "a", "b")

        def fail(*args, **kwargs):
            raise StorageError("disk full", key=session.id)

        monkeypatch.setattr(store.storage, "write_session", fail)
        with pytest.raises(StorageError):
            store.undo(session.id)
        monkeypatch.undo()
        assert store.get_active_history(session.id).current.prompt == "b"
        assert store.redo(session.id) is None

    @pytest.mark.unit
    def test_failed_refinement_is_discarded(self, store, monkeypatch):
        """A refinement whose save fails is not kept."""
        session = store.create_session()
        base = Variant.create(seed=1, prompt="icon")
        store.start_asset_session(session.id, "icon", [base])

        def fail(*args, **kwargs):
            raise StorageError("disk full", key=session.id)

        monkeypatch.setattr(store.storage, "write_session", fail)
        with pytest.raises(StorageError):
            store.add_refinement(session.id, base.id, Variant.create(seed=2, prompt="flat"), "flat")
        monkeypatch.undo()

        asset = session.current_asset
        assert asset.all_variants == [base]
        assert asset.refinements == []
        assert asset.selected_variant_id is None

    @pytest.mark.unit
    def test_os_error_wrapped(self, temp_dir, monkeypatch):
        """File backend wraps OSError with the cause chained."""
        storage = FileStorage(temp_dir)
        storage.initialize()

        def fail(path, payload):
            raise PermissionError("read-only")

        monkeypatch.setattr("src.session.storage.file._write_atomic", fail)
        with pytest.raises(StorageError) as exc_info:
            storage.write_session("s1", {"id": "s1"})
        assert isinstance(exc_info.value.__cause__, PermissionError)

    @pytest.mark.unit
    def test_backend_from_environment(self, temp_dir, monkeypatch):
        """ASSET_STORAGE_BACKEND selects the backend."""
        monkeypatch.setenv("ASSET_STORAGE_BACKEND", "sqlite")
        monkeypatch.setenv("ASSET_STORAGE_DIR", str(temp_dir))
        store = SessionStore()
        try:
            assert isinstance(store.storage, SQLiteStorage)
            assert (temp_dir / "sessions.db").exists()
        finally:
            store.close()
