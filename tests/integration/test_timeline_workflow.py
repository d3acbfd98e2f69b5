"""Integration tests for the timeline workflow.

Tests the full user journey through a SessionStore:
1. Generate A, B, C -> three iterations
2. Undo, redo -> present moves back and forth
3. Roll back to A and generate D -> D lands at index 1 on a new branch
4. Reload from storage -> timeline, archive and images survive
5. Edit a wireframe, undo -> pre-edit tree restored
"""

import base64
import tempfile
from pathlib import Path

import pytest

from src.core.errors import AmbiguousReferenceError
from src.history import GenerationMetadata, IterationResult
from src.metrics import MetricsCollector
from src.session import SessionStore, Variant
from src.wireframe import ComponentType, Wireframe, WireframeComponent, find_component


@pytest.fixture
def storage_dir():
    """Create a temporary storage root."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(params=["file", "sqlite"])
def backend(request):
    """Storage backend name."""
    return request.param


@pytest.fixture
def metrics():
    """Create a metrics collector."""
    return MetricsCollector()


@pytest.fixture
def store(storage_dir, backend, metrics):
    """Create a SessionStore for the workflow."""
    s = SessionStore(storage_dir=storage_dir, backend=backend, metrics=metrics)
    yield s
    s.close()


def _generate(store: SessionStore, session_id: str, prompt: str):
    image = base64.b64encode(f"png:{prompt}".encode()).decode("ascii")
    result = IterationResult(
        metadata=GenerationMetadata(
            prompt=prompt,
            width=512,
            height=512,
            steps=4,
            seed=42,
            latency_ms=900,
            engine_name="mlx",
            model_name="sdxl-turbo",
        ),
        image_base64=image,
    )
    return store.add_iteration_to_session(session_id, prompt, result)


@pytest.mark.integration
class TestIterationWorkflow:
    """End-to-end iteration timeline scenario."""

    def test_generate_undo_redo_rollback(self, store, storage_dir, backend, metrics):
        """A, B, C, undo, redo, rollback(0), D gives D at index 1."""
        session = store.create_session()
        for prompt in ("A", "B", "C"):
            _generate(store, session.id, prompt)

        assert store.undo(session.id).prompt == "B"
        assert store.redo(session.id).prompt == "C"

        store.rollback(session.id, 0)
        d = _generate(store, session.id, "D")
        assert d.index == 1

        history = store.get_active_history(session.id)
        assert [it.prompt for it in history.get_active_iterations()] == ["A", "D"]
        assert history.future == []
        assert store.get_iteration(session.id, 2).prompt == "C"
        assert store.resolve_reference(session.id, "latest").iteration.prompt == "D"

        store.close()
        reopened = SessionStore(storage_dir=storage_dir, backend=backend)
        try:
            reloaded = reopened.get_active_history(session.id)
            assert reloaded.current.prompt == "D"
            assert reopened.get_iteration(session.id, 1).prompt == "D"
            assert reopened.get_iteration(session.id, 2).prompt == "C"
            assert base64.b64decode(reopened.load_iteration_image(session.id, 2)) == b"png:C"
            assert base64.b64decode(reopened.load_iteration_image(session.id, 1)) == b"png:D"
        finally:
            reopened.close()

        assert metrics.get_operation_metrics("add_iteration").total == 4
        assert metrics.get_operation_metrics("rollback").success_rate == 1.0

    def test_undo_depth_bounded(self, store):
        """Past never exceeds the depth limit."""
        session = store.create_session()
        for i in range(60):
            store.add_iteration_to_session(session.id, f"step {i}", IterationResult())
        history = store.get_active_history(session.id)
        assert len(history.past) == 50

        undone = 0
        while store.undo(session.id) is not None:
            undone += 1
        assert undone == 50
        assert history.current.index == 9

    def test_ambiguous_reference(self, store):
        """Overlapping prompts require a more specific reference."""
        session = store.create_session()
        _generate(store, session.id, "sunset over the sea")
        _generate(store, session.id, "sunset over the mountains")
        with pytest.raises(AmbiguousReferenceError) as exc_info:
            store.resolve_reference(session.id, "sunset")
        assert [index for index, _ in exc_info.value.candidates] == [0, 1]
        assert store.resolve_reference(session.id, "mountains").index == 1


@pytest.mark.integration
class TestAssetWorkflow:
    """Variant generation, selection and refinement scenario."""

    def test_variants_select_refine(self, store, storage_dir, backend):
        """Refined variants are selected and survive a reload."""
        session = store.create_session()
        key = store.build_variant_cache_key("icon", "A bird", 512, 512)
        assert store.get_variant_cache(session.id, key) is None

        variants = [Variant.create(seed=s, prompt="a bird") for s in (1, 2, 3)]
        store.set_variant_cache(session.id, key, variants)
        store.start_asset_session(session.id, "icon", variants)
        store.select_variant(session.id, variants[2].id)

        refined = Variant.create(seed=4, prompt="a bird, minimal")
        store.add_refinement(session.id, variants[2].id, refined, "more minimal")
        assert store.get_variant_cache(session.id, "icon:a bird:512x512") == variants

        store.close()
        reopened = SessionStore(storage_dir=storage_dir, backend=backend)
        try:
            asset = reopened.load_session(session.id).current_asset
            assert asset.selected_variant_id == refined.id
            assert asset.refinements[0].base_variant_id == variants[2].id
            assert reopened.get_variant_cache(session.id, key) is None
        finally:
            reopened.close()


@pytest.mark.integration
class TestWireframeWorkflow:
    """Wireframe edit and undo scenario."""

    def test_edit_undo_independent_of_iterations(self, store):
        """Wireframe undo restores the tree and leaves iterations alone."""
        session = store.create_session()
        _generate(store, session.id, "hero banner")
        _generate(store, session.id, "hero banner, darker")

        wireframe = Wireframe.create(
            session_id=session.id,
            description="landing page",
            components=[
                WireframeComponent(id="header", type=ComponentType.HEADER),
                WireframeComponent(
                    id="grid",
                    type=ComponentType.GRID,
                    properties={"columns": 2},
                ),
            ],
        )
        store.save_wireframe(session.id, wireframe)
        store.update_component(session.id, wireframe.id, "grid", properties={"columns": 4})

        restored = store.undo_wireframe(session.id, wireframe.id)
        assert find_component(restored, "grid").properties["columns"] == 2
        restored.components.clear()

        assert store.get_active_history(session.id).current.prompt == "hero banner, darker"
        stored = store.load_wireframe(session.id, wireframe.id)
        assert len(stored.components) == 2
        assert store.wireframe_history_status(session.id, wireframe.id)["can_redo"] is True

    def test_delete_session_clears_everything(self, store):
        """Deleting a session drops wireframe histories and storage."""
        session = store.create_session()
        wireframe = Wireframe.create(session_id=session.id, description="empty")
        store.save_wireframe(session.id, wireframe)
        assert store.delete_session(session.id) is True
        assert store.wireframe_history_status(session.id, wireframe.id) is None
        assert store.list_wireframes(session.id) == []
        assert session.id not in [s.id for s in store.list_sessions()]
