"""Tests for wireframe models, tree operations and history.

Tests cover:
- Component tree traversal and lookup
- Field-wise updates by id and by type
- Duplicate id validation
- Component versions and in-place replacement
- Snapshot isolation of undo/redo values
- Registry keying and session cleanup
"""

import threading

import pytest
from pydantic import ValidationError

from .lib import (
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
    VersionHistory,
    Wireframe,
    WireframeComponent,
)

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def dashboard():
    """Create a dashboard wireframe with a nested grid."""
    return Wireframe.create(
        session_id="session-test",
        description="analytics dashboard",
        components=[
            WireframeComponent(
                id="nav",
                type=ComponentType.SIDEBAR,
                dimensions=Dimensions(width=240, height=900),
            ),
            WireframeComponent(
                id="main",
                type=ComponentType.CONTAINER,
                children=[
                    WireframeComponent(
                        id="cards",
                        type=ComponentType.GRID,
                        properties={"columns": 3},
                        children=[
                            WireframeComponent(id="card-1", type=ComponentType.CARD),
                            WireframeComponent(id="card-2", type=ComponentType.CARD),
                        ],
                    ),
                ],
            ),
        ],
    )


# =============================================================================
# Model Tests
# =============================================================================


class TestModels:
    """Tests for the pydantic component tree."""

    @pytest.mark.unit
    def test_create_generates_id(self):
        """Factory assigns a unique id and canvas size."""
        first = Wireframe.create("s", "a", width=800, height=600)
        second = Wireframe.create("s", "b")
        assert first.id != second.id
        assert first.metadata.width == 800
        assert second.metadata.height == 900

    @pytest.mark.unit
    def test_enum_values_stored_as_strings(self):
        """Component type is stored as its string value."""
        component = WireframeComponent(id="h", type=ComponentType.HEADER)
        assert component.type == "header"
        assert component.model_dump()["type"] == "header"

    @pytest.mark.unit
    def test_negative_dimensions_rejected(self):
        """Dimensions must be non-negative."""
        with pytest.raises(ValueError):
            Dimensions(width=-1, height=10)

    @pytest.mark.unit
    def test_snapshot_is_deep(self, dashboard):
        """Mutating a snapshot never touches the original."""
        copy = dashboard.snapshot()
        copy.components[1].children[0].properties["columns"] = 5
        copy.components.pop()
        assert len(dashboard.components) == 2
        assert dashboard.components[1].children[0].properties["columns"] == 3

    @pytest.mark.unit
    def test_component_version_copies_state(self, dashboard):
        """A version holds a deep copy of the component."""
        cards = find_component(dashboard, "cards")
        version = ComponentVersion.create(dashboard.id, cards, ChangeType.CREATED, "initial")
        cards.children.clear()
        assert len(version.component_state.children) == 2
        assert version.change_type == "created"
        assert version.version_id.startswith("v-")
        assert version.summary()["change_description"] == "initial"
        assert "component_state" not in version.summary()

    @pytest.mark.unit
    def test_version_history_append_and_get(self, dashboard):
        """Appending makes a version current; foreign components are rejected."""
        nav = find_component(dashboard, "nav")
        history = VersionHistory(wireframe_id=dashboard.id, component_id="nav")
        version = ComponentVersion.create(dashboard.id, nav, ChangeType.UPDATED)
        history.append(version)
        assert history.current_version_id == version.version_id
        assert history.get(version.version_id) == version
        assert history.get("v-missing") is None

        cards = find_component(dashboard, "cards")
        with pytest.raises(ValueError):
            history.append(ComponentVersion.create(dashboard.id, cards, ChangeType.UPDATED))

    @pytest.mark.unit
    def test_json_roundtrip(self, dashboard):
        """Wireframe survives JSON serialization."""
        restored = Wireframe.model_validate_json(dashboard.model_dump_json())
        assert restored == dashboard


# =============================================================================
# Tree Operation Tests
# =============================================================================


class TestTreeOperations:
    """Tests for traversal and updates."""

    @pytest.mark.unit
    def test_iter_components_depth_first(self, dashboard):
        """Traversal visits parents before children."""
        ids = [c.id for c in iter_components(dashboard.components)]
        assert ids == ["nav", "main", "cards", "card-1", "card-2"]

    @pytest.mark.unit
    def test_find_nested_component(self, dashboard):
        """Lookup reaches nested components."""
        assert find_component(dashboard, "card-2").type == "card"
        assert find_component(dashboard, "missing") is None

    @pytest.mark.unit
    def test_update_merges_properties(self, dashboard):
        """Property updates merge into existing keys."""
        update_component(dashboard, "cards", properties={"spacing": 16})
        cards = find_component(dashboard, "cards")
        assert cards.properties == {"columns": 3, "spacing": 16}

    @pytest.mark.unit
    def test_update_partial_dimensions(self, dashboard):
        """Dimension updates keep the fields not given."""
        update_component(dashboard, "nav", dimensions={"width": 300})
        nav = find_component(dashboard, "nav")
        assert nav.dimensions.width == 300
        assert nav.dimensions.height == 900

    @pytest.mark.unit
    def test_update_position_from_unset(self, dashboard):
        """Position update on a component without one starts at zero."""
        update_component(dashboard, "main", position={"x": 240})
        main = find_component(dashboard, "main")
        assert main.position.x == 240
        assert main.position.y == 0

    @pytest.mark.unit
    def test_update_unknown_component(self, dashboard):
        """Updating a missing id returns None."""
        assert update_component(dashboard, "ghost", properties={"a": 1}) is None

    @pytest.mark.unit
    def test_update_by_type(self, dashboard):
        """Every component of the type is updated."""
        count = update_components_by_type(
            dashboard, ComponentType.CARD, properties={"elevated": True}
        )
        assert count == 2
        assert find_component(dashboard, "card-1").properties["elevated"] is True
        assert find_component(dashboard, "card-2").properties["elevated"] is True

    @pytest.mark.unit
    def test_update_position_validated(self, dashboard):
        """Unknown or invalid position keys are rejected."""
        with pytest.raises(ValidationError):
            update_component(dashboard, "main", position={"z": 1})
        with pytest.raises(ValidationError):
            update_component(dashboard, "main", position={"x": "left"})
        assert find_component(dashboard, "main").position is None

    @pytest.mark.unit
    def test_replace_nested_component(self, dashboard):
        """Replacement swaps in a copy at the same place in the tree."""
        replacement = WireframeComponent(
            id="card-2", type=ComponentType.CARD, properties={"title": "Revenue"}
        )
        assert replace_component(dashboard, replacement) is True
        replacement.properties["title"] = "changed"

        cards = find_component(dashboard, "cards")
        assert [c.id for c in cards.children] == ["card-1", "card-2"]
        assert cards.children[1].properties == {"title": "Revenue"}
        assert replace_component(
            dashboard, WireframeComponent(id="ghost", type=ComponentType.CARD)
        ) is False

    @pytest.mark.unit
    def test_valid_tree(self, dashboard):
        """Dashboard fixture has no issues."""
        assert validate_component_tree(dashboard) == []

    @pytest.mark.unit
    def test_duplicate_ids_detected(self, dashboard):
        """Duplicate ids anywhere in the forest are reported."""
        dashboard.components.append(WireframeComponent(id="card-1", type="card"))
        issues = validate_component_tree(dashboard)
        assert len(issues) == 1
        assert issues[0].issue_type == "duplicate_id"
        assert issues[0].component_id == "card-1"


# =============================================================================
# History Tests
# =============================================================================


class TestWireframeHistory:
    """Tests for per-wireframe undo/redo."""

    @pytest.mark.unit
    def test_undo_redo(self, dashboard):
        """Undo restores the previous tree, redo re-applies the change."""
        history = WireframeHistory(dashboard.id)
        history.push(dashboard)

        edited = dashboard.snapshot()
        update_component(edited, "cards", properties={"columns": 4})
        history.push(edited)

        previous = history.undo()
        assert find_component(previous, "cards").properties["columns"] == 3
        following = history.redo()
        assert find_component(following, "cards").properties["columns"] == 4

    @pytest.mark.unit
    def test_mutating_returned_value_is_isolated(self, dashboard):
        """Changing a value returned by undo does not alter the history."""
        history = WireframeHistory(dashboard.id)
        history.push(dashboard)
        edited = dashboard.snapshot()
        update_component(edited, "cards", properties={"columns": 4})
        history.push(edited)

        previous = history.undo()
        update_component(previous, "cards", properties={"columns": 99})
        previous.components.clear()

        history.redo()
        again = history.undo()
        assert find_component(again, "cards").properties["columns"] == 3
        assert len(again.components) == 2

    @pytest.mark.unit
    def test_mutating_pushed_value_is_isolated(self, dashboard):
        """Changing a tree after pushing it does not alter the history."""
        history = WireframeHistory(dashboard.id)
        history.push(dashboard)
        dashboard.components.clear()
        assert len(history.present.components) == 2

    @pytest.mark.unit
    def test_push_clears_redo(self, dashboard):
        """Push after undo discards the redo future."""
        history = WireframeHistory(dashboard.id)
        history.push(dashboard)
        history.push(dashboard.snapshot())
        history.undo()
        assert history.can_redo()
        history.push(dashboard.snapshot())
        assert not history.can_redo()

    @pytest.mark.unit
    def test_depth_bound(self, dashboard):
        """Past never exceeds max_depth."""
        history = WireframeHistory(dashboard.id, max_depth=3)
        for _ in range(6):
            history.push(dashboard)
        assert history.status()["undo_depth"] == 3

    @pytest.mark.unit
    def test_push_wrong_wireframe_rejected(self, dashboard):
        """A history only accepts its own wireframe."""
        history = WireframeHistory("other-id")
        with pytest.raises(ValueError, match="pushed onto history"):
            history.push(dashboard)

    @pytest.mark.unit
    def test_status(self, dashboard):
        """Status reports availability and depths."""
        history = WireframeHistory(dashboard.id)
        history.push(dashboard)
        history.push(dashboard)
        status = history.status()
        assert status["can_undo"] is True
        assert status["can_redo"] is False
        assert status["undo_depth"] == 1
        assert status["redo_depth"] == 0


class TestWireframeHistoryRegistry:
    """Tests for the (session, wireframe) keyed registry."""

    @pytest.mark.unit
    def test_initialize_is_idempotent(self, dashboard):
        """Second initialize does not push again."""
        registry = WireframeHistoryRegistry()
        registry.initialize_history("session-test", dashboard)
        registry.initialize_history("session-test", dashboard)
        history = registry.get("session-test", dashboard.id)
        assert history.status()["undo_depth"] == 0

    @pytest.mark.unit
    def test_histories_keyed_by_session(self, dashboard):
        """Same wireframe id in two sessions has two histories."""
        registry = WireframeHistoryRegistry()
        registry.initialize_history("a", dashboard)
        registry.push_history("a", dashboard)
        registry.initialize_history("b", dashboard)
        assert registry.get("a", dashboard.id).can_undo()
        assert not registry.get("b", dashboard.id).can_undo()

    @pytest.mark.unit
    def test_undo_without_history(self):
        """Undo on an unknown wireframe returns None."""
        registry = WireframeHistoryRegistry()
        assert registry.undo("s", "w") is None
        assert registry.redo("s", "w") is None

    @pytest.mark.unit
    def test_clear_session(self, dashboard):
        """Clearing a session drops only its histories."""
        registry = WireframeHistoryRegistry()
        other = Wireframe.create("session-test", "other")
        registry.initialize_history("a", dashboard)
        registry.initialize_history("a", other)
        registry.initialize_history("b", dashboard)
        assert registry.clear_session("a") == 2
        assert len(registry) == 1
        assert registry.get("b", dashboard.id) is not None

    @pytest.mark.unit
    def test_concurrent_sessions(self, dashboard):
        """Pushes from several threads on distinct sessions all land."""
        registry = WireframeHistoryRegistry(max_depth=100)

        def worker(session_id: str):
            for _ in range(20):
                registry.push_history(session_id, dashboard)

        threads = [threading.Thread(target=worker, args=(f"s{i}",)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(registry) == 4
        for i in range(4):
            assert registry.get(f"s{i}", dashboard.id).status()["undo_depth"] == 19
