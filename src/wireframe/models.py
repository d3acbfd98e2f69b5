"""Wireframe component tree models.

A Wireframe is an ordered forest of WireframeComponent nodes. Components
nest through ``children``; trees are acyclic by construction because every
node is a fresh value owned by its parent.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class ComponentType(str, Enum):
    """Layout box kinds a wireframe can contain."""

    SIDEBAR = "sidebar"
    HEADER = "header"
    FOOTER = "footer"
    GRID = "grid"
    CARD = "card"
    CONTAINER = "container"
    CONTENT = "content"


class Position(BaseModel):
    """Top-left corner of a component in wireframe pixels."""

    x: float = 0
    y: float = 0

    model_config = {
        "extra": "forbid",
    }


class Dimensions(BaseModel):
    """Component size in wireframe pixels."""

    width: float = Field(default=0, ge=0)
    height: float = Field(default=0, ge=0)

    model_config = {
        "extra": "forbid",
    }


class WireframeComponent(BaseModel):
    """Recursive node of a wireframe layout.

    Attributes:
        id: Identifier, unique within the wireframe.
        type: Component kind.
        position: Optional absolute position.
        dimensions: Optional size.
        properties: Open map (columns, spacing, slots, ...).
        children: Nested components.
    """

    id: str = Field(..., description="Unique identifier within the wireframe")
    type: ComponentType = Field(..., description="Component kind")
    position: Position | None = Field(default=None, description="Absolute position")
    dimensions: Dimensions | None = Field(default=None, description="Component size")
    properties: dict[str, Any] = Field(
        default_factory=dict,
        description="Open property map (columns, spacing, slots, ...)",
    )
    children: list["WireframeComponent"] = Field(
        default_factory=list,
        description="Nested child components",
    )

    model_config = {
        "use_enum_values": True,
    }


class WireframeMetadata(BaseModel):
    """Canvas size and timestamps of a wireframe."""

    width: int = Field(default=1440, ge=1)
    height: int = Field(default=900, ge=1)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Wireframe(BaseModel):
    """A layout belonging to a session.

    Attributes:
        id: Wireframe identifier.
        session_id: Owning session.
        description: Natural language description it was generated from.
        components: Top-level components, in order.
        metadata: Canvas size and timestamps.
    """

    id: str
    session_id: str
    description: str = ""
    components: list[WireframeComponent] = Field(default_factory=list)
    metadata: WireframeMetadata = Field(default_factory=WireframeMetadata)

    @classmethod
    def create(
        cls,
        session_id: str,
        description: str,
        components: list[WireframeComponent] | None = None,
        width: int = 1440,
        height: int = 900,
    ) -> "Wireframe":
        """Factory method to create a new wireframe with generated ID."""
        return cls(
            id=str(uuid4()),
            session_id=session_id,
            description=description,
            components=components or [],
            metadata=WireframeMetadata(width=width, height=height),
        )

    def snapshot(self) -> "Wireframe":
        """Deep structural copy; shares no mutable state with self."""
        return self.model_copy(deep=True)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.metadata.updated_at = datetime.now(UTC)


# =============================================================================
# Component Versions
# =============================================================================


class ChangeType(str, Enum):
    """Kind of change a component version records."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    RESTORED = "restored"


class ComponentVersion(BaseModel):
    """Saved state of one component at one point in time.

    Attributes:
        version_id: Version identifier.
        component_id: Component the state belongs to.
        wireframe_id: Wireframe holding the component.
        timestamp: When the version was recorded.
        change_type: What kind of change produced it.
        change_description: Human-readable summary of the change.
        component_state: Deep copy of the component.
        previous_version_id: Version this one follows, or the restored
            version for ``restored`` entries.
    """

    version_id: str
    component_id: str
    wireframe_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    change_type: ChangeType
    change_description: str = ""
    component_state: WireframeComponent
    previous_version_id: str | None = None

    model_config = {
        "use_enum_values": True,
    }

    @classmethod
    def create(
        cls,
        wireframe_id: str,
        component: WireframeComponent,
        change_type: ChangeType,
        change_description: str = "",
        previous_version_id: str | None = None,
    ) -> "ComponentVersion":
        """Factory method to snapshot a component under a generated ID."""
        return cls(
            version_id=f"v-{uuid4().hex[:12]}",
            component_id=component.id,
            wireframe_id=wireframe_id,
            change_type=change_type,
            change_description=change_description,
            component_state=component.model_copy(deep=True),
            previous_version_id=previous_version_id,
        )

    def summary(self) -> dict[str, Any]:
        """Listing view without the component state."""
        return {
            "version_id": self.version_id,
            "timestamp": self.timestamp.isoformat(),
            "change_type": self.change_type,
            "change_description": self.change_description,
        }


class VersionHistory(BaseModel):
    """Every recorded version of one component, oldest first."""

    wireframe_id: str
    component_id: str
    versions: list[ComponentVersion] = Field(default_factory=list)
    current_version_id: str | None = None

    def append(self, version: ComponentVersion) -> None:
        """Add a version and make it current."""
        if version.component_id != self.component_id:
            raise ValueError(
                f"Version of {version.component_id} added to history of {self.component_id}"
            )
        self.versions.append(version)
        self.current_version_id = version.version_id

    def get(self, version_id: str) -> ComponentVersion | None:
        for version in self.versions:
            if version.version_id == version_id:
                return version
        return None


__all__ = [
    "ComponentType",
    "Position",
    "Dimensions",
    "WireframeComponent",
    "WireframeMetadata",
    "Wireframe",
    "ChangeType",
    "ComponentVersion",
    "VersionHistory",
]
