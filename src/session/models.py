"""Data models for sessions and asset variants.

A Session is the root aggregate: it owns the append-only iteration record,
the current asset exploration (variants and refinements) and a pointer to
the wireframe being edited.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from src.history import Iteration, as_mapping, parse_timestamp, utc_now


def _as_list(data: dict[str, Any], name: str) -> list[Any]:
    value = data.get(name) or []
    if not isinstance(value, list):
        raise ValueError(f"{name} must be a list, got {type(value).__name__}")
    return value


class AssetType(str, Enum):
    """Kinds of asset a session can explore."""

    ICON = "icon"
    BANNER = "banner"
    MOCKUP = "mockup"


# =============================================================================
# Variants
# =============================================================================


@dataclass(frozen=True)
class VariantMetadata:
    """Generation parameters of a variant."""

    width: int = 0
    height: int = 0
    steps: int = 0
    latency_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "steps": self.steps,
            "latency_ms": self.latency_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VariantMetadata":
        data = as_mapping(data, "variant metadata")
        return cls(
            width=int(data.get("width", 0)),
            height=int(data.get("height", 0)),
            steps=int(data.get("steps", 0)),
            latency_ms=int(data.get("latency_ms", 0)),
        )


@dataclass(frozen=True)
class Variant:
    """One generated candidate of an asset. Immutable once created.

    Attributes:
        id: Variant identifier.
        seed: Seed the engine used.
        prompt: Prompt the variant was generated from.
        image_base64: PNG payload.
        metadata: Generation parameters.
    """

    id: str
    seed: int
    prompt: str
    image_base64: str = ""
    metadata: VariantMetadata = field(default_factory=VariantMetadata)

    @classmethod
    def create(
        cls,
        seed: int,
        prompt: str,
        image_base64: str = "",
        metadata: VariantMetadata | None = None,
    ) -> "Variant":
        """Factory method to create a new variant with generated ID."""
        return cls(
            id=str(uuid4()),
            seed=seed,
            prompt=prompt,
            image_base64=image_base64,
            metadata=metadata or VariantMetadata(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "seed": self.seed,
            "prompt": self.prompt,
            "image_base64": self.image_base64,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Variant":
        data = as_mapping(data, "variant")
        return cls(
            id=str(data["id"]),
            seed=int(data.get("seed", 0)),
            prompt=str(data.get("prompt", "")),
            image_base64=str(data.get("image_base64", "")),
            metadata=VariantMetadata.from_dict(data.get("metadata")),
        )


@dataclass
class Refinement:
    """Link from a base variant to the variant refined from it."""

    variant_id: str
    base_variant_id: str
    refinement_prompt: str
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "variant_id": self.variant_id,
            "base_variant_id": self.base_variant_id,
            "refinement_prompt": self.refinement_prompt,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Refinement":
        data = as_mapping(data, "refinement")
        return cls(
            variant_id=str(data["variant_id"]),
            base_variant_id=str(data["base_variant_id"]),
            refinement_prompt=str(data.get("refinement_prompt", "")),
            timestamp=parse_timestamp(data.get("timestamp")),
        )


@dataclass
class AssetSession:
    """Variant exploration of one asset.

    ``all_variants`` and ``refinements`` are append-only. A refinement
    references its base by id only.
    """

    asset_type: AssetType
    all_variants: list[Variant] = field(default_factory=list)
    selected_variant_id: str | None = None
    refinements: list[Refinement] = field(default_factory=list)

    def get_variant(self, variant_id: str) -> Variant | None:
        for variant in self.all_variants:
            if variant.id == variant_id:
                return variant
        return None

    @property
    def selected_variant(self) -> Variant | None:
        if self.selected_variant_id is None:
            return None
        return self.get_variant(self.selected_variant_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset_type": self.asset_type.value,
            "all_variants": [v.to_dict() for v in self.all_variants],
            "selected_variant_id": self.selected_variant_id,
            "refinements": [r.to_dict() for r in self.refinements],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AssetSession":
        data = as_mapping(data, "asset session")
        return cls(
            asset_type=AssetType(data["asset_type"]),
            all_variants=[Variant.from_dict(v) for v in _as_list(data, "all_variants")],
            selected_variant_id=data.get("selected_variant_id"),
            refinements=[Refinement.from_dict(r) for r in _as_list(data, "refinements")],
        )


# =============================================================================
# Session
# =============================================================================


@dataclass
class SessionMetadata:
    """Summary counters of a session."""

    total_iterations: int = 0
    last_prompt: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_iterations": self.total_iterations,
            "last_prompt": self.last_prompt,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionMetadata":
        data = as_mapping(data, "session metadata")
        return cls(
            total_iterations=int(data.get("total_iterations", 0)),
            last_prompt=data.get("last_prompt"),
        )


@dataclass
class Session:
    """A user's project container.

    Attributes:
        id: Session identifier (uuid4).
        created_at: Creation time (UTC).
        updated_at: Last save time (UTC).
        iterations: Append-only iteration record, archived entries included.
        metadata: Summary counters.
        current_asset: Variant exploration in progress, if any.
        current_wireframe_id: Wireframe being edited, if any.
    """

    id: str
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    iterations: list[Iteration] = field(default_factory=list)
    metadata: SessionMetadata = field(default_factory=SessionMetadata)
    current_asset: AssetSession | None = None
    current_wireframe_id: str | None = None

    @classmethod
    def create(cls) -> "Session":
        """Factory method to create a new empty session with generated ID."""
        now = utc_now()
        return cls(id=str(uuid4()), created_at=now, updated_at=now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "iterations": [it.to_dict() for it in self.iterations],
            "metadata": self.metadata.to_dict(),
            "current_asset": self.current_asset.to_dict() if self.current_asset else None,
            "current_wireframe_id": self.current_wireframe_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        """Build a Session from its persisted form.

        Raises:
            KeyError: If a required field is missing.
            ValueError: If a field is malformed.
        """
        data = as_mapping(data, "session")
        session_id = data["id"]
        if not isinstance(session_id, str) or not session_id:
            raise ValueError(f"Invalid session id: {session_id!r}")
        iterations = data["iterations"]
        if not isinstance(iterations, list):
            raise ValueError("Session iterations must be a list")

        asset = data.get("current_asset")
        return cls(
            id=session_id,
            created_at=parse_timestamp(data["created_at"]),
            updated_at=parse_timestamp(data.get("updated_at")),
            iterations=[Iteration.from_dict(it) for it in iterations],
            metadata=SessionMetadata.from_dict(data.get("metadata")),
            current_asset=AssetSession.from_dict(asset) if asset else None,
            current_wireframe_id=data.get("current_wireframe_id"),
        )


__all__ = [
    "AssetType",
    "VariantMetadata",
    "Variant",
    "Refinement",
    "AssetSession",
    "SessionMetadata",
    "Session",
]
