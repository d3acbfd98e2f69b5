"""Data models for the image-generation iteration timeline.

An Iteration is one recorded generation step. Iterations are appended to a
session and never removed; rollback only marks them inactive.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def parse_timestamp(value: str | datetime | None) -> datetime:
    """Parse an ISO-8601 timestamp, assuming UTC when no offset is present.

    Raises:
        ValueError: If value is neither a string nor a datetime, or is not
            ISO-8601.
    """
    if value is None:
        return utc_now()
    if isinstance(value, datetime):
        parsed = value
    elif not isinstance(value, str):
        raise ValueError(f"Invalid timestamp: {value!r}")
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def as_mapping(value: Any, name: str) -> dict[str, Any]:
    """Check that a persisted field holds a JSON object.

    Returns:
        The value itself, or an empty dict for None.

    Raises:
        ValueError: If the value is not a dict.
    """
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{name} must be an object, got {type(value).__name__}")
    return value


@dataclass
class GenerationMetadata:
    """Metadata reported by the generation engine for one image.

    Attributes:
        prompt: Prompt the engine actually received.
        width: Image width in pixels.
        height: Image height in pixels.
        steps: Number of diffusion steps.
        guidance_scale: Classifier-free guidance scale.
        seed: Random seed, if the engine reported one.
        latency_ms: Generation wall time.
        engine_name: Engine identifier (e.g. "mlx").
        model_name: Model identifier.
        timestamp: When the engine produced the image.
    """

    prompt: str = ""
    width: int = 0
    height: int = 0
    steps: int = 0
    guidance_scale: float = 0.0
    seed: int | None = None
    latency_ms: int = 0
    engine_name: str = ""
    model_name: str = ""
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "prompt": self.prompt,
            "width": self.width,
            "height": self.height,
            "steps": self.steps,
            "guidance_scale": self.guidance_scale,
            "seed": self.seed,
            "latency_ms": self.latency_ms,
            "engine_name": self.engine_name,
            "model_name": self.model_name,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GenerationMetadata":
        data = as_mapping(data, "generation metadata")
        return cls(
            prompt=str(data.get("prompt", "")),
            width=int(data.get("width", 0)),
            height=int(data.get("height", 0)),
            steps=int(data.get("steps", 0)),
            guidance_scale=float(data.get("guidance_scale", 0.0)),
            seed=data.get("seed"),
            latency_ms=int(data.get("latency_ms", 0)),
            engine_name=str(data.get("engine_name", "")),
            model_name=str(data.get("model_name", "")),
            timestamp=parse_timestamp(data.get("timestamp")),
        )


@dataclass
class IterationResult:
    """Engine output attached to an iteration.

    The image travels as base64 until the session is saved; after that only
    ``image_path`` (a reference into storage) is kept on the record.

    Attributes:
        metadata: Engine metadata.
        image_base64: Transient image payload, dropped on save.
        image_path: Storage reference of the persisted image.
    """

    metadata: GenerationMetadata = field(default_factory=GenerationMetadata)
    image_base64: str | None = None
    image_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "metadata": self.metadata.to_dict(),
            "image_path": self.image_path,
        }
        if self.image_base64 is not None:
            data["image_base64"] = self.image_base64
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IterationResult":
        data = as_mapping(data, "iteration result")
        return cls(
            metadata=GenerationMetadata.from_dict(data.get("metadata")),
            image_base64=data.get("image_base64"),
            image_path=data.get("image_path"),
        )


@dataclass
class Iteration:
    """One recorded generation step in a session's image timeline.

    Attributes:
        index: Position in the timeline branch it was created on.
        prompt: User prompt for this step.
        result: Engine result (metadata + image reference).
        timestamp: Creation time.
        rolled_back_to: Set when a rollback made this iteration the tip.
        active: False once a rollback orphaned this iteration.
        branch: Branch number; ``(branch, index)`` is never reused.
    """

    index: int
    prompt: str
    result: IterationResult = field(default_factory=IterationResult)
    timestamp: datetime = field(default_factory=utc_now)
    rolled_back_to: bool = False
    active: bool = True
    branch: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "prompt": self.prompt,
            "timestamp": self.timestamp.isoformat(),
            "result": self.result.to_dict(),
            "rolled_back_to": self.rolled_back_to,
            "active": self.active,
            "branch": self.branch,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Iteration":
        """Build an Iteration from its persisted form.

        Raises:
            KeyError: If ``index`` or ``prompt`` is missing.
            ValueError: If a field has the wrong type.
        """
        data = as_mapping(data, "iteration")
        index = data["index"]
        if not isinstance(index, int) or isinstance(index, bool) or index < 0:
            raise ValueError(f"Invalid iteration index: {index!r}")
        prompt = data["prompt"]
        if not isinstance(prompt, str):
            raise ValueError(f"Invalid iteration prompt: {prompt!r}")
        return cls(
            index=index,
            prompt=prompt,
            result=IterationResult.from_dict(data.get("result")),
            timestamp=parse_timestamp(data.get("timestamp")),
            rolled_back_to=bool(data.get("rolled_back_to", False)),
            active=bool(data.get("active", True)),
            branch=int(data.get("branch", 0)),
        )


__all__ = [
    "GenerationMetadata",
    "IterationResult",
    "Iteration",
    "as_mapping",
    "parse_timestamp",
    "utc_now",
]
