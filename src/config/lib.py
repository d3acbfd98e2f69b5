"""Centralized environment configuration management for asset-timeline.

Provides a unified interface for all environment variables with:
- Single `get_environment()` function for all configuration
- Type-safe enum with metadata (default, type, description)
- Consistent resolution: override > environment > default

Example:
    >>> from src.config import EnvVar, get_environment
    >>>
    >>> # Get values with automatic type conversion
    >>> depth = get_environment(EnvVar.ASSET_HISTORY_MAX_DEPTH)  # Returns int
    >>> backend = get_environment(EnvVar.ASSET_STORAGE_BACKEND)  # Returns str
    >>>
    >>> # Override at runtime
    >>> depth = get_environment(EnvVar.ASSET_HISTORY_MAX_DEPTH, override=10)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, overload

# =============================================================================
# Environment Variable Configuration
# =============================================================================

DEFAULT_STORAGE_DIR = Path("data/sessions")
STORAGE_BACKENDS = ("file", "sqlite")


@dataclass(frozen=True)
class EnvConfig:
    """Metadata for an environment variable.

    Attributes:
        name: Environment variable name (e.g., "ASSET_STORAGE_DIR").
        default: Default value if not set in environment.
        var_type: Python type for value conversion (str, int, Path).
        description: Human-readable description.
        category: Grouping category for documentation.
    """

    name: str
    default: Any
    var_type: type
    description: str = ""
    category: str = "general"


class EnvVar(Enum):
    """All environment variables used by asset-timeline.

    Each member contains an EnvConfig with name, default, type, and description.
    Use with `get_environment()` for type-safe access.

    Categories:
        - storage: Session persistence location and backend
        - history: Undo/redo stack limits
        - metrics: In-process metrics collector limits
        - logging: Log output configuration
    """

    # -------------------------------------------------------------------------
    # Storage
    # -------------------------------------------------------------------------
    ASSET_STORAGE_DIR = EnvConfig(
        name="ASSET_STORAGE_DIR",
        default=None,  # Falls back to DEFAULT_STORAGE_DIR
        var_type=Path,
        description="Root directory for persisted sessions",
        category="storage",
    )
    ASSET_STORAGE_BACKEND = EnvConfig(
        name="ASSET_STORAGE_BACKEND",
        default="file",
        var_type=str,
        description="Session storage backend: 'file' (JSON tree) or 'sqlite'",
        category="storage",
    )

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------
    ASSET_HISTORY_MAX_DEPTH = EnvConfig(
        name="ASSET_HISTORY_MAX_DEPTH",
        default=50,
        var_type=int,
        description="Maximum undo depth kept per iteration/wireframe history",
        category="history",
    )

    # -------------------------------------------------------------------------
    # Metrics
    # -------------------------------------------------------------------------
    ASSET_METRICS_MAX_OPERATIONS = EnvConfig(
        name="ASSET_METRICS_MAX_OPERATIONS",
        default=1000,
        var_type=int,
        description="Operation records kept in memory before pruning",
        category="metrics",
    )
    ASSET_METRICS_RETENTION_HOURS = EnvConfig(
        name="ASSET_METRICS_RETENTION_HOURS",
        default=24,
        var_type=int,
        description="Age after which operation records are pruned",
        category="metrics",
    )

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------
    ASSET_LOG_LEVEL = EnvConfig(
        name="ASSET_LOG_LEVEL",
        default="INFO",
        var_type=str,
        description="Log level name used by setup_logging()",
        category="logging",
    )


# =============================================================================
# Type Conversion Helpers
# =============================================================================


def _convert_value(value: str | None, var_type: type, default: Any) -> Any:
    """Convert string value to target type.

    Args:
        value: Raw string value from environment (or None).
        var_type: Target Python type.
        default: Default value if conversion fails or value is None.

    Returns:
        Converted value or default.
    """
    if value is None:
        return default

    if var_type is str:
        return value

    if var_type is int:
        try:
            return int(value)
        except ValueError:
            return default

    if var_type is Path:
        return Path(value)

    # Unknown type, return as-is
    return value


# =============================================================================
# Main Interface
# =============================================================================


@overload
def get_environment(env_var: EnvVar, override: int) -> int: ...
@overload
def get_environment(env_var: EnvVar, override: str) -> str: ...
@overload
def get_environment(env_var: EnvVar, override: Path) -> Path: ...
@overload
def get_environment(env_var: EnvVar, override: None = None) -> Any: ...


def get_environment(env_var: EnvVar, override: Any = None) -> Any:
    """Get environment variable value with type conversion.

    Resolution priority:
        1. Explicit override parameter (highest)
        2. Environment variable value
        3. Default from EnvConfig (lowest)

    Args:
        env_var: Environment variable enum member.
        override: Optional override value (bypasses env lookup).

    Returns:
        Value converted to the appropriate type (str, int, or Path).

    Example:
        >>> get_environment(EnvVar.ASSET_HISTORY_MAX_DEPTH)
        50
        >>> get_environment(EnvVar.ASSET_HISTORY_MAX_DEPTH, override=10)
        10
    """
    config: EnvConfig = env_var.value

    # Override takes highest priority
    if override is not None:
        return override

    raw_value = os.environ.get(config.name)
    return _convert_value(raw_value, config.var_type, config.default)


def get_environment_info(env_var: EnvVar) -> EnvConfig:
    """Get metadata for an environment variable.

    Args:
        env_var: Environment variable enum member.

    Returns:
        EnvConfig with name, default, type, and description.
    """
    return env_var.value


# =============================================================================
# Convenience Functions
# =============================================================================


def get_storage_dir(override: Path | str | None = None) -> Path:
    """Get the session storage root directory.

    Resolution: override > ASSET_STORAGE_DIR > data/sessions
    """
    if override is not None:
        return Path(override)

    env_path = get_environment(EnvVar.ASSET_STORAGE_DIR)
    if env_path:
        return env_path

    return DEFAULT_STORAGE_DIR


def get_storage_backend(override: str | None = None) -> str:
    """Get the configured storage backend name.

    Raises:
        ValueError: If the backend is not one of STORAGE_BACKENDS.
    """
    backend = get_environment(EnvVar.ASSET_STORAGE_BACKEND, override=override)
    backend = backend.lower().strip()
    if backend not in STORAGE_BACKENDS:
        raise ValueError(
            f"Unknown storage backend '{backend}'. "
            f"Expected one of: {', '.join(STORAGE_BACKENDS)}"
        )
    return backend


def get_history_max_depth(override: int | None = None) -> int:
    """Get the undo depth limit, never below 1."""
    return max(1, get_environment(EnvVar.ASSET_HISTORY_MAX_DEPTH, override=override))


def get_log_level(override: str | None = None) -> str:
    """Get the configured log level name."""
    return get_environment(EnvVar.ASSET_LOG_LEVEL, override=override).upper()


def list_environment_variables(category: str | None = None) -> list[EnvVar]:
    """List all environment variables, optionally filtered by category.

    Args:
        category: Filter by category (storage, history, metrics, logging).
                 None returns all variables.

    Returns:
        List of EnvVar enum members.
    """
    if category is None:
        return list(EnvVar)

    return [var for var in EnvVar if var.value.category == category]


__all__ = [
    # Core types
    "EnvConfig",
    "EnvVar",
    "DEFAULT_STORAGE_DIR",
    "STORAGE_BACKENDS",
    # Main interface
    "get_environment",
    "get_environment_info",
    # Convenience functions
    "get_storage_dir",
    "get_storage_backend",
    "get_history_max_depth",
    "get_log_level",
    # Introspection
    "list_environment_variables",
]
