"""Centralized configuration management for asset-timeline.

Provides unified access to all configuration via the `get_environment()` function.

Example:
    >>> from src.config import EnvVar, get_environment
    >>>
    >>> # Get any environment variable with automatic type conversion
    >>> depth = get_environment(EnvVar.ASSET_HISTORY_MAX_DEPTH)  # Returns int: 50
    >>>
    >>> # Override at runtime
    >>> depth = get_environment(EnvVar.ASSET_HISTORY_MAX_DEPTH, override=10)
    >>>
    >>> # List available variables by category
    >>> for var in list_environment_variables("storage"):
    ...     info = get_environment_info(var)
    ...     print(f"{info.name}: {info.description}")

Environment Variable Categories:
    storage: Session storage directory and backend
    history: Undo/redo depth limit
    metrics: In-memory metrics collector limits
    logging: Log level
"""

from .lib import (
    # Core types
    DEFAULT_STORAGE_DIR,
    STORAGE_BACKENDS,
    EnvConfig,
    EnvVar,
    # Main interface
    get_environment,
    get_environment_info,
    get_history_max_depth,
    get_log_level,
    get_storage_backend,
    get_storage_dir,
    # Introspection
    list_environment_variables,
)

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
