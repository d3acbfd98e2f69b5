"""Per-session cache of generated variants.

Keys are built from the request that produced the variants so that an
identical request inside the same session can reuse them instead of
generating again.
"""

import logging
import re
import threading
from typing import Any

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_description(description: str) -> str:
    """Lower-case, trim and collapse internal whitespace."""
    return _WHITESPACE.sub(" ", description.strip().lower())


def build_variant_cache_key(
    asset_type: str,
    description: str,
    width: int,
    height: int,
) -> str:
    """Build the cache key of a generation request.

    Example:
        >>> build_variant_cache_key("icon", "  Blue   Bird ", 512, 512)
        'icon:blue bird:512x512'
    """
    return f"{asset_type}:{normalize_description(description)}:{width}x{height}"


class VariantCache:
    """Variant lists keyed by session and request key.

    Entries never expire; ``set`` overwrites and ``clear`` drops one
    session's entries. Stored lists are copied in and out so callers
    cannot change a cached entry by mutating the list they hold.
    """

    def __init__(self):
        self._entries: dict[str, dict[str, list[Any]]] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str, key: str) -> list[Any] | None:
        """Get cached variants, or None on a miss."""
        with self._lock:
            variants = self._entries.get(session_id, {}).get(key)
        if variants is None:
            return None
        logger.debug(f"Variant cache hit for session {session_id}: {key}")
        return list(variants)

    def set(self, session_id: str, key: str, variants: list[Any]) -> None:
        """Store variants under a key, replacing any previous entry."""
        with self._lock:
            self._entries.setdefault(session_id, {})[key] = list(variants)

    def clear(self, session_id: str) -> int:
        """Drop every entry of one session.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            removed = self._entries.pop(session_id, {})
        return len(removed)

    def __len__(self) -> int:
        with self._lock:
            return sum(len(entries) for entries in self._entries.values())


__all__ = [
    "normalize_description",
    "build_variant_cache_key",
    "VariantCache",
]
