"""Variant cache for asset-timeline.

Example:
    >>> from src.cache import VariantCache, build_variant_cache_key
    >>> cache = VariantCache()
    >>> key = build_variant_cache_key("icon", "Blue bird", 512, 512)
    >>> cache.set("session-1", key, ["v1", "v2"])
    >>> cache.get("session-1", key)
    ['v1', 'v2']
"""

from .lib import VariantCache, build_variant_cache_key, normalize_description

__all__ = [
    "VariantCache",
    "build_variant_cache_key",
    "normalize_description",
]
