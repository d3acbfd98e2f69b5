"""Tests for the variant cache."""

import pytest

from .lib import VariantCache, build_variant_cache_key, normalize_description


class TestCacheKey:
    """Tests for key construction."""

    @pytest.mark.unit
    def test_key_format(self):
        """Key is type, normalized description and size."""
        assert build_variant_cache_key("banner", "Sale", 1200, 300) == "banner:sale:1200x300"

    @pytest.mark.unit
    def test_description_normalized(self):
        """Case and whitespace differences map to the same key."""
        first = build_variant_cache_key("icon", "  A  Red\tFox ", 64, 64)
        second = build_variant_cache_key("icon", "a red fox", 64, 64)
        assert first == second

    @pytest.mark.unit
    def test_size_distinguishes_keys(self):
        """Different sizes give different keys."""
        assert build_variant_cache_key("icon", "fox", 64, 64) != build_variant_cache_key(
            "icon", "fox", 128, 128
        )

    @pytest.mark.unit
    def test_normalize_description(self):
        """Normalization collapses runs of whitespace."""
        assert normalize_description("\n Hello \n  World ") == "hello world"


class TestVariantCache:
    """Tests for per-session storage."""

    @pytest.mark.unit
    def test_miss_returns_none(self):
        """Unknown key is a miss."""
        assert VariantCache().get("s", "k") is None

    @pytest.mark.unit
    def test_set_then_get(self):
        """Stored variants are returned."""
        cache = VariantCache()
        cache.set("s", "k", ["a", "b"])
        assert cache.get("s", "k") == ["a", "b"]

    @pytest.mark.unit
    def test_set_overwrites(self):
        """Second set replaces the entry."""
        cache = VariantCache()
        cache.set("s", "k", ["a"])
        cache.set("s", "k", ["b"])
        assert cache.get("s", "k") == ["b"]

    @pytest.mark.unit
    def test_entries_are_copied(self):
        """Mutating the caller's list leaves the cache intact."""
        cache = VariantCache()
        variants = ["a"]
        cache.set("s", "k", variants)
        variants.append("b")
        cache.get("s", "k").append("c")
        assert cache.get("s", "k") == ["a"]

    @pytest.mark.unit
    def test_sessions_are_isolated(self):
        """Same key in two sessions holds two entries."""
        cache = VariantCache()
        cache.set("s1", "k", ["a"])
        cache.set("s2", "k", ["b"])
        assert cache.get("s1", "k") == ["a"]
        assert cache.get("s2", "k") == ["b"]

    @pytest.mark.unit
    def test_clear_affects_only_one_session(self):
        """Clearing a session leaves other sessions untouched."""
        cache = VariantCache()
        cache.set("s1", "k1", ["a"])
        cache.set("s1", "k2", ["b"])
        cache.set("s2", "k1", ["c"])
        assert cache.clear("s1") == 2
        assert cache.get("s1", "k1") is None
        assert cache.get("s2", "k1") == ["c"]
        assert len(cache) == 1

    @pytest.mark.unit
    def test_clear_unknown_session(self):
        """Clearing an unknown session removes nothing."""
        assert VariantCache().clear("nobody") == 0
