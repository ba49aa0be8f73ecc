"""Tests for the TTL cache and cache key utilities."""

import pytest

from perfwatch.cache import (
    TTLCache,
    canonical_params_key,
    make_cache_key,
    make_content_hash,
)


class TestTTLCache:
    def test_get_set(self, clock):
        cache = TTLCache(maxsize=4, ttl_seconds=10, clock=clock)
        cache.set("a", 1)
        assert cache.get("a") == 1
        assert "a" in cache
        assert len(cache) == 1

    def test_miss_returns_none(self, clock):
        cache = TTLCache(clock=clock)
        assert cache.get("missing") is None
        assert cache.stats["misses"] == 1

    def test_entry_expires_after_ttl(self, clock):
        cache = TTLCache(ttl_seconds=600, clock=clock)
        cache.set("render", "payload")
        clock.advance(599)
        assert cache.get("render") == "payload"
        clock.advance(2)
        assert cache.get("render") is None
        assert "render" not in cache
        assert cache.stats["expirations"] == 1

    def test_lru_eviction(self, clock):
        cache = TTLCache(maxsize=2, ttl_seconds=60, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")  # a is now most recent
        cache.set("c", 3)
        assert cache.get("b") is None
        assert cache.get("a") == 1
        assert cache.stats["evictions"] == 1

    def test_sweep_removes_only_expired(self, clock):
        cache = TTLCache(ttl_seconds=10, clock=clock)
        cache.set("old", 1)
        clock.advance(8)
        cache.set("new", 2)
        clock.advance(3)
        assert cache.sweep() == 1
        assert "old" not in cache
        assert "new" in cache

    def test_invalidate_and_clear_prefix(self, clock):
        cache = TTLCache(clock=clock)
        cache.set("fractal:1", 1)
        cache.set("fractal:2", 2)
        cache.set("snapshot", 3)
        assert cache.invalidate("snapshot") is True
        assert cache.invalidate("snapshot") is False
        assert cache.clear_prefix("fractal:") == 2
        assert len(cache) == 0

    def test_age(self, clock):
        cache = TTLCache(clock=clock)
        cache.set("k", "v")
        clock.advance(4)
        assert cache.age("k") == 4
        assert cache.age("other") is None

    def test_stats_hit_rate(self, clock):
        cache = TTLCache(clock=clock)
        cache.set("k", "v")
        cache.get("k")
        cache.get("k")
        cache.get("nope")
        stats = cache.stats
        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["hit_rate"] == pytest.approx(2 / 3)

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            TTLCache(maxsize=0)
        with pytest.raises(ValueError):
            TTLCache(ttl_seconds=0)


class TestCanonicalParamsKey:
    def test_key_order_does_not_matter(self):
        assert canonical_params_key({"a": 1, "b": 2.5}) == canonical_params_key({"b": 2.5, "a": 1})

    def test_float_noise_is_quantized(self):
        a = canonical_params_key({"zoom": 0.1 + 0.2})
        b = canonical_params_key({"zoom": 0.3})
        assert a == b

    def test_distinct_values_stay_distinct(self):
        assert canonical_params_key({"cx": -0.5}) != canonical_params_key({"cx": -0.5000001})

    def test_int_and_float_share_a_key(self):
        assert canonical_params_key({"z": 1}) == canonical_params_key({"z": 1.0})
        assert canonical_params_key({"w": 800, "flag": True}) == '{"flag":true,"w":800.0}'

    def test_negative_zero_matches_zero(self):
        assert canonical_params_key({"cy": -0.0}) == canonical_params_key({"cy": 0.0})

    def test_precision_is_configurable(self):
        coarse_a = canonical_params_key({"z": 1.001}, precision=2)
        coarse_b = canonical_params_key({"z": 1.004}, precision=2)
        assert coarse_a == coarse_b

    def test_compact_sorted_json(self):
        assert canonical_params_key({"z": 1.00000000000004, "cx": -0.5}) == '{"cx":-0.5,"z":1.0}'


class TestCacheKeyHelpers:
    def test_make_cache_key_joins_parts(self):
        assert make_cache_key("fractal", "mandelbrot", "abc") == "fractal:mandelbrot:abc"

    def test_make_cache_key_skips_empty_parts(self):
        assert make_cache_key("a", "", "  ", "b") == "a:b"

    def test_make_cache_key_requires_a_part(self):
        with pytest.raises(ValueError):
            make_cache_key("", " ")

    def test_long_key_is_hashed(self):
        key = make_cache_key("fractal", "x" * 500)
        assert len(key) < 250
        assert key.startswith("fractal:hash_")

    def test_content_hash(self):
        assert len(make_content_hash("payload")) == 16
        assert make_content_hash("payload") == make_content_hash("payload")
        with pytest.raises(ValueError):
            make_content_hash("payload", length=4)
