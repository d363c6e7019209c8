"""Tests for the two-layer category cache."""

import pytest

from giftsearch.backends import InMemorySharedTier
from giftsearch.tiered_cache import (
    BRAND_SEARCH,
    CATEGORY_SEARCH,
    FALLBACK,
    SEARCH_RESULTS,
    TieredCache,
    options_hash,
    ttl_for,
)


class BrokenSharedTier:
    def __init__(self, ping_ok=True):
        self.ping_ok = ping_ok

    def ping(self):
        if not self.ping_ok:
            raise ConnectionError("down")
        return True

    def get(self, key):
        raise ConnectionError("down")

    def set_with_ttl(self, key, value, ttl_seconds):
        raise ConnectionError("down")


@pytest.mark.parametrize(
    "cache_type, category, expected",
    [
        (FALLBACK, "electronics", 4 * 60 * 60),
        (CATEGORY_SEARCH, "electronics", 15 * 60),
        (BRAND_SEARCH, "gifts-for-her", 15 * 60),
        (BRAND_SEARCH, "brand", 45 * 60),
        (SEARCH_RESULTS, "default", 30 * 60),
        (CATEGORY_SEARCH, "luxury", 60 * 60),
    ],
)
def test_ttl_classes(cache_type, category, expected):
    assert ttl_for(cache_type, category) == expected


def test_options_hash_is_order_independent():
    assert options_hash({"limit": 5, "max_price": 50}) == options_hash({"max_price": 50, "limit": 5})
    assert options_hash({}) == options_hash(None) == "none"


def test_local_hit_and_expiry(clock):
    cache = TieredCache(clock=clock)
    cache.set(CATEGORY_SEARCH, "luxury", "", [{"product_id": "a"}])

    assert cache.get(CATEGORY_SEARCH, "luxury").data == [{"product_id": "a"}]
    clock.advance(60 * 60)
    assert cache.get(CATEGORY_SEARCH, "luxury") is None
    assert len(cache) == 0


def test_key_includes_term_and_options(clock):
    cache = TieredCache(clock=clock)
    cache.set(CATEGORY_SEARCH, "luxury", "Watch", ["w"], {"limit": 5})

    assert cache.get(CATEGORY_SEARCH, "luxury", "watch", {"limit": 5}) is not None
    assert cache.get(CATEGORY_SEARCH, "luxury", "watch", {"limit": 6}) is None
    assert cache.get(CATEGORY_SEARCH, "luxury") is None


def test_version_mismatch_invalidates_shared_entries(clock):
    shared = InMemorySharedTier()
    old = TieredCache(shared=shared, version="v0", clock=clock)
    old.set(CATEGORY_SEARCH, "luxury", "", ["x"])
    new = TieredCache(shared=shared, version="v1", clock=clock)

    assert new.get(CATEGORY_SEARCH, "luxury") is None


def test_shared_hit_backfills_local_tier(clock):
    shared = InMemorySharedTier()
    writer = TieredCache(shared=shared, clock=clock)
    reader = TieredCache(shared=shared, clock=clock)
    writer.set(BRAND_SEARCH, "brand", "nike", [{"product_id": "n1"}])

    entry = reader.get(BRAND_SEARCH, "brand", "Nike")

    assert entry.data == [{"product_id": "n1"}]
    assert len(reader) == 1
    assert reader.stats()["shared_enabled"] is True


def test_failing_shared_tier_degrades_to_local(clock):
    unreachable = TieredCache(shared=BrokenSharedTier(ping_ok=False), clock=clock)
    assert unreachable.shared_enabled is False

    flaky = TieredCache(shared=BrokenSharedTier(), clock=clock)
    assert flaky.shared_enabled is True
    flaky.set(CATEGORY_SEARCH, "luxury", "", ["x"])
    assert flaky.get(CATEGORY_SEARCH, "luxury").data == ["x"]
    flaky.clear()
    assert flaky.get(CATEGORY_SEARCH, "luxury") is None


def test_local_tier_evicts_oldest(clock):
    cache = TieredCache(max_local_entries=2, clock=clock)
    cache.set(CATEGORY_SEARCH, "luxury", "", ["a"])
    clock.advance(1)
    cache.set(CATEGORY_SEARCH, "electronics", "", ["b"])
    clock.advance(1)
    cache.set(CATEGORY_SEARCH, "gifts-for-her", "", ["c"])

    assert len(cache) == 2
    assert cache.get(CATEGORY_SEARCH, "luxury") is None


def test_invalidate_pattern(clock):
    cache = TieredCache(clock=clock)
    cache.set(CATEGORY_SEARCH, "luxury", "", ["a"])
    cache.set(BRAND_SEARCH, "brand", "nike", ["b"])
    cache.set(BRAND_SEARCH, "brand", "adidas", ["c"])

    assert cache.invalidate_pattern(":brand-search:") == 2
    assert cache.get(CATEGORY_SEARCH, "luxury") is not None


@pytest.mark.asyncio
async def test_warm_skips_cached_and_survives_failures(clock):
    cache = TieredCache(clock=clock)
    calls = []

    async def search_fn(category, term, options):
        calls.append((category, term))
        if category == "luxury":
            raise RuntimeError("upstream down")
        return [{"product_id": f"{category}-{term}"}]

    warmed = await cache.warm(search_fn, ["electronics", "luxury"], ["candles"])

    assert warmed == 2
    assert cache.get(CATEGORY_SEARCH, "electronics", "", {"limit": 20}) is not None
    assert cache.get(CATEGORY_SEARCH, "default", "candles", {"limit": 20}) is not None

    calls.clear()
    assert await cache.warm(search_fn, ["electronics"], ["candles"]) == 0
    assert calls == []
