from __future__ import annotations

import pytest

from workspace_rbac.cache.backends import MemoryCacheBackend
from workspace_rbac.cache.key_value_cache import KeyValueCache
from workspace_rbac.errors import CacheUnavailableError

from conftest import FailingBackend


@pytest.mark.asyncio
async def test_round_trips_json_values_including_empty_list() -> None:
    cache = KeyValueCache()
    await cache.set("a", [])
    await cache.set("b", {"x": 1})
    assert await cache.get("a") == []
    assert await cache.get("b") == {"x": 1}
    assert await cache.get("missing") is None


@pytest.mark.asyncio
async def test_failing_primary_falls_back_to_memory() -> None:
    primary = FailingBackend()
    cache = KeyValueCache(primary=primary)
    await cache.set("k", ["a"], ttl=60)
    assert await cache.get("k") == ["a"]
    assert await cache.exists("k")
    assert primary.calls >= 3


@pytest.mark.asyncio
async def test_never_raises_when_every_backend_fails(broken_cache) -> None:
    await broken_cache.set("k", ["a"])
    assert await broken_cache.get("k") is None
    assert await broken_cache.delete("k") is False
    assert await broken_cache.delete_by_pattern("k*") == 0
    assert await broken_cache.exists("k") is False
    assert await broken_cache.health() is False


@pytest.mark.asyncio
async def test_delete_is_mirrored_onto_fallback() -> None:
    primary = MemoryCacheBackend()
    fallback = MemoryCacheBackend()
    cache = KeyValueCache(primary=primary, fallback=fallback)
    # entry left behind in the fallback during an earlier outage
    await fallback.set("k", '["stale"]')
    await primary.set("k", '["fresh"]')
    assert await cache.delete("k") is True
    assert await fallback.get("k") is None
    assert await primary.get("k") is None


@pytest.mark.asyncio
async def test_pattern_delete_is_mirrored_onto_fallback() -> None:
    primary = MemoryCacheBackend()
    fallback = MemoryCacheBackend()
    cache = KeyValueCache(primary=primary, fallback=fallback)
    await fallback.set("permissions:u1:ws-1", "[]")
    await primary.set("permissions:u2:ws-1", "[]")
    assert await cache.delete_by_pattern("permissions:*") == 2


@pytest.mark.asyncio
async def test_corrupt_entry_reads_as_miss_and_is_removed() -> None:
    fallback = MemoryCacheBackend()
    cache = KeyValueCache(fallback=fallback)
    await fallback.set("k", "{not json")
    assert await cache.get("k") is None
    assert not await fallback.exists("k")


@pytest.mark.asyncio
async def test_health_and_info() -> None:
    assert await KeyValueCache().health() is False
    healthy = KeyValueCache(primary=MemoryCacheBackend())
    assert await healthy.health() is True
    degraded = KeyValueCache(primary=FailingBackend())
    info = await degraded.info()
    assert info["backend"] == "failing"
    assert info["healthy"] is False
    assert info["fallback_entries"] == 0


class _FlakyDelete(MemoryCacheBackend):
    name = "flaky"

    def __init__(self):
        super().__init__()
        self.delete_fails = False

    async def delete(self, key):
        if self.delete_fails:
            raise CacheUnavailableError("delete refused")
        return await super().delete(key)


@pytest.mark.asyncio
async def test_failed_primary_delete_hides_stale_entry() -> None:
    primary = _FlakyDelete()
    cache = KeyValueCache(primary=primary)
    await cache.set("permissions:u1:ws-1", ["dashboard.write"])

    primary.delete_fails = True
    await cache.delete("permissions:u1:ws-1")
    assert await primary.get("permissions:u1:ws-1") is not None
    assert await cache.get("permissions:u1:ws-1") is None
    assert not await cache.exists("permissions:u1:ws-1")

    # once the primary accepts deletes again the retry clears the tombstone
    primary.delete_fails = False
    assert await cache.get("permissions:u1:ws-1") is None
    assert await primary.get("permissions:u1:ws-1") is None


@pytest.mark.asyncio
async def test_fresh_write_supersedes_tombstone() -> None:
    primary = _FlakyDelete()
    cache = KeyValueCache(primary=primary)
    await cache.set("k", ["old"])
    primary.delete_fails = True
    await cache.delete("k")

    await cache.set("k", ["new"])
    assert await cache.get("k") == ["new"]
