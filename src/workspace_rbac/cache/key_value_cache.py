from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Optional, TypeVar

from workspace_rbac.cache.backends import CacheBackend, MemoryCacheBackend
from workspace_rbac.configs.logging_config import get_logger

log = get_logger(__name__)

T = TypeVar("T")

TOMBSTONE_PREFIX = "tombstone:"
DEFAULT_TOMBSTONE_TTL = 600


class KeyValueCache:
    """
    Best-effort, JSON-valued TTL cache.

    Calls go to the shared primary backend (Redis) when one is configured
    and fall back to the in-process backend when it fails. Nothing here
    ever raises: a failing cache is a slow cache, not a broken one.

    Deletes are mirrored onto the fallback even while the primary is
    healthy, so entries written during an outage can never outlive an
    invalidation issued after the primary came back.

    When a primary delete fails the key is tombstoned in the fallback.
    Reads of a tombstoned key skip the primary until the delete goes through
    on retry or a fresh value is written there.
    """

    def __init__(
        self,
        primary: Optional[CacheBackend] = None,
        fallback: Optional[CacheBackend] = None,
        default_ttl: Optional[int] = None,
        tombstone_ttl: int = DEFAULT_TOMBSTONE_TTL,
    ):
        self._primary = primary
        self._fallback = fallback if fallback is not None else MemoryCacheBackend()
        self._default_ttl = default_ttl
        self._tombstone_ttl = tombstone_ttl

    @property
    def backend_name(self) -> str:
        return self._primary.name if self._primary is not None else self._fallback.name

    async def _call(
        self,
        op: str,
        key: str,
        call: Callable[[CacheBackend], Awaitable[T]],
        default: T,
    ) -> T:
        if self._primary is not None:
            try:
                return await call(self._primary)
            except Exception as e:
                log.warning(
                    "cache.degraded op=%s key=%s backend=%s error=%s",
                    op,
                    key,
                    self._primary.name,
                    e,
                )
        return await self._on_fallback(op, key, call, default)

    async def _on_fallback(
        self,
        op: str,
        key: str,
        call: Callable[[CacheBackend], Awaitable[T]],
        default: T,
    ) -> T:
        try:
            return await call(self._fallback)
        except Exception as e:
            log.warning(
                "cache.unavailable op=%s key=%s backend=%s error=%s",
                op,
                key,
                self._fallback.name,
                e,
            )
            return default

    async def _mirror(self, op: str, key: str, call: Callable[[CacheBackend], Awaitable[int]]) -> int:
        return await self._on_fallback(op, key, call, 0)

    # ----------------------------
    # Tombstones
    # ----------------------------

    async def _tombstoned(self, key: str) -> bool:
        marker = TOMBSTONE_PREFIX + key
        if not await self._on_fallback("exists", marker, lambda b: b.exists(marker), False):
            return False
        try:
            await self._primary.delete(key)
        except Exception as e:
            log.warning("cache.tombstone.retry_failed key=%s error=%s", key, e)
            return True
        await self._on_fallback("delete", marker, lambda b: b.delete(marker), 0)
        log.info("cache.tombstone.cleared key=%s", key)
        return False

    # ----------------------------
    # Public API
    # ----------------------------

    async def get(self, key: str) -> Any:
        if self._primary is not None and await self._tombstoned(key):
            # the primary copy is stale; the fallback only holds newer writes
            raw = await self._on_fallback("get", key, lambda b: b.get(key), None)
        else:
            raw = await self._call("get", key, lambda b: b.get(key), None)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            log.warning("cache.corrupt_entry key=%s", key)
            await self.delete(key)
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ttl = ttl if ttl is not None else self._default_ttl
        try:
            raw = json.dumps(value)
        except (TypeError, ValueError) as e:
            log.warning("cache.unserializable key=%s error=%s", key, e)
            return
        if self._primary is not None:
            try:
                await self._primary.set(key, raw, ttl)
            except Exception as e:
                log.warning("cache.degraded op=set key=%s backend=%s error=%s", key, self._primary.name, e)
            else:
                # the fresh value supersedes whatever a failed delete left behind
                marker = TOMBSTONE_PREFIX + key
                await self._on_fallback("delete", marker, lambda b: b.delete(marker), 0)
                return
        await self._on_fallback("set", key, lambda b: b.set(key, raw, ttl), None)

    async def delete(self, key: str) -> bool:
        deleted = 0
        if self._primary is not None:
            try:
                deleted += int(await self._primary.delete(key))
            except Exception as e:
                log.warning("cache.degraded op=delete key=%s backend=%s error=%s", key, self._primary.name, e)
                marker = TOMBSTONE_PREFIX + key
                await self._on_fallback(
                    "set", marker, lambda b: b.set(marker, "1", self._tombstone_ttl), None
                )
        deleted += await self._mirror("delete", key, lambda b: b.delete(key))
        return deleted > 0

    async def delete_by_pattern(self, pattern: str) -> int:
        deleted = 0
        if self._primary is not None:
            deleted += await self._call("delete_pattern", pattern, lambda b: b.delete_pattern(pattern), 0)
        deleted += await self._mirror("delete_pattern", pattern, lambda b: b.delete_pattern(pattern))
        log.debug("cache.delete_pattern pattern=%s deleted=%s", pattern, deleted)
        return deleted

    async def exists(self, key: str) -> bool:
        if self._primary is not None and await self._tombstoned(key):
            return bool(await self._on_fallback("exists", key, lambda b: b.exists(key), False))
        return bool(await self._call("exists", key, lambda b: b.exists(key), False))

    async def health(self) -> bool:
        """True when the shared backend answers; False when running degraded."""
        if self._primary is None:
            return False
        try:
            return bool(await self._primary.ping())
        except Exception as e:
            log.warning("cache.health_failed backend=%s error=%s", self._primary.name, e)
            return False

    async def info(self) -> dict[str, Any]:
        return {
            "backend": self.backend_name,
            "healthy": await self.health(),
            "fallback_entries": len(self._fallback) if isinstance(self._fallback, MemoryCacheBackend) else None,
        }
