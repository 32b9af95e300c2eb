from __future__ import annotations

import uuid
from typing import Any, Optional

from workspace_rbac.cache.key_value_cache import KeyValueCache
from workspace_rbac.cache.keys import CacheKeys
from workspace_rbac.configs.logging_config import get_logger

log = get_logger(__name__)

DEFAULT_MARKER_TTL = 3600


class InvalidationGenerations:
    """
    Invalidation markers shared through the cache.

    Every invalidation writes a fresh token under the pair, workspace or
    global marker before it evicts entries. A resolve snapshots the markers
    before it reads the store and must not publish its result once any of
    them has moved. Markers only need to outlive one resolve.
    """

    def __init__(self, cache: KeyValueCache, keys: Optional[CacheKeys] = None, ttl: int = DEFAULT_MARKER_TTL):
        self._cache = cache
        self._keys = keys or CacheKeys()
        self._ttl = ttl

    async def snapshot(self, user_id: str, workspace_id: str) -> tuple[Any, ...]:
        return tuple([await self._cache.get(key) for key in self._keys.generations(user_id, workspace_id)])

    async def bump_pair(self, user_id: str, workspace_id: str) -> None:
        await self._bump(self._keys.pair_generation(user_id, workspace_id))

    async def bump_workspace(self, workspace_id: str) -> None:
        await self._bump(self._keys.workspace_generation(workspace_id))

    async def bump_all(self) -> None:
        await self._bump(self._keys.global_generation())

    async def _bump(self, key: str) -> None:
        token = uuid.uuid4().hex
        await self._cache.set(key, token, ttl=self._ttl)
        log.debug("cache.generation.bump key=%s token=%s", key, token)

    async def publish(
        self, key: str, value: Any, ttl: int, user_id: str, workspace_id: str, before: tuple
    ) -> bool:
        """
        Cache `value` unless an invalidation for the pair landed after
        `before` was taken. Returns whether the entry was kept.
        """
        if await self.snapshot(user_id, workspace_id) != before:
            log.info("cache.publish.skipped key=%s reason=invalidated", key)
            return False
        await self._cache.set(key, value, ttl=ttl)
        # an invalidation may have run between the check and the write
        if await self.snapshot(user_id, workspace_id) != before:
            await self._cache.delete(key)
            log.info("cache.publish.rolled_back key=%s reason=invalidated", key)
            return False
        return True
