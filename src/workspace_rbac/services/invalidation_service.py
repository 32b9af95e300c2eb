from __future__ import annotations

import asyncio
from typing import Optional

from workspace_rbac.cache.generations import InvalidationGenerations
from workspace_rbac.cache.key_value_cache import KeyValueCache
from workspace_rbac.cache.keys import CacheKeys
from workspace_rbac.repositories.permission_repository import PermissionRepository
from workspace_rbac.configs.logging_config import get_logger

log = get_logger(__name__)


class InvalidationCoordinator:
    """
    Evicts cached permission state after writes.

    Write paths must await these calls before returning so that any read
    issued after the write's response sees the new data. Each call moves
    the matching generation marker before it deletes anything, so a resolve
    that read the store before the write cannot put its result back.
    """

    def __init__(self, repo: PermissionRepository, cache: KeyValueCache, keys: Optional[CacheKeys] = None):
        self._repo = repo
        self._cache = cache
        self._keys = keys or CacheKeys()
        self._generations = InvalidationGenerations(cache, self._keys)

    async def invalidate(self, user_id: str, workspace_id: str) -> None:
        await self._generations.bump_pair(user_id, workspace_id)
        for key in self._keys.for_pair(user_id, workspace_id):
            await self._cache.delete(key)
        log.debug("perm.invalidate user=%s workspace=%s", user_id, workspace_id)

    async def invalidate_workspace(self, workspace_id: str) -> int:
        await self._generations.bump_workspace(workspace_id)
        deleted = 0
        for pattern in self._keys.workspace_patterns(workspace_id):
            deleted += await self._cache.delete_by_pattern(pattern)
        log.info("perm.invalidate_workspace workspace=%s deleted=%s", workspace_id, deleted)
        return deleted

    async def invalidate_role(self, role_id: str) -> int:
        """Evict every (user, workspace) holding the role."""
        try:
            holders = await self._repo.get_active_assignments_for_role(role_id)
        except Exception as e:
            # cannot tell who holds the role; stale grants are worse than misses
            log.warning("perm.invalidate_role.lookup_failed role=%s error=%s flushing_all", role_id, e)
            await self.invalidate_all()
            return 0

        pairs = sorted(set(holders))
        await asyncio.gather(*(self.invalidate(u, w) for u, w in pairs))
        log.info("perm.invalidate_role role=%s pairs=%s", role_id, len(pairs))
        return len(pairs)

    async def invalidate_all(self) -> int:
        await self._generations.bump_all()
        deleted = 0
        for pattern in self._keys.all_patterns():
            deleted += await self._cache.delete_by_pattern(pattern)
        log.info("perm.invalidate_all deleted=%s", deleted)
        return deleted
