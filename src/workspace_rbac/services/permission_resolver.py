from __future__ import annotations

from typing import Optional, Sequence

from workspace_rbac.cache.key_value_cache import KeyValueCache
from workspace_rbac.cache.generations import InvalidationGenerations
from workspace_rbac.cache.keys import CacheKeys
from workspace_rbac.domain.entities.rbac import Role
from workspace_rbac.repositories.permission_repository import PermissionRepository
from workspace_rbac.resolution.resolution_strategy import ResolutionStrategy
from workspace_rbac.configs.logging_config import get_logger

log = get_logger(__name__)

EMPTY: frozenset[str] = frozenset()


class PermissionResolver:
    """
    Read-through resolution of a user's effective permission set in a
    workspace.

    Every public method is fail-closed: whatever goes wrong, the answer is
    the empty set (or empty role list), never an exception.
    """

    def __init__(
        self,
        repo: PermissionRepository,
        cache: KeyValueCache,
        strategies: Sequence[ResolutionStrategy],
        *,
        keys: Optional[CacheKeys] = None,
        permission_ttl: int = 300,
        role_ttl: int = 600,
    ):
        if not strategies:
            raise ValueError("at least one resolution strategy is required")
        self._repo = repo
        self._cache = cache
        self._strategies = list(strategies)
        self._keys = keys or CacheKeys()
        self._generations = InvalidationGenerations(cache, self._keys)
        self._permission_ttl = permission_ttl
        self._role_ttl = role_ttl

    @property
    def keys(self) -> CacheKeys:
        return self._keys

    async def resolve_effective_permissions(self, user_id: str, workspace_id: str) -> frozenset[str]:
        try:
            return await self._resolve(user_id, workspace_id)
        except Exception:
            log.exception("perm.resolve.failed user=%s workspace=%s", user_id, workspace_id)
            return EMPTY

    async def _resolve(self, user_id: str, workspace_id: str) -> frozenset[str]:
        key = self._keys.permissions(user_id, workspace_id)

        cached = await self._cache.get(key)
        if isinstance(cached, list):
            log.debug(
                "perm.resolve.cache_hit user=%s workspace=%s count=%s", user_id, workspace_id, len(cached)
            )
            return frozenset(cached)

        before = await self._generations.snapshot(user_id, workspace_id)
        for strategy in self._strategies:
            result = await strategy.resolve(user_id, workspace_id)
            if not result.ok:
                continue
            log.info(
                "perm.resolve.resolved strategy=%s user=%s workspace=%s count=%s",
                result.strategy,
                user_id,
                workspace_id,
                len(result.permissions),
            )
            # empty sets are cached too: "has nothing" is an answer
            await self._generations.publish(
                key, sorted(result.permissions), self._permission_ttl, user_id, workspace_id, before
            )
            return result.permissions

        log.error(
            "perm.resolve.exhausted user=%s workspace=%s strategies=%s",
            user_id,
            workspace_id,
            [s.name() for s in self._strategies],
        )
        return EMPTY

    async def get_user_roles(self, user_id: str, workspace_id: str) -> list[Role]:
        key = self._keys.user_roles(user_id, workspace_id)
        try:
            cached = await self._cache.get(key)
            if isinstance(cached, list):
                return [Role(**r) for r in cached]

            before = await self._generations.snapshot(user_id, workspace_id)
            roles = await self._repo.get_user_roles(user_id, workspace_id)
            await self._generations.publish(
                key, [r.model_dump(mode="json") for r in roles], self._role_ttl, user_id, workspace_id, before
            )
            return roles
        except Exception as e:
            log.warning("perm.user_roles.failed user=%s workspace=%s error=%s", user_id, workspace_id, e)
            return []
