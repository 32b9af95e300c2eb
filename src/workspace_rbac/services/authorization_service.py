from __future__ import annotations

from typing import Iterable

from workspace_rbac.domain.entities.rbac import Role
from workspace_rbac.domain.entities.resolution import PermissionCheck, PermissionSummary
from workspace_rbac.services.permission_resolver import PermissionResolver
from workspace_rbac.configs.logging_config import get_logger
from workspace_rbac.utils.time_utils import dt_to_iso, utc_now

log = get_logger(__name__)

ADMIN_PERMISSION = "workspace.admin"
ADMIN_LEVEL = 80
EXPLANATION_LIMIT = 10


def is_admin_role(role: Role) -> bool:
    return "admin" in role.name.lower() or role.level >= ADMIN_LEVEL or ADMIN_PERMISSION in role.permissions


class AuthorizationService:
    """
    Decision operations over the resolver. Stateless; every answer is
    derived from resolve_effective_permissions, which is already
    fail-closed, so a broken store simply reads as "no permission".
    """

    def __init__(self, resolver: PermissionResolver):
        self._resolver = resolver

    async def get_effective_permissions(self, user_id: str, workspace_id: str) -> frozenset[str]:
        return await self._resolver.resolve_effective_permissions(user_id, workspace_id)

    async def has_permission(self, user_id: str, workspace_id: str, permission: str) -> bool:
        held = await self.get_effective_permissions(user_id, workspace_id)
        granted = permission in held
        log.debug(
            "authz.has_permission user=%s workspace=%s permission=%s granted=%s",
            user_id,
            workspace_id,
            permission,
            granted,
        )
        return granted

    async def has_any_permission(self, user_id: str, workspace_id: str, permissions: Iterable[str]) -> bool:
        wanted = set(permissions or ())
        if not wanted:
            return False
        held = await self.get_effective_permissions(user_id, workspace_id)
        return not held.isdisjoint(wanted)

    async def has_all_permissions(self, user_id: str, workspace_id: str, permissions: Iterable[str]) -> bool:
        wanted = set(permissions or ())
        if not wanted:
            return True
        held = await self.get_effective_permissions(user_id, workspace_id)
        return wanted <= held

    async def check_permission(self, user_id: str, workspace_id: str, permission: str) -> PermissionCheck:
        held = sorted(await self.get_effective_permissions(user_id, workspace_id))
        if permission in held:
            return PermissionCheck(
                granted=True,
                explanation=f"User has permission: {permission}",
                permissions=tuple(held),
            )
        listing = ", ".join(held[:EXPLANATION_LIMIT])
        if len(held) > EXPLANATION_LIMIT:
            listing += "..."
        return PermissionCheck(
            granted=False,
            explanation=f"User does not have permission: {permission}. Available: {listing or 'none'}",
            permissions=tuple(held),
        )

    async def check_permissions(
        self, user_id: str, workspace_id: str, permissions: Iterable[str]
    ) -> dict[str, bool]:
        held = await self.get_effective_permissions(user_id, workspace_id)
        return {p: p in held for p in permissions}

    async def is_user_admin(self, user_id: str, workspace_id: str) -> bool:
        roles = await self._resolver.get_user_roles(user_id, workspace_id)
        return any(is_admin_role(role) for role in roles)

    async def get_permission_summary(self, user_id: str, workspace_id: str) -> PermissionSummary:
        permissions = await self.get_effective_permissions(user_id, workspace_id)
        roles = await self._resolver.get_user_roles(user_id, workspace_id)
        return PermissionSummary(
            user_id=user_id,
            workspace_id=workspace_id,
            permissions=tuple(sorted(permissions)),
            roles=tuple(roles),
            is_admin=any(is_admin_role(r) for r in roles),
            last_updated=dt_to_iso(utc_now()),
        )
