from __future__ import annotations

from datetime import datetime

from workspace_rbac.domain.entities.rbac import (
    Permission,
    Role,
    RoleAssignment,
    RoleCreateRequest,
    RoleUpdateRequest,
)
from workspace_rbac.errors import AppError
from workspace_rbac.repositories.permission_repository import PermissionRepository
from workspace_rbac.services.invalidation_service import InvalidationCoordinator
from workspace_rbac.configs.logging_config import get_logger

log = get_logger(__name__)


class RoleService:
    """
    Role, assignment and permission-catalog writes.

    Every write that can change an effective set goes to the store first
    and then awaits the matching invalidation, so the caller's response is
    only produced once stale cache entries are gone. A rejected write raises
    before any eviction. Role edits are scoped to the caller's workspace;
    a role owned by another workspace reads as missing.
    """

    def __init__(self, repo: PermissionRepository, invalidation: InvalidationCoordinator):
        self._repo = repo
        self._invalidation = invalidation

    async def list_roles(self, workspace_id: str, include_inactive: bool = False) -> list[Role]:
        return await self._repo.list_roles(workspace_id, include_inactive)

    async def create_role(self, workspace_id: str, req: RoleCreateRequest, created_by: str) -> Role:
        log.info(
            "svc.role.create start request_id=%s workspace_id=%s name=%s",
            req.request_id,
            workspace_id,
            req.name,
        )
        role = await self._repo.create_role(
            workspace_id=workspace_id,
            name=req.name,
            display_name=req.display_name,
            description=req.description,
            permissions=req.permissions,
            level=req.level,
            created_by=created_by,
        )
        log.info("svc.role.create done role_id=%s", role.id)
        return role

    async def update_role(self, workspace_id: str, role_id: str, req: RoleUpdateRequest) -> Role:
        updates = req.updates()
        log.info(
            "svc.role.update start request_id=%s workspace_id=%s role_id=%s keys=%s",
            req.request_id,
            workspace_id,
            role_id,
            sorted(updates),
        )
        role = await self._repo.update_role(role_id, updates, workspace_id=workspace_id)
        await self._invalidation.invalidate_role(role_id)
        log.info("svc.role.update done role_id=%s", role_id)
        return role

    async def delete_role(self, workspace_id: str, role_id: str) -> None:
        # the store refuses while any assignment is active, so no cached set
        # can contain this role's bundle and there is nothing to evict
        log.info("svc.role.delete start workspace_id=%s role_id=%s", workspace_id, role_id)
        await self._repo.delete_role(role_id, workspace_id=workspace_id)
        log.info("svc.role.delete done role_id=%s", role_id)

    async def assign_role(
        self,
        *,
        user_id: str,
        workspace_id: str,
        role_id: str,
        assigned_by: str,
        expires_at: datetime | None = None,
    ) -> RoleAssignment:
        try:
            assignment = await self._repo.assign_role(
                user_id=user_id,
                workspace_id=workspace_id,
                role_id=role_id,
                assigned_by=assigned_by,
                expires_at=expires_at,
            )
        except AppError as e:
            log.info(
                "svc.role.assign rejected user_id=%s workspace_id=%s role_id=%s reason=%s",
                user_id,
                workspace_id,
                role_id,
                e.message,
            )
            raise
        await self._invalidation.invalidate(user_id, workspace_id)
        return assignment

    async def revoke_role(self, *, user_id: str, workspace_id: str, role_id: str) -> None:
        await self._repo.revoke_role(user_id=user_id, workspace_id=workspace_id, role_id=role_id)
        await self._invalidation.invalidate(user_id, workspace_id)

    async def upsert_permission(self, permission: Permission) -> Permission:
        saved = await self._repo.upsert_permission(permission)
        # catalog edits can change the effective set of anyone, anywhere
        await self._invalidation.invalidate_all()
        return saved

    async def deactivate_permission(self, name: str) -> None:
        await self._repo.deactivate_permission(name)
        await self._invalidation.invalidate_all()
