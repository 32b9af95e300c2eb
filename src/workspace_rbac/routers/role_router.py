from fastapi import APIRouter, Depends, Request

from workspace_rbac.auth.dependencies import require_permission, require_platform_permission
from workspace_rbac.auth.models import Principal
from workspace_rbac.domain.entities.rbac import (
    Permission,
    RoleAssignRequest,
    RoleCreateRequest,
    RoleUpdateRequest,
)
from workspace_rbac.services.role_service import RoleService
from workspace_rbac.utils.response import success
from workspace_rbac.configs.logging_config import get_logger

log = get_logger(__name__)

router = APIRouter(prefix="/roles", tags=["roles"])

ROLE_READ = ("role.read", "workspace.admin")
ROLE_MANAGE = ("role.manage", "workspace.admin")
ASSIGN = ("user.assign_roles", "workspace.admin")
CATALOG = ("permission.manage",)


def _service(request: Request) -> RoleService:
    return request.app.state.role_service


@router.get("")
async def list_roles(
    request: Request,
    include_inactive: bool = False,
    principal: Principal = Depends(require_permission(*ROLE_READ)),
) -> dict:
    roles = await _service(request).list_roles(principal.workspace_id, include_inactive)
    return success([r.model_dump(mode="json") for r in roles])


@router.post("")
async def create_role(
    request: Request,
    body: RoleCreateRequest,
    principal: Principal = Depends(require_permission(*ROLE_MANAGE)),
) -> dict:
    role = await _service(request).create_role(principal.workspace_id, body, principal.user_id)
    return success(role.model_dump(mode="json"), message="Role created successfully")


@router.put("/{role_id}")
async def update_role(
    request: Request,
    role_id: str,
    body: RoleUpdateRequest,
    principal: Principal = Depends(require_permission(*ROLE_MANAGE)),
) -> dict:
    role = await _service(request).update_role(principal.workspace_id, role_id, body)
    return success(role.model_dump(mode="json"), message="Role updated successfully")


@router.delete("/{role_id}")
async def delete_role(
    request: Request,
    role_id: str,
    principal: Principal = Depends(require_permission(*ROLE_MANAGE)),
) -> dict:
    await _service(request).delete_role(principal.workspace_id, role_id)
    return success({"role_id": role_id}, message="Role deleted successfully")


@router.post("/assignments")
async def assign_role(
    request: Request,
    body: RoleAssignRequest,
    principal: Principal = Depends(require_permission(*ASSIGN)),
) -> dict:
    log.info(
        "role.assign request_id=%s by=%s user_id=%s workspace_id=%s role_id=%s",
        body.request_id,
        principal.user_id,
        body.user_id,
        principal.workspace_id,
        body.role_id,
    )
    assignment = await _service(request).assign_role(
        user_id=body.user_id,
        workspace_id=principal.workspace_id,
        role_id=body.role_id,
        assigned_by=principal.user_id,
        expires_at=body.expires_at,
    )
    return success(assignment.model_dump(mode="json"), message="Role assigned successfully")


@router.delete("/assignments/{user_id}/{role_id}")
async def revoke_role(
    request: Request,
    user_id: str,
    role_id: str,
    principal: Principal = Depends(require_permission(*ASSIGN)),
) -> dict:
    await _service(request).revoke_role(user_id=user_id, workspace_id=principal.workspace_id, role_id=role_id)
    return success({"user_id": user_id, "role_id": role_id}, message="Role revoked successfully")


@router.put("/permissions/catalog")
async def upsert_permission(
    request: Request,
    body: Permission,
    principal: Principal = Depends(require_platform_permission(*CATALOG)),
) -> dict:
    saved = await _service(request).upsert_permission(body)
    return success(saved.model_dump(), message="Permission saved")


@router.delete("/permissions/catalog/{name}")
async def deactivate_permission(
    request: Request,
    name: str,
    principal: Principal = Depends(require_platform_permission(*CATALOG)),
) -> dict:
    await _service(request).deactivate_permission(name)
    return success({"name": name}, message="Permission deactivated")
