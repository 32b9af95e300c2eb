from dataclasses import asdict

from fastapi import APIRouter, Depends

from workspace_rbac.auth.dependencies import get_authorization_service, get_principal
from workspace_rbac.auth.models import Principal
from workspace_rbac.domain.entities.rbac import PermissionCheckRequest
from workspace_rbac.services.authorization_service import AuthorizationService
from workspace_rbac.utils.response import success
from workspace_rbac.configs.logging_config import get_logger

log = get_logger(__name__)

router = APIRouter(prefix="/permissions", tags=["permissions"])


@router.get("/me")
async def my_permissions(
    principal: Principal = Depends(get_principal),
    authz: AuthorizationService = Depends(get_authorization_service),
) -> dict:
    permissions = await authz.get_effective_permissions(principal.user_id, principal.workspace_id)
    return success(
        {
            "permissions": sorted(permissions),
            "user_id": principal.user_id,
            "workspace_id": principal.workspace_id,
        }
    )


@router.get("/me/summary")
async def my_permission_summary(
    principal: Principal = Depends(get_principal),
    authz: AuthorizationService = Depends(get_authorization_service),
) -> dict:
    summary = await authz.get_permission_summary(principal.user_id, principal.workspace_id)
    data = asdict(summary)
    data["roles"] = [r.model_dump(mode="json") for r in summary.roles]
    return success(data)


@router.post("/check")
async def check_permission(
    body: PermissionCheckRequest,
    principal: Principal = Depends(get_principal),
    authz: AuthorizationService = Depends(get_authorization_service),
) -> dict:
    log.info(
        "permission.check request_id=%s user_id=%s workspace_id=%s permission=%s",
        body.request_id,
        principal.user_id,
        principal.workspace_id,
        body.permission,
    )
    result = await authz.check_permission(principal.user_id, principal.workspace_id, body.permission)
    # only the caller's own permissions are listed back
    return success({"granted": result.granted, "explanation": result.explanation})
