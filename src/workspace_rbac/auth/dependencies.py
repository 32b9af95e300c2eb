from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, Request

from workspace_rbac.auth.jwt import decode_token
from workspace_rbac.auth.models import Principal
from workspace_rbac.configs.settings import get_settings
from workspace_rbac.errors import AppError, AuthError, ForbiddenError
from workspace_rbac.services.authorization_service import AuthorizationService
from workspace_rbac.configs.logging_config import get_logger

log = get_logger(__name__)


def _bearer_token(value: Optional[str]) -> str:
    if not value:
        raise AuthError("missing authorization header")
    scheme, _, token = value.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("invalid authorization header")
    return token.strip()


def get_authorization_service(request: Request) -> AuthorizationService:
    return request.app.state.authorization_service


async def get_principal(
    authorization: Optional[str] = Header(default=None),
    x_workspace_id: Optional[str] = Header(default=None),
) -> Principal:
    claims = decode_token(_bearer_token(authorization), get_settings())
    user_id = claims.get("sub")
    if not user_id:
        log.info("auth.token_missing_claims has_sub=False")
        raise AuthError("token missing required claims")
    if not x_workspace_id:
        log.info("auth.workspace_context_missing user_id=%s", user_id)
        raise AppError("workspace context required", http_status=400)
    return Principal(user_id=str(user_id), workspace_id=x_workspace_id)


def require_permission(*permissions: str):
    """
    Route dependency passing when the caller holds ANY of `permissions`
    in the request's workspace. Denials never say why beyond what was
    required.
    """
    required = list(permissions)

    async def _check(
        principal: Principal = Depends(get_principal),
        authz: AuthorizationService = Depends(get_authorization_service),
    ) -> Principal:
        if not await authz.has_any_permission(principal.user_id, principal.workspace_id, required):
            log.warning(
                "auth.permission_denied user_id=%s workspace_id=%s required=%s",
                principal.user_id,
                principal.workspace_id,
                required,
            )
            raise ForbiddenError(f"Required: {' OR '.join(required)}")
        return principal

    return _check


def require_platform_permission(*permissions: str):
    """
    Like require_permission, but checked in the platform workspace rather
    than the request's. Tenants cannot grant themselves anything there:
    workspace roles are only assignable inside their own workspace.
    """
    required = list(permissions)

    async def _check(
        principal: Principal = Depends(get_principal),
        authz: AuthorizationService = Depends(get_authorization_service),
    ) -> Principal:
        platform = get_settings().platform_workspace_id
        if not await authz.has_any_permission(principal.user_id, platform, required):
            log.warning(
                "auth.platform_permission_denied user_id=%s workspace_id=%s required=%s",
                principal.user_id,
                principal.workspace_id,
                required,
            )
            raise ForbiddenError(f"Required: {' OR '.join(required)} in platform workspace")
        return principal

    return _check
