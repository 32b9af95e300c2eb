from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from workspace_rbac.utils.time_utils import as_utc, utc_now


class Permission(BaseModel):
    """
    Mongo document model for the `permissions` collection.

    Deactivated rather than deleted while any role references the name.
    """

    name: str
    display_name: str | None = None
    description: str | None = None
    category: str
    resource_type: str
    action: str
    is_system: bool = False
    is_active: bool = True


class Role(BaseModel):
    """
    Mongo document model for the `roles` collection.

    `workspace_id` is None for system roles, which are visible in every
    workspace. `permissions` is the embedded bundle of permission names;
    names missing from the catalog are ignored at resolution time.
    """

    id: str
    workspace_id: str | None = None
    name: str
    display_name: str | None = None
    description: str | None = None
    level: int = 0
    permissions: list[str] = Field(default_factory=list)
    is_system: bool = False
    is_active: bool = True
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("permissions", mode="before")
    @classmethod
    def dedupe_permissions(cls, v):
        if v is None:
            return []
        # keep first-seen order, drop duplicates
        return list(dict.fromkeys(str(p) for p in v))


class RoleAssignment(BaseModel):
    """Mongo document model for the `role_assignments` collection."""

    user_id: str
    workspace_id: str
    role_id: str
    assigned_by: str | None = None
    assigned_at: datetime
    expires_at: datetime | None = None
    is_active: bool = True

    def is_effective(self, at: datetime | None = None) -> bool:
        at = at or utc_now()
        if not self.is_active:
            return False
        expires_at = as_utc(self.expires_at)
        return expires_at is None or expires_at > at


class Envelope(BaseModel):
    request_id: str | None = None


class RoleCreateRequest(Envelope):
    name: str
    display_name: str | None = None
    description: str | None = None
    permissions: list[str] = Field(default_factory=list)
    level: int = 0


class RoleUpdateRequest(Envelope):
    name: Optional[str] = None
    display_name: Optional[str] = None
    description: Optional[str] = None
    permissions: Optional[list[str]] = None
    level: Optional[int] = None

    def updates(self) -> dict:
        return self.model_dump(exclude_none=True, exclude={"request_id"})


class RoleAssignRequest(Envelope):
    user_id: str
    role_id: str
    expires_at: datetime | None = None


class PermissionCheckRequest(Envelope):
    permission: str
