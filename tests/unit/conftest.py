from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Optional

import pytest

from workspace_rbac.cache.backends import CacheBackend
from workspace_rbac.cache.key_value_cache import KeyValueCache
from workspace_rbac.domain.entities.rbac import Permission, Role, RoleAssignment
from workspace_rbac.errors import (
    CacheUnavailableError,
    InvalidRoleReferenceError,
    MutationConflictError,
    NotFoundError,
    StoreUnavailableError,
)
from workspace_rbac.resolution.strategy_factory import StrategyFactory
from workspace_rbac.services.authorization_service import AuthorizationService
from workspace_rbac.services.invalidation_service import InvalidationCoordinator
from workspace_rbac.services.permission_resolver import PermissionResolver
from workspace_rbac.services.role_service import RoleService
from workspace_rbac.utils.time_utils import utc_now

CATALOG = [
    "dashboard.read",
    "dashboard.write",
    "chart.read",
    "chart.write",
    "export.run",
    "role.read",
    "role.manage",
    "user.assign_roles",
    "workspace.admin",
]


class InMemoryPermissionStore:
    """
    Test double for PermissionRepository.

    The three effective-permission queries are computed three different
    ways on purpose (set union, flattened rows, nested loops) so the
    equivalence tests compare genuinely different code paths.
    """

    def __init__(self):
        self.permissions: dict[str, Permission] = {}
        self.roles: dict[str, Role] = {}
        self.assignments: dict[tuple[str, str, str], RoleAssignment] = {}
        self.failing: set[str] = set()
        self.delays: dict[str, float] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.view_installed = True
        self.calls: list[str] = []

    # ---- seeding helpers ----

    def add_permission(self, name: str, is_active: bool = True) -> None:
        category, _, action = name.partition(".")
        self.permissions[name] = Permission(
            name=name, category=category, resource_type=category, action=action, is_active=is_active
        )

    def add_role(
        self,
        role_id: str,
        permissions: list[str],
        *,
        workspace_id: Optional[str] = "ws-1",
        name: Optional[str] = None,
        level: int = 10,
        is_active: bool = True,
        is_system: bool = False,
    ) -> Role:
        role = Role(
            id=role_id,
            workspace_id=workspace_id,
            name=name or role_id,
            level=level,
            permissions=permissions,
            is_active=is_active,
            is_system=is_system,
        )
        self.roles[role_id] = role
        return role

    def grant(
        self,
        user_id: str,
        workspace_id: str,
        role_id: str,
        *,
        expires_at: Optional[datetime] = None,
        is_active: bool = True,
    ) -> None:
        self.assignments[(user_id, workspace_id, role_id)] = RoleAssignment(
            user_id=user_id,
            workspace_id=workspace_id,
            role_id=role_id,
            assigned_by="seed",
            assigned_at=utc_now(),
            expires_at=expires_at,
            is_active=is_active,
        )

    async def _enter(self, op: str) -> None:
        self.calls.append(op)
        if op in self.delays:
            await asyncio.sleep(self.delays[op])
        if op in self.failing:
            raise StoreUnavailableError(f"{op} forced failure")

    async def _hold(self, op: str) -> None:
        # rows are already read; park until the test releases the gate
        gate = self.gates.get(op)
        if gate is not None:
            await gate.wait()

    def _active_catalog(self) -> set[str]:
        return {name for name, p in self.permissions.items() if p.is_active}

    # ---- effective permission queries ----

    async def get_effective_permissions_aggregate(self, user_id, workspace_id):
        await self._enter("aggregate")
        now = utc_now()
        bundles = [
            set(self.roles[a.role_id].permissions)
            for a in self.assignments.values()
            if a.user_id == user_id
            and a.workspace_id == workspace_id
            and a.is_effective(now)
            and a.role_id in self.roles
            and self.roles[a.role_id].is_active
        ]
        names = sorted(set().union(*bundles) & self._active_catalog())
        await self._hold("aggregate")
        return names

    async def get_effective_permissions_view(self, user_id, workspace_id):
        await self._enter("view")
        if not self.view_installed:
            return None
        now = utc_now()
        rows = []
        for a in self.assignments.values():
            role = self.roles.get(a.role_id)
            if role is None:
                continue
            for name in role.permissions:
                perm = self.permissions.get(name)
                if perm is None:
                    continue
                rows.append(
                    {
                        "user_id": a.user_id,
                        "workspace_id": a.workspace_id,
                        "permission_name": name,
                        "is_permission_active": a.is_effective(now) and role.is_active and perm.is_active,
                    }
                )
        return sorted(
            {
                r["permission_name"]
                for r in rows
                if r["user_id"] == user_id and r["workspace_id"] == workspace_id and r["is_permission_active"]
            }
        )

    async def get_effective_permissions_join(self, user_id, workspace_id):
        await self._enter("join")
        now = utc_now()
        names = set()
        for (u, w, role_id), a in self.assignments.items():
            if u != user_id or w != workspace_id:
                continue
            if not a.is_active:
                continue
            if a.expires_at is not None and a.expires_at <= now:
                continue
            role = self.roles.get(role_id)
            if role is None or not role.is_active:
                continue
            for name in role.permissions:
                perm = self.permissions.get(name)
                if perm is not None and perm.is_active:
                    names.add(name)
        return sorted(names)

    async def get_active_assignments_for_role(self, role_id):
        await self._enter("holders")
        return sorted({(a.user_id, a.workspace_id) for a in self.assignments.values() if a.role_id == role_id and a.is_active})

    async def get_user_roles(self, user_id, workspace_id):
        await self._enter("user_roles")
        now = utc_now()
        roles = [
            self.roles[a.role_id]
            for a in self.assignments.values()
            if a.user_id == user_id
            and a.workspace_id == workspace_id
            and a.is_effective(now)
            and a.role_id in self.roles
            and self.roles[a.role_id].is_active
        ]
        roles = sorted(roles, key=lambda r: (-r.level, r.name))
        await self._hold("user_roles")
        return roles

    # ---- writes ----

    async def list_roles(self, workspace_id, include_inactive=False):
        return [
            r
            for r in self.roles.values()
            if (r.workspace_id == workspace_id or r.is_system) and (include_inactive or r.is_active)
        ]

    async def create_role(self, *, workspace_id, name, display_name, description, permissions, level, created_by):
        await self._enter("create_role")
        if any(r.workspace_id == workspace_id and r.name == name for r in self.roles.values()):
            raise MutationConflictError(f"role '{name}' already exists in workspace")
        role_id = f"role-{len(self.roles) + 1}"
        role = Role(
            id=role_id,
            workspace_id=workspace_id,
            name=name,
            display_name=display_name,
            description=description,
            permissions=permissions,
            level=level,
            created_by=created_by,
        )
        self.roles[role_id] = role
        return role

    async def update_role(self, role_id, updates, *, workspace_id):
        await self._enter("update_role")
        role = self.roles.get(role_id)
        if role is None:
            raise NotFoundError("role not found")
        if role.is_system:
            raise MutationConflictError("system roles cannot be modified")
        if role.workspace_id != workspace_id:
            raise NotFoundError("role not found")
        updated = role.model_copy(update=updates)
        self.roles[role_id] = updated
        return updated

    async def delete_role(self, role_id, *, workspace_id):
        await self._enter("delete_role")
        role = self.roles.get(role_id)
        if role is None:
            raise NotFoundError("role not found")
        if role.is_system:
            raise MutationConflictError("system roles cannot be deleted")
        if role.workspace_id != workspace_id:
            raise NotFoundError("role not found")
        if any(a.role_id == role_id and a.is_active for a in self.assignments.values()):
            raise MutationConflictError("cannot delete role that is currently assigned to users")
        del self.roles[role_id]

    async def assign_role(self, *, user_id, workspace_id, role_id, assigned_by, expires_at=None):
        await self._enter("assign_role")
        role = self.roles.get(role_id)
        if role is None or not role.is_active:
            raise InvalidRoleReferenceError()
        if role.workspace_id not in (None, workspace_id):
            raise InvalidRoleReferenceError("role belongs to another workspace")
        self.grant(user_id, workspace_id, role_id, expires_at=expires_at)
        return self.assignments[(user_id, workspace_id, role_id)]

    async def revoke_role(self, *, user_id, workspace_id, role_id):
        await self._enter("revoke_role")
        key = (user_id, workspace_id, role_id)
        if key not in self.assignments:
            raise NotFoundError("role assignment not found")
        self.assignments[key] = self.assignments[key].model_copy(update={"is_active": False})

    async def list_permissions(self, include_inactive=False):
        return [p for p in self.permissions.values() if include_inactive or p.is_active]

    async def upsert_permission(self, permission):
        self.permissions[permission.name] = permission
        return permission

    async def deactivate_permission(self, name):
        if name not in self.permissions:
            raise NotFoundError("permission not found")
        self.permissions[name] = self.permissions[name].model_copy(update={"is_active": False})


class FailingBackend(CacheBackend):
    name = "failing"

    def __init__(self):
        self.calls = 0

    def _fail(self):
        self.calls += 1
        raise CacheUnavailableError("backend down")

    async def get(self, key):
        self._fail()

    async def set(self, key, value, ttl=None):
        self._fail()

    async def delete(self, key):
        self._fail()

    async def delete_pattern(self, pattern):
        self._fail()

    async def exists(self, key):
        self._fail()

    async def ping(self):
        self._fail()


@pytest.fixture
def store() -> InMemoryPermissionStore:
    s = InMemoryPermissionStore()
    for name in CATALOG:
        s.add_permission(name)
    return s


@pytest.fixture
def cache() -> KeyValueCache:
    return KeyValueCache()


@pytest.fixture
def broken_cache() -> KeyValueCache:
    return KeyValueCache(primary=FailingBackend(), fallback=FailingBackend())


@pytest.fixture
def make_resolver():
    def _make(store, cache, order=("aggregate", "view", "join"), timeout=None):
        strategies = StrategyFactory(store, timeout=timeout).chain(order)
        return PermissionResolver(store, cache, strategies, permission_ttl=300, role_ttl=600)

    return _make


@pytest.fixture
def resolver(store, cache, make_resolver) -> PermissionResolver:
    return make_resolver(store, cache)


@pytest.fixture
def coordinator(store, cache) -> InvalidationCoordinator:
    return InvalidationCoordinator(store, cache)


@pytest.fixture
def authz(resolver) -> AuthorizationService:
    return AuthorizationService(resolver)


@pytest.fixture
def role_service(store, coordinator) -> RoleService:
    return RoleService(store, coordinator)
