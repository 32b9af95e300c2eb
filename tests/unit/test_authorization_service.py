from __future__ import annotations

import pytest

from workspace_rbac.services.authorization_service import EXPLANATION_LIMIT, is_admin_role
from workspace_rbac.domain.entities.rbac import Role


def _seed(store) -> None:
    store.add_role("viewer", ["dashboard.read", "chart.read"])
    store.grant("u1", "ws-1", "viewer")


@pytest.mark.asyncio
async def test_has_permission(store, authz) -> None:
    _seed(store)
    assert await authz.has_permission("u1", "ws-1", "dashboard.read")
    assert not await authz.has_permission("u1", "ws-1", "dashboard.write")
    assert not await authz.has_permission("u1", "ws-2", "dashboard.read")


@pytest.mark.asyncio
async def test_any_and_all_on_empty_input(store, authz) -> None:
    _seed(store)
    assert await authz.has_any_permission("u1", "ws-1", []) is False
    assert await authz.has_all_permissions("u1", "ws-1", []) is True


@pytest.mark.asyncio
async def test_any_and_all(store, authz) -> None:
    _seed(store)
    assert await authz.has_any_permission("u1", "ws-1", ["dashboard.write", "chart.read"])
    assert not await authz.has_any_permission("u1", "ws-1", ["dashboard.write"])
    assert await authz.has_all_permissions("u1", "ws-1", ["dashboard.read", "chart.read"])
    assert not await authz.has_all_permissions("u1", "ws-1", ["dashboard.read", "dashboard.write"])


@pytest.mark.asyncio
async def test_store_outage_denies(store, authz) -> None:
    _seed(store)
    store.failing.update({"aggregate", "view", "join"})
    assert not await authz.has_permission("u1", "ws-1", "dashboard.read")
    assert not await authz.has_any_permission("u1", "ws-1", ["dashboard.read"])


@pytest.mark.asyncio
async def test_check_permission_explanations(store, authz) -> None:
    _seed(store)
    granted = await authz.check_permission("u1", "ws-1", "chart.read")
    assert granted.granted
    assert granted.explanation == "User has permission: chart.read"

    denied = await authz.check_permission("u1", "ws-1", "export.run")
    assert not denied.granted
    assert denied.explanation == "User does not have permission: export.run. Available: chart.read, dashboard.read"

    nothing = await authz.check_permission("u9", "ws-1", "export.run")
    assert nothing.explanation.endswith("Available: none")


@pytest.mark.asyncio
async def test_check_permission_truncates_long_listing(store, authz) -> None:
    names = [f"perm.p{i:02d}" for i in range(EXPLANATION_LIMIT + 3)]
    for name in names:
        store.add_permission(name)
    store.add_role("big", names)
    store.grant("u1", "ws-1", "big")

    result = await authz.check_permission("u1", "ws-1", "export.run")
    listed = result.explanation.split("Available: ")[1]
    assert listed.endswith("...")
    assert listed[:-3].split(", ") == names[:EXPLANATION_LIMIT]
    assert len(result.permissions) == len(names)


@pytest.mark.asyncio
async def test_check_permissions_batch(store, authz) -> None:
    _seed(store)
    assert await authz.check_permissions("u1", "ws-1", ["chart.read", "export.run"]) == {
        "chart.read": True,
        "export.run": False,
    }


def test_admin_role_detection() -> None:
    assert is_admin_role(Role(id="1", name="Workspace Admin"))
    assert is_admin_role(Role(id="2", name="owner", level=80))
    assert is_admin_role(Role(id="3", name="ops", permissions=["workspace.admin"]))
    assert not is_admin_role(Role(id="4", name="editor", level=50))


@pytest.mark.asyncio
async def test_summary(store, authz) -> None:
    _seed(store)
    store.add_role("owner", ["workspace.admin"], level=90)
    store.grant("u1", "ws-1", "owner")

    summary = await authz.get_permission_summary("u1", "ws-1")
    assert summary.permissions == ("chart.read", "dashboard.read", "workspace.admin")
    assert summary.permission_count == 3
    assert summary.role_count == 2
    assert summary.roles[0].id == "owner"
    assert summary.is_admin
    assert await authz.is_user_admin("u1", "ws-1")
    assert not await authz.is_user_admin("u2", "ws-1")
