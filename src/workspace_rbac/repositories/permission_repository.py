from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import CollectionInvalid, DuplicateKeyError, PyMongoError

from workspace_rbac.configs.settings import Settings
from workspace_rbac.domain.entities.rbac import Permission, Role, RoleAssignment
from workspace_rbac.errors import (
    InvalidRoleReferenceError,
    MutationConflictError,
    NotFoundError,
    StoreUnavailableError,
)
from workspace_rbac.configs.logging_config import get_logger
from workspace_rbac.utils.time_utils import utc_now

log = get_logger(__name__)


def effective_assignment_filter(user_id: str, workspace_id: str, now: datetime) -> dict[str, Any]:
    return {
        "user_id": user_id,
        "workspace_id": workspace_id,
        "is_active": True,
        "$or": [{"expires_at": None}, {"expires_at": {"$gt": now}}],
    }


def build_aggregate_pipeline(
    user_id: str,
    workspace_id: str,
    now: datetime,
    roles_collection: str,
    permissions_collection: str,
) -> list[dict[str, Any]]:
    """
    One server-side pass producing a single `{permissions: [...]}` document.
    No document at all means the pair holds nothing.
    """
    return [
        {"$match": effective_assignment_filter(user_id, workspace_id, now)},
        {
            "$lookup": {
                "from": roles_collection,
                "localField": "role_id",
                "foreignField": "_id",
                "as": "role",
            }
        },
        {"$unwind": "$role"},
        {"$match": {"role.is_active": True}},
        {"$unwind": "$role.permissions"},
        {
            "$lookup": {
                "from": permissions_collection,
                "localField": "role.permissions",
                "foreignField": "name",
                "as": "permission",
            }
        },
        {"$match": {"permission.is_active": True}},
        {"$group": {"_id": None, "permissions": {"$addToSet": "$role.permissions"}}},
    ]


def build_view_pipeline(roles_collection: str, permissions_collection: str) -> list[dict[str, Any]]:
    """
    Definition of the flattened assignment -> role -> permission view.

    One row per (assignment, permission); `is_permission_active` folds the
    assignment, role, permission and expiry checks together and is
    evaluated at read time through $$NOW.
    """
    return [
        {
            "$lookup": {
                "from": roles_collection,
                "localField": "role_id",
                "foreignField": "_id",
                "as": "role",
            }
        },
        {"$unwind": "$role"},
        {"$unwind": "$role.permissions"},
        {
            "$lookup": {
                "from": permissions_collection,
                "localField": "role.permissions",
                "foreignField": "name",
                "as": "permission",
            }
        },
        {"$unwind": "$permission"},
        {
            "$project": {
                "_id": 0,
                "user_id": 1,
                "workspace_id": 1,
                "role_id": 1,
                "role_name": "$role.name",
                "role_level": "$role.level",
                "permission_name": "$permission.name",
                "assigned_at": 1,
                "expires_at": 1,
                "is_permission_active": {
                    "$and": [
                        {"$eq": ["$is_active", True]},
                        {"$eq": ["$role.is_active", True]},
                        {"$eq": ["$permission.is_active", True]},
                        {
                            "$or": [
                                {"$eq": [{"$ifNull": ["$expires_at", None]}, None]},
                                {"$gt": ["$expires_at", "$$NOW"]},
                            ]
                        },
                    ]
                },
            }
        },
    ]


def role_from_doc(doc: dict[str, Any]) -> Role:
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    return Role(**doc)


def assignment_from_doc(doc: dict[str, Any]) -> RoleAssignment:
    doc = dict(doc)
    doc.pop("_id", None)
    return RoleAssignment(**doc)


class PermissionRepository:
    def __init__(self, db: AsyncIOMotorDatabase, settings: Settings):
        self._db = db
        self._settings = settings
        self._permissions = db[settings.permissions_collection]
        self._roles = db[settings.roles_collection]
        self._assignments = db[settings.assignments_collection]
        self._view_name = settings.permissions_view
        self._view_ready = False

    # ----------------------------
    # Bootstrap
    # ----------------------------

    async def ensure_indexes(self) -> None:
        log.info("repo.rbac.ensure_indexes start")
        await self._permissions.create_index([("name", ASCENDING)], unique=True)
        await self._roles.create_index([("workspace_id", ASCENDING), ("name", ASCENDING)], unique=True)
        await self._assignments.create_index(
            [("user_id", ASCENDING), ("workspace_id", ASCENDING), ("role_id", ASCENDING)],
            unique=True,
        )
        await self._assignments.create_index([("role_id", ASCENDING), ("is_active", ASCENDING)])
        log.info("repo.rbac.ensure_indexes done")

    async def ensure_views(self) -> None:
        try:
            await self._db.create_collection(
                self._view_name,
                viewOn=self._assignments.name,
                pipeline=build_view_pipeline(self._roles.name, self._permissions.name),
            )
            log.info("repo.rbac.view_created view=%s", self._view_name)
        except CollectionInvalid:
            log.info("repo.rbac.view_exists view=%s", self._view_name)
        self._view_ready = True

    @asynccontextmanager
    async def _transaction(self):
        if not self._settings.mongo_transactions_enabled:
            yield None
            return
        async with await self._db.client.start_session() as session:
            async with session.start_transaction():
                yield session

    # ----------------------------
    # Effective permission queries
    # ----------------------------

    async def get_effective_permissions_aggregate(
        self, user_id: str, workspace_id: str
    ) -> Optional[list[str]]:
        pipeline = build_aggregate_pipeline(
            user_id, workspace_id, utc_now(), self._roles.name, self._permissions.name
        )
        try:
            docs = await self._assignments.aggregate(pipeline).to_list(length=1)
        except PyMongoError as e:
            raise StoreUnavailableError(f"aggregate query failed: {e}") from e
        if not docs:
            return []
        return sorted(docs[0].get("permissions") or [])

    async def _view_available(self) -> bool:
        if self._view_ready:
            return True
        names = await self._db.list_collection_names(filter={"name": self._view_name, "type": "view"})
        self._view_ready = bool(names)
        return self._view_ready

    async def get_effective_permissions_view(
        self, user_id: str, workspace_id: str
    ) -> Optional[list[str]]:
        try:
            if not await self._view_available():
                log.info("repo.rbac.view_missing view=%s", self._view_name)
                return None
            cursor = self._db[self._view_name].find(
                {"user_id": user_id, "workspace_id": workspace_id, "is_permission_active": True},
                projection={"_id": 0, "permission_name": 1},
            )
            rows = await cursor.to_list(length=None)
        except PyMongoError as e:
            raise StoreUnavailableError(f"view query failed: {e}") from e
        return sorted({r["permission_name"] for r in rows if r.get("permission_name")})

    async def get_effective_permissions_join(self, user_id: str, workspace_id: str) -> list[str]:
        try:
            assignments = await self._assignments.find(
                effective_assignment_filter(user_id, workspace_id, utc_now()),
                projection={"_id": 0, "role_id": 1},
            ).to_list(length=None)
            role_ids = list({a["role_id"] for a in assignments})
            if not role_ids:
                return []

            roles = await self._roles.find(
                {"_id": {"$in": role_ids}, "is_active": True},
                projection={"permissions": 1},
            ).to_list(length=None)
            names = {p for r in roles for p in (r.get("permissions") or [])}
            if not names:
                return []

            known = await self._permissions.find(
                {"name": {"$in": list(names)}, "is_active": True},
                projection={"_id": 0, "name": 1},
            ).to_list(length=None)
        except PyMongoError as e:
            raise StoreUnavailableError(f"join query failed: {e}") from e
        return sorted({p["name"] for p in known})

    async def get_active_assignments_for_role(self, role_id: str) -> list[tuple[str, str]]:
        try:
            rows = await self._assignments.find(
                {"role_id": role_id, "is_active": True},
                projection={"_id": 0, "user_id": 1, "workspace_id": 1},
            ).to_list(length=None)
        except PyMongoError as e:
            raise StoreUnavailableError(f"assignment lookup failed: {e}") from e
        return sorted({(r["user_id"], r["workspace_id"]) for r in rows})

    async def get_user_roles(self, user_id: str, workspace_id: str) -> list[Role]:
        try:
            assignments = await self._assignments.find(
                effective_assignment_filter(user_id, workspace_id, utc_now()),
                projection={"_id": 0, "role_id": 1},
            ).to_list(length=None)
            role_ids = list({a["role_id"] for a in assignments})
            if not role_ids:
                return []
            docs = await self._roles.find(
                {"_id": {"$in": role_ids}, "is_active": True},
                sort=[("level", DESCENDING), ("name", ASCENDING)],
            ).to_list(length=None)
        except PyMongoError as e:
            raise StoreUnavailableError(f"user roles query failed: {e}") from e
        return [role_from_doc(d) for d in docs]

    # ----------------------------
    # Roles
    # ----------------------------

    async def get_role(self, role_id: str) -> Optional[Role]:
        doc = await self._roles.find_one({"_id": role_id})
        return role_from_doc(doc) if doc else None

    async def list_roles(self, workspace_id: str, include_inactive: bool = False) -> list[Role]:
        query: dict[str, Any] = {"$or": [{"workspace_id": workspace_id}, {"is_system": True}]}
        if not include_inactive:
            query["is_active"] = True
        docs = await self._roles.find(
            query, sort=[("is_system", DESCENDING), ("level", DESCENDING), ("name", ASCENDING)]
        ).to_list(length=None)
        return [role_from_doc(d) for d in docs]

    async def create_role(
        self,
        *,
        workspace_id: str,
        name: str,
        display_name: str | None,
        description: str | None,
        permissions: list[str],
        level: int,
        created_by: str,
    ) -> Role:
        now = utc_now()
        doc: dict[str, Any] = {
            "_id": uuid.uuid4().hex,
            "workspace_id": workspace_id,
            "name": name,
            "display_name": display_name or name,
            "description": description,
            "permissions": list(dict.fromkeys(permissions)),
            "level": level,
            "is_system": False,
            "is_active": True,
            "created_by": created_by,
            "created_at": now,
            "updated_at": now,
        }
        log.info("repo.rbac.create_role workspace_id=%s name=%s", workspace_id, name)
        try:
            await self._roles.insert_one(doc)
        except DuplicateKeyError as e:
            raise MutationConflictError(f"role '{name}' already exists in workspace") from e
        return role_from_doc(doc)

    async def update_role(self, role_id: str, updates: dict[str, Any], *, workspace_id: str) -> Role:
        log.info(
            "repo.rbac.update_role workspace_id=%s role_id=%s keys=%s",
            workspace_id,
            role_id,
            sorted(updates.keys()),
        )
        if "permissions" in updates:
            updates["permissions"] = list(dict.fromkeys(updates["permissions"]))
        updates["updated_at"] = utc_now()
        try:
            doc = await self._roles.find_one_and_update(
                {"_id": role_id, "workspace_id": workspace_id, "is_system": False},
                {"$set": updates},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError as e:
            raise MutationConflictError("role name already exists in workspace") from e
        if doc:
            return role_from_doc(doc)
        existing = await self._roles.find_one({"_id": role_id}, projection={"is_system": 1})
        if existing and existing.get("is_system"):
            raise MutationConflictError("system roles cannot be modified")
        # roles of other workspaces are reported exactly like missing ones
        raise NotFoundError("role not found")

    async def delete_role(self, role_id: str, *, workspace_id: str) -> None:
        async with self._transaction() as session:
            role = await self._roles.find_one({"_id": role_id}, session=session)
            if not role:
                raise NotFoundError("role not found")
            if role.get("is_system"):
                raise MutationConflictError("system roles cannot be deleted")
            if role.get("workspace_id") != workspace_id:
                raise NotFoundError("role not found")
            in_use = await self._assignments.count_documents(
                {"role_id": role_id, "is_active": True}, session=session
            )
            if in_use > 0:
                log.info("repo.rbac.delete_role rejected role_id=%s in_use=%s", role_id, in_use)
                raise MutationConflictError("cannot delete role that is currently assigned to users")
            await self._roles.delete_one(
                {"_id": role_id, "workspace_id": workspace_id, "is_system": False}, session=session
            )
        log.info("repo.rbac.delete_role role_id=%s", role_id)

    # ----------------------------
    # Assignments
    # ----------------------------

    async def assign_role(
        self,
        *,
        user_id: str,
        workspace_id: str,
        role_id: str,
        assigned_by: str,
        expires_at: datetime | None = None,
    ) -> RoleAssignment:
        async with self._transaction() as session:
            role = await self._roles.find_one(
                {"_id": role_id}, projection={"is_active": 1, "workspace_id": 1}, session=session
            )
            if not role or not role.get("is_active"):
                raise InvalidRoleReferenceError()
            if role.get("workspace_id") not in (None, workspace_id):
                raise InvalidRoleReferenceError("role belongs to another workspace")
            doc = await self._assignments.find_one_and_update(
                {"user_id": user_id, "workspace_id": workspace_id, "role_id": role_id},
                {
                    "$set": {
                        "is_active": True,
                        "assigned_by": assigned_by,
                        "assigned_at": utc_now(),
                        "expires_at": expires_at,
                    }
                },
                upsert=True,
                return_document=ReturnDocument.AFTER,
                session=session,
            )
        log.info(
            "repo.rbac.assign_role user_id=%s workspace_id=%s role_id=%s expires_at=%s",
            user_id,
            workspace_id,
            role_id,
            expires_at,
        )
        return assignment_from_doc(doc)

    async def revoke_role(self, *, user_id: str, workspace_id: str, role_id: str) -> None:
        res = await self._assignments.update_one(
            {"user_id": user_id, "workspace_id": workspace_id, "role_id": role_id},
            {"$set": {"is_active": False}},
        )
        if res.matched_count == 0:
            raise NotFoundError("role assignment not found")
        log.info(
            "repo.rbac.revoke_role user_id=%s workspace_id=%s role_id=%s",
            user_id,
            workspace_id,
            role_id,
        )

    # ----------------------------
    # Permission catalog
    # ----------------------------

    async def list_permissions(self, include_inactive: bool = False) -> list[Permission]:
        query = {} if include_inactive else {"is_active": True}
        docs = await self._permissions.find(
            query, projection={"_id": 0}, sort=[("category", ASCENDING), ("name", ASCENDING)]
        ).to_list(length=None)
        return [Permission(**d) for d in docs]

    async def upsert_permission(self, permission: Permission) -> Permission:
        await self._permissions.update_one(
            {"name": permission.name}, {"$set": permission.model_dump()}, upsert=True
        )
        log.info("repo.rbac.upsert_permission name=%s", permission.name)
        return permission

    async def deactivate_permission(self, name: str) -> None:
        res = await self._permissions.update_one({"name": name}, {"$set": {"is_active": False}})
        if res.matched_count == 0:
            raise NotFoundError("permission not found")
        log.info("repo.rbac.deactivate_permission name=%s", name)
