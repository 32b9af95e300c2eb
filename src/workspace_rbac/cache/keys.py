from __future__ import annotations

import re

_GLOB_META = re.compile(r"([*?\[\]\\])")

PERMISSIONS = "permissions"
USER_ROLES = "user_roles"
GENERATION = "gen"


def escape_glob(value: str) -> str:
    return _GLOB_META.sub(r"\\\1", value)


class CacheKeys:
    """
    Deterministic key layout: `{prefix}{kind}:{user_id}:{workspace_id}`.

    Generation markers live under `gen` and are never matched by the
    eviction patterns.
    """

    def __init__(self, prefix: str = ""):
        self._prefix = prefix

    def permissions(self, user_id: str, workspace_id: str) -> str:
        return f"{self._prefix}{PERMISSIONS}:{user_id}:{workspace_id}"

    def user_roles(self, user_id: str, workspace_id: str) -> str:
        return f"{self._prefix}{USER_ROLES}:{user_id}:{workspace_id}"

    def for_pair(self, user_id: str, workspace_id: str) -> list[str]:
        return [self.permissions(user_id, workspace_id), self.user_roles(user_id, workspace_id)]

    def workspace_patterns(self, workspace_id: str) -> list[str]:
        ws = escape_glob(workspace_id)
        prefix = escape_glob(self._prefix)
        return [f"{prefix}{PERMISSIONS}:*:{ws}", f"{prefix}{USER_ROLES}:*:{ws}"]

    def all_patterns(self) -> list[str]:
        prefix = escape_glob(self._prefix)
        return [f"{prefix}{PERMISSIONS}:*", f"{prefix}{USER_ROLES}:*"]

    def pair_generation(self, user_id: str, workspace_id: str) -> str:
        return f"{self._prefix}{GENERATION}:pair:{user_id}:{workspace_id}"

    def workspace_generation(self, workspace_id: str) -> str:
        return f"{self._prefix}{GENERATION}:workspace:{workspace_id}"

    def global_generation(self) -> str:
        return f"{self._prefix}{GENERATION}:all"

    def generations(self, user_id: str, workspace_id: str) -> list[str]:
        return [
            self.pair_generation(user_id, workspace_id),
            self.workspace_generation(workspace_id),
            self.global_generation(),
        ]
