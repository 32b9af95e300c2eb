from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from workspace_rbac.domain.entities.rbac import Role


@dataclass(frozen=True)
class ResolutionResult:
    """Outcome of a single strategy attempt; `permissions` is None on failure."""

    strategy: str
    permissions: Optional[frozenset[str]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.permissions is not None

    @classmethod
    def success(cls, strategy: str, names) -> "ResolutionResult":
        return cls(strategy=strategy, permissions=frozenset(names))

    @classmethod
    def failed(cls, strategy: str, error: str) -> "ResolutionResult":
        return cls(strategy=strategy, error=error)


@dataclass(frozen=True)
class PermissionCheck:
    granted: bool
    explanation: str
    permissions: tuple[str, ...] = ()


@dataclass(frozen=True)
class PermissionSummary:
    user_id: str
    workspace_id: str
    permissions: tuple[str, ...]
    roles: tuple[Role, ...]
    is_admin: bool
    last_updated: str
    permission_count: int = field(init=False)
    role_count: int = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "permission_count", len(self.permissions))
        object.__setattr__(self, "role_count", len(self.roles))
