from typing import Optional, Sequence

from workspace_rbac.resolution.resolution_strategies import (
    AggregateStrategy,
    ManualJoinStrategy,
    ProjectedViewStrategy,
)
from workspace_rbac.resolution.resolution_strategy import ResolutionStrategy
from workspace_rbac.repositories.permission_repository import PermissionRepository

DEFAULT_ORDER = ("aggregate", "view", "join")


class StrategyFactory:
    def __init__(self, repo: PermissionRepository, timeout: Optional[float] = None):
        self._strategies = {
            "aggregate": AggregateStrategy(repo, timeout),
            "view": ProjectedViewStrategy(repo, timeout),
            "join": ManualJoinStrategy(repo, timeout),
        }

    def get(self, name: str) -> ResolutionStrategy:
        if name not in self._strategies:
            raise ValueError(f"Unknown resolution strategy: {name}")
        return self._strategies[name]

    def chain(self, order: Sequence[str] = DEFAULT_ORDER) -> list[ResolutionStrategy]:
        if not order:
            raise ValueError("at least one resolution strategy is required")
        return [self.get(name) for name in dict.fromkeys(order)]
