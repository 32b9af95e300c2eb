from workspace_rbac.resolution.resolution_strategy import ResolutionStrategy


class AggregateStrategy(ResolutionStrategy):
    """Single server-side aggregation returning the whole set at once."""

    def name(self):
        return "aggregate"

    async def _resolve_core(self, user_id: str, workspace_id: str):
        return await self._repo.get_effective_permissions_aggregate(user_id, workspace_id)


class ProjectedViewStrategy(ResolutionStrategy):
    """Distinct names from the flattened, pre-filtered permissions view."""

    def name(self):
        return "view"

    async def _resolve_core(self, user_id: str, workspace_id: str):
        return await self._repo.get_effective_permissions_view(user_id, workspace_id)


class ManualJoinStrategy(ResolutionStrategy):
    """Last resort: assignment -> role -> permission joined client side."""

    def name(self):
        return "join"

    async def _resolve_core(self, user_id: str, workspace_id: str):
        return await self._repo.get_effective_permissions_join(user_id, workspace_id)
