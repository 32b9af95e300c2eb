from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

from workspace_rbac.configs.logging_config import get_logger
from workspace_rbac.domain.entities.resolution import ResolutionResult
from workspace_rbac.errors import StoreUnavailableError
from workspace_rbac.repositories.permission_repository import PermissionRepository

log = get_logger(__name__)


class ResolutionStrategy(ABC):
    """
    Template-method base class.
    Concrete strategies override only _resolve_core().

    resolve() never raises: store errors, timeouts and "not installed"
    answers all come back as a failed ResolutionResult so the caller can
    move on to the next strategy.
    """

    def __init__(self, repo: PermissionRepository, timeout: Optional[float] = None):
        self._repo = repo
        self._timeout = timeout

    # ----------------------------
    # Public API
    # ----------------------------

    async def resolve(self, user_id: str, workspace_id: str) -> ResolutionResult:
        try:
            names = await asyncio.wait_for(
                self._resolve_core(user_id, workspace_id), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            log.warning(
                "perm.strategy.timeout strategy=%s user=%s workspace=%s timeout=%s",
                self.name(),
                user_id,
                workspace_id,
                self._timeout,
            )
            return ResolutionResult.failed(self.name(), "timeout")
        except StoreUnavailableError as e:
            log.warning(
                "perm.strategy.store_unavailable strategy=%s user=%s workspace=%s error=%s",
                self.name(),
                user_id,
                workspace_id,
                e,
            )
            return ResolutionResult.failed(self.name(), str(e))
        except Exception as e:
            log.warning(
                "perm.strategy.error strategy=%s user=%s workspace=%s error=%s",
                self.name(),
                user_id,
                workspace_id,
                e,
                exc_info=True,
            )
            return ResolutionResult.failed(self.name(), str(e))

        if names is None:
            log.info("perm.strategy.unavailable strategy=%s", self.name())
            return ResolutionResult.failed(self.name(), "unavailable")

        log.debug(
            "perm.strategy.ok strategy=%s user=%s workspace=%s count=%s",
            self.name(),
            user_id,
            workspace_id,
            len(names),
        )
        return ResolutionResult.success(self.name(), names)

    # ----------------------------
    # Mandatory override
    # ----------------------------

    @abstractmethod
    async def _resolve_core(self, user_id: str, workspace_id: str) -> Optional[list[str]]:
        """
        Return the effective permission names, or None when this strategy
        cannot answer (its server-side support is missing).
        """
        pass

    @abstractmethod
    def name(self) -> str:
        pass
