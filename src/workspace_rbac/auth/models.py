from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Principal:
    """Authenticated caller scoped to the workspace named by the request."""

    user_id: str
    workspace_id: str
