from __future__ import annotations

from fastapi import APIRouter, Request

from workspace_rbac.utils.response import success

router = APIRouter()


@router.get("/health")
async def health(request: Request) -> dict:
    cache = getattr(request.app.state, "cache", None)
    cache_info = await cache.info() if cache is not None else None
    # a degraded cache is still healthy: authorization stays correct, only slower
    return success({"ok": True, "cache": cache_info}, message="healthy")
