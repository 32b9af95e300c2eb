from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

import time

from workspace_rbac.cache.backends import MemoryCacheBackend, RedisCacheBackend
from workspace_rbac.cache.key_value_cache import KeyValueCache
from workspace_rbac.cache.keys import CacheKeys
from workspace_rbac.configs.settings import Settings, get_settings
from workspace_rbac.configs.logging_config import get_logger, setup_logging
from workspace_rbac.errors import AppError
from workspace_rbac.repositories.mongo import get_mongo_client, get_mongo_db
from workspace_rbac.repositories.permission_repository import PermissionRepository
from workspace_rbac.repositories.redis_client import redis_client
from workspace_rbac.resolution.strategy_factory import StrategyFactory
from workspace_rbac.routers.health_router import router as health_router
from workspace_rbac.routers.permission_router import router as permission_router
from workspace_rbac.routers.role_router import router as role_router
from workspace_rbac.services.authorization_service import AuthorizationService
from workspace_rbac.services.invalidation_service import InvalidationCoordinator
from workspace_rbac.services.permission_resolver import PermissionResolver
from workspace_rbac.services.role_service import RoleService
from workspace_rbac.utils.response import failure

log = get_logger(__name__)


def build_services(repo: PermissionRepository, cache: KeyValueCache, settings: Settings) -> dict:
    keys = CacheKeys(settings.cache_key_prefix)
    strategies = StrategyFactory(repo, timeout=settings.strategy_timeout_seconds).chain(
        settings.resolution_strategies
    )
    resolver = PermissionResolver(
        repo,
        cache,
        strategies,
        keys=keys,
        permission_ttl=settings.permission_cache_ttl,
        role_ttl=settings.role_cache_ttl,
    )
    invalidation = InvalidationCoordinator(repo, cache, keys)
    return {
        "resolver": resolver,
        "invalidation": invalidation,
        "authorization_service": AuthorizationService(resolver),
        "role_service": RoleService(repo, invalidation),
    }


def create_app() -> FastAPI:
    app = FastAPI(title="workspace_rbac", version="0.1.0")
    settings: Settings = get_settings()
    # Normalize CORS origins from settings (.env can provide a comma-separated string)
    raw_origins = settings.CORS_ORIGINS
    if isinstance(raw_origins, str):
        origins = [o.strip() for o in raw_origins.split(",") if o.strip()]
    elif isinstance(raw_origins, (list, tuple, set)):
        origins = list(raw_origins)
    else:
        origins = []
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        start = time.perf_counter()
        method = request.method
        path = request.url.path
        request_id = request.headers.get("x-request-id") or request.headers.get("x-correlation-id")
        workspace_id = request.headers.get("x-workspace-id")

        log.info(
            "request.start method=%s path=%s request_id=%s workspace=%s",
            method,
            path,
            request_id,
            workspace_id,
        )
        response = None
        try:
            response = await call_next(request)
        finally:
            elapsed_ms = int((time.perf_counter() - start) * 1000)
            log.info(
                "request.end method=%s path=%s status=%s request_id=%s elapsed_ms=%s",
                method,
                path,
                getattr(response, "status_code", "unknown"),
                request_id,
                elapsed_ms,
            )
        return response

    app.include_router(health_router)
    app.include_router(permission_router)
    app.include_router(role_router)

    @app.exception_handler(AppError)
    async def app_error_handler(_: Request, exc: AppError) -> JSONResponse:
        log.info("request.error type=app_error status=%s message=%s", exc.http_status, exc.message)
        return JSONResponse(status_code=exc.http_status, content=failure(exc.message, exc.code))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(_: Request, exc: Exception) -> JSONResponse:
        log.exception("Unhandled error: %s", str(exc))
        return JSONResponse(status_code=500, content=failure("internal server error"))

    @app.on_event("startup")
    async def startup() -> None:
        setup_logging(settings.LOG_LEVEL)

        mongo_client = get_mongo_client(settings)
        mongo_db = get_mongo_db(mongo_client, settings)
        repo = PermissionRepository(mongo_db, settings)
        log.info("startup.ensure_indexes begin")
        await repo.ensure_indexes()
        await repo.ensure_views()
        log.info("startup.ensure_indexes done")

        primary = None
        if await redis_client.connect():
            primary = RedisCacheBackend(redis_client.client)
        cache = KeyValueCache(primary=primary, fallback=MemoryCacheBackend())
        log.info("startup.cache backend=%s", cache.backend_name)

        app.state.settings = settings
        app.state.mongo_client = mongo_client
        app.state.permission_repo = repo
        app.state.cache = cache
        for name, service in build_services(repo, cache, settings).items():
            setattr(app.state, name, service)

    @app.on_event("shutdown")
    async def shutdown() -> None:
        log.info("shutdown.begin")
        await redis_client.close()
        mongo_client = getattr(app.state, "mongo_client", None)
        if mongo_client is not None:
            mongo_client.close()
        log.info("shutdown.done")

    return app


app = create_app()
