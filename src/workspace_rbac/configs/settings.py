from __future__ import annotations

from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """
    Central configuration.

    - Values loaded from `.env`
    - Comma-separated lists for multi-value settings like CORS_ORIGINS
    """

    # ----------------------------
    # Service
    # ----------------------------
    SERVICE_NAME: str = "workspace-rbac-service"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # ----------------------------
    # Mongo (permission store)
    # ----------------------------
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "rbac"
    mongo_transactions_enabled: bool = False  # requires a replica set
    permissions_collection: str = "permissions"
    roles_collection: str = "roles"
    assignments_collection: str = "role_assignments"
    permissions_view: str = "user_permissions_view"

    # ----------------------------
    # Redis
    # ----------------------------
    REDIS_ENABLED: bool = True
    redis_url: str = "redis://localhost:6379/0"

    # ----------------------------
    # Permission cache
    # ----------------------------
    cache_key_prefix: str = ""
    permission_cache_ttl: int = 300  # 5 minutes
    role_cache_ttl: int = 600  # 10 minutes

    # ----------------------------
    # Resolution
    # ----------------------------
    strategy_timeout_seconds: float = 2.0
    resolution_strategies: list[str] = Field(
        default_factory=lambda: ["aggregate", "view", "join"]
    )

    # ----------------------------
    # Platform
    # ----------------------------
    # catalog edits touch every tenant; only grants held here unlock them
    platform_workspace_id: str = "platform"

    # ----------------------------
    # CORS
    # ----------------------------
    # store as raw string list from env; we will normalize in code
    CORS_ORIGINS: Any = Field(default_factory=list)

    # ----------------------------
    # JWT
    # ----------------------------
    jwt_alg: str = "HS256"
    jwt_secret: str = "change-me"
    jwt_audience: str | None = None
    jwt_issuer: str | None = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
