import redis.asyncio as redis

from workspace_rbac.configs.settings import get_settings
from workspace_rbac.configs.logging_config import get_logger

log = get_logger(__name__)


class RedisClient:
    """
    Simple Redis client wrapper.

    Unlike the store connection, an unreachable Redis is not fatal at
    startup: `client` stays None and the cache runs on its in-process
    fallback.
    """

    client: redis.Redis = None

    async def connect(self) -> bool:
        settings = get_settings()
        if not settings.REDIS_ENABLED:
            log.info("redis.disabled REDIS_ENABLED=false")
            return False
        client = redis.from_url(settings.redis_url, decode_responses=True)
        try:
            log.info("redis.connect url=%s", settings.redis_url)
            await client.ping()
        except Exception as e:
            log.warning("redis.connect_failed running without shared cache: %s", e)
            await client.aclose()
            return False
        self.client = client
        log.info("redis.connected")
        return True

    async def close(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None


redis_client = RedisClient()
