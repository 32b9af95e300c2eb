from __future__ import annotations

import fnmatch
import re
import time
from abc import ABC, abstractmethod
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from workspace_rbac.errors import CacheUnavailableError
from workspace_rbac.configs.logging_config import get_logger

log = get_logger(__name__)

_GLOB_CHARS = re.compile(r"[*?\[\]\\]")


class CacheBackend(ABC):
    """
    Raw string key-value storage with optional per-key TTL (seconds).

    Backends raise CacheUnavailableError; swallowing is the cache's job.
    """

    name = "backend"

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> int:
        pass

    @abstractmethod
    async def delete_pattern(self, pattern: str) -> int:
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    async def ping(self) -> bool:
        pass


class RedisCacheBackend(CacheBackend):
    name = "redis"

    def __init__(self, client: redis.Redis, scan_count: int = 500):
        self._client = client
        self._scan_count = scan_count

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(key)
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"redis get failed: {e}") from e

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        try:
            await self._client.set(key, value, ex=ttl if ttl and ttl > 0 else None)
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"redis set failed: {e}") from e

    async def delete(self, key: str) -> int:
        try:
            return int(await self._client.delete(key))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"redis delete failed: {e}") from e

    async def delete_pattern(self, pattern: str) -> int:
        # SCAN rather than KEYS so a large keyspace does not block the server
        deleted = 0
        batch: list[str] = []
        try:
            async for key in self._client.scan_iter(match=pattern, count=self._scan_count):
                batch.append(key)
                if len(batch) >= self._scan_count:
                    deleted += int(await self._client.delete(*batch))
                    batch = []
            if batch:
                deleted += int(await self._client.delete(*batch))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"redis delete_pattern failed: {e}") from e
        return deleted

    async def exists(self, key: str) -> bool:
        try:
            return int(await self._client.exists(key)) == 1
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"redis exists failed: {e}") from e

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"redis ping failed: {e}") from e


def compile_glob(pattern: str):
    """
    Turn a Redis-style glob into a key predicate.

    A pattern whose only metacharacter is one trailing `*` becomes a plain
    prefix test; anything else goes through fnmatch's regex translation.
    """
    if pattern.endswith("*") and not _GLOB_CHARS.search(pattern[:-1]):
        prefix = pattern[:-1]
        return lambda key: key.startswith(prefix)
    if not _GLOB_CHARS.search(pattern):
        return lambda key: key == pattern
    regex = re.compile(fnmatch.translate(_redis_escapes_to_classes(pattern)))
    return lambda key: regex.match(key) is not None


def _redis_escapes_to_classes(pattern: str) -> str:
    # Redis escapes metacharacters with a backslash, fnmatch with [x]
    out = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "\\" and i + 1 < len(pattern):
            nxt = pattern[i + 1]
            out.append(f"[{nxt}]" if nxt != "]" else "]")
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


class MemoryCacheBackend(CacheBackend):
    """
    In-process fallback. Expiry is checked lazily on access; expired
    entries are also swept whenever a pattern delete walks the keys.
    """

    name = "memory"

    def __init__(self, clock=time.monotonic):
        self._data: dict[str, tuple[str, Optional[float]]] = {}
        self._clock = clock

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            self._data.pop(key, None)
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl and ttl > 0 else None
        self._data[key] = (value, expires_at)

    async def delete(self, key: str) -> int:
        return 1 if self._data.pop(key, None) is not None else 0

    async def delete_pattern(self, pattern: str) -> int:
        matches = compile_glob(pattern)
        now = self._clock()
        deleted = 0
        for key in list(self._data):
            _, expires_at = self._data[key]
            if matches(key):
                del self._data[key]
                deleted += 1
            elif expires_at is not None and expires_at <= now:
                del self._data[key]
        return deleted

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    async def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._data)
