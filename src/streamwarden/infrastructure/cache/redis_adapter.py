"""Redis adapter - async text store via redis.asyncio."""

from __future__ import annotations

import asyncio

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from streamwarden.domain.entities.errors import PersistenceError

log = structlog.get_logger(__name__)


class RedisAdapter:
    """Async Redis store with a semaphore bounding parallel commands.

    Read/write failures surface as ``PersistenceError`` so callers decide
    whether a missing write matters.

    Args:
        url: Redis URL (e.g. `redis://localhost:6379/0`).
        ttl_seconds: Default TTL; 0 = no expiry.
        max_concurrent: Max parallel Redis ops.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        ttl_seconds: int = 3600,
        max_concurrent: int = 50,
    ) -> None:
        self.url = url
        self.default_ttl = ttl_seconds
        self._client: Redis | None = None
        self._semaphore = asyncio.Semaphore(max_concurrent)

    async def __aenter__(self) -> RedisAdapter:
        if self._client is None:
            self._client = Redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
            )
            try:
                await self._client.ping()
                log.info("redis_connected", url=self.url)
            except RedisError as e:
                log.error("redis_connection_failed", url=self.url, error=str(e))
                await self._client.aclose()
                self._client = None
                raise PersistenceError(f"redis unreachable at {self.url}") from e
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            log.info("redis_closed")

    def _require(self) -> Redis:
        if self._client is None:
            raise RuntimeError("Redis not initialized. Use 'async with cache:'")
        return self._client

    async def get(self, key: str) -> str | None:
        client = self._require()
        async with self._semaphore:
            try:
                value = await client.get(key)
            except RedisError as e:
                log.error("redis_get_error", key=key, error=str(e))
                raise PersistenceError(str(e)) from e
        log.debug("cache_get", key=key, hit=value is not None)
        return value

    async def get_many(self, keys: list[str]) -> dict[str, str]:
        if not keys:
            return {}
        client = self._require()
        async with self._semaphore:
            try:
                values = await client.mget(keys)
            except RedisError as e:
                log.error("redis_mget_error", keys=len(keys), error=str(e))
                raise PersistenceError(str(e)) from e
        return {k: v for k, v in zip(keys, values) if v is not None}

    async def set(self, key: str, value: str, *, ttl: int | None = None) -> None:
        client = self._require()
        expire = self.default_ttl if ttl is None else ttl
        async with self._semaphore:
            try:
                if expire > 0:
                    await client.setex(key, expire, value)
                else:
                    await client.set(key, value)
            except RedisError as e:
                log.error("redis_set_error", key=key, error=str(e))
                raise PersistenceError(str(e)) from e
        log.debug("cache_set", key=key, ttl=expire, size_bytes=len(value))

    async def delete(self, key: str) -> bool:
        if self._client is None:
            return False
        async with self._semaphore:
            try:
                deleted = await self._client.delete(key)
            except RedisError as e:
                log.error("redis_delete_error", key=key, error=str(e))
                return False
        return deleted > 0

    async def exists(self, key: str) -> bool:
        if self._client is None:
            return False
        async with self._semaphore:
            try:
                return await self._client.exists(key) > 0
            except RedisError as e:
                log.error("redis_exists_error", key=key, error=str(e))
                return False

    async def clear(self) -> None:
        if self._client is None:
            return
        async with self._semaphore:
            try:
                await self._client.flushdb()
            except RedisError as e:
                log.error("redis_flush_error", error=str(e))
                raise PersistenceError(str(e)) from e
        log.warning("redis_flushed")
