"""
Redis Key-Value Store Adapter

Production implementation of IKeyValueStore using Redis.
"""

import redis.asyncio as redis
from redis.exceptions import RedisError

from localite_mfa.core.config import StoreConfig
from localite_mfa.core.errors import StoreUnavailableError
from localite_mfa.core.logging import get_logger

logger = get_logger(__name__)

# KEYS[1] key; ARGV: expect_absent, expected, delete, value, ttl
COMPARE_AND_SET_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if ARGV[1] == '1' then
    if current then
        return 0
    end
elseif current ~= ARGV[2] then
    return 0
end
if ARGV[3] == '1' then
    redis.call('DEL', KEYS[1])
elseif tonumber(ARGV[5]) > 0 then
    redis.call('SET', KEYS[1], ARGV[4], 'EX', ARGV[5])
else
    redis.call('SET', KEYS[1], ARGV[4])
end
return 1
"""


def create_redis_client(config: StoreConfig) -> redis.Redis:
    """Build an async Redis client from store configuration."""
    return redis.from_url(
        config.redis_url,
        password=config.redis_password,
        db=config.redis_db,
        max_connections=config.redis_pool_size,
        socket_timeout=config.redis_timeout,
        socket_connect_timeout=config.redis_timeout,
        decode_responses=True,
    )


class RedisKeyValueStore:
    """Redis implementation of the MFA key-value store."""

    def __init__(self, redis_client: redis.Redis):
        """Initialize Redis store adapter.

        Args:
            redis_client: Async Redis client created with ``decode_responses=True``
        """
        self._redis = redis_client
        self._cas_script = redis_client.register_script(COMPARE_AND_SET_SCRIPT)

    def _unavailable(self, operation: str, key: str, error: Exception) -> StoreUnavailableError:
        logger.error("Redis operation failed", operation=operation, key=key, error=str(error))
        return StoreUnavailableError(operation, str(error), cause=error)

    async def get(self, key: str) -> str | None:
        try:
            return await self._redis.get(key)
        except (RedisError, OSError) as e:
            raise self._unavailable("get", key, e) from e

    async def set(self, key: str, value: str) -> None:
        try:
            await self._redis.set(key, value)
        except (RedisError, OSError) as e:
            raise self._unavailable("set", key, e) from e

    async def set_with_ttl(self, key: str, value: str, ttl: int) -> None:
        try:
            await self._redis.setex(key, ttl, value)
        except (RedisError, OSError) as e:
            raise self._unavailable("set_with_ttl", key, e) from e

    async def delete(self, key: str) -> bool:
        try:
            return await self._redis.delete(key) > 0
        except (RedisError, OSError) as e:
            raise self._unavailable("delete", key, e) from e

    async def increment(self, key: str) -> int:
        try:
            return await self._redis.incr(key)
        except (RedisError, OSError) as e:
            raise self._unavailable("increment", key, e) from e

    async def increment_with_ttl(self, key: str, ttl: int) -> int:
        """Increment and refresh the TTL inside one MULTI/EXEC transaction."""
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, ttl)
                count, _ = await pipe.execute()
            return int(count)
        except (RedisError, OSError) as e:
            raise self._unavailable("increment_with_ttl", key, e) from e

    async def expire(self, key: str, ttl: int) -> bool:
        try:
            return bool(await self._redis.expire(key, ttl))
        except (RedisError, OSError) as e:
            raise self._unavailable("expire", key, e) from e

    async def keys(self, pattern: str) -> list[str]:
        # SCAN instead of KEYS to avoid blocking the server
        try:
            return [key async for key in self._redis.scan_iter(match=pattern, count=100)]
        except (RedisError, OSError) as e:
            raise self._unavailable("keys", pattern, e) from e

    async def ttl(self, key: str) -> int:
        try:
            return int(await self._redis.ttl(key))
        except (RedisError, OSError) as e:
            raise self._unavailable("ttl", key, e) from e

    async def compare_and_set(
        self, key: str, expected: str | None, value: str | None, ttl: int | None = None
    ) -> bool:
        args = [
            "1" if expected is None else "0",
            expected or "",
            "1" if value is None else "0",
            value or "",
            str(ttl or 0),
        ]
        try:
            return bool(await self._cas_script(keys=[key], args=args))
        except (RedisError, OSError) as e:
            raise self._unavailable("compare_and_set", key, e) from e

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except (RedisError, OSError) as e:
            raise self._unavailable("ping", "-", e) from e

    async def close(self) -> None:
        await self._redis.aclose()
