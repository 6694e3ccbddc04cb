"""Best-effort JSON access to Redis.

Every operation swallows backend failures, logs them and reports the outcome
through its return value, so an unreachable Redis behaves like a cache miss.
"""

import json
from typing import Any

import structlog
from pydantic import BaseModel
from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = structlog.get_logger()


def create_redis_client(url: str) -> Redis:
    """Create an asyncio Redis client returning ``str`` values."""
    return Redis.from_url(url, decode_responses=True)


class RedisJSONStore:
    """Thin JSON wrapper around an asyncio Redis client.

    Args:
        client: Connected client, or None to run without Redis.
    """

    def __init__(self, client: Redis | None):
        self.client = client

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def get_json(self, key: str) -> dict[str, Any] | None:
        """Return the decoded value at ``key``, or None on miss or failure."""
        if self.client is None:
            return None
        try:
            raw = await self.client.get(key)
        except (RedisError, OSError) as e:
            logger.warning("redis_get_failed", key=key, error=str(e))
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("redis_payload_invalid", key=key)
            return None

    async def set_json(
        self,
        key: str,
        value: BaseModel | dict[str, Any],
        ttl_seconds: int | None = None,
    ) -> bool:
        """Store ``value`` at ``key``. Returns False when the write did not happen."""
        if self.client is None:
            return False
        if isinstance(value, BaseModel):
            raw = value.model_dump_json()
        else:
            raw = json.dumps(value, default=str)
        try:
            await self.client.set(key, raw, ex=ttl_seconds)
        except (RedisError, OSError) as e:
            logger.warning("redis_set_failed", key=key, error=str(e))
            return False
        return True

    async def delete(self, *keys: str) -> bool:
        if self.client is None or not keys:
            return False
        try:
            await self.client.delete(*keys)
        except (RedisError, OSError) as e:
            logger.warning("redis_delete_failed", keys=list(keys), error=str(e))
            return False
        return True

    async def close(self) -> None:
        if self.client is None:
            return
        try:
            await self.client.aclose()
        except (RedisError, OSError) as e:
            logger.warning("redis_close_failed", error=str(e))
