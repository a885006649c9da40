"""Redis client for RouterWatch."""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as redis

from .config import settings


class RedisCache:
    """Async Redis client wrapper."""

    def __init__(self, url: str | None = None):
        self._url = url or settings.redis_url
        self._client: redis.Redis | None = None

    async def connect(self) -> None:
        """Connect to Redis."""
        self._client = redis.from_url(
            self._url,
            encoding="utf-8",
            decode_responses=True,
        )

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> redis.Redis:
        if not self._client:
            raise RuntimeError("Redis client not connected")
        return self._client

    async def get_json(self, key: str) -> Any | None:
        """Get and parse JSON from cache."""
        value = await self.client.get(key)
        if value:
            return json.loads(value)
        return None

    async def set(self, key: str, value: str | dict[str, Any] | list[Any]) -> None:
        """Set a value, JSON-encoding containers."""
        if isinstance(value, (dict, list)):
            value = json.dumps(value)
        await self.client.set(key, value)

    async def get(self, key: str) -> str | None:
        return await self.client.get(key)

    async def delete(self, key: str) -> None:
        """Delete a key from cache."""
        await self.client.delete(key)

    async def incr(self, key: str) -> int:
        return await self.client.incr(key)

    async def sadd(self, key: str, *values: str) -> None:
        """Add values to a set."""
        await self.client.sadd(key, *values)

    async def smembers(self, key: str) -> set[str]:
        """Get all members of a set."""
        return await self.client.smembers(key)

    async def hset_json(self, key: str, field: str, value: dict[str, Any]) -> None:
        """Store a JSON document under a hash field."""
        await self.client.hset(key, field, json.dumps(value))

    async def hgetall_json(self, key: str) -> dict[str, Any]:
        """Get every hash field, parsed."""
        raw = await self.client.hgetall(key)
        return {field: json.loads(value) for field, value in raw.items()}

    async def push_capped(self, key: str, value: dict[str, Any], limit: int) -> None:
        """Prepend a JSON document to a list, keeping the newest `limit` entries."""
        await self.client.lpush(key, json.dumps(value))
        await self.client.ltrim(key, 0, limit - 1)

    async def lrange_json(self, key: str, start: int = 0, end: int = -1) -> list[Any]:
        """Get list entries, parsed, newest first."""
        return [json.loads(v) for v in await self.client.lrange(key, start, end)]
