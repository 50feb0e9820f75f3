"""Shared key-value store for circuit and limit-cache state.

Values are JSON-serializable and every key carries a TTL, so a crashed
worker never leaves a circuit stuck. Two implementations:
  - InMemoryStore: single process, injectable clock (tests, dev)
  - RedisStore: shared across workers via redis.asyncio
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    @abstractmethod
    async def get(self, key: str, default: Any = None) -> Any: ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int) -> None: ...

    @abstractmethod
    async def delete(self, *keys: str) -> None: ...


class InMemoryStore(KeyValueStore):
    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: dict[str, tuple[Any, float]] = {}

    async def get(self, key: str, default: Any = None) -> Any:
        entry = self._data.get(key)
        if entry is None:
            return default
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._data[key]
            return default
        return value

    async def set(self, key: str, value: Any, ttl: int) -> None:
        self._data[key] = (value, self._clock() + ttl)

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()


class RedisStore(KeyValueStore):
    def __init__(self, redis: Redis, prefix: str = "aigateway:"):
        self.redis = redis
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, **kwargs) -> RedisStore:
        return cls(Redis.from_url(url, decode_responses=True), **kwargs)

    async def get(self, key: str, default: Any = None) -> Any:
        raw = await self.redis.get(self.prefix + key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding undecodable store value for %s", key)
            return default

    async def set(self, key: str, value: Any, ttl: int) -> None:
        await self.redis.set(self.prefix + key, json.dumps(value), ex=ttl)

    async def delete(self, *keys: str) -> None:
        if keys:
            await self.redis.delete(*(self.prefix + k for k in keys))


def create_store(redis_url: str = "") -> KeyValueStore:
    """RedisStore when a URL is configured, otherwise a process-local store."""
    if redis_url:
        return RedisStore.from_url(redis_url)
    return InMemoryStore()
