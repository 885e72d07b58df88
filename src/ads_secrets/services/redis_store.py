from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import redis.asyncio as redis_lib
from redis.exceptions import RedisError

from ads_secrets.security.errors import StorageError

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def system_clock_ms() -> int:
    return int(time.time() * 1000)


def _decode(key: str, value: str | None) -> Optional[dict]:
    if not value:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        raise StorageError(f"Stored value for {key} is not valid JSON") from exc


class KVStore:
    """Key-value backend holding JSON documents, with optional per-key TTL."""

    async def get_json(self, key: str) -> Optional[dict]:
        raise NotImplementedError

    async def set_json(self, key: str, value: dict, ttl_seconds: int | None = None) -> None:
        raise NotImplementedError

    async def delete(self, *keys: str) -> int:
        raise NotImplementedError

    async def close(self) -> None:
        """Release backend connections. Stores without connections have nothing to release."""
        return None


class RedisStore(KVStore):
    """Redis-backed store. Backend failures surface as StorageError."""

    def __init__(self, client: redis_lib.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, redis_url: str, socket_timeout: float | None = None) -> "RedisStore":
        client = redis_lib.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    async def get_json(self, key: str) -> Optional[dict]:
        try:
            value = await self._client.get(key)
        except RedisError as exc:
            raise StorageError(f"Redis GET failed for {key}: {exc}") from exc
        return _decode(key, value)

    async def set_json(self, key: str, value: dict, ttl_seconds: int | None = None) -> None:
        encoded = json.dumps(value)
        try:
            if ttl_seconds:
                await self._client.set(key, encoded, ex=ttl_seconds)
            else:
                await self._client.set(key, encoded)
        except RedisError as exc:
            raise StorageError(f"Redis SET failed for {key}: {exc}") from exc

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(await self._client.delete(*keys))
        except RedisError as exc:
            raise StorageError(f"Redis DEL failed: {exc}") from exc

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as exc:
            raise StorageError(f"Redis PING failed: {exc}") from exc

    async def close(self) -> None:
        await self._client.aclose()


@dataclass
class _InMemValue:
    value: str
    expires_at_ms: int | None = None


class InMemoryStore(KVStore):
    """In-memory store for local/test environments, expiring keys against an injectable clock."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or system_clock_ms
        self._kv: Dict[str, _InMemValue] = {}

    def _cleanup(self) -> None:
        now = self._clock()
        for key in list(self._kv.keys()):
            exp = self._kv[key].expires_at_ms
            if exp is not None and exp <= now:
                del self._kv[key]

    async def get_json(self, key: str) -> Optional[dict]:
        self._cleanup()
        value = self._kv.get(key)
        return _decode(key, value.value if value else None)

    async def set_json(self, key: str, value: dict, ttl_seconds: int | None = None) -> None:
        encoded = json.dumps(value)
        exp = self._clock() + ttl_seconds * 1000 if ttl_seconds else None
        self._kv[key] = _InMemValue(value=encoded, expires_at_ms=exp)

    async def delete(self, *keys: str) -> int:
        self._cleanup()
        count = 0
        for key in keys:
            if self._kv.pop(key, None) is not None:
                count += 1
        return count

    def raw(self, key: str) -> str | None:
        """Stored JSON text for a key, exactly as persisted."""
        self._cleanup()
        value = self._kv.get(key)
        return value.value if value else None

    def ttl_ms(self, key: str) -> int | None:
        value = self._kv.get(key)
        if value is None or value.expires_at_ms is None:
            return None
        return value.expires_at_ms - self._clock()
