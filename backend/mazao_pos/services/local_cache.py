"""Device-local key-value cache (string values, JSON payloads).

Three stores share the same async get/set/remove surface:

- ``MemoryKeyValueStore``: process memory, for demo runs and tests.
- ``FileKeyValueStore``: one JSON document on disk, the device default.
- ``RedisKeyValueStore``: a Redis instance, for kiosk installs that already run one.

Stores raise on I/O failure. Callers that treat the cache as best-effort
(the session manager) catch and log.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Protocol

import redis.asyncio as aioredis

from mazao_pos.core.config import Settings

logger = logging.getLogger(__name__)

AUTH_USER_KEY = "@agrovet_auth_user"
CURRENT_SHOP_KEY = "@agrovet_current_shop"
LAST_SHOP_KEY = "@agrovet_last_shop"
REMOTE_SESSION_KEY = "@agrovet_remote_session"


class KeyValueStore(Protocol):
    async def get_item(self, key: str) -> str | None: ...

    async def set_item(self, key: str, value: str) -> None: ...

    async def remove_item(self, key: str) -> None: ...


class MemoryKeyValueStore:
    def __init__(self, initial: dict[str, str] | None = None):
        self._items: dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        return dict(self._items)


class FileKeyValueStore:
    """All keys live in one JSON object; every write replaces the file atomically."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()
        self._lock = asyncio.Lock()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        if not isinstance(data, dict):
            raise ValueError(f"Cache file {self.path} does not hold a JSON object")
        return data

    def _write(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self.path)

    async def get_item(self, key: str) -> str | None:
        data = await asyncio.to_thread(self._read)
        return data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            data[key] = value
            await asyncio.to_thread(self._write, data)

    async def remove_item(self, key: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            if key in data:
                del data[key]
                await asyncio.to_thread(self._write, data)


class RedisKeyValueStore:
    def __init__(self, client: aioredis.Redis, namespace: str = "mazao_pos:"):
        self._client = client
        self._namespace = namespace

    @classmethod
    def from_url(cls, url: str, namespace: str = "mazao_pos:") -> "RedisKeyValueStore":
        return cls(aioredis.from_url(url, decode_responses=True), namespace=namespace)

    def _key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    async def get_item(self, key: str) -> str | None:
        value = await self._client.get(self._key(key))
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set_item(self, key: str, value: str) -> None:
        await self._client.set(self._key(key), value)

    async def remove_item(self, key: str) -> None:
        await self._client.delete(self._key(key))

    async def aclose(self) -> None:
        await self._client.aclose()


def build_local_cache(settings: Settings) -> KeyValueStore:
    if settings.REDIS_URL:
        logger.info("Local cache: redis")
        return RedisKeyValueStore.from_url(settings.REDIS_URL)
    if settings.CACHE_FILE:
        logger.info("Local cache: file %s", settings.CACHE_FILE)
        return FileKeyValueStore(settings.CACHE_FILE)
    logger.info("Local cache: memory (nothing survives a restart)")
    return MemoryKeyValueStore()
