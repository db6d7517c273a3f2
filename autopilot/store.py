"""
Persistent key-value storage for agent state.

All core state (task queue, context, memory blob) is kept as whole JSON
documents under a small fixed set of keys. Three backends are provided:
in-process memory, one JSON file per key, and Redis with an in-memory
fallback when Redis is unreachable.
"""
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import redis.asyncio as aioredis
from loguru import logger

from config.settings import settings

STATE_KEY = "agent_state"
MEMORY_KEY = "agent_memory"


class PersistentStore(ABC):
    """Abstract async key -> JSON document storage."""

    @abstractmethod
    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        """
        Read several keys at once.

        Args:
            keys: Keys to read

        Returns:
            Mapping of the keys that exist to their decoded values
        """

    @abstractmethod
    async def set(self, items: Dict[str, Any]) -> None:
        """
        Write several keys at once, replacing existing values.

        Args:
            items: Mapping of key to JSON-serializable value
        """

    @abstractmethod
    async def remove(self, keys: Iterable[str]) -> None:
        """Delete keys; missing keys are ignored."""

    async def get_one(self, key: str, default: Any = None) -> Any:
        data = await self.get([key])
        return data.get(key, default)


class InMemoryStore(PersistentStore):
    """
    In-process storage.

    Values round-trip through JSON so callers never share mutable
    objects with the store, the same as with the durable backends.
    """

    def __init__(self):
        self._data: Dict[str, str] = {}

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        return {k: json.loads(self._data[k]) for k in keys if k in self._data}

    async def set(self, items: Dict[str, Any]) -> None:
        for key, value in items.items():
            self._data[key] = json.dumps(value, ensure_ascii=False)

    async def remove(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._data.pop(key, None)

    def snapshot(self) -> Dict[str, Any]:
        """Decoded copy of everything stored (used by tests and the CLI)."""
        return {k: json.loads(v) for k, v in self._data.items()}


class FileStore(PersistentStore):
    """
    File-based storage.

    Stores each key in its own JSON file under ``base_path``.
    """

    def __init__(self, base_path: Optional[str] = None):
        self.base_path = Path(base_path or settings.store_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_file_path(self, key: str) -> Path:
        return self.base_path / f"{key}.json"

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for key in keys:
            file_path = self._get_file_path(key)
            if not file_path.exists():
                continue
            try:
                with open(file_path, "r", encoding="utf-8") as f:
                    result[key] = json.load(f)
            except (OSError, ValueError) as e:
                logger.error(f"💾 [FileStore] Error reading {file_path}: {e}")
        return result

    async def set(self, items: Dict[str, Any]) -> None:
        for key, value in items.items():
            file_path = self._get_file_path(key)
            tmp_path = file_path.with_suffix(".json.tmp")
            try:
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(value, f, ensure_ascii=False, indent=2)
                tmp_path.replace(file_path)
            except (OSError, TypeError, ValueError) as e:
                logger.error(f"💾 [FileStore] Error writing {file_path}: {e}")

    async def remove(self, keys: Iterable[str]) -> None:
        for key in keys:
            file_path = self._get_file_path(key)
            if file_path.exists():
                try:
                    file_path.unlink()
                except OSError as e:
                    logger.error(f"💾 [FileStore] Error deleting {file_path}: {e}")


class RedisStore(PersistentStore):
    """
    Redis-backed storage.

    Falls back to an in-memory store when redis_url is not configured or
    a Redis call fails, so the agent keeps working without Redis.
    """

    KEY_PREFIX = "autopilot:"

    def __init__(self, redis_url: Optional[str] = None):
        self._redis_url = redis_url if redis_url is not None else settings.redis_url
        self._redis: Optional[aioredis.Redis] = None
        self._fallback = InMemoryStore()
        self._connected = False

        if self._redis_url:
            self._redis = aioredis.from_url(
                self._redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
        else:
            logger.warning("💾 [RedisStore] redis_url not configured, using in-memory fallback")

    def _key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}{key}"

    async def _client(self) -> Optional[aioredis.Redis]:
        if self._redis is None:
            return None
        if not self._connected:
            try:
                await self._redis.ping()
                self._connected = True
                logger.info("💾 [RedisStore] Redis connected successfully")
            except Exception as e:
                logger.warning(f"💾 [RedisStore] Redis unavailable, using in-memory fallback: {e}")
                self._redis = None
                return None
        return self._redis

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        keys = list(keys)
        client = await self._client()
        if client is None:
            return await self._fallback.get(keys)
        try:
            values = await client.mget([self._key(k) for k in keys])
        except Exception as e:
            logger.warning(f"💾 [RedisStore] Redis get failed, using fallback: {e}")
            return await self._fallback.get(keys)
        result: Dict[str, Any] = {}
        for key, raw in zip(keys, values):
            if raw is None:
                continue
            try:
                result[key] = json.loads(raw)
            except ValueError as e:
                logger.error(f"💾 [RedisStore] Corrupt value under {key}: {e}")
        return result

    async def set(self, items: Dict[str, Any]) -> None:
        client = await self._client()
        if client is None:
            await self._fallback.set(items)
            return
        try:
            await client.mset({self._key(k): json.dumps(v, ensure_ascii=False) for k, v in items.items()})
        except Exception as e:
            logger.warning(f"💾 [RedisStore] Redis set failed, using fallback: {e}")
            await self._fallback.set(items)

    async def remove(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        await self._fallback.remove(keys)
        client = await self._client()
        if client is None or not keys:
            return
        try:
            await client.delete(*[self._key(k) for k in keys])
        except Exception as e:
            logger.warning(f"💾 [RedisStore] Redis delete failed: {e}")


def create_store(backend: Optional[str] = None) -> PersistentStore:
    """
    Build the store configured in settings.

    Args:
        backend: memory, file or redis; defaults to settings.store_backend
    """
    backend = (backend or settings.store_backend).lower()
    if backend == "memory":
        return InMemoryStore()
    if backend == "redis":
        return RedisStore()
    if backend == "file":
        return FileStore()
    raise ValueError(f"Unknown store backend: {backend}")
