"""
Edge cache backends.

Entries are JSON documents stored under ``edge:<entity_type>:<encoded key>``
with a per-entry TTL. Backends raise ``CacheBackendError`` on failure and
leave it to callers to decide whether that degrades to a miss.
"""

import asyncio
import copy
import json
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, Optional, Tuple
from urllib.parse import quote

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.errors import CacheBackendError
from shared.logging import get_logger

from ..models import EntityType
from ..store.base import StoreKey, encode_key

KEY_PREFIX = "edge"

PROJECT_SCOPED_TYPES: Tuple[EntityType, ...] = (
    EntityType.PROJECT,
    EntityType.API_KEY,
    EntityType.ACCESS_GRANT,
    EntityType.OAUTH_TOKEN,
)


class EdgeCache(ABC):
    """Advisory cache in front of the config store."""

    async def start(self) -> None:
        """Open connections."""

    async def stop(self) -> None:
        """Release connections."""

    @abstractmethod
    async def get(self, entity_type: EntityType, key: StoreKey) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def set(self, entity_type: EntityType, key: StoreKey, value: Dict[str, Any], ttl: int) -> None:
        ...

    @abstractmethod
    async def delete(self, entity_type: EntityType, key: StoreKey) -> None:
        ...

    @abstractmethod
    async def delete_project_scope(
        self,
        project_id: str,
        entity_types: Iterable[EntityType] = PROJECT_SCOPED_TYPES
    ) -> int:
        """Drop every entry of ``entity_types`` whose key names ``project_id``."""

    async def health_check(self) -> bool:
        return True


def cache_key(entity_type: EntityType, key: StoreKey) -> str:
    return f"{KEY_PREFIX}:{entity_type.value}:{encode_key(entity_type, key)}"


def project_scope_pattern(entity_type: EntityType, project_id: str) -> str:
    """Glob matching every entry of ``entity_type`` for one project."""
    parts = [
        quote(project_id, safe="") if name == "project_id" else "*"
        for name in entity_type.key_fields
    ]
    return f"{KEY_PREFIX}:{entity_type.value}:" + ":".join(parts)


class RedisEdgeCache(EdgeCache):
    """Redis-backed edge cache."""

    def __init__(self, redis_url: str, socket_timeout: float = 2.0):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.logger = get_logger("edge.cache.redis")
        self.redis: Optional[redis.Redis] = None

    async def start(self):
        """Start the Redis cache."""
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self.socket_timeout,
                socket_timeout=self.socket_timeout,
                retry_on_timeout=True,
                health_check_interval=30
            )

            await self.redis.ping()

            self.logger.info("Redis edge cache started")

        except (RedisError, OSError) as e:
            # The store stays authoritative; run cold and let health report it
            self.logger.error("Failed to reach Redis at startup", error=str(e))

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis:
            await self.redis.close()
            self.logger.info("Redis edge cache stopped")

    async def get(self, entity_type: EntityType, key: StoreKey) -> Optional[Dict[str, Any]]:
        try:
            cached = await self._client().get(cache_key(entity_type, key))
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise CacheBackendError("get", details={"entity_type": entity_type.value, "error": str(e)}) from e

        if cached is None:
            return None
        return json.loads(cached)

    async def set(self, entity_type: EntityType, key: StoreKey, value: Dict[str, Any], ttl: int) -> None:
        try:
            await self._client().setex(cache_key(entity_type, key), ttl, json.dumps(value, default=str))
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise CacheBackendError("set", details={"entity_type": entity_type.value, "error": str(e)}) from e

    async def delete(self, entity_type: EntityType, key: StoreKey) -> None:
        try:
            await self._client().delete(cache_key(entity_type, key))
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise CacheBackendError("delete", details={"entity_type": entity_type.value, "error": str(e)}) from e

    async def delete_project_scope(
        self,
        project_id: str,
        entity_types: Iterable[EntityType] = PROJECT_SCOPED_TYPES
    ) -> int:
        client = self._client()
        deleted = 0
        try:
            for entity_type in entity_types:
                keys = [key async for key in client.scan_iter(match=project_scope_pattern(entity_type, project_id))]
                if keys:
                    deleted += await client.delete(*keys)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise CacheBackendError("delete_project_scope", details={"project_id": project_id, "error": str(e)}) from e

        self.logger.info("Invalidated project scope", project_id=project_id, count=deleted)
        return deleted

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self._client().ping()
            return True
        except (RedisError, OSError, asyncio.TimeoutError, CacheBackendError):
            return False

    def _client(self) -> redis.Redis:
        if self.redis is None:
            raise CacheBackendError("connect", details={"error": "cache not started"})
        return self.redis


class InMemoryEdgeCache(EdgeCache):
    """Process-local cache with lazy expiry, for local runs and tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.logger = get_logger("edge.cache.memory")
        self._entries: Dict[Tuple[EntityType, StoreKey], Tuple[Dict[str, Any], float]] = {}

    async def get(self, entity_type: EntityType, key: StoreKey) -> Optional[Dict[str, Any]]:
        entry = self._entries.get((entity_type, tuple(key)))
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self.clock():
            self._entries.pop((entity_type, tuple(key)), None)
            return None
        return copy.deepcopy(value)

    async def set(self, entity_type: EntityType, key: StoreKey, value: Dict[str, Any], ttl: int) -> None:
        encode_key(entity_type, key)  # validates arity
        self._entries[(entity_type, tuple(key))] = (copy.deepcopy(value), self.clock() + ttl)

    async def delete(self, entity_type: EntityType, key: StoreKey) -> None:
        self._entries.pop((entity_type, tuple(key)), None)

    async def delete_project_scope(
        self,
        project_id: str,
        entity_types: Iterable[EntityType] = PROJECT_SCOPED_TYPES
    ) -> int:
        types = set(entity_types)
        doomed = [
            (entity_type, key)
            for entity_type, key in self._entries
            if entity_type in types
            and key[entity_type.key_fields.index("project_id")] == project_id
        ]
        for entry_key in doomed:
            del self._entries[entry_key]
        return len(doomed)

    def __contains__(self, item: Tuple[EntityType, StoreKey]) -> bool:
        entity_type, key = item
        entry = self._entries.get((entity_type, tuple(key)))
        return entry is not None and entry[1] > self.clock()
