"""
Read-through resolution: edge cache first, config store on a miss.
"""

import asyncio
from typing import Any, Dict, Mapping, Optional

from shared.config import BaseConfig
from shared.errors import CacheBackendError, StoreUnavailableError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..models import RECORD_TYPES, EntityType
from ..store.base import ConfigStore, StoreKey
from .edge_cache import EdgeCache

DEFAULT_TTL = 300


def cache_ttls(config: BaseConfig) -> Dict[EntityType, int]:
    """Per-entity TTLs from configuration."""
    return {
        EntityType.PROJECT: config.project_cache_ttl,
        EntityType.API_KEY: config.api_key_cache_ttl,
        EntityType.ACCESS_GRANT: config.access_grant_cache_ttl,
        EntityType.OAUTH_TOKEN: config.oauth_token_cache_ttl,
    }


class ReadThroughResolver:
    """Resolves records through the edge cache with fallback to the store.

    A cache hit returns without touching the store. On a miss the store is
    read and a found record is written back with the entity's TTL before it
    is returned; an absent record is not cached. Cache failures count as a
    miss. Store failures raise ``StoreUnavailableError``.
    """

    def __init__(
        self,
        store: ConfigStore,
        cache: EdgeCache,
        ttls: Optional[Mapping[EntityType, int]] = None,
        metrics: Optional[MetricsCollector] = None,
        store_timeout: Optional[float] = None,
    ):
        self.store = store
        self.cache = cache
        self.ttls = dict(ttls or {})
        self.metrics = metrics
        self.store_timeout = store_timeout
        self.logger = get_logger("edge.cache.read_through")

    def ttl_for(self, entity_type: EntityType) -> int:
        return self.ttls.get(entity_type, DEFAULT_TTL)

    async def resolve(self, entity_type: EntityType, key: StoreKey) -> Optional[Dict[str, Any]]:
        key = tuple(key)
        try:
            cached = await self.cache.get(entity_type, key)
        except CacheBackendError as e:
            self.logger.warning("Edge cache read failed, treating as miss",
                                entity_type=entity_type.value, error=e.details.get("error"))
            cached = None

        if cached is not None:
            self._count("cache_hits_total", entity_type=entity_type.value)
            return cached

        self._count("cache_misses_total", entity_type=entity_type.value)
        record = await self._read_store(entity_type, key)
        if record is None:
            return None

        try:
            await self.cache.set(entity_type, key, record, self.ttl_for(entity_type))
        except CacheBackendError as e:
            self.logger.warning("Edge cache write failed", entity_type=entity_type.value,
                                error=e.details.get("error"))
        return record

    async def resolve_record(self, entity_type: EntityType, key: StoreKey):
        """Like ``resolve`` but returns the typed record."""
        record = await self.resolve(entity_type, key)
        if record is None:
            return None
        return RECORD_TYPES[entity_type].from_record(record)

    async def _read_store(self, entity_type: EntityType, key: StoreKey) -> Optional[Dict[str, Any]]:
        try:
            if self.store_timeout:
                record = await asyncio.wait_for(self.store.get(entity_type, key), self.store_timeout)
            else:
                record = await self.store.get(entity_type, key)
        except StoreUnavailableError:
            self._count("store_reads_total", entity_type=entity_type.value, result="error")
            raise
        except asyncio.TimeoutError as e:
            self._count("store_reads_total", entity_type=entity_type.value, result="error")
            raise StoreUnavailableError("get", details={"entity_type": entity_type.value,
                                                        "error": "timeout"}) from e

        self._count("store_reads_total", entity_type=entity_type.value,
                    result="found" if record is not None else "absent")
        return record

    def _count(self, metric: str, **labels):
        if self.metrics:
            self.metrics.increment_counter(metric, **labels)
