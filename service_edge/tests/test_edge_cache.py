"""
Unit tests for the edge cache backends.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from shared.errors import CacheBackendError
from shared.test_helpers import FixedClock
from service_edge.app.caching.edge_cache import (
    InMemoryEdgeCache,
    RedisEdgeCache,
    cache_key,
    project_scope_pattern,
)
from service_edge.app.models import EntityType


async def _iterate(keys):
    for key in keys:
        yield key


class TestInMemoryEdgeCache:
    """Test cases for InMemoryEdgeCache."""

    @pytest.fixture
    def clock(self):
        return FixedClock(0.0)

    @pytest.fixture
    def cache(self, clock):
        return InMemoryEdgeCache(clock=clock)

    @pytest.mark.asyncio
    async def test_entries_expire(self, cache, clock):
        await cache.set(EntityType.PROJECT, ("p1", "v1"), {"project_id": "p1"}, ttl=10)

        clock.advance(9)
        assert await cache.get(EntityType.PROJECT, ("p1", "v1")) == {"project_id": "p1"}

        clock.advance(1)
        assert await cache.get(EntityType.PROJECT, ("p1", "v1")) is None

    @pytest.mark.asyncio
    async def test_delete_project_scope_only_touches_that_project(self, cache):
        await cache.set(EntityType.PROJECT, ("p1", "v1"), {}, ttl=60)
        await cache.set(EntityType.API_KEY, ("hash-a", "p1"), {}, ttl=60)
        await cache.set(EntityType.ACCESS_GRANT, ("user-1", "p1"), {}, ttl=60)
        await cache.set(EntityType.OAUTH_TOKEN, ("user-1", "p1"), {}, ttl=60)
        await cache.set(EntityType.API_KEY, ("hash-b", "p2"), {}, ttl=60)

        deleted = await cache.delete_project_scope("p1")

        assert deleted == 4
        assert (EntityType.API_KEY, ("hash-b", "p2")) in cache
        assert (EntityType.API_KEY, ("hash-a", "p1")) not in cache

    @pytest.mark.asyncio
    async def test_delete_project_scope_by_entity_type(self, cache):
        await cache.set(EntityType.PROJECT, ("p1", "v1"), {}, ttl=60)
        await cache.set(EntityType.API_KEY, ("hash-a", "p1"), {}, ttl=60)

        assert await cache.delete_project_scope("p1", (EntityType.API_KEY,)) == 1
        assert (EntityType.PROJECT, ("p1", "v1")) in cache


class TestRedisEdgeCache:
    """Test cases for RedisEdgeCache."""

    @pytest.fixture
    def redis_client(self):
        return AsyncMock()

    @pytest.fixture
    def cache(self, redis_client):
        cache = RedisEdgeCache("redis://localhost:6379/0")
        cache.redis = redis_client
        return cache

    def test_key_layout(self):
        assert cache_key(EntityType.API_KEY, ("abc", "p1")) == "edge:api_key:abc:p1"
        assert project_scope_pattern(EntityType.API_KEY, "p1") == "edge:api_key:*:p1"
        assert project_scope_pattern(EntityType.PROJECT, "p1") == "edge:project:p1:*"

    @pytest.mark.asyncio
    async def test_get_hit(self, cache, redis_client):
        redis_client.get.return_value = json.dumps({"project_id": "p1"})

        assert await cache.get(EntityType.PROJECT, ("p1", "v1")) == {"project_id": "p1"}
        redis_client.get.assert_awaited_once_with("edge:project:p1:v1")

    @pytest.mark.asyncio
    async def test_get_miss(self, cache, redis_client):
        redis_client.get.return_value = None

        assert await cache.get(EntityType.PROJECT, ("p1", "v1")) is None

    @pytest.mark.asyncio
    async def test_set_uses_ttl(self, cache, redis_client):
        await cache.set(EntityType.ACCESS_GRANT, ("user-1", "p1"), {"has_access": True}, ttl=120)

        redis_client.setex.assert_awaited_once_with(
            "edge:access_grant:user-1:p1", 120, json.dumps({"has_access": True})
        )

    @pytest.mark.asyncio
    async def test_backend_errors_are_wrapped(self, cache, redis_client):
        redis_client.get.side_effect = RedisConnectionError("down")

        with pytest.raises(CacheBackendError) as exc_info:
            await cache.get(EntityType.PROJECT, ("p1", "v1"))
        assert exc_info.value.operation == "get"

    @pytest.mark.asyncio
    async def test_unstarted_cache_raises_backend_error(self):
        cache = RedisEdgeCache("redis://localhost:6379/0")

        with pytest.raises(CacheBackendError):
            await cache.get(EntityType.PROJECT, ("p1", "v1"))

    @pytest.mark.asyncio
    async def test_delete_project_scope_scans_each_entity_type(self, cache, redis_client):
        matches = {
            "edge:project:p1:*": ["edge:project:p1:v1"],
            "edge:api_key:*:p1": ["edge:api_key:h1:p1", "edge:api_key:h2:p1"],
        }
        redis_client.scan_iter = MagicMock(side_effect=lambda match: _iterate(matches.get(match, [])))
        redis_client.delete.side_effect = lambda *keys: len(keys)

        deleted = await cache.delete_project_scope("p1")

        assert deleted == 3
        redis_client.delete.assert_any_await("edge:api_key:h1:p1", "edge:api_key:h2:p1")
        assert redis_client.scan_iter.call_count == 4

    @pytest.mark.asyncio
    async def test_health_check(self, cache, redis_client):
        assert await cache.health_check() is True

        redis_client.ping.side_effect = RedisConnectionError("down")
        assert await cache.health_check() is False
