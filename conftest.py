"""
Shared fixtures for unit and integration tests.
"""

import httpx
import pytest

from shared.config import get_config
from shared.test_helpers import TEST_CLIENT_ID, TEST_DOMAIN, CountingConfigStore, FixedClock, RecordingUpstream
from service_edge.app.caching.edge_cache import InMemoryEdgeCache
from service_edge.app.main import EdgeService
from service_edge.app.propagation.publisher import QueueChangePublisher


@pytest.fixture
def config_factory():
    """Build a service config with test defaults."""
    def factory(**overrides):
        values = {
            "platform_domain": TEST_DOMAIN,
            "oauth_client_id": TEST_CLIENT_ID,
            "internal_api_key": None,
            "jwks_url": None,
            "store_backend": "memory",
            "cache_backend": "memory",
            "propagation_backend": "queue",
            "propagation_retry_base_delay": 0,
        }
        values.update(overrides)
        return get_config("edge", 8000, **values)
    return factory


@pytest.fixture
def config(config_factory):
    return config_factory()


@pytest.fixture
def cache_clock():
    return FixedClock(1000.0)


@pytest.fixture
def upstream():
    return RecordingUpstream()


@pytest.fixture
def service_factory(config_factory, cache_clock, upstream):
    """Build an EdgeService on in-memory backends and a mock upstream."""
    def factory(**overrides):
        config = overrides.pop("config", None) or config_factory()
        return EdgeService(
            config,
            store=overrides.pop("store", None) or CountingConfigStore(),
            cache=overrides.pop("cache", None) or InMemoryEdgeCache(clock=cache_clock),
            publisher=overrides.pop("publisher", None) or QueueChangePublisher(),
            http_client=overrides.pop("http_client", None) or upstream.client(),
            **overrides
        )
    return factory


@pytest.fixture
def service(service_factory):
    return service_factory()


@pytest.fixture
def client_for():
    """ASGI client addressed to a given host; use it with ``async with``."""
    def factory(service, host: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=service.app),
            base_url=f"http://{host}",
        )
    return factory
