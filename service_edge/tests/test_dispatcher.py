"""
Unit tests for host-based request dispatch.
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from shared.errors import StoreUnavailableError
from shared.test_helpers import TEST_DOMAIN, RecordingUpstream, create_project
from service_edge.app.dispatcher import RouteKind
from service_edge.app.models import EntityType


async def seed(service, project):
    """Write straight to the backing store, bypassing change capture."""
    await service.store.store.put(EntityType.PROJECT, project.key, project.to_record())


class TestRequestDispatcher:
    """Test cases for RequestDispatcher."""

    @pytest.fixture
    def backing_store(self, service):
        return service.store.store

    @pytest.mark.parametrize("host,kind", [
        (TEST_DOMAIN, RouteKind.CONTROL),
        ("abc123." + TEST_DOMAIN, RouteKind.PROXY),
        ("a.b." + TEST_DOMAIN, RouteKind.PROXY),
        ("example.com", RouteKind.NOT_FOUND),
        ("evil" + TEST_DOMAIN, RouteKind.NOT_FOUND),
        ("", RouteKind.NOT_FOUND),
    ])
    def test_classify(self, service, host, kind):
        assert service.dispatcher.classify(host) == kind

    @pytest.mark.asyncio
    async def test_proxies_to_target(self, service, client_for, upstream):
        await seed(service, create_project("abc123", target_url="https://example.test/echo"))

        async with client_for(service, f"abc123.{TEST_DOMAIN}") as client:
            response = await client.get("/foo", params={"x": "1"})

        assert response.status_code == 200
        assert response.text == "echo /foo?x=1"
        assert response.headers["x-upstream"] == "echo"
        assert str(upstream.last.url) == "https://example.test/foo?x=1"

    @pytest.mark.asyncio
    async def test_project_lookup_is_case_insensitive(self, service, client_for, backing_store):
        await seed(service, create_project("abc123"))

        async with client_for(service, f"abc123.{TEST_DOMAIN}") as client:
            upper = await client.get("/x", headers={"Host": f"AbC123.{TEST_DOMAIN.upper()}"})
            lower = await client.get("/x", headers={"Host": f"abc123.{TEST_DOMAIN}:443"})

        assert upper.status_code == lower.status_code == 200
        assert backing_store.reads == [(EntityType.PROJECT, ("abc123", "v1"))]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("subdomain", ["www", "api", "dashboard", "portal", "API"])
    async def test_reserved_names_never_reach_lookup(self, service, client_for, backing_store, subdomain):
        await seed(service, create_project(subdomain.lower()))

        async with client_for(service, f"{subdomain}.{TEST_DOMAIN}") as client:
            response = await client.get("/anything")

        assert response.status_code == 404
        assert response.json() == {"error": "Not found"}
        assert backing_store.read_count() == 0

    @pytest.mark.asyncio
    async def test_unknown_host_is_not_found(self, service, client_for):
        async with client_for(service, "example.com") as client:
            response = await client.get("/")

        assert response.status_code == 404
        assert response.json() == {"error": "Not found"}

    @pytest.mark.asyncio
    async def test_unknown_project_is_not_found(self, service, client_for):
        async with client_for(service, f"nothere.{TEST_DOMAIN}") as client:
            response = await client.get("/")

        assert response.status_code == 404
        assert response.json() == {"error": "Project not found"}

    @pytest.mark.asyncio
    async def test_invalid_label_is_not_found(self, service, client_for, backing_store):
        async with client_for(service, f"bad_label.{TEST_DOMAIN}") as client:
            response = await client.get("/")

        assert response.status_code == 404
        assert backing_store.read_count() == 0

    @pytest.mark.asyncio
    async def test_inactive_project_is_forbidden(self, service, client_for, upstream):
        await seed(service, create_project("abc123", active=False))

        async with client_for(service, f"abc123.{TEST_DOMAIN}") as client:
            response = await client.get("/")

        assert response.status_code == 403
        assert response.json() == {"error": "Project is inactive"}
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_unknown_auth_type_is_invalid_config(self, service, client_for):
        await seed(service, create_project("abc123", inbound_auth_type="saml"))

        async with client_for(service, f"abc123.{TEST_DOMAIN}") as client:
            response = await client.get("/")

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid authentication type"}

    @pytest.mark.asyncio
    async def test_store_outage_is_internal_error_not_404(self, service, client_for, backing_store):
        backing_store.fail_with = StoreUnavailableError("get")

        async with client_for(service, f"abc123.{TEST_DOMAIN}") as client:
            response = await client.get("/")

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_500(self, service, client_for):
        with patch.object(service.dispatcher, "proxy", AsyncMock(side_effect=RuntimeError("boom"))):
            async with client_for(service, f"abc123.{TEST_DOMAIN}") as client:
                response = await client.get("/")

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}
        assert "boom" not in response.text

    @pytest.mark.asyncio
    async def test_upstream_failure_is_bad_gateway(self, service_factory, client_for):
        def refuse(request):
            raise httpx.ConnectError("connection refused")

        service = service_factory(http_client=RecordingUpstream(refuse).client())
        await seed(service, create_project("abc123"))

        async with client_for(service, f"abc123.{TEST_DOMAIN}") as client:
            response = await client.get("/")

        assert response.status_code == 502
        assert response.json() == {"error": "Bad gateway", "message": "Upstream request failed"}

    @pytest.mark.asyncio
    async def test_requests_are_tagged_and_counted(self, service, client_for):
        await seed(service, create_project("abc123"))

        async with client_for(service, f"abc123.{TEST_DOMAIN}") as client:
            response = await client.get("/", headers={"X-Request-ID": "req-42"})

        assert response.headers["x-request-id"] == "req-42"
        count = service.metrics.registry.get_sample_value(
            "http_requests_total", {"method": "GET", "route": "proxy", "status_code": "200"}
        )
        assert count == 1
