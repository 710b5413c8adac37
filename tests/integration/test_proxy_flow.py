"""
Integration tests for the control plane and the proxy path together.

Projects are managed through the control host, changes are propagated to the
edge cache, and traffic is sent to the tenant host.
"""

import pytest

from shared.test_helpers import TEST_DOMAIN, create_oauth_token


TENANT = f"abc123.{TEST_DOMAIN}"


@pytest.fixture
async def control(service, client_for):
    async with client_for(service, TEST_DOMAIN) as client:
        yield client


@pytest.fixture
async def tenant(service, client_for):
    async with client_for(service, TENANT) as client:
        yield client


async def create(control, **body):
    payload = {"project_id": "abc123", "target_url": "https://example.test/echo", "customer_id": "cust-1"}
    payload.update(body)
    response = await control.post("/projects", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


class TestProxyFlow:
    """End-to-end flows through the edge service."""

    @pytest.mark.asyncio
    async def test_cli_created_project_forwards_verbatim(self, service, control, client_for, upstream):
        created = await control.post("/", json={
            "target": "https://example.test/echo", "project_id": "chosen", "auth_type": "none"
        })
        assert created.status_code == 200
        project_id = created.json()["project_id"]
        assert project_id != "chosen"
        assert created.json()["endpoint"] == f"https://{project_id}.{TEST_DOMAIN}"
        await service.process_pending_changes()

        async with client_for(service, f"{project_id}.{TEST_DOMAIN}") as tenant:
            response = await tenant.get("/foo", params={"x": "1"})

        assert response.status_code == 200
        assert response.text == "echo /foo?x=1"
        assert str(upstream.last.url) == "https://example.test/foo?x=1"

    @pytest.mark.asyncio
    async def test_api_key_project(self, service, control, tenant):
        created = await create(control)
        await service.process_pending_changes()

        missing = await tenant.get("/data")
        wrong = await tenant.get("/data", headers={"X-API-Key": "edge_wrong"})
        bearer = await tenant.get("/data", headers={"Authorization": f"Bearer {created['api_key']}"})
        header = await tenant.get("/data", headers={"X-API-Key": created["api_key"]})

        assert (missing.status_code, missing.json()) == (401, {"error": "API key required"})
        assert (wrong.status_code, wrong.json()) == (401, {"error": "Invalid API key"})
        assert bearer.status_code == header.status_code == 200

    @pytest.mark.asyncio
    async def test_deactivation_reaches_warm_cache(self, service, control, tenant):
        await create(control, auth_type="none")
        await service.process_pending_changes()
        assert (await tenant.get("/warm")).status_code == 200

        updated = await control.put("/projects/abc123", json={"active": False})
        assert updated.status_code == 200
        assert await service.process_pending_changes() == 1

        response = await tenant.get("/warm")

        assert response.status_code == 403
        assert response.json() == {"error": "Project is inactive"}

    @pytest.mark.asyncio
    async def test_deleted_project_stops_resolving(self, service, control, tenant):
        await create(control, auth_type="none")
        assert (await tenant.get("/x")).status_code == 200

        assert (await control.delete("/projects/abc123")).status_code == 200
        await service.process_pending_changes()

        response = await tenant.get("/x")
        assert (response.status_code, response.json()) == (404, {"error": "Project not found"})

    @pytest.mark.asyncio
    async def test_oauth_project_requires_grant(self, service, control, tenant, upstream):
        await create(control, auth_type="oauth")
        await service.process_pending_changes()
        headers = {"Authorization": f"Bearer {create_oauth_token('user-1')}"}

        denied = await tenant.get("/me", headers=headers)
        assert denied.status_code == 403
        assert upstream.requests == []

        granted = await control.put("/projects/abc123/access/user-1", json={"access_level": "admin"})
        assert granted.status_code == 200
        await service.process_pending_changes()

        allowed = await tenant.get("/me", headers=headers)
        assert allowed.status_code == 200

    @pytest.mark.asyncio
    async def test_outbound_oauth_token_is_forwarded(self, service, control, tenant, upstream):
        await create(control, auth_type="oauth", target_auth_type="oauth")
        await control.put("/projects/abc123/access/user-1", json={})
        await control.put("/projects/abc123/oauth-tokens/user-1", json={"access_token": "upstream-token"})
        await service.process_pending_changes()

        response = await tenant.get("/me", headers={"Authorization": f"Bearer {create_oauth_token('user-1')}"})

        assert response.status_code == 200
        assert upstream.last.headers["authorization"] == "Bearer upstream-token"

    @pytest.mark.asyncio
    async def test_recreated_project_rejects_previous_owner_keys(self, service, control, tenant, upstream):
        old = await create(control, customer_id="owner-a")
        await service.process_pending_changes()
        assert (await tenant.get("/a", headers={"X-API-Key": old["api_key"]})).status_code == 200

        assert (await control.delete("/projects/abc123")).status_code == 200
        new = await create(control, customer_id="owner-b", target_url="https://other.test/")
        await service.process_pending_changes()
        calls = len(upstream.requests)

        stale = await tenant.get("/b", headers={"X-API-Key": old["api_key"]})
        fresh = await tenant.get("/b", headers={"X-API-Key": new["api_key"]})

        assert (stale.status_code, stale.json()) == (401, {"error": "Invalid API key"})
        assert fresh.status_code == 200
        assert len(upstream.requests) == calls + 1
        assert upstream.last.url.host == "other.test"
