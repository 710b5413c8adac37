"""
Tests for service startup and shutdown through the ASGI lifespan.
"""

import asyncio

import pytest

from shared.base_service import BaseService
from shared.test_helpers import TEST_DOMAIN


class RecordingService(BaseService):
    def __init__(self, config):
        self.calls = []
        super().__init__("recording", 8000, config)

    async def startup(self):
        self.calls.append("startup")

    async def shutdown(self):
        self.calls.append("shutdown")


class TestLifespan:
    """Startup and shutdown hooks run around the application's lifetime."""

    @pytest.mark.asyncio
    async def test_hooks_run_around_lifespan(self, config):
        service = RecordingService(config)

        async with service.app.router.lifespan_context(service.app):
            assert service.calls == ["startup"]

        assert service.calls == ["startup", "shutdown"]

    @pytest.mark.asyncio
    async def test_shutdown_runs_when_body_raises(self, config):
        service = RecordingService(config)

        with pytest.raises(RuntimeError):
            async with service.app.router.lifespan_context(service.app):
                raise RuntimeError("boom")

        assert service.calls == ["startup", "shutdown"]

    @pytest.mark.asyncio
    async def test_edge_service_propagates_while_running(self, service, client_for):
        async with service.app.router.lifespan_context(service.app):
            task = service.propagator._task
            assert task is not None and not task.done()

            async with client_for(service, TEST_DOMAIN) as control:
                created = await control.post("/projects", json={
                    "project_id": "abc123", "target_url": "https://example.test",
                    "customer_id": "cust-1", "auth_type": "none",
                })
            assert created.status_code == 201

            # The running propagator drains the queue without a manual flush
            await asyncio.wait_for(service.publisher.queue.join(), timeout=1)
            assert service.publisher.queue.empty()

        assert service.propagator._task is None
        assert task.cancelled()
        assert service.http_client.is_closed
