"""
Change propagator: applies config store change events to the edge cache.

Events are delivered at least once and in no particular order relative to
in-flight requests, so every handler converges to the same cache state when
replayed.
"""

import asyncio
from typing import Any, Dict, Mapping, Optional

from shared.errors import CacheBackendError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, RetryError, retry_on_exception

from ..caching.edge_cache import EdgeCache
from ..caching.read_through import DEFAULT_TTL
from ..models import AuthType, EntityType
from .events import ChangeEvent, ChangeKind


class ResponseCachePurger:
    """Purges cached upstream responses for a project.

    The edge keeps no response cache of its own; deployments fronted by a CDN
    subclass this to call its purge API.
    """

    def __init__(self):
        self.logger = get_logger("edge.propagation.purger")

    async def purge(self, project_id: str, reason: str) -> None:
        self.logger.info("Response cache purge requested", project_id=project_id, reason=reason)


class ChangePropagator:
    """Consumes ``ChangeEvent`` and invalidates or overwrites cache entries."""

    def __init__(
        self,
        cache: EdgeCache,
        ttls: Optional[Mapping[EntityType, int]] = None,
        purger: Optional[ResponseCachePurger] = None,
        metrics: Optional[MetricsCollector] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.cache = cache
        self.ttls = dict(ttls or {})
        self.purger = purger or ResponseCachePurger()
        self.metrics = metrics
        self.logger = get_logger("edge.propagation.propagator")
        self._apply_with_retry = retry_on_exception(
            (CacheBackendError,),
            retry_config or RetryConfig(max_attempts=3, base_delay=0.2, max_delay=2.0)
        )(self.apply)
        self._task: Optional[asyncio.Task] = None

    async def handle(self, event: ChangeEvent) -> bool:
        """Apply one event, retrying transient cache failures.

        Returns False when the event could not be applied; the entry then
        converges when its TTL expires.
        """
        try:
            await self._apply_with_retry(event)
        except RetryError as e:
            self.logger.error(
                "Dropping change event after retries",
                entity_type=event.entity_type.value,
                change_kind=event.change_kind.value,
                project_id=event.project_id,
                error=str(e.last_exception)
            )
            self._count(event, "failed")
            return False

        self._count(event, "applied")
        return True

    async def apply(self, event: ChangeEvent) -> None:
        if event.entity_type == EntityType.PROJECT:
            await self._apply_project(event)
        else:
            await self._apply_scoped(event)

    async def _apply_project(self, event: ChangeEvent) -> None:
        project_id = event.project_id

        if event.change_kind == ChangeKind.REMOVE:
            await self.cache.delete_project_scope(project_id)
            self.logger.info("Project removed, cache scope cleared", project_id=project_id)
            await self.purger.purge(project_id, "project_removed")
            return

        new = event.new_image or {}
        old = event.old_image or {}

        if not new.get("active", True):
            await self.cache.delete_project_scope(project_id)
            if old.get("active", False):
                self.logger.info("Project deactivated, cache scope cleared", project_id=project_id)
            return

        await self.cache.set(EntityType.PROJECT, event.key, new, self._ttl(EntityType.PROJECT))

        if old and old.get("target_url") != new.get("target_url"):
            self.logger.info(
                "Project target changed, invalidating cached responses",
                project_id=project_id,
                old_target=old.get("target_url"),
                new_target=new.get("target_url")
            )
            await self.purger.purge(project_id, "target_url_changed")

        if (old.get("inbound_auth_type") == AuthType.API_KEY.value
                and new.get("inbound_auth_type") != AuthType.API_KEY.value):
            cleared = await self.cache.delete_project_scope(project_id, (EntityType.API_KEY,))
            self.logger.info("Inbound auth left api_key, credentials cleared",
                             project_id=project_id, count=cleared)

    async def _apply_scoped(self, event: ChangeEvent) -> None:
        if event.change_kind == ChangeKind.REMOVE or event.new_image is None:
            await self.cache.delete(event.entity_type, event.key)
            return
        await self.cache.set(event.entity_type, event.key, event.new_image, self._ttl(event.entity_type))

    # Consumers

    async def drain(self, queue: "asyncio.Queue[ChangeEvent]") -> int:
        """Apply every event currently queued; returns how many were handled."""
        handled = 0
        while True:
            try:
                event = queue.get_nowait()
            except asyncio.QueueEmpty:
                return handled
            try:
                await self.handle(event)
            finally:
                queue.task_done()
            handled += 1

    async def run(self, queue: "asyncio.Queue[ChangeEvent]") -> None:
        """Consume the queue until cancelled."""
        self.logger.info("Change propagator running")
        while True:
            event = await queue.get()
            try:
                await self.handle(event)
            except Exception as e:
                self.logger.error("Unexpected error applying change event", error=str(e), exc_info=True)
            finally:
                queue.task_done()

    def start(self, queue: "asyncio.Queue[ChangeEvent]") -> asyncio.Task:
        self._task = asyncio.create_task(self.run(queue))
        return self._task

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def _ttl(self, entity_type: EntityType) -> int:
        return self.ttls.get(entity_type, DEFAULT_TTL)

    def _count(self, event: ChangeEvent, status: str):
        if self.metrics:
            self.metrics.increment_counter(
                "propagation_events_total",
                entity_type=event.entity_type.value,
                change_kind=event.change_kind.value,
                status=status
            )


def describe(event: ChangeEvent) -> Dict[str, Any]:
    """Log-safe summary of an event; images may carry secrets."""
    return {
        "entity_type": event.entity_type.value,
        "change_kind": event.change_kind.value,
        "project_id": event.project_id,
    }
