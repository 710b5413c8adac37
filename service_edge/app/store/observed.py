"""
Change capture: wraps a store and publishes an event for every write.
"""

from typing import Any, Dict, List, Optional

from shared.logging import get_logger

from ..models import EntityType
from ..propagation.events import ChangeEvent, ChangeKind
from ..propagation.publisher import ChangePublisher
from .base import ConfigStore, StoreKey


class ObservedConfigStore(ConfigStore):
    """Store decorator emitting ``ChangeEvent`` with old and new images."""

    def __init__(self, store: ConfigStore, publisher: ChangePublisher):
        self.store = store
        self.publisher = publisher
        self.logger = get_logger("edge.store.observed")

    async def start(self) -> None:
        await self.store.start()

    async def stop(self) -> None:
        await self.store.stop()

    async def get(self, entity_type: EntityType, key: StoreKey) -> Optional[Dict[str, Any]]:
        return await self.store.get(entity_type, key)

    async def query(self, entity_type: EntityType, predicate: Dict[str, Any]) -> List[Dict[str, Any]]:
        return await self.store.query(entity_type, predicate)

    async def put(self, entity_type: EntityType, key: StoreKey, record: Dict[str, Any]) -> None:
        old_image = await self.store.get(entity_type, key)
        await self.store.put(entity_type, key, record)
        kind = ChangeKind.INSERT if old_image is None else ChangeKind.MODIFY
        await self._publish(ChangeEvent(entity_type, tuple(key), kind, new_image=record, old_image=old_image))

    async def delete(self, entity_type: EntityType, key: StoreKey) -> None:
        old_image = await self.store.get(entity_type, key)
        await self.store.delete(entity_type, key)
        if old_image is not None:
            await self._publish(ChangeEvent(entity_type, tuple(key), ChangeKind.REMOVE, old_image=old_image))

    async def health_check(self) -> bool:
        return await self.store.health_check()

    async def _publish(self, event: ChangeEvent) -> None:
        # The write already happened; a lost event leaves the cache stale
        # until the entry TTL expires.
        try:
            await self.publisher.publish(event)
        except Exception as e:
            self.logger.error(
                "Failed to publish change event",
                entity_type=event.entity_type.value,
                change_kind=event.change_kind.value,
                error=str(e)
            )
