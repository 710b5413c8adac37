"""
In-process config store for local runs and tests.
"""

import copy
from typing import Any, Dict, List, Optional, Tuple

from shared.logging import get_logger

from ..models import EntityType
from .base import ConfigStore, StoreKey, encode_key


class InMemoryConfigStore(ConfigStore):
    """Dict-backed store. Records are copied on the way in and out."""

    def __init__(self):
        self.logger = get_logger("edge.store.memory")
        self._records: Dict[Tuple[EntityType, str], Dict[str, Any]] = {}

    async def get(self, entity_type: EntityType, key: StoreKey) -> Optional[Dict[str, Any]]:
        record = self._records.get((entity_type, encode_key(entity_type, key)))
        return copy.deepcopy(record) if record is not None else None

    async def put(self, entity_type: EntityType, key: StoreKey, record: Dict[str, Any]) -> None:
        self._records[(entity_type, encode_key(entity_type, key))] = copy.deepcopy(record)

    async def delete(self, entity_type: EntityType, key: StoreKey) -> None:
        self._records.pop((entity_type, encode_key(entity_type, key)), None)

    async def query(self, entity_type: EntityType, predicate: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [
            copy.deepcopy(record)
            for (stored_type, _), record in self._records.items()
            if stored_type == entity_type
            and all(record.get(name) == value for name, value in predicate.items())
        ]
