"""
Config store interface.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from ..models import EntityType

StoreKey = Tuple[str, ...]


def encode_key(entity_type: EntityType, key: StoreKey) -> str:
    """Serialize a composite key for string-keyed backends.

    Parts are percent-encoded so ``:`` and glob characters inside an id can
    never collide with the separator or a wildcard pattern.
    """
    if len(key) != len(entity_type.key_fields):
        raise ValueError(f"{entity_type.value} key expects {entity_type.key_fields}, got {key!r}")
    return ":".join(quote(str(part), safe="") for part in key)


class ConfigStore(ABC):
    """Durable key/record store for projects, credentials and grants.

    Records are flat JSON-compatible dicts. Backends raise
    ``StoreUnavailableError`` when the store cannot be reached; an absent
    record is ``None``, never an exception.
    """

    async def start(self) -> None:
        """Open connections."""

    async def stop(self) -> None:
        """Release connections."""

    @abstractmethod
    async def get(self, entity_type: EntityType, key: StoreKey) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def put(self, entity_type: EntityType, key: StoreKey, record: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def delete(self, entity_type: EntityType, key: StoreKey) -> None:
        ...

    @abstractmethod
    async def query(self, entity_type: EntityType, predicate: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Return every record whose fields equal all of ``predicate``."""

    async def health_check(self) -> bool:
        return True
