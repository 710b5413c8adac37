"""
Change event message exchanged between the store and the propagator.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..models import EntityType


class ChangeKind(str, Enum):
    INSERT = "insert"
    MODIFY = "modify"
    REMOVE = "remove"


@dataclass(frozen=True)
class ChangeEvent:
    """One write to the config store, with before/after images."""
    entity_type: EntityType
    key: Tuple[str, ...]
    change_kind: ChangeKind
    new_image: Optional[Dict[str, Any]] = None
    old_image: Optional[Dict[str, Any]] = None

    @property
    def project_id(self) -> str:
        return self.key[self.entity_type.key_fields.index("project_id")]

    def to_message(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type.value,
            "key": list(self.key),
            "change_kind": self.change_kind.value,
            "new_image": self.new_image,
            "old_image": self.old_image,
        }

    def encode(self) -> bytes:
        return json.dumps(self.to_message()).encode("utf-8")

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "ChangeEvent":
        return cls(
            entity_type=EntityType(message["entity_type"]),
            key=tuple(message["key"]),
            change_kind=ChangeKind(message["change_kind"]),
            new_image=message.get("new_image"),
            old_image=message.get("old_image"),
        )

    @classmethod
    def decode(cls, payload: bytes) -> "ChangeEvent":
        return cls.from_message(json.loads(payload.decode("utf-8")))
