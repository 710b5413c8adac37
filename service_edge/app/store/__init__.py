"""
Config store backends: the durable source of truth.
"""

from .base import ConfigStore, StoreKey, encode_key
from .memory import InMemoryConfigStore
from .observed import ObservedConfigStore

__all__ = ["ConfigStore", "StoreKey", "encode_key", "InMemoryConfigStore", "ObservedConfigStore"]
