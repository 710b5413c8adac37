"""
Edge cache backends and the read-through resolver.
"""

from .edge_cache import EdgeCache, InMemoryEdgeCache, RedisEdgeCache
from .read_through import ReadThroughResolver, cache_ttls

__all__ = ["EdgeCache", "InMemoryEdgeCache", "RedisEdgeCache", "ReadThroughResolver", "cache_ttls"]
