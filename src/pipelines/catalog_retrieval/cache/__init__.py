"""Catalog Retrieval Cache Components.

This module contains the bounded TTL cache used for query embeddings and
extracted query attributes, and the background sweeper that expires them.
"""

from .ttl_cache import BoundedTTLCache, CacheConfig, CacheEntry
from .sweeper import CacheSweeper

__all__ = [
    "BoundedTTLCache",
    "CacheConfig",
    "CacheEntry",
    "CacheSweeper",
]
