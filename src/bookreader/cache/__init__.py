"""Caches owned by a book instance."""

from bookreader.cache.manager import KeyedCache, ResourceCache
from bookreader.cache.models import CachedResource, Resource
from bookreader.cache.stores import (
    FileResourceStore,
    MemoryResourceStore,
    ResourceStore,
    create_store,
)

__all__ = [
    "KeyedCache",
    "ResourceCache",
    "Resource",
    "CachedResource",
    "ResourceStore",
    "FileResourceStore",
    "MemoryResourceStore",
    "create_store",
]
