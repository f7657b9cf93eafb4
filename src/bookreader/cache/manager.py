"""Per-book caches for rewritten chapters and materialized resources."""

import logging
from typing import Callable, Generic, Hashable, TypeVar

from bookreader.cache.models import CachedResource, Resource
from bookreader.cache.stores import ResourceStore

log = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class KeyedCache(Generic[K, V]):
    """Get-or-compute mapping owned by a single book instance.

    A value is stored only once ``compute`` returns, so a failed computation
    leaves no entry behind and the next call retries it.
    """

    def __init__(self) -> None:
        self._entries: dict[K, V] = {}

    def get_or_compute(self, key: K, compute: Callable[[], V]) -> V:
        if key in self._entries:
            return self._entries[key]
        value = compute()
        self._entries[key] = value
        return value

    def clear(self) -> list[V]:
        """Empty the cache and return the values it held."""
        values = list(self._entries.values())
        self._entries.clear()
        return values

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class ResourceCache:
    """Map resource keys to materialized locations."""

    def __init__(self, store: ResourceStore, namespace: str = ""):
        self.store = store
        self.namespace = namespace
        self._cache: KeyedCache[str, CachedResource] = KeyedCache()

    def resolve(self, key: str, loader: Callable[[], Resource]) -> str:
        """Return the location for ``key``, materializing it on first use."""

        def materialize() -> CachedResource:
            resource = loader()
            location = self.store.save(resource, self.namespace)
            log.debug("Materialized resource %s -> %s", key, location)
            return CachedResource(
                key=key, location=location, media_type=resource.media_type
            )

        return self._cache.get_or_compute(key, materialize).location

    def __contains__(self, key: str) -> bool:
        return key in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    def destroy(self) -> None:
        """Release every cached location. Safe to call more than once."""
        for entry in self._cache.clear():
            try:
                self.store.release(entry.location)
            except OSError as e:
                log.warning("Could not release %s: %s", entry.location, e)
