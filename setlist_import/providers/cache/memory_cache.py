"""Process-local cache for provider results and artist pages.

Backed by ``cachetools.TLRUCache`` so every entry carries its own expiry.

Audio features never change and are cached under the optimizer's own
``provider:operation:...`` keys.  Track details carry mutable fields
(popularity, playability), so the catalog ingest stores them under
``artist:{artist_id}:...`` keys (see :func:`artist_cache_key`); those are
what :meth:`MemoryCacheProvider.invalidate` drops during wrap-up.
"""

from __future__ import annotations

from typing import Any, NamedTuple

import structlog
from cachetools import TLRUCache

from setlist_import.interfaces.cache_provider import (
    ICacheInvalidator,
    ICacheProvider,
    artist_cache_key,
)

logger = structlog.get_logger(logger_name=__name__)


class _Entry(NamedTuple):
    value: Any
    ttl: float


def _expires_at(_key: str, entry: _Entry, now: float) -> float:
    return now + entry.ttl


class MemoryCacheProvider(ICacheProvider, ICacheInvalidator):
    """Bounded in-memory cache with per-entry TTLs.

    Parameters
    ----------
    max_size:
        Entry count above which the least recently used entry is evicted.
    ttl:
        Seconds an entry lives when :meth:`set` is called without one.
    """

    def __init__(self, max_size: int = 1000, ttl: int = 3600) -> None:
        self._default_ttl = ttl
        self._entries: TLRUCache[str, _Entry] = TLRUCache(maxsize=max_size, ttu=_expires_at)

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            logger.debug("cache_miss", key=key)
            return None
        logger.debug("cache_hit", key=key)
        return entry.value

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        self._entries[key] = _Entry(value, float(ttl if ttl is not None else self._default_ttl))
        logger.debug("cache_set", key=key, ttl=ttl or self._default_ttl)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def exists(self, key: str) -> bool:
        return key in self._entries

    def size(self) -> int:
        self._entries.expire()
        return len(self._entries)

    async def invalidate(self, artist_id: str) -> None:
        """Drop ``artist:{artist_id}`` and every ``artist:{artist_id}:*`` entry.

        ``artist:42`` is untouched when invalidating artist ``4``.
        """
        exact = artist_cache_key(artist_id)
        removed = [
            key
            for key in list(self._entries.keys())
            if key == exact or key.startswith(f"{exact}:")
        ]
        for key in removed:
            self._entries.pop(key, None)
        logger.info("artist_cache_invalidated", artist_id=artist_id, keys_removed=len(removed))
