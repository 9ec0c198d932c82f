"""Abstract base classes for caching and cache invalidation.

:class:`ICacheProvider` is the key-value contract the batch optimizer uses
to memoise successful provider results.  :class:`ICacheInvalidator` is the
narrower collaborator the wrap-up phase calls once an artist's data has
changed.  One backend may implement both.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


def artist_cache_key(artist_id: str, suffix: str = "") -> str:
    """``artist:{artist_id}`` or ``artist:{artist_id}:{suffix}``.

    Entries stored under these keys are dropped by
    :meth:`ICacheInvalidator.invalidate` for that artist.
    """
    return f"artist:{artist_id}:{suffix}" if suffix else f"artist:{artist_id}"


class ICacheProvider(ABC):
    """Contract for key-value cache services.

    All operations are async so a network-backed store (e.g. Redis) can be
    dropped in without blocking the event loop.
    """

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Retrieve the value stored under *key*.

        Returns
        -------
        Any or None
            The cached value if present and not expired; ``None`` otherwise.
        """

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store *value* under *key* with an optional time-to-live in seconds."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the entry stored under *key*.  No-op when absent."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Return ``True`` if *key* is present and not expired."""

    @abstractmethod
    def size(self) -> int:
        """Return the number of live entries."""


class ICacheInvalidator(ABC):
    """Best-effort invalidation of everything cached about one artist."""

    @abstractmethod
    async def invalidate(self, artist_id: str) -> None:
        """Drop cached entries for *artist_id*.

        Implementations log failures rather than raising; callers still
        guard the call since the contract is best-effort.
        """
